"""Login / logout with a signed cookie session."""

from fastapi import APIRouter, Body, Depends, Request
from sqlmodel import Session, select

from examhub.auth_utils import verify_password
from examhub.database import get_session
from examhub.deps import Identity, require_login
from examhub.errors import UnauthorizedError
from examhub.models import User
from examhub.schemas import LoginIn

router = APIRouter()


@router.post("/login")
def login(
    request: Request,
    payload: LoginIn = Body(...),
    session: Session = Depends(get_session),
):
    email_clean = payload.email.strip().lower()
    user = session.exec(select(User).where(User.email == email_clean)).first()
    if not user or not user.is_active or not verify_password(payload.password, user.password_hash):
        raise UnauthorizedError("Invalid email or password")

    # Reset any previous session before logging in a new user
    request.session.clear()
    request.session["user_id"] = user.id
    return {"id": user.id, "name": user.name, "email": user.email, "role": user.role}


@router.post("/logout")
def logout(request: Request):
    request.session.clear()
    return {"message": "Logged out"}


@router.get("/me")
def me(identity: Identity = Depends(require_login), session: Session = Depends(get_session)):
    user = session.get(User, identity.user_id)
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "teacher_id": identity.teacher_id,
        "student_id": identity.student_id,
    }
