"""Shared FastAPI dependencies for database access, identity and the clock."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from fastapi import Depends, Request
from sqlmodel import Session, select

from examhub.database import get_session
from examhub.errors import ForbiddenError, UnauthorizedError
from examhub.models import Student, Teacher, User
from examhub.utils import utcnow


@dataclass(frozen=True)
class Identity:
    """Authenticated caller as seen by the services."""

    user_id: int
    role: str
    teacher_id: Optional[int] = None
    student_id: Optional[int] = None


def get_now() -> datetime:
    """Wall clock for deadline logic; overridden in tests."""
    return utcnow()


def get_current_identity(
    request: Request, session: Session = Depends(get_session)
) -> Optional[Identity]:
    """Return the identity behind the session cookie, if any."""
    user_id = request.session.get("user_id")
    if not user_id:
        return None

    user = session.get(User, user_id)
    if not user or not user.is_active:
        # Clear any stale session
        request.session.clear()
        return None

    teacher = session.exec(select(Teacher).where(Teacher.user_id == user.id)).first()
    student = session.exec(select(Student).where(Student.user_id == user.id)).first()
    return Identity(
        user_id=user.id,
        role=user.role,
        teacher_id=teacher.id if teacher else None,
        student_id=student.id if student else None,
    )


def require_login(
    identity: Optional[Identity] = Depends(get_current_identity),
) -> Identity:
    """Ensure that a caller is logged in."""
    if identity is None:
        raise UnauthorizedError("Authentication required")
    return identity


def require_role(required_roles: list[str]):
    """Dependency factory that enforces one of the given roles.

    The matching role profile must exist as well, so handlers can rely on
    ``identity.teacher_id`` / ``identity.student_id`` being set.
    """

    def wrapper(identity: Identity = Depends(require_login)) -> Identity:
        if identity.role not in required_roles:
            raise ForbiddenError("Forbidden", {"role": identity.role})
        if identity.role == "teacher" and identity.teacher_id is None:
            raise ForbiddenError("Teacher profile not found")
        if identity.role == "student" and identity.student_id is None:
            raise ForbiddenError("Student profile not found")
        return identity

    return wrapper
