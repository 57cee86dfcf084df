"""Student endpoints: assigned exams, taking an attempt, results."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlmodel import Session

from examhub.constants import ExamStatus, UserRole
from examhub.database import get_session
from examhub.deps import Identity, get_now, require_role
from examhub.schemas import CheatEventIn, ResponsesIn
from examhub.services import anti_cheating_service, attempt_service, student_service

router = APIRouter()

require_student = require_role([UserRole.STUDENT.value])


@router.get("/")
def list_exams(
    status: Optional[ExamStatus] = Query(None),
    identity: Identity = Depends(require_student),
    session: Session = Depends(get_session),
):
    exams = student_service.get_student_exams(
        session, identity.student_id, status.value if status else None
    )
    return {"exams": exams}


@router.get("/upcoming")
def upcoming_exams(
    identity: Identity = Depends(require_student),
    session: Session = Depends(get_session),
    now: datetime = Depends(get_now),
):
    return student_service.get_upcoming_exams(session, identity.student_id, now=now)


@router.get("/reminders")
def exam_reminders(
    identity: Identity = Depends(require_student),
    session: Session = Depends(get_session),
    now: datetime = Depends(get_now),
):
    return {"reminders": student_service.get_exam_reminders(session, identity.student_id, now=now)}


@router.get("/results")
def my_results(
    identity: Identity = Depends(require_student),
    session: Session = Depends(get_session),
):
    return {"results": student_service.get_student_results(session, identity.student_id)}


@router.get("/{exam_id}")
def exam_details(
    exam_id: int,
    identity: Identity = Depends(require_student),
    session: Session = Depends(get_session),
):
    return {"student_exam": student_service.get_exam_details(session, exam_id, identity.student_id)}


@router.get("/{exam_id}/ban-status")
def ban_status(
    exam_id: int,
    identity: Identity = Depends(require_student),
    session: Session = Depends(get_session),
):
    return student_service.check_ban_status(session, exam_id, identity.student_id)


# --- Taking the exam ---


@router.post("/{exam_id}/start")
def start_exam(
    exam_id: int,
    identity: Identity = Depends(require_student),
    session: Session = Depends(get_session),
    now: datetime = Depends(get_now),
):
    return attempt_service.start_exam(session, exam_id, identity.student_id, now=now)


@router.get("/{exam_id}/questions")
def exam_questions(
    exam_id: int,
    identity: Identity = Depends(require_student),
    session: Session = Depends(get_session),
):
    return {"questions": attempt_service.get_exam_questions(session, exam_id, identity.student_id)}


@router.put("/{exam_id}/responses")
def save_responses(
    exam_id: int,
    payload: ResponsesIn = Body(...),
    identity: Identity = Depends(require_student),
    session: Session = Depends(get_session),
):
    return attempt_service.save_responses(session, exam_id, identity.student_id, payload.responses)


@router.get("/{exam_id}/responses")
def saved_responses(
    exam_id: int,
    identity: Identity = Depends(require_student),
    session: Session = Depends(get_session),
):
    return {"responses": attempt_service.get_saved_responses(session, exam_id, identity.student_id)}


@router.post("/{exam_id}/submit")
def submit_exam(
    exam_id: int,
    payload: ResponsesIn = Body(...),
    identity: Identity = Depends(require_student),
    session: Session = Depends(get_session),
    now: datetime = Depends(get_now),
):
    return attempt_service.submit_exam(
        session, exam_id, identity.student_id, payload.responses, now=now
    )


@router.get("/{exam_id}/time")
def time_remaining(
    exam_id: int,
    identity: Identity = Depends(require_student),
    session: Session = Depends(get_session),
    now: datetime = Depends(get_now),
):
    return attempt_service.check_time_limit(session, exam_id, identity.student_id, now=now)


@router.post("/{exam_id}/cheat-events")
def cheat_event(
    exam_id: int,
    payload: CheatEventIn = Body(...),
    identity: Identity = Depends(require_student),
    session: Session = Depends(get_session),
    now: datetime = Depends(get_now),
):
    return anti_cheating_service.log_cheat_event(
        session, exam_id, identity.student_id, payload.event_type, now=now
    )


# --- After the exam ---


@router.get("/{exam_id}/result")
def exam_result(
    exam_id: int,
    identity: Identity = Depends(require_student),
    session: Session = Depends(get_session),
):
    return {"result": student_service.get_exam_result(session, exam_id, identity.student_id)}


@router.get("/{exam_id}/answer-sheet")
def answer_sheet(
    exam_id: int,
    identity: Identity = Depends(require_student),
    session: Session = Depends(get_session),
):
    return {"answer_sheet": student_service.get_answer_sheet(session, exam_id, identity.student_id)}
