"""Teacher endpoints: exam authoring, question bank, assignment and reporting.

Every route is gated by ``require_role(["teacher"])``; ownership of the exam is
checked inside the service functions.
"""

from datetime import datetime

from fastapi import APIRouter, Body, Depends, status
from sqlmodel import Session

from examhub.constants import UserRole
from examhub.database import get_session
from examhub.deps import Identity, get_now, require_role
from examhub.schemas import AssignIn, BulkQuestionsIn, ExamIn, ExamStatusIn, ExamUpdate, QuestionIn
from examhub.services import assignment_service, exam_service, question_service

router = APIRouter()

require_teacher = require_role([UserRole.TEACHER.value])


# --- Exams ---


@router.get("/")
def list_exams(
    identity: Identity = Depends(require_teacher),
    session: Session = Depends(get_session),
):
    return {"exams": exam_service.get_teacher_exams(session, identity.teacher_id)}


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_exam(
    payload: ExamIn = Body(...),
    identity: Identity = Depends(require_teacher),
    session: Session = Depends(get_session),
):
    exam = exam_service.create_exam(session, identity.teacher_id, payload)
    return {"exam": exam.model_dump(), "authoring": exam_service.authoring_status(exam)}


@router.get("/{exam_id}")
def get_exam(
    exam_id: int,
    identity: Identity = Depends(require_teacher),
    session: Session = Depends(get_session),
):
    return {"exam": exam_service.get_exam_by_id(session, exam_id, identity.teacher_id)}


@router.put("/{exam_id}")
def update_exam(
    exam_id: int,
    payload: ExamUpdate = Body(...),
    identity: Identity = Depends(require_teacher),
    session: Session = Depends(get_session),
    now: datetime = Depends(get_now),
):
    exam = exam_service.update_exam(session, exam_id, identity.teacher_id, payload, now=now)
    return {"exam": exam.model_dump(), "authoring": exam_service.authoring_status(exam)}


@router.patch("/{exam_id}/status")
def update_exam_status(
    exam_id: int,
    payload: ExamStatusIn = Body(...),
    identity: Identity = Depends(require_teacher),
    session: Session = Depends(get_session),
):
    exam = exam_service.update_exam_status(session, exam_id, identity.teacher_id, payload.is_active)
    return {"exam": exam.model_dump(), "authoring": exam_service.authoring_status(exam)}


# --- Questions ---


@router.get("/{exam_id}/questions")
def list_questions(
    exam_id: int,
    identity: Identity = Depends(require_teacher),
    session: Session = Depends(get_session),
):
    return {"questions": exam_service.get_exam_questions(session, exam_id, identity.teacher_id)}


@router.post("/{exam_id}/questions", status_code=status.HTTP_201_CREATED)
def add_question(
    exam_id: int,
    payload: QuestionIn = Body(...),
    identity: Identity = Depends(require_teacher),
    session: Session = Depends(get_session),
):
    question = question_service.add_question(session, exam_id, identity.teacher_id, payload)
    exam = exam_service.get_exam_or_404(session, exam_id)
    return {"question": question, "authoring": exam_service.authoring_status(exam)}


@router.post("/{exam_id}/questions/bulk", status_code=status.HTTP_201_CREATED)
def bulk_add_questions(
    exam_id: int,
    payload: BulkQuestionsIn = Body(...),
    identity: Identity = Depends(require_teacher),
    session: Session = Depends(get_session),
):
    questions = question_service.bulk_add_questions(
        session, exam_id, identity.teacher_id, payload.questions
    )
    exam = exam_service.get_exam_or_404(session, exam_id)
    return {"questions": questions, "authoring": exam_service.authoring_status(exam)}


@router.put("/{exam_id}/questions/{question_id}")
def update_question(
    exam_id: int,
    question_id: int,
    payload: QuestionIn = Body(...),
    identity: Identity = Depends(require_teacher),
    session: Session = Depends(get_session),
):
    question = question_service.update_question(
        session, exam_id, question_id, identity.teacher_id, payload
    )
    exam = exam_service.get_exam_or_404(session, exam_id)
    return {"question": question, "authoring": exam_service.authoring_status(exam)}


@router.delete("/{exam_id}/questions/{question_id}")
def delete_question(
    exam_id: int,
    question_id: int,
    identity: Identity = Depends(require_teacher),
    session: Session = Depends(get_session),
):
    question_service.deactivate_question(session, exam_id, question_id, identity.teacher_id)
    exam = exam_service.get_exam_or_404(session, exam_id)
    return {"message": "Question removed", "authoring": exam_service.authoring_status(exam)}


# --- Assignment & bans ---


@router.post("/{exam_id}/assign", status_code=status.HTTP_201_CREATED)
def assign_exam(
    exam_id: int,
    payload: AssignIn = Body(...),
    identity: Identity = Depends(require_teacher),
    session: Session = Depends(get_session),
):
    return assignment_service.assign_exam_to_students(
        session, exam_id, identity.teacher_id, payload.student_ids
    )


@router.get("/{exam_id}/students")
def assigned_students(
    exam_id: int,
    identity: Identity = Depends(require_teacher),
    session: Session = Depends(get_session),
):
    return {"students": assignment_service.get_assigned_students(session, exam_id, identity.teacher_id)}


@router.post("/{exam_id}/students/{student_id}/ban")
def toggle_ban(
    exam_id: int,
    student_id: int,
    identity: Identity = Depends(require_teacher),
    session: Session = Depends(get_session),
):
    return assignment_service.toggle_student_ban(session, exam_id, student_id, identity.teacher_id)


@router.get("/{exam_id}/banned")
def banned_students(
    exam_id: int,
    identity: Identity = Depends(require_teacher),
    session: Session = Depends(get_session),
):
    return {"students": assignment_service.get_banned_students(session, exam_id, identity.teacher_id)}


# --- Reporting ---


@router.get("/{exam_id}/results")
def exam_results(
    exam_id: int,
    identity: Identity = Depends(require_teacher),
    session: Session = Depends(get_session),
):
    return assignment_service.get_exam_results(session, exam_id, identity.teacher_id)


@router.get("/{exam_id}/students/{student_id}/result")
def student_result(
    exam_id: int,
    student_id: int,
    identity: Identity = Depends(require_teacher),
    session: Session = Depends(get_session),
):
    return {
        "result": assignment_service.get_student_result(
            session, exam_id, student_id, identity.teacher_id
        )
    }


@router.get("/{exam_id}/students/{student_id}/answer-sheet")
def student_answer_sheet(
    exam_id: int,
    student_id: int,
    identity: Identity = Depends(require_teacher),
    session: Session = Depends(get_session),
):
    return {
        "answer_sheet": assignment_service.get_student_answer_sheet(
            session, exam_id, student_id, identity.teacher_id
        )
    }


@router.get("/{exam_id}/students/{student_id}/cheat-logs")
def student_cheat_logs(
    exam_id: int,
    student_id: int,
    identity: Identity = Depends(require_teacher),
    session: Session = Depends(get_session),
):
    return {
        "logs": assignment_service.get_student_cheat_logs(
            session, exam_id, student_id, identity.teacher_id
        )
    }
