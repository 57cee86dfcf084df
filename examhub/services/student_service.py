"""Read-only views of a student's assigned exams, reminders and results."""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlmodel import Session, select

from examhub.constants import STUDENT_REMINDER_WINDOW_DAYS, ExamStatus, status_text
from examhub.errors import NotFoundError
from examhub.models import AnswerSheet, Enrollment, Exam, Result, StudentExam, Subject, Teacher, User
from examhub.services.attempt_service import answer_sheet_payload, get_student_exam
from examhub.utils import utcnow

logger = logging.getLogger(__name__)


def _exam_summary(session: Session, exam: Exam) -> dict:
    """Exam with its subject and owning teacher, as shown to students."""
    subject = session.get(Subject, exam.subject_id)
    teacher_user = session.exec(
        select(User).join(Teacher, Teacher.user_id == User.id).where(Teacher.id == exam.owner_id)
    ).first()
    return {
        "id": exam.id,
        "name": exam.name,
        "subject": subject.model_dump() if subject else None,
        "teacher": {"name": teacher_user.name, "email": teacher_user.email} if teacher_user else None,
        "duration": exam.duration,
        "num_questions": exam.num_questions,
        "total_marks": exam.total_marks,
        "passing_marks": exam.passing_marks,
        "start_date": exam.start_date,
        "end_date": exam.end_date,
        "is_active": exam.is_active,
    }


def _student_exam_view(session: Session, student_exam: StudentExam, exam: Exam) -> dict:
    return {
        **student_exam.model_dump(),
        "status_text": status_text(student_exam.status),
        "exam": _exam_summary(session, exam),
    }


def get_student_exams(session: Session, student_id: int, status: Optional[str] = None) -> List[dict]:
    stmt = (
        select(StudentExam, Exam)
        .join(Exam, Exam.id == StudentExam.exam_id)
        .where(StudentExam.student_id == student_id)
    )
    if status:
        stmt = stmt.where(StudentExam.status == status)
    rows = session.exec(stmt.order_by(Exam.start_date)).all()
    logger.info("Retrieved %d exams for student %s", len(rows), student_id)
    return [_student_exam_view(session, se, exam) for se, exam in rows]


def get_exam_details(session: Session, exam_id: int, student_id: int) -> dict:
    student_exam = get_student_exam(session, exam_id, student_id)
    exam = session.get(Exam, exam_id)
    return _student_exam_view(session, student_exam, exam)


def get_upcoming_exams(session: Session, student_id: int, now: Optional[datetime] = None) -> dict:
    """NOT_STARTED assignments that have not ended, split by whether the window is open."""
    now = now or utcnow()
    rows = session.exec(
        select(StudentExam, Exam)
        .join(Exam, Exam.id == StudentExam.exam_id)
        .where(
            StudentExam.student_id == student_id,
            StudentExam.status == ExamStatus.NOT_STARTED.value,
            Exam.end_date > now,
        )
        .order_by(Exam.start_date)
    ).all()

    available_now, upcoming = [], []
    for student_exam, exam in rows:
        view = _student_exam_view(session, student_exam, exam)
        if exam.start_date <= now <= exam.end_date:
            available_now.append(view)
        else:
            upcoming.append(view)

    return {"available_now": available_now, "upcoming": upcoming, "today": now.date().isoformat()}


def get_exam_reminders(session: Session, student_id: int, now: Optional[datetime] = None) -> List[dict]:
    now = now or utcnow()
    window_end = now + timedelta(days=STUDENT_REMINDER_WINDOW_DAYS)
    # Only NOT_STARTED rows qualify, which leaves banned students out
    rows = session.exec(
        select(Exam, StudentExam)
        .join(StudentExam, StudentExam.exam_id == Exam.id)
        .where(
            StudentExam.student_id == student_id,
            StudentExam.status == ExamStatus.NOT_STARTED.value,
            Exam.is_active == True,  # noqa: E712
            Exam.start_date > now,
            Exam.start_date < window_end,
        )
        .order_by(Exam.start_date)
    ).all()

    reminders = []
    for exam, student_exam in rows:
        summary = _exam_summary(session, exam)
        hours_until_start = round((exam.start_date - now).total_seconds() / 3600)
        reminders.append(
            {
                "exam_id": exam.id,
                "exam_name": exam.name,
                "subject_name": summary["subject"]["name"] if summary["subject"] else None,
                "teacher_name": summary["teacher"]["name"] if summary["teacher"] else None,
                "start_time": exam.start_date,
                "end_time": exam.end_date,
                "duration": exam.duration,
                "hours_until_start": hours_until_start,
                "student_exam_id": student_exam.id,
            }
        )
    return reminders


def check_ban_status(session: Session, exam_id: int, student_id: int) -> dict:
    exam = session.get(Exam, exam_id)
    if not exam:
        raise NotFoundError("Exam not found", {"exam_id": exam_id})
    subject = session.get(Subject, exam.subject_id)
    subject_name = subject.name if subject else None

    student_exam = session.exec(
        select(StudentExam).where(
            StudentExam.exam_id == exam_id,
            StudentExam.student_id == student_id,
        )
    ).first()

    if student_exam and student_exam.status == ExamStatus.BANNED:
        logger.info("Student %s is banned from exam %s", student_id, exam_id)
        return {
            "is_banned": True,
            "is_assigned": True,
            "message": "You are banned from taking this exam",
            "exam_name": exam.name,
            "subject_name": subject_name,
        }

    if student_exam is None:
        enrolled = session.exec(
            select(Enrollment).where(
                Enrollment.student_id == student_id,
                Enrollment.subject_id == exam.subject_id,
            )
        ).first()
        return {
            "is_banned": False,
            "is_assigned": False,
            "has_access": enrolled is not None,
            "message": (
                "You are not assigned to this exam, but have access to the subject"
                if enrolled
                else "You are not enrolled in the subject for this exam"
            ),
        }

    return {
        "is_banned": False,
        "is_assigned": True,
        "status": student_exam.status,
        "status_text": status_text(student_exam.status),
        "exam_name": exam.name,
        "subject_name": subject_name,
    }


def _result_view(session: Session, result: Result, student_exam: StudentExam, exam: Exam) -> dict:
    return {
        **result.model_dump(),
        "total_marks": exam.total_marks,
        "student_exam": {**student_exam.model_dump(), "status_text": status_text(student_exam.status)},
        "exam": _exam_summary(session, exam),
    }


def get_student_results(session: Session, student_id: int) -> List[dict]:
    rows = session.exec(
        select(Result, StudentExam, Exam)
        .join(StudentExam, StudentExam.id == Result.student_exam_id)
        .join(Exam, Exam.id == StudentExam.exam_id)
        .where(StudentExam.student_id == student_id)
        .order_by(Result.created_at.desc())
    ).all()
    logger.info("Retrieved %d results for student %s", len(rows), student_id)
    return [_result_view(session, result, se, exam) for result, se, exam in rows]


def get_exam_result(session: Session, exam_id: int, student_id: int) -> dict:
    row = session.exec(
        select(Result, StudentExam, Exam)
        .join(StudentExam, StudentExam.id == Result.student_exam_id)
        .join(Exam, Exam.id == StudentExam.exam_id)
        .where(StudentExam.student_id == student_id, StudentExam.exam_id == exam_id)
    ).first()
    if not row:
        raise NotFoundError("Result not found", {"exam_id": exam_id})
    result, student_exam, exam = row
    return _result_view(session, result, student_exam, exam)


def get_answer_sheet(session: Session, exam_id: int, student_id: int) -> dict:
    """The student's own sheet, available once the attempt is finished."""
    student_exam = get_student_exam(session, exam_id, student_id)
    sheet = session.exec(
        select(AnswerSheet).where(AnswerSheet.student_exam_id == student_exam.id)
    ).first()
    if not sheet or student_exam.status != ExamStatus.COMPLETED:
        raise NotFoundError("Answer sheet not found", {"exam_id": exam_id})
    return answer_sheet_payload(session, sheet)
