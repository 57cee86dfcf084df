"""Scheduled jobs: auto-submit expired attempts and prepare exam reminders.

Both are meant to be triggered by an external scheduler (cron, systemd timer,
...) every few minutes; see ``examhub.scripts.auto_submit_expired``.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from examhub.constants import REMINDER_WINDOW_HOURS, ExamStatus
from examhub.models import (
    AnswerSheet,
    Exam,
    Response,
    Student,
    StudentExam,
    Subject,
    Teacher,
    User,
)
from examhub.schemas import ResponseIn
from examhub.services.attempt_service import finalize_attempt
from examhub.utils import utcnow

logger = logging.getLogger(__name__)


def _salvaged_responses(session: Session, student_exam_id: int) -> List[ResponseIn]:
    sheet = session.exec(
        select(AnswerSheet).where(AnswerSheet.student_exam_id == student_exam_id)
    ).first()
    if sheet is None:
        return []
    rows = session.exec(select(Response).where(Response.answer_sheet_id == sheet.id)).all()
    return [ResponseIn(question_id=r.question_id, option_id=r.option_id) for r in rows]


def auto_submit_expired_exams(engine: Engine, now: Optional[datetime] = None) -> dict:
    """Complete every IN_PROGRESS attempt whose end time has passed.

    Saved responses are kept and scored. Each attempt runs in its own session
    so one failure does not stop the rest of the sweep.
    """
    now = now or utcnow()
    with Session(engine) as session:
        expired_ids = session.exec(
            select(StudentExam.id).where(
                StudentExam.status == ExamStatus.IN_PROGRESS.value,
                StudentExam.end_time < now,
            )
        ).all()

    logger.info("Found %d expired exams to auto-submit", len(expired_ids))

    success = errors = 0
    for student_exam_id in expired_ids:
        try:
            with Session(engine) as session:
                student_exam = session.get(StudentExam, student_exam_id)
                responses = _salvaged_responses(session, student_exam_id)
                if not responses:
                    logger.info("No responses found for auto-submitted exam %s", student_exam_id)
                result, _ = finalize_attempt(
                    session,
                    student_exam,
                    responses,
                    now,
                    auto_submitted=True,
                    auto_graded=True,
                )
                logger.info(
                    "Auto-submitted exam %s for student %s (attempt %s, marks %s)",
                    student_exam.exam_id,
                    student_exam.student_id,
                    student_exam_id,
                    result.marks,
                )
            success += 1
        except Exception:
            logger.exception("Error auto-submitting attempt %s", student_exam_id)
            errors += 1

    return {"processed": len(expired_ids), "success": success, "errors": errors}


def prepare_exam_reminders(session: Session, now: Optional[datetime] = None) -> List[dict]:
    """Reminder payloads for students whose exam starts within the reminder window.

    Nothing is sent from here; delivery belongs to whatever consumes the list.
    Banned students never appear since only NOT_STARTED rows are considered.
    """
    now = now or utcnow()
    window_end = now + timedelta(hours=REMINDER_WINDOW_HOURS)

    rows = session.exec(
        select(Exam, StudentExam, Subject, User)
        .join(StudentExam, StudentExam.exam_id == Exam.id)
        .join(Subject, Subject.id == Exam.subject_id)
        .join(Student, Student.id == StudentExam.student_id)
        .join(User, User.id == Student.user_id)
        .where(
            Exam.is_active == True,  # noqa: E712
            Exam.start_date > now,
            Exam.start_date < window_end,
            StudentExam.status == ExamStatus.NOT_STARTED.value,
        )
        .order_by(Exam.start_date)
    ).all()

    notifications = []
    for exam, student_exam, subject, student_user in rows:
        hours_until_start = round((exam.start_date - now).total_seconds() / 3600)
        teacher_user = session.exec(
            select(User).join(Teacher, Teacher.user_id == User.id).where(Teacher.id == exam.owner_id)
        ).first()
        notifications.append(
            {
                "exam_id": exam.id,
                "exam_name": exam.name,
                "subject_name": subject.name,
                "teacher_name": teacher_user.name if teacher_user else None,
                "start_time": exam.start_date,
                "duration": exam.duration,
                "hours_until_start": hours_until_start,
                "student_id": student_exam.student_id,
                "student_name": student_user.name,
                "student_email": student_user.email,
                "message": (
                    f'Reminder: Your exam "{exam.name}" for {subject.name} '
                    f"starts in {hours_until_start} hours."
                ),
            }
        )

    logger.info("Prepared %d reminders for students with upcoming exams", len(notifications))
    return notifications
