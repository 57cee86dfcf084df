"""Anti-cheating monitor: violation log and forced submission at the threshold."""

import logging
from datetime import datetime
from typing import Optional

from sqlmodel import Session, func, select

from examhub.constants import MAX_VIOLATIONS, CheatingEventType, ExamStatus
from examhub.errors import BadRequestError, NotFoundError
from examhub.models import AntiCheatingLog, StudentExam
from examhub.services.attempt_service import finalize_attempt
from examhub.utils import utcnow

logger = logging.getLogger(__name__)


def _parse_event_type(event_type: str) -> CheatingEventType:
    try:
        return CheatingEventType(event_type)
    except ValueError:
        valid = [e.value for e in CheatingEventType]
        raise BadRequestError(
            f"Invalid event type. Valid types: {', '.join(valid)}",
            {"valid_event_types": valid},
        )


def log_cheat_event(
    session: Session,
    exam_id: int,
    student_id: int,
    event_type: str,
    now: Optional[datetime] = None,
) -> dict:
    """Record a violation; the ``MAX_VIOLATIONS``-th one ends the attempt.

    A forced submission discards any responses saved so far: the attempt is
    scored on an empty answer sheet.
    """
    now = now or utcnow()
    event = _parse_event_type(event_type)

    student_exam = session.exec(
        select(StudentExam).where(
            StudentExam.exam_id == exam_id,
            StudentExam.student_id == student_id,
            StudentExam.status == ExamStatus.IN_PROGRESS.value,
        )
    ).first()
    if not student_exam:
        raise NotFoundError("Active exam not found", {"exam_id": exam_id})

    log = AntiCheatingLog(student_exam_id=student_exam.id, event_type=event.value, event_time=now)
    session.add(log)
    session.flush()

    violations = session.exec(
        select(func.count(AntiCheatingLog.id)).where(
            AntiCheatingLog.student_exam_id == student_exam.id
        )
    ).one()

    if violations >= MAX_VIOLATIONS:
        # The log row commits with the forced submission or not at all
        result, _ = finalize_attempt(
            session, student_exam, [], now, auto_submitted=True, forfeit=True
        )
        session.refresh(log)
        logger.warning(
            "Student %s was auto-submitted from exam %s due to %d anti-cheating violations",
            student_id,
            exam_id,
            violations,
        )
        return {
            "log": log.model_dump(),
            "violations": violations,
            "auto_submitted": True,
            "result": result.model_dump(),
            "message": "Exam auto-submitted due to multiple anti-cheating violations",
        }

    session.commit()
    session.refresh(log)

    logger.info(
        "Logged cheating event for student %s, exam %s: %s (violation %d/%d)",
        student_id,
        exam_id,
        event.value,
        violations,
        MAX_VIOLATIONS,
    )
    return {
        "log": log.model_dump(),
        "violations": violations,
        "remaining_violations": MAX_VIOLATIONS - violations,
        "auto_submitted": False,
    }
