"""Exam authoring ledger: creation, updates and the activation gate.

An exam declares how many questions it will hold (``num_questions``) and how
many marks they add up to (``total_marks``). The question bank keeps the
running ``current_question_count`` / ``current_total_marks`` counters in step
with every question write, and this module only ever compares against those
stored counters.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlmodel import Session, func, select

from examhub.constants import ExamStatus
from examhub.errors import BadRequestError, ForbiddenError, NotFoundError
from examhub.models import Exam, Option, Question, StudentExam, Subject, SubjectTeacher
from examhub.schemas import ExamIn, ExamUpdate
from examhub.utils import sanitize_plain_text, to_naive_utc, utcnow

logger = logging.getLogger(__name__)

# Fields that may still change once the exam window has opened
_EDITABLE_AFTER_START = {"end_date"}


def get_exam_or_404(session: Session, exam_id: int) -> Exam:
    exam = session.get(Exam, exam_id)
    if not exam:
        raise NotFoundError("Exam not found", {"exam_id": exam_id})
    return exam


def get_owned_exam(session: Session, exam_id: int, teacher_id: int) -> Exam:
    """Fetch an exam and check that ``teacher_id`` owns it."""
    exam = get_exam_or_404(session, exam_id)
    if exam.owner_id != teacher_id:
        raise ForbiddenError("You do not have permission to manage this exam", {"exam_id": exam_id})
    return exam


def has_completed_attempts(session: Session, exam_id: int) -> bool:
    stmt = select(func.count(StudentExam.id)).where(
        StudentExam.exam_id == exam_id,
        StudentExam.status == ExamStatus.COMPLETED.value,
    )
    return session.exec(stmt).one() > 0


def authoring_status(exam: Exam) -> dict:
    """Declared vs. current totals, in the shape returned to clients."""
    return {
        "questions": {
            "required": exam.num_questions,
            "current": exam.current_question_count,
            "difference": exam.num_questions - exam.current_question_count,
            "is_complete": exam.current_question_count == exam.num_questions,
        },
        "total_marks": {
            "required": exam.total_marks,
            "current": exam.current_total_marks,
            "difference": exam.total_marks - exam.current_total_marks,
            "is_complete": exam.current_total_marks == exam.total_marks,
        },
    }


def is_authoring_complete(exam: Exam) -> bool:
    return (
        exam.current_question_count == exam.num_questions
        and exam.current_total_marks == exam.total_marks
    )


def _validate_marks_and_dates(passing_marks, total_marks, start_date, end_date) -> None:
    errors: dict[str, str] = {}
    if passing_marks > total_marks:
        errors["passing_marks"] = (
            f"Passing marks ({passing_marks}) cannot exceed total marks ({total_marks})."
        )
    if start_date >= end_date:
        errors["end_date"] = "End date must be after start date."
    if errors:
        raise BadRequestError("Invalid exam configuration", {"errors": errors})


def create_exam(session: Session, teacher_id: int, data: ExamIn) -> Exam:
    subject = session.get(Subject, data.subject_id)
    if not subject:
        raise BadRequestError("Subject not found", {"subject_id": data.subject_id})

    teaches = session.exec(
        select(SubjectTeacher).where(
            SubjectTeacher.subject_id == data.subject_id,
            SubjectTeacher.teacher_id == teacher_id,
        )
    ).first()
    if not teaches:
        raise ForbiddenError("You do not teach this subject", {"subject_id": data.subject_id})

    start_date = to_naive_utc(data.start_date)
    end_date = to_naive_utc(data.end_date)
    _validate_marks_and_dates(data.passing_marks, data.total_marks, start_date, end_date)

    exam = Exam(
        name=sanitize_plain_text(data.name),
        owner_id=teacher_id,
        subject_id=data.subject_id,
        num_questions=data.num_questions,
        total_marks=data.total_marks,
        passing_marks=data.passing_marks,
        duration=data.duration,
        start_date=start_date,
        end_date=end_date,
    )
    session.add(exam)
    session.commit()
    session.refresh(exam)
    logger.info("Teacher %s created exam %s (%s)", teacher_id, exam.id, exam.name)
    return exam


def update_exam(
    session: Session,
    exam_id: int,
    teacher_id: int,
    data: ExamUpdate,
    now: Optional[datetime] = None,
) -> Exam:
    now = now or utcnow()
    exam = get_owned_exam(session, exam_id, teacher_id)

    if has_completed_attempts(session, exam_id):
        raise BadRequestError("Cannot update exam that has already been taken")

    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    for key in ("start_date", "end_date"):
        if key in changes:
            changes[key] = to_naive_utc(changes[key])
    if "name" in changes:
        changes["name"] = sanitize_plain_text(changes["name"])
    changed = {k: v for k, v in changes.items() if getattr(exam, k) != v}

    if now >= exam.start_date:
        locked = sorted(set(changed) - _EDITABLE_AFTER_START)
        if locked:
            raise BadRequestError(
                "Exam has already started; only the end date can be changed",
                {"locked_fields": locked},
            )

    num_questions = changed.get("num_questions", exam.num_questions)
    total_marks = changed.get("total_marks", exam.total_marks)
    passing_marks = changed.get("passing_marks", exam.passing_marks)
    start_date = changed.get("start_date", exam.start_date)
    end_date = changed.get("end_date", exam.end_date)

    if num_questions < exam.current_question_count:
        raise BadRequestError(
            "Number of questions cannot be less than the questions already added",
            {"num_questions": num_questions, "current_question_count": exam.current_question_count},
        )
    if total_marks < exam.current_total_marks:
        raise BadRequestError(
            "Total marks cannot be less than the marks already allocated",
            {"total_marks": total_marks, "current_total_marks": exam.current_total_marks},
        )
    _validate_marks_and_dates(passing_marks, total_marks, start_date, end_date)

    if exam.is_active and (
        num_questions != exam.current_question_count or total_marks != exam.current_total_marks
    ):
        raise BadRequestError(
            "Deactivate the exam before changing its question or mark targets",
            {"num_questions": num_questions, "total_marks": total_marks},
        )

    for key, value in changed.items():
        setattr(exam, key, value)
    exam.updated_at = utcnow()
    session.add(exam)
    session.commit()
    session.refresh(exam)
    logger.info("Teacher %s updated exam %s: %s", teacher_id, exam_id, sorted(changed))
    return exam


def update_exam_status(session: Session, exam_id: int, teacher_id: int, is_active: bool) -> Exam:
    exam = get_owned_exam(session, exam_id, teacher_id)

    if is_active and not is_authoring_complete(exam):
        status = authoring_status(exam)
        problems = []
        if not status["questions"]["is_complete"]:
            problems.append(
                f"questions {exam.current_question_count}/{exam.num_questions}"
                f" ({status['questions']['difference']} remaining)"
            )
        if not status["total_marks"]["is_complete"]:
            problems.append(
                f"total marks {exam.current_total_marks}/{exam.total_marks}"
                f" ({status['total_marks']['difference']} remaining)"
            )
        raise BadRequestError(
            "Exam cannot be activated: " + "; ".join(problems),
            status,
        )

    exam.is_active = is_active
    exam.updated_at = utcnow()
    session.add(exam)
    session.commit()
    session.refresh(exam)
    logger.info("Exam %s %s", exam_id, "activated" if is_active else "deactivated")
    return exam


def get_teacher_exams(session: Session, teacher_id: int) -> List[dict]:
    exams = session.exec(
        select(Exam).where(Exam.owner_id == teacher_id).order_by(Exam.created_at.desc())
    ).all()
    counts = dict(
        session.exec(
            select(StudentExam.exam_id, func.count(StudentExam.id))
            .join(Exam, Exam.id == StudentExam.exam_id)
            .where(Exam.owner_id == teacher_id)
            .group_by(StudentExam.exam_id)
        ).all()
    )
    return [
        {**exam.model_dump(), "student_exam_count": counts.get(exam.id, 0), "authoring": authoring_status(exam)}
        for exam in exams
    ]


def list_questions_with_options(session: Session, exam_id: int) -> List[dict]:
    """Questions with their options and answer key (teacher view)."""
    questions = session.exec(
        select(Question).where(Question.exam_id == exam_id).order_by(Question.position, Question.id)
    ).all()
    options_by_question: dict[int, list] = {}
    if questions:
        options = session.exec(
            select(Option)
            .where(Option.question_id.in_([q.id for q in questions]))
            .order_by(Option.id)
        ).all()
        for opt in options:
            options_by_question.setdefault(opt.question_id, []).append(opt.model_dump())
    return [
        {**q.model_dump(), "options": options_by_question.get(q.id, [])}
        for q in questions
    ]


def get_exam_by_id(session: Session, exam_id: int, teacher_id: int) -> dict:
    exam = get_owned_exam(session, exam_id, teacher_id)
    subject = session.get(Subject, exam.subject_id)
    return {
        **exam.model_dump(),
        "subject": subject.model_dump() if subject else None,
        "authoring": authoring_status(exam),
        "questions": list_questions_with_options(session, exam_id),
    }


def get_exam_questions(session: Session, exam_id: int, teacher_id: int) -> List[dict]:
    get_owned_exam(session, exam_id, teacher_id)
    return list_questions_with_options(session, exam_id)
