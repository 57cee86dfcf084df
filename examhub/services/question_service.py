"""Question bank: multiple-choice questions, their options and marks accounting.

Every write here also moves the owning exam's running counters, with a
relative UPDATE issued in the same transaction as the question/option rows,
so the counters always equal the count and mark sum of the questions that
exist.
"""

import logging
from typing import List, Sequence

from sqlalchemy import update
from sqlmodel import Session, func, select

from examhub.errors import BadRequestError, NotFoundError
from examhub.models import Exam, Option, Question
from examhub.schemas import QuestionIn
from examhub.services.exam_service import get_owned_exam, has_completed_attempts
from examhub.utils import sanitize_plain_text, sanitize_question_text

logger = logging.getLogger(__name__)


def _validate_question_inputs(data: QuestionIn) -> dict[str, str]:
    """Validate a question payload and return an error dictionary."""
    errors: dict[str, str] = {}

    if not sanitize_question_text(data.question_text):
        errors["question_text"] = "Question text cannot be empty after sanitization."

    if len(data.options) < 2:
        errors["options"] = "Please provide at least 2 options."
    elif any(not sanitize_plain_text(opt.text) for opt in data.options):
        errors["options"] = "All options must be non-empty."

    correct_count = sum(1 for opt in data.options if opt.is_correct)
    if correct_count == 0:
        errors["correct_option"] = "Please mark one option as correct."
    elif correct_count > 1:
        errors["correct_option"] = "Only one option may be marked as correct."

    if data.has_image and not data.images:
        errors["images"] = "Images cannot be empty when has_image is true."

    return errors


def _check_question_inputs(data: QuestionIn, index: int | None = None) -> None:
    errors = _validate_question_inputs(data)
    if errors:
        detail = {"errors": errors}
        if index is not None:
            detail["index"] = index
        raise BadRequestError("Invalid question", detail)


def _check_capacity_for_new(
    num_questions: int, total_marks: float, count: int, current_marks: float, marks: float
) -> None:
    """Marks rule for adding one question on top of ``count``/``current_marks``."""
    remaining = total_marks - current_marks
    capacity = {
        "current_total_marks": current_marks,
        "total_marks": total_marks,
        "remaining_marks": remaining,
        "current_question_count": count,
        "num_questions": num_questions,
    }
    if count >= num_questions:
        raise BadRequestError(
            f"Cannot add more than {num_questions} questions to this exam", capacity
        )
    if count + 1 == num_questions:
        # Last question must close the marks gap exactly
        if marks != remaining:
            raise BadRequestError(
                f"This is the last question: its marks must be exactly {remaining}"
                f" (current total {current_marks}, declared {total_marks})",
                {**capacity, "marks": marks},
            )
    elif current_marks + marks > total_marks:
        raise BadRequestError(
            f"Adding {marks} marks would exceed the exam's total marks"
            f" (current total {current_marks}, declared {total_marks}, remaining {remaining})",
            {**capacity, "marks": marks},
        )


def _ensure_editable(session: Session, exam_id: int) -> None:
    if has_completed_attempts(session, exam_id):
        raise BadRequestError("Cannot modify exam that has already been taken")


def _ensure_inactive(exam: Exam) -> None:
    """Active exams keep their counters equal to the declared targets."""
    if exam.is_active:
        raise BadRequestError(
            "Deactivate the exam before changing its questions",
            {"exam_id": exam.id, "is_active": True},
        )


def _shift_counters(session: Session, exam_id: int, count_delta: int, marks_delta: float) -> None:
    session.exec(
        update(Exam)
        .where(Exam.id == exam_id)
        .values(
            current_question_count=Exam.current_question_count + count_delta,
            current_total_marks=Exam.current_total_marks + marks_delta,
        )
    )


def _write_options(session: Session, question: Question, data: QuestionIn) -> List[Option]:
    """Create option rows and resolve the single ``is_correct`` flag into the
    question's ``correct_option_id``."""
    options = [
        Option(question_id=question.id, option_text=sanitize_plain_text(opt.text))
        for opt in data.options
    ]
    session.add_all(options)
    session.flush()
    correct_index = next(i for i, opt in enumerate(data.options) if opt.is_correct)
    question.correct_option_id = options[correct_index].id
    session.add(question)
    return options


def _insert_question(session: Session, exam_id: int, data: QuestionIn, position: int) -> Question:
    question = Question(
        exam_id=exam_id,
        question_text=sanitize_question_text(data.question_text),
        has_image=data.has_image,
        images=list(data.images) if data.has_image else [],
        marks=data.marks,
        negative_marks=data.negative_marks,
        position=position,
    )
    session.add(question)
    session.flush()
    _write_options(session, question, data)
    return question


def _next_position(session: Session, exam_id: int) -> int:
    current = session.exec(
        select(func.max(Question.position)).where(Question.exam_id == exam_id)
    ).one()
    return (current or 0) + 1


def _question_payload(session: Session, question: Question) -> dict:
    options = session.exec(
        select(Option).where(Option.question_id == question.id).order_by(Option.id)
    ).all()
    return {**question.model_dump(), "options": [o.model_dump() for o in options]}


def add_question(session: Session, exam_id: int, teacher_id: int, data: QuestionIn) -> dict:
    exam = get_owned_exam(session, exam_id, teacher_id)
    _ensure_editable(session, exam_id)
    _check_question_inputs(data)
    _check_capacity_for_new(
        exam.num_questions,
        exam.total_marks,
        exam.current_question_count,
        exam.current_total_marks,
        data.marks,
    )

    try:
        question = _insert_question(session, exam_id, data, _next_position(session, exam_id))
        _shift_counters(session, exam_id, 1, data.marks)
        session.commit()
    except Exception:
        session.rollback()
        raise

    session.refresh(question)
    logger.info("Added question %s to exam %s (%s marks)", question.id, exam_id, data.marks)
    return _question_payload(session, question)


def bulk_add_questions(
    session: Session, exam_id: int, teacher_id: int, questions: Sequence[QuestionIn]
) -> List[dict]:
    """Add several questions at once; all are written or none are."""
    exam = get_owned_exam(session, exam_id, teacher_id)
    _ensure_editable(session, exam_id)

    count = exam.current_question_count
    marks = exam.current_total_marks
    for index, data in enumerate(questions):
        _check_question_inputs(data, index)
        try:
            _check_capacity_for_new(exam.num_questions, exam.total_marks, count, marks, data.marks)
        except BadRequestError as exc:
            exc.detail["index"] = index
            raise
        count += 1
        marks += data.marks

    created: List[Question] = []
    try:
        position = _next_position(session, exam_id)
        for offset, data in enumerate(questions):
            created.append(_insert_question(session, exam_id, data, position + offset))
        _shift_counters(session, exam_id, len(questions), sum(q.marks for q in questions))
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info("Bulk added %d questions to exam %s", len(created), exam_id)
    return [_question_payload(session, q) for q in created]


def _get_exam_question(session: Session, exam_id: int, question_id: int) -> Question:
    question = session.get(Question, question_id)
    if not question:
        raise NotFoundError("Question not found", {"question_id": question_id})
    if question.exam_id != exam_id:
        raise BadRequestError("Question does not belong to this exam", {"question_id": question_id})
    return question


def update_question(
    session: Session, exam_id: int, question_id: int, teacher_id: int, data: QuestionIn
) -> dict:
    exam = get_owned_exam(session, exam_id, teacher_id)
    _ensure_editable(session, exam_id)
    _ensure_inactive(exam)
    question = _get_exam_question(session, exam_id, question_id)
    _check_question_inputs(data)

    delta = data.marks - question.marks
    if exam.current_total_marks + delta > exam.total_marks:
        raise BadRequestError(
            "Updated marks would exceed the exam's total marks",
            {
                "current_total_marks": exam.current_total_marks,
                "total_marks": exam.total_marks,
                "remaining_marks": exam.total_marks - exam.current_total_marks,
                "marks": data.marks,
                "previous_marks": question.marks,
            },
        )

    try:
        for option in session.exec(select(Option).where(Option.question_id == question_id)).all():
            session.delete(option)
        session.flush()

        question.question_text = sanitize_question_text(data.question_text)
        question.has_image = data.has_image
        question.images = list(data.images) if data.has_image else []
        question.marks = data.marks
        question.negative_marks = data.negative_marks
        _write_options(session, question, data)
        if delta:
            _shift_counters(session, exam_id, 0, delta)
        session.commit()
    except Exception:
        session.rollback()
        raise

    session.refresh(question)
    logger.info("Updated question %s on exam %s (marks delta %s)", question_id, exam_id, delta)
    return _question_payload(session, question)


def deactivate_question(session: Session, exam_id: int, question_id: int, teacher_id: int) -> None:
    """Remove a question (hard delete) and give its marks back to the exam."""
    exam = get_owned_exam(session, exam_id, teacher_id)
    _ensure_editable(session, exam_id)
    _ensure_inactive(exam)
    question = _get_exam_question(session, exam_id, question_id)
    marks = question.marks

    try:
        for option in session.exec(select(Option).where(Option.question_id == question_id)).all():
            session.delete(option)
        session.delete(question)
        session.flush()
        _shift_counters(session, exam_id, -1, -marks)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info("Removed question %s from exam %s", question_id, exam_id)
