"""Attempt state machine for a student's timed exam.

    NOT_STARTED --start--> IN_PROGRESS --submit/forced--> COMPLETED
    NOT_STARTED <--ban/unban--> BANNED

Manual submission, the anti-cheating monitor and the expiry sweep all end an
attempt through :func:`finalize_attempt`.
"""

import logging
import random
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from examhub.constants import ANTI_CHEATING_POLICY, ExamStatus, ResultStatus
from examhub.errors import BadRequestError, ForbiddenError, NotFoundError
from examhub.models import (
    AnswerSheet,
    Exam,
    Option,
    Question,
    Response,
    Result,
    Student,
    StudentExam,
    Subject,
)
from examhub.schemas import ResponseIn
from examhub.services.scoring import score_attempt
from examhub.utils import seconds_between, utcnow

logger = logging.getLogger(__name__)


def get_student_exam(session: Session, exam_id: int, student_id: int) -> StudentExam:
    student_exam = session.exec(
        select(StudentExam).where(
            StudentExam.exam_id == exam_id,
            StudentExam.student_id == student_id,
        )
    ).first()
    if not student_exam:
        raise NotFoundError(
            "Exam not found or not assigned to student",
            {"exam_id": exam_id, "student_id": student_id},
        )
    return student_exam


def get_active_attempt(session: Session, exam_id: int, student_id: int) -> StudentExam:
    """The caller's attempt, which must be IN_PROGRESS."""
    student_exam = get_student_exam(session, exam_id, student_id)
    if student_exam.status != ExamStatus.IN_PROGRESS:
        raise BadRequestError(
            f"Exam is not in progress (status: {student_exam.status})",
            {"status": student_exam.status},
        )
    return student_exam


def validate_responses(responses: Sequence[ResponseIn]) -> None:
    """Reject the whole payload if any response lacks an id or repeats a question."""
    invalid = [
        index
        for index, r in enumerate(responses)
        if r is None or r.question_id is None or r.option_id is None
    ]
    if invalid:
        raise BadRequestError(
            "Each response must have question_id and option_id fields",
            {"invalid_indexes": invalid},
        )
    seen: set[int] = set()
    duplicates = []
    for r in responses:
        if r.question_id in seen:
            duplicates.append(r.question_id)
        seen.add(r.question_id)
    if duplicates:
        raise BadRequestError(
            "Each question may be answered at most once",
            {"duplicate_question_ids": sorted(set(duplicates))},
        )


def _exam_questions(session: Session, exam_id: int) -> List[Question]:
    return session.exec(
        select(Question).where(Question.exam_id == exam_id).order_by(Question.position, Question.id)
    ).all()


def start_exam(
    session: Session, exam_id: int, student_id: int, now: Optional[datetime] = None
) -> dict:
    now = now or utcnow()
    student_exam = get_student_exam(session, exam_id, student_id)

    if student_exam.status == ExamStatus.BANNED:
        raise ForbiddenError("You are banned from taking this exam", {"status": student_exam.status})
    if student_exam.status != ExamStatus.NOT_STARTED:
        raise BadRequestError(
            f"Exam already started or completed: {student_exam.status}",
            {"status": student_exam.status},
        )

    exam = session.get(Exam, exam_id)
    if not exam.is_active:
        raise BadRequestError("Exam is not active")
    if now < exam.start_date:
        raise ForbiddenError(
            f"Exam has not started yet. Start date: {exam.start_date.isoformat()}",
            {"start_date": exam.start_date.isoformat()},
        )
    if now > exam.end_date:
        raise ForbiddenError(
            f"Exam has ended. End date: {exam.end_date.isoformat()}",
            {"end_date": exam.end_date.isoformat()},
        )

    end_time = now + timedelta(minutes=exam.duration)
    moved = session.exec(
        update(StudentExam)
        .where(
            StudentExam.id == student_exam.id,
            StudentExam.status == ExamStatus.NOT_STARTED.value,
        )
        .values(status=ExamStatus.IN_PROGRESS.value, start_time=now, end_time=end_time)
    )
    if moved.rowcount != 1:
        session.rollback()
        raise BadRequestError("Exam already started or completed")
    session.commit()

    subject = session.get(Subject, exam.subject_id)
    logger.info("Student %s started exam %s at %s", student_id, exam_id, now.isoformat())
    return {
        "exam": {
            "id": exam.id,
            "name": exam.name,
            "subject": subject.name if subject else None,
            "duration": exam.duration,
            "total_marks": exam.total_marks,
            "passing_marks": exam.passing_marks,
            "num_questions": exam.num_questions,
        },
        "exam_session": {
            "start_time": now,
            "end_time": end_time,
            "time_remaining": exam.duration * 60,
        },
        "anti_cheating": dict(ANTI_CHEATING_POLICY),
    }


def get_exam_questions(
    session: Session,
    exam_id: int,
    student_id: int,
    rng: Optional[random.Random] = None,
) -> List[dict]:
    """Secure question view: no answer key, options shuffled on every call."""
    get_active_attempt(session, exam_id, student_id)
    shuffle = (rng or random).shuffle

    questions = _exam_questions(session, exam_id)
    options_by_question: dict[int, list] = {}
    if questions:
        for opt in session.exec(
            select(Option).where(Option.question_id.in_([q.id for q in questions]))
        ).all():
            options_by_question.setdefault(opt.question_id, []).append(
                {"id": opt.id, "option_text": opt.option_text}
            )

    secure = []
    for question in questions:
        options = list(options_by_question.get(question.id, []))
        shuffle(options)
        secure.append(
            {
                "id": question.id,
                "question_text": question.question_text,
                "has_image": question.has_image,
                "images": question.images,
                "marks": question.marks,
                "negative_marks": question.negative_marks,
                "options": options,
            }
        )
    logger.info("Served %d questions to student %s for exam %s", len(secure), student_id, exam_id)
    return secure


def _replace_responses(
    session: Session, student_exam_id: int, responses: Sequence
) -> AnswerSheet:
    """Delete-then-recreate the attempt's responses; creates the sheet on first use."""
    sheet = session.exec(
        select(AnswerSheet).where(AnswerSheet.student_exam_id == student_exam_id)
    ).first()
    if sheet is None:
        sheet = AnswerSheet(student_exam_id=student_exam_id)
        session.add(sheet)
        session.flush()
    else:
        session.exec(delete(Response).where(Response.answer_sheet_id == sheet.id))
        sheet.updated_at = utcnow()
        session.add(sheet)

    session.add_all(
        Response(answer_sheet_id=sheet.id, question_id=r.question_id, option_id=r.option_id)
        for r in responses
    )
    return sheet


def _sheet_responses(session: Session, answer_sheet_id: int) -> List[Response]:
    return session.exec(
        select(Response).where(Response.answer_sheet_id == answer_sheet_id).order_by(Response.id)
    ).all()


def save_responses(
    session: Session, exam_id: int, student_id: int, responses: Sequence[ResponseIn]
) -> dict:
    validate_responses(responses)
    student_exam = get_active_attempt(session, exam_id, student_id)

    try:
        sheet = _replace_responses(session, student_exam.id, responses)
        session.commit()
    except Exception:
        session.rollback()
        raise

    session.refresh(sheet)
    logger.info("Saved %d responses for student %s, exam %s", len(responses), student_id, exam_id)
    return {
        "answer_sheet_id": sheet.id,
        "responses": [r.model_dump() for r in _sheet_responses(session, sheet.id)],
    }


def get_saved_responses(session: Session, exam_id: int, student_id: int) -> List[dict]:
    student_exam = get_active_attempt(session, exam_id, student_id)
    sheet = session.exec(
        select(AnswerSheet).where(AnswerSheet.student_exam_id == student_exam.id)
    ).first()
    if sheet is None:
        return []
    return [r.model_dump() for r in _sheet_responses(session, sheet.id)]


def finalize_attempt(
    session: Session,
    student_exam: StudentExam,
    responses: Sequence,
    now: datetime,
    auto_submitted: bool,
    auto_graded: bool = False,
    forfeit: bool = False,
) -> tuple[Result, AnswerSheet]:
    """Move an IN_PROGRESS attempt to COMPLETED, storing its answer sheet and result.

    All writes share one commit, together with anything the caller has
    already added to the session. Only one caller can win the status change,
    so an attempt gets at most one result. A forfeited attempt keeps no
    responses and always scores 0 with FAIL.
    """
    exam = session.get(Exam, student_exam.exam_id)
    start_time = student_exam.start_time or now
    student_exam_id = student_exam.id
    student_id = student_exam.student_id

    try:
        moved = session.exec(
            update(StudentExam)
            .where(
                StudentExam.id == student_exam_id,
                StudentExam.status == ExamStatus.IN_PROGRESS.value,
            )
            .values(
                status=ExamStatus.COMPLETED.value,
                submitted_at=now,
                auto_submitted=auto_submitted,
            )
        )
        if moved.rowcount != 1:
            raise BadRequestError("Exam has already been submitted", {"student_exam_id": student_exam_id})

        if forfeit:
            responses = []
            marks, result_status = 0.0, ResultStatus.FAIL
        else:
            score = score_attempt(_exam_questions(session, exam.id), responses, exam.passing_marks)
            marks, result_status = score.marks, score.status
        sheet = _replace_responses(session, student_exam_id, responses)
        result = Result(
            student_exam_id=student_exam_id,
            marks=marks,
            time_taken=seconds_between(start_time, now),
            status=result_status.value,
            auto_graded=auto_graded,
        )
        session.add(result)
        session.exec(
            update(Student)
            .where(Student.id == student_id)
            .values(completed_exams=Student.completed_exams + 1)
        )
        session.commit()
    except IntegrityError:
        session.rollback()
        raise BadRequestError("Exam has already been submitted", {"student_exam_id": student_exam_id})
    except Exception:
        session.rollback()
        raise

    session.refresh(result)
    session.refresh(sheet)
    return result, sheet


def submit_exam(
    session: Session,
    exam_id: int,
    student_id: int,
    responses: Sequence[ResponseIn],
    now: Optional[datetime] = None,
) -> dict:
    now = now or utcnow()
    validate_responses(responses)
    student_exam = get_active_attempt(session, exam_id, student_id)
    exam = session.get(Exam, exam_id)

    # Late submissions are accepted but flagged
    is_late = bool(student_exam.end_time and now > student_exam.end_time)

    answered = {r.question_id for r in responses}
    unanswered = [q.id for q in _exam_questions(session, exam_id) if q.id not in answered]

    result, sheet = finalize_attempt(session, student_exam, responses, now, auto_submitted=is_late)
    session.refresh(student_exam)

    logger.info(
        "Student %s submitted exam %s with marks %s/%s%s",
        student_id,
        exam_id,
        result.marks,
        exam.total_marks,
        " (late)" if is_late else "",
    )
    return {
        "student_exam": student_exam.model_dump(),
        "result": {**result.model_dump(), "total_marks": exam.total_marks},
        "answer_sheet": answer_sheet_payload(session, sheet),
        "unanswered_questions": unanswered or None,
    }


def check_time_limit(
    session: Session, exam_id: int, student_id: int, now: Optional[datetime] = None
) -> dict:
    """Seconds left on the caller's attempt."""
    now = now or utcnow()
    student_exam = get_student_exam(session, exam_id, student_id)
    if student_exam.status != ExamStatus.IN_PROGRESS:
        return {"time_remaining": 0, "is_active": False, "message": "Exam is not in progress"}

    end_time = student_exam.end_time
    if end_time is None:
        exam = session.get(Exam, exam_id)
        end_time = student_exam.start_time + timedelta(minutes=exam.duration)
    if now > end_time:
        return {"time_remaining": 0, "is_active": False, "message": "Time is up"}
    return {
        "time_remaining": seconds_between(now, end_time),
        "is_active": True,
        "end_time": end_time,
    }


def answer_sheet_payload(session: Session, sheet: AnswerSheet) -> dict:
    """Answer sheet with each response joined to its question and options."""
    responses = _sheet_responses(session, sheet.id)
    question_ids = {r.question_id for r in responses}
    questions = {}
    options_by_question: dict[int, list] = {}
    if question_ids:
        for q in session.exec(select(Question).where(Question.id.in_(question_ids))).all():
            questions[q.id] = q
        for opt in session.exec(
            select(Option).where(Option.question_id.in_(question_ids)).order_by(Option.id)
        ).all():
            options_by_question.setdefault(opt.question_id, []).append(opt.model_dump())

    items = []
    for r in responses:
        question = questions.get(r.question_id)
        items.append(
            {
                **r.model_dump(),
                "question": (
                    {**question.model_dump(), "options": options_by_question.get(question.id, [])}
                    if question
                    else None
                ),
                "is_correct": bool(question and question.correct_option_id == r.option_id),
            }
        )
    return {**sheet.model_dump(), "responses": items}
