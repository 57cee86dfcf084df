from datetime import timedelta

import pytest
from sqlalchemy import update
from sqlmodel import select

from examhub.constants import MAX_VIOLATIONS, ExamStatus, ResultStatus
from examhub.errors import BadRequestError, NotFoundError
from examhub.models import AntiCheatingLog, Response, Result, StudentExam
from examhub.schemas import ResponseIn
from examhub.services import (
    anti_cheating_service,
    assignment_service,
    attempt_service,
    exam_service,
    question_service,
)
from tests.conftest import FIXED_NOW


def test_violations_below_threshold_are_counted(session, student, ready_exam):
    attempt_service.start_exam(session, ready_exam.id, student.id, now=FIXED_NOW)

    first = anti_cheating_service.log_cheat_event(session, ready_exam.id, student.id, "TAB_SWITCH", now=FIXED_NOW)
    second = anti_cheating_service.log_cheat_event(
        session, ready_exam.id, student.id, "FULLSCREEN_EXIT", now=FIXED_NOW
    )

    assert (first["violations"], first["remaining_violations"]) == (1, 2)
    assert (second["violations"], second["remaining_violations"]) == (2, 1)
    assert second["auto_submitted"] is False
    assert len(session.exec(select(AntiCheatingLog)).all()) == 2


def test_third_violation_forces_submission_and_forfeits_answers(session, student, ready_exam, answer_key):
    key = answer_key(ready_exam.id)
    q1, q1_right, _ = key["Q1: pick 3"]
    q2, q2_right, _ = key["Q2: pick 3"]
    attempt_service.start_exam(session, ready_exam.id, student.id, now=FIXED_NOW)
    # A perfect answer sheet saved before the violations
    attempt_service.save_responses(
        session,
        ready_exam.id,
        student.id,
        [ResponseIn(question_id=q1, option_id=q1_right), ResponseIn(question_id=q2, option_id=q2_right)],
    )

    for minute in range(MAX_VIOLATIONS):
        outcome = anti_cheating_service.log_cheat_event(
            session, ready_exam.id, student.id, "TAB_SWITCH", now=FIXED_NOW + timedelta(minutes=minute)
        )

    assert outcome["auto_submitted"] is True
    assert outcome["violations"] == MAX_VIOLATIONS
    assert outcome["result"]["marks"] == 0
    assert outcome["result"]["status"] == ResultStatus.FAIL.value

    session.expire_all()
    attempt = session.exec(select(StudentExam).where(StudentExam.exam_id == ready_exam.id)).one()
    assert attempt.status == ExamStatus.COMPLETED.value
    assert attempt.auto_submitted is True
    assert session.exec(select(Response)).all() == []
    assert len(session.exec(select(Result)).all()) == 1


def test_events_after_forced_submission_are_rejected(session, student, ready_exam):
    attempt_service.start_exam(session, ready_exam.id, student.id, now=FIXED_NOW)
    for _ in range(MAX_VIOLATIONS):
        anti_cheating_service.log_cheat_event(session, ready_exam.id, student.id, "TAB_SWITCH", now=FIXED_NOW)

    with pytest.raises(NotFoundError) as excinfo:
        anti_cheating_service.log_cheat_event(session, ready_exam.id, student.id, "TAB_SWITCH", now=FIXED_NOW)
    assert excinfo.value.message == "Active exam not found"


def test_event_requires_in_progress_attempt(session, student, ready_exam):
    with pytest.raises(NotFoundError):
        anti_cheating_service.log_cheat_event(session, ready_exam.id, student.id, "TAB_SWITCH", now=FIXED_NOW)


def test_unknown_event_type_rejected(session, student, ready_exam):
    attempt_service.start_exam(session, ready_exam.id, student.id, now=FIXED_NOW)

    with pytest.raises(BadRequestError) as excinfo:
        anti_cheating_service.log_cheat_event(session, ready_exam.id, student.id, "COPY_PASTE", now=FIXED_NOW)

    assert excinfo.value.detail["valid_event_types"] == ["TAB_SWITCH", "FULLSCREEN_EXIT"]
    assert session.exec(select(AntiCheatingLog)).all() == []


def test_forced_submission_fails_even_without_passing_threshold(
    session, teacher, student, make_exam, build_question
):
    exam = make_exam(passing_marks=0)
    question_service.bulk_add_questions(session, exam.id, teacher.id, [build_question(5), build_question(5)])
    exam_service.update_exam_status(session, exam.id, teacher.id, True)
    assignment_service.assign_exam_to_students(session, exam.id, teacher.id, [student.id])
    attempt_service.start_exam(session, exam.id, student.id, now=FIXED_NOW)

    for _ in range(MAX_VIOLATIONS):
        outcome = anti_cheating_service.log_cheat_event(session, exam.id, student.id, "TAB_SWITCH", now=FIXED_NOW)

    assert outcome["result"]["marks"] == 0
    assert outcome["result"]["status"] == ResultStatus.FAIL.value
    session.expire_all()
    assert session.exec(select(Result)).one().status == ResultStatus.FAIL.value


def test_violation_is_not_kept_when_forced_submission_loses(session, monkeypatch, student, ready_exam):
    attempt_service.start_exam(session, ready_exam.id, student.id, now=FIXED_NOW)
    for _ in range(MAX_VIOLATIONS - 1):
        anti_cheating_service.log_cheat_event(session, ready_exam.id, student.id, "TAB_SWITCH", now=FIXED_NOW)

    real_finalize = anti_cheating_service.finalize_attempt

    def submitted_meanwhile(db, student_exam, *args, **kwargs):
        # A manual submit wins the status change first
        db.exec(
            update(StudentExam)
            .where(StudentExam.id == student_exam.id)
            .values(status=ExamStatus.COMPLETED.value)
        )
        return real_finalize(db, student_exam, *args, **kwargs)

    monkeypatch.setattr(anti_cheating_service, "finalize_attempt", submitted_meanwhile)

    with pytest.raises(BadRequestError):
        anti_cheating_service.log_cheat_event(session, ready_exam.id, student.id, "TAB_SWITCH", now=FIXED_NOW)

    session.expire_all()
    assert len(session.exec(select(AntiCheatingLog)).all()) == MAX_VIOLATIONS - 1
    assert session.exec(select(Result)).all() == []
