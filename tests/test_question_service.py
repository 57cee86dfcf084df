import pytest
from sqlmodel import select

from examhub.errors import BadRequestError, ForbiddenError, NotFoundError
from examhub.models import Exam, Option, Question
from examhub.schemas import OptionIn, QuestionIn
from examhub.services import attempt_service, exam_service, question_service
from tests.conftest import FIXED_NOW


def assert_ledger_consistent(session, exam_id):
    """Stored counters must equal the count and mark sum of existing questions."""
    session.expire_all()
    exam = session.get(Exam, exam_id)
    questions = session.exec(select(Question).where(Question.exam_id == exam_id)).all()
    assert exam.current_question_count == len(questions)
    assert exam.current_total_marks == sum(q.marks for q in questions)
    return exam


# --- add ---


def test_add_question_resolves_correct_option(session, teacher, make_exam, build_question):
    exam = make_exam()

    question = question_service.add_question(session, exam.id, teacher.id, build_question(4, correct=2))

    assert len(question["options"]) == 4
    correct = next(o for o in question["options"] if o["id"] == question["correct_option_id"])
    assert correct["option_text"] == "5"
    exam = assert_ledger_consistent(session, exam.id)
    assert exam.current_question_count == 1
    assert exam.current_total_marks == 4


def test_question_positions_follow_insertion_order(session, teacher, make_exam, build_question):
    exam = make_exam(num_questions=3)
    first = question_service.add_question(session, exam.id, teacher.id, build_question(2))
    second = question_service.add_question(session, exam.id, teacher.id, build_question(2))
    assert second["position"] == first["position"] + 1


@pytest.mark.parametrize(
    "options, field",
    [
        ([OptionIn(text="only", is_correct=True)], "options"),
        ([OptionIn(text="a"), OptionIn(text="b")], "correct_option"),
        ([OptionIn(text="a", is_correct=True), OptionIn(text="b", is_correct=True)], "correct_option"),
        ([OptionIn(text="<b></b>", is_correct=True), OptionIn(text="b")], "options"),
    ],
)
def test_invalid_options_are_rejected(session, teacher, make_exam, options, field):
    exam = make_exam()
    data = QuestionIn(question_text="Pick one", marks=2, options=options)

    with pytest.raises(BadRequestError) as excinfo:
        question_service.add_question(session, exam.id, teacher.id, data)

    assert field in excinfo.value.detail["errors"]
    assert_ledger_consistent(session, exam.id)


def test_image_flag_requires_images(session, teacher, make_exam, build_question):
    exam = make_exam()
    data = build_question(2).model_copy(update={"has_image": True, "images": []})

    with pytest.raises(BadRequestError) as excinfo:
        question_service.add_question(session, exam.id, teacher.id, data)
    assert "images" in excinfo.value.detail["errors"]


def test_question_text_empty_after_sanitizing(session, teacher, make_exam, build_question):
    exam = make_exam()
    data = build_question(2).model_copy(update={"question_text": "<script></script>"})

    with pytest.raises(BadRequestError) as excinfo:
        question_service.add_question(session, exam.id, teacher.id, data)
    assert "question_text" in excinfo.value.detail["errors"]


def test_cannot_exceed_declared_question_count(session, teacher, make_exam, build_question):
    exam = make_exam(num_questions=1, total_marks=5)
    question_service.add_question(session, exam.id, teacher.id, build_question(5))

    with pytest.raises(BadRequestError):
        question_service.add_question(session, exam.id, teacher.id, build_question(1))
    assert_ledger_consistent(session, exam.id)


def test_last_question_must_close_marks_gap(session, teacher, make_exam, build_question):
    exam = make_exam(num_questions=2, total_marks=10)
    question_service.add_question(session, exam.id, teacher.id, build_question(4))

    with pytest.raises(BadRequestError) as excinfo:
        question_service.add_question(session, exam.id, teacher.id, build_question(5))
    assert excinfo.value.detail["remaining_marks"] == 6

    question_service.add_question(session, exam.id, teacher.id, build_question(6))
    exam = assert_ledger_consistent(session, exam.id)
    assert (exam.current_question_count, exam.current_total_marks) == (2, 10)


def test_marks_cannot_overshoot_total(session, teacher, make_exam, build_question):
    exam = make_exam(num_questions=3, total_marks=10)
    with pytest.raises(BadRequestError):
        question_service.add_question(session, exam.id, teacher.id, build_question(11))


def test_other_teacher_cannot_add_questions(session, other_teacher, make_exam, build_question):
    exam = make_exam()
    with pytest.raises(ForbiddenError):
        question_service.add_question(session, exam.id, other_teacher.id, build_question(4))


# --- bulk ---


def test_bulk_add_writes_all_questions(session, teacher, make_exam, build_question):
    exam = make_exam(num_questions=3, total_marks=10)

    created = question_service.bulk_add_questions(
        session, exam.id, teacher.id, [build_question(3), build_question(3), build_question(4)]
    )

    assert len(created) == 3
    exam = assert_ledger_consistent(session, exam.id)
    assert (exam.current_question_count, exam.current_total_marks) == (3, 10)


def test_bulk_add_is_all_or_nothing(session, teacher, make_exam, build_question):
    exam = make_exam(num_questions=3, total_marks=10)
    bad = QuestionIn(question_text="No answer", marks=3, options=[OptionIn(text="a"), OptionIn(text="b")])

    with pytest.raises(BadRequestError) as excinfo:
        question_service.bulk_add_questions(session, exam.id, teacher.id, [build_question(3), bad])

    assert excinfo.value.detail["index"] == 1
    exam = assert_ledger_consistent(session, exam.id)
    assert exam.current_question_count == 0


def test_bulk_add_checks_marks_across_the_batch(session, teacher, make_exam, build_question):
    exam = make_exam(num_questions=2, total_marks=10)

    with pytest.raises(BadRequestError) as excinfo:
        question_service.bulk_add_questions(
            session, exam.id, teacher.id, [build_question(5), build_question(4)]
        )

    assert excinfo.value.detail["index"] == 1
    assert session.exec(select(Question)).all() == []


# --- update / delete ---


def test_update_question_moves_marks_counter(session, teacher, make_exam, build_question):
    exam = make_exam(num_questions=3, total_marks=10)
    q1 = question_service.add_question(session, exam.id, teacher.id, build_question(4))
    question_service.add_question(session, exam.id, teacher.id, build_question(3))

    updated = question_service.update_question(
        session, exam.id, q1["id"], teacher.id, build_question(7, correct=1)
    )

    assert updated["marks"] == 7
    exam = assert_ledger_consistent(session, exam.id)
    assert exam.current_total_marks == 10


def test_update_question_replaces_options(session, teacher, make_exam, build_question):
    exam = make_exam()
    q1 = question_service.add_question(session, exam.id, teacher.id, build_question(4))

    updated = question_service.update_question(
        session, exam.id, q1["id"], teacher.id, build_question(4, correct=3)
    )

    correct = next(o for o in updated["options"] if o["id"] == updated["correct_option_id"])
    assert correct["option_text"] == "22"
    remaining = session.exec(select(Option).where(Option.question_id == q1["id"])).all()
    assert len(remaining) == 4


def test_update_question_cannot_exceed_total(session, teacher, make_exam, build_question):
    exam = make_exam(num_questions=3, total_marks=10)
    q1 = question_service.add_question(session, exam.id, teacher.id, build_question(4))
    question_service.add_question(session, exam.id, teacher.id, build_question(4))

    with pytest.raises(BadRequestError):
        question_service.update_question(session, exam.id, q1["id"], teacher.id, build_question(7))
    exam = assert_ledger_consistent(session, exam.id)
    assert exam.current_total_marks == 8


def test_update_question_of_another_exam(session, teacher, make_exam, build_question):
    exam_a = make_exam()
    exam_b = make_exam(name="Other")
    q = question_service.add_question(session, exam_a.id, teacher.id, build_question(4))

    with pytest.raises(BadRequestError):
        question_service.update_question(session, exam_b.id, q["id"], teacher.id, build_question(4))


def test_update_missing_question(session, teacher, make_exam, build_question):
    exam = make_exam()
    with pytest.raises(NotFoundError):
        question_service.update_question(session, exam.id, 999, teacher.id, build_question(4))


def test_delete_question_gives_marks_back(session, teacher, make_exam, build_question):
    exam = make_exam(num_questions=2, total_marks=10)
    q1 = question_service.add_question(session, exam.id, teacher.id, build_question(4))
    question_service.add_question(session, exam.id, teacher.id, build_question(6))

    question_service.deactivate_question(session, exam.id, q1["id"], teacher.id)

    exam = assert_ledger_consistent(session, exam.id)
    assert (exam.current_question_count, exam.current_total_marks) == (1, 6)
    assert session.exec(select(Option).where(Option.question_id == q1["id"])).all() == []

    # The freed slot is the last one again, so it must bring exactly 4 marks
    question_service.add_question(session, exam.id, teacher.id, build_question(4))
    assert_ledger_consistent(session, exam.id)


def test_questions_frozen_after_a_completed_attempt(session, teacher, student, ready_exam, build_question):
    attempt_service.start_exam(session, ready_exam.id, student.id, now=FIXED_NOW)
    attempt_service.submit_exam(session, ready_exam.id, student.id, [], now=FIXED_NOW)
    q = session.exec(select(Question).where(Question.exam_id == ready_exam.id)).first()

    with pytest.raises(BadRequestError):
        question_service.update_question(session, ready_exam.id, q.id, teacher.id, build_question(5))
    with pytest.raises(BadRequestError):
        question_service.deactivate_question(session, ready_exam.id, q.id, teacher.id)


def test_active_exam_questions_cannot_be_removed_or_changed(session, teacher, ready_exam, build_question):
    q = session.exec(select(Question).where(Question.exam_id == ready_exam.id)).first()

    with pytest.raises(BadRequestError) as excinfo:
        question_service.deactivate_question(session, ready_exam.id, q.id, teacher.id)
    assert excinfo.value.message == "Deactivate the exam before changing its questions"
    with pytest.raises(BadRequestError):
        question_service.update_question(session, ready_exam.id, q.id, teacher.id, build_question(2))

    exam = assert_ledger_consistent(session, ready_exam.id)
    assert exam.is_active is True
    assert (exam.current_question_count, exam.current_total_marks) == (2, 10)


def test_questions_editable_again_after_deactivation(session, teacher, ready_exam, build_question):
    q = session.exec(select(Question).where(Question.exam_id == ready_exam.id)).first()
    exam_service.update_exam_status(session, ready_exam.id, teacher.id, False)

    question_service.deactivate_question(session, ready_exam.id, q.id, teacher.id)

    exam = assert_ledger_consistent(session, ready_exam.id)
    assert exam.current_question_count == 1
