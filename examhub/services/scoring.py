"""Deterministic scoring of submitted responses against an exam's answer key."""

from dataclasses import dataclass
from typing import Iterable, Protocol

from examhub.constants import ResultStatus


class AnswerKey(Protocol):
    id: int
    marks: float
    negative_marks: float
    correct_option_id: int


class ChosenOption(Protocol):
    question_id: int
    option_id: int


@dataclass(frozen=True)
class ScoreResult:
    marks: float
    status: ResultStatus
    correct: int
    wrong: int


def compute_score(questions: Iterable[AnswerKey], responses: Iterable[ChosenOption]) -> float:
    """Return obtained marks, clamped at zero.

    A correct option earns the question's marks, a wrong one costs its
    negative marks. Responses for questions outside the exam count for nothing.
    """
    return _tally(questions, responses)[0]


def score_attempt(
    questions: Iterable[AnswerKey],
    responses: Iterable[ChosenOption],
    passing_marks: float,
) -> ScoreResult:
    marks, correct, wrong = _tally(questions, responses)
    status = ResultStatus.PASS if marks >= passing_marks else ResultStatus.FAIL
    return ScoreResult(marks=marks, status=status, correct=correct, wrong=wrong)


def _tally(questions, responses) -> tuple[float, int, int]:
    key = {q.id: q for q in questions}
    total = 0.0
    correct = wrong = 0
    for response in responses:
        question = key.get(response.question_id)
        if question is None:
            continue
        if response.option_id == question.correct_option_id:
            total += question.marks
            correct += 1
        else:
            wrong += 1
            if question.negative_marks > 0:
                total -= question.negative_marks
    return max(0.0, total), correct, wrong
