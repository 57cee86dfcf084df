"""Request payload schemas shared by routers and services."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class ExamIn(BaseModel):
    name: str = Field(min_length=3, max_length=100)
    subject_id: int
    num_questions: int = Field(ge=1)
    total_marks: float = Field(gt=0)
    passing_marks: float = Field(ge=0)
    duration: int = Field(ge=1, description="Minutes")
    start_date: datetime
    end_date: datetime


class ExamUpdate(BaseModel):
    """Partial update; omitted fields keep their current value."""

    name: Optional[str] = Field(default=None, min_length=3, max_length=100)
    num_questions: Optional[int] = Field(default=None, ge=1)
    total_marks: Optional[float] = Field(default=None, gt=0)
    passing_marks: Optional[float] = Field(default=None, ge=0)
    duration: Optional[int] = Field(default=None, ge=1)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class ExamStatusIn(BaseModel):
    is_active: bool


class OptionIn(BaseModel):
    text: str = Field(min_length=1, max_length=500)
    is_correct: bool = False


class QuestionIn(BaseModel):
    question_text: str = Field(min_length=3, max_length=1000)
    has_image: bool = False
    images: List[str] = Field(default_factory=list)
    marks: float = Field(gt=0)
    negative_marks: float = Field(default=0, ge=0)
    options: List[OptionIn]


class BulkQuestionsIn(BaseModel):
    questions: List[QuestionIn] = Field(min_length=1)


class AssignIn(BaseModel):
    student_ids: List[int] = Field(min_length=1)


class ResponseIn(BaseModel):
    """One answered question. Ids are optional here so that a malformed entry
    reaches the service and rejects the whole payload with a clear message."""

    question_id: Optional[int] = None
    option_id: Optional[int] = None


class ResponsesIn(BaseModel):
    responses: List[ResponseIn] = Field(default_factory=list)


class CheatEventIn(BaseModel):
    event_type: str


class LoginIn(BaseModel):
    email: str
    password: str
