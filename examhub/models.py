"""SQLModel models for the online examination backend."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from examhub.constants import ExamStatus, ResultStatus, UserRole
from examhub.utils import utcnow


class User(SQLModel, table=True):
    """Application user that can log in and own a role (admin / teacher / student)."""

    __table_args__ = (UniqueConstraint("email", name="uq_user_email"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str
    password_hash: str
    role: str = Field(default=UserRole.STUDENT.value)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow)


class Teacher(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("user_id", name="uq_teacher_user"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id")


class Student(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("user_id", name="uq_student_user"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id")
    # Lifetime number of completed (scored) exams
    completed_exams: int = Field(default=0)


class Subject(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("code", name="uq_subject_code"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str
    name: str
    created_at: datetime = Field(default_factory=utcnow)


class SubjectTeacher(SQLModel, table=True):
    """Junction table: the teacher teaches the subject."""

    __table_args__ = (
        UniqueConstraint("subject_id", "teacher_id", name="uq_subject_teacher"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    subject_id: int = Field(foreign_key="subject.id")
    teacher_id: int = Field(foreign_key="teacher.id")


class Enrollment(SQLModel, table=True):
    """Junction table: the student is enrolled in the subject."""

    __table_args__ = (
        UniqueConstraint("subject_id", "student_id", name="uq_subject_student"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    subject_id: int = Field(foreign_key="subject.id")
    student_id: int = Field(foreign_key="student.id")
    enrolled_at: datetime = Field(default_factory=utcnow)


# ===================== EXAM AUTHORING =====================


class Exam(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    owner_id: int = Field(foreign_key="teacher.id", index=True)
    subject_id: int = Field(foreign_key="subject.id")
    num_questions: int
    total_marks: float
    passing_marks: float
    duration: int  # minutes
    start_date: datetime
    end_date: datetime
    is_active: bool = Field(default=False)
    # Running totals maintained by the question bank; never recomputed on read
    current_question_count: int = Field(default=0)
    current_total_marks: float = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Question(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id", index=True)
    question_text: str
    has_image: bool = Field(default=False)
    images: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    marks: float
    negative_marks: float = Field(default=0)
    # References an Option of this question; plain column since option.question_id
    # already points back here.
    correct_option_id: Optional[int] = Field(default=None)
    position: int = Field(default=0)


class Option(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    question_id: int = Field(foreign_key="question.id", index=True)
    option_text: str


# ===================== ATTEMPTS & RESULTS =====================


class StudentExam(SQLModel, table=True):
    """One student's assignment to, and attempt at, one exam."""

    __table_args__ = (
        UniqueConstraint("student_id", "exam_id", name="uq_student_exam"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key="student.id", index=True)
    exam_id: int = Field(foreign_key="exam.id", index=True)
    status: str = Field(default=ExamStatus.NOT_STARTED.value, index=True)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    auto_submitted: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)


class AnswerSheet(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("student_exam_id", name="uq_answersheet_student_exam"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    student_exam_id: int = Field(foreign_key="studentexam.id")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Response(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    answer_sheet_id: int = Field(foreign_key="answersheet.id", index=True)
    question_id: int
    option_id: int


class Result(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("student_exam_id", name="uq_result_student_exam"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    student_exam_id: int = Field(foreign_key="studentexam.id")
    marks: float
    time_taken: int  # seconds
    status: str = Field(default=ResultStatus.FAIL.value)
    auto_graded: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)


# ===================== ANTI-CHEATING =====================


class AntiCheatingLog(SQLModel, table=True):
    """Append-only record of monitoring violations during an attempt."""

    id: Optional[int] = Field(default=None, primary_key=True)
    student_exam_id: int = Field(foreign_key="studentexam.id", index=True)
    event_type: str
    event_time: datetime = Field(default_factory=utcnow)
