"""Enumerations and fixed policy values shared across the exam lifecycle."""

from enum import Enum


class UserRole(str, Enum):
    ADMIN = "admin"
    TEACHER = "teacher"
    STUDENT = "student"


class ExamStatus(str, Enum):
    """Status of one student's attempt (StudentExam row)."""

    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    BANNED = "BANNED"


class ResultStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"


class CheatingEventType(str, Enum):
    TAB_SWITCH = "TAB_SWITCH"
    FULLSCREEN_EXIT = "FULLSCREEN_EXIT"


EXAM_STATUS_TEXT = {
    ExamStatus.NOT_STARTED: "Not Started",
    ExamStatus.IN_PROGRESS: "In Progress",
    ExamStatus.COMPLETED: "Completed",
    ExamStatus.BANNED: "Banned",
}

# Anti-cheating policy handed to the client when an attempt starts.
MAX_VIOLATIONS = 3
ANTI_CHEATING_POLICY = {
    "fullscreen_required": True,
    "tab_switch_detection": True,
    "auto_submit_on_violation": True,
    "max_violations": MAX_VIOLATIONS,
}

REMINDER_WINDOW_HOURS = 24
STUDENT_REMINDER_WINDOW_DAYS = 3


def status_text(status) -> str:
    """Human readable label for an attempt status."""
    try:
        return EXAM_STATUS_TEXT[ExamStatus(status)]
    except ValueError:
        return "Unknown"
