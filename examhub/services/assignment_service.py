"""Assignment & ban registry, plus the teacher's per-exam reporting views."""

import logging
from typing import List, Sequence

from sqlmodel import Session, select

from examhub.constants import ExamStatus, status_text
from examhub.errors import BadRequestError, ForbiddenError, NotFoundError
from examhub.models import (
    AnswerSheet,
    AntiCheatingLog,
    Enrollment,
    Result,
    Student,
    StudentExam,
    User,
)
from examhub.services.attempt_service import answer_sheet_payload
from examhub.services.exam_service import authoring_status, get_owned_exam, is_authoring_complete

logger = logging.getLogger(__name__)


def _student_info(session: Session, student_ids: Sequence[int]) -> dict[int, dict]:
    if not student_ids:
        return {}
    rows = session.exec(
        select(Student, User)
        .join(User, User.id == Student.user_id)
        .where(Student.id.in_(student_ids))
    ).all()
    return {
        student.id: {"id": student.id, "name": user.name, "email": user.email}
        for student, user in rows
    }


def _get_student_or_404(session: Session, student_id: int) -> Student:
    student = session.get(Student, student_id)
    if not student:
        raise NotFoundError(f"Student with ID {student_id} does not exist", {"student_id": student_id})
    return student


def assign_exam_to_students(
    session: Session, exam_id: int, teacher_id: int, student_ids: Sequence[int]
) -> dict:
    """Create NOT_STARTED attempts for the given students; all or nothing."""
    exam = get_owned_exam(session, exam_id, teacher_id)
    requested = list(dict.fromkeys(student_ids))

    if not exam.is_active:
        raise BadRequestError("Cannot assign inactive exam to students")
    if not is_authoring_complete(exam):
        raise BadRequestError(
            "Exam configuration is incomplete: it needs the correct number of questions "
            "and total marks before it can be assigned",
            authoring_status(exam),
        )

    existing = set(
        session.exec(select(Student.id).where(Student.id.in_(requested))).all()
    )
    missing = [sid for sid in requested if sid not in existing]
    if missing:
        raise BadRequestError(
            f"The following student IDs do not exist: {', '.join(map(str, missing))}",
            {"missing_student_ids": missing},
        )

    rows = session.exec(
        select(StudentExam).where(
            StudentExam.exam_id == exam_id,
            StudentExam.student_id.in_(requested),
        )
    ).all()
    banned = [se.student_id for se in rows if se.status == ExamStatus.BANNED]
    if banned:
        info = _student_info(session, banned)
        raise BadRequestError(
            "Cannot assign exam to banned students",
            {"banned_students": [info.get(sid, {"id": sid}) for sid in banned]},
        )

    enrolled = set(
        session.exec(
            select(Enrollment.student_id).where(
                Enrollment.subject_id == exam.subject_id,
                Enrollment.student_id.in_(requested),
            )
        ).all()
    )
    not_enrolled = [sid for sid in requested if sid not in enrolled]
    if not_enrolled:
        raise ForbiddenError(
            "Some students are not enrolled in this subject",
            {"invalid_student_ids": not_enrolled},
        )

    already_assigned = [se.student_id for se in rows]
    new_ids = [sid for sid in requested if sid not in set(already_assigned)]
    if not new_ids:
        raise BadRequestError(
            "All students are already assigned to this exam",
            {"already_assigned_students": already_assigned},
        )

    assignments = [StudentExam(exam_id=exam_id, student_id=sid) for sid in new_ids]
    try:
        session.add_all(assignments)
        session.commit()
    except Exception:
        session.rollback()
        raise
    for assignment in assignments:
        session.refresh(assignment)

    logger.info("Assigned exam %s to %d students", exam_id, len(assignments))
    return {
        "assignments": [a.model_dump() for a in assignments],
        "already_assigned_students": already_assigned or None,
    }


def toggle_student_ban(session: Session, exam_id: int, student_id: int, teacher_id: int) -> dict:
    """Ban / unban a student for one exam.

    A student without an attempt row gets one created directly as BANNED.
    Attempts that are underway or finished cannot be banned.
    """
    get_owned_exam(session, exam_id, teacher_id)
    _get_student_or_404(session, student_id)

    student_exam = session.exec(
        select(StudentExam).where(
            StudentExam.exam_id == exam_id,
            StudentExam.student_id == student_id,
        )
    ).first()

    if student_exam is None:
        student_exam = StudentExam(
            exam_id=exam_id, student_id=student_id, status=ExamStatus.BANNED.value
        )
        action = "banned"
        logger.info("Created banned exam assignment for student %s on exam %s", student_id, exam_id)
    elif student_exam.status == ExamStatus.BANNED:
        student_exam.status = ExamStatus.NOT_STARTED.value
        action = "unbanned"
        logger.info("Unbanned student %s from exam %s", student_id, exam_id)
    elif student_exam.status == ExamStatus.NOT_STARTED:
        student_exam.status = ExamStatus.BANNED.value
        action = "banned"
        logger.info("Banned student %s from exam %s", student_id, exam_id)
    else:
        logger.warning(
            "Could not ban student %s from exam %s because status is %s",
            student_id,
            exam_id,
            student_exam.status,
        )
        raise BadRequestError(
            f'Cannot ban student because exam is in "{student_exam.status}" status',
            {"status": student_exam.status},
        )

    session.add(student_exam)
    session.commit()
    session.refresh(student_exam)
    return {"action": action, "student_exam": student_exam.model_dump()}


def get_assigned_students(session: Session, exam_id: int, teacher_id: int) -> List[dict]:
    get_owned_exam(session, exam_id, teacher_id)
    rows = session.exec(
        select(StudentExam).where(StudentExam.exam_id == exam_id).order_by(StudentExam.id)
    ).all()
    info = _student_info(session, [se.student_id for se in rows])
    return [
        {
            **se.model_dump(),
            "status_text": status_text(se.status),
            "student": info.get(se.student_id),
        }
        for se in rows
    ]


def get_banned_students(session: Session, exam_id: int, teacher_id: int) -> List[dict]:
    get_owned_exam(session, exam_id, teacher_id)
    banned_ids = session.exec(
        select(StudentExam.student_id).where(
            StudentExam.exam_id == exam_id,
            StudentExam.status == ExamStatus.BANNED.value,
        )
    ).all()
    info = _student_info(session, banned_ids)
    return [info[sid] for sid in banned_ids if sid in info]


def get_exam_results(session: Session, exam_id: int, teacher_id: int) -> dict:
    exam = get_owned_exam(session, exam_id, teacher_id)
    rows = session.exec(
        select(Result, StudentExam)
        .join(StudentExam, StudentExam.id == Result.student_exam_id)
        .where(StudentExam.exam_id == exam_id)
        .order_by(Result.marks.desc())
    ).all()
    info = _student_info(session, [se.student_id for _, se in rows])
    return {
        "results": [
            {
                **result.model_dump(),
                "student_exam": se.model_dump(),
                "student": info.get(se.student_id),
            }
            for result, se in rows
        ],
        "total_marks": exam.total_marks,
        "passing_marks": exam.passing_marks,
    }


def _student_exam_for_teacher(
    session: Session, exam_id: int, student_id: int, teacher_id: int
) -> StudentExam:
    get_owned_exam(session, exam_id, teacher_id)
    _get_student_or_404(session, student_id)
    student_exam = session.exec(
        select(StudentExam).where(
            StudentExam.exam_id == exam_id,
            StudentExam.student_id == student_id,
        )
    ).first()
    if not student_exam:
        raise NotFoundError("Student is not assigned to this exam", {"student_id": student_id})
    return student_exam


def get_student_result(session: Session, exam_id: int, student_id: int, teacher_id: int) -> dict:
    student_exam = _student_exam_for_teacher(session, exam_id, student_id, teacher_id)
    result = session.exec(
        select(Result).where(Result.student_exam_id == student_exam.id)
    ).first()
    if not result:
        raise NotFoundError("Result not found")
    exam = get_owned_exam(session, exam_id, teacher_id)
    return {
        **result.model_dump(),
        "total_marks": exam.total_marks,
        "student_exam": student_exam.model_dump(),
        "student": _student_info(session, [student_id]).get(student_id),
    }


def get_student_answer_sheet(
    session: Session, exam_id: int, student_id: int, teacher_id: int
) -> dict:
    student_exam = _student_exam_for_teacher(session, exam_id, student_id, teacher_id)
    sheet = session.exec(
        select(AnswerSheet).where(AnswerSheet.student_exam_id == student_exam.id)
    ).first()
    if not sheet:
        raise NotFoundError("Answer sheet not found")
    return answer_sheet_payload(session, sheet)


def get_student_cheat_logs(
    session: Session, exam_id: int, student_id: int, teacher_id: int
) -> List[dict]:
    student_exam = _student_exam_for_teacher(session, exam_id, student_id, teacher_id)
    logs = session.exec(
        select(AntiCheatingLog)
        .where(AntiCheatingLog.student_exam_id == student_exam.id)
        .order_by(AntiCheatingLog.event_time.desc(), AntiCheatingLog.id.desc())
    ).all()
    return [log.model_dump() for log in logs]
