from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from examhub.auth_utils import hash_password
from examhub.constants import UserRole
from examhub.models import Enrollment, Exam, Student, Subject, SubjectTeacher, Teacher, User
from examhub.schemas import OptionIn, QuestionIn
from examhub.services import assignment_service, exam_service, question_service

# ============================================================================
# IN-MEMORY DATABASE FOR TESTING
# ============================================================================

# StaticPool keeps every connection on the same in-memory database
test_engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Every test runs against this fixed wall clock unless it passes its own
FIXED_NOW = datetime(2030, 1, 15, 10, 0, 0)

PASSWORD = "testpass123"
PASSWORD_HASH = hash_password(PASSWORD)


@pytest.fixture(scope="session", autouse=True)
def setup_test_db():
    """Create all tables in the test database once per session."""
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(autouse=True)
def cleanup_db_between_tests():
    """Clean up test data after each test."""
    yield
    with Session(test_engine) as session:
        for table in reversed(SQLModel.metadata.sorted_tables):
            session.exec(table.delete())
        session.commit()


@pytest.fixture
def engine():
    return test_engine


@pytest.fixture
def session():
    """Provide a database session for tests."""
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def now():
    return FIXED_NOW


# ============================================================================
# FASTAPI APP & TEST CLIENT
# ============================================================================

from examhub.database import get_session  # noqa: E402
from examhub.deps import get_now  # noqa: E402
from examhub.main import app  # noqa: E402


class Clock:
    """Mutable clock injected through the ``get_now`` dependency."""

    def __init__(self, now: datetime):
        self.now = now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return Clock(FIXED_NOW)


@pytest.fixture
def make_client(clock):
    """Factory for test clients; each client keeps its own session cookie."""

    def override_get_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_now] = lambda: clock.now

    clients = []

    def factory() -> TestClient:
        # Not used as a context manager so the startup hook never touches the real database
        client = TestClient(app)
        clients.append(client)
        return client

    yield factory

    for client in clients:
        client.close()
    app.dependency_overrides.clear()


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def login(make_client):
    """Return a logged-in client for the given email."""

    def _login(email: str, password: str = PASSWORD) -> TestClient:
        client = make_client()
        response = client.post("/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        return client

    return _login


# ============================================================================
# ENTITY FIXTURES
# ============================================================================


def _create_user(session: Session, name: str, email: str, role: str) -> User:
    user = User(name=name, email=email, password_hash=PASSWORD_HASH, role=role)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def _create_teacher(session: Session, name: str, email: str) -> Teacher:
    user = _create_user(session, name, email, UserRole.TEACHER.value)
    teacher = Teacher(user_id=user.id)
    session.add(teacher)
    session.commit()
    session.refresh(teacher)
    return teacher


@pytest.fixture
def teacher(session):
    """Create a teacher with a linked User account."""
    return _create_teacher(session, "Dr. Jane Teacher", "teacher@example.com")


@pytest.fixture
def other_teacher(session):
    return _create_teacher(session, "Dr. Bob Other", "other.teacher@example.com")


@pytest.fixture
def subject(session, teacher):
    """Create a subject taught by ``teacher``."""
    subject = Subject(code="SWE101", name="Software Engineering")
    session.add(subject)
    session.commit()
    session.refresh(subject)
    session.add(SubjectTeacher(subject_id=subject.id, teacher_id=teacher.id))
    session.commit()
    return subject


@pytest.fixture
def make_student(session, subject):
    """Factory for students; enrolled in ``subject`` unless told otherwise."""

    def _make(name: str, email: str, enrolled: bool = True) -> Student:
        user = _create_user(session, name, email, UserRole.STUDENT.value)
        student = Student(user_id=user.id)
        session.add(student)
        session.commit()
        session.refresh(student)
        if enrolled:
            session.add(Enrollment(subject_id=subject.id, student_id=student.id))
            session.commit()
        return student

    return _make


@pytest.fixture
def student(make_student):
    return make_student("Alice Student", "alice@example.com")


@pytest.fixture
def second_student(make_student):
    return make_student("Bob Student", "bob@example.com")


@pytest.fixture
def make_exam(session, teacher, subject):
    """Factory for draft exams owned by ``teacher``; window open around FIXED_NOW."""

    def _make(**overrides) -> Exam:
        values = dict(
            name="Midterm",
            owner_id=teacher.id,
            subject_id=subject.id,
            num_questions=2,
            total_marks=10,
            passing_marks=5,
            duration=60,
            start_date=FIXED_NOW - timedelta(hours=1),
            end_date=FIXED_NOW + timedelta(days=1),
        )
        values.update(overrides)
        exam = Exam(**values)
        session.add(exam)
        session.commit()
        session.refresh(exam)
        return exam

    return _make


def question_in(marks: float, negative_marks: float = 0, correct: int = 0, text: str = "What is 2 + 2?") -> QuestionIn:
    """Four-option question whose ``correct``-th option is the right one."""
    return QuestionIn(
        question_text=text,
        marks=marks,
        negative_marks=negative_marks,
        options=[OptionIn(text=t, is_correct=(i == correct)) for i, t in enumerate(["3", "4", "5", "22"])],
    )


@pytest.fixture
def build_question():
    return question_in


@pytest.fixture
def ready_exam(session, teacher, student, make_exam):
    """Active exam with Q1 (5 marks) and Q2 (5 marks, -2 when wrong), assigned to ``student``."""
    exam = make_exam()
    question_service.add_question(session, exam.id, teacher.id, question_in(5, text="Q1: pick 3"))
    question_service.add_question(
        session, exam.id, teacher.id, question_in(5, negative_marks=2, text="Q2: pick 3")
    )
    exam_service.update_exam_status(session, exam.id, teacher.id, True)
    assignment_service.assign_exam_to_students(session, exam.id, teacher.id, [student.id])
    session.refresh(exam)
    return exam


@pytest.fixture
def answer_key(session):
    """Map question text -> (question id, correct option id, a wrong option id)."""
    def _key(exam_id: int) -> dict:
        key = {}
        for q in exam_service.list_questions_with_options(session, exam_id):
            wrong = next(o["id"] for o in q["options"] if o["id"] != q["correct_option_id"])
            key[q["question_text"]] = (q["id"], q["correct_option_id"], wrong)
        return key

    return _key
