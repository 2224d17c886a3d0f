from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, text

from quizportal.database import get_session
from quizportal.deps import get_current_user
from quizportal.main import app
from quizportal.models import (
    QUESTION_TYPE_MCQ,
    QUESTION_TYPE_SUBJECTIVE,
    Exam,
    Question,
    StudentResponse,
    User,
)
from quizportal.utils import utcnow

# ============================================================================
# IN-MEMORY DATABASE FOR TESTING
# ============================================================================

test_engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,  # all connections share the same in-memory database
)


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

    # FK-safe order
    with Session(test_engine) as session:
        session.exec(text("DELETE FROM gradingrecord"))
        session.exec(text("DELETE FROM result"))
        session.exec(text("DELETE FROM exampublication"))
        session.exec(text("DELETE FROM studentresponse"))
        session.exec(text("DELETE FROM question"))
        session.exec(text("DELETE FROM exam"))
        session.exec(text("DELETE FROM user"))
        session.commit()


@pytest.fixture
def session():
    """Provide a database session for tests."""
    with Session(test_engine) as session:
        yield session


# ============================================================================
# ENTITY FIXTURES
# ============================================================================


def _create(obj):
    with Session(test_engine) as session:
        session.add(obj)
        session.commit()
        session.refresh(obj)
        obj_id = obj.id

    with Session(test_engine) as session:
        return session.get(type(obj), obj_id)


@pytest.fixture
def teacher():
    return _create(User(name="Dr. Teacher", email="teacher@example.com", role="teacher"))


@pytest.fixture
def other_teacher():
    return _create(User(name="Other Teacher", email="other@example.com", role="teacher"))


@pytest.fixture
def students():
    """Three students: Alice, Bob and Chong."""
    return [
        _create(User(name=name, email=f"{name.lower()}@example.com", role="student"))
        for name in ("Alice", "Bob", "Chong")
    ]


@pytest.fixture
def ended_exam(teacher):
    """Exam that finished an hour ago, with subjective questions worth 5 and 10."""
    now = utcnow()
    return _create(
        Exam(
            title="Software Design Final",
            created_by=teacher.id,
            schedule_start=now - timedelta(hours=3),
            schedule_end=now - timedelta(hours=1),
            passing_percentage=40.0,
        )
    )


@pytest.fixture
def questions(ended_exam):
    return [
        _create(
            Question(
                exam_id=ended_exam.id,
                question_text="Explain the open/closed principle.",
                question_type=QUESTION_TYPE_SUBJECTIVE,
                max_marks=5,
            )
        ),
        _create(
            Question(
                exam_id=ended_exam.id,
                question_text="Design a plugin system and justify it.",
                question_type=QUESTION_TYPE_SUBJECTIVE,
                max_marks=10,
            )
        ),
    ]


@pytest.fixture
def open_exam(teacher):
    """Exam running right now with one MCQ and one subjective question."""
    now = utcnow()
    exam = _create(
        Exam(
            title="Python Basics Quiz",
            created_by=teacher.id,
            schedule_start=now - timedelta(hours=1),
            schedule_end=now + timedelta(hours=1),
        )
    )
    _create(
        Question(
            exam_id=exam.id,
            question_text="Which keyword defines a function?",
            question_type=QUESTION_TYPE_MCQ,
            max_marks=2,
            correct_answer="def",
        )
    )
    _create(
        Question(
            exam_id=exam.id,
            question_text="Describe list comprehensions.",
            question_type=QUESTION_TYPE_SUBJECTIVE,
            max_marks=8,
        )
    )
    return exam


@pytest.fixture
def make_response():
    """Factory that stores a submitted answer directly, bypassing the schedule window."""

    def _make(question, student, answer_text="My answer"):
        return _create(
            StudentResponse(
                exam_id=question.exam_id,
                question_id=question.id,
                student_id=student.id,
                answer_text=answer_text,
            )
        )

    return _make


# ============================================================================
# FASTAPI APP & TEST CLIENT
# ============================================================================


@pytest.fixture
def client():
    """TestClient bound to the in-memory database.

    ``client.login_as(user)`` switches the user returned by ``get_current_user``.
    """

    def override_get_session():
        with Session(test_engine) as session:
            yield session

    current = {"user": None}

    def override_get_current_user():
        return current["user"]

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_current_user] = override_get_current_user

    test_client = TestClient(app)
    test_client.login_as = lambda user: current.update(user=user)

    yield test_client

    app.dependency_overrides.clear()
