"""SQLModel models for the QuizPortal grading backend.

Every ``datetime`` field is stored through SQLModel's ``UTCDateTime`` column type:
values written must be timezone-aware and come back as aware UTC.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Index, Text, UniqueConstraint, text
from sqlmodel import Field, SQLModel

from quizportal.utils import utcnow

# GradingRecord.status
GRADING_STATUS_GRADED = "Graded"
GRADING_STATUS_REGRADED = "Regraded"

# Result.status; publication is tracked separately by Result.is_published
RESULT_STATUS_COMPLETED = "Completed"
RESULT_STATUS_GRADED = "Graded"

# ExamPublication.status
PUBLICATION_PUBLISHED = "Published"
PUBLICATION_NOT_PUBLISHED = "NotPublished"

QUESTION_TYPE_MCQ = "mcq"
QUESTION_TYPE_SUBJECTIVE = "subjective"


# ===================== GIVEN ROWS (managed outside the grading core) =====================


class User(SQLModel, table=True):
    """Application user: a teacher who owns exams or a student who answers them."""

    __table_args__ = (UniqueConstraint("email", name="uq_user_email"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str
    role: str = Field(default="student")  # "teacher", "student", "admin"
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow)


class Exam(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    created_by: int = Field(foreign_key="user.id", index=True)
    duration_minutes: int = Field(default=60)
    schedule_start: datetime
    schedule_end: datetime
    passing_percentage: float = Field(default=40.0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    # Total marks is the sum of Question.max_marks; see result_service.get_exam_total_marks


class Question(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id", index=True)
    question_text: str
    question_type: str = Field(default=QUESTION_TYPE_SUBJECTIVE)  # mcq | subjective
    max_marks: float
    # Only meaningful for MCQ questions
    correct_answer: Optional[str] = None


# ===================== GRADING CORE =====================


class StudentResponse(SQLModel, table=True):
    """A student's answer to one question of one exam."""

    __table_args__ = (
        UniqueConstraint("exam_id", "question_id", "student_id", name="uq_response_exam_question_student"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id", index=True)
    question_id: int = Field(foreign_key="question.id", index=True)
    student_id: int = Field(foreign_key="user.id", index=True)
    answer_text: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    is_correct: Optional[bool] = None  # None until evaluated
    marks_obtained: float = Field(default=0)
    submitted_at: datetime = Field(default_factory=utcnow)


class GradingRecord(SQLModel, table=True):
    """One mark assignment by a teacher.

    Records are never deleted: when a response is graded again the previous
    record flips to ``Regraded`` and the new one points back at it through
    ``regrade_from``.
    """

    __table_args__ = (
        # At most one active record per response
        Index(
            "uq_gradingrecord_active_response",
            "response_id",
            unique=True,
            sqlite_where=text("status = 'Graded'"),
            postgresql_where=text("status = 'Graded'"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    response_id: int = Field(foreign_key="studentresponse.id", index=True)
    question_id: int = Field(foreign_key="question.id", index=True)
    student_id: int = Field(foreign_key="user.id", index=True)
    graded_by_teacher_id: int = Field(foreign_key="user.id")
    marks_obtained: float
    feedback: Optional[str] = Field(default=None, sa_column=Column(Text))
    comment: Optional[str] = Field(default=None, sa_column=Column(Text))
    is_partial_credit: bool = Field(default=False)
    status: str = Field(default=GRADING_STATUS_GRADED)  # Graded | Regraded
    regrade_from: Optional[int] = Field(default=None, foreign_key="gradingrecord.id")
    regrade_reason: Optional[str] = Field(default=None, sa_column=Column(Text))
    graded_at: datetime = Field(default_factory=utcnow)
    regraded_at: Optional[datetime] = None


class Result(SQLModel, table=True):
    """A student's aggregate outcome for one exam."""

    __table_args__ = (UniqueConstraint("exam_id", "student_id", name="uq_result_exam_student"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id", index=True)
    student_id: int = Field(foreign_key="user.id", index=True)
    total_marks: float = Field(default=0)
    rank: Optional[int] = None
    percentage: float = Field(default=0)
    status: str = Field(default=RESULT_STATUS_COMPLETED)  # Completed | Graded
    is_published: bool = Field(default=False)
    published_at: Optional[datetime] = None
    evaluated_by: Optional[int] = Field(default=None, foreign_key="user.id")
    evaluated_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None


class ExamPublication(SQLModel, table=True):
    """Publication state of an exam's results; at most one row per exam."""

    __table_args__ = (UniqueConstraint("exam_id", name="uq_exampublication_exam"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id")
    status: str = Field(default=PUBLICATION_NOT_PUBLISHED)  # Published | NotPublished
    total_students: int = Field(default=0)
    graded_students: int = Field(default=0)
    passing_percentage: float = Field(default=50.0)
    published_by: Optional[int] = Field(default=None, foreign_key="user.id")
    published_at: Optional[datetime] = None
    publication_notes: Optional[str] = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
