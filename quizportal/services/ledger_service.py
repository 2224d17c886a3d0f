"""Grading record ledger.

Every mark a teacher gives is a new ``GradingRecord``. The record it replaces
is kept with status ``Regraded`` so the full history of a response can be
audited through the ``regrade_from`` chain.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import func
from sqlmodel import Session, select

from quizportal.models import (
    GRADING_STATUS_GRADED,
    GRADING_STATUS_REGRADED,
    Exam,
    GradingRecord,
    Question,
    StudentResponse,
    User,
)
from quizportal.schemas import (
    GradingRecordOut,
    GradingStats,
    PendingResponseItem,
    PendingResponses,
    QuestionGradingStats,
    ResponseForGrading,
)
from quizportal.services import response_service
from quizportal.utils import sanitize_text, utcnow

logger = logging.getLogger(__name__)


def get_active_record(
    session: Session, response_id: int, for_update: bool = False
) -> Optional[GradingRecord]:
    stmt = select(GradingRecord).where(
        (GradingRecord.response_id == response_id) & (GradingRecord.status == GRADING_STATUS_GRADED)
    )
    if for_update:
        stmt = stmt.with_for_update()
    return session.exec(stmt).first()


def get_history(session: Session, response_id: int) -> List[GradingRecord]:
    """All records for a response, oldest first."""
    stmt = (
        select(GradingRecord)
        .where(GradingRecord.response_id == response_id)
        .order_by(GradingRecord.id)
    )
    return list(session.exec(stmt).all())


def graded_response_ids(session: Session, response_ids: Iterable[int]) -> Set[int]:
    """Subset of ``response_ids`` that currently have an active record."""
    ids = list(response_ids)
    if not ids:
        return set()
    stmt = select(GradingRecord.response_id).where(
        GradingRecord.response_id.in_(ids) & (GradingRecord.status == GRADING_STATUS_GRADED)
    )
    return set(session.exec(stmt).all())


def count_graded_responses(session: Session, exam_id: int) -> int:
    """Number of the exam's responses that have an active record."""
    stmt = (
        select(func.count(func.distinct(GradingRecord.response_id)))
        .select_from(GradingRecord)
        .join(StudentResponse, StudentResponse.id == GradingRecord.response_id)
        .where((StudentResponse.exam_id == exam_id) & (GradingRecord.status == GRADING_STATUS_GRADED))
    )
    return session.exec(stmt).one()


def record_grade(
    session: Session,
    response: StudentResponse,
    teacher_id: int,
    marks: float,
    feedback: Optional[str] = None,
    comment: Optional[str] = None,
    is_partial_credit: bool = False,
    regrade_reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> GradingRecord:
    """Supersede the active record (if any), sync the response and append a new record.

    The superseded record is flushed before the new one is inserted so the
    single-active-record index is never violated mid-flush.
    """
    now = now or utcnow()

    previous = get_active_record(session, response.id, for_update=True)
    if previous is not None:
        previous.status = GRADING_STATUS_REGRADED
        session.add(previous)
        session.flush()

    response.marks_obtained = marks
    response.is_correct = marks > 0
    session.add(response)

    record = GradingRecord(
        response_id=response.id,
        question_id=response.question_id,
        student_id=response.student_id,
        graded_by_teacher_id=teacher_id,
        marks_obtained=marks,
        feedback=sanitize_text(feedback),
        comment=sanitize_text(comment),
        is_partial_credit=is_partial_credit,
        status=GRADING_STATUS_GRADED,
        regrade_from=previous.id if previous is not None else None,
        regrade_reason=sanitize_text(regrade_reason),
        graded_at=now,
        regraded_at=now if previous is not None else None,
    )
    session.add(record)
    session.flush()
    return record


def to_record_out(record: GradingRecord) -> GradingRecordOut:
    return GradingRecordOut(
        grading_id=record.id,
        response_id=record.response_id,
        graded_by_teacher_id=record.graded_by_teacher_id,
        marks_obtained=record.marks_obtained,
        feedback=record.feedback,
        comment=record.comment,
        is_partial_credit=record.is_partial_credit,
        status=record.status,
        regrade_from=record.regrade_from,
        regrade_reason=record.regrade_reason,
        graded_at=record.graded_at,
        regraded_at=record.regraded_at,
    )


# --- Read models used by the grading screens ---


def build_pending_responses(
    session: Session, exam: Exam, student_id: Optional[int] = None
) -> PendingResponses:
    """Ungraded responses of an exam, optionally for one student only."""
    if student_id is None:
        responses = response_service.list_exam_responses(session, exam.id)
    else:
        responses = response_service.list_student_responses(session, exam.id, student_id)

    graded = graded_response_ids(session, (r.id for r in responses))
    pending = [r for r in responses if r.id not in graded]

    questions: Dict[int, Question] = {}
    students: Dict[int, User] = {}
    items = []
    for r in pending:
        if r.question_id not in questions:
            questions[r.question_id] = session.get(Question, r.question_id)
        if r.student_id not in students:
            students[r.student_id] = session.get(User, r.student_id)
        question = questions[r.question_id]
        student = students[r.student_id]
        items.append(
            PendingResponseItem(
                response_id=r.id,
                question_id=r.question_id,
                question_text=question.question_text if question else "Unknown",
                question_type=question.question_type if question else "Unknown",
                student_id=r.student_id,
                student_name=student.name if student else "Unknown",
                answer_text=r.answer_text,
                max_marks=question.max_marks if question else 0,
                submitted_at=r.submitted_at,
            )
        )

    logger.info("Retrieved %d pending responses for exam %d", len(items), exam.id)
    return PendingResponses(
        exam_id=exam.id,
        exam_title=exam.title,
        total_responses=len(responses),
        total_pending=len(items),
        responses=items,
    )


def build_response_for_grading(session: Session, response: StudentResponse) -> ResponseForGrading:
    question = session.get(Question, response.question_id)
    student = session.get(User, response.student_id)
    record = get_active_record(session, response.id)
    grader = session.get(User, record.graded_by_teacher_id) if record else None

    return ResponseForGrading(
        response_id=response.id,
        exam_id=response.exam_id,
        question_id=response.question_id,
        student_id=response.student_id,
        student_name=student.name if student else "Unknown",
        question_text=question.question_text if question else "Unknown",
        question_type=question.question_type if question else "Unknown",
        max_marks=question.max_marks if question else 0,
        answer_text=response.answer_text,
        submitted_at=response.submitted_at,
        is_graded=record is not None,
        current_marks=record.marks_obtained if record else None,
        feedback=record.feedback if record else None,
        graded_at=record.graded_at if record else None,
        graded_by=grader.name if grader else None,
    )


def build_grading_stats(session: Session, exam: Exam) -> GradingStats:
    questions = session.exec(
        select(Question).where(Question.exam_id == exam.id).order_by(Question.id)
    ).all()
    responses = response_service.list_exam_responses(session, exam.id)
    graded = graded_response_ids(session, (r.id for r in responses))

    question_stats = []
    for question in questions:
        q_responses = [r for r in responses if r.question_id == question.id]
        q_graded = [r for r in q_responses if r.id in graded]
        average = (
            round(sum(r.marks_obtained for r in q_graded) / len(q_graded), 2) if q_graded else 0.0
        )
        question_stats.append(
            QuestionGradingStats(
                question_id=question.id,
                question_text=question.question_text,
                max_marks=question.max_marks,
                total_responses=len(q_responses),
                graded_responses=len(q_graded),
                pending_responses=len(q_responses) - len(q_graded),
                average_marks=average,
            )
        )

    # A student counts as fully graded once every one of their responses is
    per_student: Dict[int, List[bool]] = {}
    for r in responses:
        per_student.setdefault(r.student_id, []).append(r.id in graded)
    total_students = len(per_student)
    fully_graded = sum(1 for flags in per_student.values() if all(flags))

    return GradingStats(
        exam_id=exam.id,
        exam_title=exam.title,
        total_questions=len(questions),
        total_students=total_students,
        fully_graded_students=fully_graded,
        pending_students=total_students - fully_graded,
        grading_percentage=round(fully_graded / total_students * 100, 2) if total_students else 0.0,
        questions=question_stats,
    )
