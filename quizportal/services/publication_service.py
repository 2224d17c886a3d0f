"""Publication gatekeeper.

An exam's results become visible to students only through ``stage_publish``,
which refuses while any response lacks an active grade. ``stage_unpublish``
hides them again and is the only way to reopen grading on a published exam.
"""

import logging
from datetime import datetime
from typing import Optional, Tuple

from sqlmodel import Session, select

from quizportal.errors import InvalidStateError, PendingGradingError, ValidationError
from quizportal.models import (
    PUBLICATION_NOT_PUBLISHED,
    PUBLICATION_PUBLISHED,
    RESULT_STATUS_GRADED,
    Exam,
    ExamPublication,
    User,
)
from quizportal.schemas import GradingProgress, PublicationResult, PublicationStatus, UnpublishResult
from quizportal.services import ledger_service, response_service, result_service
from quizportal.utils import sanitize_text, utcnow, validate_percentage

logger = logging.getLogger(__name__)


def get_publication(
    session: Session, exam_id: int, for_update: bool = False
) -> Optional[ExamPublication]:
    stmt = select(ExamPublication).where(ExamPublication.exam_id == exam_id)
    if for_update:
        stmt = stmt.with_for_update()
    return session.exec(stmt).first()


def is_exam_published(session: Session, exam_id: int, for_update: bool = False) -> bool:
    publication = get_publication(session, exam_id, for_update=for_update)
    return publication is not None and publication.status == PUBLICATION_PUBLISHED


def grading_counts(session: Session, exam_id: int) -> Tuple[int, int]:
    """(total responses, responses with an active grade) for the exam."""
    total = response_service.count_exam_responses(session, exam_id)
    graded = ledger_service.count_graded_responses(session, exam_id) if total else 0
    return total, graded


def are_all_responses_graded(session: Session, exam_id: int) -> bool:
    """True when the exam has responses and every one of them is graded.

    An exam nobody answered is never considered fully graded.
    """
    total, graded = grading_counts(session, exam_id)
    if total == 0:
        return False
    all_graded = total == graded
    logger.info("Exam %d: %d/%d responses graded. All graded: %s", exam_id, graded, total, all_graded)
    return all_graded


def stage_publish(
    session: Session,
    exam: Exam,
    teacher_id: int,
    passing_percentage: float,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PublicationResult:
    """Check the publication gate, then mark every result of the exam as published.

    All checks run before any row is touched, so a refused publication leaves
    results and the publication row exactly as they were.
    """
    now = now or utcnow()

    publication = get_publication(session, exam.id, for_update=True)
    if publication is not None and publication.status == PUBLICATION_PUBLISHED:
        raise InvalidStateError("This exam has already been published")

    try:
        validate_percentage(passing_percentage)
    except ValueError as e:
        raise ValidationError(str(e))

    students = response_service.students_with_responses(session, exam.id)
    if not students:
        raise InvalidStateError("No student responses found for this exam")

    total, graded = grading_counts(session, exam.id)
    if total != graded:
        raise PendingGradingError(pending=total - graded, total=total)

    # Creates the rows of students who never finalized, and refreshes totals
    # and ranks of everyone else now that every mark is final.
    for student_id in students:
        result_service.recalculate_student_result(session, exam.id, student_id, now=now)

    results = result_service.recalculate_exam_ranks(session, exam.id)
    passed = 0
    for result in results:
        result.status = RESULT_STATUS_GRADED
        result.is_published = True
        result.published_at = now
        result.updated_at = now
        session.add(result)
        if result.percentage >= passing_percentage:
            passed += 1

    if publication is None:
        publication = ExamPublication(exam_id=exam.id, created_at=now)
    else:
        publication.updated_at = now
    publication.status = PUBLICATION_PUBLISHED
    publication.total_students = len(results)
    publication.graded_students = len(results)
    publication.passing_percentage = passing_percentage
    publication.published_by = teacher_id
    publication.published_at = now
    publication.publication_notes = sanitize_text(notes)
    session.add(publication)
    session.flush()

    return PublicationResult(
        exam_id=exam.id,
        exam_title=exam.title,
        total_students=len(results),
        graded_students=len(results),
        passing_percentage=passing_percentage,
        published_by=teacher_id,
        published_at=now,
        results_published=len(results),
        passed_count=passed,
        failed_count=len(results) - passed,
        message=f"Exam published successfully. {len(results)} results are now visible to students.",
    )


def stage_unpublish(
    session: Session,
    exam: Exam,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> UnpublishResult:
    """Hide the exam's results again; marks, ranks and grading history stay."""
    now = now or utcnow()

    publication = get_publication(session, exam.id, for_update=True)
    if publication is None or publication.status != PUBLICATION_PUBLISHED:
        raise InvalidStateError("This exam is not published")

    results = result_service.list_results(session, exam.id, for_update=True)
    for result in results:
        result.is_published = False
        session.add(result)

    reason = sanitize_text(reason)
    publication.status = PUBLICATION_NOT_PUBLISHED
    publication.published_at = None
    publication.published_by = None
    publication.publication_notes = reason
    publication.updated_at = now
    session.add(publication)
    session.flush()

    return UnpublishResult(
        exam_id=exam.id,
        exam_title=exam.title,
        results_unpublished=len(results),
        unpublished_at=now,
        reason=reason,
        message="Exam unpublished successfully. Results are no longer visible to students.",
    )


def build_grading_progress(session: Session, exam: Exam) -> GradingProgress:
    """Student-level progress: a student is graded once all their responses are."""
    responses = response_service.list_exam_responses(session, exam.id)
    graded = ledger_service.graded_response_ids(session, (r.id for r in responses))

    pending_students = {r.student_id for r in responses if r.id not in graded}
    total_students = len({r.student_id for r in responses})
    graded_students = total_students - len(pending_students)

    return GradingProgress(
        exam_id=exam.id,
        exam_title=exam.title,
        total_students=total_students,
        graded_students=graded_students,
        pending_students=len(pending_students),
        percentage=round(graded_students * 100 / total_students, 2) if total_students else 0.0,
        all_graded=total_students > 0 and not pending_students,
    )


def build_publication_status(session: Session, exam: Exam) -> PublicationStatus:
    publication = get_publication(session, exam.id)
    if publication is None:
        return PublicationStatus(
            exam_id=exam.id,
            exam_title=exam.title,
            is_published=False,
            grading_progress=build_grading_progress(session, exam),
        )

    publisher = session.get(User, publication.published_by) if publication.published_by else None
    return PublicationStatus(
        exam_id=exam.id,
        exam_title=exam.title,
        is_published=publication.status == PUBLICATION_PUBLISHED,
        publication_id=publication.id,
        status=publication.status,
        total_students=publication.total_students,
        graded_students=publication.graded_students,
        passing_percentage=publication.passing_percentage,
        published_by=publisher.name if publisher else None,
        published_at=publication.published_at,
        publication_notes=publication.publication_notes,
        created_at=publication.created_at,
        updated_at=publication.updated_at,
    )
