"""Grading workflow: the operations teachers and students call.

Every function here checks who is calling and whether the exam is in the
right window, then composes the response store, ledger, result aggregator and
publication gatekeeper inside one ``unit_of_work``. Nothing below this module
commits or rolls back.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from quizportal.config import settings
from quizportal.database import unit_of_work
from quizportal.errors import (
    GradingError,
    InvalidStateError,
    UnauthorizedError,
    ValidationError,
    not_found,
)
from quizportal.models import Exam, Question, Result, StudentResponse, User
from quizportal.schemas import (
    BatchGradeOutcome,
    GradeOutcome,
    GradingProgress,
    GradingRecordOut,
    GradingStats,
    PassFailBreakdown,
    PendingResponses,
    PublicationResult,
    PublicationStatus,
    ResponseForGrading,
    ResultOut,
    UnpublishResult,
    WithdrawnAnswer,
)
from quizportal.services import (
    ledger_service,
    publication_service,
    response_service,
    result_service,
)
from quizportal.utils import utcnow, validate_marks

logger = logging.getLogger(__name__)


# ===================== GUARDS =====================


def _get_exam(session: Session, exam_id: int, lock: bool = False) -> Exam:
    """Load the exam; with ``lock`` the row is held FOR UPDATE until commit.

    Every mutating workflow locks the exam first, so grading, submission and
    (un)publication of one exam serialize even before its publication row
    exists.
    """
    if lock:
        exam = session.exec(select(Exam).where(Exam.id == exam_id).with_for_update()).first()
    else:
        exam = session.get(Exam, exam_id)
    if exam is None:
        raise not_found("Exam", exam_id)
    return exam


def _get_response(session: Session, response_id: int) -> StudentResponse:
    response = response_service.get_response(session, response_id)
    if response is None:
        raise not_found("Response", response_id)
    return response


def _require_owner(exam: Exam, teacher_id: int, action: str) -> None:
    if exam.created_by != teacher_id:
        logger.warning("Teacher %d attempted to %s exam %d they don't own", teacher_id, action, exam.id)
        raise UnauthorizedError(f"You can only {action} your own exams")


def _require_ended(exam: Exam, now: datetime) -> None:
    if now < exam.schedule_end:
        raise InvalidStateError(
            f"Exam has not ended yet. Grading will be available after "
            f"{exam.schedule_end:%Y-%m-%d %H:%M:%S} UTC"
        )


def _require_not_published(session: Session, exam_id: int) -> None:
    if publication_service.is_exam_published(session, exam_id, for_update=True):
        raise InvalidStateError(
            "Cannot change marks for a published exam. Please unpublish the exam first to make changes."
        )


def _check_marks(marks: float, question: Optional[Question]) -> None:
    if question is None:
        raise not_found("Question")
    try:
        validate_marks(marks, question.max_marks)
    except ValueError as e:
        raise ValidationError(f"Question {question.id}: {e}")


def _outcome(response: StudentResponse, record, result: Result) -> GradeOutcome:
    return GradeOutcome(
        response_id=response.id,
        grading_id=record.id,
        student_id=response.student_id,
        marks_obtained=record.marks_obtained,
        regrade_from=record.regrade_from,
        total_marks=result.total_marks,
        percentage=result.percentage,
        result_status=result.status,
    )


# ===================== GRADING =====================


def grade_single(
    session: Session,
    response_id: int,
    teacher_id: int,
    marks: float,
    feedback: Optional[str] = None,
    comment: Optional[str] = None,
    is_partial_credit: bool = False,
    now: Optional[datetime] = None,
) -> GradeOutcome:
    """Grade one response and refresh the student's result.

    A previous active grade, if any, is superseded rather than deleted.

    Raises:
        NotFoundError: response does not exist
        UnauthorizedError: teacher does not own the exam
        InvalidStateError: exam not ended yet, or already published
        ValidationError: marks outside [0, question max]
    """
    now = now or utcnow()
    try:
        with unit_of_work(session):
            response = _get_response(session, response_id)
            exam = _get_exam(session, response.exam_id, lock=True)
            _require_owner(exam, teacher_id, "grade responses for")
            _require_ended(exam, now)
            _require_not_published(session, exam.id)
            _check_marks(marks, session.get(Question, response.question_id))

            record = ledger_service.record_grade(
                session,
                response,
                teacher_id,
                marks,
                feedback=feedback,
                comment=comment,
                is_partial_credit=is_partial_credit,
                now=now,
            )
            result = result_service.recalculate_student_result(
                session, exam.id, response.student_id, evaluated_by=teacher_id, now=now
            )
            result_service.recalculate_exam_ranks(session, exam.id)
            outcome = _outcome(response, record, result)
    except GradingError as e:
        logger.warning("Grading response %d rejected: %s", response_id, e.message)
        raise

    logger.info("Response %d graded by teacher %d with %s marks", response_id, teacher_id, marks)
    return outcome


def grade_batch(
    session: Session,
    teacher_id: int,
    exam_id: int,
    question_id: int,
    items: Sequence[Dict],
    now: Optional[datetime] = None,
) -> BatchGradeOutcome:
    """Grade many responses to one question in a single transaction.

    Each item is a dict with ``response_id`` and ``marks`` and optional
    ``feedback``/``comment``. One bad item aborts the whole batch. Results are
    recomputed once per affected student after every item is staged.
    """
    now = now or utcnow()
    try:
        with unit_of_work(session):
            exam = _get_exam(session, exam_id, lock=True)
            _require_owner(exam, teacher_id, "grade responses for")
            _require_ended(exam, now)
            _require_not_published(session, exam.id)

            question = session.get(Question, question_id)
            if question is None or question.exam_id != exam.id:
                raise not_found("Question", question_id)
            if not items:
                raise ValidationError("At least one response must be provided")

            grading_ids: List[int] = []
            students: List[int] = []
            for item in items:
                response_id = item.get("response_id")
                marks = item.get("marks")
                if response_id is None or marks is None:
                    raise ValidationError("Each batch item needs a response_id and marks")

                response = _get_response(session, response_id)
                if response.exam_id != exam.id or response.question_id != question.id:
                    raise ValidationError(
                        f"Response {response_id} does not belong to question {question.id} of exam {exam.id}"
                    )
                _check_marks(marks, question)

                record = ledger_service.record_grade(
                    session,
                    response,
                    teacher_id,
                    marks,
                    feedback=item.get("feedback"),
                    comment=item.get("comment"),
                    is_partial_credit=bool(item.get("is_partial_credit", False)),
                    now=now,
                )
                grading_ids.append(record.id)
                if response.student_id not in students:
                    students.append(response.student_id)

            for student_id in students:
                result_service.recalculate_student_result(
                    session, exam.id, student_id, evaluated_by=teacher_id, now=now
                )
            result_service.recalculate_exam_ranks(session, exam.id)
    except GradingError as e:
        logger.warning("Batch grading for exam %d question %d rejected: %s", exam_id, question_id, e.message)
        raise

    logger.info(
        "Batch graded %d responses for question %d in exam %d by teacher %d",
        len(grading_ids), question_id, exam_id, teacher_id,
    )
    return BatchGradeOutcome(
        exam_id=exam_id,
        question_id=question_id,
        graded_count=len(grading_ids),
        students_affected=len(students),
        grading_ids=grading_ids,
    )


def regrade(
    session: Session,
    response_id: int,
    teacher_id: int,
    new_marks: float,
    reason: str,
    new_feedback: Optional[str] = None,
    comment: Optional[str] = None,
    now: Optional[datetime] = None,
) -> GradeOutcome:
    """Correct an existing grade, keeping the old record linked for audit."""
    now = now or utcnow()
    try:
        with unit_of_work(session):
            response = _get_response(session, response_id)
            exam = _get_exam(session, response.exam_id, lock=True)
            _require_owner(exam, teacher_id, "regrade responses for")
            _require_ended(exam, now)
            _require_not_published(session, exam.id)

            previous = ledger_service.get_active_record(session, response.id)
            if previous is None:
                raise InvalidStateError("No grading record found to regrade")
            if not reason or not reason.strip():
                raise ValidationError("Reason for regrading is required")
            _check_marks(new_marks, session.get(Question, response.question_id))
            old_marks = previous.marks_obtained

            record = ledger_service.record_grade(
                session,
                response,
                teacher_id,
                new_marks,
                feedback=new_feedback,
                comment=comment,
                regrade_reason=reason,
                now=now,
            )
            result = result_service.recalculate_student_result(
                session, exam.id, response.student_id, evaluated_by=teacher_id, now=now
            )
            result_service.recalculate_exam_ranks(session, exam.id)
            outcome = _outcome(response, record, result)
    except GradingError as e:
        logger.warning("Regrading response %d rejected: %s", response_id, e.message)
        raise

    logger.info(
        "Response %d regraded by teacher %d. Old marks: %s, New marks: %s",
        response_id, teacher_id, old_marks, new_marks,
    )
    return outcome


# ===================== PUBLICATION =====================


def publish(
    session: Session,
    exam_id: int,
    teacher_id: int,
    passing_percentage: Optional[float] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PublicationResult:
    """Publish an exam's results once every response is graded."""
    if passing_percentage is None:
        passing_percentage = settings.default_passing_percentage
    try:
        with unit_of_work(session):
            exam = _get_exam(session, exam_id, lock=True)
            _require_owner(exam, teacher_id, "publish results for")
            outcome = publication_service.stage_publish(
                session, exam, teacher_id, passing_percentage, notes=notes, now=now
            )
    except GradingError as e:
        logger.warning("Publishing exam %d rejected: %s", exam_id, e.message)
        raise

    logger.info(
        "Published exam %d with %d results by teacher %d",
        exam_id, outcome.results_published, teacher_id,
    )
    return outcome


def unpublish(
    session: Session,
    exam_id: int,
    teacher_id: int,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> UnpublishResult:
    try:
        with unit_of_work(session):
            exam = _get_exam(session, exam_id, lock=True)
            _require_owner(exam, teacher_id, "unpublish")
            outcome = publication_service.stage_unpublish(session, exam, reason=reason, now=now)
    except GradingError as e:
        logger.warning("Unpublishing exam %d rejected: %s", exam_id, e.message)
        raise

    logger.info("Unpublished exam %d by teacher %d", exam_id, teacher_id)
    return outcome


def recalculate_exam_ranks(session: Session, exam_id: int, teacher_id: int) -> List[ResultOut]:
    with unit_of_work(session):
        exam = _get_exam(session, exam_id, lock=True)
        _require_owner(exam, teacher_id, "recalculate ranks for")
        result_service.recalculate_exam_ranks(session, exam.id)
    return result_service.list_exam_results(session, exam)


# ===================== SUBMISSION =====================


def submit_answer(
    session: Session,
    exam_id: int,
    student_id: int,
    question_id: int,
    answer_text: str,
    now: Optional[datetime] = None,
) -> StudentResponse:
    """Save (or resubmit) a student's answer while the exam is running."""
    now = now or utcnow()
    with unit_of_work(session):
        exam = _get_exam(session, exam_id, lock=True)
        if now < exam.schedule_start or now > exam.schedule_end:
            raise InvalidStateError("Exam is not active")
        if publication_service.is_exam_published(session, exam.id):
            raise InvalidStateError("This exam has been published and no further submissions are allowed")

        question = session.get(Question, question_id)
        if question is None:
            raise not_found("Question", question_id)
        if question.exam_id != exam.id:
            raise ValidationError("Question does not belong to this exam")
        if session.get(User, student_id) is None:
            raise not_found("Student", student_id)

        response = response_service.stage_answer(session, question, student_id, answer_text, now=now)

    logger.info("Response submitted by student %d for question %d in exam %d", student_id, question_id, exam_id)
    return response


def finalize_submission(
    session: Session, exam_id: int, student_id: int, now: Optional[datetime] = None
) -> Result:
    """Close a student's attempt: their Result row starts as ``Completed``."""
    now = now or utcnow()
    with unit_of_work(session):
        exam = _get_exam(session, exam_id, lock=True)
        if now < exam.schedule_start:
            raise InvalidStateError("Exam has not started yet")
        if publication_service.is_exam_published(session, exam.id):
            raise InvalidStateError("This exam has been published and no further submissions are allowed")
        if not response_service.list_student_responses(session, exam.id, student_id):
            raise InvalidStateError("No responses submitted for this exam")

        result = result_service.recalculate_student_result(session, exam.id, student_id, now=now)
        result_service.recalculate_exam_ranks(session, exam.id)

    logger.info("Student %d finalized exam %d", student_id, exam_id)
    return result


def withdraw_answer(
    session: Session, response_id: int, student_id: int, now: Optional[datetime] = None
) -> WithdrawnAnswer:
    """Delete one of the student's own answers while the exam is still running."""
    now = now or utcnow()
    try:
        with unit_of_work(session):
            response = _get_response(session, response_id)
            if response.student_id != student_id:
                raise UnauthorizedError("You can only withdraw your own responses")
            exam = _get_exam(session, response.exam_id, lock=True)
            if now > exam.schedule_end:
                raise InvalidStateError("Cannot withdraw response after exam ends")
            if publication_service.is_exam_published(session, exam.id):
                raise InvalidStateError("This exam has been published and responses can no longer be withdrawn")
            if ledger_service.get_active_record(session, response.id) is not None:
                raise InvalidStateError("Cannot withdraw a response that has already been graded")

            outcome = WithdrawnAnswer(
                response_id=response.id,
                exam_id=exam.id,
                question_id=response.question_id,
                withdrawn_at=now,
            )
            response_service.stage_withdraw(session, response)

            # A finalized attempt keeps its Result in step with the remaining answers
            if result_service.get_result(session, exam.id, student_id) is not None:
                result_service.recalculate_student_result(session, exam.id, student_id, now=now)
                result_service.recalculate_exam_ranks(session, exam.id)
    except GradingError as e:
        logger.warning("Withdrawing response %d rejected: %s", response_id, e.message)
        raise

    logger.info("Response %d withdrawn by student %d", response_id, student_id)
    return outcome


def can_submit_answer(session: Session, exam_id: int, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    try:
        exam = session.get(Exam, exam_id)
        if exam is None:
            return False
        active = exam.schedule_start <= now <= exam.schedule_end
        return active and not publication_service.is_exam_published(session, exam_id)
    except SQLAlchemyError:
        logger.exception("Error checking submission eligibility for exam %d", exam_id)
        return False


# ===================== TEACHER READ MODELS =====================


def get_grading_progress(session: Session, exam_id: int, teacher_id: int) -> GradingProgress:
    exam = _get_exam(session, exam_id)
    _require_owner(exam, teacher_id, "view progress for")
    return publication_service.build_grading_progress(session, exam)


def get_publication_status(session: Session, exam_id: int, teacher_id: int) -> PublicationStatus:
    exam = _get_exam(session, exam_id)
    _require_owner(exam, teacher_id, "view publication status for")
    return publication_service.build_publication_status(session, exam)


def list_pending_responses(
    session: Session,
    exam_id: int,
    teacher_id: int,
    student_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> PendingResponses:
    exam = _get_exam(session, exam_id)
    _require_owner(exam, teacher_id, "view responses for")
    _require_ended(exam, now or utcnow())
    if student_id is not None and session.get(User, student_id) is None:
        raise not_found("Student", student_id)
    return ledger_service.build_pending_responses(session, exam, student_id=student_id)


def get_response_for_grading(session: Session, response_id: int, teacher_id: int) -> ResponseForGrading:
    response = _get_response(session, response_id)
    exam = _get_exam(session, response.exam_id)
    _require_owner(exam, teacher_id, "grade responses for")
    return ledger_service.build_response_for_grading(session, response)


def get_grading_history(session: Session, response_id: int, teacher_id: int) -> List[GradingRecordOut]:
    response = _get_response(session, response_id)
    exam = _get_exam(session, response.exam_id)
    _require_owner(exam, teacher_id, "view grading history for")
    return [ledger_service.to_record_out(r) for r in ledger_service.get_history(session, response.id)]


def get_grading_stats(session: Session, exam_id: int, teacher_id: int) -> GradingStats:
    exam = _get_exam(session, exam_id)
    _require_owner(exam, teacher_id, "view statistics for")
    return ledger_service.build_grading_stats(session, exam)


def list_exam_results(session: Session, exam_id: int, teacher_id: int) -> List[ResultOut]:
    exam = _get_exam(session, exam_id)
    _require_owner(exam, teacher_id, "view results for")
    return result_service.list_exam_results(session, exam)


def get_pass_fail_breakdown(session: Session, exam_id: int, teacher_id: int) -> PassFailBreakdown:
    exam = _get_exam(session, exam_id)
    _require_owner(exam, teacher_id, "view results for")
    return result_service.get_pass_fail_breakdown(session, exam)
