"""Result aggregation: totals, percentages, grading status and rank per student."""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from quizportal.errors import not_found
from quizportal.models import (
    PUBLICATION_PUBLISHED,
    QUESTION_TYPE_MCQ,
    RESULT_STATUS_COMPLETED,
    RESULT_STATUS_GRADED,
    Exam,
    ExamPublication,
    Question,
    Result,
    User,
)
from quizportal.schemas import PassFailBreakdown, QuestionResultOut, ResultDetails, ResultOut
from quizportal.services import ledger_service, response_service
from quizportal.utils import percentage_of, utcnow

logger = logging.getLogger(__name__)


def exam_total_marks(session: Session, exam_id: int) -> float:
    """Sum of max marks over the exam's questions."""
    stmt = select(func.sum(Question.max_marks)).where(Question.exam_id == exam_id)
    return float(session.exec(stmt).one() or 0)


def get_exam_total_marks(session: Session, exam_id: int) -> float:
    """Display variant of ``exam_total_marks`` that reports 0 on database errors."""
    try:
        return exam_total_marks(session, exam_id)
    except SQLAlchemyError:
        logger.exception("Error getting total marks for exam %d", exam_id)
        return 0.0


def get_result(
    session: Session, exam_id: int, student_id: int, for_update: bool = False
) -> Optional[Result]:
    stmt = select(Result).where((Result.exam_id == exam_id) & (Result.student_id == student_id))
    if for_update:
        stmt = stmt.with_for_update()
    return session.exec(stmt).first()


def list_results(session: Session, exam_id: int, for_update: bool = False) -> List[Result]:
    stmt = select(Result).where(Result.exam_id == exam_id).order_by(Result.student_id)
    if for_update:
        stmt = stmt.with_for_update()
    return list(session.exec(stmt).all())


def _rank_from_totals(totals: Dict[int, float], student_id: int) -> int:
    mine = totals.get(student_id, 0.0)
    higher = sum(1 for other, total in totals.items() if other != student_id and total > mine)
    return higher + 1


def calculate_rank(session: Session, exam_id: int, student_id: int) -> int:
    """1 + number of other students whose response total is strictly higher.

    Ties share a rank and the next rank skips: totals 13, 13, 10 rank 1, 1, 3.
    """
    return _rank_from_totals(response_service.totals_by_student(session, exam_id), student_id)


def get_student_rank(session: Session, exam_id: int, student_id: int) -> int:
    """Display variant of ``calculate_rank`` that reports 0 on database errors."""
    try:
        return calculate_rank(session, exam_id, student_id)
    except SQLAlchemyError:
        logger.exception("Error calculating rank for student %d in exam %d", student_id, exam_id)
        return 0


def recalculate_student_result(
    session: Session,
    exam_id: int,
    student_id: int,
    evaluated_by: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Result:
    """Recompute one student's Result from their responses and active grades.

    Creates the row when the student has none yet; otherwise updates it in
    place. Calling it twice without an intervening grade gives the same
    totals, percentage and status.

    Only this student's rank is refreshed here. A changed total can move
    other students too, so callers follow up with ``recalculate_exam_ranks``.
    """
    now = now or utcnow()

    result = get_result(session, exam_id, student_id, for_update=True)
    if result is None:
        result = Result(
            exam_id=exam_id,
            student_id=student_id,
            status=RESULT_STATUS_COMPLETED,
            created_at=now,
        )

    responses = response_service.list_student_responses(session, exam_id, student_id)
    graded = ledger_service.graded_response_ids(session, (r.id for r in responses))
    all_graded = len(responses) > 0 and len(responses) == len(graded)

    total = sum((r.marks_obtained or 0) for r in responses)
    possible = exam_total_marks(session, exam_id)

    result.total_marks = total
    result.percentage = percentage_of(total, possible)
    result.status = RESULT_STATUS_GRADED if all_graded else RESULT_STATUS_COMPLETED
    result.rank = calculate_rank(session, exam_id, student_id)
    result.updated_at = now
    if all_graded and evaluated_by is not None:
        result.evaluated_by = evaluated_by
        result.evaluated_at = now

    session.add(result)
    session.flush()
    return result


def recalculate_exam_ranks(session: Session, exam_id: int) -> List[Result]:
    """Refresh the rank of every Result of the exam from current response totals."""
    results = list_results(session, exam_id, for_update=True)
    if not results:
        logger.warning("No results found for exam %d to recalculate ranks", exam_id)
        return results

    totals = response_service.totals_by_student(session, exam_id)
    for result in results:
        result.rank = _rank_from_totals(totals, result.student_id)
        session.add(result)
    session.flush()
    logger.info("Recalculated ranks for %d students in exam %d", len(results), exam_id)
    return results


# --- Read models ---


def effective_passing_percentage(session: Session, exam: Exam) -> float:
    """Passing threshold chosen at publication time, else the exam's default."""
    publication = session.exec(
        select(ExamPublication).where(ExamPublication.exam_id == exam.id)
    ).first()
    if publication is not None and publication.status == PUBLICATION_PUBLISHED:
        return publication.passing_percentage
    return exam.passing_percentage


def to_result_out(
    session: Session,
    result: Result,
    exam: Exam,
    passing_percentage: float,
    possible: Optional[float] = None,
) -> ResultOut:
    student = session.get(User, result.student_id)
    if possible is None:
        possible = get_exam_total_marks(session, exam.id)
    return ResultOut(
        result_id=result.id,
        exam_id=exam.id,
        exam_title=exam.title,
        student_id=result.student_id,
        student_name=student.name if student else "Unknown",
        total_marks=result.total_marks,
        exam_total_marks=possible,
        rank=result.rank,
        percentage=result.percentage,
        passing_percentage=passing_percentage,
        passed=result.percentage >= passing_percentage,
        status=result.status,
        is_published=result.is_published,
        published_at=result.published_at,
    )


def list_exam_results(session: Session, exam: Exam) -> List[ResultOut]:
    """All results of an exam, best rank first; unranked rows last."""
    passing = effective_passing_percentage(session, exam)
    possible = get_exam_total_marks(session, exam.id)
    results = sorted(
        list_results(session, exam.id),
        key=lambda r: (r.rank is None, r.rank or 0, r.student_id),
    )
    return [to_result_out(session, r, exam, passing, possible) for r in results]


def get_pass_fail_breakdown(session: Session, exam: Exam) -> PassFailBreakdown:
    passing = effective_passing_percentage(session, exam)
    results = list_results(session, exam.id)
    passed = sum(1 for r in results if r.percentage >= passing)
    total = len(results)
    return PassFailBreakdown(
        exam_id=exam.id,
        passing_percentage=passing,
        total_students=total,
        passed=passed,
        failed=total - passed,
        pass_rate=round(passed / total * 100, 2) if total else 0.0,
    )


def list_published_results(session: Session, student_id: int) -> List[ResultOut]:
    """Results a student may see: only those of published exams."""
    results = session.exec(
        select(Result)
        .where((Result.student_id == student_id) & (Result.is_published == True))  # noqa: E712
        .order_by(Result.published_at.desc())
    ).all()

    out = []
    for result in results:
        exam = session.get(Exam, result.exam_id)
        if exam is None:
            continue
        out.append(to_result_out(session, result, exam, effective_passing_percentage(session, exam)))
    logger.info("Retrieved %d published results for student %d", len(out), student_id)
    return out


def get_published_result(session: Session, exam_id: int, student_id: int) -> ResultOut:
    exam = session.get(Exam, exam_id)
    if exam is None:
        raise not_found("Exam", exam_id)
    result = get_result(session, exam_id, student_id)
    if result is None or not result.is_published:
        raise not_found("Published result for exam", exam_id)
    return to_result_out(session, result, exam, effective_passing_percentage(session, exam))


def get_published_result_details(session: Session, exam_id: int, student_id: int) -> ResultDetails:
    """Per-question breakdown of a student's published result.

    Correct answers are revealed only for MCQ questions, and only once the
    result is published.
    """
    exam = session.get(Exam, exam_id)
    if exam is None:
        raise not_found("Exam", exam_id)
    result = get_result(session, exam_id, student_id)
    if result is None or not result.is_published:
        raise not_found("Published result for exam", exam_id)

    passing = effective_passing_percentage(session, exam)
    responses = response_service.list_student_responses(session, exam_id, student_id)
    questions = []
    for response in responses:
        question = session.get(Question, response.question_id)
        is_mcq = question is not None and question.question_type == QUESTION_TYPE_MCQ
        questions.append(
            QuestionResultOut(
                question_id=response.question_id,
                question_text=question.question_text if question else "N/A",
                question_type=question.question_type if question else "Unknown",
                is_answered=bool(response.answer_text),
                is_correct=bool(response.is_correct),
                student_answer=response.answer_text,
                correct_answer=question.correct_answer if is_mcq else None,
                max_marks=question.max_marks if question else 0,
                marks_obtained=response.marks_obtained,
            )
        )

    return ResultDetails(
        result_id=result.id,
        exam_id=exam.id,
        exam_title=exam.title,
        total_marks=result.total_marks,
        exam_total_marks=get_exam_total_marks(session, exam.id),
        percentage=result.percentage,
        passing_percentage=passing,
        passed=result.percentage >= passing,
        rank=result.rank,
        status=result.status,
        total_questions=len(responses),
        correct_answers=sum(1 for r in responses if r.is_correct),
        unanswered_count=sum(1 for r in responses if not r.answer_text),
        questions=questions,
    )
