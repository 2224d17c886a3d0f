"""Response store: student answers keyed by (exam, question, student).

Functions here only stage changes on the session; committing is left to the
workflow functions in ``grading_service``.
"""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from quizportal.models import QUESTION_TYPE_MCQ, Question, StudentResponse
from quizportal.utils import utcnow

logger = logging.getLogger(__name__)


def get_response(session: Session, response_id: int) -> Optional[StudentResponse]:
    return session.get(StudentResponse, response_id)


def find_response(
    session: Session, exam_id: int, question_id: int, student_id: int
) -> Optional[StudentResponse]:
    stmt = select(StudentResponse).where(
        (StudentResponse.exam_id == exam_id)
        & (StudentResponse.question_id == question_id)
        & (StudentResponse.student_id == student_id)
    )
    return session.exec(stmt).first()


def list_exam_responses(session: Session, exam_id: int) -> List[StudentResponse]:
    stmt = (
        select(StudentResponse)
        .where(StudentResponse.exam_id == exam_id)
        .order_by(StudentResponse.student_id, StudentResponse.question_id)
    )
    return list(session.exec(stmt).all())


def list_student_responses(session: Session, exam_id: int, student_id: int) -> List[StudentResponse]:
    stmt = (
        select(StudentResponse)
        .where((StudentResponse.exam_id == exam_id) & (StudentResponse.student_id == student_id))
        .order_by(StudentResponse.question_id)
    )
    return list(session.exec(stmt).all())


def count_exam_responses(session: Session, exam_id: int) -> int:
    stmt = select(func.count(StudentResponse.id)).where(StudentResponse.exam_id == exam_id)
    return session.exec(stmt).one()


def students_with_responses(session: Session, exam_id: int) -> List[int]:
    """Distinct ids of students who answered at least one question of the exam."""
    stmt = (
        select(StudentResponse.student_id)
        .where(StudentResponse.exam_id == exam_id)
        .distinct()
        .order_by(StudentResponse.student_id)
    )
    return list(session.exec(stmt).all())


def totals_by_student(session: Session, exam_id: int) -> Dict[int, float]:
    """Map student id -> sum of marks over that student's responses."""
    totals: Dict[int, float] = defaultdict(float)
    for response in list_exam_responses(session, exam_id):
        totals[response.student_id] += response.marks_obtained or 0
    return dict(totals)


def stage_answer(
    session: Session,
    question: Question,
    student_id: int,
    answer_text: str,
    now: Optional[datetime] = None,
) -> StudentResponse:
    """Insert or update the student's answer to ``question``.

    The answer is stored as typed, trimmed of surrounding whitespace. MCQ
    answers are marked straight away against the stored correct answer;
    subjective answers wait for a teacher.
    """
    now = now or utcnow()
    text = (answer_text or "").strip()

    response = find_response(session, question.exam_id, question.id, student_id)
    if response is None:
        response = StudentResponse(
            exam_id=question.exam_id,
            question_id=question.id,
            student_id=student_id,
            answer_text=text,
            is_correct=None,
            marks_obtained=0,
            submitted_at=now,
        )
    else:
        response.answer_text = text
        response.submitted_at = now

    if question.question_type == QUESTION_TYPE_MCQ and question.correct_answer is not None:
        correct = text.lower() == question.correct_answer.strip().lower()
        response.is_correct = correct
        response.marks_obtained = question.max_marks if correct else 0

    session.add(response)
    session.flush()
    return response


def stage_withdraw(session: Session, response: StudentResponse) -> None:
    """Delete an ungraded response; the caller has already checked the exam window."""
    session.delete(response)
    session.flush()
