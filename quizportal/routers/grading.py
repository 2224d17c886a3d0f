"""Teacher endpoints for grading student responses."""

from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel
from sqlmodel import Session

from quizportal.database import get_session
from quizportal.deps import require_exam_owner, require_teacher
from quizportal.models import User
from quizportal.services import grading_service

router = APIRouter()


# --- Request schemas ---


class GradeIn(BaseModel):
    marks: float
    feedback: Optional[str] = None
    comment: Optional[str] = None
    is_partial_credit: bool = False


class BatchItemIn(BaseModel):
    response_id: int
    marks: float
    feedback: Optional[str] = None
    comment: Optional[str] = None


class BatchGradeIn(BaseModel):
    exam_id: int
    question_id: int
    items: List[BatchItemIn]


class RegradeIn(BaseModel):
    new_marks: float
    reason: str
    new_feedback: Optional[str] = None
    comment: Optional[str] = None


# --- Read ---


@router.get("/exams/{exam_id}/pending")
def api_pending_responses(
    exam_id: int,
    student_id: Optional[int] = Query(None),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_exam_owner),
):
    return grading_service.list_pending_responses(
        session, exam_id, current_user.id, student_id=student_id
    )


@router.get("/responses/{response_id}")
def api_response_for_grading(
    response_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_teacher),
):
    return grading_service.get_response_for_grading(session, response_id, current_user.id)


@router.get("/responses/{response_id}/history")
def api_grading_history(
    response_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_teacher),
):
    return grading_service.get_grading_history(session, response_id, current_user.id)


@router.get("/exams/{exam_id}/statistics")
def api_grading_stats(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_exam_owner),
):
    return grading_service.get_grading_stats(session, exam_id, current_user.id)


# --- Grade ---


@router.post("/responses/{response_id}/grade")
def api_grade_response(
    response_id: int,
    payload: GradeIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_teacher),
):
    return grading_service.grade_single(
        session,
        response_id,
        current_user.id,
        payload.marks,
        feedback=payload.feedback,
        comment=payload.comment,
        is_partial_credit=payload.is_partial_credit,
    )


@router.post("/batch")
def api_grade_batch(
    payload: BatchGradeIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_teacher),
):
    return grading_service.grade_batch(
        session,
        current_user.id,
        payload.exam_id,
        payload.question_id,
        [item.model_dump() for item in payload.items],
    )


@router.post("/responses/{response_id}/regrade")
def api_regrade_response(
    response_id: int,
    payload: RegradeIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_teacher),
):
    return grading_service.regrade(
        session,
        response_id,
        current_user.id,
        payload.new_marks,
        payload.reason,
        new_feedback=payload.new_feedback,
        comment=payload.comment,
    )
