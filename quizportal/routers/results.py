"""Result, ranking and publication endpoints."""

from typing import Optional

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel
from sqlmodel import Session

from quizportal.database import get_session
from quizportal.deps import require_exam_owner, require_student
from quizportal.models import User
from quizportal.services import grading_service, result_service

router = APIRouter()


class PublishIn(BaseModel):
    passing_percentage: Optional[float] = None
    notes: Optional[str] = None


class UnpublishIn(BaseModel):
    reason: Optional[str] = None


# --- Teacher ---


@router.get("/exams/{exam_id}/grading-progress")
def api_grading_progress(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_exam_owner),
):
    return grading_service.get_grading_progress(session, exam_id, current_user.id)


@router.get("/exams/{exam_id}/publication-status")
def api_publication_status(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_exam_owner),
):
    return grading_service.get_publication_status(session, exam_id, current_user.id)


@router.post("/exams/{exam_id}/publish")
def api_publish(
    exam_id: int,
    payload: Optional[PublishIn] = Body(None),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_exam_owner),
):
    payload = payload or PublishIn()
    return grading_service.publish(
        session,
        exam_id,
        current_user.id,
        passing_percentage=payload.passing_percentage,
        notes=payload.notes,
    )


@router.post("/exams/{exam_id}/unpublish")
def api_unpublish(
    exam_id: int,
    payload: Optional[UnpublishIn] = Body(None),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_exam_owner),
):
    reason = payload.reason if payload else None
    return grading_service.unpublish(session, exam_id, current_user.id, reason=reason)


@router.post("/exams/{exam_id}/recalculate-ranks")
def api_recalculate_ranks(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_exam_owner),
):
    return grading_service.recalculate_exam_ranks(session, exam_id, current_user.id)


@router.get("/exams/{exam_id}/all-results")
def api_exam_results(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_exam_owner),
):
    return grading_service.list_exam_results(session, exam_id, current_user.id)


@router.get("/exams/{exam_id}/pass-fail")
def api_pass_fail(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_exam_owner),
):
    return grading_service.get_pass_fail_breakdown(session, exam_id, current_user.id)


# --- Student ---


@router.get("/published")
def api_my_results(
    session: Session = Depends(get_session),
    current_user: User = Depends(require_student),
):
    return result_service.list_published_results(session, current_user.id)


@router.get("/exams/{exam_id}")
def api_my_result(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_student),
):
    return result_service.get_published_result(session, exam_id, current_user.id)


@router.get("/exams/{exam_id}/details")
def api_my_result_details(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_student),
):
    return result_service.get_published_result_details(session, exam_id, current_user.id)
