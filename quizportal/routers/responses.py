"""Student endpoints for answering and finishing an exam."""

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel
from sqlmodel import Session

from quizportal.database import get_session
from quizportal.deps import require_student
from quizportal.models import User
from quizportal.schemas import FinalizedResult, SubmissionWindow, SubmittedAnswer, WithdrawnAnswer
from quizportal.services import grading_service

router = APIRouter()


class AnswerIn(BaseModel):
    question_id: int
    answer_text: str


@router.get("/{exam_id}/can-submit", response_model=SubmissionWindow)
def api_can_submit(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_student),
):
    return SubmissionWindow(exam_id=exam_id, can_submit=grading_service.can_submit_answer(session, exam_id))


@router.post("/{exam_id}/responses", response_model=SubmittedAnswer)
def api_submit_answer(
    exam_id: int,
    payload: AnswerIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_student),
):
    response = grading_service.submit_answer(
        session, exam_id, current_user.id, payload.question_id, payload.answer_text
    )
    return SubmittedAnswer(
        response_id=response.id,
        exam_id=response.exam_id,
        question_id=response.question_id,
        submitted_at=response.submitted_at,
    )


@router.delete("/responses/{response_id}", response_model=WithdrawnAnswer)
def api_withdraw_answer(
    response_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_student),
):
    return grading_service.withdraw_answer(session, response_id, current_user.id)


@router.post("/{exam_id}/finalize", response_model=FinalizedResult)
def api_finalize(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_student),
):
    result = grading_service.finalize_submission(session, exam_id, current_user.id)
    return FinalizedResult(
        result_id=result.id,
        exam_id=result.exam_id,
        total_marks=result.total_marks,
        percentage=result.percentage,
        status=result.status,
    )
