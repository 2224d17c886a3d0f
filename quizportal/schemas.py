"""Fixed-shape DTOs returned by the grading, result and publication services."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class GradeOutcome(BaseModel):
    response_id: int
    grading_id: int
    student_id: int
    marks_obtained: float
    regrade_from: Optional[int] = None
    total_marks: float
    percentage: float
    result_status: str


class BatchGradeOutcome(BaseModel):
    exam_id: int
    question_id: int
    graded_count: int
    students_affected: int
    grading_ids: List[int]


class GradingRecordOut(BaseModel):
    grading_id: int
    response_id: int
    graded_by_teacher_id: int
    marks_obtained: float
    feedback: Optional[str] = None
    comment: Optional[str] = None
    is_partial_credit: bool
    status: str
    regrade_from: Optional[int] = None
    regrade_reason: Optional[str] = None
    graded_at: datetime
    regraded_at: Optional[datetime] = None


class PendingResponseItem(BaseModel):
    response_id: int
    question_id: int
    question_text: str
    question_type: str
    student_id: int
    student_name: str
    answer_text: str
    max_marks: float
    submitted_at: datetime


class PendingResponses(BaseModel):
    exam_id: int
    exam_title: str
    total_responses: int
    total_pending: int
    responses: List[PendingResponseItem]


class ResponseForGrading(BaseModel):
    response_id: int
    exam_id: int
    question_id: int
    student_id: int
    student_name: str
    question_text: str
    question_type: str
    max_marks: float
    answer_text: str
    submitted_at: datetime
    is_graded: bool
    current_marks: Optional[float] = None
    feedback: Optional[str] = None
    graded_at: Optional[datetime] = None
    graded_by: Optional[str] = None


class QuestionGradingStats(BaseModel):
    question_id: int
    question_text: str
    max_marks: float
    total_responses: int
    graded_responses: int
    pending_responses: int
    average_marks: float


class GradingStats(BaseModel):
    exam_id: int
    exam_title: str
    total_questions: int
    total_students: int
    fully_graded_students: int
    pending_students: int
    grading_percentage: float
    questions: List[QuestionGradingStats]


class GradingProgress(BaseModel):
    exam_id: int
    exam_title: str
    total_students: int
    graded_students: int
    pending_students: int
    percentage: float
    all_graded: bool


class PublicationResult(BaseModel):
    exam_id: int
    exam_title: str
    total_students: int
    graded_students: int
    passing_percentage: float
    published_by: int
    published_at: datetime
    results_published: int
    passed_count: int
    failed_count: int
    message: str


class UnpublishResult(BaseModel):
    exam_id: int
    exam_title: str
    results_unpublished: int
    unpublished_at: datetime
    reason: Optional[str] = None
    message: str


class PublicationStatus(BaseModel):
    exam_id: int
    exam_title: str
    is_published: bool
    publication_id: Optional[int] = None
    status: Optional[str] = None
    total_students: Optional[int] = None
    graded_students: Optional[int] = None
    passing_percentage: Optional[float] = None
    published_by: Optional[str] = None
    published_at: Optional[datetime] = None
    publication_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # Only filled while no publication row exists yet
    grading_progress: Optional[GradingProgress] = None


class ResultOut(BaseModel):
    result_id: int
    exam_id: int
    exam_title: str
    student_id: int
    student_name: str
    total_marks: float
    exam_total_marks: float
    rank: Optional[int] = None
    percentage: float
    passing_percentage: float
    passed: bool
    status: str
    is_published: bool
    published_at: Optional[datetime] = None


class PassFailBreakdown(BaseModel):
    exam_id: int
    passing_percentage: float
    total_students: int
    passed: int
    failed: int
    pass_rate: float


class QuestionResultOut(BaseModel):
    question_id: int
    question_text: str
    question_type: str
    is_answered: bool
    is_correct: bool
    student_answer: str
    # Only revealed for MCQ questions
    correct_answer: Optional[str] = None
    max_marks: float
    marks_obtained: float


class ResultDetails(BaseModel):
    result_id: int
    exam_id: int
    exam_title: str
    total_marks: float
    exam_total_marks: float
    percentage: float
    passing_percentage: float
    passed: bool
    rank: Optional[int] = None
    status: str
    total_questions: int
    correct_answers: int
    unanswered_count: int
    questions: List[QuestionResultOut]


# --- Student submission ---


class SubmissionWindow(BaseModel):
    exam_id: int
    can_submit: bool


class SubmittedAnswer(BaseModel):
    response_id: int
    exam_id: int
    question_id: int
    submitted_at: datetime


class WithdrawnAnswer(BaseModel):
    response_id: int
    exam_id: int
    question_id: int
    withdrawn_at: datetime


class FinalizedResult(BaseModel):
    result_id: int
    exam_id: int
    total_marks: float
    percentage: float
    status: str
