"""Submission workflow endpoints.

  POST  /v1/tasks/{task_id}/submissions          open (201) or resume (200)
  GET   /v1/tasks/{task_id}/submissions          teacher's task report
  PUT   /v1/submissions/{id}/answers/{qid}       save one answer (upsert)
  PATCH /v1/submissions/{id}  {"status": ...}    turn in
  POST  /v1/submissions/{id}/grade               finalize scores
  GET   /v1/submissions/{id}                     answers + result once graded

Handlers stay thin: parse, call SubmissionWorkflow or results_service
with the authenticated Principal, shape the response.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field

from classwork.api.dependencies import get_store, get_workflow, require_user
from classwork.api.errors import to_http_exception
from classwork.api.tasks import QuestionOut, TaskOut, question_out, task_out
from classwork.models.principal import Principal
from classwork.models.submission import GRADED, Answer, Submission
from classwork.repos.classwork_store import ClassworkStore
from classwork.services import results_service
from classwork.services.errors import ClassworkError
from classwork.services.grading import GradeResult
from classwork.services.submission_workflow import AnswerPayload, SubmissionWorkflow

router = APIRouter(prefix="/v1", tags=["submissions"])


# --- Pydantic schemas ---


class SubmissionOut(BaseModel):
    id: str
    task_id: str
    student_id: str
    status: str
    started_at: datetime
    submitted_at: datetime | None
    total_score: float | None
    teacher_feedback: str | None
    graded_at: datetime | None
    graded_by: str | None


class AnswerIn(BaseModel):
    text_response: str | None = None
    chosen_option_id: UUID | None = None


class AnswerOut(BaseModel):
    id: str
    submission_id: str
    question_id: str
    text_response: str | None
    chosen_option_id: str | None
    score: float | None
    feedback: str | None
    updated_at: datetime | None


class SubmitIn(BaseModel):
    status: Literal["SUBMITTED"]


class GradeIn(BaseModel):
    scores: dict[UUID, float] = Field(default_factory=dict)
    feedback: str | None = None
    answer_feedback: dict[UUID, str] = Field(default_factory=dict)


class ResultOut(BaseModel):
    total_score: float
    max_score: float
    correct_count: int
    question_count: int
    percent_correct: float
    per_question_score: dict[str, float]


class GradedOut(BaseModel):
    submission: SubmissionOut
    answers: list[AnswerOut]
    result: ResultOut


class SubmissionDetailOut(BaseModel):
    submission: SubmissionOut
    task: TaskOut
    questions: list[QuestionOut]
    answers: list[AnswerOut]
    result: ResultOut | None


class ReportRowOut(BaseModel):
    submission: SubmissionOut
    result: ResultOut | None


class TaskReportOut(BaseModel):
    task: TaskOut
    submitted_count: int
    graded_count: int
    average_score: float | None
    submissions: list[ReportRowOut]


def submission_out(submission: Submission) -> SubmissionOut:
    return SubmissionOut(
        id=str(submission.id),
        task_id=str(submission.task_id),
        student_id=submission.student_id,
        status=submission.status,
        started_at=submission.started_at,
        submitted_at=submission.submitted_at,
        total_score=submission.total_score,
        teacher_feedback=submission.teacher_feedback,
        graded_at=submission.graded_at,
        graded_by=submission.graded_by,
    )


def _answer_out(answer: Answer) -> AnswerOut:
    return AnswerOut(
        id=str(answer.id),
        submission_id=str(answer.submission_id),
        question_id=str(answer.question_id),
        text_response=answer.text_response,
        chosen_option_id=(
            str(answer.chosen_option_id) if answer.chosen_option_id else None
        ),
        score=answer.score,
        feedback=answer.feedback,
        updated_at=answer.updated_at,
    )


def _result_out(result: GradeResult) -> ResultOut:
    return ResultOut(
        total_score=result.total_score,
        max_score=result.max_score,
        correct_count=result.correct_count,
        question_count=result.question_count,
        percent_correct=result.percent_correct,
        per_question_score={str(k): v for k, v in result.per_question_score.items()},
    )


# --- Student workflow ---


@router.post(
    "/tasks/{task_id}/submissions",
    response_model=SubmissionOut,
    status_code=status.HTTP_200_OK,
)
async def ensure_submission(
    task_id: UUID,
    response: Response,
    principal: Annotated[Principal, Depends(require_user)],
    workflow: Annotated[SubmissionWorkflow, Depends(get_workflow)],
) -> SubmissionOut:
    try:
        submission, created = await workflow.ensure_submission(principal, task_id)
    except ClassworkError as e:
        raise to_http_exception(e) from None

    if created:
        response.status_code = status.HTTP_201_CREATED
    return submission_out(submission)


@router.put(
    "/submissions/{submission_id}/answers/{question_id}", response_model=AnswerOut
)
async def record_answer(
    submission_id: UUID,
    question_id: UUID,
    payload: AnswerIn,
    principal: Annotated[Principal, Depends(require_user)],
    workflow: Annotated[SubmissionWorkflow, Depends(get_workflow)],
) -> AnswerOut:
    try:
        answer = await workflow.record_answer(
            principal,
            submission_id,
            question_id,
            AnswerPayload(
                text_response=payload.text_response,
                chosen_option_id=payload.chosen_option_id,
            ),
        )
    except ClassworkError as e:
        raise to_http_exception(e) from None
    return _answer_out(answer)


@router.patch("/submissions/{submission_id}", response_model=SubmissionOut)
async def submit(
    submission_id: UUID,
    payload: SubmitIn,
    principal: Annotated[Principal, Depends(require_user)],
    workflow: Annotated[SubmissionWorkflow, Depends(get_workflow)],
) -> SubmissionOut:
    # SubmitIn only admits "SUBMITTED"; the workflow decides whether the
    # stored status is SUBMITTED or SUBMITTED_LATE.
    try:
        submission = await workflow.submit(principal, submission_id)
    except ClassworkError as e:
        raise to_http_exception(e) from None
    return submission_out(submission)


# --- Teacher workflow ---


@router.post("/submissions/{submission_id}/grade", response_model=GradedOut)
async def grade(
    submission_id: UUID,
    payload: GradeIn,
    principal: Annotated[Principal, Depends(require_user)],
    workflow: Annotated[SubmissionWorkflow, Depends(get_workflow)],
) -> GradedOut:
    try:
        graded = await workflow.grade(
            principal,
            submission_id,
            payload.scores,
            feedback=payload.feedback,
            answer_feedback=payload.answer_feedback,
        )
    except ClassworkError as e:
        raise to_http_exception(e) from None

    return GradedOut(
        submission=submission_out(graded.submission),
        answers=[_answer_out(a) for a in graded.answers],
        result=_result_out(graded.result),
    )


@router.get("/tasks/{task_id}/submissions", response_model=TaskReportOut)
async def task_report(
    task_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    store: Annotated[ClassworkStore, Depends(get_store)],
) -> TaskReportOut:
    try:
        report = await results_service.task_report(store, principal, task_id)
    except ClassworkError as e:
        raise to_http_exception(e) from None

    return TaskReportOut(
        task=task_out(report.task),
        submitted_count=report.submitted_count,
        graded_count=report.graded_count,
        average_score=report.average_score,
        submissions=[
            ReportRowOut(
                submission=submission_out(row.submission),
                result=_result_out(row.result) if row.result else None,
            )
            for row in report.rows
        ],
    )


# --- Results ---


@router.get("/submissions/{submission_id}", response_model=SubmissionDetailOut)
async def get_submission(
    submission_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    store: Annotated[ClassworkStore, Depends(get_store)],
) -> SubmissionDetailOut:
    try:
        detail = await results_service.submission_result(
            store, principal, submission_id
        )
    except ClassworkError as e:
        raise to_http_exception(e) from None

    # The answer key stays hidden from the student until the work is graded.
    reveal = (
        detail.task.teacher_id == principal.user_id
        or principal.is_platform_admin()
        or detail.submission.status == GRADED
    )
    return SubmissionDetailOut(
        submission=submission_out(detail.submission),
        task=task_out(detail.task),
        questions=[question_out(q, reveal_answer=reveal) for q in detail.questions],
        answers=[_answer_out(a) for a in detail.answers],
        result=_result_out(detail.result) if detail.result else None,
    )
