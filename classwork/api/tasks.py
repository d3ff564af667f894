"""Task and question authoring endpoints.

  GET    /v1/tasks/{task_id}
  PATCH  /v1/tasks/{task_id}              edit / publish / unpublish
  DELETE /v1/tasks/{task_id}              cascades to questions
  POST   /v1/tasks/{task_id}/questions
  GET    /v1/tasks/{task_id}/questions
  PATCH  /v1/questions/{question_id}
  DELETE /v1/questions/{question_id}

Task creation lives under the class: POST /v1/classes/{class_id}/tasks.
Students get is_correct=null on every option; only the owning teacher
sees the answer key here.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field

from classwork.api.dependencies import get_store, require_user
from classwork.api.errors import to_http_exception
from classwork.models.principal import Principal
from classwork.models.task import Question, QuestionKind, Task
from classwork.repos.classwork_store import ClassworkStore
from classwork.services import task_service
from classwork.services.errors import ClassworkError

router = APIRouter(prefix="/v1", tags=["tasks"])


# --- Pydantic schemas ---


class TaskIn(BaseModel):
    title: str = Field(min_length=3, max_length=500)
    description: str = ""
    points: float = Field(default=0, ge=0)
    due_date: datetime | None = None
    published: bool = False


class TaskPatchIn(BaseModel):
    title: str | None = Field(default=None, min_length=3, max_length=500)
    description: str | None = None
    points: float | None = Field(default=None, ge=0)
    due_date: datetime | None = None
    published: bool | None = None


class TaskOut(BaseModel):
    id: str
    class_id: str
    teacher_id: str
    title: str
    description: str
    points: float
    due_date: datetime | None
    published: bool
    created_at: datetime


class OptionIn(BaseModel):
    text: str = Field(min_length=1)
    is_correct: bool = False


class QuestionIn(BaseModel):
    position: int = Field(ge=1)
    kind: QuestionKind
    prompt: str = Field(min_length=1)
    points: float = Field(ge=0)
    options: list[OptionIn] = []


class QuestionPatchIn(BaseModel):
    position: int | None = Field(default=None, ge=1)
    kind: QuestionKind | None = None
    prompt: str | None = Field(default=None, min_length=1)
    points: float | None = Field(default=None, ge=0)
    options: list[OptionIn] | None = None


class OptionOut(BaseModel):
    id: str
    text: str
    position: int
    is_correct: bool | None


class QuestionOut(BaseModel):
    id: str
    task_id: str
    position: int
    kind: str
    prompt: str
    points: float
    options: list[OptionOut]


def task_out(task: Task) -> TaskOut:
    return TaskOut(
        id=str(task.id),
        class_id=str(task.class_id),
        teacher_id=task.teacher_id,
        title=task.title,
        description=task.description,
        points=task.points,
        due_date=task.due_date,
        published=task.published,
        created_at=task.created_at,
    )


def question_out(question: Question, *, reveal_answer: bool) -> QuestionOut:
    return QuestionOut(
        id=str(question.id),
        task_id=str(question.task_id),
        position=question.position,
        kind=question.kind,
        prompt=question.prompt,
        points=question.points,
        options=[
            OptionOut(
                id=str(o.id),
                text=o.text,
                position=o.position,
                is_correct=o.is_correct if reveal_answer else None,
            )
            for o in question.options
        ],
    )


def _option_drafts(options: list[OptionIn]) -> tuple[task_service.OptionDraft, ...]:
    return tuple(
        task_service.OptionDraft(text=o.text, is_correct=o.is_correct) for o in options
    )


# --- Tasks ---


@router.get("/tasks/{task_id}", response_model=TaskOut)
async def get_task(
    task_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    store: Annotated[ClassworkStore, Depends(get_store)],
) -> TaskOut:
    try:
        task = await task_service.get_visible_task(store, principal, task_id)
    except ClassworkError as e:
        raise to_http_exception(e) from None
    return task_out(task)


@router.patch("/tasks/{task_id}", response_model=TaskOut)
async def patch_task(
    task_id: UUID,
    payload: TaskPatchIn,
    principal: Annotated[Principal, Depends(require_user)],
    store: Annotated[ClassworkStore, Depends(get_store)],
) -> TaskOut:
    # due_date may be explicitly cleared with null; other fields only change
    # when present and non-null.
    changes = payload.model_dump(exclude_unset=True)
    changes = {k: v for k, v in changes.items() if v is not None or k == "due_date"}
    try:
        task = await task_service.update_task(store, principal, task_id, changes)
    except ClassworkError as e:
        raise to_http_exception(e) from None
    return task_out(task)


@router.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    task_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    store: Annotated[ClassworkStore, Depends(get_store)],
) -> Response:
    try:
        await task_service.delete_task(store, principal, task_id)
    except ClassworkError as e:
        raise to_http_exception(e) from None
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- Questions ---


@router.post(
    "/tasks/{task_id}/questions",
    response_model=QuestionOut,
    status_code=status.HTTP_201_CREATED,
)
async def add_question(
    task_id: UUID,
    payload: QuestionIn,
    principal: Annotated[Principal, Depends(require_user)],
    store: Annotated[ClassworkStore, Depends(get_store)],
) -> QuestionOut:
    draft = task_service.QuestionDraft(
        position=payload.position,
        kind=payload.kind,
        prompt=payload.prompt,
        points=payload.points,
        options=_option_drafts(payload.options),
    )
    try:
        question = await task_service.add_question(store, principal, task_id, draft)
    except ClassworkError as e:
        raise to_http_exception(e) from None
    return question_out(question, reveal_answer=True)


@router.get("/tasks/{task_id}/questions", response_model=list[QuestionOut])
async def list_questions(
    task_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    store: Annotated[ClassworkStore, Depends(get_store)],
) -> list[QuestionOut]:
    try:
        task = await task_service.get_visible_task(store, principal, task_id)
        questions = await task_service.list_questions(store, principal, task.id)
    except ClassworkError as e:
        raise to_http_exception(e) from None

    reveal = task.teacher_id == principal.user_id or principal.is_platform_admin()
    return [question_out(q, reveal_answer=reveal) for q in questions]


@router.patch("/questions/{question_id}", response_model=QuestionOut)
async def patch_question(
    question_id: UUID,
    payload: QuestionPatchIn,
    principal: Annotated[Principal, Depends(require_user)],
    store: Annotated[ClassworkStore, Depends(get_store)],
) -> QuestionOut:
    changes = payload.model_dump(exclude_unset=True, exclude={"options"})
    changes = {k: v for k, v in changes.items() if v is not None}
    options = _option_drafts(payload.options) if payload.options is not None else None
    try:
        question = await task_service.update_question(
            store, principal, question_id, changes, options
        )
    except ClassworkError as e:
        raise to_http_exception(e) from None
    return question_out(question, reveal_answer=True)


@router.delete("/questions/{question_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_question(
    question_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    store: Annotated[ClassworkStore, Depends(get_store)],
) -> Response:
    try:
        await task_service.delete_question(store, principal, question_id)
    except ClassworkError as e:
        raise to_http_exception(e) from None
    return Response(status_code=status.HTTP_204_NO_CONTENT)
