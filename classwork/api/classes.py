"""Class endpoints: creation, enrollment, the task list, student results.

  POST /v1/classes                          teacher only
  POST /v1/classes/{class_id}/enrollments   owning teacher
  PATCH /v1/classes/{class_id}/enrollments/{student_id}
                                            owning teacher; active on/off
  GET  /v1/classes/{class_id}/tasks         teacher: all, student: published
  POST /v1/classes/{class_id}/tasks         owning teacher
  GET  /v1/classes/{class_id}/results/me    enrolled student's summary
"""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from classwork.api.dependencies import (
    get_cache,
    get_store,
    require_any_role,
    require_user,
)
from classwork.api.errors import to_http_exception
from classwork.api.tasks import TaskIn, TaskOut, task_out
from classwork.models.classroom import Enrollment
from classwork.models.principal import STUDENT, TEACHER, Principal
from classwork.repos.classwork_store import ClassworkStore
from classwork.services import classroom_service, results_service, task_service
from classwork.services.cache import CacheService
from classwork.services.errors import ClassworkError

router = APIRouter(prefix="/v1/classes", tags=["classes"])


class ClassIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)


class ClassOut(BaseModel):
    id: str
    name: str
    teacher_id: str


class EnrollmentIn(BaseModel):
    student_id: str = Field(min_length=1, max_length=200)


class EnrollmentPatchIn(BaseModel):
    active: bool


class EnrollmentOut(BaseModel):
    class_id: str
    student_id: str
    active: bool


class StudentSummaryOut(BaseModel):
    class_id: str
    student_id: str
    published_tasks: int
    completed_tasks: int
    completion_rate: int
    graded_tasks: int
    average_score: float | None
    highest_score: float | None
    lowest_score: float | None
    latest_score: float | None


def _enrollment_out(enrollment: Enrollment) -> EnrollmentOut:
    return EnrollmentOut(
        class_id=str(enrollment.class_id),
        student_id=enrollment.student_id,
        active=enrollment.active,
    )


@router.post("", response_model=ClassOut, status_code=status.HTTP_201_CREATED)
async def create_class(
    payload: ClassIn,
    principal: Annotated[Principal, Depends(require_any_role({TEACHER}))],
    store: Annotated[ClassworkStore, Depends(get_store)],
) -> ClassOut:
    try:
        classroom = await classroom_service.create_class(store, principal, payload.name)
    except ClassworkError as e:
        raise to_http_exception(e) from None
    return ClassOut(
        id=str(classroom.id), name=classroom.name, teacher_id=classroom.teacher_id
    )


@router.post(
    "/{class_id}/enrollments",
    response_model=EnrollmentOut,
    status_code=status.HTTP_201_CREATED,
)
async def enroll(
    class_id: UUID,
    payload: EnrollmentIn,
    principal: Annotated[Principal, Depends(require_user)],
    store: Annotated[ClassworkStore, Depends(get_store)],
) -> EnrollmentOut:
    try:
        enrollment = await classroom_service.enroll(
            store, principal, class_id, payload.student_id
        )
    except ClassworkError as e:
        raise to_http_exception(e) from None
    return _enrollment_out(enrollment)


@router.patch("/{class_id}/enrollments/{student_id}", response_model=EnrollmentOut)
async def update_enrollment(
    class_id: UUID,
    student_id: str,
    payload: EnrollmentPatchIn,
    principal: Annotated[Principal, Depends(require_user)],
    store: Annotated[ClassworkStore, Depends(get_store)],
) -> EnrollmentOut:
    try:
        enrollment = await classroom_service.set_enrollment_active(
            store, principal, class_id, student_id, payload.active
        )
    except ClassworkError as e:
        raise to_http_exception(e) from None
    return _enrollment_out(enrollment)


@router.get("/{class_id}/tasks", response_model=list[TaskOut])
async def list_tasks(
    class_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    store: Annotated[ClassworkStore, Depends(get_store)],
) -> list[TaskOut]:
    try:
        tasks = await task_service.list_tasks(store, principal, class_id)
    except ClassworkError as e:
        raise to_http_exception(e) from None
    return [task_out(t) for t in tasks]


@router.post(
    "/{class_id}/tasks", response_model=TaskOut, status_code=status.HTTP_201_CREATED
)
async def create_task(
    class_id: UUID,
    payload: TaskIn,
    principal: Annotated[Principal, Depends(require_user)],
    store: Annotated[ClassworkStore, Depends(get_store)],
) -> TaskOut:
    draft = task_service.TaskDraft(
        title=payload.title,
        description=payload.description,
        points=payload.points,
        due_date=payload.due_date,
        published=payload.published,
    )
    try:
        task = await task_service.create_task(store, principal, class_id, draft)
    except ClassworkError as e:
        raise to_http_exception(e) from None
    return task_out(task)


@router.get("/{class_id}/results/me", response_model=StudentSummaryOut)
async def my_results(
    class_id: UUID,
    principal: Annotated[Principal, Depends(require_any_role({STUDENT}))],
    store: Annotated[ClassworkStore, Depends(get_store)],
    cache: Annotated[CacheService, Depends(get_cache)],
) -> StudentSummaryOut:
    """Completion rate and grade stats, cached per (student, class)."""
    try:
        summary = await results_service.student_summary(
            store, cache, principal, class_id
        )
    except ClassworkError as e:
        raise to_http_exception(e) from None
    return StudentSummaryOut(
        class_id=summary.class_id,
        student_id=summary.student_id,
        published_tasks=summary.published_tasks,
        completed_tasks=summary.completed_tasks,
        completion_rate=summary.completion_rate,
        graded_tasks=summary.graded_tasks,
        average_score=summary.average_score,
        highest_score=summary.highest_score,
        lowest_score=summary.lowest_score,
        latest_score=summary.latest_score,
    )
