"""Task and question authoring.

Only the teacher who owns a task may change it.  Students only ever see
published tasks of classes they are enrolled in.

Question shape is checked on every write, not at grading time:
  MULTIPLE_CHOICE  at least two options, exactly one marked correct
  ESSAY            no options
Once any student has opened a task, its questions are frozen so that
existing answers and scores keep pointing at what the student saw.

A task's points follow its questions: every question write resets
``Task.points`` to the question total, and an explicit points edit must
match that total once the task has questions.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from uuid import UUID

from classwork.models.principal import Principal
from classwork.models.task import (
    ESSAY,
    MULTIPLE_CHOICE,
    Question,
    QuestionKind,
    QuestionOption,
    Task,
)
from classwork.repos.classwork_store import ClassworkStore
from classwork.services import classroom_service
from classwork.services.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_EDITABLE_TASK_FIELDS = frozenset(
    {"title", "description", "points", "due_date", "published"}
)
_EDITABLE_QUESTION_FIELDS = frozenset({"position", "kind", "prompt", "points"})


@dataclass(frozen=True, slots=True)
class TaskDraft:
    title: str
    description: str = ""
    points: float = 0
    due_date: datetime | None = None
    published: bool = False


@dataclass(frozen=True, slots=True)
class OptionDraft:
    text: str
    is_correct: bool = False


@dataclass(frozen=True, slots=True)
class QuestionDraft:
    position: int
    kind: QuestionKind
    prompt: str
    points: float
    options: tuple[OptionDraft, ...] = ()


# ---------------------------------------------------------------------------
# Access helpers
# ---------------------------------------------------------------------------


def require_task_owner(actor: Principal, task: Task) -> None:
    if task.teacher_id != actor.user_id:
        logger.warning(
            "Access denied: user=%s does not own task=%s", actor.user_id, task.id
        )
        raise ForbiddenError("only the teacher who owns this task can do that")


async def get_visible_task(
    store: ClassworkStore, actor: Principal, task_id: UUID
) -> Task:
    """Load a task the actor may read.

    Owner and platform admins see every state.  Students see a task only
    once it is published, and only in classes they are enrolled in.
    """
    task = await store.find_task(task_id)
    if task is None:
        raise NotFoundError("task not found")

    if task.teacher_id == actor.user_id or actor.is_platform_admin():
        return task

    if actor.is_student():
        if not task.published:
            raise NotFoundError("task not found")
        if not await classroom_service.is_enrolled(store, task.class_id, actor.user_id):
            raise ForbiddenError("you are not enrolled in this task's class")
        return task

    raise ForbiddenError("only the teacher who owns this task can do that")


async def _get_owned_task(
    store: ClassworkStore, actor: Principal, task_id: UUID
) -> Task:
    task = await store.find_task(task_id)
    if task is None:
        raise NotFoundError("task not found")
    require_task_owner(actor, task)
    return task


async def _require_no_submissions(store: ClassworkStore, task: Task) -> None:
    if await store.list_submissions_by_task(task.id):
        raise ConflictError("task already has submissions; its questions are locked")


async def _sync_task_points(store: ClassworkStore, task: Task) -> None:
    questions = await store.find_questions_by_task(task.id)
    if not questions:
        return
    total = sum(q.points for q in questions)
    if not math.isclose(total, task.points):
        await store.update_task(replace(task, points=total))
        logger.info("Task points id=%s %s -> %s", task.id, task.points, total)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


def _check_task_fields(title: str, points: float) -> None:
    if len(title.strip()) < 3:
        raise ValidationError("title must be at least 3 characters")
    if points < 0:
        raise ValidationError("points must not be negative")


async def create_task(
    store: ClassworkStore, actor: Principal, class_id: UUID, draft: TaskDraft
) -> Task:
    await classroom_service.get_owned_class(store, actor, class_id)
    _check_task_fields(draft.title, draft.points)

    task = Task.new(
        class_id=class_id,
        teacher_id=actor.user_id,
        title=draft.title.strip(),
        description=draft.description,
        points=draft.points,
        due_date=draft.due_date,
        published=draft.published,
    )
    await store.add_task(task)
    logger.info(
        "Created task id=%s class=%s teacher=%s", task.id, class_id, actor.user_id
    )
    return task


async def list_tasks(
    store: ClassworkStore, actor: Principal, class_id: UUID
) -> list[Task]:
    classroom = await store.find_class(class_id)
    if classroom is None:
        raise NotFoundError("class not found")

    tasks = await store.list_tasks_by_class(class_id)
    if classroom.teacher_id == actor.user_id or actor.is_platform_admin():
        return tasks

    if actor.is_student() and await classroom_service.is_enrolled(
        store, class_id, actor.user_id
    ):
        return [t for t in tasks if t.published]

    raise ForbiddenError("you are not a member of this class")


async def update_task(
    store: ClassworkStore, actor: Principal, task_id: UUID, changes: dict[str, object]
) -> Task:
    task = await _get_owned_task(store, actor, task_id)

    unknown = set(changes) - _EDITABLE_TASK_FIELDS
    if unknown:
        raise ValidationError(f"fields cannot be changed: {', '.join(sorted(unknown))}")

    updated = replace(task, **changes)  # type: ignore[arg-type]
    _check_task_fields(updated.title, updated.points)
    updated = replace(updated, title=updated.title.strip())

    if "points" in changes:
        questions = await store.find_questions_by_task(task.id)
        total = sum(q.points for q in questions)
        if questions and not math.isclose(total, updated.points):
            raise ValidationError(f"points must equal the question total ({total:g})")

    await store.update_task(updated)
    if updated.published != task.published:
        logger.info(
            "Task %s id=%s",
            "published" if updated.published else "unpublished",
            task.id,
        )
    return updated


async def delete_task(store: ClassworkStore, actor: Principal, task_id: UUID) -> None:
    task = await _get_owned_task(store, actor, task_id)
    if await store.list_submissions_by_task(task.id):
        raise ConflictError("task has submissions and cannot be deleted")
    await store.delete_task(task.id)
    logger.info("Deleted task id=%s teacher=%s", task.id, actor.user_id)


# ---------------------------------------------------------------------------
# Questions
# ---------------------------------------------------------------------------


def validate_question_shape(
    kind: str, points: float, options: Sequence[QuestionOption | OptionDraft]
) -> None:
    if points < 0:
        raise ValidationError("question points must not be negative")

    if kind == MULTIPLE_CHOICE:
        if len(options) < 2:
            raise ValidationError(
                "a multiple-choice question needs at least two options"
            )
        correct = sum(1 for o in options if o.is_correct)
        if correct != 1:
            raise ValidationError(
                f"a multiple-choice question needs exactly one correct option "
                f"(got {correct})"
            )
        if any(not o.text.strip() for o in options):
            raise ValidationError("option text must be non-empty")
    elif kind == ESSAY:
        if options:
            raise ValidationError("an essay question cannot have options")
    else:
        raise ValidationError(f"unknown question kind {kind!r}")


def _build_options(drafts: Sequence[OptionDraft]) -> tuple[QuestionOption, ...]:
    return tuple(
        QuestionOption.new(text=d.text.strip(), is_correct=d.is_correct, position=i)
        for i, d in enumerate(drafts, start=1)
    )


async def _check_position_free(
    store: ClassworkStore, task_id: UUID, position: int, exclude: UUID | None = None
) -> None:
    if position < 1:
        raise ValidationError("position must be a positive integer")
    for q in await store.find_questions_by_task(task_id):
        if q.position == position and q.id != exclude:
            raise ConflictError(f"position {position} is already used in this task")


async def add_question(
    store: ClassworkStore, actor: Principal, task_id: UUID, draft: QuestionDraft
) -> Question:
    task = await _get_owned_task(store, actor, task_id)
    await _require_no_submissions(store, task)

    if not draft.prompt.strip():
        raise ValidationError("prompt must be non-empty")
    validate_question_shape(draft.kind, draft.points, draft.options)
    await _check_position_free(store, task.id, draft.position)

    question = Question.new(
        task_id=task.id,
        position=draft.position,
        kind=draft.kind,
        prompt=draft.prompt,
        points=draft.points,
        options=_build_options(draft.options),
    )
    await store.add_question(question)
    await _sync_task_points(store, task)
    logger.info(
        "Added question id=%s task=%s kind=%s", question.id, task.id, question.kind
    )
    return question


async def list_questions(
    store: ClassworkStore, actor: Principal, task_id: UUID
) -> list[Question]:
    task = await get_visible_task(store, actor, task_id)
    return await store.find_questions_by_task(task.id)


async def update_question(
    store: ClassworkStore,
    actor: Principal,
    question_id: UUID,
    changes: dict[str, object],
    options: Sequence[OptionDraft] | None = None,
) -> Question:
    """Apply field changes; ``options`` replaces the whole option list when given."""
    question = await store.find_question(question_id)
    if question is None:
        raise NotFoundError("question not found")
    task = await _get_owned_task(store, actor, question.task_id)
    await _require_no_submissions(store, task)

    unknown = set(changes) - _EDITABLE_QUESTION_FIELDS
    if unknown:
        raise ValidationError(f"fields cannot be changed: {', '.join(sorted(unknown))}")

    updated = replace(question, **changes)  # type: ignore[arg-type]
    if options is not None:
        updated = replace(updated, options=_build_options(options))
    if not updated.prompt.strip():
        raise ValidationError("prompt must be non-empty")

    validate_question_shape(updated.kind, updated.points, updated.options)
    if updated.position != question.position:
        await _check_position_free(
            store, task.id, updated.position, exclude=question.id
        )

    await store.update_question(updated)
    await _sync_task_points(store, task)
    logger.info("Updated question id=%s task=%s", question.id, task.id)
    return updated


async def delete_question(
    store: ClassworkStore, actor: Principal, question_id: UUID
) -> None:
    question = await store.find_question(question_id)
    if question is None:
        raise NotFoundError("question not found")
    task = await _get_owned_task(store, actor, question.task_id)
    await _require_no_submissions(store, task)
    await store.delete_question(question.id)
    await _sync_task_points(store, task)
    logger.info("Deleted question id=%s task=%s", question.id, task.id)
