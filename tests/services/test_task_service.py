"""Tests for task and question authoring rules."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from uuid import uuid4

import pytest

from classwork.models.classroom import Enrollment
from classwork.models.principal import Principal
from classwork.models.task import ESSAY, MULTIPLE_CHOICE
from classwork.repos.classwork_store import InMemoryClassworkStore
from classwork.services import classroom_service, task_service
from classwork.services.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from classwork.services.task_service import OptionDraft, QuestionDraft, TaskDraft

TEACHER = Principal(user_id="teacher-1", roles=frozenset({"teacher"}))
OTHER_TEACHER = Principal(user_id="teacher-2", roles=frozenset({"teacher"}))
STUDENT = Principal(user_id="student-1", roles=frozenset({"student"}))
OUTSIDER = Principal(user_id="student-9", roles=frozenset({"student"}))
ADMIN = Principal(user_id="admin-1", roles=frozenset({"admin"}))

MC_OPTIONS = (OptionDraft("3"), OptionDraft("4", is_correct=True))


@pytest.fixture
def store() -> InMemoryClassworkStore:
    return InMemoryClassworkStore()


@pytest.fixture
def class_id(store: InMemoryClassworkStore):
    async def setup():
        classroom = await classroom_service.create_class(store, TEACHER, "Algebra I")
        await store.add_enrollment(
            Enrollment(class_id=classroom.id, student_id=STUDENT.user_id)
        )
        return classroom.id

    return asyncio.run(setup())


def _task(store, class_id, **kwargs):
    draft = TaskDraft(title=kwargs.pop("title", "Quiz 1"), **kwargs)
    return asyncio.run(task_service.create_task(store, TEACHER, class_id, draft))


def _mc_draft(position: int = 1, options=MC_OPTIONS) -> QuestionDraft:
    return QuestionDraft(
        position=position,
        kind=MULTIPLE_CHOICE,
        prompt="2 + 2 = ?",
        points=10,
        options=options,
    )


# ---- tasks ----


def test_create_task_in_owned_class(store, class_id) -> None:
    due = datetime(2024, 1, 1, tzinfo=UTC)
    task = _task(store, class_id, title="  Essay 1 ", points=20, due_date=due)
    assert task.title == "Essay 1"
    assert task.teacher_id == TEACHER.user_id
    assert task.due_date == due
    assert task.published is False


def test_create_task_in_someone_elses_class_forbidden(store, class_id) -> None:
    with pytest.raises(ForbiddenError):
        asyncio.run(
            task_service.create_task(
                store, OTHER_TEACHER, class_id, TaskDraft(title="Quiz 1")
            )
        )


@pytest.mark.parametrize(
    ("title", "points"), [("ab", 0), ("Quiz", -1)], ids=["short-title", "negative"]
)
def test_create_task_validates_fields(store, class_id, title, points) -> None:
    with pytest.raises(ValidationError):
        _task(store, class_id, title=title, points=points)


def test_students_only_see_published_tasks(store, class_id) -> None:
    _task(store, class_id, title="Draft")
    published = _task(store, class_id, title="Open", published=True)

    as_student = asyncio.run(task_service.list_tasks(store, STUDENT, class_id))
    as_teacher = asyncio.run(task_service.list_tasks(store, TEACHER, class_id))

    assert [t.id for t in as_student] == [published.id]
    assert len(as_teacher) == 2


def test_list_tasks_for_non_member_forbidden(store, class_id) -> None:
    with pytest.raises(ForbiddenError):
        asyncio.run(task_service.list_tasks(store, OUTSIDER, class_id))


def test_unpublished_task_hidden_from_student(store, class_id) -> None:
    task = _task(store, class_id)
    with pytest.raises(NotFoundError):
        asyncio.run(task_service.get_visible_task(store, STUDENT, task.id))


def test_admin_sees_any_task(store, class_id) -> None:
    task = _task(store, class_id)
    assert asyncio.run(task_service.get_visible_task(store, ADMIN, task.id)) == task


def test_publish_and_edit(store, class_id) -> None:
    task = _task(store, class_id)
    updated = asyncio.run(
        task_service.update_task(
            store, TEACHER, task.id, {"published": True, "title": "Quiz One"}
        )
    )
    assert updated.published is True
    assert updated.title == "Quiz One"
    assert asyncio.run(store.find_task(task.id)) == updated


def test_update_rejects_unknown_fields(store, class_id) -> None:
    task = _task(store, class_id)
    with pytest.raises(ValidationError, match="teacher_id"):
        asyncio.run(
            task_service.update_task(store, TEACHER, task.id, {"teacher_id": "me"})
        )


def test_non_owner_cannot_update(store, class_id) -> None:
    task = _task(store, class_id)
    with pytest.raises(ForbiddenError):
        asyncio.run(
            task_service.update_task(store, OTHER_TEACHER, task.id, {"title": "Mine"})
        )


def test_delete_task_cascades_to_questions(store, class_id) -> None:
    task = _task(store, class_id)
    asyncio.run(task_service.add_question(store, TEACHER, task.id, _mc_draft()))

    asyncio.run(task_service.delete_task(store, TEACHER, task.id))

    assert asyncio.run(store.find_task(task.id)) is None
    assert asyncio.run(store.find_questions_by_task(task.id)) == []


def test_delete_task_with_submissions_conflicts(store, class_id) -> None:
    task = _task(store, class_id, published=True)
    asyncio.run(
        store.find_or_create_submission(task.id, STUDENT.user_id, datetime.now(UTC))
    )
    with pytest.raises(ConflictError):
        asyncio.run(task_service.delete_task(store, TEACHER, task.id))


# ---- questions ----


def test_add_multiple_choice_question(store, class_id) -> None:
    task = _task(store, class_id)
    question = asyncio.run(
        task_service.add_question(store, TEACHER, task.id, _mc_draft())
    )
    assert [o.text for o in question.options] == ["3", "4"]
    assert [o.position for o in question.options] == [1, 2]
    assert question.correct_option_id == question.options[1].id


@pytest.mark.parametrize(
    "options",
    [
        (OptionDraft("4", is_correct=True),),
        (OptionDraft("3"), OptionDraft("4")),
        (OptionDraft("3", is_correct=True), OptionDraft("4", is_correct=True)),
        (OptionDraft("  "), OptionDraft("4", is_correct=True)),
    ],
    ids=["one-option", "no-correct", "two-correct", "blank-text"],
)
def test_malformed_multiple_choice_rejected(store, class_id, options) -> None:
    task = _task(store, class_id)
    with pytest.raises(ValidationError):
        asyncio.run(
            task_service.add_question(
                store, TEACHER, task.id, _mc_draft(options=options)
            )
        )


def test_essay_with_options_rejected(store, class_id) -> None:
    task = _task(store, class_id)
    draft = QuestionDraft(
        position=1, kind=ESSAY, prompt="Why?", points=10, options=MC_OPTIONS
    )
    with pytest.raises(ValidationError):
        asyncio.run(task_service.add_question(store, TEACHER, task.id, draft))


def test_duplicate_position_conflicts(store, class_id) -> None:
    task = _task(store, class_id)
    asyncio.run(task_service.add_question(store, TEACHER, task.id, _mc_draft(1)))
    with pytest.raises(ConflictError):
        asyncio.run(task_service.add_question(store, TEACHER, task.id, _mc_draft(1)))


def test_questions_listed_in_position_order(store, class_id) -> None:
    task = _task(store, class_id)
    for position in (3, 1, 2):
        asyncio.run(
            task_service.add_question(store, TEACHER, task.id, _mc_draft(position))
        )
    questions = asyncio.run(task_service.list_questions(store, TEACHER, task.id))
    assert [q.position for q in questions] == [1, 2, 3]


def test_update_question_replaces_options(store, class_id) -> None:
    task = _task(store, class_id)
    question = asyncio.run(
        task_service.add_question(store, TEACHER, task.id, _mc_draft())
    )
    new_options = (
        OptionDraft("five", is_correct=True),
        OptionDraft("six"),
        OptionDraft("seven"),
    )

    updated = asyncio.run(
        task_service.update_question(
            store, TEACHER, question.id, {"prompt": "2 + 3 = ?"}, new_options
        )
    )

    assert updated.prompt == "2 + 3 = ?"
    assert [o.text for o in updated.options] == ["five", "six", "seven"]
    assert asyncio.run(store.find_question(question.id)) == updated


def test_changing_kind_to_essay_requires_dropping_options(store, class_id) -> None:
    task = _task(store, class_id)
    question = asyncio.run(
        task_service.add_question(store, TEACHER, task.id, _mc_draft())
    )
    with pytest.raises(ValidationError):
        asyncio.run(
            task_service.update_question(store, TEACHER, question.id, {"kind": ESSAY})
        )
    updated = asyncio.run(
        task_service.update_question(store, TEACHER, question.id, {"kind": ESSAY}, ())
    )
    assert updated.kind == ESSAY
    assert updated.options == ()


def test_questions_locked_once_submissions_exist(store, class_id) -> None:
    task = _task(store, class_id, published=True)
    question = asyncio.run(
        task_service.add_question(store, TEACHER, task.id, _mc_draft())
    )
    asyncio.run(
        store.find_or_create_submission(task.id, STUDENT.user_id, datetime.now(UTC))
    )

    with pytest.raises(ConflictError):
        asyncio.run(task_service.add_question(store, TEACHER, task.id, _mc_draft(2)))
    with pytest.raises(ConflictError):
        asyncio.run(
            task_service.update_question(store, TEACHER, question.id, {"points": 5})
        )
    with pytest.raises(ConflictError):
        asyncio.run(task_service.delete_question(store, TEACHER, question.id))


def test_delete_question(store, class_id) -> None:
    task = _task(store, class_id)
    question = asyncio.run(
        task_service.add_question(store, TEACHER, task.id, _mc_draft())
    )
    asyncio.run(task_service.delete_question(store, TEACHER, question.id))
    assert asyncio.run(store.find_question(question.id)) is None


def test_missing_question_not_found(store, class_id) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(task_service.delete_question(store, TEACHER, uuid4()))


# ---- task points ----


def _points(store, task_id) -> float:
    return asyncio.run(store.find_task(task_id)).points


def test_task_points_follow_question_writes(store, class_id) -> None:
    task = _task(store, class_id, points=100)

    first = asyncio.run(
        task_service.add_question(store, TEACHER, task.id, _mc_draft(1))
    )
    assert _points(store, task.id) == 10
    asyncio.run(task_service.add_question(store, TEACHER, task.id, _mc_draft(2)))
    assert _points(store, task.id) == 20

    asyncio.run(
        task_service.update_question(store, TEACHER, first.id, {"points": 15})
    )
    assert _points(store, task.id) == 25

    asyncio.run(task_service.delete_question(store, TEACHER, first.id))
    assert _points(store, task.id) == 10


def test_points_edit_must_match_question_total(store, class_id) -> None:
    task = _task(store, class_id)
    asyncio.run(task_service.add_question(store, TEACHER, task.id, _mc_draft()))

    with pytest.raises(ValidationError):
        asyncio.run(task_service.update_task(store, TEACHER, task.id, {"points": 50}))
    assert _points(store, task.id) == 10

    updated = asyncio.run(
        task_service.update_task(store, TEACHER, task.id, {"points": 10})
    )
    assert updated.points == 10


def test_points_edit_is_free_without_questions(store, class_id) -> None:
    task = _task(store, class_id, points=20)
    updated = asyncio.run(
        task_service.update_task(store, TEACHER, task.id, {"points": 30})
    )
    assert updated.points == 30
