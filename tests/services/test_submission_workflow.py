"""Tests for SubmissionWorkflow against the in-memory store.

Each test builds a fresh store with one class, one enrolled student and a
two-question task: Q1 multiple choice (10 pts, correct "4"), Q2 essay
(10 pts).
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from uuid import uuid4

import pytest

from classwork.models.classroom import Classroom, Enrollment
from classwork.models.principal import Principal
from classwork.models.submission import (
    GRADED,
    IN_PROGRESS,
    SUBMITTED,
    SUBMITTED_LATE,
)
from classwork.models.task import ESSAY, MULTIPLE_CHOICE, Question, QuestionOption, Task
from classwork.repos.classwork_store import InMemoryClassworkStore
from classwork.services.cache import InMemoryCacheService
from classwork.services.errors import (
    ConflictError,
    ForbiddenError,
    IncompleteError,
    NotFoundError,
    ValidationError,
)
from classwork.services.submission_workflow import AnswerPayload, SubmissionWorkflow

TEACHER = Principal(user_id="teacher-1", roles=frozenset({"teacher"}))
OTHER_TEACHER = Principal(user_id="teacher-2", roles=frozenset({"teacher"}))
STUDENT = Principal(user_id="student-1", roles=frozenset({"student"}))
OUTSIDER = Principal(user_id="student-9", roles=frozenset({"student"}))

DUE = datetime(2024, 1, 1, tzinfo=UTC)
BEFORE_DUE = datetime(2023, 12, 31, tzinfo=UTC)
AFTER_DUE = datetime(2024, 1, 2, tzinfo=UTC)


class Quiz:
    def __init__(self, *, published: bool = True, due_date=DUE) -> None:
        self.store = InMemoryClassworkStore()
        self.cache = InMemoryCacheService()
        self.now = BEFORE_DUE

        classroom = Classroom.new(name="Algebra I", teacher_id=TEACHER.user_id)
        self.task = Task.new(
            class_id=classroom.id,
            teacher_id=TEACHER.user_id,
            title="Quiz 1",
            points=20,
            due_date=due_date,
            published=published,
        )
        self.mc = Question.new(
            task_id=self.task.id,
            position=1,
            kind=MULTIPLE_CHOICE,
            prompt="2 + 2 = ?",
            points=10,
            options=(
                QuestionOption.new(text="3", is_correct=False, position=1),
                QuestionOption.new(text="4", is_correct=True, position=2),
            ),
        )
        self.essay = Question.new(
            task_id=self.task.id, position=2, kind=ESSAY, prompt="Why?", points=10
        )
        self.correct = self.mc.correct_option_id
        self.wrong = self.mc.options[0].id

        async def seed() -> None:
            await self.store.add_class(classroom)
            await self.store.add_enrollment(
                Enrollment(class_id=classroom.id, student_id=STUDENT.user_id)
            )
            await self.store.add_task(self.task)
            await self.store.add_question(self.mc)
            await self.store.add_question(self.essay)

        asyncio.run(seed())
        self.workflow = SubmissionWorkflow(
            self.store, clock=lambda: self.now, cache=self.cache
        )

    def run(self, coro):
        return asyncio.run(coro)

    def start(self):
        submission, _ = self.run(self.workflow.ensure_submission(STUDENT, self.task.id))
        return submission

    def choose(self, submission_id, option_id, actor=STUDENT):
        payload = AnswerPayload(chosen_option_id=option_id)
        return self.run(
            self.workflow.record_answer(actor, submission_id, self.mc.id, payload)
        )

    def write(self, submission_id, text, actor=STUDENT):
        payload = AnswerPayload(text_response=text)
        return self.run(
            self.workflow.record_answer(actor, submission_id, self.essay.id, payload)
        )

    def answer_all(self, submission_id) -> None:
        self.choose(submission_id, self.correct)
        self.write(submission_id, "my answer")

    def turned_in(self):
        submission = self.start()
        self.answer_all(submission.id)
        return self.run(self.workflow.submit(STUDENT, submission.id))


@pytest.fixture
def quiz() -> Quiz:
    return Quiz()


# ---- ensure_submission ----


def test_first_access_creates_in_progress_submission(quiz: Quiz) -> None:
    submission, created = quiz.run(
        quiz.workflow.ensure_submission(STUDENT, quiz.task.id)
    )
    assert created is True
    assert submission.status == IN_PROGRESS
    assert submission.started_at == BEFORE_DUE
    assert submission.student_id == STUDENT.user_id


def test_second_access_returns_same_submission(quiz: Quiz) -> None:
    first, _ = quiz.run(quiz.workflow.ensure_submission(STUDENT, quiz.task.id))
    second, created = quiz.run(quiz.workflow.ensure_submission(STUDENT, quiz.task.id))
    assert created is False
    assert second.id == first.id


def test_concurrent_first_access_creates_one_submission(quiz: Quiz) -> None:
    async def both():
        return await asyncio.gather(
            quiz.workflow.ensure_submission(STUDENT, quiz.task.id),
            quiz.workflow.ensure_submission(STUDENT, quiz.task.id),
        )

    (a, _), (b, _) = quiz.run(both())
    assert a.id == b.id
    assert len(quiz.run(quiz.store.list_submissions_by_task(quiz.task.id))) == 1


def test_unpublished_task_is_not_found() -> None:
    quiz = Quiz(published=False)
    with pytest.raises(NotFoundError):
        quiz.start()


def test_missing_task_is_not_found(quiz: Quiz) -> None:
    with pytest.raises(NotFoundError):
        quiz.run(quiz.workflow.ensure_submission(STUDENT, uuid4()))


def test_student_outside_class_is_forbidden(quiz: Quiz) -> None:
    with pytest.raises(ForbiddenError):
        quiz.run(quiz.workflow.ensure_submission(OUTSIDER, quiz.task.id))


def test_teacher_cannot_start_a_submission(quiz: Quiz) -> None:
    with pytest.raises(ForbiddenError):
        quiz.run(quiz.workflow.ensure_submission(TEACHER, quiz.task.id))


# ---- record_answer ----


def test_recording_twice_keeps_one_answer_with_latest_payload(quiz: Quiz) -> None:
    submission = quiz.start()
    for text in ("first draft", "final draft"):
        quiz.write(submission.id, text)

    answers = quiz.run(quiz.store.list_answers_by_submission(submission.id))
    assert len(answers) == 1
    assert answers[0].text_response == "final draft"


def test_changing_choice_overwrites_previous(quiz: Quiz) -> None:
    submission = quiz.start()
    for option in (quiz.wrong, quiz.correct):
        quiz.choose(submission.id, option)

    answers = quiz.run(quiz.store.list_answers_by_submission(submission.id))
    assert [a.chosen_option_id for a in answers] == [quiz.correct]


def test_empty_essay_text_is_accepted(quiz: Quiz) -> None:
    submission = quiz.start()
    answer = quiz.write(submission.id, "")
    assert answer.text_response == ""


def test_text_for_multiple_choice_is_rejected(quiz: Quiz) -> None:
    submission = quiz.start()
    with pytest.raises(ValidationError):
        quiz.run(
            quiz.workflow.record_answer(
                STUDENT, submission.id, quiz.mc.id, AnswerPayload(text_response="4")
            )
        )


def test_option_for_essay_is_rejected(quiz: Quiz) -> None:
    submission = quiz.start()
    with pytest.raises(ValidationError):
        quiz.run(
            quiz.workflow.record_answer(
                STUDENT,
                submission.id,
                quiz.essay.id,
                AnswerPayload(chosen_option_id=quiz.correct),
            )
        )


def test_option_from_another_question_is_rejected(quiz: Quiz) -> None:
    submission = quiz.start()
    with pytest.raises(ValidationError, match="does not belong"):
        quiz.choose(submission.id, uuid4())


def test_question_from_another_task_is_not_found(quiz: Quiz) -> None:
    submission = quiz.start()
    with pytest.raises(NotFoundError):
        quiz.run(
            quiz.workflow.record_answer(
                STUDENT, submission.id, uuid4(), AnswerPayload(text_response="x")
            )
        )


def test_other_student_cannot_answer(quiz: Quiz) -> None:
    submission = quiz.start()
    with pytest.raises(ForbiddenError):
        quiz.write(submission.id, "x", actor=OUTSIDER)


def test_answering_after_submit_conflicts(quiz: Quiz) -> None:
    submission = quiz.turned_in()
    with pytest.raises(ConflictError):
        quiz.write(submission.id, "late")


# ---- submit ----


def test_submit_before_due_date(quiz: Quiz) -> None:
    submission = quiz.turned_in()
    assert submission.status == SUBMITTED
    assert submission.submitted_at == BEFORE_DUE


def test_submit_after_due_date_is_late(quiz: Quiz) -> None:
    submission = quiz.start()
    quiz.answer_all(submission.id)
    quiz.now = AFTER_DUE

    submitted = quiz.run(quiz.workflow.submit(STUDENT, submission.id))

    assert submitted.status == SUBMITTED_LATE
    assert submitted.submitted_at == AFTER_DUE


def test_submit_exactly_at_due_date_is_on_time(quiz: Quiz) -> None:
    submission = quiz.start()
    quiz.answer_all(submission.id)
    quiz.now = DUE
    assert quiz.run(quiz.workflow.submit(STUDENT, submission.id)).status == SUBMITTED


def test_submit_without_due_date_is_never_late() -> None:
    quiz = Quiz(due_date=None)
    quiz.now = datetime(2099, 1, 1, tzinfo=UTC)
    assert quiz.turned_in().status == SUBMITTED


def test_submit_with_unanswered_question_is_incomplete(quiz: Quiz) -> None:
    submission = quiz.start()
    quiz.choose(submission.id, quiz.correct)

    with pytest.raises(IncompleteError) as exc_info:
        quiz.run(quiz.workflow.submit(STUDENT, submission.id))

    assert exc_info.value.missing_question_ids == [quiz.essay.id]
    stored = quiz.run(quiz.store.find_submission(submission.id))
    assert stored.status == IN_PROGRESS


@pytest.mark.parametrize("graded_first", [False, True])
def test_submit_twice_conflicts(quiz: Quiz, graded_first: bool) -> None:
    submission = quiz.turned_in()
    if graded_first:
        quiz.run(quiz.workflow.grade(TEACHER, submission.id, {quiz.essay.id: 5}))
    before = quiz.run(quiz.store.find_submission(submission.id))

    with pytest.raises(ConflictError):
        quiz.run(quiz.workflow.submit(STUDENT, submission.id))

    after = quiz.run(quiz.store.find_submission(submission.id))
    assert after == before


def test_other_student_cannot_submit(quiz: Quiz) -> None:
    submission = quiz.start()
    quiz.answer_all(submission.id)
    with pytest.raises(ForbiddenError):
        quiz.run(quiz.workflow.submit(OUTSIDER, submission.id))


def test_submit_invalidates_cached_results(quiz: Quiz) -> None:
    quiz.run(quiz.cache.set(f"results:{STUDENT.user_id}:some-class", "{}", 300))
    quiz.turned_in()
    assert quiz.run(quiz.cache.get(f"results:{STUDENT.user_id}:some-class")) is None


# ---- grade ----


def test_grade_mixed_task(quiz: Quiz) -> None:
    submission = quiz.turned_in()

    graded = quiz.run(
        quiz.workflow.grade(
            TEACHER,
            submission.id,
            {quiz.essay.id: 7},
            feedback="Good work",
            answer_feedback={quiz.essay.id: "Explain more"},
        )
    )

    assert graded.result.total_score == 17.0
    assert graded.result.correct_count == 1
    assert graded.submission.status == GRADED
    assert graded.submission.total_score == 17.0
    assert graded.submission.teacher_feedback == "Good work"
    assert graded.submission.graded_by == TEACHER.user_id
    scores = {a.question_id: (a.score, a.feedback) for a in graded.answers}
    assert scores == {quiz.mc.id: (10.0, None), quiz.essay.id: (7.0, "Explain more")}


def test_wrong_choice_scores_zero_on_grade(quiz: Quiz) -> None:
    submission = quiz.start()
    quiz.choose(submission.id, quiz.wrong)
    quiz.write(submission.id, "x")
    quiz.run(quiz.workflow.submit(STUDENT, submission.id))

    graded = quiz.run(quiz.workflow.grade(TEACHER, submission.id, {quiz.essay.id: 10}))

    assert graded.result.per_question_score[quiz.mc.id] == 0.0
    assert graded.result.total_score == 10.0


def test_late_submission_can_be_graded(quiz: Quiz) -> None:
    submission = quiz.start()
    quiz.answer_all(submission.id)
    quiz.now = AFTER_DUE
    quiz.run(quiz.workflow.submit(STUDENT, submission.id))

    graded = quiz.run(quiz.workflow.grade(TEACHER, submission.id, {quiz.essay.id: 3}))
    assert graded.submission.status == GRADED


@pytest.mark.parametrize("score", [-1, 11])
def test_out_of_range_score_leaves_state_unchanged(quiz: Quiz, score: float) -> None:
    submission = quiz.turned_in()

    with pytest.raises(ValidationError):
        quiz.run(quiz.workflow.grade(TEACHER, submission.id, {quiz.essay.id: score}))

    stored = quiz.run(quiz.store.find_submission(submission.id))
    assert stored.status == SUBMITTED
    assert stored.total_score is None
    answers = quiz.run(quiz.store.list_answers_by_submission(submission.id))
    assert all(a.score is None for a in answers)


def test_missing_essay_score_is_rejected(quiz: Quiz) -> None:
    submission = quiz.turned_in()
    with pytest.raises(ValidationError, match="missing a score"):
        quiz.run(quiz.workflow.grade(TEACHER, submission.id, {}))


def test_score_for_multiple_choice_is_rejected(quiz: Quiz) -> None:
    submission = quiz.turned_in()
    with pytest.raises(ValidationError, match="scored automatically"):
        quiz.run(
            quiz.workflow.grade(
                TEACHER, submission.id, {quiz.essay.id: 5, quiz.mc.id: 10}
            )
        )


def test_score_for_unknown_question_is_rejected(quiz: Quiz) -> None:
    submission = quiz.turned_in()
    with pytest.raises(ValidationError, match="not part of this task"):
        quiz.run(
            quiz.workflow.grade(TEACHER, submission.id, {quiz.essay.id: 5, uuid4(): 1})
        )


def test_grading_in_progress_submission_conflicts(quiz: Quiz) -> None:
    submission = quiz.start()
    with pytest.raises(ConflictError):
        quiz.run(quiz.workflow.grade(TEACHER, submission.id, {quiz.essay.id: 5}))


def test_regrading_conflicts(quiz: Quiz) -> None:
    submission = quiz.turned_in()
    quiz.run(quiz.workflow.grade(TEACHER, submission.id, {quiz.essay.id: 5}))
    with pytest.raises(ConflictError):
        quiz.run(quiz.workflow.grade(TEACHER, submission.id, {quiz.essay.id: 9}))


def test_non_owning_teacher_cannot_grade(quiz: Quiz) -> None:
    submission = quiz.turned_in()
    with pytest.raises(ForbiddenError):
        quiz.run(
            quiz.workflow.grade(OTHER_TEACHER, submission.id, {quiz.essay.id: 5})
        )


def test_grading_missing_submission_is_not_found(quiz: Quiz) -> None:
    with pytest.raises(NotFoundError):
        quiz.run(quiz.workflow.grade(TEACHER, uuid4(), {}))


# ---- transactions ----


class _Database:
    """Rows shared by sessions, plus one lock per submission row."""

    def __init__(self, store: InMemoryClassworkStore) -> None:
        self.store = store
        self.locks: dict = {}
        self.events: list[str] = []


class _Session:
    """One transaction: a FOR UPDATE read holds the row lock until commit()."""

    def __init__(self, db: _Database) -> None:
        self._db = db
        self._held: list[asyncio.Lock] = []

    def __getattr__(self, name: str):
        return getattr(self._db.store, name)

    async def find_submission(self, submission_id, *, for_update: bool = False):
        if for_update:
            lock = self._db.locks.setdefault(submission_id, asyncio.Lock())
            if lock not in self._held:
                await lock.acquire()
                self._held.append(lock)
        return await self._db.store.find_submission(submission_id)

    async def commit(self) -> None:
        self._db.events.append("commit")
        for lock in self._held:
            lock.release()
        self._held.clear()


class _PausedBeforeStatusChange(_Session):
    def __init__(self, db: _Database) -> None:
        super().__init__(db)
        self.reached = asyncio.Event()
        self.resume = asyncio.Event()

    async def update_submission_status(self, *args, **kwargs):
        self.reached.set()
        await self.resume.wait()
        return await self._db.store.update_submission_status(*args, **kwargs)


class _RecordingCache(InMemoryCacheService):
    def __init__(self, events: list[str]) -> None:
        super().__init__()
        self._events = events

    async def delete_pattern(self, pattern: str) -> None:
        self._events.append("invalidate")
        await super().delete_pattern(pattern)


async def _let_others_run() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


def test_answer_during_submit_waits_then_conflicts(quiz: Quiz) -> None:
    submission = quiz.start()
    quiz.answer_all(submission.id)
    late_edit = AnswerPayload(text_response="edited late")

    async def race() -> None:
        db = _Database(quiz.store)
        submitting = _PausedBeforeStatusChange(db)
        submit = asyncio.create_task(
            SubmissionWorkflow(submitting, clock=lambda: quiz.now).submit(
                STUDENT, submission.id
            )
        )
        await submitting.reached.wait()

        edit = asyncio.create_task(
            SubmissionWorkflow(_Session(db), clock=lambda: quiz.now).record_answer(
                STUDENT, submission.id, quiz.essay.id, late_edit
            )
        )
        await _let_others_run()
        assert not edit.done()

        submitting.resume.set()
        assert (await submit).status == SUBMITTED
        with pytest.raises(ConflictError):
            await edit

    asyncio.run(race())

    answers = quiz.run(quiz.store.list_answers_by_submission(submission.id))
    essay = next(a for a in answers if a.question_id == quiz.essay.id)
    assert essay.text_response == "my answer"


def test_submit_waits_for_open_answer_transaction(quiz: Quiz) -> None:
    submission = quiz.start()
    quiz.choose(submission.id, quiz.correct)

    async def race():
        db = _Database(quiz.store)
        editing = _Session(db)
        await SubmissionWorkflow(editing, clock=lambda: quiz.now).record_answer(
            STUDENT, submission.id, quiz.essay.id, AnswerPayload(text_response="final")
        )
        submit = asyncio.create_task(
            SubmissionWorkflow(_Session(db), clock=lambda: quiz.now).submit(
                STUDENT, submission.id
            )
        )
        await _let_others_run()
        assert not submit.done()

        await editing.commit()
        return await submit

    assert asyncio.run(race()).status == SUBMITTED


def test_submit_and_grade_commit_before_clearing_results() -> None:
    quiz = Quiz()
    db = _Database(quiz.store)
    workflow = SubmissionWorkflow(
        _Session(db), clock=lambda: quiz.now, cache=_RecordingCache(db.events)
    )
    submission = quiz.start()
    quiz.answer_all(submission.id)

    quiz.run(workflow.submit(STUDENT, submission.id))
    assert db.events == ["commit", "invalidate"]

    quiz.run(workflow.grade(TEACHER, submission.id, {quiz.essay.id: 7}))
    assert db.events == ["commit", "invalidate", "commit", "invalidate"]
