"""Submission lifecycle: open → answer → submit → grade.

State machine (per Submission):

  NOT_STARTED ──ensure_submission──▶ IN_PROGRESS
  IN_PROGRESS ──record_answer──────▶ IN_PROGRESS   (upsert, last write wins)
  IN_PROGRESS ──submit─────────────▶ SUBMITTED | SUBMITTED_LATE
  SUBMITTED*  ──grade──────────────▶ GRADED        (terminal)

NOT_STARTED is not stored; it is the absence of a row for (task, student).

Every operation takes the acting Principal explicitly.  The clock is
injected so late-submission checks are deterministic under test.

Each call is expected to run inside one store transaction (with
PostgreSQL, the request-scoped session).  record_answer(), submit() and
grade() read the submission FOR UPDATE before checking its status: an
answer written while submit() holds the row waits, then sees SUBMITTED
and is rejected.  submit() and grade() commit before clearing the
results cache, so a summary read racing them cannot cache the old state.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from classwork.core.metrics import GRADED_TOTAL_SCORE, SUBMISSION_TRANSITIONS
from classwork.models.principal import Principal
from classwork.models.submission import (
    AWAITING_GRADE,
    GRADED,
    IN_PROGRESS,
    SUBMITTED,
    SUBMITTED_LATE,
    Answer,
    AnswerGrade,
    Submission,
)
from classwork.models.task import ESSAY, MULTIPLE_CHOICE, Question, Task
from classwork.repos.classwork_store import ClassworkStore
from classwork.services import classroom_service
from classwork.services.cache import CacheService
from classwork.services.errors import (
    ClassworkError,
    ConflictError,
    ForbiddenError,
    IncompleteError,
    NotFoundError,
    ValidationError,
)
from classwork.services.grading import GradeResult, check_essay_score, grade_submission

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class AnswerPayload:
    """What the student sent for one question: text or a chosen option."""

    text_response: str | None = None
    chosen_option_id: UUID | None = None


@dataclass(frozen=True, slots=True)
class GradedSubmission:
    submission: Submission
    answers: list[Answer]
    result: GradeResult


@contextmanager
def _logged(
    operation: str, submission_id: UUID | None = None, **context: object
) -> Iterator[None]:
    """Log unexpected failures with enough context to diagnose, then re-raise.

    Typed workflow rejections pass through untouched; the API logs those
    as warnings when it maps them to 4xx.
    """
    try:
        yield
    except ClassworkError:
        raise
    except Exception:
        logger.exception(
            "%s failed unexpectedly submission=%s %s",
            operation,
            submission_id,
            " ".join(f"{k}={v}" for k, v in context.items()),
            extra={"operation": operation, "submission_id": str(submission_id)},
        )
        raise


class SubmissionWorkflow:
    def __init__(
        self,
        store: ClassworkStore,
        *,
        clock: Clock = utc_now,
        cache: CacheService | None = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._cache = cache

    # ------------------------------------------------------------------
    # NOT_STARTED → IN_PROGRESS
    # ------------------------------------------------------------------

    async def ensure_submission(
        self, actor: Principal, task_id: UUID
    ) -> tuple[Submission, bool]:
        """Return the actor's submission for the task, creating it on first access.

        The bool is True when this call created the row.
        """
        with _logged("ensure_submission", task=task_id, actor=actor.user_id):
            if not actor.is_student():
                raise ForbiddenError("only students can start a submission")

            task = await self._store.find_task(task_id)
            if task is None or not task.published:
                raise NotFoundError("task not found or not open yet")

            if not await classroom_service.is_enrolled(
                self._store, task.class_id, actor.user_id
            ):
                logger.warning(
                    "Access denied: student=%s not enrolled in class=%s for task=%s",
                    actor.user_id,
                    task.class_id,
                    task.id,
                )
                raise ForbiddenError("you are not enrolled in this task's class")

            submission, created = await self._store.find_or_create_submission(
                task.id, actor.user_id, self._clock()
            )

        if created:
            SUBMISSION_TRANSITIONS.labels(status=IN_PROGRESS).inc()
            logger.info(
                "Submission started id=%s task=%s student=%s",
                submission.id,
                task.id,
                actor.user_id,
            )
        return submission, created

    # ------------------------------------------------------------------
    # IN_PROGRESS → IN_PROGRESS
    # ------------------------------------------------------------------

    async def record_answer(
        self,
        actor: Principal,
        submission_id: UUID,
        question_id: UUID,
        payload: AnswerPayload,
    ) -> Answer:
        with _logged("record_answer", submission_id, question=question_id):
            submission = await self._load_own_submission(
                actor, submission_id, for_update=True
            )
            if submission.status != IN_PROGRESS:
                raise ConflictError(
                    f"submission is {submission.status} and can no longer be edited"
                )

            question = await self._store.find_question(question_id)
            if question is None or question.task_id != submission.task_id:
                raise NotFoundError("question not found in this task")

            _check_payload(question, payload)

            answer = await self._store.upsert_answer(
                submission.id,
                question.id,
                text_response=payload.text_response,
                chosen_option_id=payload.chosen_option_id,
                updated_at=self._clock(),
            )

        logger.debug(
            "Answer recorded submission=%s question=%s", submission.id, question.id
        )
        return answer

    # ------------------------------------------------------------------
    # IN_PROGRESS → SUBMITTED | SUBMITTED_LATE
    # ------------------------------------------------------------------

    async def submit(self, actor: Principal, submission_id: UUID) -> Submission:
        with _logged("submit", submission_id):
            submission = await self._load_own_submission(
                actor, submission_id, for_update=True
            )
            if submission.status != IN_PROGRESS:
                raise ConflictError(f"submission is already {submission.status}")

            task = await self._require_task(submission.task_id)
            questions = await self._store.find_questions_by_task(task.id)
            answers = await self._store.list_answers_by_submission(submission.id)

            answered = {a.question_id for a in answers}
            missing = [q.id for q in questions if q.id not in answered]
            if missing:
                logger.warning(
                    "Submit rejected submission=%s missing=%d",
                    submission.id,
                    len(missing),
                )
                raise IncompleteError(missing)

            now = self._clock()
            status = SUBMITTED_LATE if task.is_past_due(now) else SUBMITTED
            submission = await self._store.update_submission_status(
                submission.id, status, submitted_at=now
            )
            await self._store.commit()

        SUBMISSION_TRANSITIONS.labels(status=status).inc()
        logger.info(
            "Submission turned in id=%s task=%s student=%s status=%s",
            submission.id,
            task.id,
            actor.user_id,
            status,
        )
        await self._invalidate_results(submission.student_id)
        return submission

    # ------------------------------------------------------------------
    # SUBMITTED | SUBMITTED_LATE → GRADED
    # ------------------------------------------------------------------

    async def grade(
        self,
        actor: Principal,
        submission_id: UUID,
        essay_scores: Mapping[UUID, float],
        feedback: str | None = None,
        answer_feedback: Mapping[UUID, str] | None = None,
    ) -> GradedSubmission:
        """Finalize scores.  Multiple-choice answers are scored automatically;
        every essay question needs a score in ``essay_scores``.
        """
        answer_feedback = answer_feedback or {}
        with _logged("grade", submission_id, actor=actor.user_id):
            submission = await self._store.find_submission(
                submission_id, for_update=True
            )
            if submission is None:
                raise NotFoundError("submission not found")

            task = await self._require_task(submission.task_id)
            if task.teacher_id != actor.user_id:
                logger.warning(
                    "Access denied: user=%s tried to grade submission=%s of task=%s",
                    actor.user_id,
                    submission.id,
                    task.id,
                )
                raise ForbiddenError("only the teacher who owns this task can grade it")

            if submission.status not in AWAITING_GRADE:
                raise ConflictError(
                    f"submission is {submission.status}; "
                    "only submitted work can be graded"
                )

            questions = await self._store.find_questions_by_task(task.id)
            answers = await self._store.list_answers_by_submission(submission.id)
            _check_scores(questions, essay_scores, answer_feedback)

            result = grade_submission(questions, answers, essay_scores)

            now = self._clock()
            grades = {
                q.id: AnswerGrade(
                    score=result.per_question_score[q.id],
                    feedback=answer_feedback.get(q.id),
                )
                for q in questions
            }
            graded_answers = await self._store.update_answer_scores(
                submission.id, grades, now
            )
            submission = await self._store.update_submission_status(
                submission.id,
                GRADED,
                total_score=result.total_score,
                teacher_feedback=feedback,
                graded_at=now,
                graded_by=actor.user_id,
            )
            await self._store.commit()

        SUBMISSION_TRANSITIONS.labels(status=GRADED).inc()
        GRADED_TOTAL_SCORE.observe(result.total_score)
        logger.info(
            "Submission graded id=%s task=%s teacher=%s total=%g correct=%d/%d",
            submission.id,
            task.id,
            actor.user_id,
            result.total_score,
            result.correct_count,
            result.question_count,
        )
        await self._invalidate_results(submission.student_id)
        return GradedSubmission(
            submission=submission, answers=graded_answers, result=result
        )

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def _load_own_submission(
        self, actor: Principal, submission_id: UUID, *, for_update: bool = False
    ) -> Submission:
        submission = await self._store.find_submission(
            submission_id, for_update=for_update
        )
        if submission is None:
            raise NotFoundError("submission not found")
        if submission.student_id != actor.user_id:
            logger.warning(
                "Access denied: user=%s does not own submission=%s",
                actor.user_id,
                submission_id,
            )
            raise ForbiddenError("this submission belongs to another student")
        return submission

    async def _require_task(self, task_id: UUID) -> Task:
        task = await self._store.find_task(task_id)
        if task is None:
            raise NotFoundError("task not found")
        return task

    async def _invalidate_results(self, student_id: str) -> None:
        if self._cache is not None:
            await self._cache.delete_pattern(f"results:{student_id}:*")


def _check_payload(question: Question, payload: AnswerPayload) -> None:
    if question.kind == MULTIPLE_CHOICE:
        if payload.chosen_option_id is None or payload.text_response is not None:
            raise ValidationError(
                "a multiple-choice question takes chosen_option_id and no text"
            )
        if not question.has_option(payload.chosen_option_id):
            raise ValidationError("the chosen option does not belong to this question")
    elif question.kind == ESSAY:
        if payload.text_response is None or payload.chosen_option_id is not None:
            raise ValidationError(
                "an essay question takes text_response and no chosen option"
            )
    else:
        raise ValidationError(f"unknown question kind {question.kind!r}")


def _check_scores(
    questions: list[Question],
    essay_scores: Mapping[UUID, float],
    answer_feedback: Mapping[UUID, str],
) -> None:
    by_id = {q.id: q for q in questions}

    for question_id in set(essay_scores) | set(answer_feedback):
        if question_id not in by_id:
            raise ValidationError(f"question {question_id} is not part of this task")

    for question_id in essay_scores:
        if by_id[question_id].kind != ESSAY:
            raise ValidationError(
                f"question {question_id} is multiple choice and is scored automatically"
            )

    for question in questions:
        if question.kind != ESSAY:
            continue
        if question.id not in essay_scores:
            raise ValidationError(f"essay question {question.id} is missing a score")
        check_essay_score(question, essay_scores[question.id])
