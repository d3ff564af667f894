"""Read-only result views, all scored through grade_submission().

  submission_result  one submission with its answers and, once graded,
                     its GradeResult (student "my results", teacher review)
  task_report        every submission of a task with per-submission totals
  student_summary    a student's standing in one class (completion rate,
                     average/highest/lowest/latest grade); read-through
                     cached and invalidated by submit and grade
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from uuid import UUID

from classwork.core.metrics import CACHE_OPERATIONS
from classwork.models.principal import Principal
from classwork.models.submission import GRADED, TURNED_IN, Answer, Submission
from classwork.models.task import ESSAY, Question, Task
from classwork.repos.classwork_store import ClassworkStore
from classwork.services import classroom_service, task_service
from classwork.services.cache import CacheService
from classwork.services.errors import ForbiddenError, NotFoundError
from classwork.services.grading import GradeResult, grade_submission

logger = logging.getLogger(__name__)

# Long enough to absorb a student refreshing their dashboard, short enough
# that a missed invalidation resolves within minutes.
_SUMMARY_CACHE_TTL = 300


@dataclass(frozen=True, slots=True)
class SubmissionResult:
    submission: Submission
    task: Task
    questions: list[Question]
    answers: list[Answer]
    result: GradeResult | None  # None until GRADED


@dataclass(frozen=True, slots=True)
class ReportRow:
    submission: Submission
    result: GradeResult | None


@dataclass(frozen=True, slots=True)
class TaskReport:
    task: Task
    rows: list[ReportRow]
    submitted_count: int
    graded_count: int
    average_score: float | None


@dataclass(frozen=True, slots=True)
class StudentSummary:
    class_id: str
    student_id: str
    published_tasks: int
    completed_tasks: int
    completion_rate: int  # percent, rounded
    graded_tasks: int
    average_score: float | None
    highest_score: float | None
    lowest_score: float | None
    latest_score: float | None


def stored_result(questions: list[Question], answers: list[Answer]) -> GradeResult:
    """Recompute the result of a graded submission from its stored essay scores."""
    essay_ids = {q.id for q in questions if q.kind == ESSAY}
    essay_scores = {
        a.question_id: a.score
        for a in answers
        if a.score is not None and a.question_id in essay_ids
    }
    return grade_submission(questions, answers, essay_scores)


async def submission_result(
    store: ClassworkStore, actor: Principal, submission_id: UUID
) -> SubmissionResult:
    submission = await store.find_submission(submission_id)
    if submission is None:
        raise NotFoundError("submission not found")

    task = await store.find_task(submission.task_id)
    if task is None:
        raise NotFoundError("task not found")

    allowed = (
        submission.student_id == actor.user_id
        or task.teacher_id == actor.user_id
        or actor.is_platform_admin()
    )
    if not allowed:
        logger.warning(
            "Access denied: user=%s viewing submission=%s", actor.user_id, submission.id
        )
        raise ForbiddenError("you cannot view this submission")

    questions = await store.find_questions_by_task(task.id)
    answers = await store.list_answers_by_submission(submission.id)
    result = stored_result(questions, answers) if submission.status == GRADED else None
    return SubmissionResult(
        submission=submission,
        task=task,
        questions=questions,
        answers=answers,
        result=result,
    )


async def task_report(
    store: ClassworkStore, actor: Principal, task_id: UUID
) -> TaskReport:
    task = await store.find_task(task_id)
    if task is None:
        raise NotFoundError("task not found")
    if not actor.is_platform_admin():
        task_service.require_task_owner(actor, task)

    questions = await store.find_questions_by_task(task.id)
    rows: list[ReportRow] = []
    for submission in await store.list_submissions_by_task(task.id):
        result = None
        if submission.status == GRADED:
            answers = await store.list_answers_by_submission(submission.id)
            result = stored_result(questions, answers)
        rows.append(ReportRow(submission=submission, result=result))

    graded = [r.result.total_score for r in rows if r.result is not None]
    return TaskReport(
        task=task,
        rows=rows,
        submitted_count=sum(1 for r in rows if r.submission.status in TURNED_IN),
        graded_count=len(graded),
        average_score=round(sum(graded) / len(graded), 1) if graded else None,
    )


async def student_summary(
    store: ClassworkStore, cache: CacheService, actor: Principal, class_id: UUID
) -> StudentSummary:
    if await store.find_class(class_id) is None:
        raise NotFoundError("class not found")
    if not await classroom_service.is_enrolled(store, class_id, actor.user_id):
        raise ForbiddenError("you are not enrolled in this class")

    cache_key = f"results:{actor.user_id}:{class_id}"
    cached = await cache.get(cache_key)
    if cached is not None:
        CACHE_OPERATIONS.labels(operation="hit").inc()
        return StudentSummary(**json.loads(cached))
    CACHE_OPERATIONS.labels(operation="miss").inc()

    summary = await _compute_summary(store, actor.user_id, class_id)
    await cache.set(cache_key, json.dumps(asdict(summary)), _SUMMARY_CACHE_TTL)
    return summary


async def _compute_summary(
    store: ClassworkStore, student_id: str, class_id: UUID
) -> StudentSummary:
    tasks = {
        t.id: t for t in await store.list_tasks_by_class(class_id) if t.published
    }
    submissions = [
        s
        for s in await store.list_submissions_by_student(student_id)
        if s.task_id in tasks
    ]

    completed = sum(1 for s in submissions if s.status in TURNED_IN)

    graded: list[tuple[Submission, float]] = []
    for s in submissions:
        if s.status != GRADED:
            continue
        questions = await store.find_questions_by_task(s.task_id)
        answers = await store.list_answers_by_submission(s.id)
        graded.append((s, stored_result(questions, answers).total_score))

    scores = [score for _, score in graded]
    latest = max(graded, key=lambda g: g[0].graded_at or g[0].started_at, default=None)

    return StudentSummary(
        class_id=str(class_id),
        student_id=student_id,
        published_tasks=len(tasks),
        completed_tasks=completed,
        completion_rate=round(completed / len(tasks) * 100) if tasks else 0,
        graded_tasks=len(graded),
        average_score=round(sum(scores) / len(scores), 1) if scores else None,
        highest_score=max(scores) if scores else None,
        lowest_score=min(scores) if scores else None,
        latest_score=latest[1] if latest is not None else None,
    )
