from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from datetime import datetime
from typing import Protocol
from uuid import UUID

from classwork.models.classroom import Classroom, Enrollment
from classwork.models.submission import (
    Answer,
    AnswerGrade,
    Submission,
    SubmissionStatus,
)
from classwork.models.task import Question, Task


class ClassworkStore(Protocol):
    """Persistence for classes, tasks, questions, submissions and answers.

    Lookups return None when the record is absent; the services turn
    that into NotFoundError.  find_or_create_submission and upsert_answer
    must be atomic with respect to their (task, student) and
    (submission, question) keys.  commit() makes the writes so far durable
    and releases row locks; the workflow calls it before clearing caches.
    """

    async def add_class(self, classroom: Classroom) -> None: ...
    async def find_class(self, class_id: UUID) -> Classroom | None: ...
    async def add_enrollment(self, enrollment: Enrollment) -> None: ...
    async def find_enrollment(
        self, class_id: UUID, student_id: str
    ) -> Enrollment | None: ...
    async def set_enrollment_active(
        self, class_id: UUID, student_id: str, active: bool
    ) -> Enrollment: ...

    async def add_task(self, task: Task) -> None: ...
    async def find_task(self, task_id: UUID) -> Task | None: ...
    async def update_task(self, task: Task) -> None: ...
    async def delete_task(self, task_id: UUID) -> bool: ...
    async def list_tasks_by_class(self, class_id: UUID) -> list[Task]: ...

    async def add_question(self, question: Question) -> None: ...
    async def find_question(self, question_id: UUID) -> Question | None: ...
    async def update_question(self, question: Question) -> None: ...
    async def delete_question(self, question_id: UUID) -> bool: ...
    async def find_questions_by_task(self, task_id: UUID) -> list[Question]: ...

    async def find_or_create_submission(
        self, task_id: UUID, student_id: str, started_at: datetime
    ) -> tuple[Submission, bool]: ...
    async def find_submission(
        self, submission_id: UUID, *, for_update: bool = False
    ) -> Submission | None: ...
    async def list_submissions_by_task(self, task_id: UUID) -> list[Submission]: ...
    async def list_submissions_by_student(
        self, student_id: str
    ) -> list[Submission]: ...
    async def update_submission_status(
        self,
        submission_id: UUID,
        status: SubmissionStatus,
        *,
        submitted_at: datetime | None = None,
        total_score: float | None = None,
        teacher_feedback: str | None = None,
        graded_at: datetime | None = None,
        graded_by: str | None = None,
    ) -> Submission: ...

    async def upsert_answer(
        self,
        submission_id: UUID,
        question_id: UUID,
        *,
        text_response: str | None,
        chosen_option_id: UUID | None,
        updated_at: datetime,
    ) -> Answer: ...
    async def list_answers_by_submission(self, submission_id: UUID) -> list[Answer]: ...
    async def update_answer_scores(
        self,
        submission_id: UUID,
        grades: Mapping[UUID, AnswerGrade],
        graded_at: datetime,
    ) -> list[Answer]: ...

    async def commit(self) -> None: ...


class InMemoryClassworkStore:
    """Dict-backed store used when DATABASE_URL is not configured.

    No method awaits anything, so each call runs to completion without
    yielding to the event loop; within one process that makes
    find-or-create and upsert atomic.
    """

    def __init__(self) -> None:
        self._classes: dict[UUID, Classroom] = {}
        self._enrollments: dict[tuple[UUID, str], Enrollment] = {}
        self._tasks: dict[UUID, Task] = {}
        self._questions: dict[UUID, Question] = {}
        self._submissions: dict[UUID, Submission] = {}
        self._submission_keys: dict[tuple[UUID, str], UUID] = {}
        self._answers: dict[tuple[UUID, UUID], Answer] = {}

    # --- classes ---

    async def add_class(self, classroom: Classroom) -> None:
        self._classes[classroom.id] = classroom

    async def find_class(self, class_id: UUID) -> Classroom | None:
        return self._classes.get(class_id)

    async def add_enrollment(self, enrollment: Enrollment) -> None:
        key = (enrollment.class_id, enrollment.student_id)
        if key in self._enrollments:
            raise ValueError("enrollment already exists")
        self._enrollments[key] = enrollment

    async def find_enrollment(
        self, class_id: UUID, student_id: str
    ) -> Enrollment | None:
        return self._enrollments.get((class_id, student_id))

    async def set_enrollment_active(
        self, class_id: UUID, student_id: str, active: bool
    ) -> Enrollment:
        key = (class_id, student_id)
        if key not in self._enrollments:
            raise KeyError("enrollment not found")
        self._enrollments[key] = replace(self._enrollments[key], active=active)
        return self._enrollments[key]

    # --- tasks ---

    async def add_task(self, task: Task) -> None:
        self._tasks[task.id] = task

    async def find_task(self, task_id: UUID) -> Task | None:
        return self._tasks.get(task_id)

    async def update_task(self, task: Task) -> None:
        if task.id not in self._tasks:
            raise KeyError("task not found")
        self._tasks[task.id] = task

    async def delete_task(self, task_id: UUID) -> bool:
        if self._tasks.pop(task_id, None) is None:
            return False
        for qid in [q.id for q in self._questions.values() if q.task_id == task_id]:
            del self._questions[qid]
        return True

    async def list_tasks_by_class(self, class_id: UUID) -> list[Task]:
        tasks = [t for t in self._tasks.values() if t.class_id == class_id]
        return sorted(tasks, key=lambda t: t.created_at, reverse=True)

    # --- questions ---

    async def add_question(self, question: Question) -> None:
        self._questions[question.id] = question

    async def find_question(self, question_id: UUID) -> Question | None:
        return self._questions.get(question_id)

    async def update_question(self, question: Question) -> None:
        if question.id not in self._questions:
            raise KeyError("question not found")
        self._questions[question.id] = question

    async def delete_question(self, question_id: UUID) -> bool:
        return self._questions.pop(question_id, None) is not None

    async def find_questions_by_task(self, task_id: UUID) -> list[Question]:
        questions = [q for q in self._questions.values() if q.task_id == task_id]
        return sorted(questions, key=lambda q: q.position)

    # --- submissions ---

    async def find_or_create_submission(
        self, task_id: UUID, student_id: str, started_at: datetime
    ) -> tuple[Submission, bool]:
        existing_id = self._submission_keys.get((task_id, student_id))
        if existing_id is not None:
            return self._submissions[existing_id], False

        submission = Submission.new(
            task_id=task_id, student_id=student_id, started_at=started_at
        )
        self._submissions[submission.id] = submission
        self._submission_keys[(task_id, student_id)] = submission.id
        return submission, True

    async def find_submission(
        self, submission_id: UUID, *, for_update: bool = False
    ) -> Submission | None:
        return self._submissions.get(submission_id)

    async def list_submissions_by_task(self, task_id: UUID) -> list[Submission]:
        return [s for s in self._submissions.values() if s.task_id == task_id]

    async def list_submissions_by_student(self, student_id: str) -> list[Submission]:
        return [s for s in self._submissions.values() if s.student_id == student_id]

    async def update_submission_status(
        self,
        submission_id: UUID,
        status: SubmissionStatus,
        *,
        submitted_at: datetime | None = None,
        total_score: float | None = None,
        teacher_feedback: str | None = None,
        graded_at: datetime | None = None,
        graded_by: str | None = None,
    ) -> Submission:
        s = self._submissions.get(submission_id)
        if s is None:
            raise KeyError("submission not found")

        changes: dict[str, object] = {
            "submitted_at": submitted_at,
            "total_score": total_score,
            "teacher_feedback": teacher_feedback,
            "graded_at": graded_at,
            "graded_by": graded_by,
        }
        updated = replace(
            s,
            status=status,
            **{k: v for k, v in changes.items() if v is not None},
        )
        self._submissions[submission_id] = updated
        return updated

    # --- answers ---

    async def upsert_answer(
        self,
        submission_id: UUID,
        question_id: UUID,
        *,
        text_response: str | None,
        chosen_option_id: UUID | None,
        updated_at: datetime,
    ) -> Answer:
        key = (submission_id, question_id)
        existing = self._answers.get(key)
        if existing is None:
            answer = Answer.new(
                submission_id=submission_id,
                question_id=question_id,
                text_response=text_response,
                chosen_option_id=chosen_option_id,
                updated_at=updated_at,
            )
        else:
            answer = replace(
                existing,
                text_response=text_response,
                chosen_option_id=chosen_option_id,
                updated_at=updated_at,
            )
        self._answers[key] = answer
        return answer

    async def list_answers_by_submission(self, submission_id: UUID) -> list[Answer]:
        return [a for a in self._answers.values() if a.submission_id == submission_id]

    async def update_answer_scores(
        self,
        submission_id: UUID,
        grades: Mapping[UUID, AnswerGrade],
        graded_at: datetime,
    ) -> list[Answer]:
        updated: list[Answer] = []
        for question_id, grade in grades.items():
            key = (submission_id, question_id)
            existing = self._answers.get(key)
            if existing is None:
                continue
            answer = replace(
                existing,
                score=grade.score,
                feedback=grade.feedback,
                graded_at=graded_at,
            )
            self._answers[key] = answer
            updated.append(answer)
        return updated

    async def commit(self) -> None:
        """Writes are applied immediately; nothing to flush."""
