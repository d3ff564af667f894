from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Literal
from uuid import UUID, uuid4

# NOT_STARTED is virtual: it is the absence of a Submission row.
SubmissionStatus = Literal[
    "NOT_STARTED", "IN_PROGRESS", "SUBMITTED", "SUBMITTED_LATE", "GRADED"
]

NOT_STARTED: SubmissionStatus = "NOT_STARTED"
IN_PROGRESS: SubmissionStatus = "IN_PROGRESS"
SUBMITTED: SubmissionStatus = "SUBMITTED"
SUBMITTED_LATE: SubmissionStatus = "SUBMITTED_LATE"
GRADED: SubmissionStatus = "GRADED"

AWAITING_GRADE: frozenset[str] = frozenset({SUBMITTED, SUBMITTED_LATE})
TURNED_IN: frozenset[str] = frozenset({SUBMITTED, SUBMITTED_LATE, GRADED})


@dataclass(frozen=True, slots=True)
class Submission:
    """One student's attempt at a Task."""

    id: UUID
    task_id: UUID
    student_id: str
    status: SubmissionStatus = IN_PROGRESS
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    submitted_at: datetime | None = None
    total_score: float | None = None
    teacher_feedback: str | None = None
    graded_at: datetime | None = None
    graded_by: str | None = None

    @staticmethod
    def new(*, task_id: UUID, student_id: str, started_at: datetime) -> Submission:
        return Submission(
            id=uuid4(),
            task_id=task_id,
            student_id=student_id,
            status=IN_PROGRESS,
            started_at=started_at,
        )


@dataclass(frozen=True, slots=True)
class Answer:
    """A student's response to one Question within a Submission.

    Essay answers carry text_response; multiple-choice answers carry
    chosen_option_id.  Scores and feedback are filled in by grading.
    """

    id: UUID
    submission_id: UUID
    question_id: UUID
    text_response: str | None = None
    chosen_option_id: UUID | None = None
    score: float | None = None
    feedback: str | None = None
    graded_at: datetime | None = None
    updated_at: datetime | None = None

    @staticmethod
    def new(
        *,
        submission_id: UUID,
        question_id: UUID,
        text_response: str | None = None,
        chosen_option_id: UUID | None = None,
        updated_at: datetime | None = None,
    ) -> Answer:
        return Answer(
            id=uuid4(),
            submission_id=submission_id,
            question_id=question_id,
            text_response=text_response,
            chosen_option_id=chosen_option_id,
            updated_at=updated_at,
        )


@dataclass(frozen=True, slots=True)
class AnswerGrade:
    """Score and optional feedback assigned to one Answer by grading."""

    score: float
    feedback: str | None = None
