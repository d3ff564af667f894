"""Score computation for a submission.

This is the single place scores are derived from questions and answers.
The grading endpoint, the student's result view, the teacher's task
report and the class summary all call grade_submission() rather than
recomputing totals or percentages themselves.

Rules per question:

  MULTIPLE_CHOICE  full points when the chosen option is the correct one,
                   otherwise 0 (including when unanswered)
  ESSAY            the teacher's manual score when provided, otherwise 0;
                   a provided score must lie in [0, points]

The function reads nothing but its arguments and writes nothing, so the
same inputs always give the same result.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from uuid import UUID

from classwork.models.submission import Answer
from classwork.models.task import ESSAY, MULTIPLE_CHOICE, Question
from classwork.services.errors import ValidationError


@dataclass(frozen=True, slots=True)
class GradeResult:
    per_question_score: dict[UUID, float]
    total_score: float
    correct_count: int
    max_score: float
    question_count: int

    @property
    def percent_correct(self) -> float:
        if self.question_count == 0:
            return 0.0
        return round(self.correct_count / self.question_count * 100, 1)


def check_essay_score(question: Question, score: float) -> None:
    """Raise ValidationError unless score is within [0, question.points]."""
    if not 0 <= score <= question.points:
        raise ValidationError(
            f"score {score:g} for question {question.id} must be between "
            f"0 and {question.points:g}"
        )


def score_question(
    question: Question,
    answer: Answer | None,
    manual_score: float | None = None,
) -> float:
    if question.kind == MULTIPLE_CHOICE:
        if answer is None or answer.chosen_option_id is None:
            return 0.0
        correct = question.correct_option_id
        if correct is not None and answer.chosen_option_id == correct:
            return float(question.points)
        return 0.0

    if question.kind == ESSAY:
        if manual_score is None:
            return 0.0
        check_essay_score(question, manual_score)
        return float(manual_score)

    raise ValidationError(f"unknown question kind {question.kind!r}")


def grade_submission(
    questions: Sequence[Question],
    answers: Iterable[Answer],
    manual_essay_scores: Mapping[UUID, float] | None = None,
) -> GradeResult:
    manual_essay_scores = manual_essay_scores or {}
    answers_by_question = {a.question_id: a for a in answers}

    per_question: dict[UUID, float] = {}
    correct_count = 0
    for question in questions:
        manual = None
        if question.kind == ESSAY:
            manual = manual_essay_scores.get(question.id)
        score = score_question(question, answers_by_question.get(question.id), manual)
        per_question[question.id] = score
        if score == question.points:
            correct_count += 1

    return GradeResult(
        per_question_score=per_question,
        total_score=sum(per_question.values(), 0.0),
        correct_count=correct_count,
        max_score=float(sum(q.points for q in questions)),
        question_count=len(questions),
    )
