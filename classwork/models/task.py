from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Literal
from uuid import UUID, uuid4

QuestionKind = Literal["MULTIPLE_CHOICE", "ESSAY"]

MULTIPLE_CHOICE: QuestionKind = "MULTIPLE_CHOICE"
ESSAY: QuestionKind = "ESSAY"


@dataclass(frozen=True, slots=True)
class Task:
    """An assignment a teacher publishes to one of their classes."""

    id: UUID
    class_id: UUID
    teacher_id: str
    title: str
    description: str = ""
    points: float = 0
    due_date: datetime | None = None
    published: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @staticmethod
    def new(
        *,
        class_id: UUID,
        teacher_id: str,
        title: str,
        description: str = "",
        points: float = 0,
        due_date: datetime | None = None,
        published: bool = False,
    ) -> Task:
        return Task(
            id=uuid4(),
            class_id=class_id,
            teacher_id=teacher_id,
            title=title,
            description=description,
            points=points,
            due_date=due_date,
            published=published,
        )

    def is_past_due(self, now: datetime) -> bool:
        return self.due_date is not None and now > self.due_date


@dataclass(frozen=True, slots=True)
class QuestionOption:
    id: UUID
    text: str
    is_correct: bool
    position: int

    @staticmethod
    def new(*, text: str, is_correct: bool, position: int) -> QuestionOption:
        return QuestionOption(
            id=uuid4(), text=text, is_correct=is_correct, position=position
        )


@dataclass(frozen=True, slots=True)
class Question:
    id: UUID
    task_id: UUID
    position: int
    kind: QuestionKind
    prompt: str
    points: float
    options: tuple[QuestionOption, ...] = ()  # ordered by position

    @staticmethod
    def new(
        *,
        task_id: UUID,
        position: int,
        kind: QuestionKind,
        prompt: str,
        points: float,
        options: tuple[QuestionOption, ...] = (),
    ) -> Question:
        return Question(
            id=uuid4(),
            task_id=task_id,
            position=position,
            kind=kind,
            prompt=prompt,
            points=points,
            options=tuple(sorted(options, key=lambda o: o.position)),
        )

    @property
    def correct_option_id(self) -> UUID | None:
        for option in self.options:
            if option.is_correct:
                return option.id
        return None

    def has_option(self, option_id: UUID) -> bool:
        return any(o.id == option_id for o in self.options)
