"""Typed errors raised by the classwork services.

Each error carries a stable ``kind`` so the HTTP layer (and any UI behind
it) can tell "not your task" from "task not open" from "incomplete"
without parsing messages.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID


class ClassworkError(Exception):
    """Base class for every rejection the services raise on purpose."""

    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(ClassworkError):
    """A task, question, class or submission is absent (or hidden)."""

    kind = "not_found"


class ForbiddenError(ClassworkError):
    """The actor lacks permission: wrong student, non-owning teacher."""

    kind = "forbidden"


class ConflictError(ClassworkError):
    """The operation is invalid for the current state."""

    kind = "conflict"


class ValidationError(ClassworkError):
    """Malformed payload, score out of range, answer/question kind mismatch."""

    kind = "validation"


class IncompleteError(ClassworkError):
    """Submit attempted while some questions have no answer."""

    kind = "incomplete"

    def __init__(self, missing_question_ids: Iterable[UUID]) -> None:
        self.missing_question_ids = tuple(missing_question_ids)
        super().__init__(
            f"{len(self.missing_question_ids)} question(s) have not been answered"
        )
