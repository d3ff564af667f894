"""Map typed service errors onto HTTP responses.

Every rejection becomes ``{"error": <kind>, "message": <text>}`` so the UI
can render an actionable message per kind:

  not_found   404  task absent or not open yet
  forbidden   403  not your task / not your class
  conflict    409  wrong state for the operation (already submitted, ...)
  validation  422  malformed answer, score out of range, bad question
  incomplete  422  submit with unanswered questions (+ missing_question_ids)
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from classwork.core.metrics import WORKFLOW_ERRORS
from classwork.services.errors import ClassworkError, IncompleteError

logger = logging.getLogger(__name__)

_STATUS_BY_KIND = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "forbidden": status.HTTP_403_FORBIDDEN,
    "conflict": status.HTTP_409_CONFLICT,
    "validation": status.HTTP_422_UNPROCESSABLE_CONTENT,
    "incomplete": status.HTTP_422_UNPROCESSABLE_CONTENT,
}


def to_http_exception(err: ClassworkError) -> HTTPException:
    WORKFLOW_ERRORS.labels(kind=err.kind).inc()
    logger.warning("Request rejected kind=%s: %s", err.kind, err.message)

    detail: dict[str, object] = {"error": err.kind, "message": err.message}
    if isinstance(err, IncompleteError):
        detail["missing_question_ids"] = [str(q) for q in err.missing_question_ids]

    return HTTPException(
        status_code=_STATUS_BY_KIND.get(err.kind, status.HTTP_400_BAD_REQUEST),
        detail=detail,
    )
