"""Prometheus metrics endpoint.

Scraped by Prometheus; returns the text exposition format, not JSON:

  # TYPE submission_transitions_total counter
  submission_transitions_total{status="SUBMITTED_LATE"} 4.0
  workflow_errors_total{kind="incomplete"} 11.0

Restrict access to /metrics at the ingress in production; request and
error rates reveal usage patterns.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Expose all Prometheus metrics in text exposition format."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
