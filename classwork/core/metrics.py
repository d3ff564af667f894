"""Application metrics using the Prometheus client library.

One inventory of everything the service measures.  Other modules import
specific metrics and increment/observe them at the point of action.

  http_*                        populated by MetricsMiddleware
  submission_transitions_total  one per successful workflow transition,
                                labelled by the status entered
  workflow_errors_total         typed rejections surfaced as 4xx, by kind
  grading_total_score           distribution of finalized total scores
  cache_operations_total        results cache hits and misses
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Workflow metrics
# ---------------------------------------------------------------------------

SUBMISSION_TRANSITIONS = Counter(
    "submission_transitions_total",
    "Submission state transitions by the status entered",
    ["status"],  # IN_PROGRESS|SUBMITTED|SUBMITTED_LATE|GRADED
)

WORKFLOW_ERRORS = Counter(
    "workflow_errors_total",
    "Workflow requests rejected with a typed error",
    ["kind"],  # not_found|forbidden|conflict|validation|incomplete
)

GRADED_TOTAL_SCORE = Histogram(
    "grading_total_score",
    "Total score assigned when a submission is graded",
    buckets=[0, 1, 2.5, 5, 10, 20, 50, 100],
)

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache get operations by result",
    ["operation"],  # "hit" or "miss"
)
