"""Prometheus metrics shared by the API and services"""

from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    'safetransit_http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

REQUEST_DURATION = Histogram(
    'safetransit_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint']
)

REPORTS_SUBMITTED = Counter(
    'safetransit_reports_submitted_total',
    'Anonymous reports stored',
    ['severity']
)

REPORTS_REJECTED = Counter(
    'safetransit_report_submissions_failed_total',
    'Report submissions that were not stored',
    ['reason']
)

ALERTS_CREATED = Counter(
    'safetransit_alerts_created_total',
    'Safety alerts created',
    ['trigger']
)

REVIEW_ACTIONS = Counter(
    'safetransit_review_actions_total',
    'Administrator review actions applied',
    ['action']
)

ERROR_COUNT = Counter(
    'safetransit_errors_total',
    'Total errors',
    ['error_type']
)
