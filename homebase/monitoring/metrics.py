"""
HOMEBASE - Prometheus Metrics
==============================
Application metrics for monitoring and alerting.
"""

import structlog
from prometheus_client import Counter, Histogram, Info

logger = structlog.get_logger(__name__)

APP_INFO = Info("homebase_app", "Application information")
APP_INFO.info({
    "version": "1.0.0",
    "name": "HOMEBASE",
})

# HTTP
REQUEST_COUNT = Counter(
    "homebase_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"]
)

REQUEST_DURATION = Histogram(
    "homebase_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]
)

# Security
SECURITY_EVENTS_TOTAL = Counter(
    "homebase_security_events_total",
    "Security events recorded",
    ["event_type", "severity"]
)

INCIDENTS_TOTAL = Counter(
    "homebase_security_incidents_total",
    "Security incidents opened",
    ["severity"]
)

AUTOMATED_RESPONSES_TOTAL = Counter(
    "homebase_automated_responses_total",
    "Automated responses executed",
    ["action"]
)

SESSIONS_REVOKED_TOTAL = Counter(
    "homebase_sessions_revoked_total",
    "Sessions revoked",
    ["reason"]
)


def record_security_event(event_type: str, severity: str) -> None:
    SECURITY_EVENTS_TOTAL.labels(event_type=event_type, severity=severity).inc()


def record_incident(severity: str) -> None:
    INCIDENTS_TOTAL.labels(severity=severity).inc()


def record_automated_response(action: str) -> None:
    AUTOMATED_RESPONSES_TOTAL.labels(action=action).inc()


def record_session_revocation(reason: str, count: int = 1) -> None:
    if count > 0:
        SESSIONS_REVOKED_TOTAL.labels(reason=reason).inc(count)
