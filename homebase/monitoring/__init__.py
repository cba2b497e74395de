"""
HOMEBASE - Monitoring Module
=============================
Observability components: metrics and webhook alerts.
"""

from homebase.monitoring.metrics import (
    record_automated_response,
    record_incident,
    record_security_event,
    record_session_revocation,
)
from homebase.monitoring.alerts import send_security_alert

__all__ = [
    "record_automated_response",
    "record_incident",
    "record_security_event",
    "record_session_revocation",
    "send_security_alert",
]
