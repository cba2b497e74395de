"""
HOMEBASE - Risk Scoring
========================
Table-driven triage for security events.

Every SecurityEventType has exactly one base score and one automated
response. `score()` and `severity_for()` are pure: no clock, no I/O.
"""

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from homebase.db.models import Severity
from homebase.security.policy import RiskThresholds

DEFAULT_BASE_SCORE = 30
MAX_SCORE = 100

REPEATED_ATTEMPTS_LIMIT = 5
REPEATED_ATTEMPTS_BONUS = 20
NEW_DEVICE_BONUS = 15
NEW_LOCATION_BONUS = 15
OFF_HOURS_BONUS = 10


class SecurityEventType(str, Enum):
    """Named security events recorded by the gate, the RBAC layer and the monitor."""
    # Authentication / monitoring
    LOGIN_FAILURE = "login_failure"
    BRUTE_FORCE_DETECTED = "brute_force_detected"
    SUSPICIOUS_LOCATION = "suspicious_location"
    MULTIPLE_FAILED_LOGINS = "multiple_failed_logins"
    DATA_EXFILTRATION_DETECTED = "data_exfiltration_detected"
    MALICIOUS_PAYLOAD_DETECTED = "malicious_payload_detected"
    PRIVILEGE_ESCALATION = "privilege_escalation"
    UNUSUAL_DATA_ACCESS = "unusual_data_access"
    SESSION_HIJACKING = "session_hijacking"
    ACCOUNT_ENUMERATION = "account_enumeration"

    # Session gate
    INVALID_TOKEN = "invalid_token"
    INVALID_SESSION = "invalid_session"
    SESSION_EXPIRED = "session_expired"
    AUTO_LOGOUT = "auto_logout"
    ACCOUNT_LOCKED = "account_locked"
    IP_ADDRESS_CHANGE = "ip_address_change"
    MULTIPLE_ACTIVE_SESSIONS = "multiple_active_sessions"
    USER_AGENT_CHANGE = "user_agent_change"

    # Access control
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    PERMISSION_DENIED = "permission_denied"
    ROLE_DENIED = "role_denied"
    GROUP_ACCESS_DENIED = "group_access_denied"
    ADMIN_ACCESS_DENIED = "admin_access_denied"
    UNREGISTERED_DEVICE = "unregistered_device"


class AutomatedAction(str, Enum):
    BLOCK_IP = "block_ip"
    REQUIRE_VERIFICATION = "require_verification"
    LOCK_ACCOUNT = "lock_account"
    REVOKE_SESSIONS = "revoke_sessions"
    LOG_ONLY = "log_only"


@dataclass(frozen=True)
class AutomatedResponse:
    action: AutomatedAction
    description: str
    duration: Optional[timedelta] = None


BASE_SCORES: Dict[SecurityEventType, int] = {
    SecurityEventType.LOGIN_FAILURE: 20,
    SecurityEventType.BRUTE_FORCE_DETECTED: 80,
    SecurityEventType.SUSPICIOUS_LOCATION: 60,
    SecurityEventType.MULTIPLE_FAILED_LOGINS: 70,
    SecurityEventType.DATA_EXFILTRATION_DETECTED: 95,
    SecurityEventType.MALICIOUS_PAYLOAD_DETECTED: 90,
    SecurityEventType.PRIVILEGE_ESCALATION: 85,
    SecurityEventType.UNUSUAL_DATA_ACCESS: 50,
    SecurityEventType.SESSION_HIJACKING: 90,
    SecurityEventType.ACCOUNT_ENUMERATION: 40,
    SecurityEventType.INVALID_TOKEN: 40,
    SecurityEventType.INVALID_SESSION: 50,
    SecurityEventType.SESSION_EXPIRED: 10,
    SecurityEventType.AUTO_LOGOUT: 10,
    SecurityEventType.ACCOUNT_LOCKED: 40,
    SecurityEventType.IP_ADDRESS_CHANGE: 50,
    SecurityEventType.MULTIPLE_ACTIVE_SESSIONS: 80,
    SecurityEventType.USER_AGENT_CHANGE: 20,
    SecurityEventType.RATE_LIMIT_EXCEEDED: 30,
    SecurityEventType.PERMISSION_DENIED: 20,
    SecurityEventType.ROLE_DENIED: 25,
    SecurityEventType.GROUP_ACCESS_DENIED: 35,
    SecurityEventType.ADMIN_ACCESS_DENIED: 60,
    SecurityEventType.UNREGISTERED_DEVICE: 70,
}

_LOGGED = AutomatedResponse(AutomatedAction.LOG_ONLY, "Security event logged")

AUTOMATED_RESPONSES: Dict[SecurityEventType, AutomatedResponse] = {
    SecurityEventType.BRUTE_FORCE_DETECTED: AutomatedResponse(
        AutomatedAction.BLOCK_IP, "IP blocked for 1 hour", timedelta(hours=1)
    ),
    SecurityEventType.SUSPICIOUS_LOCATION: AutomatedResponse(
        AutomatedAction.REQUIRE_VERIFICATION, "Additional verification required"
    ),
    SecurityEventType.MULTIPLE_FAILED_LOGINS: AutomatedResponse(
        AutomatedAction.LOCK_ACCOUNT, "Account temporarily locked", timedelta(minutes=15)
    ),
    SecurityEventType.DATA_EXFILTRATION_DETECTED: AutomatedResponse(
        AutomatedAction.REVOKE_SESSIONS, "All sessions revoked"
    ),
    SecurityEventType.MALICIOUS_PAYLOAD_DETECTED: AutomatedResponse(
        AutomatedAction.BLOCK_IP, "IP blocked for 24 hours", timedelta(hours=24)
    ),
    # The gate itself revokes the other sessions before recording this event.
    SecurityEventType.MULTIPLE_ACTIVE_SESSIONS: AutomatedResponse(
        AutomatedAction.LOG_ONLY, "Revoked all other active sessions"
    ),
    SecurityEventType.UNREGISTERED_DEVICE: AutomatedResponse(
        AutomatedAction.LOG_ONLY, "Blocked access from unregistered device"
    ),
    SecurityEventType.RATE_LIMIT_EXCEEDED: AutomatedResponse(
        AutomatedAction.LOG_ONLY, "Applied rate limiting"
    ),
    SecurityEventType.INVALID_TOKEN: AutomatedResponse(
        AutomatedAction.LOG_ONLY, "Rejected request with invalid token"
    ),
    SecurityEventType.LOGIN_FAILURE: _LOGGED,
    SecurityEventType.PRIVILEGE_ESCALATION: _LOGGED,
    SecurityEventType.UNUSUAL_DATA_ACCESS: _LOGGED,
    SecurityEventType.SESSION_HIJACKING: _LOGGED,
    SecurityEventType.ACCOUNT_ENUMERATION: _LOGGED,
    SecurityEventType.INVALID_SESSION: _LOGGED,
    SecurityEventType.SESSION_EXPIRED: _LOGGED,
    SecurityEventType.AUTO_LOGOUT: _LOGGED,
    SecurityEventType.ACCOUNT_LOCKED: _LOGGED,
    SecurityEventType.IP_ADDRESS_CHANGE: _LOGGED,
    SecurityEventType.USER_AGENT_CHANGE: _LOGGED,
    SecurityEventType.PERMISSION_DENIED: _LOGGED,
    SecurityEventType.ROLE_DENIED: _LOGGED,
    SecurityEventType.GROUP_ACCESS_DENIED: _LOGGED,
    SecurityEventType.ADMIN_ACCESS_DENIED: _LOGGED,
}


def classify(event_type: Union[str, SecurityEventType]) -> Optional[SecurityEventType]:
    """Map an event name onto the enum, or None for unknown names."""
    if isinstance(event_type, SecurityEventType):
        return event_type
    try:
        return SecurityEventType(event_type)
    except ValueError:
        return None


def _flag(name: str, details: Mapping[str, Any], context: Mapping[str, Any]) -> bool:
    return bool(details.get(name) or context.get(name))


def score(
    event_type: Union[str, SecurityEventType],
    details: Optional[Mapping[str, Any]] = None,
    context: Optional[Mapping[str, Any]] = None,
) -> int:
    """
    Risk score in [0, 100] for one event.

    Base score from BASE_SCORES (DEFAULT_BASE_SCORE for unknown names), plus:
    +20 when details["repeated_attempts"] > 5, +15 for new_device,
    +15 for new_location, +10 for off_hours. Flags are read from details,
    then context.
    """
    details = details or {}
    context = context or {}

    known = classify(event_type)
    total = BASE_SCORES.get(known, DEFAULT_BASE_SCORE) if known else DEFAULT_BASE_SCORE

    try:
        repeated = int(details.get("repeated_attempts") or 0)
    except (TypeError, ValueError):
        repeated = 0
    if repeated > REPEATED_ATTEMPTS_LIMIT:
        total += REPEATED_ATTEMPTS_BONUS

    if _flag("new_device", details, context):
        total += NEW_DEVICE_BONUS
    if _flag("new_location", details, context):
        total += NEW_LOCATION_BONUS
    if _flag("off_hours", details, context):
        total += OFF_HOURS_BONUS

    return max(0, min(total, MAX_SCORE))


def severity_for(risk_score: int, thresholds: Optional[RiskThresholds] = None) -> Severity:
    thresholds = thresholds or RiskThresholds()
    if risk_score >= thresholds.critical:
        return Severity.CRITICAL
    if risk_score >= thresholds.high:
        return Severity.HIGH
    if risk_score >= thresholds.medium:
        return Severity.MEDIUM
    return Severity.LOW


def response_for(event_type: Union[str, SecurityEventType]) -> AutomatedResponse:
    known = classify(event_type)
    if known is None:
        return _LOGGED
    return AUTOMATED_RESPONSES.get(known, _LOGGED)


def missing_table_entries() -> Dict[str, List[str]]:
    """Event types without a base score or without an automated response."""
    return {
        "base_scores": [e.value for e in SecurityEventType if e not in BASE_SCORES],
        "automated_responses": [e.value for e in SecurityEventType if e not in AUTOMATED_RESPONSES],
    }
