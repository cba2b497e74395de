"""
HOMEBASE - Security Monitor
============================
The security event pipeline:

    score -> audit row -> incident (>= high) -> automated response
    (>= auto-block threshold) -> webhook alert -> alert thresholds

`process_event` is best-effort. It never raises; a failure is logged and
reported to the caller as `None`, which callers are free to ignore.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from homebase.db.models import (
    AuditCategory, AuditLog, IPBlock, Member, RevocationReason,
    SecurityIncident, Severity,
)
from homebase.monitoring.alerts import send_security_alert
from homebase.monitoring.metrics import (
    record_automated_response, record_incident, record_security_event,
)
from homebase.security.policy import MonitoringPolicy
from homebase.security.risk import (
    AutomatedAction, AutomatedResponse, SecurityEventType,
    classify, response_for, score, severity_for,
)
from homebase.services.audit import AuditService
from homebase.services.sessions import SessionService

logger = structlog.get_logger(__name__)


@dataclass
class EventContext:
    """Who and where an event came from."""
    member_id: Optional[UUID] = None
    session_id: Optional[UUID] = None
    group_id: Optional[UUID] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    flags: Dict[str, Any] = field(default_factory=dict)


@dataclass
class EventOutcome:
    event_type: str
    risk_score: int
    severity: Severity
    audit_id: UUID
    incident_id: Optional[UUID] = None
    action: Optional[AutomatedAction] = None


class SecurityMonitor:
    """Records security events and applies automated responses."""

    def __init__(self, db: AsyncSession, policy: Optional[MonitoringPolicy] = None):
        self.db = db
        self.policy = policy or MonitoringPolicy()

    # ============== EVENT PIPELINE ==============

    async def process_event(
        self,
        event_type: Union[str, SecurityEventType],
        details: Optional[Dict[str, Any]] = None,
        context: Optional[EventContext] = None,
        category: AuditCategory = AuditCategory.SECURITY,
    ) -> Optional[EventOutcome]:
        """
        Score, record and react to one security event.

        Never propagates. Returns None when any step fails.
        """
        name = event_type.value if isinstance(event_type, SecurityEventType) else str(event_type)
        try:
            return await self._process(event_type, name, details or {}, context or EventContext(), category)
        except Exception as e:
            logger.error("security_event_processing_failed", event_type=name, error=str(e), exc_info=True)
            try:
                await self.db.rollback()
            except Exception as rollback_error:
                logger.error("security_event_rollback_failed", error=str(rollback_error))
            return None

    async def _process(
        self,
        event_type: Union[str, SecurityEventType],
        name: str,
        details: Dict[str, Any],
        context: EventContext,
        category: AuditCategory,
    ) -> EventOutcome:
        known = classify(event_type)
        if known is None:
            logger.warning("security_event_unclassified", event_type=name)

        risk_score = score(event_type, details, context.flags)
        severity = severity_for(risk_score, self.policy.thresholds)

        audit = await AuditService(self.db).log(
            category=category,
            action=name,
            actor_id=context.member_id,
            group_id=context.group_id,
            details={**details, "severity": severity.value},
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            session_id=context.session_id,
            success=False,
            risk_score=risk_score,
        )
        record_security_event(name, severity.value)

        outcome = EventOutcome(
            event_type=name,
            risk_score=risk_score,
            severity=severity,
            audit_id=audit.id,
        )

        response = response_for(event_type)

        if risk_score >= self.policy.incident_threshold:
            incident = await self._create_incident(name, severity, risk_score, details, context, response)
            outcome.incident_id = incident.id

        if self.policy.auto_block_enabled and risk_score >= self.policy.auto_block_threshold:
            outcome.action = await self._execute_response(name, response, context)

        if outcome.incident_id and severity in (Severity.HIGH, Severity.CRITICAL):
            await send_security_alert(
                alert_type=name,
                severity=severity.value,
                message=f"Security incident: {name} (risk score {risk_score})",
                details={
                    "incident_id": str(outcome.incident_id),
                    "member_id": str(context.member_id) if context.member_id else None,
                    "ip_address": context.ip_address,
                },
            )

        if known == SecurityEventType.LOGIN_FAILURE:
            await self._check_alert_thresholds()

        return outcome

    async def _create_incident(
        self,
        name: str,
        severity: Severity,
        risk_score: int,
        details: Dict[str, Any],
        context: EventContext,
        response: AutomatedResponse,
    ) -> SecurityIncident:
        now = datetime.utcnow()
        incident = SecurityIncident(
            incident_type=name,
            severity=severity,
            member_id=context.member_id,
            session_id=context.session_id,
            ip_address=context.ip_address,
            details={
                **details,
                "risk_score": risk_score,
                "user_agent": context.user_agent,
                "detected_at": now.isoformat(),
            },
            automated_response=response.description,
            detected_at=now,
        )
        self.db.add(incident)
        await self.db.commit()

        record_incident(severity.value)
        logger.warning(
            "security_incident_created",
            incident_id=str(incident.id),
            incident_type=name,
            severity=severity.value,
            risk_score=risk_score,
            member_id=str(context.member_id) if context.member_id else None,
        )
        return incident

    async def _execute_response(
        self,
        name: str,
        response: AutomatedResponse,
        context: EventContext,
    ) -> AutomatedAction:
        now = datetime.utcnow()
        action = response.action

        if action == AutomatedAction.BLOCK_IP:
            if context.ip_address:
                self.db.add(IPBlock(
                    ip_address=context.ip_address,
                    reason=name,
                    blocked_until=now + response.duration,
                ))
                await self.db.commit()
            else:
                logger.info("automated_response_skipped", event_type=name, reason="no_ip_address")

        elif action == AutomatedAction.REQUIRE_VERIFICATION:
            if context.member_id:
                await self.db.execute(
                    update(Member).where(Member.id == context.member_id).values(requires_verification=True)
                )
                await self.db.commit()

        elif action == AutomatedAction.LOCK_ACCOUNT:
            if context.member_id:
                await self.db.execute(
                    update(Member)
                    .where(Member.id == context.member_id)
                    .values(locked_until=now + response.duration)
                )
                await self.db.commit()

        elif action == AutomatedAction.REVOKE_SESSIONS:
            if context.member_id:
                await SessionService(self.db).revoke_member_sessions(
                    context.member_id, RevocationReason.SECURITY_INCIDENT
                )

        record_automated_response(action.value)
        logger.warning(
            "automated_response_executed",
            event_type=name,
            action=action.value,
            description=response.description,
            member_id=str(context.member_id) if context.member_id else None,
            ip_address=context.ip_address,
        )
        return action

    async def _check_alert_thresholds(self) -> None:
        since = datetime.utcnow() - self.policy.alert_window
        failures = await self.count_events(SecurityEventType.LOGIN_FAILURE.value, since)

        if failures > self.policy.failed_login_alert_threshold:
            logger.warning("failed_login_threshold_exceeded", count=failures)
            await send_security_alert(
                alert_type="failed_login_threshold_exceeded",
                severity=Severity.HIGH.value,
                message=f"{failures} failed login attempts in the last hour",
                details={"count": failures},
            )

    # ============== QUERIES ==============

    async def count_events(
        self,
        action: str,
        since: datetime,
        ip_address: Optional[str] = None,
    ) -> int:
        stmt = select(func.count(AuditLog.id)).where(
            AuditLog.action == action,
            AuditLog.created_at >= since,
        )
        if ip_address:
            stmt = stmt.where(AuditLog.ip_address == ip_address)
        result = await self.db.execute(stmt)
        return result.scalar() or 0

    # ============== IP BLOCKS ==============

    async def get_active_block(self, ip_address: Optional[str]) -> Optional[IPBlock]:
        if not ip_address:
            return None
        result = await self.db.execute(
            select(IPBlock)
            .where(IPBlock.ip_address == ip_address, IPBlock.blocked_until > datetime.utcnow())
            .order_by(IPBlock.blocked_until.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_active_blocks(self) -> List[IPBlock]:
        result = await self.db.execute(
            select(IPBlock)
            .where(IPBlock.blocked_until > datetime.utcnow())
            .order_by(IPBlock.created_at.desc())
        )
        return list(result.scalars().all())

    async def clear_block(self, ip_address: str) -> int:
        result = await self.db.execute(delete(IPBlock).where(IPBlock.ip_address == ip_address))
        await self.db.commit()
        logger.info("ip_block_cleared", ip_address=ip_address, count=result.rowcount)
        return result.rowcount or 0


_policy: Optional[MonitoringPolicy] = None


def get_monitoring_policy() -> MonitoringPolicy:
    """Get the global monitoring policy built from settings."""
    global _policy
    if _policy is None:
        from homebase.config import settings
        _policy = MonitoringPolicy.from_settings(settings)
    return _policy
