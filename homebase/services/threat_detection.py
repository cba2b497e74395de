"""
HOMEBASE - Threat Detection
============================
Stateless sweeps over the audit trail and the session table, and per-member
behavior baselines. Nothing here runs on a timer; callers invoke the
sweeps on demand (admin API, CLI).
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

import structlog
from sqlalchemy import and_, distinct, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from homebase.db.models import AuditCategory, AuditLog, Severity, UserSession
from homebase.security.policy import MonitoringPolicy

logger = structlog.get_logger(__name__)


@dataclass
class ThreatAlert:
    type: str
    severity: Severity
    message: str
    details: Dict[str, Any]
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "severity": self.severity.value,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class ThreatDetector:
    """
    Five independent sweeps over a trailing window. Results are
    concatenated; alerts are neither deduplicated nor correlated.
    """

    def __init__(self, db: AsyncSession, policy: Optional[MonitoringPolicy] = None):
        self.db = db
        self.policy = policy or MonitoringPolicy()

    async def detect(
        self,
        window: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> List[ThreatAlert]:
        now = now or datetime.utcnow()
        since = now - (window or self.policy.sweep_window)

        alerts: List[ThreatAlert] = []
        alerts += await self.detect_brute_force(since, now)
        alerts += await self.detect_multi_account_ips(since, now)
        alerts += await self.detect_off_hours_access(since, now)
        alerts += await self.detect_account_takeover(since, now)
        alerts += await self.detect_data_exfiltration(since, now)

        logger.info(
            "threat_sweep_completed",
            window_start=since.isoformat(),
            alerts=len(alerts),
            types=sorted({a.type for a in alerts}),
        )
        return alerts

    def _in_window(self, since: datetime, now: datetime):
        return and_(AuditLog.created_at >= since, AuditLog.created_at <= now)

    async def detect_brute_force(self, since: datetime, now: datetime) -> List[ThreatAlert]:
        """IPs with more failed logins than the brute force threshold."""
        attempts = func.count(AuditLog.id)
        result = await self.db.execute(
            select(AuditLog.ip_address, attempts)
            .where(
                AuditLog.event_type == AuditCategory.AUTH,
                AuditLog.action == "login_failure",
                AuditLog.ip_address.is_not(None),
                self._in_window(since, now),
            )
            .group_by(AuditLog.ip_address)
            .having(attempts > self.policy.brute_force_threshold)
        )
        return [
            ThreatAlert(
                type="brute_force_ip",
                severity=Severity.HIGH,
                message=f"Brute force attack detected from IP {ip}",
                details={"ip": ip, "attempts": count},
                timestamp=now,
            )
            for ip, count in result.all()
        ]

    async def detect_multi_account_ips(self, since: datetime, now: datetime) -> List[ThreatAlert]:
        """IPs used by more distinct members than the threshold."""
        accounts = func.count(distinct(AuditLog.actor_id))
        result = await self.db.execute(
            select(AuditLog.ip_address, accounts)
            .where(
                AuditLog.success.is_(True),
                AuditLog.actor_id.is_not(None),
                AuditLog.ip_address.is_not(None),
                self._in_window(since, now),
            )
            .group_by(AuditLog.ip_address)
            .having(accounts > self.policy.multi_account_threshold)
        )
        return [
            ThreatAlert(
                type="suspicious_ip_multi_account",
                severity=Severity.MEDIUM,
                message=f"Multiple accounts accessed from IP {ip}",
                details={"ip": ip, "account_count": count},
                timestamp=now,
            )
            for ip, count in result.all()
        ]

    async def detect_off_hours_access(self, since: datetime, now: datetime) -> List[ThreatAlert]:
        """Frequent logins while the clock is outside business hours."""
        if self.policy.business_hours_start <= now.hour <= self.policy.business_hours_end:
            return []

        logins = func.count(AuditLog.id)
        result = await self.db.execute(
            select(AuditLog.actor_id, logins)
            .where(
                AuditLog.event_type == AuditCategory.AUTH,
                AuditLog.action == "login",
                AuditLog.actor_id.is_not(None),
                self._in_window(since, now),
            )
            .group_by(AuditLog.actor_id)
            .having(logins > self.policy.off_hours_login_threshold)
        )
        return [
            ThreatAlert(
                type="unusual_access_time",
                severity=Severity.LOW,
                message=f"Unusual access time detected for user {actor_id}",
                details={"user_id": str(actor_id), "access_count": count},
                timestamp=now,
            )
            for actor_id, count in result.all()
        ]

    async def detect_account_takeover(self, since: datetime, now: datetime) -> List[ThreatAlert]:
        """Members whose recent sessions span too many IPs or devices."""
        sessions = func.count(UserSession.id)
        ips = func.count(distinct(UserSession.ip_address))
        devices = func.count(distinct(UserSession.device_fingerprint))
        result = await self.db.execute(
            select(UserSession.member_id, sessions, ips, devices)
            .where(UserSession.created_at >= since, UserSession.created_at <= now)
            .group_by(UserSession.member_id)
            .having(and_(
                sessions > 1,
                or_(ips > self.policy.takeover_ip_threshold, devices > self.policy.takeover_device_threshold),
            ))
        )
        return [
            ThreatAlert(
                type="potential_account_takeover",
                severity=Severity.HIGH,
                message=f"Potential account takeover detected for user {member_id}",
                details={
                    "user_id": str(member_id),
                    "session_count": session_count,
                    "unique_ips": ip_count,
                    "unique_devices": device_count,
                },
                timestamp=now,
            )
            for member_id, session_count, ip_count, device_count in result.all()
        ]

    async def detect_data_exfiltration(self, since: datetime, now: datetime) -> List[ThreatAlert]:
        """Members exporting data more often than the threshold."""
        exports = func.count(AuditLog.id)
        result = await self.db.execute(
            select(AuditLog.actor_id, exports)
            .where(
                AuditLog.action == "data_export",
                AuditLog.actor_id.is_not(None),
                self._in_window(since, now),
            )
            .group_by(AuditLog.actor_id)
            .having(exports > self.policy.export_threshold)
        )
        return [
            ThreatAlert(
                type="unusual_data_export",
                severity=Severity.MEDIUM,
                message=f"Unusual data export activity for user {actor_id}",
                details={"user_id": str(actor_id), "export_count": count},
                timestamp=now,
            )
            for actor_id, count in result.all()
        ]


# ============== BEHAVIOR BASELINE ==============

@dataclass
class BehaviorBaseline:
    typical_hours: List[int] = field(default_factory=list)
    typical_days: List[int] = field(default_factory=list)  # Monday == 0
    typical_ips: List[str] = field(default_factory=list)
    average_daily_activity: float = 0.0
    event_count: int = 0


@dataclass
class BehaviorReport:
    member_id: UUID
    risk_score: int
    anomalies: List[str]
    baseline: BehaviorBaseline
    recent_activity_count: int
    window_start: datetime
    analyzed_at: datetime


class BehaviorAnalyzer:
    """
    Compare a member's recent activity against the preceding 30 days.

    The baseline covers [now - 30 days, now - window); recent activity is
    [now - window, now]. Nothing is cached.
    """

    def __init__(self, db: AsyncSession, policy: Optional[MonitoringPolicy] = None):
        self.db = db
        self.policy = policy or MonitoringPolicy()

    async def build_baseline(self, member_id: UUID, start: datetime, end: datetime) -> BehaviorBaseline:
        result = await self.db.execute(
            select(AuditLog.created_at, AuditLog.ip_address)
            .where(
                AuditLog.actor_id == member_id,
                AuditLog.created_at >= start,
                AuditLog.created_at < end,
            )
            .order_by(AuditLog.created_at.desc())
            .limit(self.policy.baseline_event_limit)
        )
        rows = result.all()

        return BehaviorBaseline(
            typical_hours=sorted({created_at.hour for created_at, _ in rows}),
            typical_days=sorted({created_at.weekday() for created_at, _ in rows}),
            typical_ips=sorted({ip for _, ip in rows if ip}),
            average_daily_activity=len(rows) / self.policy.baseline_days,
            event_count=len(rows),
        )

    async def analyze(
        self,
        member_id: UUID,
        window: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> BehaviorReport:
        now = now or datetime.utcnow()
        window_start = now - (window or self.policy.behavior_window)
        baseline_start = now - timedelta(days=self.policy.baseline_days)

        baseline = await self.build_baseline(member_id, baseline_start, window_start)

        result = await self.db.execute(
            select(AuditLog.created_at, AuditLog.ip_address).where(
                AuditLog.actor_id == member_id,
                AuditLog.created_at >= window_start,
                AuditLog.created_at <= now,
            )
        )
        recent = result.all()

        anomalies: List[str] = []

        unusual_hours = sorted({created_at.hour for created_at, _ in recent} - set(baseline.typical_hours))
        if unusual_hours:
            anomalies.append(f"Unusual access hours: {', '.join(str(h) for h in unusual_hours)}")

        new_ips = {ip for _, ip in recent if ip} - set(baseline.typical_ips)
        if new_ips:
            anomalies.append(f"New IP addresses: {len(new_ips)}")

        if len(recent) > baseline.average_daily_activity * self.policy.volume_multiplier:
            anomalies.append("Unusually high activity volume")

        risk_score = len(anomalies) * 10
        if len(recent) > self.policy.high_activity_count:
            risk_score += 20
        risk_score = min(risk_score, 100)

        logger.info(
            "behavior_analyzed",
            member_id=str(member_id),
            risk_score=risk_score,
            anomalies=len(anomalies),
            recent_events=len(recent),
        )
        return BehaviorReport(
            member_id=member_id,
            risk_score=risk_score,
            anomalies=anomalies,
            baseline=baseline,
            recent_activity_count=len(recent),
            window_start=window_start,
            analyzed_at=now,
        )
