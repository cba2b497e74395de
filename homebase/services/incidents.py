"""
HOMEBASE - Incident Service
============================
Incident triage and the periodic security report.
"""

from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from homebase.db.models import AuditLog, IncidentStatus, SecurityIncident, Severity, utc_naive

logger = structlog.get_logger(__name__)

ALLOWED_TRANSITIONS = {
    IncidentStatus.OPEN: {IncidentStatus.INVESTIGATING, IncidentStatus.RESOLVED, IncidentStatus.FALSE_POSITIVE},
    IncidentStatus.INVESTIGATING: {IncidentStatus.RESOLVED, IncidentStatus.FALSE_POSITIVE},
    IncidentStatus.RESOLVED: set(),
    IncidentStatus.FALSE_POSITIVE: set(),
}

CLOSED_STATUSES = (IncidentStatus.RESOLVED, IncidentStatus.FALSE_POSITIVE)

BASELINE_RECOMMENDATIONS = [
    "Regular security awareness training for users",
    "Implement multi-factor authentication for all accounts",
    "Regular security audits and penetration testing",
]


class IncidentService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_incidents(
        self,
        status: Optional[IncidentStatus] = None,
        severity: Optional[Severity] = None,
        member_id: Optional[UUID] = None,
        since: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[SecurityIncident]:
        query = select(SecurityIncident)
        if status:
            query = query.where(SecurityIncident.status == status)
        if severity:
            query = query.where(SecurityIncident.severity == severity)
        if member_id:
            query = query.where(SecurityIncident.member_id == member_id)
        if since:
            query = query.where(SecurityIncident.detected_at >= utc_naive(since))

        query = query.order_by(SecurityIncident.detected_at.desc()).limit(limit).offset(offset)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_incident(self, incident_id: UUID) -> Optional[SecurityIncident]:
        return await self.db.get(SecurityIncident, incident_id)

    async def transition(
        self,
        incident_id: UUID,
        status: IncidentStatus,
        actor_id: UUID,
        notes: Optional[str] = None,
    ) -> SecurityIncident:
        """
        Move an incident along open -> investigating -> resolved/false_positive.

        Raises LookupError for unknown incidents and ValueError for
        transitions out of a terminal state or backwards.
        """
        incident = await self.get_incident(incident_id)
        if incident is None:
            raise LookupError("Incident not found")

        if status not in ALLOWED_TRANSITIONS[incident.status]:
            raise ValueError(
                f"Cannot move incident from '{incident.status.value}' to '{status.value}'"
            )

        previous = incident.status
        incident.status = status
        if notes:
            incident.manual_response = notes
        if status in CLOSED_STATUSES:
            incident.resolved_at = datetime.utcnow()
            incident.resolved_by = actor_id

        await self.db.commit()
        logger.info(
            "incident_transitioned",
            incident_id=str(incident.id),
            from_status=previous.value,
            to_status=status.value,
            actor_id=str(actor_id),
        )
        return incident

    # ============== REPORTING ==============

    async def generate_report(self, start: datetime, end: datetime) -> Dict[str, Any]:
        start, end = utc_naive(start), utc_naive(end)
        if start >= end:
            raise ValueError("Report start must be before its end")

        result = await self.db.execute(
            select(SecurityIncident)
            .where(SecurityIncident.detected_at >= start, SecurityIncident.detected_at <= end)
            .order_by(SecurityIncident.detected_at)
        )
        incidents = list(result.scalars().all())

        result = await self.db.execute(
            select(AuditLog.created_at).where(
                AuditLog.action == "login_failure",
                AuditLog.created_at >= start,
                AuditLog.created_at <= end,
            )
        )
        failed_logins = [row[0] for row in result.all()]

        critical = sum(1 for i in incidents if i.severity == Severity.CRITICAL)
        high = sum(1 for i in incidents if i.severity == Severity.HIGH)
        resolved = [i for i in incidents if i.status in CLOSED_STATUSES and i.resolved_at]
        average_resolution = (
            sum((i.resolved_at - i.detected_at).total_seconds() for i in resolved) / len(resolved) / 3600
            if resolved else 0.0
        )

        trends = self._trends(incidents, failed_logins)
        summary = {
            "total_incidents": len(incidents),
            "critical_incidents": critical,
            "high_incidents": high,
            "resolved_incidents": len(resolved),
            "average_resolution_time": round(average_resolution, 2),
            "top_threats": self._top_threats(incidents),
            "affected_users": len({i.member_id for i in incidents if i.member_id}),
        }

        logger.info(
            "security_report_generated",
            start=start.isoformat(),
            end=end.isoformat(),
            total_incidents=len(incidents),
            critical_incidents=critical,
        )
        return {
            "period": {"start": start.isoformat(), "end": end.isoformat()},
            "summary": summary,
            "trends": trends,
            "recommendations": self._recommendations(critical, average_resolution, trends),
        }

    @staticmethod
    def _top_threats(incidents: List[SecurityIncident]) -> List[Dict[str, Any]]:
        counts = Counter(i.incident_type for i in incidents)
        return [{"type": name, "count": count} for name, count in counts.most_common(5)]

    @staticmethod
    def _trends(incidents: List[SecurityIncident], failed_logins: List[datetime]) -> Dict[str, Any]:
        daily = Counter(i.detected_at.date().isoformat() for i in incidents)
        failures = Counter(ts.date().isoformat() for ts in failed_logins)
        severity = Counter(i.severity.value for i in incidents)

        days = sorted(daily)
        direction = "stable"
        if len(days) >= 2:
            # The middle day of an odd count belongs to neither half
            half = len(days) // 2
            first = sum(daily[d] for d in days[:half])
            second = sum(daily[d] for d in days[-half:])
            if second > first:
                direction = "increasing"
            elif second < first:
                direction = "decreasing"

        return {
            "daily_incidents": [{"date": d, "count": daily[d]} for d in days],
            "severity_breakdown": {s.value: severity.get(s.value, 0) for s in Severity},
            "failed_logins": [{"date": d, "count": failures[d]} for d in sorted(failures)],
            "incident_trend": direction,
        }

    @staticmethod
    def _recommendations(critical: int, average_resolution: float, trends: Dict[str, Any]) -> List[str]:
        recommendations = []
        if critical > 0:
            recommendations.append("Review and strengthen incident response procedures")
        if average_resolution > 24:
            recommendations.append("Improve incident response time - target under 24 hours")
        if trends["incident_trend"] == "increasing":
            recommendations.append("Consider additional security controls and monitoring")
        return recommendations + BASELINE_RECOMMENDATIONS
