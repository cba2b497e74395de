"""
HOMEBASE - Audit Logging Service
=================================
Append-only trail of security-relevant and data-changing actions.
"""

from typing import Optional
from uuid import UUID

import structlog
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from homebase.db.models import AuditCategory, AuditLog

logger = structlog.get_logger(__name__)


def get_client_ip(request: Request) -> Optional[str]:
    """Extract client IP from request, handling proxies."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # First IP in the list is the original client
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    if request.client:
        return request.client.host

    return None


def get_user_agent(request: Request) -> str:
    return request.headers.get("User-Agent", "")[:500]


class AuditService:
    """
    Service for logging auditable actions.

    Logs are written to:
    1. Database (audit_log table) for persistence and querying
    2. Structured logs for real-time monitoring

    Usage:
        audit = AuditService(db)
        await audit.log(
            category=AuditCategory.DATA,
            action="task_created",
            actor_id=member.id,
            resource_type="task",
            resource_id=str(task.id),
            group_id=task.group_id,
            request=request,
        )
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        category: AuditCategory,
        action: str,
        actor_id: Optional[UUID] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        group_id: Optional[UUID] = None,
        details: Optional[dict] = None,
        request: Optional[Request] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        session_id: Optional[UUID] = None,
        success: bool = True,
        risk_score: int = 0,
    ) -> AuditLog:
        """
        Write one audit row and commit it.

        IP and user agent are taken from `request` unless passed explicitly.
        """
        if request is not None:
            ip_address = ip_address or get_client_ip(request)
            user_agent = user_agent or get_user_agent(request)

        audit_log = AuditLog(
            event_type=category,
            action=action,
            actor_id=actor_id,
            actor_type="member" if actor_id else "system",
            resource_type=resource_type,
            resource_id=resource_id,
            group_id=group_id,
            details=details or {},
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else None,
            session_id=session_id,
            success=success,
            risk_score=max(0, min(int(risk_score), 100)),
        )

        self.db.add(audit_log)
        await self.db.commit()

        logger.info(
            "audit_event",
            category=category.value,
            action=action,
            actor_id=str(actor_id) if actor_id else None,
            resource_type=resource_type,
            resource_id=resource_id,
            ip_address=ip_address,
            success=success,
            risk_score=audit_log.risk_score,
        )

        return audit_log

    async def log_data_change(
        self,
        actor_id: UUID,
        action: str,
        resource_type: str,
        resource_id: str,
        group_id: Optional[UUID] = None,
        details: Optional[dict] = None,
        request: Optional[Request] = None,
    ) -> AuditLog:
        return await self.log(
            category=AuditCategory.DATA,
            action=action,
            actor_id=actor_id,
            resource_type=resource_type,
            resource_id=resource_id,
            group_id=group_id,
            details=details,
            request=request,
        )

    async def log_admin_action(
        self,
        actor_id: UUID,
        action: str,
        resource_type: str,
        resource_id: str,
        group_id: Optional[UUID] = None,
        details: Optional[dict] = None,
        request: Optional[Request] = None,
    ) -> AuditLog:
        return await self.log(
            category=AuditCategory.ADMIN,
            action=action,
            actor_id=actor_id,
            resource_type=resource_type,
            resource_id=resource_id,
            group_id=group_id,
            details=details,
            request=request,
        )
