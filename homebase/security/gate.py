"""
HOMEBASE - Session Validation Gate
===================================
Turns a bearer token into an AuthContext or rejects the request.

    token -> identity -> active session -> expiry -> inactivity
          -> security checks -> activity extension -> group context

Every rejection records a security event before the error is raised.
Session transitions are one-way (active -> revoked).
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from homebase.db.models import Member, MemberStatus, RevocationReason, UserSession
from homebase.security.policy import MonitoringPolicy, SessionPolicy
from homebase.security.risk import SecurityEventType
from homebase.services.identity import IdentityVerifier
from homebase.services.permissions import MembershipInfo, PermissionService
from homebase.services.security_monitor import EventContext, SecurityMonitor
from homebase.services.sessions import SessionService

logger = structlog.get_logger(__name__)

_WORD_SPLIT = re.compile(r"\W+")


class GateError(Exception):
    """Request rejected by the gate; carries the HTTP status to return."""

    def __init__(self, status_code: int, detail: str):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


@dataclass
class AuthContext:
    member: Member
    session: UserSession
    memberships: List[MembershipInfo] = field(default_factory=list)
    current_group_id: Optional[UUID] = None
    role: Optional[str] = None
    permissions: List[str] = field(default_factory=list)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions

    def membership_for(self, group_id: UUID) -> Optional[MembershipInfo]:
        for membership in self.memberships:
            if membership.group_id == group_id:
                return membership
        return None

    def event_context(self, group_id: Optional[UUID] = None) -> EventContext:
        return EventContext(
            member_id=self.member.id,
            session_id=self.session.id,
            group_id=group_id or self.current_group_id,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
        )


def user_agent_similarity(first: str, second: str) -> float:
    """Jaccard similarity of the two user agents' word sets."""
    words_a = {w for w in _WORD_SPLIT.split(first.lower()) if w}
    words_b = {w for w in _WORD_SPLIT.split(second.lower()) if w}
    if not words_a and not words_b:
        return 1.0
    return len(words_a & words_b) / len(words_a | words_b)


class SessionGate:
    def __init__(
        self,
        db: AsyncSession,
        verifier: IdentityVerifier,
        session_policy: Optional[SessionPolicy] = None,
        monitoring_policy: Optional[MonitoringPolicy] = None,
    ):
        self.db = db
        self.verifier = verifier
        self.session_policy = session_policy or SessionPolicy()
        self.sessions = SessionService(db, self.session_policy)
        self.monitor = SecurityMonitor(db, monitoring_policy)
        self.permissions = PermissionService(db)

    async def validate(
        self,
        token: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        group_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> AuthContext:
        """Validate `token` and return the caller's context, or raise GateError."""
        now = now or datetime.utcnow()
        context = EventContext(ip_address=ip_address, user_agent=user_agent)

        identity = await self.verifier.verify(token)
        if identity is None:
            await self.monitor.process_event(
                SecurityEventType.INVALID_TOKEN,
                {"token_prefix": token[:10] + "...", "ip": ip_address, "user_agent": user_agent},
                context,
            )
            raise GateError(401, "Invalid or expired token")

        member = await self.db.get(Member, identity.subject)
        session = None
        if member is not None:
            context.member_id = member.id
            session = await self.sessions.find_active_by_token(token, member.id)

        if session is None:
            await self.monitor.process_event(
                SecurityEventType.INVALID_SESSION,
                {"subject": str(identity.subject), "reason": "session_not_found"},
                context,
            )
            raise GateError(401, "Invalid session")

        context.session_id = session.id

        if now >= session.expires_at:
            await self.sessions.revoke(session, RevocationReason.EXPIRED, now)
            await self.monitor.process_event(
                SecurityEventType.SESSION_EXPIRED,
                {"expires_at": session.expires_at.isoformat()},
                context,
            )
            raise GateError(401, "Session expired")

        if session.auto_logout_at is not None and now >= session.auto_logout_at:
            await self.sessions.revoke(session, RevocationReason.AUTO_LOGOUT, now)
            await self.monitor.process_event(
                SecurityEventType.AUTO_LOGOUT,
                {
                    "last_activity": session.last_activity_at.isoformat(),
                    "auto_logout_at": session.auto_logout_at.isoformat(),
                },
                context,
            )
            raise GateError(401, "Session timed out due to inactivity")

        await self._check_session_security(session, context)
        await self.sessions.touch(session, ip_address, now)

        if member.status in (MemberStatus.SUSPENDED, MemberStatus.DELETED) or (
            member.locked_until is not None and member.locked_until > now
        ):
            await self.monitor.process_event(
                SecurityEventType.ACCOUNT_LOCKED,
                {
                    "status": member.status.value,
                    "locked_until": member.locked_until.isoformat() if member.locked_until else None,
                },
                context,
            )
            raise GateError(403, "Account is locked")

        memberships = await self.permissions.get_memberships(member.id)
        if group_id is not None:
            current = next((m for m in memberships if m.group_id == group_id), None)
            if current is None:
                context.group_id = None
                await self.monitor.process_event(
                    SecurityEventType.GROUP_ACCESS_DENIED,
                    {"requested_group_id": str(group_id)},
                    context,
                )
                raise GateError(403, "Access denied to requested group")
        else:
            current = memberships[0] if memberships else None

        return AuthContext(
            member=member,
            session=session,
            memberships=memberships,
            current_group_id=current.group_id if current else None,
            role=current.role if current else None,
            permissions=list(current.permissions) if current else [],
            ip_address=ip_address,
            user_agent=user_agent,
        )

    async def _check_session_security(self, session: UserSession, context: EventContext) -> None:
        """Record IP changes, parallel sessions and user-agent drift. Never rejects."""
        if session.ip_address and context.ip_address and session.ip_address != context.ip_address:
            await self.monitor.process_event(
                SecurityEventType.IP_ADDRESS_CHANGE,
                {"previous_ip": session.ip_address, "current_ip": context.ip_address},
                context,
            )

        # Read-then-revoke: concurrent requests may each see the other's session.
        active = await self.sessions.count_active(session.member_id)
        if active > 1:
            revoked = await self.sessions.revoke_member_sessions(
                session.member_id,
                RevocationReason.MULTIPLE_SESSIONS,
                except_session_id=session.id,
            )
            await self.monitor.process_event(
                SecurityEventType.MULTIPLE_ACTIVE_SESSIONS,
                {"active_sessions": active, "revoked_sessions": revoked},
                context,
            )

        if session.user_agent and context.user_agent:
            similarity = user_agent_similarity(session.user_agent, context.user_agent)
            if similarity < self.session_policy.user_agent_similarity:
                await self.monitor.process_event(
                    SecurityEventType.USER_AGENT_CHANGE,
                    {
                        "previous_user_agent": session.user_agent,
                        "current_user_agent": context.user_agent,
                        "similarity": round(similarity, 2),
                    },
                    context,
                )
