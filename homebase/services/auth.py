"""
HOMEBASE - Auth Service
========================
Login and logout on top of the external identity provider.
The backend verifies provider tokens and keeps its own session rows.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from homebase.db.models import AuditCategory, Member, RevocationReason, UserSession
from homebase.security.gate import GateError
from homebase.security.policy import MonitoringPolicy, SessionPolicy
from homebase.security.risk import SecurityEventType
from homebase.services.audit import AuditService
from homebase.services.identity import IdentityVerifier
from homebase.services.members import MemberService
from homebase.services.permissions import MembershipInfo, PermissionService
from homebase.services.security_monitor import EventContext, SecurityMonitor
from homebase.services.sessions import DeviceInfo, SessionService

logger = structlog.get_logger(__name__)


@dataclass
class LoginResult:
    member: Member
    session: UserSession
    offline_token: Optional[str]
    created: bool
    memberships: List[MembershipInfo] = field(default_factory=list)


class AuthService:
    def __init__(
        self,
        db: AsyncSession,
        verifier: IdentityVerifier,
        session_policy: Optional[SessionPolicy] = None,
        monitoring_policy: Optional[MonitoringPolicy] = None,
        privacy_policy_version: str = "1.0",
    ):
        self.db = db
        self.verifier = verifier
        self.sessions = SessionService(db, session_policy)
        self.monitor = SecurityMonitor(db, monitoring_policy)
        self.members = MemberService(db)
        self.privacy_policy_version = privacy_policy_version

    # ============== LOGIN ==============

    async def login(
        self,
        token: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        device: Optional[DeviceInfo] = None,
    ) -> LoginResult:
        """
        Open a session for a provider token.

        Raises GateError(401) for unverifiable tokens and GateError(403) for
        locked accounts; ValueError when the identity cannot be registered.
        """
        identity = await self.verifier.verify(token)
        if identity is None:
            await self._record_login_failure(ip_address, user_agent)
            raise GateError(401, "Invalid or expired token")

        member, created = await self.members.get_or_create_from_identity(
            identity,
            ip_address=ip_address,
            user_agent=user_agent,
            privacy_policy_version=self.privacy_policy_version,
        )

        if member.locked_until is not None and member.locked_until > datetime.utcnow():
            await self.monitor.process_event(
                SecurityEventType.ACCOUNT_LOCKED,
                {"locked_until": member.locked_until.isoformat(), "stage": "login"},
                EventContext(member_id=member.id, ip_address=ip_address, user_agent=user_agent),
            )
            raise GateError(403, "Account is locked")

        session, offline_token = await self.sessions.create_session(
            member.id, token, ip_address=ip_address, user_agent=user_agent, device=device
        )
        await self.members.record_login(member)

        await AuditService(self.db).log(
            category=AuditCategory.AUTH,
            action="login",
            actor_id=member.id,
            resource_type="session",
            resource_id=str(session.id),
            details={
                "new_member": created,
                "device_type": device.device_type if device else None,
                "platform": device.platform if device else None,
            },
            ip_address=ip_address,
            user_agent=user_agent,
            session_id=session.id,
        )

        memberships = await PermissionService(self.db).get_memberships(member.id)
        logger.info("login_success", member_id=str(member.id), session_id=str(session.id), created=created)
        return LoginResult(
            member=member,
            session=session,
            offline_token=offline_token,
            created=created,
            memberships=memberships,
        )

    async def _record_login_failure(self, ip_address: Optional[str], user_agent: Optional[str]) -> None:
        policy = self.monitor.policy
        attempts = 1
        if ip_address:
            since = datetime.utcnow() - policy.alert_window
            attempts += await self.monitor.count_events(
                SecurityEventType.LOGIN_FAILURE.value, since, ip_address=ip_address
            )

        context = EventContext(ip_address=ip_address, user_agent=user_agent)
        await self.monitor.process_event(
            SecurityEventType.LOGIN_FAILURE,
            {"reason": "invalid_token", "repeated_attempts": attempts},
            context,
            category=AuditCategory.AUTH,
        )

        if ip_address and attempts > policy.brute_force_threshold:
            await self.monitor.process_event(
                SecurityEventType.BRUTE_FORCE_DETECTED,
                {"ip": ip_address, "attempts": attempts},
                context,
            )

    # ============== LOGOUT ==============

    async def logout(self, session: UserSession, ip_address: Optional[str] = None) -> None:
        await self.sessions.revoke(session, RevocationReason.LOGOUT)
        await AuditService(self.db).log(
            category=AuditCategory.AUTH,
            action="logout",
            actor_id=session.member_id,
            resource_type="session",
            resource_id=str(session.id),
            ip_address=ip_address,
            session_id=session.id,
        )
