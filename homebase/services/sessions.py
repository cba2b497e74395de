"""
HOMEBASE - Session Service
===========================
Session rows for authenticated devices: creation under the single-session
policy, lookup by token, activity extension, revocation and offline tokens.
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from homebase.db.models import RevocationReason, UserSession
from homebase.monitoring.metrics import record_session_revocation
from homebase.security.policy import SessionPolicy

logger = structlog.get_logger(__name__)

OFFLINE_TOKEN_BYTES = 32


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


@dataclass
class DeviceInfo:
    """Client-supplied device description sent at login."""
    device_id: Optional[str] = None
    device_type: Optional[str] = None
    device_name: Optional[str] = None
    device_fingerprint: Optional[str] = None
    platform: Optional[str] = None
    app_version: Optional[str] = None


class SessionService:
    """Persistence and lifecycle of user_sessions rows."""

    def __init__(self, db: AsyncSession, policy: Optional[SessionPolicy] = None):
        self.db = db
        self.policy = policy or SessionPolicy()

    # ============== CREATION ==============

    async def create_session(
        self,
        member_id: UUID,
        token: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        device: Optional[DeviceInfo] = None,
    ) -> Tuple[UserSession, Optional[str]]:
        """
        Create a session for `token`.

        When the single-session policy is enforced, every other active
        session of the member is revoked first. Returns the session and the
        raw offline token (None when offline tokens are disabled).
        """
        device = device or DeviceInfo()
        now = datetime.utcnow()
        token_hash = hash_token(token)

        # Re-login with the same token replaces the previous row.
        existing = await self.db.execute(
            select(UserSession).where(UserSession.token_hash == token_hash)
        )
        previous = existing.scalar_one_or_none()
        if previous:
            await self.db.delete(previous)
            await self.db.flush()

        if self.policy.enforce_single_session:
            await self.revoke_member_sessions(member_id, RevocationReason.NEW_SESSION, commit=False)

        offline_token = None
        session = UserSession(
            member_id=member_id,
            token_hash=token_hash,
            device_id=device.device_id,
            device_type=device.device_type,
            device_name=device.device_name,
            device_fingerprint=device.device_fingerprint,
            platform=device.platform,
            app_version=device.app_version,
            user_agent=user_agent[:500] if user_agent else None,
            ip_address=ip_address,
            is_active=True,
            created_at=now,
            last_activity_at=now,
            auto_logout_at=now + self.policy.inactivity_timeout,
            expires_at=now + self.policy.session_duration,
        )

        if self.policy.enable_offline_tokens:
            offline_token = secrets.token_urlsafe(OFFLINE_TOKEN_BYTES)
            session.offline_token_hash = hash_token(offline_token)
            session.offline_expires_at = now + self.policy.offline_token_duration

        self.db.add(session)
        await self.db.commit()

        logger.info(
            "session_created",
            member_id=str(member_id),
            session_id=str(session.id),
            device_type=device.device_type,
            offline=offline_token is not None,
        )
        return session, offline_token

    # ============== LOOKUP ==============

    async def find_active_by_token(self, token: str, member_id: UUID) -> Optional[UserSession]:
        result = await self.db.execute(
            select(UserSession).where(
                UserSession.token_hash == hash_token(token),
                UserSession.member_id == member_id,
                UserSession.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def list_active(self, member_id: UUID) -> List[UserSession]:
        result = await self.db.execute(
            select(UserSession)
            .where(UserSession.member_id == member_id, UserSession.is_active.is_(True))
            .order_by(UserSession.created_at.desc())
        )
        return list(result.scalars().all())

    async def count_active(self, member_id: UUID) -> int:
        return len(await self.list_active(member_id))

    # ============== ACTIVITY ==============

    async def touch(self, session: UserSession, ip_address: Optional[str], now: Optional[datetime] = None) -> None:
        """Record activity and push the inactivity deadline forward."""
        now = now or datetime.utcnow()
        session.last_activity_at = now
        session.auto_logout_at = now + self.policy.inactivity_timeout
        if ip_address:
            session.ip_address = ip_address
        await self.db.commit()

    # ============== REVOCATION ==============

    async def revoke(
        self,
        session: UserSession,
        reason: RevocationReason,
        now: Optional[datetime] = None,
    ) -> None:
        session.is_active = False
        session.revoked_at = now or datetime.utcnow()
        session.revoked_reason = reason
        await self.db.commit()

        record_session_revocation(reason.value)
        logger.info(
            "session_revoked",
            session_id=str(session.id),
            member_id=str(session.member_id),
            reason=reason.value,
        )

    async def revoke_member_sessions(
        self,
        member_id: UUID,
        reason: RevocationReason,
        except_session_id: Optional[UUID] = None,
        commit: bool = True,
    ) -> int:
        """
        Revoke every active session of a member, optionally keeping one.

        Returns the number of sessions revoked.
        """
        stmt = (
            update(UserSession)
            .where(UserSession.member_id == member_id, UserSession.is_active.is_(True))
            .values(is_active=False, revoked_at=datetime.utcnow(), revoked_reason=reason)
        )
        if except_session_id is not None:
            stmt = stmt.where(UserSession.id != except_session_id)

        result = await self.db.execute(stmt.execution_options(synchronize_session="fetch"))
        if commit:
            await self.db.commit()

        revoked = result.rowcount or 0
        if revoked:
            record_session_revocation(reason.value, revoked)
            logger.info(
                "member_sessions_revoked",
                member_id=str(member_id),
                reason=reason.value,
                count=revoked,
                kept=str(except_session_id) if except_session_id else None,
            )
        return revoked

    # ============== OFFLINE TOKENS ==============

    async def rotate_offline_token(self, session: UserSession) -> Tuple[str, datetime]:
        if not self.policy.enable_offline_tokens:
            raise ValueError("Offline tokens are disabled")

        offline_token = secrets.token_urlsafe(OFFLINE_TOKEN_BYTES)
        session.offline_token_hash = hash_token(offline_token)
        session.offline_expires_at = datetime.utcnow() + self.policy.offline_token_duration
        await self.db.commit()

        logger.info("offline_token_rotated", session_id=str(session.id))
        return offline_token, session.offline_expires_at

    async def find_by_offline_token(self, offline_token: str) -> Optional[UserSession]:
        """Active session owning an unexpired offline token."""
        result = await self.db.execute(
            select(UserSession).where(
                UserSession.offline_token_hash == hash_token(offline_token),
                UserSession.is_active.is_(True),
            )
        )
        session = result.scalar_one_or_none()
        if session is None:
            return None
        if session.offline_expires_at is None or session.offline_expires_at <= datetime.utcnow():
            return None
        return session
