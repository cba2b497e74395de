"""
HOMEBASE - API Dependencies
============================
FastAPI dependencies for the session gate, RBAC and consent checks.

Every access denial records a security event before the HTTP error is
raised.
"""

from typing import List, Optional
from uuid import UUID

import structlog
from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from homebase.config import settings
from homebase.db.database import get_db
from homebase.db.models import Member
from homebase.security.gate import AuthContext, GateError, SessionGate
from homebase.security.policy import MonitoringPolicy, SessionPolicy
from homebase.security.risk import SecurityEventType
from homebase.services.audit import get_client_ip, get_user_agent
from homebase.services.gdpr import GdprService
from homebase.services.identity import IdentityVerifier, get_identity_verifier
from homebase.services.permissions import PermissionService
from homebase.services.security_monitor import EventContext, SecurityMonitor, get_monitoring_policy
from homebase.services.sessions import SessionService

logger = structlog.get_logger(__name__)

# Security
security = HTTPBearer(auto_error=False)


class ConsentRequiredError(Exception):
    """Raised when the caller has not granted data processing consent (451)."""


# ============== POLICIES ==============

_session_policy: Optional[SessionPolicy] = None


def get_session_policy() -> SessionPolicy:
    global _session_policy
    if _session_policy is None:
        _session_policy = SessionPolicy.from_settings(settings)
    return _session_policy


def get_monitoring() -> MonitoringPolicy:
    return get_monitoring_policy()


def get_verifier() -> IdentityVerifier:
    return get_identity_verifier()


# ============== GATE ==============

async def check_ip_block(
    request: Request,
    db: AsyncSession = Depends(get_db),
    monitoring_policy: MonitoringPolicy = Depends(get_monitoring),
) -> None:
    """Reject requests from IPs under an automated block."""
    ip_address = get_client_ip(request)
    block = await SecurityMonitor(db, monitoring_policy).get_active_block(ip_address)
    if block:
        logger.warning("blocked_ip_request", ip_address=ip_address, reason=block.reason, path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Your IP address has been temporarily blocked due to suspicious activity",
        )


def _parse_group_id(value: Optional[str]) -> Optional[UUID]:
    if not value:
        return None
    try:
        return UUID(value)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid X-Group-ID header")


async def get_auth_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_group_id: Optional[str] = Header(None),
    _: None = Depends(check_ip_block),
    db: AsyncSession = Depends(get_db),
    verifier: IdentityVerifier = Depends(get_verifier),
    session_policy: SessionPolicy = Depends(get_session_policy),
    monitoring_policy: MonitoringPolicy = Depends(get_monitoring),
) -> AuthContext:
    """
    Run the session gate for the bearer token.

    The optional X-Group-ID header selects the group context; without it
    the member's oldest active membership is used.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    group_id = _parse_group_id(x_group_id)
    gate = SessionGate(db, verifier, session_policy, monitoring_policy)
    try:
        ctx = await gate.validate(
            credentials.credentials,
            ip_address=get_client_ip(request),
            user_agent=get_user_agent(request),
            group_id=group_id,
        )
    except GateError as e:
        headers = {"WWW-Authenticate": "Bearer"} if e.status_code == status.HTTP_401_UNAUTHORIZED else None
        raise HTTPException(status_code=e.status_code, detail=e.detail, headers=headers)

    request.state.member_id = str(ctx.member.id)
    logger.debug("auth_success", member_id=str(ctx.member.id), group_id=str(ctx.current_group_id))
    return ctx


# ============== RBAC ==============

async def _deny(
    db: AsyncSession,
    policy: MonitoringPolicy,
    event_type: SecurityEventType,
    context: EventContext,
    details: dict,
    detail: str,
) -> None:
    await SecurityMonitor(db, policy).process_event(event_type, details, context)
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def require_permission(permission: str):
    """Require `permission` in the caller's current group."""

    async def check_permission(
        ctx: AuthContext = Depends(get_auth_context),
        db: AsyncSession = Depends(get_db),
        policy: MonitoringPolicy = Depends(get_monitoring),
    ) -> AuthContext:
        if not ctx.has_permission(permission):
            await _deny(
                db, policy, SecurityEventType.PERMISSION_DENIED, ctx.event_context(),
                {"required_permission": permission, "role": ctx.role},
                f"Access denied: requires permission '{permission}'",
            )
        return ctx

    return check_permission


def require_role(allowed_roles: List[str]):
    """Dependency factory to require one of `allowed_roles` in the current group."""

    async def check_role(
        ctx: AuthContext = Depends(get_auth_context),
        db: AsyncSession = Depends(get_db),
        policy: MonitoringPolicy = Depends(get_monitoring),
    ) -> AuthContext:
        if ctx.role not in allowed_roles:
            await _deny(
                db, policy, SecurityEventType.ROLE_DENIED, ctx.event_context(),
                {"required_roles": allowed_roles, "role": ctx.role},
                f"Access denied: requires role {' or '.join(allowed_roles)}",
            )
        return ctx

    return check_role


async def require_admin(
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    policy: MonitoringPolicy = Depends(get_monitoring),
) -> AuthContext:
    if not ctx.is_admin:
        await _deny(
            db, policy, SecurityEventType.ADMIN_ACCESS_DENIED, ctx.event_context(),
            {"role": ctx.role},
            "Access denied: admin role required",
        )
    return ctx


require_analytics_access = require_permission("analytics:view")


async def authorize(
    ctx: AuthContext,
    group_id: UUID,
    permission: Optional[str],
    db: AsyncSession,
    policy: MonitoringPolicy,
) -> AuthContext:
    """
    Check the caller's membership and `permission` in `group_id`.

    Returns a context re-scoped to that group.
    """
    membership = ctx.membership_for(group_id)
    if membership is None:
        # No group is recorded for a group the caller does not belong to
        context = ctx.event_context()
        context.group_id = None
        await _deny(
            db, policy, SecurityEventType.GROUP_ACCESS_DENIED, context,
            {"requested_group_id": str(group_id)},
            "Access denied to requested group",
        )

    if permission and permission not in membership.permissions:
        await _deny(
            db, policy, SecurityEventType.PERMISSION_DENIED, ctx.event_context(group_id),
            {"required_permission": permission, "role": membership.role},
            f"Access denied: requires permission '{permission}'",
        )

    return AuthContext(
        member=ctx.member,
        session=ctx.session,
        memberships=ctx.memberships,
        current_group_id=group_id,
        role=membership.role,
        permissions=list(membership.permissions),
        ip_address=ctx.ip_address,
        user_agent=ctx.user_agent,
    )


def require_group_permission(permission: Optional[str] = None):
    """
    Require membership (and optionally `permission`) in the group named by
    the `group_id` path parameter.
    """

    async def check_group(
        group_id: UUID,
        ctx: AuthContext = Depends(get_auth_context),
        db: AsyncSession = Depends(get_db),
        policy: MonitoringPolicy = Depends(get_monitoring),
    ) -> AuthContext:
        return await authorize(ctx, group_id, permission, db, policy)

    return check_group


require_group_membership = require_group_permission()


async def require_system_admin(
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    policy: MonitoringPolicy = Depends(get_monitoring),
) -> AuthContext:
    """Require `system:admin` in any of the caller's groups."""
    if not any("system:admin" in m.permissions for m in ctx.memberships):
        await _deny(
            db, policy, SecurityEventType.PERMISSION_DENIED, ctx.event_context(),
            {"required_permission": "system:admin", "role": ctx.role},
            "Access denied: requires permission 'system:admin'",
        )
    return ctx


# ============== DEVICE & CONSENT ==============

async def require_registered_device(
    ctx: AuthContext = Depends(get_auth_context),
    x_device_id: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    policy: MonitoringPolicy = Depends(get_monitoring),
) -> AuthContext:
    """The X-Device-ID header must match the device the session was opened on."""
    if not x_device_id or not ctx.session.device_id or x_device_id != ctx.session.device_id:
        await _deny(
            db, policy, SecurityEventType.UNREGISTERED_DEVICE, ctx.event_context(),
            {"device_id": x_device_id, "session_device_id": ctx.session.device_id},
            "Access denied: unregistered device",
        )
    return ctx


async def require_data_processing_consent(
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
) -> AuthContext:
    if not await GdprService(db, settings.consent_version).has_processing_consent(ctx.member.id):
        logger.info("consent_required", member_id=str(ctx.member.id))
        raise ConsentRequiredError()
    return ctx


# ============== OFFLINE ==============

async def get_offline_member(
    x_offline_token: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    session_policy: SessionPolicy = Depends(get_session_policy),
) -> AuthContext:
    """Resolve an X-Offline-Token to its session and member."""
    if not x_offline_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Offline token required")

    session = await SessionService(db, session_policy).find_by_offline_token(x_offline_token)
    member = await db.get(Member, session.member_id) if session else None
    if member is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid offline token")

    memberships = await PermissionService(db).get_memberships(member.id)
    return AuthContext(member=member, session=session, memberships=memberships)
