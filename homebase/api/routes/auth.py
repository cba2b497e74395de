"""
HOMEBASE - Auth Routes
=======================
Session endpoints on top of the external identity provider. The provider
token travels in the Authorization header; the backend opens and tracks
its own session for it.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from homebase.api.deps import (
    check_ip_block, get_auth_context, get_monitoring, get_offline_member,
    get_session_policy, get_verifier, require_registered_device, security,
)
from homebase.api.limits import limiter
from homebase.config import settings
from homebase.db.database import get_db
from homebase.schemas.auth import (
    ConsentResponse, ConsentUpdate, CurrentMemberResponse, LoginResponse, MemberResponse,
    MembershipBrief, OfflineTokenResponse, OfflineVerifyResponse, SessionCreate, SessionResponse,
)
from homebase.security.gate import AuthContext, GateError
from homebase.security.policy import MonitoringPolicy, SessionPolicy
from homebase.services.audit import get_client_ip, get_user_agent
from homebase.services.auth import AuthService
from homebase.services.gdpr import GdprService
from homebase.services.identity import IdentityVerifier
from homebase.services.sessions import DeviceInfo, SessionService

router = APIRouter(prefix="/auth", tags=["Authentication"])


def _memberships(ctx_memberships) -> List[MembershipBrief]:
    return [
        MembershipBrief(group_id=m.group_id, group_name=m.group_name, role=m.role, permissions=m.permissions)
        for m in ctx_memberships
    ]


# ============== SESSIONS ==============

@router.post("/sessions", response_model=LoginResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.rate_limit_auth)
async def create_session(
    request: Request,
    data: Optional[SessionCreate] = None,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    _: None = Depends(check_ip_block),
    db: AsyncSession = Depends(get_db),
    verifier: IdentityVerifier = Depends(get_verifier),
    session_policy: SessionPolicy = Depends(get_session_policy),
    monitoring_policy: MonitoringPolicy = Depends(get_monitoring),
):
    """Open a session for the identity provider token in the Authorization header."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    data = data or SessionCreate()
    auth_service = AuthService(
        db, verifier, session_policy, monitoring_policy,
        privacy_policy_version=settings.privacy_policy_version,
    )
    try:
        result = await auth_service.login(
            credentials.credentials,
            ip_address=get_client_ip(request),
            user_agent=get_user_agent(request),
            device=DeviceInfo(**data.model_dump()),
        )
    except GateError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return LoginResponse(
        member=MemberResponse.model_validate(result.member),
        session=SessionResponse.model_validate(result.session),
        memberships=_memberships(result.memberships),
        offline_token=result.offline_token,
        new_member=result.created,
    )


@router.get("/sessions", response_model=List[SessionResponse])
async def list_sessions(
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Active sessions of the current member."""
    return await SessionService(db).list_active(ctx.member.id)


@router.delete("/sessions/current", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    request: Request,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    verifier: IdentityVerifier = Depends(get_verifier),
):
    """Revoke the session making this request."""
    await AuthService(db, verifier).logout(ctx.session, ip_address=get_client_ip(request))


@router.get("/me", response_model=CurrentMemberResponse)
async def get_me(ctx: AuthContext = Depends(get_auth_context)):
    """Current member, group context and permissions."""
    return CurrentMemberResponse(
        member=MemberResponse.model_validate(ctx.member),
        session_id=ctx.session.id,
        current_group_id=ctx.current_group_id,
        role=ctx.role,
        permissions=ctx.permissions,
        memberships=_memberships(ctx.memberships),
    )


# ============== CONSENT ==============

@router.get("/me/consents", response_model=List[ConsentResponse])
async def list_consents(
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Latest consent decision per type."""
    latest = await GdprService(db, settings.consent_version).latest_consents(ctx.member.id)
    return sorted(latest.values(), key=lambda c: c.consent_type.value)


@router.post("/me/consents", response_model=ConsentResponse, status_code=status.HTTP_201_CREATED)
async def update_consent(
    request: Request,
    data: ConsentUpdate,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """
    Grant or withdraw one consent type. Withdrawing functional consent
    closes every task route with 451 until it is granted again.
    """
    return await GdprService(db, settings.consent_version).record_consent(
        ctx.member.id,
        data.consent_type,
        data.granted,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )


# ============== OFFLINE ACCESS ==============

@router.post("/offline-token", response_model=OfflineTokenResponse)
@limiter.limit(settings.rate_limit_sensitive)
async def issue_offline_token(
    request: Request,
    ctx: AuthContext = Depends(require_registered_device),
    db: AsyncSession = Depends(get_db),
    session_policy: SessionPolicy = Depends(get_session_policy),
):
    """Issue a fresh offline token for the current session. Shown once."""
    try:
        token, expires_at = await SessionService(db, session_policy).rotate_offline_token(ctx.session)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return OfflineTokenResponse(offline_token=token, expires_at=expires_at)


@router.get("/offline/verify", response_model=OfflineVerifyResponse)
async def verify_offline_token(ctx: AuthContext = Depends(get_offline_member)):
    return OfflineVerifyResponse(member_id=ctx.member.id, session_id=ctx.session.id)
