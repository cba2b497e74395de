"""
HOMEBASE - Group & Member Routes
=================================
Households, invitations, roles and member profiles.
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from homebase.api.deps import get_auth_context, get_monitoring, require_group_permission
from homebase.api.limits import limiter
from homebase.config import settings
from homebase.db.database import get_db
from homebase.db.models import AuditCategory
from homebase.schemas.auth import MemberResponse
from homebase.schemas.members import (
    AcceptInvitation, GroupContextResponse, GroupCreate, GroupMemberResponse,
    GroupResponse, InvitationResponse, InviteMember, ProfileUpdate, RoleUpdate,
)
from homebase.security.gate import AuthContext
from homebase.security.policy import MonitoringPolicy
from homebase.security.risk import SecurityEventType
from homebase.services.audit import AuditService
from homebase.services.members import ASSIGNABLE_ROLES, MemberService
from homebase.services.security_monitor import SecurityMonitor

router = APIRouter(tags=["Groups"])


# ============== GROUPS ==============

@router.post("/groups", response_model=GroupResponse, status_code=status.HTTP_201_CREATED)
async def create_group(
    request: Request,
    data: GroupCreate,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Create a household. The creator becomes its admin."""
    try:
        group = await MemberService(db).create_group(
            ctx.member.id, data.name, description=data.description, group_type=data.type
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    await AuditService(db).log_admin_action(
        action="group_created",
        actor_id=ctx.member.id,
        resource_type="group",
        resource_id=str(group.id),
        group_id=group.id,
        request=request,
    )
    return group


@router.get("/groups/{group_id}", response_model=GroupContextResponse)
async def get_group_context(
    group_id: UUID,
    ctx: AuthContext = Depends(require_group_permission("groups:view")),
    db: AsyncSession = Depends(get_db),
):
    service = MemberService(db)
    group = await service.get_group(group_id)
    if not group:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Group not found")

    return GroupContextResponse(
        group=GroupResponse.model_validate(group),
        role=ctx.role,
        permissions=ctx.permissions,
        member_count=await service.count_active_members(group_id),
    )


# ============== MEMBERS ==============

@router.get("/groups/{group_id}/members", response_model=List[GroupMemberResponse])
async def list_members(
    group_id: UUID,
    ctx: AuthContext = Depends(require_group_permission("members:view")),
    db: AsyncSession = Depends(get_db),
):
    rows = await MemberService(db).list_group_members(group_id)
    return [
        GroupMemberResponse(
            member_id=member.id,
            email=member.email,
            name=member.name,
            avatar_url=member.avatar_url,
            role=role,
            joined_at=membership.joined_at,
        )
        for member, role, membership in rows
    ]


@router.post(
    "/groups/{group_id}/invitations",
    response_model=InvitationResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(settings.rate_limit_sensitive)
async def invite_member(
    request: Request,
    group_id: UUID,
    data: InviteMember,
    ctx: AuthContext = Depends(require_group_permission("members:invite")),
    db: AsyncSession = Depends(get_db),
):
    """Invite someone by email. The invitation token is only shown once."""
    try:
        invitation, token = await MemberService(db).invite_member(
            group_id, ctx.member.id, data.email, role_name=data.role_name, message=data.message
        )
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    await AuditService(db).log_admin_action(
        action="member_invited",
        actor_id=ctx.member.id,
        resource_type="invitation",
        resource_id=str(invitation.id),
        group_id=group_id,
        details={"email": invitation.email, "role": invitation.role_name},
        request=request,
    )
    return InvitationResponse(
        id=invitation.id,
        email=invitation.email,
        group_id=invitation.group_id,
        role_name=invitation.role_name,
        expires_at=invitation.expires_at,
        token=token,
    )


@router.post("/invitations/accept", response_model=GroupContextResponse)
async def accept_invitation(
    request: Request,
    data: AcceptInvitation,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    service = MemberService(db)
    try:
        membership = await service.accept_invitation(data.token, ctx.member)
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    await AuditService(db).log_admin_action(
        action="invitation_accepted",
        actor_id=ctx.member.id,
        resource_type="group",
        resource_id=str(membership.group_id),
        group_id=membership.group_id,
        request=request,
    )

    info = await service.permissions.get_membership(ctx.member.id, membership.group_id)
    group = await service.get_group(membership.group_id)
    return GroupContextResponse(
        group=GroupResponse.model_validate(group),
        role=info.role,
        permissions=info.permissions,
        member_count=await service.count_active_members(membership.group_id),
    )


@router.delete("/groups/{group_id}/members/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    request: Request,
    group_id: UUID,
    member_id: UUID,
    ctx: AuthContext = Depends(require_group_permission("members:remove")),
    db: AsyncSession = Depends(get_db),
):
    try:
        await MemberService(db).remove_member(group_id, member_id)
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    await AuditService(db).log_admin_action(
        action="member_removed",
        actor_id=ctx.member.id,
        resource_type="member",
        resource_id=str(member_id),
        group_id=group_id,
        request=request,
    )


@router.patch("/groups/{group_id}/members/{member_id}/role", response_model=GroupMemberResponse)
async def update_member_role(
    request: Request,
    group_id: UUID,
    member_id: UUID,
    data: RoleUpdate,
    ctx: AuthContext = Depends(require_group_permission("members:update_roles")),
    db: AsyncSession = Depends(get_db),
    policy: MonitoringPolicy = Depends(get_monitoring),
):
    if data.role_name not in ASSIGNABLE_ROLES:
        await SecurityMonitor(db, policy).process_event(
            SecurityEventType.PRIVILEGE_ESCALATION,
            {"requested_role": data.role_name, "target_member_id": str(member_id)},
            ctx.event_context(group_id),
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Role '{data.role_name}' cannot be assigned")

    service = MemberService(db)
    try:
        membership = await service.update_member_role(group_id, member_id, data.role_name)
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    await AuditService(db).log_admin_action(
        action="member_role_updated",
        actor_id=ctx.member.id,
        resource_type="member",
        resource_id=str(member_id),
        group_id=group_id,
        details={"role": data.role_name},
        request=request,
    )

    member = await service.get_member(member_id)
    return GroupMemberResponse(
        member_id=member.id,
        email=member.email,
        name=member.name,
        avatar_url=member.avatar_url,
        role=data.role_name,
        joined_at=membership.joined_at,
    )


@router.patch("/members/{member_id}", response_model=MemberResponse)
async def update_profile(
    request: Request,
    member_id: UUID,
    data: ProfileUpdate,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Update a profile: your own, or one of a member in a group you administer."""
    service = MemberService(db)
    if member_id != ctx.member.id and not await service.shares_group_as_admin(ctx.member.id, member_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    member = await service.get_member(member_id)
    if not member:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Member not found")

    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    member = await service.update_profile(member, **changes)

    await AuditService(db).log_data_change(
        action="profile_updated",
        actor_id=ctx.member.id,
        resource_type="member",
        resource_id=str(member_id),
        details={"fields": sorted(changes)},
        request=request,
    )
    return member
