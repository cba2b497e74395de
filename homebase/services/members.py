"""
HOMEBASE - Member & Group Service
==================================
Households, memberships, invitations and member profiles.
"""

import secrets
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from homebase.db.models import (
    ConsentType, Group, GroupInvitation, GroupMembership, GroupPlan, GroupType,
    InvitationStatus, Member, MembershipStatus, Role,
)
from homebase.services.gdpr import GdprService
from homebase.services.identity import Identity
from homebase.services.permissions import PermissionService
from homebase.services.sessions import hash_token

logger = structlog.get_logger(__name__)

INVITATION_TTL = timedelta(days=7)

# Roles a group admin may hand out. Platform roles are granted from the CLI.
ASSIGNABLE_ROLES = ("admin", "member", "analytics_viewer", "viewer")


class MemberService:
    """Member profiles, households and group membership management."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.permissions = PermissionService(db)

    # ============== MEMBERS ==============

    async def get_member(self, member_id: UUID) -> Optional[Member]:
        return await self.db.get(Member, member_id)

    async def get_or_create_from_identity(
        self,
        identity: Identity,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        privacy_policy_version: str = "1.0",
    ) -> Tuple[Member, bool]:
        """
        Get the member for a verified identity, creating it on first login.

        A new member gets a personal household with an admin membership and a
        functional (data processing) consent record.
        """
        member = await self.db.get(Member, identity.subject)
        if member:
            return member, False

        if not identity.email:
            raise ValueError("Identity token carries no email address")

        clash = await self.db.execute(select(Member.id).where(Member.email == identity.email))
        if clash.scalar_one_or_none() is not None:
            raise ValueError("Email is already registered to another account")

        now = datetime.utcnow()
        member = Member(
            id=identity.subject,
            email=identity.email,
            name=identity.name,
            auth_provider=identity.provider,
            privacy_policy_accepted_at=now,
            privacy_policy_version=privacy_policy_version,
        )
        self.db.add(member)
        await self.db.flush()

        await self._create_group_with_admin(
            creator_id=member.id,
            name=f"{identity.name}'s Household",
            description="Personal household",
            group_type=GroupType.PERSONAL,
        )
        await self.db.commit()

        await GdprService(self.db).record_consent(
            member.id,
            ConsentType.FUNCTIONAL,
            granted=True,
            version=privacy_policy_version,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        logger.info("member_created", member_id=str(member.id), email=member.email)
        return member, True

    async def record_login(self, member: Member) -> None:
        member.last_login_at = datetime.utcnow()
        member.login_count = (member.login_count or 0) + 1
        await self.db.commit()

    async def update_profile(
        self,
        member: Member,
        name: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> Member:
        if name is not None:
            member.name = name
        if avatar_url is not None:
            member.avatar_url = avatar_url
        await self.db.commit()
        return member

    async def shares_group_as_admin(self, admin_id: UUID, member_id: UUID) -> bool:
        """True if `admin_id` is an admin of a group `member_id` actively belongs to."""
        admin_groups = {
            m.group_id for m in await self.permissions.get_memberships(admin_id) if m.role == "admin"
        }
        member_groups = {m.group_id for m in await self.permissions.get_memberships(member_id)}
        return bool(admin_groups & member_groups)

    # ============== GROUPS ==============

    async def create_group(
        self,
        creator_id: UUID,
        name: str,
        description: Optional[str] = None,
        group_type: GroupType = GroupType.FAMILY,
    ) -> Group:
        group = await self._create_group_with_admin(creator_id, name, description, group_type)
        await self.db.commit()
        logger.info("group_created", group_id=str(group.id), creator_id=str(creator_id))
        return group

    async def _create_group_with_admin(
        self,
        creator_id: UUID,
        name: str,
        description: Optional[str],
        group_type: GroupType,
    ) -> Group:
        admin_role = await self._require_role("admin")
        group = Group(name=name, description=description, plan=GroupPlan.HOUSEHOLD, type=group_type)
        self.db.add(group)
        await self.db.flush()

        self.db.add(GroupMembership(
            member_id=creator_id,
            group_id=group.id,
            role_id=admin_role.id,
            status=MembershipStatus.ACTIVE,
        ))
        await self.db.flush()
        return group

    async def get_group(self, group_id: UUID) -> Optional[Group]:
        return await self.db.get(Group, group_id)

    async def list_group_members(self, group_id: UUID) -> List[Tuple[Member, str, GroupMembership]]:
        result = await self.db.execute(
            select(Member, Role.name, GroupMembership)
            .join(GroupMembership, GroupMembership.member_id == Member.id)
            .join(Role, Role.id == GroupMembership.role_id)
            .where(
                GroupMembership.group_id == group_id,
                GroupMembership.status == MembershipStatus.ACTIVE,
            )
            .order_by(GroupMembership.joined_at)
        )
        return [(member, role, membership) for member, role, membership in result.all()]

    async def count_active_members(self, group_id: UUID) -> int:
        result = await self.db.execute(
            select(func.count(GroupMembership.id)).where(
                GroupMembership.group_id == group_id,
                GroupMembership.status == MembershipStatus.ACTIVE,
            )
        )
        return result.scalar() or 0

    # ============== INVITATIONS ==============

    async def invite_member(
        self,
        group_id: UUID,
        invited_by: UUID,
        email: str,
        role_name: str = "member",
        message: Optional[str] = None,
    ) -> Tuple[GroupInvitation, str]:
        """
        Create an invitation. Returns the invitation and the raw token; only
        its hash is stored.
        """
        group = await self.get_group(group_id)
        if group is None:
            raise LookupError("Group not found")
        if role_name not in ASSIGNABLE_ROLES:
            raise ValueError(f"Role '{role_name}' cannot be assigned")
        if await self.count_active_members(group_id) >= group.max_members:
            raise ValueError("Group has reached its member limit")

        email = email.strip().lower()
        existing = await self.db.execute(
            select(GroupMembership.id)
            .join(Member, Member.id == GroupMembership.member_id)
            .where(
                func.lower(Member.email) == email,
                GroupMembership.group_id == group_id,
                GroupMembership.status == MembershipStatus.ACTIVE,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise ValueError("User is already a member of this group")

        raw_token = secrets.token_urlsafe(32)
        invitation = GroupInvitation(
            email=email,
            group_id=group_id,
            role_name=role_name,
            invited_by=invited_by,
            token_hash=hash_token(raw_token),
            personal_message=message,
            expires_at=datetime.utcnow() + INVITATION_TTL,
        )
        self.db.add(invitation)
        await self.db.commit()

        logger.info("member_invited", group_id=str(group_id), invitation_id=str(invitation.id), role=role_name)
        return invitation, raw_token

    async def accept_invitation(self, raw_token: str, member: Member) -> GroupMembership:
        result = await self.db.execute(
            select(GroupInvitation).where(GroupInvitation.token_hash == hash_token(raw_token))
        )
        invitation = result.scalar_one_or_none()
        if invitation is None:
            raise LookupError("Invitation not found")
        if invitation.status != InvitationStatus.PENDING:
            raise ValueError("Invitation is no longer pending")
        if invitation.expires_at <= datetime.utcnow():
            invitation.status = InvitationStatus.EXPIRED
            await self.db.commit()
            raise ValueError("Invitation has expired")
        if invitation.email.lower() != member.email.lower():
            raise ValueError("Invitation was issued to a different email address")

        role = await self._require_role(invitation.role_name)
        result = await self.db.execute(
            select(GroupMembership).where(
                GroupMembership.member_id == member.id,
                GroupMembership.group_id == invitation.group_id,
            )
        )
        membership = result.scalar_one_or_none()
        now = datetime.utcnow()
        if membership is None:
            membership = GroupMembership(
                member_id=member.id,
                group_id=invitation.group_id,
                role_id=role.id,
                invited_by=invitation.invited_by,
                status=MembershipStatus.ACTIVE,
                joined_at=now,
            )
            self.db.add(membership)
        else:
            # Rejoining after leaving
            membership.role_id = role.id
            membership.status = MembershipStatus.ACTIVE
            membership.invited_by = invitation.invited_by
            membership.joined_at = now
            membership.left_at = None

        invitation.status = InvitationStatus.ACCEPTED
        invitation.responded_at = now
        await self.db.commit()

        logger.info("invitation_accepted", group_id=str(invitation.group_id), member_id=str(member.id))
        return membership

    # ============== MEMBERSHIP CHANGES ==============

    async def remove_member(self, group_id: UUID, member_id: UUID) -> GroupMembership:
        """Soft-remove a member: status becomes 'left'."""
        membership = await self._get_active_membership(group_id, member_id)
        if await self._is_last_admin(group_id, membership):
            raise ValueError("Cannot remove the last admin of a group")

        membership.status = MembershipStatus.LEFT
        membership.left_at = datetime.utcnow()
        await self.db.commit()

        logger.info("member_removed", group_id=str(group_id), member_id=str(member_id))
        return membership

    async def update_member_role(self, group_id: UUID, member_id: UUID, role_name: str) -> GroupMembership:
        if role_name not in ASSIGNABLE_ROLES:
            raise ValueError(f"Role '{role_name}' cannot be assigned")
        return await self.set_role(group_id, member_id, role_name)

    async def set_role(self, group_id: UUID, member_id: UUID, role_name: str) -> GroupMembership:
        """Assign any role, platform roles included. Used by the CLI."""
        role = await self._require_role(role_name)
        membership = await self._get_active_membership(group_id, member_id)
        if role_name != "admin" and await self._is_last_admin(group_id, membership):
            raise ValueError("Cannot demote the last admin of a group")

        membership.role_id = role.id
        await self.db.commit()

        logger.info("member_role_updated", group_id=str(group_id), member_id=str(member_id), role=role_name)
        return membership

    async def _get_active_membership(self, group_id: UUID, member_id: UUID) -> GroupMembership:
        result = await self.db.execute(
            select(GroupMembership).where(
                GroupMembership.group_id == group_id,
                GroupMembership.member_id == member_id,
                GroupMembership.status == MembershipStatus.ACTIVE,
            )
        )
        membership = result.scalar_one_or_none()
        if membership is None:
            raise LookupError("Member not found in group")
        return membership

    async def _is_last_admin(self, group_id: UUID, membership: GroupMembership) -> bool:
        admin_role = await self._require_role("admin")
        if membership.role_id != admin_role.id:
            return False
        result = await self.db.execute(
            select(func.count(GroupMembership.id)).where(
                GroupMembership.group_id == group_id,
                GroupMembership.role_id == admin_role.id,
                GroupMembership.status == MembershipStatus.ACTIVE,
            )
        )
        return (result.scalar() or 0) <= 1

    async def _require_role(self, name: str) -> Role:
        role = await self.permissions.get_role(name)
        if role is None:
            raise ValueError(f"Unknown role '{name}'")
        return role
