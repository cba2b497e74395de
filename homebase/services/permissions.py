"""
HOMEBASE - Permission Service
==============================
Membership -> role -> permission lookups.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from homebase.db.models import (
    Group, GroupMembership, MembershipStatus, Permission, Role, RolePermission,
)


@dataclass
class MembershipInfo:
    group_id: UUID
    group_name: str
    role: str
    status: MembershipStatus
    permissions: List[str] = field(default_factory=list)


class PermissionService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_memberships(
        self,
        member_id: UUID,
        active_only: bool = True,
    ) -> List[MembershipInfo]:
        """Memberships of a member with role name and permission names, oldest first."""
        stmt = (
            select(GroupMembership, Group.name, Role.name, Role.id)
            .join(Group, Group.id == GroupMembership.group_id)
            .join(Role, Role.id == GroupMembership.role_id)
            .where(GroupMembership.member_id == member_id)
            .order_by(GroupMembership.joined_at)
        )
        if active_only:
            stmt = stmt.where(GroupMembership.status == MembershipStatus.ACTIVE)

        rows = (await self.db.execute(stmt)).all()
        grants = await self._role_permissions({role_id for _, _, _, role_id in rows})

        return [
            MembershipInfo(
                group_id=membership.group_id,
                group_name=group_name,
                role=role_name,
                status=membership.status,
                permissions=sorted(grants.get(role_id, [])),
            )
            for membership, group_name, role_name, role_id in rows
        ]

    async def get_membership(self, member_id: UUID, group_id: UUID) -> Optional[MembershipInfo]:
        for membership in await self.get_memberships(member_id):
            if membership.group_id == group_id:
                return membership
        return None

    async def has_permission(self, member_id: UUID, group_id: UUID, permission: str) -> bool:
        result = await self.db.execute(
            select(Permission.id)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .join(GroupMembership, GroupMembership.role_id == RolePermission.role_id)
            .where(
                GroupMembership.member_id == member_id,
                GroupMembership.group_id == group_id,
                GroupMembership.status == MembershipStatus.ACTIVE,
                Permission.name == permission,
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def get_role(self, name: str) -> Optional[Role]:
        result = await self.db.execute(select(Role).where(Role.name == name))
        return result.scalar_one_or_none()

    async def _role_permissions(self, role_ids: set) -> Dict[UUID, List[str]]:
        if not role_ids:
            return {}
        result = await self.db.execute(
            select(RolePermission.role_id, Permission.name)
            .join(Permission, Permission.id == RolePermission.permission_id)
            .where(RolePermission.role_id.in_(role_ids))
        )
        grants: Dict[UUID, List[str]] = {}
        for role_id, name in result.all():
            grants.setdefault(role_id, []).append(name)
        return grants
