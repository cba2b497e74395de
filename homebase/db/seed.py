"""
HOMEBASE - Role & Permission Catalogue
=======================================
System roles and their permissions. Seeding is idempotent.
"""

from typing import Dict, List

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from homebase.db.models import Permission, Role, RolePermission

logger = structlog.get_logger(__name__)


PERMISSIONS: Dict[str, str] = {
    "tasks:create": "Create new tasks",
    "tasks:read": "View tasks",
    "tasks:update": "Edit tasks",
    "tasks:delete": "Delete tasks",
    "tasks:assign": "Assign tasks to members",
    "tasks:complete": "Mark tasks as complete",
    "members:invite": "Invite new members",
    "members:remove": "Remove members from group",
    "members:view": "View member list",
    "members:update_roles": "Change member roles",
    "groups:create": "Create new groups",
    "groups:update": "Edit group settings",
    "groups:delete": "Delete groups",
    "groups:view": "View group information",
    "analytics:view": "View analytics",
    "analytics:export": "Export analytics data",
    "categories:create": "Create task categories",
    "categories:update": "Edit task categories",
    "categories:delete": "Delete task categories",
    "categories:view": "View task categories",
    "system:admin": "Platform security administration",
}

GROUP_PERMISSIONS = [name for name in PERMISSIONS if not name.startswith("system:")]

ROLES: Dict[str, dict] = {
    "admin": {
        "display_name": "Administrator",
        "description": "Full access to group management and all features",
        "permissions": GROUP_PERMISSIONS,
    },
    "member": {
        "display_name": "Member",
        "description": "Standard group member with task management access",
        "permissions": [
            "tasks:create", "tasks:read", "tasks:update", "tasks:assign", "tasks:complete",
            "members:view", "groups:view",
            "categories:view", "categories:create", "categories:update",
        ],
    },
    "analytics_viewer": {
        "display_name": "Analytics Viewer",
        "description": "Read-only access with analytics privileges",
        "permissions": [
            "tasks:read", "members:view", "groups:view",
            "analytics:view", "analytics:export", "categories:view",
        ],
    },
    "viewer": {
        "display_name": "Viewer",
        "description": "Read-only access to group information",
        "permissions": ["tasks:read", "members:view", "groups:view", "categories:view"],
    },
    "security_admin": {
        "display_name": "Security Administrator",
        "description": "Reviews incidents, threat sweeps and behavior reports",
        "permissions": ["system:admin", "analytics:view", "members:view", "groups:view"],
    },
}


def role_permissions(role_name: str) -> List[str]:
    return list(ROLES[role_name]["permissions"])


async def seed_roles_and_permissions(db: AsyncSession) -> None:
    """Insert any missing roles, permissions and role grants."""
    result = await db.execute(select(Permission))
    permissions = {p.name: p for p in result.scalars().all()}
    for name, description in PERMISSIONS.items():
        if name not in permissions:
            resource, action = name.split(":", 1)
            permission = Permission(name=name, resource=resource, action=action, description=description)
            db.add(permission)
            permissions[name] = permission

    result = await db.execute(select(Role))
    roles = {r.name: r for r in result.scalars().all()}
    for name, definition in ROLES.items():
        if name not in roles:
            role = Role(
                name=name,
                display_name=definition["display_name"],
                description=definition["description"],
                is_system_role=True,
            )
            db.add(role)
            roles[name] = role

    await db.flush()

    result = await db.execute(select(RolePermission))
    existing = {(rp.role_id, rp.permission_id) for rp in result.scalars().all()}
    added = 0
    for name, definition in ROLES.items():
        role = roles[name]
        for permission_name in definition["permissions"]:
            key = (role.id, permissions[permission_name].id)
            if key not in existing:
                db.add(RolePermission(role_id=role.id, permission_id=permissions[permission_name].id))
                added += 1

    await db.commit()
    logger.info("roles_seeded", roles=len(roles), permissions=len(permissions), grants_added=added)
