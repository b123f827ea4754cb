"""
Seeds the default permissions and system roles
Safe to run on every start; existing rows are reused.
"""
import logging
from typing import Dict, List

from sqlalchemy.ext.asyncio import AsyncSession

from models.rbac import Permission, PermissionScope, RoleType
from services.permission_service import PermissionService, permission_name
from services.role_service import RoleService

logger = logging.getLogger(__name__)

SYSTEM_ROLES_NAME = {
    "ADMIN": "Admin",
    "MEMBER": "Member",
    "VIEWER": "Viewer",
}

RESOURCE_TYPES = [
    "organization",
    "workspace",
    "user",
    "role",
    "permission",
    "chatflow",
    "credential",
    "tool",
    "assistant",
    "variable",
    "audit",
]

EXTRA_ACTIONS = {
    "execute": ["chatflow"],
    "share": ["chatflow", "credential", "assistant"],
    "manage": ["organization", "workspace"],
    "assign": ["role", "permission"],
}

# Members build things, they do not administer tenants or access control
MEMBER_WRITABLE = ["chatflow", "credential", "tool", "assistant", "variable"]


def default_permission_definitions() -> List[dict]:
    specs = []
    for resource_type in RESOURCE_TYPES:
        for action in ("read", "create", "update", "delete"):
            specs.append({
                "resource_type": resource_type,
                "action": action,
                "description": f"{action.capitalize()} {resource_type}",
                "scope": PermissionScope.ORGANIZATION.value if action == "create" else PermissionScope.RESOURCE.value,
            })
        for action, resource_types in EXTRA_ACTIONS.items():
            if resource_type in resource_types:
                specs.append({
                    "resource_type": resource_type,
                    "action": action,
                    "description": f"{action.capitalize()} {resource_type}",
                    "scope": PermissionScope.RESOURCE.value,
                })
    return specs


def system_role_permissions(all_names: List[str]) -> Dict[str, List[str]]:
    member = [permission_name(r, "read") for r in RESOURCE_TYPES]
    for resource_type in MEMBER_WRITABLE:
        member += [permission_name(resource_type, a) for a in ("create", "update")]
    member.append("chatflow:execute")

    return {
        SYSTEM_ROLES_NAME["ADMIN"]: list(all_names),
        SYSTEM_ROLES_NAME["MEMBER"]: member,
        SYSTEM_ROLES_NAME["VIEWER"]: [permission_name(r, "read") for r in RESOURCE_TYPES],
    }


ROLE_DESCRIPTIONS = {
    "Admin": "Administrator with full access",
    "Member": "Regular member with standard access",
    "Viewer": "Read-only access",
}


async def initialize_roles_and_permissions(db: AsyncSession) -> Dict[str, Permission]:
    """Create missing permissions and system roles, then sync role permissions"""
    permission_service = PermissionService(db)
    role_service = RoleService(db)

    permissions: Dict[str, Permission] = {}
    for definition in default_permission_definitions():
        name = permission_name(definition["resource_type"], definition["action"])
        permission = await permission_service.find_permission_by_name(name)
        if permission is None:
            permission = await permission_service.create_permission(**definition)
        permissions[name] = permission

    for role_name, names in system_role_permissions(list(permissions)).items():
        role = await role_service.find_role_by_name(role_name)
        if role is None:
            role = await role_service.create_role(
                name=role_name,
                description=ROLE_DESCRIPTIONS[role_name],
                type=RoleType.SYSTEM.value,
            )
        for name in names:
            await role_service.assign_permission(role.id, permissions[name].id)

    logger.info(f"RBAC initialized with {len(permissions)} permissions")
    return permissions
