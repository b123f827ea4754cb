"""
Models package
"""
from .user import User
from .organization import Organization, OrganizationMember, OrganizationRole, OrganizationStatus
from .workspace import Workspace, WorkspaceMember, WorkspaceRole
from .rbac import Role, Permission, RoleType, PermissionScope, UserRole, ResourcePermission, role_permissions
from .invitation import Invitation, InvitationStatus
from .identity_provider import (
    IdentityProvider,
    IdentityProviderAttribute,
    IdentityProviderSession,
    IdentityProviderType,
    IdentityProviderStatus,
    AttributeMappingType,
)
from .api_key import ApiKey
from .audit import AuditLog
from .settings import OrganizationSettings, WorkspaceSettings

__all__ = [
    "User",
    "Organization", "OrganizationMember", "OrganizationRole", "OrganizationStatus",
    "Workspace", "WorkspaceMember", "WorkspaceRole",
    "Role", "Permission", "RoleType", "PermissionScope", "UserRole", "ResourcePermission", "role_permissions",
    "Invitation", "InvitationStatus",
    "IdentityProvider", "IdentityProviderAttribute", "IdentityProviderSession",
    "IdentityProviderType", "IdentityProviderStatus", "AttributeMappingType",
    "ApiKey",
    "AuditLog",
    "OrganizationSettings", "WorkspaceSettings",
]
