"""
Authentication Dependencies for FastAPI
Bearer tokens identify the user; roles and memberships are read from the database per request
"""
from typing import List, Optional

import jwt
from fastapi import Depends, Path
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_db
from core.exceptions import UnauthorizedException, ForbiddenException
from core.security import decode_access_token
from models.user import User
from services.role_service import RoleService
from services.rbac_seed import SYSTEM_ROLES_NAME
from services.permission_service import PermissionService
from services.organization_service import OrganizationService
from services.workspace_service import WorkspaceService

bearer_scheme = HTTPBearer(auto_error=False)


class CurrentUser:
    """Current authenticated user with the system roles assigned to it"""

    def __init__(self, user: User, roles: List[str], claims: Optional[dict] = None):
        self.user = user
        self.user_id = user.id
        self.email = user.email
        self.roles = roles
        self.claims = claims or {}

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_any_role(self, roles: List[str]) -> bool:
        return any(role in self.roles for role in roles)

    @property
    def is_admin(self) -> bool:
        return SYSTEM_ROLES_NAME["ADMIN"] in self.roles


async def load_current_user(db: AsyncSession, user_id: str, claims: Optional[dict] = None) -> CurrentUser:
    user = await db.get(User, user_id)
    if not user or not user.is_active:
        raise UnauthorizedException("User not found or inactive")
    roles = await RoleService(db).get_user_role_names(user.id, system_only=True)
    return CurrentUser(user, roles, claims)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db)
) -> CurrentUser:
    """Resolve the bearer token to a user; 401 otherwise"""
    if credentials is None or not credentials.credentials:
        raise UnauthorizedException("Not authenticated")

    try:
        claims = decode_access_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise UnauthorizedException("Token has expired")
    except jwt.PyJWTError:
        raise UnauthorizedException("Could not validate credentials")

    user_id = claims.get("sub") or claims.get("id")
    if not user_id:
        raise UnauthorizedException("Could not validate credentials")

    return await load_current_user(db, user_id, claims)


def require_roles(roles: List[str]):
    """
    Dependency factory for requiring system roles

    Usage:
    @router.get("/stats")
    async def stats(current_user: CurrentUser = Depends(require_roles(["Admin"]))):
        pass
    """
    async def check_roles(
        current_user: CurrentUser = Depends(get_current_user)
    ) -> CurrentUser:
        if not current_user.has_any_role(roles):
            raise ForbiddenException(f"Access denied. Required roles: {', '.join(roles)}")
        return current_user

    return check_roles


def require_permission(resource_type: str, action: str):
    """Dependency factory checking resource_type:action through the user's roles"""
    async def check_permission(
        current_user: CurrentUser = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
    ) -> CurrentUser:
        if not await PermissionService(db).has_permission(current_user.user_id, resource_type, None, action):
            raise ForbiddenException(f"Permission denied. Required: {resource_type}:{action}")
        return current_user

    return check_permission


async def ensure_organization_access(
    db: AsyncSession, current_user: CurrentUser, organization_id: str, admin: bool = False
):
    """Membership (or admin membership) check for handlers that read the organization from the body"""
    if current_user.is_admin:
        return
    service = OrganizationService(db)
    if admin:
        await service.check_admin_access(organization_id, current_user.user_id)
    else:
        await service.check_access(organization_id, current_user.user_id)


async def ensure_workspace_access(
    db: AsyncSession, current_user: CurrentUser, workspace_id: str, admin: bool = False
):
    if current_user.is_admin:
        return
    service = WorkspaceService(db)
    if admin:
        await service.check_admin_access(workspace_id, current_user.user_id)
    else:
        await service.check_access(workspace_id, current_user.user_id)


async def require_organization_member(
    organization_id: str = Path(...),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
) -> CurrentUser:
    await ensure_organization_access(db, current_user, organization_id)
    return current_user


async def require_organization_admin(
    organization_id: str = Path(...),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
) -> CurrentUser:
    await ensure_organization_access(db, current_user, organization_id, admin=True)
    return current_user


async def require_workspace_member(
    workspace_id: str = Path(...),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
) -> CurrentUser:
    await ensure_workspace_access(db, current_user, workspace_id)
    return current_user


async def require_workspace_admin(
    workspace_id: str = Path(...),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
) -> CurrentUser:
    await ensure_workspace_access(db, current_user, workspace_id, admin=True)
    return current_user
