"""
Role routes
Role CRUD, role permissions and user role assignments
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_db
from middleware.auth_dependencies import CurrentUser, get_current_user, require_permission
from services.role_service import RoleService
from schemas.rbac import (
    RoleCreate,
    RoleUpdate,
    RoleClone,
    RoleResponse,
    RoleAssignment,
    UserRoleResponse,
    PermissionResponse,
)


router = APIRouter(prefix="/api/v1/roles", tags=["roles"])


def _role(role) -> dict:
    return role.to_dict(include_permissions=True)


@router.get("/", response_model=List[RoleResponse])
async def list_roles(
    organization_id: Optional[str] = Query(None, description="Only roles of this organization"),
    system: bool = Query(False, description="Only system roles"),
    current_user: CurrentUser = Depends(require_permission("role", "read")),
    db: AsyncSession = Depends(get_db)
):
    service = RoleService(db)
    if system:
        roles = await service.list_system_roles()
    elif organization_id:
        roles = await service.list_organization_roles(organization_id)
    else:
        roles = await service.list_roles()
    return [_role(r) for r in roles]


@router.post("/", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    role_data: RoleCreate,
    current_user: CurrentUser = Depends(require_permission("role", "create")),
    db: AsyncSession = Depends(get_db)
):
    """Create a custom role, optionally with an initial permission set"""
    service = RoleService(db)
    role = await service.create_role(
        name=role_data.name,
        description=role_data.description,
        organization_id=role_data.organization_id,
        parent_role_id=role_data.parent_role_id,
    )
    for permission_id in role_data.permission_ids:
        await service.assign_permission(role.id, permission_id)
    return _role(role)


@router.get("/users/{user_id}", response_model=List[UserRoleResponse])
async def get_user_roles(
    user_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """A user's role assignments; other users' roles need role:read"""
    if user_id != current_user.user_id:
        await require_permission("role", "read")(current_user, db)
    assignments = await RoleService(db).get_user_roles(user_id)
    return [a.to_dict() for a in assignments]


@router.get("/{role_id}", response_model=RoleResponse)
async def get_role(
    role_id: str,
    current_user: CurrentUser = Depends(require_permission("role", "read")),
    db: AsyncSession = Depends(get_db)
):
    return _role(await RoleService(db).get_role(role_id))


@router.put("/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: str,
    role_data: RoleUpdate,
    current_user: CurrentUser = Depends(require_permission("role", "update")),
    db: AsyncSession = Depends(get_db)
):
    updates = role_data.model_dump(exclude_unset=True)
    if updates.get("type") is not None:
        updates["type"] = updates["type"].value
    role = await RoleService(db).update_role(role_id, **updates)
    return _role(role)


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: str,
    current_user: CurrentUser = Depends(require_permission("role", "delete")),
    db: AsyncSession = Depends(get_db)
):
    await RoleService(db).delete_role(role_id)


@router.post("/{role_id}/clone", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def clone_role(
    role_id: str,
    clone_data: RoleClone,
    current_user: CurrentUser = Depends(require_permission("role", "create")),
    db: AsyncSession = Depends(get_db)
):
    role = await RoleService(db).clone_role(
        role_id,
        name=clone_data.name,
        description=clone_data.description,
        organization_id=clone_data.organization_id,
    )
    return _role(role)


# Role permissions

@router.get("/{role_id}/permissions", response_model=List[PermissionResponse])
async def get_role_permissions(
    role_id: str,
    current_user: CurrentUser = Depends(require_permission("role", "read")),
    db: AsyncSession = Depends(get_db)
):
    permissions = await RoleService(db).get_role_permissions(role_id)
    return [p.to_dict() for p in permissions]


@router.post("/{role_id}/permissions/{permission_id}", response_model=RoleResponse)
async def assign_permission(
    role_id: str,
    permission_id: str,
    current_user: CurrentUser = Depends(require_permission("permission", "assign")),
    db: AsyncSession = Depends(get_db)
):
    return _role(await RoleService(db).assign_permission(role_id, permission_id))


@router.delete("/{role_id}/permissions/{permission_id}", response_model=RoleResponse)
async def remove_permission(
    role_id: str,
    permission_id: str,
    current_user: CurrentUser = Depends(require_permission("permission", "assign")),
    db: AsyncSession = Depends(get_db)
):
    return _role(await RoleService(db).remove_permission(role_id, permission_id))


# User assignments

@router.post("/{role_id}/users", response_model=UserRoleResponse, status_code=status.HTTP_201_CREATED)
async def assign_role_to_user(
    role_id: str,
    assignment: RoleAssignment,
    current_user: CurrentUser = Depends(require_permission("role", "assign")),
    db: AsyncSession = Depends(get_db)
):
    user_role = await RoleService(db).assign_role_to_user(
        assignment.user_id, role_id, assignment.workspace_id, assigned_by=current_user.user_id
    )
    return user_role.to_dict()


@router.delete("/{role_id}/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_role_from_user(
    role_id: str,
    user_id: str,
    workspace_id: Optional[str] = Query(None),
    current_user: CurrentUser = Depends(require_permission("role", "assign")),
    db: AsyncSession = Depends(get_db)
):
    await RoleService(db).remove_role_from_user(user_id, role_id, workspace_id, removed_by=current_user.user_id)
