"""
Permission routes
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_db
from middleware.auth_dependencies import CurrentUser, get_current_user, require_permission
from services.permission_service import PermissionService
from schemas.rbac import (
    PermissionCreate,
    PermissionUpdate,
    PermissionResponse,
    PermissionCheck,
    PermissionCheckResponse,
)


router = APIRouter(prefix="/api/v1/permissions", tags=["permissions"])


@router.get("/", response_model=List[PermissionResponse])
async def list_permissions(
    resource_type: Optional[str] = Query(None, description="Filter by resource type"),
    current_user: CurrentUser = Depends(require_permission("permission", "read")),
    db: AsyncSession = Depends(get_db)
):
    service = PermissionService(db)
    if resource_type:
        permissions = await service.list_permissions_by_resource_type(resource_type)
    else:
        permissions = await service.list_permissions()
    return [p.to_dict() for p in permissions]


@router.get("/me", response_model=List[PermissionResponse])
async def get_my_permissions(
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    permissions = await PermissionService(db).get_user_permissions(current_user.user_id)
    return [p.to_dict() for p in permissions]


@router.post("/check", response_model=PermissionCheckResponse)
async def check_permission(
    check: PermissionCheck,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Check the caller's permission; checking another user needs permission:read"""
    user_id = check.user_id or current_user.user_id
    if user_id != current_user.user_id:
        await require_permission("permission", "read")(current_user, db)

    allowed = await PermissionService(db).has_permission(
        user_id, check.resource_type, check.resource_id, check.action
    )
    return {"allowed": allowed}


@router.get("/name/{name}", response_model=PermissionResponse)
async def get_permission_by_name(
    name: str,
    current_user: CurrentUser = Depends(require_permission("permission", "read")),
    db: AsyncSession = Depends(get_db)
):
    return (await PermissionService(db).get_permission_by_name(name)).to_dict()


@router.post("/", response_model=PermissionResponse, status_code=status.HTTP_201_CREATED)
async def create_permission(
    permission_data: PermissionCreate,
    current_user: CurrentUser = Depends(require_permission("permission", "create")),
    db: AsyncSession = Depends(get_db)
):
    permission = await PermissionService(db).create_permission(
        resource_type=permission_data.resource_type,
        action=permission_data.action,
        name=permission_data.name,
        description=permission_data.description,
        scope=permission_data.scope.value,
    )
    return permission.to_dict()


@router.get("/{permission_id}", response_model=PermissionResponse)
async def get_permission(
    permission_id: str,
    current_user: CurrentUser = Depends(require_permission("permission", "read")),
    db: AsyncSession = Depends(get_db)
):
    return (await PermissionService(db).get_permission(permission_id)).to_dict()


@router.put("/{permission_id}", response_model=PermissionResponse)
async def update_permission(
    permission_id: str,
    permission_data: PermissionUpdate,
    current_user: CurrentUser = Depends(require_permission("permission", "update")),
    db: AsyncSession = Depends(get_db)
):
    updates = permission_data.model_dump(exclude_unset=True)
    if updates.get("scope") is not None:
        updates["scope"] = updates["scope"].value
    permission = await PermissionService(db).update_permission(permission_id, **updates)
    return permission.to_dict()


@router.delete("/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_permission(
    permission_id: str,
    current_user: CurrentUser = Depends(require_permission("permission", "delete")),
    db: AsyncSession = Depends(get_db)
):
    await PermissionService(db).delete_permission(permission_id)


# Direct resource grants

@router.post("/grants/{user_id}/{resource_type}/{resource_id}/{action}", status_code=status.HTTP_201_CREATED)
async def grant_resource_permission(
    user_id: str,
    resource_type: str,
    resource_id: str,
    action: str,
    current_user: CurrentUser = Depends(require_permission("permission", "assign")),
    db: AsyncSession = Depends(get_db)
):
    grant = await PermissionService(db).grant_resource_permission(user_id, resource_type, resource_id, action)
    return grant.to_dict()


@router.delete("/grants/{user_id}/{resource_type}/{resource_id}/{action}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_resource_permission(
    user_id: str,
    resource_type: str,
    resource_id: str,
    action: str,
    current_user: CurrentUser = Depends(require_permission("permission", "assign")),
    db: AsyncSession = Depends(get_db)
):
    await PermissionService(db).revoke_resource_permission(user_id, resource_type, resource_id, action)
