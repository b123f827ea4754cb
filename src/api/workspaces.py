"""
Workspace management routes
"""
from typing import List
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_db
from middleware.auth_dependencies import (
    CurrentUser,
    get_current_user,
    ensure_organization_access,
    require_organization_member,
    require_organization_admin,
    require_workspace_member,
    require_workspace_admin,
)
from models.workspace import WorkspaceRole
from services.workspace_service import WorkspaceService
from services.settings_service import WorkspaceSettingsService
from schemas.workspace import (
    WorkspaceCreate,
    WorkspaceUpdate,
    WorkspaceResponse,
    WorkspaceMemberCreate,
    WorkspaceMemberRoleUpdate,
    WorkspaceMemberResponse,
)
from schemas.settings import WorkspaceSettingsResponse, WorkspaceSettingsUpdate


router = APIRouter(prefix="/api/v1", tags=["workspaces"])


@router.get("/organizations/{organization_id}/workspaces", response_model=List[WorkspaceResponse])
async def list_organization_workspaces(
    organization_id: str,
    current_user: CurrentUser = Depends(require_organization_member),
    db: AsyncSession = Depends(get_db)
):
    workspaces = await WorkspaceService(db).list_organization_workspaces(organization_id)
    return [w.to_dict() for w in workspaces]


@router.post(
    "/organizations/{organization_id}/workspaces",
    response_model=WorkspaceResponse,
    status_code=status.HTTP_201_CREATED
)
async def create_workspace(
    organization_id: str,
    workspace_data: WorkspaceCreate,
    current_user: CurrentUser = Depends(require_organization_admin),
    db: AsyncSession = Depends(get_db)
):
    """Create a workspace; the creator becomes its admin"""
    service = WorkspaceService(db)
    workspace = await service.create_workspace(
        organization_id=organization_id,
        name=workspace_data.name,
        slug=workspace_data.slug,
        description=workspace_data.description,
        settings=workspace_data.settings,
        created_by=current_user.user_id,
    )
    if await service.organizations.find_member(organization_id, current_user.user_id):
        await service.add_member(
            workspace.id, current_user.user_id, WorkspaceRole.ADMIN.value, added_by=current_user.user_id
        )
    return workspace.to_dict()


@router.get("/workspaces", response_model=List[WorkspaceResponse])
async def list_workspaces(
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """All workspaces for system admins, otherwise the caller's workspaces"""
    service = WorkspaceService(db)
    if current_user.is_admin:
        return [w.to_dict() for w in await service.list_workspaces()]
    return await service.list_user_workspaces(current_user.user_id)


@router.get("/workspaces/{workspace_id}", response_model=WorkspaceResponse)
async def get_workspace(
    workspace_id: str,
    current_user: CurrentUser = Depends(require_workspace_member),
    db: AsyncSession = Depends(get_db)
):
    workspace = await WorkspaceService(db).get_workspace(workspace_id)
    return workspace.to_dict()


@router.put("/workspaces/{workspace_id}", response_model=WorkspaceResponse)
async def update_workspace(
    workspace_id: str,
    workspace_data: WorkspaceUpdate,
    current_user: CurrentUser = Depends(require_workspace_admin),
    db: AsyncSession = Depends(get_db)
):
    updates = workspace_data.model_dump(exclude_unset=True)
    if updates.get("organization_id"):
        # Moving requires admin rights on the target organization too
        await ensure_organization_access(db, current_user, updates["organization_id"], admin=True)

    workspace = await WorkspaceService(db).update_workspace(
        workspace_id, updated_by=current_user.user_id, **updates
    )
    return workspace.to_dict()


@router.delete("/workspaces/{workspace_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_workspace(
    workspace_id: str,
    current_user: CurrentUser = Depends(require_workspace_admin),
    db: AsyncSession = Depends(get_db)
):
    await WorkspaceService(db).delete_workspace(workspace_id, deleted_by=current_user.user_id)


# Settings

@router.get("/workspaces/{workspace_id}/settings", response_model=WorkspaceSettingsResponse)
async def get_workspace_settings(
    workspace_id: str,
    current_user: CurrentUser = Depends(require_workspace_member),
    db: AsyncSession = Depends(get_db)
):
    settings = await WorkspaceSettingsService(db).get_settings(workspace_id)
    return settings.to_dict()


@router.put("/workspaces/{workspace_id}/settings", response_model=WorkspaceSettingsResponse)
async def update_workspace_settings(
    workspace_id: str,
    settings_data: WorkspaceSettingsUpdate,
    current_user: CurrentUser = Depends(require_workspace_admin),
    db: AsyncSession = Depends(get_db)
):
    settings = await WorkspaceSettingsService(db).update_settings(
        workspace_id, settings_data.model_dump(exclude_unset=True, mode="json"), updated_by=current_user.user_id
    )
    return settings.to_dict()


# Members

@router.get("/workspaces/{workspace_id}/members", response_model=List[WorkspaceMemberResponse])
async def list_workspace_members(
    workspace_id: str,
    current_user: CurrentUser = Depends(require_workspace_member),
    db: AsyncSession = Depends(get_db)
):
    members = await WorkspaceService(db).list_members(workspace_id)
    return [m.to_dict() for m in members]


@router.post(
    "/workspaces/{workspace_id}/members",
    response_model=WorkspaceMemberResponse,
    status_code=status.HTTP_201_CREATED
)
async def add_workspace_member(
    workspace_id: str,
    member_data: WorkspaceMemberCreate,
    current_user: CurrentUser = Depends(require_workspace_admin),
    db: AsyncSession = Depends(get_db)
):
    member = await WorkspaceService(db).add_member(
        workspace_id, member_data.user_id, member_data.role.value, added_by=current_user.user_id
    )
    return member.to_dict()


@router.put("/workspaces/{workspace_id}/members/{user_id}", response_model=WorkspaceMemberResponse)
async def update_workspace_member_role(
    workspace_id: str,
    user_id: str,
    role_data: WorkspaceMemberRoleUpdate,
    current_user: CurrentUser = Depends(require_workspace_admin),
    db: AsyncSession = Depends(get_db)
):
    member = await WorkspaceService(db).update_member_role(
        workspace_id, user_id, role_data.role.value, updated_by=current_user.user_id
    )
    return member.to_dict()


@router.delete("/workspaces/{workspace_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_workspace_member(
    workspace_id: str,
    user_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service = WorkspaceService(db)
    if user_id != current_user.user_id and not current_user.is_admin:
        await service.check_admin_access(workspace_id, current_user.user_id)
    await service.remove_member(workspace_id, user_id, removed_by=current_user.user_id)
