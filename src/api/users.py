"""
Current user routes
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_db
from middleware.auth_dependencies import CurrentUser, get_current_user
from services.organization_service import OrganizationService
from services.user_service import UserService
from services.workspace_service import WorkspaceService
from schemas.user import CurrentUserResponse, UserProfileUpdate, UserResponse


router = APIRouter(prefix="/api/v1/users", tags=["users"])


@router.get("/me", response_model=CurrentUserResponse)
async def get_me(
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """The caller with system roles, organizations and workspaces"""
    return {
        **current_user.user.to_dict(),
        "roles": current_user.roles,
        "organizations": await OrganizationService(db).list_user_organizations(current_user.user_id),
        "workspaces": await WorkspaceService(db).list_user_workspaces(current_user.user_id),
    }


@router.put("/me", response_model=UserResponse)
async def update_me(
    profile: UserProfileUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    user = await UserService(db).update_profile(
        current_user.user_id, **profile.model_dump(exclude_unset=True)
    )
    return user.to_dict()
