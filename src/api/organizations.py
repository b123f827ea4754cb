"""
Organization management routes
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_db
from core.exceptions import NotFoundException, ValidationException
from middleware.auth_dependencies import (
    CurrentUser,
    get_current_user,
    require_organization_member,
    require_organization_admin,
)
from services.organization_service import OrganizationService
from services.user_service import UserService
from services.settings_service import OrganizationSettingsService
from schemas.organization import (
    OrganizationCreate,
    OrganizationUpdate,
    OrganizationResponse,
    MemberCreate,
    MemberRoleUpdate,
    OrganizationMemberResponse,
)
from schemas.settings import OrganizationSettingsResponse, OrganizationSettingsUpdate


router = APIRouter(prefix="/api/v1/organizations", tags=["organizations"])


@router.post("/", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(
    organization_data: OrganizationCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Create a new organization owned by the caller"""
    service = OrganizationService(db)

    organization = await service.create_organization(
        name=organization_data.name,
        created_by=current_user.user_id,
        slug=organization_data.slug,
        description=organization_data.description,
        settings=organization_data.settings,
    )
    return organization.to_dict()


@router.get("/", response_model=List[OrganizationResponse])
async def list_organizations(
    search: Optional[str] = Query(None, description="Search by name or slug"),
    my_organizations: bool = Query(False, description="Show only user's organizations"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    List organizations

    System admins see every organization; everyone else only the
    organizations they belong to.
    """
    service = OrganizationService(db)

    if not current_user.is_admin or my_organizations:
        organizations = await service.list_user_organizations(current_user.user_id)
        if search:
            needle = search.lower()
            organizations = [
                o for o in organizations if needle in o["name"].lower() or needle in o["slug"]
            ]
        return organizations[skip:skip + limit]

    organizations = await service.list_organizations(search=search, skip=skip, limit=limit)
    return [o.to_dict() for o in organizations]


@router.get("/slug/{slug}", response_model=OrganizationResponse)
async def get_organization_by_slug(
    slug: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service = OrganizationService(db)
    organization = await service.get_organization_by_slug(slug)
    if not current_user.is_admin:
        await service.check_access(organization.id, current_user.user_id)
    return organization.to_dict()


@router.get("/{organization_id}", response_model=OrganizationResponse)
async def get_organization(
    organization_id: str,
    current_user: CurrentUser = Depends(require_organization_member),
    db: AsyncSession = Depends(get_db)
):
    organization = await OrganizationService(db).get_organization(organization_id)
    return organization.to_dict()


@router.put("/{organization_id}", response_model=OrganizationResponse)
async def update_organization(
    organization_id: str,
    organization_data: OrganizationUpdate,
    current_user: CurrentUser = Depends(require_organization_admin),
    db: AsyncSession = Depends(get_db)
):
    """Update organization (admin or owner)"""
    updates = organization_data.model_dump(exclude_unset=True)
    if updates.get("status") is not None:
        updates["status"] = updates["status"].value

    organization = await OrganizationService(db).update_organization(
        organization_id, updated_by=current_user.user_id, **updates
    )
    return organization.to_dict()


@router.delete("/{organization_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_organization(
    organization_id: str,
    current_user: CurrentUser = Depends(require_organization_admin),
    db: AsyncSession = Depends(get_db)
):
    """Delete organization with everything scoped to it"""
    await OrganizationService(db).delete_organization(organization_id, deleted_by=current_user.user_id)


# Settings

@router.get("/{organization_id}/settings", response_model=OrganizationSettingsResponse)
async def get_organization_settings(
    organization_id: str,
    current_user: CurrentUser = Depends(require_organization_member),
    db: AsyncSession = Depends(get_db)
):
    settings = await OrganizationSettingsService(db).get_settings(organization_id)
    return settings.to_dict()


@router.put("/{organization_id}/settings", response_model=OrganizationSettingsResponse)
async def update_organization_settings(
    organization_id: str,
    settings_data: OrganizationSettingsUpdate,
    current_user: CurrentUser = Depends(require_organization_admin),
    db: AsyncSession = Depends(get_db)
):
    """Update settings (admin or owner); the settings document is merged, not replaced"""
    settings = await OrganizationSettingsService(db).update_settings(
        organization_id, settings_data.model_dump(exclude_unset=True, mode="json"), updated_by=current_user.user_id
    )
    return settings.to_dict()


# Members

@router.get("/{organization_id}/members", response_model=List[OrganizationMemberResponse])
async def list_members(
    organization_id: str,
    current_user: CurrentUser = Depends(require_organization_member),
    db: AsyncSession = Depends(get_db)
):
    members = await OrganizationService(db).list_members(organization_id)
    return [m.to_dict() for m in members]


@router.post(
    "/{organization_id}/members",
    response_model=OrganizationMemberResponse,
    status_code=status.HTTP_201_CREATED
)
async def add_member(
    organization_id: str,
    member_data: MemberCreate,
    current_user: CurrentUser = Depends(require_organization_admin),
    db: AsyncSession = Depends(get_db)
):
    """Add an existing user by id or email"""
    user_id = member_data.user_id
    if not user_id:
        if not member_data.email:
            raise ValidationException("user_id or email is required")
        user = await UserService(db).get_user_by_email(member_data.email)
        if not user:
            raise NotFoundException(f"User with email {member_data.email} not found")
        user_id = user.id
    else:
        await UserService(db).get_user(user_id)

    member = await OrganizationService(db).add_member(
        organization_id, user_id, member_data.role.value, added_by=current_user.user_id
    )
    return member.to_dict()


@router.get("/{organization_id}/members/{user_id}", response_model=OrganizationMemberResponse)
async def get_member(
    organization_id: str,
    user_id: str,
    current_user: CurrentUser = Depends(require_organization_member),
    db: AsyncSession = Depends(get_db)
):
    member = await OrganizationService(db).get_member(organization_id, user_id)
    return member.to_dict()


@router.put("/{organization_id}/members/{user_id}", response_model=OrganizationMemberResponse)
async def update_member_role(
    organization_id: str,
    user_id: str,
    role_data: MemberRoleUpdate,
    current_user: CurrentUser = Depends(require_organization_admin),
    db: AsyncSession = Depends(get_db)
):
    member = await OrganizationService(db).update_member_role(
        organization_id, user_id, role_data.role.value, updated_by=current_user.user_id
    )
    return member.to_dict()


@router.delete("/{organization_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    organization_id: str,
    user_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Admins remove anyone; members may remove themselves"""
    service = OrganizationService(db)
    if user_id != current_user.user_id and not current_user.is_admin:
        await service.check_admin_access(organization_id, current_user.user_id)
    await service.remove_member(organization_id, user_id, removed_by=current_user.user_id)
