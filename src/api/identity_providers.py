"""
Identity provider management routes
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_db
from core.exceptions import ForbiddenException
from middleware.auth_dependencies import CurrentUser, get_current_user, ensure_organization_access
from models.identity_provider import IdentityProviderType
from services.identity_provider import IdentityProviderService
from schemas.identity_provider import (
    IdentityProviderCreate,
    IdentityProviderUpdate,
    IdentityProviderResponse,
    AttributeMappingCreate,
    AttributeMappingUpdate,
    AttributeMappingResponse,
    ConnectionTestResponse,
    MetadataParseRequest,
)


router = APIRouter(prefix="/api/v1/identity-providers", tags=["identity-providers"])


async def _ensure_can_manage(db: AsyncSession, current_user: CurrentUser, organization_id: Optional[str]):
    """Organization providers are managed by org admins, global ones by system admins"""
    if organization_id:
        await ensure_organization_access(db, current_user, organization_id, admin=True)
    elif not current_user.is_admin:
        raise ForbiddenException("Only system administrators can manage global identity providers")


async def _load_managed(db: AsyncSession, current_user: CurrentUser, provider_id: str):
    service = IdentityProviderService(db)
    provider = await service.get_by_id(provider_id)
    await _ensure_can_manage(db, current_user, provider.organization_id)
    return service, provider


def _payload(model) -> dict:
    return model.model_dump(exclude_unset=True, mode="json")


@router.get("/", response_model=List[IdentityProviderResponse])
async def list_identity_providers(
    organization_id: Optional[str] = Query(None, description="Providers of an organization"),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service = IdentityProviderService(db)
    await _ensure_can_manage(db, current_user, organization_id)
    if organization_id:
        providers = await service.get_for_organization(organization_id)
    else:
        providers = await service.get_all()
    return [p.to_dict() for p in providers]


@router.post("/", response_model=IdentityProviderResponse, status_code=status.HTTP_201_CREATED)
async def create_identity_provider(
    provider_data: IdentityProviderCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    await _ensure_can_manage(db, current_user, provider_data.organization_id)
    data = provider_data.model_dump(mode="json")
    provider = await IdentityProviderService(db).create(data, user_id=current_user.user_id)
    return provider.to_dict()


@router.get("/{provider_id}", response_model=IdentityProviderResponse)
async def get_identity_provider(
    provider_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    _, provider = await _load_managed(db, current_user, provider_id)
    return provider.to_dict()


@router.put("/{provider_id}", response_model=IdentityProviderResponse)
async def update_identity_provider(
    provider_id: str,
    provider_data: IdentityProviderUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service, _ = await _load_managed(db, current_user, provider_id)
    data = _payload(provider_data)
    if data.get("organization_id"):
        await _ensure_can_manage(db, current_user, data["organization_id"])
    provider = await service.update(provider_id, data, user_id=current_user.user_id)
    return provider.to_dict()


@router.delete("/{provider_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_identity_provider(
    provider_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service, _ = await _load_managed(db, current_user, provider_id)
    await service.delete(provider_id, user_id=current_user.user_id)


@router.post("/{provider_id}/test", response_model=ConnectionTestResponse)
async def check_identity_provider_connection(
    provider_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Initialize a throwaway client against the IdP"""
    service, _ = await _load_managed(db, current_user, provider_id)
    return await service.test_connection(provider_id)


@router.get("/{provider_id}/metadata")
async def get_service_provider_metadata(
    provider_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """SP metadata: XML for SAML providers, JSON for OIDC clients"""
    service, provider = await _load_managed(db, current_user, provider_id)
    metadata = await service.generate_service_provider_metadata(provider_id)
    media_type = "application/xml" if provider.type == IdentityProviderType.SAML.value else "application/json"
    return Response(content=metadata, media_type=media_type)


@router.post("/{provider_id}/metadata/parse")
async def parse_identity_provider_metadata(
    provider_id: str,
    request: MetadataParseRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service, _ = await _load_managed(db, current_user, provider_id)
    return await service.parse_identity_provider_metadata(provider_id, request.metadata)


# Attribute mappings

@router.get("/{provider_id}/attributes", response_model=List[AttributeMappingResponse])
async def list_attributes(
    provider_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service, _ = await _load_managed(db, current_user, provider_id)
    return [a.to_dict() for a in await service.list_attributes(provider_id)]


@router.post(
    "/{provider_id}/attributes",
    response_model=AttributeMappingResponse,
    status_code=status.HTTP_201_CREATED
)
async def add_attribute(
    provider_id: str,
    attribute_data: AttributeMappingCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service, _ = await _load_managed(db, current_user, provider_id)
    attribute = await service.add_attribute(provider_id, attribute_data.model_dump(mode="json"))
    return attribute.to_dict()


@router.put("/{provider_id}/attributes/{attribute_id}", response_model=AttributeMappingResponse)
async def update_attribute(
    provider_id: str,
    attribute_id: str,
    attribute_data: AttributeMappingUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service, _ = await _load_managed(db, current_user, provider_id)
    attribute = await service.update_attribute(provider_id, attribute_id, _payload(attribute_data))
    return attribute.to_dict()


@router.delete("/{provider_id}/attributes/{attribute_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_attribute(
    provider_id: str,
    attribute_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service, _ = await _load_managed(db, current_user, provider_id)
    await service.delete_attribute(provider_id, attribute_id)
