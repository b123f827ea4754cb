"""
API key routes
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_db
from core.exceptions import ForbiddenException
from middleware.auth_dependencies import CurrentUser, get_current_user, ensure_organization_access
from middleware.api_key_auth import get_api_key_principal
from services.api_key_service import ApiKeyService
from schemas.api_key import (
    ApiKeyCreate,
    ApiKeyUpdate,
    ApiKeyResponse,
    ApiKeyCreateResponse,
    ApiKeyValidationResponse,
)


router = APIRouter(prefix="/api/v1/api-keys", tags=["api-keys"])


async def _load_own_key(db: AsyncSession, current_user: CurrentUser, key_id: str):
    service = ApiKeyService(db)
    api_key = await service.get_api_key(key_id)
    if api_key.user_id != current_user.user_id and not current_user.is_admin:
        raise ForbiddenException("API key belongs to another user")
    return service, api_key


@router.get("/", response_model=List[ApiKeyResponse])
async def list_api_keys(
    organization_id: Optional[str] = Query(None, description="Keys of an organization (org admins)"),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service = ApiKeyService(db)
    if organization_id:
        await ensure_organization_access(db, current_user, organization_id, admin=True)
        keys = await service.list_api_keys(organization_id=organization_id)
    else:
        keys = await service.get_user_api_keys(current_user.user_id)
    return [k.to_dict() for k in keys]


@router.post("/", response_model=ApiKeyCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_api_key(
    key_data: ApiKeyCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Create a key pair; the secret is only returned here"""
    if key_data.organization_id:
        await ensure_organization_access(db, current_user, key_data.organization_id)

    api_key, secret = await ApiKeyService(db).create_api_key(
        key_name=key_data.key_name,
        user_id=current_user.user_id,
        organization_id=key_data.organization_id,
        workspace_id=key_data.workspace_id,
        expires_at=key_data.expires_at,
    )
    return {**api_key.to_dict(), "api_secret": secret}


@router.post("/validate", response_model=ApiKeyValidationResponse)
async def validate_api_key(principal: CurrentUser = Depends(get_api_key_principal)):
    """Check the X-API-Key / X-API-Secret pair"""
    api_key = principal.api_key
    return {
        "valid": True,
        "key_id": api_key.id,
        "user_id": principal.user_id,
        "organization_id": api_key.organization_id,
        "workspace_id": api_key.workspace_id,
    }


@router.get("/{key_id}", response_model=ApiKeyResponse)
async def get_api_key(
    key_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    _, api_key = await _load_own_key(db, current_user, key_id)
    return api_key.to_dict()


@router.put("/{key_id}", response_model=ApiKeyResponse)
async def update_api_key(
    key_id: str,
    key_data: ApiKeyUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service, _ = await _load_own_key(db, current_user, key_id)
    api_key = await service.update_api_key(key_id, key_data.key_name)
    return api_key.to_dict()


@router.delete("/{key_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_api_key(
    key_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service, _ = await _load_own_key(db, current_user, key_id)
    await service.delete_api_key(key_id, deleted_by=current_user.user_id)
