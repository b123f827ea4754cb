"""
API Key Authentication
Programmatic callers send X-API-Key and X-API-Secret instead of a bearer token
"""
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_db
from core.exceptions import UnauthorizedException
from middleware.auth_dependencies import CurrentUser, load_current_user
from services.api_key_service import ApiKeyService


async def get_api_key_principal(
    x_api_key: Optional[str] = Header(None),
    x_api_secret: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db)
) -> CurrentUser:
    """Authenticate as the owner of a valid, unexpired API key"""
    if not x_api_key or not x_api_secret:
        raise UnauthorizedException("API key and secret are required")

    api_key = await ApiKeyService(db).validate_api_key(x_api_key, x_api_secret)
    if not api_key.user_id:
        raise UnauthorizedException("API key is not bound to a user")

    principal = await load_current_user(db, api_key.user_id, {"api_key_id": api_key.id})
    principal.api_key = api_key
    return principal
