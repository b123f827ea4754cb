"""
API key service
Keys are handed out as a public key plus a secret shown once
"""
import logging
import secrets
from datetime import datetime
from typing import List, Optional, Tuple

from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.api_key import ApiKey
from core.exceptions import NotFoundException, ValidationException, UnauthorizedException
from core.utils import utcnow
from services.audit_service import AuditService, AuditAction

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "fs_"

secret_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def generate_api_key() -> str:
    return API_KEY_PREFIX + secrets.token_urlsafe(32)


def generate_api_secret() -> str:
    # bcrypt only looks at the first 72 bytes
    return secrets.token_urlsafe(48)


class ApiKeyService:
    """Service for API key management and validation"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def list_api_keys(
        self, user_id: Optional[str] = None, organization_id: Optional[str] = None
    ) -> List[ApiKey]:
        query = select(ApiKey)
        if user_id:
            query = query.where(ApiKey.user_id == user_id)
        if organization_id:
            query = query.where(ApiKey.organization_id == organization_id)
        result = await self.db.execute(query.order_by(ApiKey.created_at.desc()))
        return list(result.scalars().all())

    async def get_user_api_keys(self, user_id: str) -> List[ApiKey]:
        return await self.list_api_keys(user_id=user_id)

    async def get_api_key(self, key_id: str) -> ApiKey:
        api_key = await self.db.get(ApiKey, key_id)
        if not api_key:
            raise NotFoundException(f"API key {key_id} not found")
        return api_key

    async def create_api_key(
        self,
        key_name: str,
        user_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        workspace_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> Tuple[ApiKey, str]:
        """
        Create a key pair

        Returns the stored key and the plaintext secret. The secret is not
        recoverable afterwards.
        """
        if not key_name or not key_name.strip():
            raise ValidationException("Key name is required")

        secret = generate_api_secret()
        api_key = ApiKey(
            key_name=key_name.strip(),
            api_key=generate_api_key(),
            api_secret_hash=secret_context.hash(secret),
            user_id=user_id,
            organization_id=organization_id,
            workspace_id=workspace_id,
            expires_at=expires_at,
        )
        self.db.add(api_key)
        await self.db.flush()

        await self.audit.log_user_action(
            user_id, AuditAction.API_KEY_CREATED, "api_key", api_key.id, {"key_name": api_key.key_name},
        )
        logger.info(f"Created API key {api_key.id}")
        return api_key, secret

    async def update_api_key(self, key_id: str, key_name: str) -> ApiKey:
        if not key_name or not key_name.strip():
            raise ValidationException("Key name is required")
        api_key = await self.get_api_key(key_id)
        api_key.key_name = key_name.strip()
        await self.db.flush()
        return api_key

    async def delete_api_key(self, key_id: str, deleted_by: Optional[str] = None) -> bool:
        api_key = await self.get_api_key(key_id)
        await self.db.delete(api_key)
        await self.db.flush()

        await self.audit.log_user_action(deleted_by, AuditAction.API_KEY_DELETED, "api_key", key_id)
        return True

    async def validate_api_key(self, api_key: str, api_secret: str) -> ApiKey:
        if not api_key or not api_secret:
            raise UnauthorizedException("API key and secret are required")

        result = await self.db.execute(select(ApiKey).where(ApiKey.api_key == api_key))
        stored = result.scalar_one_or_none()
        if not stored or not secret_context.verify(api_secret, stored.api_secret_hash):
            raise UnauthorizedException("Invalid API key")

        if stored.is_expired():
            raise UnauthorizedException("API key has expired")

        stored.last_used_at = utcnow()
        await self.db.flush()
        return stored
