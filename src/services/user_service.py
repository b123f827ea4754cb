"""
User profile service
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.user import User
from core.exceptions import NotFoundException, ConflictException

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("first_name", "last_name", "full_name", "is_active")


class UserService:
    """Lookups and provisioning for user profiles"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, user_id: str) -> User:
        user = await self.db.get(User, user_id)
        if not user:
            raise NotFoundException(f"User {user_id} not found")
        return user

    async def get_user_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.email == email.strip().lower())
        )
        return result.scalar_one_or_none()

    async def create_user(
        self,
        email: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        full_name: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> User:
        email = email.strip().lower()
        if await self.get_user_by_email(email):
            raise ConflictException(f"User with email '{email}' already exists")

        user = User(
            email=email,
            first_name=first_name,
            last_name=last_name,
            full_name=full_name or " ".join(p for p in (first_name, last_name) if p) or None,
            metadata_=metadata or {},
        )
        self.db.add(user)
        await self.db.flush()

        logger.info(f"Created user: {user.id}")
        return user

    async def update_profile(self, user_id: str, metadata: Optional[Dict[str, Any]] = None, **updates) -> User:
        """Update profile fields; metadata is merged rather than replaced"""
        user = await self.get_user(user_id)

        for key, value in updates.items():
            if key in PROFILE_FIELDS and value is not None:
                setattr(user, key, value)

        if metadata:
            user.metadata_ = {**(user.metadata_ or {}), **metadata}

        await self.db.flush()
        return user
