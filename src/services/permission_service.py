"""
Permission service
Permission CRUD, permission checks and the Redis-backed check cache
"""
import logging
from typing import List, Optional

from sqlalchemy import select, and_, delete
from sqlalchemy.ext.asyncio import AsyncSession

from models.rbac import Permission, PermissionScope, ResourcePermission, UserRole, role_permissions
from core.config import settings
from core.exceptions import NotFoundException, ConflictException, ValidationException
from core.redis import get_redis_client, redis_key

logger = logging.getLogger(__name__)


class PermissionCache:
    """Caches boolean permission checks per user/resource/action"""

    def _key(self, user_id: str, resource_type: str, resource_id: str, action: str) -> str:
        return redis_key("perm", user_id, resource_type, resource_id or "*", action)

    async def get(self, user_id: str, resource_type: str, resource_id: str, action: str) -> Optional[bool]:
        try:
            value = await get_redis_client().get(self._key(user_id, resource_type, resource_id, action))
        except Exception as e:
            logger.warning(f"Permission cache read failed: {e}")
            return None
        if value is None:
            return None
        return value == "1"

    async def set(self, user_id: str, resource_type: str, resource_id: str, action: str, allowed: bool):
        ttl = settings.PERMISSION_CACHE_POSITIVE_TTL if allowed else settings.PERMISSION_CACHE_NEGATIVE_TTL
        try:
            await get_redis_client().set(
                self._key(user_id, resource_type, resource_id, action), "1" if allowed else "0", ex=ttl
            )
        except Exception as e:
            logger.warning(f"Permission cache write failed: {e}")

    async def invalidate(self, user_id: Optional[str] = None):
        """Drop cached checks for one user, or for everybody"""
        pattern = redis_key("perm", user_id or "*", "*")
        try:
            client = get_redis_client()
            keys = [key async for key in client.scan_iter(match=pattern)]
            if keys:
                await client.delete(*keys)
        except Exception as e:
            logger.warning(f"Permission cache invalidation failed: {e}")


permission_cache = PermissionCache()


def permission_name(resource_type: str, action: str) -> str:
    return f"{resource_type}:{action}"


class PermissionService:
    """Service for permissions and permission checks"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.cache = permission_cache

    async def list_permissions(self) -> List[Permission]:
        result = await self.db.execute(
            select(Permission).order_by(Permission.resource_type, Permission.action)
        )
        return list(result.scalars().all())

    async def get_permission(self, permission_id: str) -> Permission:
        permission = await self.db.get(Permission, permission_id)
        if not permission:
            raise NotFoundException(f"Permission {permission_id} not found")
        return permission

    async def find_permission_by_name(self, name: str) -> Optional[Permission]:
        result = await self.db.execute(select(Permission).where(Permission.name == name))
        return result.scalar_one_or_none()

    async def get_permission_by_name(self, name: str) -> Permission:
        permission = await self.find_permission_by_name(name)
        if not permission:
            raise NotFoundException(f"Permission {name} not found")
        return permission

    async def list_permissions_by_resource_type(self, resource_type: str) -> List[Permission]:
        result = await self.db.execute(
            select(Permission)
            .where(Permission.resource_type == resource_type)
            .order_by(Permission.action)
        )
        return list(result.scalars().all())

    async def create_permission(
        self,
        resource_type: str,
        action: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        scope: str = PermissionScope.RESOURCE.value,
    ) -> Permission:
        if not resource_type or not action:
            raise ValidationException("resource_type and action are required")

        name = name or permission_name(resource_type, action)
        if await self.find_permission_by_name(name):
            raise ConflictException(f"Permission {name} already exists")

        permission = Permission(
            name=name,
            resource_type=resource_type,
            action=action,
            description=description,
            scope=scope,
        )
        self.db.add(permission)
        await self.db.flush()

        await self.cache.invalidate()
        return permission

    async def update_permission(self, permission_id: str, **updates) -> Permission:
        """Update a permission; the name follows resource_type/action unless given"""
        permission = await self.get_permission(permission_id)

        if (updates.get("resource_type") or updates.get("action")) and not updates.get("name"):
            updates["name"] = permission_name(
                updates.get("resource_type") or permission.resource_type,
                updates.get("action") or permission.action,
            )

        new_name = updates.get("name")
        if new_name and new_name != permission.name:
            clash = await self.find_permission_by_name(new_name)
            if clash:
                raise ConflictException(f"Permission {new_name} already exists")

        for key in ("name", "resource_type", "action", "description", "scope"):
            if updates.get(key) is not None:
                setattr(permission, key, updates[key])

        await self.db.flush()
        await self.cache.invalidate()
        return permission

    async def delete_permission(self, permission_id: str) -> bool:
        permission = await self.get_permission(permission_id)
        await self.db.execute(delete(role_permissions).where(role_permissions.c.permission_id == permission_id))
        await self.db.delete(permission)
        await self.db.flush()
        await self.cache.invalidate()
        return True

    async def has_permission(self, user_id: str, resource_type: str, resource_id: Optional[str], action: str) -> bool:
        """
        Check a user's permission on a resource

        A direct resource grant wins, otherwise any of the user's roles must
        carry resource_type:action.
        """
        cached = await self.cache.get(user_id, resource_type, resource_id, action)
        if cached is not None:
            return cached

        allowed = False
        if resource_id:
            direct = await self.db.execute(
                select(ResourcePermission.id).where(
                    and_(
                        ResourcePermission.user_id == user_id,
                        ResourcePermission.resource_type == resource_type,
                        ResourcePermission.resource_id == resource_id,
                        ResourcePermission.permission == action,
                    )
                )
            )
            allowed = direct.first() is not None

        if not allowed:
            via_role = await self.db.execute(
                select(Permission.id)
                .join(role_permissions, role_permissions.c.permission_id == Permission.id)
                .join(UserRole, UserRole.role_id == role_permissions.c.role_id)
                .where(
                    and_(
                        UserRole.user_id == user_id,
                        Permission.resource_type == resource_type,
                        Permission.action == action,
                    )
                )
                .limit(1)
            )
            allowed = via_role.first() is not None

        await self.cache.set(user_id, resource_type, resource_id, action, allowed)
        return allowed

    async def get_user_permissions(self, user_id: str) -> List[Permission]:
        """Distinct permissions granted through the user's roles"""
        result = await self.db.execute(
            select(Permission)
            .join(role_permissions, role_permissions.c.permission_id == Permission.id)
            .join(UserRole, UserRole.role_id == role_permissions.c.role_id)
            .where(UserRole.user_id == user_id)
            .distinct()
            .order_by(Permission.name)
        )
        return list(result.scalars().all())

    async def grant_resource_permission(
        self, user_id: str, resource_type: str, resource_id: str, action: str
    ) -> ResourcePermission:
        result = await self.db.execute(
            select(ResourcePermission).where(
                and_(
                    ResourcePermission.user_id == user_id,
                    ResourcePermission.resource_type == resource_type,
                    ResourcePermission.resource_id == resource_id,
                    ResourcePermission.permission == action,
                )
            )
        )
        grant = result.scalar_one_or_none()
        if grant:
            return grant

        grant = ResourcePermission(
            user_id=user_id, resource_type=resource_type, resource_id=resource_id, permission=action
        )
        self.db.add(grant)
        await self.db.flush()
        await self.cache.invalidate(user_id)
        return grant

    async def revoke_resource_permission(self, user_id: str, resource_type: str, resource_id: str, action: str) -> bool:
        result = await self.db.execute(
            delete(ResourcePermission).where(
                and_(
                    ResourcePermission.user_id == user_id,
                    ResourcePermission.resource_type == resource_type,
                    ResourcePermission.resource_id == resource_id,
                    ResourcePermission.permission == action,
                )
            )
        )
        await self.cache.invalidate(user_id)
        return result.rowcount > 0
