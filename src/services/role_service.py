"""
Role service
Role CRUD, role permissions and user role assignments
"""
import logging
from typing import List, Optional

from sqlalchemy import select, and_, delete
from sqlalchemy.ext.asyncio import AsyncSession

from models.rbac import Role, RoleType, UserRole, role_permissions
from models.organization import Organization
from models.workspace import Workspace
from core.exceptions import NotFoundException, ConflictException, ValidationException
from services.permission_service import PermissionService, permission_cache
from services.audit_service import AuditService, AuditAction

logger = logging.getLogger(__name__)


class RoleService:
    """Service for roles and their assignment"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.permissions = PermissionService(db)
        self.audit = AuditService(db)

    async def list_roles(self) -> List[Role]:
        result = await self.db.execute(select(Role).order_by(Role.name))
        return list(result.scalars().all())

    async def list_system_roles(self) -> List[Role]:
        result = await self.db.execute(
            select(Role).where(Role.type == RoleType.SYSTEM.value).order_by(Role.name)
        )
        return list(result.scalars().all())

    async def list_organization_roles(self, organization_id: str) -> List[Role]:
        await self._require_organization(organization_id)
        result = await self.db.execute(
            select(Role).where(Role.organization_id == organization_id).order_by(Role.name)
        )
        return list(result.scalars().all())

    async def get_role(self, role_id: str) -> Role:
        role = await self.db.get(Role, role_id)
        if not role:
            raise NotFoundException(f"Role {role_id} not found")
        return role

    async def find_role_by_name(self, name: str, organization_id: Optional[str] = None) -> Optional[Role]:
        condition = Role.organization_id == organization_id if organization_id else Role.organization_id.is_(None)
        result = await self.db.execute(select(Role).where(and_(Role.name == name, condition)))
        return result.scalar_one_or_none()

    async def create_role(
        self,
        name: str,
        description: Optional[str] = None,
        organization_id: Optional[str] = None,
        type: str = RoleType.CUSTOM.value,
        parent_role_id: Optional[str] = None,
    ) -> Role:
        if organization_id:
            await self._require_organization(organization_id)
        if parent_role_id:
            await self.get_role(parent_role_id)

        if await self.find_role_by_name(name, organization_id):
            raise ConflictException(f"Role '{name}' already exists")

        role = Role(
            name=name,
            description=description,
            organization_id=organization_id,
            type=type,
            parent_role_id=parent_role_id,
        )
        self.db.add(role)
        await self.db.flush()
        await self.db.refresh(role, ["permissions"])

        logger.info(f"Created role {role.name} ({role.id})")
        return role

    async def update_role(self, role_id: str, **updates) -> Role:
        role = await self.get_role(role_id)

        new_type = updates.get("type")
        if role.is_system and new_type and new_type != RoleType.SYSTEM.value:
            raise ValidationException("Cannot change the type of a system role")

        new_org = updates.get("organization_id")
        if new_org and new_org != role.organization_id:
            await self._require_organization(new_org)

        for key in ("name", "description", "type", "organization_id", "parent_role_id"):
            if updates.get(key) is not None:
                setattr(role, key, updates[key])

        await self.db.flush()
        await permission_cache.invalidate()
        return role

    async def delete_role(self, role_id: str) -> bool:
        role = await self.get_role(role_id)
        if role.is_system:
            raise ValidationException("Cannot delete a system role")

        await self.db.execute(delete(UserRole).where(UserRole.role_id == role_id))
        await self.db.execute(delete(role_permissions).where(role_permissions.c.role_id == role_id))
        await self.db.delete(role)
        await self.db.flush()
        await permission_cache.invalidate()
        return True

    async def clone_role(
        self,
        role_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> Role:
        """Copy a role and its permissions; clones are always custom roles"""
        source = await self.get_role(role_id)

        clone = await self.create_role(
            name=name or f"{source.name} (Clone)",
            description=description or source.description,
            organization_id=organization_id or source.organization_id,
            type=RoleType.CUSTOM.value,
        )
        for permission in source.permissions:
            await self.assign_permission(clone.id, permission.id)

        await self.db.refresh(clone, ["permissions"])
        return clone

    async def get_role_permissions(self, role_id: str):
        role = await self.get_role(role_id)
        return list(role.permissions)

    async def assign_permission(self, role_id: str, permission_id: str) -> Role:
        """Attach a permission to a role; no-op when already attached"""
        role = await self.get_role(role_id)
        await self.permissions.get_permission(permission_id)

        existing = await self.db.execute(
            select(role_permissions.c.role_id).where(
                and_(role_permissions.c.role_id == role_id, role_permissions.c.permission_id == permission_id)
            )
        )
        if existing.first() is None:
            await self.db.execute(role_permissions.insert().values(role_id=role_id, permission_id=permission_id))
            await self.db.refresh(role, ["permissions"])
            await permission_cache.invalidate()
        return role

    async def remove_permission(self, role_id: str, permission_id: str) -> Role:
        role = await self.get_role(role_id)
        await self.permissions.get_permission(permission_id)

        await self.db.execute(
            delete(role_permissions).where(
                and_(role_permissions.c.role_id == role_id, role_permissions.c.permission_id == permission_id)
            )
        )
        await self.db.refresh(role, ["permissions"])
        await permission_cache.invalidate()
        return role

    async def assign_role_to_user(
        self,
        user_id: str,
        role_id: str,
        workspace_id: Optional[str] = None,
        assigned_by: Optional[str] = None,
    ) -> UserRole:
        role = await self.get_role(role_id)

        if workspace_id:
            workspace = await self.db.get(Workspace, workspace_id)
            if not workspace:
                raise NotFoundException(f"Workspace {workspace_id} not found")
            if role.organization_id and role.organization_id != workspace.organization_id:
                raise ValidationException(
                    f"Role {role_id} belongs to a different organization than workspace {workspace_id}"
                )

        existing = await self._find_assignment(user_id, role_id, workspace_id)
        if existing:
            return existing

        assignment = UserRole(user_id=user_id, role_id=role_id, workspace_id=workspace_id)
        self.db.add(assignment)
        await self.db.flush()
        await self.db.refresh(assignment, ["role"])

        await permission_cache.invalidate(user_id)
        await self.audit.log_user_action(
            assigned_by, AuditAction.ROLE_ASSIGNED, "role", role_id,
            {"user_id": user_id, "workspace_id": workspace_id},
        )
        return assignment

    async def assign_system_role(self, user_id: str, role_name: str, workspace_id: Optional[str] = None) -> UserRole:
        role = await self.find_role_by_name(role_name)
        if not role or not role.is_system:
            raise NotFoundException(f"System role {role_name} not found")
        return await self.assign_role_to_user(user_id, role.id, workspace_id)

    async def remove_role_from_user(
        self,
        user_id: str,
        role_id: str,
        workspace_id: Optional[str] = None,
        removed_by: Optional[str] = None,
    ) -> bool:
        assignment = await self._find_assignment(user_id, role_id, workspace_id)
        if not assignment:
            raise NotFoundException(f"User {user_id} does not have role {role_id}")

        await self.db.delete(assignment)
        await self.db.flush()

        await permission_cache.invalidate(user_id)
        await self.audit.log_user_action(
            removed_by, AuditAction.ROLE_REMOVED, "role", role_id,
            {"user_id": user_id, "workspace_id": workspace_id},
        )
        return True

    async def get_user_roles(self, user_id: str) -> List[UserRole]:
        result = await self.db.execute(
            select(UserRole).where(UserRole.user_id == user_id).order_by(UserRole.assigned_at)
        )
        return list(result.scalars().all())

    async def get_user_role_names(self, user_id: str, system_only: bool = False) -> List[str]:
        return sorted({
            assignment.role.name for assignment in await self.get_user_roles(user_id)
            if not system_only or assignment.role.type == RoleType.SYSTEM.value
        })

    async def _find_assignment(self, user_id: str, role_id: str, workspace_id: Optional[str]) -> Optional[UserRole]:
        workspace_condition = (
            UserRole.workspace_id == workspace_id if workspace_id else UserRole.workspace_id.is_(None)
        )
        result = await self.db.execute(
            select(UserRole).where(
                and_(UserRole.user_id == user_id, UserRole.role_id == role_id, workspace_condition)
            )
        )
        return result.scalar_one_or_none()

    async def _require_organization(self, organization_id: str):
        if not await self.db.get(Organization, organization_id):
            raise NotFoundException(f"Organization {organization_id} not found")
