"""
Workspace service
"""
import logging
from typing import List, Optional

from sqlalchemy import select, and_, delete
from sqlalchemy.ext.asyncio import AsyncSession

from models.workspace import Workspace, WorkspaceMember, WorkspaceRole
from models.organization import ORGANIZATION_ADMIN_ROLES
from models.api_key import ApiKey
from models.rbac import UserRole
from models.settings import WorkspaceSettings
from core.exceptions import (
    NotFoundException,
    ConflictException,
    ValidationException,
    ForbiddenException,
)
from core.validators import generate_slug, is_valid_slug
from services.organization_service import OrganizationService
from services.audit_service import AuditService, AuditAction

logger = logging.getLogger(__name__)

WORKSPACE_ROLES = {r.value for r in WorkspaceRole}


class WorkspaceService:
    """Service for managing workspaces and their members"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.organizations = OrganizationService(db)
        self.audit = AuditService(db)

    async def list_workspaces(self) -> List[Workspace]:
        result = await self.db.execute(select(Workspace).order_by(Workspace.name))
        return list(result.scalars().all())

    async def list_organization_workspaces(self, organization_id: str) -> List[Workspace]:
        await self.organizations.get_organization(organization_id)
        result = await self.db.execute(
            select(Workspace)
            .where(Workspace.organization_id == organization_id)
            .order_by(Workspace.name)
        )
        return list(result.scalars().all())

    async def get_workspace(self, workspace_id: str) -> Workspace:
        workspace = await self.db.get(Workspace, workspace_id)
        if not workspace:
            raise NotFoundException(f"Workspace {workspace_id} not found")
        return workspace

    async def find_workspace_by_slug(self, organization_id: str, slug: str) -> Optional[Workspace]:
        result = await self.db.execute(
            select(Workspace).where(
                and_(Workspace.organization_id == organization_id, Workspace.slug == slug)
            )
        )
        return result.scalar_one_or_none()

    async def get_workspace_by_slug(self, organization_id: str, slug: str) -> Workspace:
        workspace = await self.find_workspace_by_slug(organization_id, slug)
        if not workspace:
            raise NotFoundException(f"Workspace '{slug}' not found in organization {organization_id}")
        return workspace

    async def create_workspace(
        self,
        organization_id: str,
        name: str,
        slug: Optional[str] = None,
        description: Optional[str] = None,
        settings: Optional[dict] = None,
        created_by: Optional[str] = None,
    ) -> Workspace:
        """Create a workspace inside an existing organization"""
        await self.organizations.get_organization(organization_id)

        slug = slug or generate_slug(name)
        if not is_valid_slug(slug):
            raise ValidationException("Invalid slug format. Use only lowercase letters, numbers, and hyphens.")

        if await self.find_workspace_by_slug(organization_id, slug):
            raise ConflictException(f"Workspace with slug '{slug}' already exists in this organization")

        workspace = Workspace(
            organization_id=organization_id,
            name=name,
            slug=slug,
            description=description,
            settings=settings or {},
            created_by=created_by,
        )
        self.db.add(workspace)
        await self.db.flush()

        await self.audit.log_user_action(
            created_by, AuditAction.WORKSPACE_CREATED, "workspace", workspace.id,
            {"organization_id": organization_id, "slug": slug},
        )
        logger.info(f"Created workspace {workspace.id} in organization {organization_id}")
        return workspace

    async def update_workspace(self, workspace_id: str, updated_by: Optional[str] = None, **updates) -> Workspace:
        workspace = await self.get_workspace(workspace_id)

        new_org = updates.get("organization_id")
        if new_org and new_org != workspace.organization_id:
            await self.organizations.get_organization(new_org)

        target_org = new_org or workspace.organization_id
        new_slug = updates.get("slug")
        if new_slug and (new_slug != workspace.slug or target_org != workspace.organization_id):
            if not is_valid_slug(new_slug):
                raise ValidationException("Invalid slug format")
            clash = await self.find_workspace_by_slug(target_org, new_slug)
            if clash and clash.id != workspace_id:
                raise ConflictException(f"Workspace with slug '{new_slug}' already exists in this organization")

        for key, value in updates.items():
            if key in ("name", "slug", "description", "settings", "organization_id") and value is not None:
                setattr(workspace, key, value)

        await self.db.flush()

        await self.audit.log_user_action(
            updated_by, AuditAction.WORKSPACE_UPDATED, "workspace", workspace_id,
            {"fields": sorted(k for k, v in updates.items() if v is not None)},
        )
        return workspace

    async def delete_workspace(self, workspace_id: str, deleted_by: Optional[str] = None) -> bool:
        workspace = await self.get_workspace(workspace_id)

        await self.db.execute(delete(WorkspaceSettings).where(WorkspaceSettings.workspace_id == workspace_id))
        await self.db.execute(delete(ApiKey).where(ApiKey.workspace_id == workspace_id))
        await self.db.execute(delete(UserRole).where(UserRole.workspace_id == workspace_id))
        await self.db.execute(delete(WorkspaceMember).where(WorkspaceMember.workspace_id == workspace_id))
        await self.db.delete(workspace)
        await self.db.flush()

        await self.audit.log_user_action(
            deleted_by, AuditAction.WORKSPACE_DELETED, "workspace", workspace_id,
            {"organization_id": workspace.organization_id},
        )
        logger.info(f"Deleted workspace: {workspace_id}")
        return True

    # Members

    async def list_members(self, workspace_id: str) -> List[WorkspaceMember]:
        await self.get_workspace(workspace_id)
        result = await self.db.execute(
            select(WorkspaceMember)
            .where(WorkspaceMember.workspace_id == workspace_id)
            .order_by(WorkspaceMember.created_at)
        )
        return list(result.scalars().all())

    async def find_member(self, workspace_id: str, user_id: str) -> Optional[WorkspaceMember]:
        result = await self.db.execute(
            select(WorkspaceMember).where(
                and_(WorkspaceMember.workspace_id == workspace_id, WorkspaceMember.user_id == user_id)
            )
        )
        return result.scalar_one_or_none()

    async def get_member(self, workspace_id: str, user_id: str) -> WorkspaceMember:
        member = await self.find_member(workspace_id, user_id)
        if not member:
            raise NotFoundException(f"User {user_id} is not a member of workspace {workspace_id}")
        return member

    async def add_member(
        self,
        workspace_id: str,
        user_id: str,
        role: str = WorkspaceRole.MEMBER.value,
        added_by: Optional[str] = None,
    ) -> WorkspaceMember:
        """Add an organization member to one of its workspaces"""
        workspace = await self.get_workspace(workspace_id)
        self._check_role(role)

        if not await self.organizations.find_member(workspace.organization_id, user_id):
            raise ValidationException("User must be a member of the workspace's organization")

        if await self.find_member(workspace_id, user_id):
            raise ConflictException(f"User {user_id} is already a member of workspace {workspace_id}")

        member = WorkspaceMember(workspace_id=workspace_id, user_id=user_id, role=role)
        self.db.add(member)
        await self.db.flush()

        await self.audit.log_user_action(
            added_by, AuditAction.MEMBER_ADDED, "workspace", workspace_id,
            {"user_id": user_id, "role": role},
        )
        return member

    async def update_member_role(
        self, workspace_id: str, user_id: str, role: str, updated_by: Optional[str] = None
    ) -> WorkspaceMember:
        self._check_role(role)
        member = await self.get_member(workspace_id, user_id)
        member.role = role
        await self.db.flush()

        await self.audit.log_user_action(
            updated_by, AuditAction.MEMBER_UPDATED, "workspace", workspace_id,
            {"user_id": user_id, "role": role},
        )
        return member

    async def remove_member(self, workspace_id: str, user_id: str, removed_by: Optional[str] = None) -> bool:
        member = await self.get_member(workspace_id, user_id)
        await self.db.delete(member)
        await self.db.flush()

        await self.audit.log_user_action(
            removed_by, AuditAction.MEMBER_REMOVED, "workspace", workspace_id, {"user_id": user_id},
        )
        return True

    async def list_user_workspaces(self, user_id: str) -> List[dict]:
        result = await self.db.execute(
            select(Workspace, WorkspaceMember.role)
            .join(WorkspaceMember, Workspace.id == WorkspaceMember.workspace_id)
            .where(WorkspaceMember.user_id == user_id)
            .order_by(Workspace.name)
        )
        return [{**ws.to_dict(), "role": role} for ws, role in result.all()]

    # Access checks

    async def check_access(self, workspace_id: str, user_id: str) -> Workspace:
        """Workspace members and admins of the parent organization may access a workspace"""
        workspace = await self.get_workspace(workspace_id)
        if await self.find_member(workspace_id, user_id):
            return workspace
        org_member = await self.organizations.find_member(workspace.organization_id, user_id)
        if org_member and org_member.role in ORGANIZATION_ADMIN_ROLES:
            return workspace
        raise ForbiddenException("User does not have access to this workspace")

    async def check_admin_access(self, workspace_id: str, user_id: str) -> Workspace:
        workspace = await self.get_workspace(workspace_id)
        member = await self.find_member(workspace_id, user_id)
        if member and member.role == WorkspaceRole.ADMIN.value:
            return workspace
        org_member = await self.organizations.find_member(workspace.organization_id, user_id)
        if org_member and org_member.role in ORGANIZATION_ADMIN_ROLES:
            return workspace
        raise ForbiddenException("User does not have admin access to this workspace")

    def _check_role(self, role: str):
        if role not in WORKSPACE_ROLES:
            raise ValidationException(f"Invalid workspace role '{role}'")
