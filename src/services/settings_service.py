"""
Organization and workspace settings

Settings rows are created with defaults the first time they are read. Updates
merge the free-form ``settings`` document one level deep instead of replacing it.
"""
import copy
import logging
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.organization import Organization, OrganizationRole
from models.settings import OrganizationSettings, WorkspaceSettings
from models.workspace import Workspace, WorkspaceRole
from core.exceptions import NotFoundException, ValidationException
from services.audit_service import AuditService, AuditAction

logger = logging.getLogger(__name__)

DEFAULT_ORGANIZATION_SETTINGS: Dict[str, Any] = {
    "notifications": {"email": True, "inApp": True},
    "security": {
        "mfaRequired": False,
        "passwordPolicy": {
            "minLength": 8,
            "requireUppercase": True,
            "requireLowercase": True,
            "requireNumbers": True,
            "requireSpecialChars": False,
        },
    },
}

DEFAULT_WORKSPACE_SETTINGS: Dict[str, Any] = {
    "notifications": {"email": True, "inApp": True},
    "features": {"chatEnabled": True, "fileUploadEnabled": True, "apiAccessEnabled": True},
}

# Never taken from an update
PROTECTED_FIELDS = ("id", "organization_id", "workspace_id", "created_at", "updated_at")


def merge_settings(current: Optional[dict], updates: Optional[dict]) -> dict:
    return {**(current or {}), **(updates or {})}


class OrganizationSettingsService:

    FIELDS = (
        "theme",
        "default_role",
        "allow_public_workspaces",
        "allow_member_invites",
        "max_workspaces",
        "max_members_per_workspace",
        "settings",
    )

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def get_settings(self, organization_id: str) -> OrganizationSettings:
        """Settings of an organization, created with defaults when missing"""
        if not await self.db.get(Organization, organization_id):
            raise NotFoundException(f"Organization {organization_id} not found")

        result = await self.db.execute(
            select(OrganizationSettings).where(OrganizationSettings.organization_id == organization_id)
        )
        settings = result.scalar_one_or_none()
        if settings is None:
            settings = await self.create_default_settings(organization_id)
        return settings

    async def create_default_settings(self, organization_id: str) -> OrganizationSettings:
        settings = OrganizationSettings(
            organization_id=organization_id,
            theme="light",
            default_role=OrganizationRole.MEMBER.value,
            allow_public_workspaces=False,
            allow_member_invites=False,
            max_workspaces=10,
            max_members_per_workspace=10,
            settings=copy.deepcopy(DEFAULT_ORGANIZATION_SETTINGS),
        )
        self.db.add(settings)
        await self.db.flush()
        logger.info(f"Created default settings for organization {organization_id}")
        return settings

    async def update_settings(
        self, organization_id: str, updates: Dict[str, Any], updated_by: Optional[str] = None
    ) -> OrganizationSettings:
        updates = {k: v for k, v in updates.items() if k not in PROTECTED_FIELDS and v is not None}
        role = updates.get("default_role")
        if role is not None and role not in {r.value for r in OrganizationRole}:
            raise ValidationException(f"Invalid organization role '{role}'")

        settings = await self.get_settings(organization_id)
        if "settings" in updates:
            updates["settings"] = merge_settings(settings.settings, updates["settings"])

        for key, value in updates.items():
            if key in self.FIELDS:
                setattr(settings, key, value)
        await self.db.flush()

        await self.audit.log_user_action(
            updated_by, AuditAction.SETTINGS_UPDATED, "organization", organization_id,
            {"fields": sorted(k for k in updates if k in self.FIELDS)},
        )
        return settings


class WorkspaceSettingsService:

    FIELDS = ("theme", "default_role", "is_public", "allow_member_invites", "max_members", "settings")

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def get_settings(self, workspace_id: str) -> WorkspaceSettings:
        """Settings of a workspace, created with defaults when missing"""
        if not await self.db.get(Workspace, workspace_id):
            raise NotFoundException(f"Workspace {workspace_id} not found")

        result = await self.db.execute(
            select(WorkspaceSettings).where(WorkspaceSettings.workspace_id == workspace_id)
        )
        settings = result.scalar_one_or_none()
        if settings is None:
            settings = await self.create_default_settings(workspace_id)
        return settings

    async def create_default_settings(self, workspace_id: str) -> WorkspaceSettings:
        settings = WorkspaceSettings(
            workspace_id=workspace_id,
            theme="light",
            default_role=WorkspaceRole.MEMBER.value,
            is_public=False,
            allow_member_invites=False,
            max_members=10,
            settings=copy.deepcopy(DEFAULT_WORKSPACE_SETTINGS),
        )
        self.db.add(settings)
        await self.db.flush()
        logger.info(f"Created default settings for workspace {workspace_id}")
        return settings

    async def update_settings(
        self, workspace_id: str, updates: Dict[str, Any], updated_by: Optional[str] = None
    ) -> WorkspaceSettings:
        updates = {k: v for k, v in updates.items() if k not in PROTECTED_FIELDS and v is not None}
        role = updates.get("default_role")
        if role is not None and role not in {r.value for r in WorkspaceRole}:
            raise ValidationException(f"Invalid workspace role '{role}'")

        settings = await self.get_settings(workspace_id)
        if "settings" in updates:
            updates["settings"] = merge_settings(settings.settings, updates["settings"])

        for key, value in updates.items():
            if key in self.FIELDS:
                setattr(settings, key, value)
        await self.db.flush()

        await self.audit.log_user_action(
            updated_by, AuditAction.SETTINGS_UPDATED, "workspace", workspace_id,
            {"fields": sorted(k for k in updates if k in self.FIELDS)},
        )
        return settings
