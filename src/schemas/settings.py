"""
Organization and workspace settings schemas
"""
from datetime import datetime
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field

from models.organization import OrganizationRole
from models.workspace import WorkspaceRole


class OrganizationSettingsUpdate(BaseModel):
    theme: Optional[str] = Field(None, min_length=1, max_length=20)
    default_role: Optional[OrganizationRole] = None
    allow_public_workspaces: Optional[bool] = None
    allow_member_invites: Optional[bool] = None
    max_workspaces: Optional[int] = Field(None, ge=1)
    max_members_per_workspace: Optional[int] = Field(None, ge=1)
    # Merged into the stored document one level deep
    settings: Optional[Dict[str, Any]] = None


class OrganizationSettingsResponse(BaseModel):
    id: str
    organization_id: str
    theme: str
    default_role: OrganizationRole
    allow_public_workspaces: bool
    allow_member_invites: bool
    max_workspaces: int
    max_members_per_workspace: int
    settings: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WorkspaceSettingsUpdate(BaseModel):
    theme: Optional[str] = Field(None, min_length=1, max_length=20)
    default_role: Optional[WorkspaceRole] = None
    is_public: Optional[bool] = None
    allow_member_invites: Optional[bool] = None
    max_members: Optional[int] = Field(None, ge=1)
    settings: Optional[Dict[str, Any]] = None


class WorkspaceSettingsResponse(BaseModel):
    id: str
    workspace_id: str
    theme: str
    default_role: WorkspaceRole
    is_public: bool
    allow_member_invites: bool
    max_members: int
    settings: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
