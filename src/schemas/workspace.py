"""
Workspace schemas
"""
from datetime import datetime
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator

from models.workspace import WorkspaceRole
from .organization import _check_slug


class WorkspaceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    settings: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('slug')
    @classmethod
    def validate_slug(cls, v):
        return _check_slug(v)


class WorkspaceUpdate(BaseModel):
    """Moving a workspace to another organization is allowed"""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    slug: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None
    organization_id: Optional[str] = None

    @field_validator('slug')
    @classmethod
    def validate_slug(cls, v):
        return _check_slug(v)


class WorkspaceResponse(BaseModel):
    id: str
    organization_id: str
    name: str
    slug: str
    description: Optional[str] = None
    settings: Dict[str, Any] = Field(default_factory=dict)
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    role: Optional[WorkspaceRole] = None

    class Config:
        from_attributes = True


class WorkspaceMemberCreate(BaseModel):
    user_id: str
    role: WorkspaceRole = WorkspaceRole.MEMBER


class WorkspaceMemberRoleUpdate(BaseModel):
    role: WorkspaceRole


class WorkspaceMemberResponse(BaseModel):
    id: str
    workspace_id: str
    user_id: str
    role: WorkspaceRole
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
