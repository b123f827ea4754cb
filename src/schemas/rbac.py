"""
Role and permission schemas
"""
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field

from models.rbac import RoleType, PermissionScope


class PermissionCreate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    resource_type: str = Field(..., min_length=1, max_length=50)
    action: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    scope: PermissionScope = PermissionScope.RESOURCE


class PermissionUpdate(BaseModel):
    """The name follows resource_type and action unless given"""
    name: Optional[str] = Field(None, max_length=100)
    resource_type: Optional[str] = Field(None, min_length=1, max_length=50)
    action: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = None
    scope: Optional[PermissionScope] = None


class PermissionResponse(BaseModel):
    id: str
    name: str
    resource_type: str
    action: str
    description: Optional[str] = None
    scope: PermissionScope
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RoleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    organization_id: Optional[str] = None
    parent_role_id: Optional[str] = None
    permission_ids: List[str] = Field(default_factory=list)


class RoleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    type: Optional[RoleType] = None
    organization_id: Optional[str] = None
    parent_role_id: Optional[str] = None


class RoleClone(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    organization_id: Optional[str] = None


class RoleResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    type: RoleType
    organization_id: Optional[str] = None
    parent_role_id: Optional[str] = None
    permissions: List[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RoleAssignment(BaseModel):
    user_id: str
    workspace_id: Optional[str] = None


class UserRoleResponse(BaseModel):
    id: str
    user_id: str
    role_id: str
    role_name: Optional[str] = None
    workspace_id: Optional[str] = None
    assigned_at: datetime

    class Config:
        from_attributes = True


class PermissionCheck(BaseModel):
    resource_type: str
    action: str
    resource_id: Optional[str] = None
    user_id: Optional[str] = None


class PermissionCheckResponse(BaseModel):
    allowed: bool
