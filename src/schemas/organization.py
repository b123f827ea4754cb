"""
Organization schemas
"""
from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, field_validator

from core.validators import is_valid_slug
from models.organization import OrganizationStatus, OrganizationRole


def _check_slug(v: Optional[str]) -> Optional[str]:
    if v and not is_valid_slug(v):
        raise ValueError('Slug must contain only lowercase letters, numbers, and hyphens')
    return v


class OrganizationBase(BaseModel):
    """Base organization schema"""
    name: str = Field(..., min_length=1, max_length=100)
    slug: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    settings: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('slug')
    @classmethod
    def validate_slug(cls, v):
        return _check_slug(v)


class OrganizationCreate(OrganizationBase):
    """Schema for creating organization"""
    pass


class OrganizationUpdate(BaseModel):
    """Schema for updating organization"""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    slug: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    status: Optional[OrganizationStatus] = None
    settings: Optional[Dict[str, Any]] = None

    @field_validator('slug')
    @classmethod
    def validate_slug(cls, v):
        return _check_slug(v)


class OrganizationResponse(BaseModel):
    """Organization response schema"""
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    status: OrganizationStatus
    settings: Dict[str, Any] = Field(default_factory=dict)
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    # Only present when listing the organizations of a user
    role: Optional[OrganizationRole] = None

    class Config:
        from_attributes = True


class OrganizationListResponse(BaseModel):
    organizations: List[OrganizationResponse]
    total: int


class MemberCreate(BaseModel):
    """Add a member by user id or by the email of an existing user"""
    user_id: Optional[str] = None
    email: Optional[str] = None
    role: OrganizationRole = OrganizationRole.MEMBER


class MemberRoleUpdate(BaseModel):
    role: OrganizationRole


class OrganizationMemberResponse(BaseModel):
    id: str
    organization_id: str
    user_id: str
    role: OrganizationRole
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
