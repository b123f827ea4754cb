"""
User schemas
"""
from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field


class UserResponse(BaseModel):
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: Optional[str] = None
    is_active: bool
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    full_name: Optional[str] = Field(None, max_length=200)


class CurrentUserResponse(UserResponse):
    """The caller with its system roles and memberships"""
    roles: List[str] = Field(default_factory=list)
    organizations: List[Dict[str, Any]] = Field(default_factory=list)
    workspaces: List[Dict[str, Any]] = Field(default_factory=list)
