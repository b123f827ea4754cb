"""
Invitation schemas
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, EmailStr

from models.invitation import InvitationStatus


class InvitationCreate(BaseModel):
    email: EmailStr
    organization_id: str
    workspace_id: Optional[str] = None
    role: str = "member"


class InvitationResponse(BaseModel):
    """The token is only returned to the inviter at creation time"""
    id: str
    email: str
    organization_id: str
    workspace_id: Optional[str] = None
    role: str
    status: InvitationStatus
    invited_by: Optional[str] = None
    expires_at: datetime
    created_at: datetime
    updated_at: Optional[datetime] = None
    token: Optional[str] = None

    class Config:
        from_attributes = True
