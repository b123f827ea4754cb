"""
API key schemas
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class ApiKeyCreate(BaseModel):
    key_name: str = Field(..., min_length=1, max_length=100)
    organization_id: Optional[str] = None
    workspace_id: Optional[str] = None
    expires_at: Optional[datetime] = None


class ApiKeyUpdate(BaseModel):
    key_name: str = Field(..., min_length=1, max_length=100)


class ApiKeyResponse(BaseModel):
    id: str
    key_name: str
    api_key: str
    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    workspace_id: Optional[str] = None
    last_used_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ApiKeyCreateResponse(ApiKeyResponse):
    """The only response that carries the plain secret"""
    api_secret: str


class ApiKeyValidationResponse(BaseModel):
    valid: bool
    key_id: str
    user_id: str
    organization_id: Optional[str] = None
    workspace_id: Optional[str] = None
