"""
Identity provider schemas
"""
from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field

from models.identity_provider import IdentityProviderType, IdentityProviderStatus, AttributeMappingType


class AttributeMappingCreate(BaseModel):
    source_attribute: str = Field(..., min_length=1, max_length=255)
    target_attribute: str = Field(..., min_length=1, max_length=255)
    mapping_type: AttributeMappingType = AttributeMappingType.CUSTOM
    required: bool = False
    enabled: bool = True


class AttributeMappingUpdate(BaseModel):
    source_attribute: Optional[str] = Field(None, min_length=1, max_length=255)
    target_attribute: Optional[str] = Field(None, min_length=1, max_length=255)
    mapping_type: Optional[AttributeMappingType] = None
    required: Optional[bool] = None
    enabled: Optional[bool] = None


class AttributeMappingResponse(BaseModel):
    id: str
    identity_provider_id: str
    source_attribute: str
    target_attribute: str
    mapping_type: AttributeMappingType
    required: bool
    enabled: bool

    class Config:
        from_attributes = True


class IdentityProviderCreate(BaseModel):
    """
    Provider configuration

    OIDC config keys: clientId, clientSecret, discoveryUrl or issuer, scope.
    SAML config keys: entityID, idpEntityID, singleSignOnServiceUrl, idpCert,
    or idpMetadata to fill them from the IdP metadata document.
    """
    name: str = Field(..., min_length=1, max_length=100)
    slug: Optional[str] = Field(None, min_length=1, max_length=100)
    type: IdentityProviderType
    status: IdentityProviderStatus = IdentityProviderStatus.INACTIVE
    organization_id: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    is_default: bool = False
    just_in_time_provisioning: bool = True
    auto_create_organizations: bool = False
    auto_create_workspaces: bool = False
    default_role: str = "member"
    sync_interval: Optional[int] = Field(None, ge=0)
    attributes: List[AttributeMappingCreate] = Field(default_factory=list)


class IdentityProviderUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    slug: Optional[str] = Field(None, min_length=1, max_length=100)
    status: Optional[IdentityProviderStatus] = None
    organization_id: Optional[str] = None
    config: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    is_default: Optional[bool] = None
    just_in_time_provisioning: Optional[bool] = None
    auto_create_organizations: Optional[bool] = None
    auto_create_workspaces: Optional[bool] = None
    default_role: Optional[str] = None
    sync_interval: Optional[int] = Field(None, ge=0)


class IdentityProviderResponse(BaseModel):
    """Secrets in config are masked"""
    id: str
    name: str
    slug: str
    type: IdentityProviderType
    status: IdentityProviderStatus
    organization_id: Optional[str] = None
    config: Dict[str, Any]
    metadata: Dict[str, Any]
    is_default: bool
    just_in_time_provisioning: bool
    auto_create_organizations: bool
    auto_create_workspaces: bool
    default_role: str
    last_sync_at: Optional[datetime] = None
    sync_interval: Optional[int] = None
    attributes: List[AttributeMappingResponse] = Field(default_factory=list)
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str


class MetadataParseRequest(BaseModel):
    metadata: str = Field(..., min_length=1)


class SSOLoginResponse(BaseModel):
    user: Dict[str, Any]
    access_token: str
    token_type: str = "bearer"
    session_id: str
    redirect_url: str


class SSOLogoutRequest(BaseModel):
    session_id: str
