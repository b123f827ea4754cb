"""
Identity provider federation models
"""
import uuid
from enum import Enum

from sqlalchemy import Column, String, DateTime, Boolean, Integer, ForeignKey, JSON, Index, Text
from sqlalchemy.orm import relationship

from core.database import Base
from core.utils import utcnow, isoformat, as_utc


class IdentityProviderType(str, Enum):
    SAML = "saml"
    OIDC = "oidc"


class IdentityProviderStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    TESTING = "testing"
    ERROR = "error"


class AttributeMappingType(str, Enum):
    EMAIL = "email"
    FIRST_NAME = "first_name"
    LAST_NAME = "last_name"
    FULL_NAME = "full_name"
    ROLE = "role"
    ORGANIZATION = "organization"
    WORKSPACE = "workspace"
    CUSTOM = "custom"


class IdentityProvider(Base):
    """External SAML/OIDC authentication source"""
    __tablename__ = "identity_providers"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(100), nullable=False)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    type = Column(String(10), nullable=False)
    status = Column(String(20), default=IdentityProviderStatus.INACTIVE.value, nullable=False, index=True)
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True)
    config = Column(JSON, default=dict, nullable=False)
    metadata_ = Column("metadata", JSON, default=dict)

    is_default = Column(Boolean, default=False, nullable=False)
    just_in_time_provisioning = Column(Boolean, default=True, nullable=False)
    auto_create_organizations = Column(Boolean, default=False, nullable=False)
    auto_create_workspaces = Column(Boolean, default=False, nullable=False)
    default_role = Column(String(50), default="member", nullable=False)

    last_sync_at = Column(DateTime(timezone=True))
    sync_interval = Column(Integer)

    created_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"))
    updated_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    attributes = relationship(
        "IdentityProviderAttribute",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="IdentityProviderAttribute.created_at",
    )

    __table_args__ = (
        Index("idx_identity_providers_organization_id", "organization_id"),
    )

    def __repr__(self):
        return f"<IdentityProvider(id={self.id}, slug={self.slug}, type={self.type})>"

    @property
    def is_active(self) -> bool:
        return self.status == IdentityProviderStatus.ACTIVE.value

    def to_dict(self, include_secrets: bool = False) -> dict:
        config = dict(self.config or {})
        if not include_secrets:
            for secret in ("clientSecret", "privateKey"):
                if secret in config:
                    config[secret] = "********"
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "type": self.type,
            "status": self.status,
            "organization_id": self.organization_id,
            "config": config,
            "metadata": self.metadata_ or {},
            "is_default": self.is_default,
            "just_in_time_provisioning": self.just_in_time_provisioning,
            "auto_create_organizations": self.auto_create_organizations,
            "auto_create_workspaces": self.auto_create_workspaces,
            "default_role": self.default_role,
            "last_sync_at": isoformat(self.last_sync_at),
            "sync_interval": self.sync_interval,
            "attributes": [a.to_dict() for a in self.attributes],
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }


class IdentityProviderAttribute(Base):
    """Maps one IdP attribute onto a user profile field"""
    __tablename__ = "identity_provider_attributes"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    identity_provider_id = Column(
        String(36), ForeignKey("identity_providers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    source_attribute = Column(String(255), nullable=False)
    target_attribute = Column(String(255), nullable=False)
    mapping_type = Column(String(20), default=AttributeMappingType.CUSTOM.value, nullable=False)
    required = Column(Boolean, default=False, nullable=False)
    enabled = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "identity_provider_id": self.identity_provider_id,
            "source_attribute": self.source_attribute,
            "target_attribute": self.target_attribute,
            "mapping_type": self.mapping_type,
            "required": self.required,
            "enabled": self.enabled,
        }


class IdentityProviderSession(Base):
    """A federated login session"""
    __tablename__ = "identity_provider_sessions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    identity_provider_id = Column(
        String(36), ForeignKey("identity_providers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    external_id = Column(String(255), nullable=False)
    session_data = Column(JSON, default=dict)
    expires_at = Column(DateTime(timezone=True))
    active = Column(Boolean, default=True, nullable=False)
    ip_address = Column(String(45))
    user_agent = Column(Text)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def is_valid(self) -> bool:
        if not self.active:
            return False
        if self.expires_at and as_utc(self.expires_at) < utcnow():
            return False
        return True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "identity_provider_id": self.identity_provider_id,
            "external_id": self.external_id,
            "expires_at": isoformat(self.expires_at),
            "active": self.active,
            "ip_address": self.ip_address,
            "created_at": isoformat(self.created_at),
        }
