"""
Organization model for multi-tenant support
"""
import uuid
from enum import Enum

from sqlalchemy import Column, String, DateTime, Text, ForeignKey, Index, JSON, UniqueConstraint

from core.database import Base
from core.utils import utcnow, isoformat


class OrganizationStatus(str, Enum):
    """Organization status"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class OrganizationRole(str, Enum):
    """Membership roles inside an organization"""
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


ORGANIZATION_ADMIN_ROLES = (OrganizationRole.OWNER.value, OrganizationRole.ADMIN.value)


class Organization(Base):
    """Top-level tenant"""
    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(100), nullable=False, index=True)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    description = Column(Text)
    status = Column(String(20), default=OrganizationStatus.ACTIVE.value, nullable=False, index=True)
    settings = Column(JSON, default=dict)

    created_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_organizations_created_at", "created_at"),
    )

    def __repr__(self):
        return f"<Organization(id={self.id}, name={self.name}, slug={self.slug})>"

    @property
    def is_active(self) -> bool:
        return self.status == OrganizationStatus.ACTIVE.value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "status": self.status,
            "settings": self.settings or {},
            "created_by": self.created_by,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }


class OrganizationMember(Base):
    """User membership in an organization"""
    __tablename__ = "organization_members"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role = Column(String(20), default=OrganizationRole.MEMBER.value, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_organization_members_org_user"),
        Index("idx_organization_members_user_id", "user_id"),
    )

    @property
    def is_admin(self) -> bool:
        return self.role in ORGANIZATION_ADMIN_ROLES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "user_id": self.user_id,
            "role": self.role,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
