"""
Per-tenant settings for organizations and workspaces
"""
import uuid

from sqlalchemy import Column, String, DateTime, Boolean, Integer, ForeignKey, JSON

from core.database import Base
from core.utils import utcnow, isoformat


class OrganizationSettings(Base):
    """One row per organization, created with defaults on first read"""
    __tablename__ = "organization_settings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(
        String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    theme = Column(String(20), default="light", nullable=False)
    default_role = Column(String(20), default="member", nullable=False)
    allow_public_workspaces = Column(Boolean, default=False, nullable=False)
    allow_member_invites = Column(Boolean, default=False, nullable=False)
    max_workspaces = Column(Integer, default=10, nullable=False)
    max_members_per_workspace = Column(Integer, default=10, nullable=False)
    settings = Column(JSON, default=dict)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "theme": self.theme,
            "default_role": self.default_role,
            "allow_public_workspaces": self.allow_public_workspaces,
            "allow_member_invites": self.allow_member_invites,
            "max_workspaces": self.max_workspaces,
            "max_members_per_workspace": self.max_members_per_workspace,
            "settings": self.settings or {},
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }


class WorkspaceSettings(Base):
    """One row per workspace, created with defaults on first read"""
    __tablename__ = "workspace_settings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    workspace_id = Column(
        String(36), ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    theme = Column(String(20), default="light", nullable=False)
    default_role = Column(String(20), default="member", nullable=False)
    is_public = Column(Boolean, default=False, nullable=False)
    allow_member_invites = Column(Boolean, default=False, nullable=False)
    max_members = Column(Integer, default=10, nullable=False)
    settings = Column(JSON, default=dict)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "theme": self.theme,
            "default_role": self.default_role,
            "is_public": self.is_public,
            "allow_member_invites": self.allow_member_invites,
            "max_members": self.max_members,
            "settings": self.settings or {},
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
