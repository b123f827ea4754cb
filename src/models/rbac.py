"""
Role-Based Access Control (RBAC) Models
Roles, permissions, user role assignments and direct resource grants
"""
import uuid
from enum import Enum

from sqlalchemy import Column, String, DateTime, Text, ForeignKey, Table, Index, UniqueConstraint
from sqlalchemy.orm import relationship

from core.database import Base
from core.utils import utcnow, isoformat


class RoleType(str, Enum):
    SYSTEM = "system"
    CUSTOM = "custom"


class PermissionScope(str, Enum):
    SYSTEM = "system"
    ORGANIZATION = "organization"
    WORKSPACE = "workspace"
    RESOURCE = "resource"


role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_id", String(36), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", String(36), ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
    Column("assigned_at", DateTime(timezone=True), default=utcnow),
    Index("idx_role_permissions_role_id", "role_id"),
    Index("idx_role_permissions_permission_id", "permission_id"),
)


class Permission(Base):
    """Permission named resource:action"""
    __tablename__ = "permissions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(100), unique=True, nullable=False, index=True)
    resource_type = Column(String(50), nullable=False, index=True)
    action = Column(String(50), nullable=False)
    description = Column(Text)
    scope = Column(String(20), default=PermissionScope.RESOURCE.value, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Permission(name={self.name})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "resource_type": self.resource_type,
            "action": self.action,
            "description": self.description,
            "scope": self.scope,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }


class Role(Base):
    """Role with a set of permissions; system roles have no organization"""
    __tablename__ = "roles"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(100), nullable=False, index=True)
    description = Column(Text)
    type = Column(String(20), default=RoleType.CUSTOM.value, nullable=False, index=True)
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True)
    parent_role_id = Column(String(36), ForeignKey("roles.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    permissions = relationship(
        "Permission",
        secondary=role_permissions,
        lazy="selectin",
        order_by="Permission.name",
    )

    __table_args__ = (
        UniqueConstraint("name", "organization_id", name="uq_roles_name_org"),
    )

    def __repr__(self):
        return f"<Role(name={self.name}, type={self.type})>"

    @property
    def is_system(self) -> bool:
        return self.type == RoleType.SYSTEM.value

    def to_dict(self, include_permissions: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "organization_id": self.organization_id,
            "parent_role_id": self.parent_role_id,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
        if include_permissions:
            data["permissions"] = [p.name for p in self.permissions]
        return data


class UserRole(Base):
    """Role assignment, optionally scoped to a workspace"""
    __tablename__ = "user_roles"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role_id = Column(String(36), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True)
    workspace_id = Column(String(36), ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=True)
    assigned_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    role = relationship("Role", lazy="selectin")

    __table_args__ = (
        UniqueConstraint("user_id", "role_id", "workspace_id", name="uq_user_roles_assignment"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "role_id": self.role_id,
            "role_name": self.role.name if self.role else None,
            "workspace_id": self.workspace_id,
            "assigned_at": isoformat(self.assigned_at),
        }


class ResourcePermission(Base):
    """Direct grant of an action on a single resource"""
    __tablename__ = "resource_permissions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    resource_type = Column(String(50), nullable=False)
    resource_id = Column(String(36), nullable=False)
    permission = Column(String(50), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "resource_type", "resource_id", "permission", name="uq_resource_permissions"),
        Index("idx_resource_permissions_lookup", "user_id", "resource_type", "resource_id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "permission": self.permission,
            "created_at": isoformat(self.created_at),
        }
