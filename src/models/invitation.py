"""
Invitation model
"""
import uuid
from enum import Enum

from sqlalchemy import Column, String, DateTime, ForeignKey, Index

from core.database import Base
from core.utils import utcnow, isoformat, as_utc


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    CANCELED = "canceled"
    EXPIRED = "expired"


class Invitation(Base):
    """Invitation to join an organization, optionally straight into one workspace"""
    __tablename__ = "invitations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), nullable=False, index=True)
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    workspace_id = Column(String(36), ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=True)
    role = Column(String(20), default="member", nullable=False)
    token = Column(String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    status = Column(String(20), default=InvitationStatus.PENDING.value, nullable=False, index=True)
    invited_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"))
    expires_at = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_invitations_organization_id", "organization_id"),
        Index("idx_invitations_workspace_id", "workspace_id"),
    )

    def __repr__(self):
        return f"<Invitation(id={self.id}, email={self.email}, status={self.status})>"

    def is_expired(self) -> bool:
        return as_utc(self.expires_at) < utcnow()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "organization_id": self.organization_id,
            "workspace_id": self.workspace_id,
            "role": self.role,
            "status": self.status,
            "invited_by": self.invited_by,
            "expires_at": isoformat(self.expires_at),
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
