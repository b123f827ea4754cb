"""
API key model
"""
import secrets

from sqlalchemy import Column, String, DateTime, ForeignKey, Index

from core.database import Base
from core.utils import utcnow, isoformat, as_utc


def generate_api_key_id() -> str:
    return secrets.token_hex(10)


class ApiKey(Base):
    """Key pair for programmatic access; only a hash of the secret is stored"""
    __tablename__ = "api_keys"

    id = Column(String(20), primary_key=True, default=generate_api_key_id)
    key_name = Column(String(100), nullable=False)
    api_key = Column(String(64), unique=True, nullable=False, index=True)
    api_secret_hash = Column(String(255), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True)
    workspace_id = Column(String(36), ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=True)

    last_used_at = Column(DateTime(timezone=True))
    expires_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_api_keys_user_id", "user_id"),
        Index("idx_api_keys_organization_id", "organization_id"),
    )

    def is_expired(self) -> bool:
        return self.expires_at is not None and as_utc(self.expires_at) < utcnow()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "key_name": self.key_name,
            "api_key": self.api_key,
            "user_id": self.user_id,
            "organization_id": self.organization_id,
            "workspace_id": self.workspace_id,
            "last_used_at": isoformat(self.last_used_at),
            "expires_at": isoformat(self.expires_at),
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
