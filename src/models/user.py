"""
User profile model
Accounts are owned by the external auth provider; this table mirrors the
profile fields needed for membership lookups and SSO provisioning.
"""
import uuid

from sqlalchemy import Column, String, DateTime, Boolean, JSON

from core.database import Base
from core.utils import utcnow, isoformat


class User(Base):
    """User profile"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    first_name = Column(String(100))
    last_name = Column(String(100))
    full_name = Column(String(200))
    is_active = Column(Boolean, default=True, nullable=False)
    metadata_ = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "is_active": self.is_active,
            "metadata": self.metadata_ or {},
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
