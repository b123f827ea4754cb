"""
Audit log model
"""
import uuid

from sqlalchemy import Column, String, DateTime, JSON, Text, Index

from core.database import Base
from core.utils import utcnow, isoformat


class AuditLog(Base):
    """Persisted record of a user or system action"""
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), index=True)
    action = Column(String(100), nullable=False, index=True)
    resource_type = Column(String(50), nullable=False, index=True)
    resource_id = Column(String(100))
    metadata_ = Column("metadata", JSON, default=dict)
    ip_address = Column(String(45))
    user_agent = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    __table_args__ = (
        Index("idx_audit_logs_resource", "resource_type", "resource_id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "metadata": self.metadata_ or {},
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": isoformat(self.created_at),
        }
