"""
Audit log service
Persists audit entries and mirrors them on the "audit" logger
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from models.audit import AuditLog
from core.exceptions import NotFoundException

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("audit")


class AuditAction(str, Enum):
    """Actions written by the platform itself"""
    ORGANIZATION_CREATED = "organization_created"
    ORGANIZATION_UPDATED = "organization_updated"
    ORGANIZATION_DELETED = "organization_deleted"
    MEMBER_ADDED = "member_added"
    MEMBER_UPDATED = "member_updated"
    MEMBER_REMOVED = "member_removed"
    WORKSPACE_CREATED = "workspace_created"
    WORKSPACE_UPDATED = "workspace_updated"
    WORKSPACE_DELETED = "workspace_deleted"
    INVITATION_CREATED = "invitation_created"
    INVITATION_ACCEPTED = "invitation_accepted"
    INVITATION_CANCELED = "invitation_canceled"
    ROLE_ASSIGNED = "role_assigned"
    ROLE_REMOVED = "role_removed"
    API_KEY_CREATED = "api_key_created"
    API_KEY_DELETED = "api_key_deleted"
    IDP_CREATED = "create"
    IDP_UPDATED = "update"
    IDP_DELETED = "delete"
    USER_PROVISIONED = "user_provision"
    SSO_LOGIN = "sso_login"
    SSO_LOGOUT = "sso_logout"
    BACKUP_CREATED = "backup_created"
    RATE_LIMIT_EVENTS_CLEARED = "rate_limit_events_cleared"
    SETTINGS_UPDATED = "settings_updated"


class AuditService:
    """Service for writing and querying audit logs"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_audit_log(self, **fields) -> AuditLog:
        """Persist an audit entry"""
        if "metadata" in fields:
            fields["metadata_"] = fields.pop("metadata")
        action = fields.get("action")
        if isinstance(action, Enum):
            fields["action"] = action.value

        entry = AuditLog(**fields)
        self.db.add(entry)
        await self.db.flush()

        audit_logger.info(
            "audit_event",
            extra={
                "audit_id": entry.id,
                "user_id": entry.user_id,
                "action": entry.action,
                "resource_type": entry.resource_type,
                "resource_id": entry.resource_id,
                "ip_address": entry.ip_address,
            },
        )
        return entry

    async def log_user_action(
        self,
        user_id: Optional[str],
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuditLog:
        """Convenience wrapper used by other services"""
        return await self.create_audit_log(
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            metadata=metadata or {},
            ip_address=ip_address,
            user_agent=user_agent,
        )

    async def get_audit_logs(
        self,
        user_id: Optional[str] = None,
        action: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Tuple[List[AuditLog], int]:
        """Filtered logs, newest first, with the total before paging"""
        conditions = []
        if user_id:
            conditions.append(AuditLog.user_id == user_id)
        if action:
            conditions.append(AuditLog.action == action)
        if resource_type:
            conditions.append(AuditLog.resource_type == resource_type)
        if resource_id:
            conditions.append(AuditLog.resource_id == resource_id)
        if start_date:
            conditions.append(AuditLog.created_at >= start_date)
        if end_date:
            conditions.append(AuditLog.created_at <= end_date)

        total = await self.db.scalar(
            select(func.count()).select_from(AuditLog).where(*conditions)
        )

        result = await self.db.execute(
            select(AuditLog)
            .where(*conditions)
            .order_by(AuditLog.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total or 0

    async def get_audit_log(self, log_id: str) -> AuditLog:
        entry = await self.db.get(AuditLog, log_id)
        if not entry:
            raise NotFoundException(f"Audit log {log_id} not found")
        return entry

    async def get_user_audit_logs(self, user_id: str, limit: int = 100, offset: int = 0) -> Tuple[List[AuditLog], int]:
        return await self.get_audit_logs(user_id=user_id, limit=limit, offset=offset)

    async def get_resource_audit_logs(
        self, resource_type: str, resource_id: str, limit: int = 100, offset: int = 0
    ) -> Tuple[List[AuditLog], int]:
        return await self.get_audit_logs(
            resource_type=resource_type, resource_id=resource_id, limit=limit, offset=offset
        )
