"""
Audit log routes
"""
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_db
from middleware.auth_dependencies import CurrentUser, get_current_user, require_permission
from services.audit_service import AuditService
from schemas.audit import AuditLogResponse, AuditLogListResponse


router = APIRouter(prefix="/api/v1/audit-logs", tags=["audit-logs"])


def _page(logs, total: int, limit: int, offset: int) -> dict:
    return {"logs": [entry.to_dict() for entry in logs], "total": total, "limit": limit, "offset": offset}


@router.get("/", response_model=AuditLogListResponse)
async def get_audit_logs(
    user_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    resource_type: Optional[str] = Query(None),
    resource_id: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None, description="ISO 8601"),
    end_date: Optional[datetime] = Query(None, description="ISO 8601"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    current_user: CurrentUser = Depends(require_permission("audit", "read")),
    db: AsyncSession = Depends(get_db)
):
    """Filtered audit trail, newest first"""
    logs, total = await AuditService(db).get_audit_logs(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return _page(logs, total, limit, offset)


@router.get("/me", response_model=AuditLogListResponse)
async def get_my_audit_logs(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    logs, total = await AuditService(db).get_user_audit_logs(current_user.user_id, limit, offset)
    return _page(logs, total, limit, offset)


@router.get("/resource/{resource_type}/{resource_id}", response_model=AuditLogListResponse)
async def get_resource_audit_logs(
    resource_type: str,
    resource_id: str,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    current_user: CurrentUser = Depends(require_permission("audit", "read")),
    db: AsyncSession = Depends(get_db)
):
    logs, total = await AuditService(db).get_resource_audit_logs(resource_type, resource_id, limit, offset)
    return _page(logs, total, limit, offset)


@router.get("/{log_id}", response_model=AuditLogResponse)
async def get_audit_log(
    log_id: str,
    current_user: CurrentUser = Depends(require_permission("audit", "read")),
    db: AsyncSession = Depends(get_db)
):
    return (await AuditService(db).get_audit_log(log_id)).to_dict()
