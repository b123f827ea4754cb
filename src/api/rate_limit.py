"""
Rate limit monitoring routes (system admins)
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_db
from middleware.auth_dependencies import CurrentUser, require_roles
from services.audit_service import AuditService, AuditAction
from services.rate_limit_service import rate_limit_monitor
from services.rbac_seed import SYSTEM_ROLES_NAME


router = APIRouter(prefix="/api/v1/rate-limit", tags=["rate-limit"])

require_admin = require_roles([SYSTEM_ROLES_NAME["ADMIN"]])


@router.get("/stats")
async def get_rate_limit_stats(current_user: CurrentUser = Depends(require_admin)):
    return rate_limit_monitor.get_stats()


@router.get("/events")
async def get_rate_limit_events(
    limit: int = Query(100, ge=1, le=1000),
    current_user: CurrentUser = Depends(require_admin)
):
    """Most recent limiter decisions, newest first"""
    return {"events": rate_limit_monitor.get_events(limit)}


@router.delete("/events")
async def clear_rate_limit_events(
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    rate_limit_monitor.clear_events()
    await AuditService(db).log_user_action(
        current_user.user_id, AuditAction.RATE_LIMIT_EVENTS_CLEARED, "rate_limit", None
    )
    return {"message": "Rate limit events cleared"}
