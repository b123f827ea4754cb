"""
Backup routes (system admins)
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_db
from core.utils import isoformat
from middleware.auth_dependencies import CurrentUser, require_roles
from services.audit_service import AuditService, AuditAction
from services.backup import get_backup_scheduler
from services.backup.database import backup_frequency_tag, extract_backup_date
from services.rbac_seed import SYSTEM_ROLES_NAME
from schemas.backup import BackupCreate


router = APIRouter(prefix="/api/v1/backups", tags=["backups"])

require_admin = require_roles([SYSTEM_ROLES_NAME["ADMIN"]])


@router.get("/")
async def list_backups(
    limit: int = Query(10, ge=1, le=1000, description="Number of monitoring records"),
    current_user: CurrentUser = Depends(require_admin)
):
    """Backup files on disk and the latest monitoring records"""
    scheduler = get_backup_scheduler()
    files = [
        {
            "path": str(path),
            "size": path.stat().st_size,
            "created_at": isoformat(extract_backup_date(path)),
            "frequency": backup_frequency_tag(path),
        }
        for path in scheduler.database.list_backups()
    ]
    return {
        "backups": files,
        "records": scheduler.monitoring.get_records(limit),
        "scheduler_running": scheduler.is_running,
        "next_runs": {name: isoformat(when) for name, when in scheduler.next_runs().items()},
    }


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_backup(
    backup_data: BackupCreate,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Run a backup now; the returned record describes the result"""
    frequency = backup_data.frequency.value if backup_data.frequency else "manual"
    record = await get_backup_scheduler().run_backup(backup_data.type, frequency=frequency)

    await AuditService(db).log_user_action(
        current_user.user_id, AuditAction.BACKUP_CREATED, "backup", record["id"],
        {"type": record["type"], "path": record.get("path"), "size": record.get("size")},
    )
    return record


@router.post("/retention")
async def apply_retention(current_user: CurrentUser = Depends(require_admin)):
    deleted = get_backup_scheduler().database.apply_retention()
    return {"deleted": deleted}


@router.get("/report")
async def get_backup_report(
    period: str = Query("daily", pattern="^(daily|weekly|monthly)$"),
    current_user: CurrentUser = Depends(require_admin)
):
    return get_backup_scheduler().monitoring.generate_report(period)
