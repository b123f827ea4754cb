from typing import Optional

from .config import BackupConfig, BackupFrequency, BackupStatus, BackupStorageType, BackupType
from .database import DatabaseBackupService
from .monitoring import BackupMonitoringService
from .scheduler import BackupScheduler

_scheduler: Optional[BackupScheduler] = None


def get_backup_scheduler() -> BackupScheduler:
    """Shared scheduler used by the app lifespan and the backup endpoints"""
    global _scheduler
    if _scheduler is None:
        _scheduler = BackupScheduler()
    return _scheduler


__all__ = [
    "BackupConfig",
    "BackupFrequency",
    "BackupStatus",
    "BackupStorageType",
    "BackupType",
    "DatabaseBackupService",
    "BackupMonitoringService",
    "BackupScheduler",
    "get_backup_scheduler",
]
