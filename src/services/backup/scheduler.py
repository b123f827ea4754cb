"""
Backup scheduler
An asyncio loop that fires cron-scheduled backup jobs
"""
import asyncio
import contextlib
import logging
from datetime import datetime
from typing import Dict, Optional

from croniter import croniter

from core.exceptions import BackupError
from core.utils import utcnow
from .config import BackupConfig, BackupType
from .database import DatabaseBackupService
from .monitoring import BackupMonitoringService

logger = logging.getLogger(__name__)

# name -> (cron expression, backup type); retention has no backup type
JOBS = {
    "daily": ("0 1 * * *", BackupType.INCREMENTAL),
    "weekly": ("0 2 * * 0", BackupType.FULL),
    "monthly": ("0 3 1 * *", BackupType.FULL),
    "retention": ("0 4 * * *", None),
}


class BackupScheduler:

    def __init__(
        self,
        config: Optional[BackupConfig] = None,
        database: Optional[DatabaseBackupService] = None,
        monitoring: Optional[BackupMonitoringService] = None,
    ):
        self.config = config or BackupConfig.from_settings()
        self.database = database or DatabaseBackupService(self.config)
        self.monitoring = monitoring or BackupMonitoringService(self.config)
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def next_runs(self, now: Optional[datetime] = None) -> Dict[str, datetime]:
        now = now or utcnow()
        return {name: croniter(expression, now).get_next(datetime) for name, (expression, _) in JOBS.items()}

    async def run_backup(self, backup_type: BackupType = BackupType.FULL, frequency: str = "manual") -> dict:
        """Run one tracked backup; failures are recorded and re-raised"""
        record_id = self.monitoring.start_record(BackupType(backup_type).value, frequency)
        try:
            path = await self.database.create_backup(
                backup_type, frequency=None if frequency == "manual" else frequency
            )
        except (BackupError, OSError) as e:
            self.monitoring.fail_record(record_id, str(e))
            raise BackupError(str(e)) from e

        return self.monitoring.complete_record(record_id, path=str(path), size=path.stat().st_size)

    async def run_job(self, name: str):
        if name not in JOBS:
            raise BackupError(f"Unknown backup job: {name}")

        _, backup_type = JOBS[name]
        if backup_type is None:
            logger.info("Applying backup retention policy")
            return self.database.apply_retention()

        logger.info(f"Starting {name} backup")
        record = await self.run_backup(backup_type, frequency=name)
        logger.info(f"{name.capitalize()} backup completed")
        return record

    async def _loop(self):
        while True:
            now = utcnow()
            upcoming = self.next_runs(now)
            due_at = min(upcoming.values())
            await asyncio.sleep(max((due_at - now).total_seconds(), 0))

            for name, when in upcoming.items():
                if when != due_at:
                    continue
                try:
                    await self.run_job(name)
                except (BackupError, OSError) as e:
                    logger.error(f"{name.capitalize()} backup job failed: {e}")

    def start(self):
        if self.is_running:
            return
        self.config.check()
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Backup scheduler started with jobs: {', '.join(JOBS)}")

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Backup scheduler stopped")
