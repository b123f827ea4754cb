"""
Backup monitoring
Backup runs are tracked in a JSON file next to the backups
"""
import json
import secrets
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

from core.utils import utcnow
from .config import BackupConfig, BackupStatus

logger = logging.getLogger(__name__)

MAX_RECORDS = 1000

REPORT_PERIODS = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
    "monthly": timedelta(days=30),
}


class BackupMonitoringService:

    def __init__(self, config: Optional[BackupConfig] = None, records_file: Optional[str] = None):
        self.config = config or BackupConfig.from_settings()
        self.records_file = Path(records_file or self.config.monitoring_file)
        self.records: List[dict] = self._load()

    def _load(self) -> List[dict]:
        if not self.records_file.exists():
            return []
        try:
            records = json.loads(self.records_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load backup records: {e}")
            return []
        logger.info(f"Loaded {len(records)} backup records")
        return records

    def _save(self):
        self.records = self.records[-MAX_RECORDS:]
        self.records_file.parent.mkdir(parents=True, exist_ok=True)
        self.records_file.write_text(json.dumps(self.records, indent=2), encoding="utf-8")

    def _find(self, record_id: str) -> Optional[dict]:
        for record in self.records:
            if record["id"] == record_id:
                return record
        return None

    def start_record(self, backup_type: str, frequency: str = "manual") -> str:
        started = utcnow()
        record = {
            "id": f"{backup_type}-{frequency}-{int(started.timestamp() * 1000)}-{secrets.token_hex(3)}",
            "type": backup_type,
            "frequency": frequency,
            "status": BackupStatus.IN_PROGRESS.value,
            "started_at": started.isoformat(),
            "completed_at": None,
            "duration_ms": None,
            "size": None,
            "path": None,
            "error": None,
        }
        self.records.append(record)
        self._save()
        logger.info(f"Started tracking backup: {record['id']}")
        return record["id"]

    def _finish(self, record_id: str, status: BackupStatus, **details) -> Optional[dict]:
        record = self._find(record_id)
        if record is None:
            logger.error(f"Backup record not found: {record_id}")
            return None

        completed = utcnow()
        started = datetime.fromisoformat(record["started_at"])
        record.update(
            status=status.value,
            completed_at=completed.isoformat(),
            duration_ms=int((completed - started).total_seconds() * 1000),
        )
        record.update({k: v for k, v in details.items() if v is not None})
        self._save()
        return record

    def complete_record(self, record_id: str, path: Optional[str] = None, size: Optional[int] = None):
        record = self._finish(record_id, BackupStatus.SUCCESS, path=path, size=size)
        logger.info(f"Completed tracking backup: {record_id}")
        return record

    def fail_record(self, record_id: str, error: str):
        record = self._finish(record_id, BackupStatus.FAILURE, error=error)
        if record is not None and self.config.notify_on_failure:
            logger.error(
                f"{record['type']} backup failed",
                extra={"backup_id": record_id, "frequency": record["frequency"], "error": error},
            )
        return record

    def get_record(self, record_id: str) -> Optional[dict]:
        return self._find(record_id)

    def get_records(self, limit: int = 10) -> List[dict]:
        return sorted(self.records, key=lambda r: r["started_at"], reverse=True)[:limit]

    def get_last_successful(self) -> Optional[dict]:
        for record in sorted(self.records, key=lambda r: r["started_at"], reverse=True):
            if record["status"] == BackupStatus.SUCCESS.value:
                return record
        return None

    def generate_report(self, period: str = "daily") -> dict:
        now = utcnow()
        start = now - REPORT_PERIODS.get(period, REPORT_PERIODS["daily"])
        backups = [
            r for r in self.get_records(limit=MAX_RECORDS)
            if datetime.fromisoformat(r["started_at"]) >= start
        ]

        successful = [b for b in backups if b["status"] == BackupStatus.SUCCESS.value]
        failed = [b for b in backups if b["status"] == BackupStatus.FAILURE.value]
        sizes = [b["size"] for b in backups if b.get("size") is not None]
        total_size = sum(sizes)

        return {
            "period": period,
            "start_date": start.isoformat(),
            "end_date": now.isoformat(),
            "total_backups": len(backups),
            "successful_backups": len(successful),
            "failed_backups": len(failed),
            "success_rate": round(len(successful) / len(backups) * 100, 2) if backups else 0.0,
            "total_size": total_size,
            "average_size": total_size / len(sizes) if sizes else 0,
            "last_successful": self.get_last_successful(),
            "backups": backups,
        }
