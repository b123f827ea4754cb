"""
Database backups
Plain-SQL dumps through pg_dump, restored with psql
"""
import asyncio
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from core.exceptions import BackupError
from core.utils import utcnow
from .config import BackupConfig, BackupFrequency, BackupType
from .encryption import decrypt_data, decrypt_file, encrypt_file

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "database-"
TIMESTAMP_PATTERN = re.compile(r"(\d{4}-\d{2}-\d{2})T(\d{2})-(\d{2})-(\d{2})-(\d{3})Z")
TYPE_PATTERN = re.compile(r"^database-(full|incremental|differential)-")


def backup_timestamp(when: Optional[datetime] = None) -> str:
    """ISO timestamp with ':' and '.' replaced so it is safe in file names"""
    when = (when or utcnow()).astimezone(timezone.utc)
    iso = when.strftime("%Y-%m-%dT%H:%M:%S.") + f"{when.microsecond // 1000:03d}Z"
    return iso.replace(":", "-").replace(".", "-")


def backup_filename(backup_type: Union[BackupType, str], when: Optional[datetime] = None) -> str:
    backup_type = BackupType(backup_type).value
    return f"{BACKUP_PREFIX}{backup_type}-{backup_timestamp(when)}.sql"


def extract_backup_date(path: Union[str, Path]) -> datetime:
    """Date encoded in a backup file name, or the epoch when there is none"""
    match = TIMESTAMP_PATTERN.search(Path(path).name)
    if not match:
        return datetime.fromtimestamp(0, tz=timezone.utc)
    day, hour, minute, second, millis = match.groups()
    return datetime.fromisoformat(f"{day}T{hour}:{minute}:{second}.{millis}+00:00")


def backup_frequency_tag(path: Union[str, Path]) -> Optional[str]:
    name = Path(path).name
    for frequency in (BackupFrequency.DAILY, BackupFrequency.WEEKLY, BackupFrequency.MONTHLY):
        if f"-{frequency.value}-" in name:
            return frequency.value
    return None


def tag_backup(path: Union[str, Path], frequency: str) -> Path:
    """Rename database-{type}-... to database-{frequency}-... so retention can find it"""
    path = Path(path)
    renamed = path.with_name(TYPE_PATTERN.sub(f"database-{frequency}-", path.name))
    if renamed != path:
        path.rename(renamed)
    return renamed


class DatabaseBackupService:
    """Creates, validates, restores and prunes database dumps"""

    def __init__(self, config: Optional[BackupConfig] = None):
        self.config = config or BackupConfig.from_settings()
        self.backup_dir = Path(self.config.storage_path)

    def _connection(self):
        try:
            url = make_url(self.config.database_url)
        except ArgumentError as e:
            raise BackupError(f"Invalid database URL: {e}")
        if not url.drivername.startswith("postgresql"):
            raise BackupError("Database backups require a PostgreSQL database")

        args = [
            "-h", url.host or "localhost",
            "-p", str(url.port or 5432),
            "-U", url.username or "postgres",
            "-d", url.database or "postgres",
        ]
        env = dict(os.environ)
        if url.password:
            env["PGPASSWORD"] = url.password
        return args, env

    async def _run(self, *command: str, env: dict):
        process = await asyncio.create_subprocess_exec(
            *command,
            env=env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await process.communicate()
        if process.returncode != 0:
            raise BackupError(f"{command[0]} failed: {stderr.decode(errors='replace').strip()}")

    async def create_backup(
        self, backup_type: Union[BackupType, str] = BackupType.FULL, frequency: Optional[str] = None
    ) -> Path:
        """Dump the database; incremental backups carry data only"""
        self.config.check()
        backup_type = BackupType(backup_type)
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        path = self.backup_dir / backup_filename(backup_type)

        args, env = self._connection()
        command = ["pg_dump", *args, "-F", "p", "-f", str(path)]
        if backup_type == BackupType.INCREMENTAL:
            command.append("--data-only")

        logger.info(f"Creating {backup_type.value} database backup: {path.name}")
        await self._run(*command, env=env)

        if self.config.encrypted:
            await asyncio.to_thread(encrypt_file, path, self.config.encryption_key)

        if not await asyncio.to_thread(self.validate_backup, path):
            raise BackupError(f"Backup validation failed: {path.name}")

        if frequency:
            path = tag_backup(path, frequency)

        logger.info(f"Database backup created: {path}")
        return path

    def validate_backup(self, path: Union[str, Path]) -> bool:
        try:
            content = Path(path).read_text(encoding="utf-8")
            if self.config.encrypted:
                content = decrypt_data(content, self.config.encryption_key)
        except (OSError, BackupError) as e:
            logger.error(f"Backup validation failed: {e}")
            return False

        if "CREATE TABLE" not in content and "INSERT INTO" not in content:
            logger.error("Backup validation failed: no SQL statements found")
            return False
        return True

    async def restore(self, path: Union[str, Path]) -> bool:
        path = Path(path)
        if not path.exists():
            raise BackupError(f"Backup file not found: {path}")

        args, env = self._connection()
        source = path
        temp = None
        if self.config.encrypted:
            temp = self.backup_dir / f"temp-{int(utcnow().timestamp() * 1000)}.sql"
            source = await asyncio.to_thread(decrypt_file, path, self.config.encryption_key, output=temp)

        try:
            logger.info(f"Restoring database from {path.name}")
            await self._run("psql", *args, "-f", str(source), env=env)
        finally:
            if temp is not None and temp.exists():
                temp.unlink()

        logger.info(f"Database restored from {path.name}")
        return True

    def list_backups(self) -> List[Path]:
        if not self.backup_dir.exists():
            return []
        backups = [p for p in self.backup_dir.iterdir() if p.is_file() and p.name.startswith(BACKUP_PREFIX)]
        return sorted(backups, key=extract_backup_date, reverse=True)

    def apply_retention(self, now: Optional[datetime] = None) -> int:
        """Delete backups older than the retention of their frequency; returns how many were removed"""
        now = now or utcnow()
        deleted = 0
        for path in self.list_backups():
            frequency = backup_frequency_tag(path) or BackupFrequency.DAILY.value
            age_days = (now - extract_backup_date(path)).days
            if age_days > self.config.retention.days_for(frequency):
                path.unlink()
                deleted += 1
                logger.info(f"Deleted expired backup: {path.name}")
        return deleted
