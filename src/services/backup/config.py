"""
Backup configuration
"""
from dataclasses import dataclass, field
from enum import Enum

from core.config import settings
from core.exceptions import BackupError


class BackupFrequency(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class BackupType(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"
    DIFFERENTIAL = "differential"


class BackupStorageType(str, Enum):
    LOCAL = "local"
    S3 = "s3"
    GCS = "gcs"
    AZURE = "azure"


class BackupStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    IN_PROGRESS = "in_progress"
    NOT_STARTED = "not_started"


@dataclass
class RetentionPolicy:
    """Days to keep each kind of backup"""
    daily: int = 30
    weekly: int = 90
    monthly: int = 365

    def days_for(self, frequency: str) -> int:
        return getattr(self, frequency, self.daily)


@dataclass
class BackupConfig:
    enabled: bool = False
    frequency: BackupFrequency = BackupFrequency.DAILY
    type: BackupType = BackupType.FULL
    retention: RetentionPolicy = field(default_factory=RetentionPolicy)
    storage_type: BackupStorageType = BackupStorageType.LOCAL
    storage_path: str = "./backups"
    encrypted: bool = False
    encryption_key: str = ""
    monitoring_file: str = "./backups/monitoring.json"
    notify_on_failure: bool = True
    database_url: str = ""

    @classmethod
    def from_settings(cls) -> "BackupConfig":
        try:
            frequency = BackupFrequency(settings.BACKUP_FREQUENCY)
            backup_type = BackupType(settings.BACKUP_TYPE)
            storage_type = BackupStorageType(settings.BACKUP_STORAGE_TYPE)
        except ValueError as e:
            raise BackupError(f"Invalid backup configuration: {e}")

        return cls(
            enabled=settings.BACKUP_ENABLED,
            frequency=frequency,
            type=backup_type,
            retention=RetentionPolicy(
                daily=settings.BACKUP_RETENTION_DAILY,
                weekly=settings.BACKUP_RETENTION_WEEKLY,
                monthly=settings.BACKUP_RETENTION_MONTHLY,
            ),
            storage_type=storage_type,
            storage_path=settings.BACKUP_STORAGE_PATH,
            encrypted=settings.BACKUP_STORAGE_ENCRYPTED,
            encryption_key=settings.BACKUP_ENCRYPTION_KEY,
            monitoring_file=settings.BACKUP_MONITORING_FILE,
            notify_on_failure=settings.BACKUP_NOTIFY_ON_FAILURE,
            database_url=settings.DATABASE_URL,
        )

    def check(self):
        """Raise BackupError for configurations this server cannot run"""
        if self.storage_type != BackupStorageType.LOCAL:
            raise BackupError(f"Backup storage '{self.storage_type.value}' is not supported")
        if self.encrypted and not self.encryption_key:
            raise BackupError("Encrypted backups require BACKUP_ENCRYPTION_KEY")
