"""
Configuration settings
"""
import warnings
from typing import List

from pydantic import ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_JWT_SECRET = "change-me-flowstack-jwt-secret"
MIN_JWT_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "Flowstack Server"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    PORT: int = 3000
    APP_URL: str = "http://localhost:3000"
    ENVIRONMENT: str = "production"

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Redis
    REDIS_URL: str = "redis://localhost:6379"
    REDIS_PREFIX: str = "flowstack"

    # JWT
    JWT_SECRET: str = DEFAULT_JWT_SECRET
    JWT_ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "flowstack"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    @field_validator('JWT_SECRET')
    @classmethod
    def validate_jwt_secret(cls, v: str, info: ValidationInfo) -> str:
        """Placeholder or short secrets are only tolerated with DEBUG on"""
        weak = v == DEFAULT_JWT_SECRET or len(v) < MIN_JWT_SECRET_LENGTH
        if not weak:
            return v
        if not info.data.get('DEBUG', False):
            raise ValueError(
                f"JWT_SECRET must be set to a random value of at least {MIN_JWT_SECRET_LENGTH} characters"
            )
        warnings.warn("Running with a weak JWT_SECRET, allowed only because DEBUG is on", RuntimeWarning)
        return v

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8080"]
    CORS_ALLOW_ALL_ORIGINS: bool = False
    ALLOWED_HOSTS: List[str] = ["*"]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_TRUSTED_SERVICES: List[str] = ["127.0.0.1", "localhost"]
    RATE_LIMIT_EVENTS_MAX: int = 1000
    BACKOFF_MAX_ATTEMPTS: int = 3
    BACKOFF_BASE_DELAY_SECONDS: float = 1.0
    BACKOFF_MAX_DELAY_SECONDS: int = 60 * 60
    BACKOFF_PATHS: List[str] = ["/api/v1/auth/", "/api/v1/api-keys/validate"]

    # Invitations
    INVITATION_EXPIRY_DAYS: int = 7

    # Identity providers
    IDP_SESSION_HOURS: int = 8
    IDP_STATE_TTL_SECONDS: int = 600
    IDP_HTTP_TIMEOUT: float = 10.0

    # Permission cache (seconds)
    PERMISSION_CACHE_POSITIVE_TTL: int = 300
    PERMISSION_CACHE_NEGATIVE_TTL: int = 60

    # Backups
    BACKUP_ENABLED: bool = False
    BACKUP_FREQUENCY: str = "daily"
    BACKUP_TYPE: str = "full"
    BACKUP_RETENTION_DAILY: int = 30
    BACKUP_RETENTION_WEEKLY: int = 90
    BACKUP_RETENTION_MONTHLY: int = 365
    BACKUP_STORAGE_TYPE: str = "local"
    BACKUP_STORAGE_PATH: str = "./backups"
    BACKUP_STORAGE_ENCRYPTED: bool = False
    BACKUP_ENCRYPTION_KEY: str = ""
    BACKUP_MONITORING_FILE: str = "./backups/monitoring.json"
    BACKUP_NOTIFY_ON_FAILURE: bool = True

    @field_validator('BACKUP_ENCRYPTION_KEY')
    @classmethod
    def validate_backup_key(cls, v: str, info: ValidationInfo) -> str:
        """Encrypted backups need a key"""
        if info.data.get('BACKUP_STORAGE_ENCRYPTED') and not v:
            raise ValueError("BACKUP_ENCRYPTION_KEY is required when BACKUP_STORAGE_ENCRYPTED is true")
        return v

    # Nodes pool
    NODES_PACKAGE: str = "flowstack_components"
    DISABLED_NODES: List[str] = []
    DISABLED_UI_NODES: List[str] = []
    SHOW_COMMUNITY_NODES: bool = False

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")


settings = Settings()
