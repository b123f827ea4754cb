"""
Backup schemas
"""
from typing import Optional
from pydantic import BaseModel

from services.backup.config import BackupType, BackupFrequency


class BackupCreate(BaseModel):
    type: BackupType = BackupType.FULL
    frequency: Optional[BackupFrequency] = None
