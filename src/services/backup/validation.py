"""
Backup integrity metadata
"""
import json
import logging
from typing import Any, List

from core.utils import utcnow
from .encryption import hash_data

logger = logging.getLogger(__name__)


def _serialize(data: List[Any]) -> str:
    return json.dumps(data, separators=(",", ":"), default=str)


def create_backup_metadata(data: List[Any]) -> dict:
    return {
        "record_count": len(data),
        "content_hash": hash_data(_serialize(data)),
        "created_at": utcnow().isoformat(),
    }


def validate_data(data: List[Any], metadata: dict) -> bool:
    """Check record count and content hash against the metadata taken at backup time"""
    if not isinstance(data, list) or not metadata:
        logger.error("Backup is missing data or metadata")
        return False

    if len(data) != metadata.get("record_count"):
        logger.error(
            f"Record count mismatch: expected {metadata.get('record_count')}, got {len(data)}"
        )
        return False

    if hash_data(_serialize(data)) != metadata.get("content_hash"):
        logger.error("Content hash mismatch")
        return False

    return True
