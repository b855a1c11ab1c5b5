import logging
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger("backup-sentinel")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def generate_backup_id(backup_type: str, now: Optional[datetime] = None) -> str:
    """Generate backup ID with timestamp.

    Returns:
        Backup ID in format: backup_YYYYMMDDTHHMMSSffffff_<type>_<6 hex>
    """
    timestamp = (now or utc_now()).strftime("%Y%m%dT%H%M%S%f")
    return f"backup_{timestamp}_{backup_type}_{secrets.token_hex(3)}"


def generate_event_id(now: Optional[datetime] = None) -> str:
    timestamp = (now or utc_now()).strftime("%Y%m%dT%H%M%S%f")
    return f"event_{timestamp}_{secrets.token_hex(3)}"


def is_within(path: Path, root: Path) -> bool:
    """Check that path resolves inside root."""
    try:
        path.resolve().relative_to(root.resolve())
        return True
    except ValueError:
        return False
