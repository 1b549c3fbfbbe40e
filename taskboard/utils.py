import uuid
from datetime import datetime, timezone
from typing import Optional


def new_uuid() -> str:
    return str(uuid.uuid4())


def now_utc() -> datetime:
    return datetime.now(tz=timezone.utc)


def clean_text(value: Optional[str]) -> Optional[str]:
    """Strip ``value`` and collapse blank strings to ``None``."""
    if value is None:
        return None
    value = value.strip()
    return value or None
