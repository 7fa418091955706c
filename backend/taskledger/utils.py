from __future__ import annotations

import datetime as dt
from typing import Any, Optional

from zoneinfo import ZoneInfo

from .config import settings

LOCAL_TZ = ZoneInfo(settings.timezone)


def today() -> dt.date:
    """Return the server's current calendar day in the configured timezone."""
    return dt.datetime.now(LOCAL_TZ).date()


def day_key(value: dt.date) -> str:
    """Calendar-day key used for every day comparison (``YYYY-MM-DD``)."""
    return value.isoformat()


def is_future_day(value: dt.date, reference: dt.date) -> bool:
    return day_key(value) > day_key(reference)


def format_minutes(total_minutes: int) -> str:
    hours, minutes = divmod(max(int(total_minutes), 0), 60)
    return f"{hours}h {minutes}m"


def normalize_identifier(value: Any) -> Optional[str]:
    """Return a stripped identifier string or ``None`` for empty values."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None
