from datetime import datetime
from typing import Optional

import pytz


def utcnow() -> datetime:
    return datetime.now(pytz.utc)


def to_iso(value: datetime) -> str:
    return value.isoformat()


def parse_timestamp(value) -> Optional[datetime]:
    """Parses an ISO timestamp, returning an aware UTC datetime or None."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        return pytz.utc.localize(parsed)
    return parsed.astimezone(pytz.utc)


def format_local(value: datetime, timezone: str) -> str:
    tz = pytz.timezone(timezone)
    return value.astimezone(tz).strftime("%Y-%m-%d %H:%M")
