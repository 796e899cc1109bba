"""
Timezone helpers.

All timestamps in the ledger are UTC. SQLite hands back naive datetimes,
so anything read from the database goes through as_utc() before comparing.
"""
from datetime import datetime, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes, convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_unix(value: Any) -> Optional[datetime]:
    """
    Parse an epoch-seconds value (int or numeric string, as WhatsApp sends it).
    Returns None for missing or unparseable input.
    """
    if value is None or value == "":
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def is_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """A missing expiry means a non-expiring token (system user tokens have none)."""
    if expires_at is None:
        return False
    return as_utc(expires_at) <= (now or utcnow())
