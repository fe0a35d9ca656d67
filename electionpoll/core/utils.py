"""General utility functions."""
import secrets
from datetime import datetime, timezone
from typing import Optional

from electionpoll.core.constants import PUBLIC_ID_BYTES


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def make_numeric_code(length: int = 6) -> str:
    """Generate a zero-padded numeric code of exactly ``length`` digits."""
    return str(secrets.randbelow(10 ** length)).zfill(length)


def make_public_id() -> str:
    """Generate an opaque 16-character public poll id."""
    return secrets.token_hex(PUBLIC_ID_BYTES)


def to_utc(dt: datetime) -> datetime:
    """Convert datetime to UTC timezone."""
    if dt.tzinfo is None:
        # Assume UTC if no timezone
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def has_passed(moment: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """True when ``moment`` is set and not in the future."""
    if moment is None:
        return False
    now = now or utcnow()
    return to_utc(moment) <= now


def isoformat_utc(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return to_utc(dt).isoformat()
