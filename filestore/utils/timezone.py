"""
Timezone Utilities.

Golden rule: every timestamp this package hands out is timezone-aware UTC.
Backends report modification times in several shapes (POSIX mtimes, naive
datetimes, RFC 1123 strings); normalise them here.
"""

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional, Union

# UTC constant
UTC = timezone.utc


def utc_now() -> datetime:
    """
    Get current time in UTC (timezone-aware).

    Always use this instead of datetime.utcnow() which returns
    naive datetime.
    """
    return datetime.now(UTC)


def from_timestamp(ts: float) -> datetime:
    """Convert a POSIX timestamp (e.g. ``st_mtime``) to aware UTC."""
    return datetime.fromtimestamp(ts, tz=UTC)


def to_utc(value: Optional[Union[datetime, str]]) -> datetime:
    """
    Coerce a backend-reported timestamp to aware UTC.

    Naive datetimes are assumed to already be UTC. Strings may be ISO 8601
    or RFC 1123 (HTTP ``Last-Modified``). Missing or unparseable values fall
    back to now.
    """
    if value is None:
        return utc_now()

    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            try:
                value = parsedate_to_datetime(value)
            except (TypeError, ValueError):
                return utc_now()

    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
