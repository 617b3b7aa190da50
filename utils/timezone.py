"""UTC-everywhere time handling for flows, polling and TOTP steps."""

import time
from datetime import datetime, timezone


def now_utc() -> datetime:
    """
    Current time in UTC.

    Use this instead of datetime.now() everywhere.
    """
    return datetime.now(timezone.utc)


def unix_time() -> float:
    """
    Current Unix time in seconds.

    TOTP time steps are derived from this value, so tests patch it
    to pin a step boundary.
    """
    return time.time()


def seconds_since(moment: datetime) -> float:
    """
    Seconds elapsed since a timezone-aware moment.

    Raises ValueError if the moment is naive (no timezone).
    """
    if moment.tzinfo is None:
        raise ValueError(
            "Cannot measure elapsed time from a naive datetime. "
            "Datetime must be timezone-aware."
        )
    return (now_utc() - moment).total_seconds()
