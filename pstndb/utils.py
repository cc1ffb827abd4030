"""Utility functions shared by the node and property layers."""

from datetime import datetime, timedelta, timezone

# Windows FILETIME epoch: January 1, 1601
_FILETIME_EPOCH = datetime(1601, 1, 1, tzinfo=timezone.utc)
_TICKS_PER_SECOND = 10_000_000  # 100-nanosecond intervals
_TICKS_PER_MICROSECOND = 10


def datetime_to_filetime(dt: datetime) -> int:
    """Convert a Python datetime to a Windows FILETIME (64-bit integer).

    FILETIME = number of 100-nanosecond intervals since January 1, 1601 UTC.
    Naive datetimes are taken to be UTC. Integer arithmetic keeps the
    conversion exact down to the microsecond.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    delta = dt - _FILETIME_EPOCH
    return ((delta.days * 86400 + delta.seconds) * _TICKS_PER_SECOND
            + delta.microseconds * _TICKS_PER_MICROSECOND)


def filetime_to_datetime(ft: int) -> datetime:
    """Convert a FILETIME to an aware UTC datetime.

    Sub-microsecond ticks are dropped. Values outside the range Python can
    represent are clamped to datetime.min/max (UTC).
    """
    try:
        return _FILETIME_EPOCH + timedelta(microseconds=ft // _TICKS_PER_MICROSECOND)
    except OverflowError:
        if ft < 0:
            return datetime.min.replace(tzinfo=timezone.utc)
        return datetime.max.replace(tzinfo=timezone.utc)


def filetime_now() -> int:
    """Return current time as a Windows FILETIME."""
    return datetime_to_filetime(datetime.now(timezone.utc))


def utc_now() -> datetime:
    """Current time truncated to FILETIME-representable precision."""
    return filetime_to_datetime(filetime_now())


def align(value: int, boundary: int) -> int:
    """Round up value to the next multiple of boundary."""
    remainder = value % boundary
    if remainder == 0:
        return value
    return value + (boundary - remainder)
