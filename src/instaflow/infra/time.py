"""Time utilities for consistent timestamp handling."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def from_epoch_millis(value: int | float) -> datetime:
    """Convert a platform epoch-milliseconds timestamp to aware UTC datetime."""
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
