"""Timestamps for audit rows."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Timezone-aware current time; revision rows never store naive datetimes."""
    return datetime.now(timezone.utc)
