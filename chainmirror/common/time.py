"""Common time utilities."""

from __future__ import annotations

import datetime as dt
import time


def utcnow() -> dt.datetime:
    """Return an aware UTC timestamp for store rows and log events."""
    return dt.datetime.now(dt.UTC)


def monotonic_duration(started: float) -> dt.timedelta:
    """Return the elapsed time since a ``time.monotonic()`` reading."""
    return dt.timedelta(seconds=time.monotonic() - started)
