"""Recurring and queued execution of registry refreshes."""

from __future__ import annotations

from .scheduler import RefreshScheduler, build_engines

__all__ = ["RefreshScheduler", "build_engines"]
