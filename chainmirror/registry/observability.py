"""Observability primitives for registry refreshes.

Refresh progress and failures are emitted as structured log events suitable
for parsing by log aggregators. Failures are additionally handed to an
:class:`ErrorReporter`, tagged with the registry name.
"""

from __future__ import annotations

import dataclasses
import enum
import typing as typ

from chainmirror.logging import (
    get_logger,
    log_debug,
    log_error,
    log_exception,
    log_info,
)

from .errors import (
    AllowlistError,
    FilesystemError,
    PublishError,
    RegistryConfigError,
    SyncError,
)

if typ.TYPE_CHECKING:
    import datetime as dt

    from chainmirror.logging import SupportsLog

    from .models import RefreshResult, SyncState

logger = get_logger(__name__)


class SyncEventType(enum.StrEnum):
    """Structured log event types for refresh observability."""

    RUN_STARTED = "sync.run.started"
    RUN_COMPLETED = "sync.run.completed"
    RUN_FAILED = "sync.run.failed"
    RUN_SKIPPED = "sync.run.skipped"
    STATE_CHANGED = "sync.state.changed"


class ErrorCategory(enum.StrEnum):
    """Categories for error classification in alerts."""

    GIT = "git"
    ALLOWLIST = "allowlist"
    FILESYSTEM = "filesystem"
    STORE = "store"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


_EXCEPTION_CATEGORY_MAP: tuple[tuple[type[BaseException], ErrorCategory], ...] = (
    (SyncError, ErrorCategory.GIT),
    (AllowlistError, ErrorCategory.ALLOWLIST),
    (FilesystemError, ErrorCategory.FILESYSTEM),
    (PublishError, ErrorCategory.STORE),
    (RegistryConfigError, ErrorCategory.CONFIGURATION),
)


def categorize_error(exc: BaseException) -> ErrorCategory:
    """Categorize an exception for alerting purposes."""
    for exc_type, category in _EXCEPTION_CATEGORY_MAP:
        if isinstance(exc, exc_type):
            return category
    return ErrorCategory.UNKNOWN


class ErrorReporter(typ.Protocol):
    """Error-tracking sink accepting an error and a context tag."""

    def notify(self, error: BaseException, *, context: str) -> None:
        """Report ``error`` under ``context``."""
        ...


class LoggingErrorReporter:
    """Report errors by logging them with their traceback."""

    def __init__(self, sink: SupportsLog | None = None) -> None:
        """Log to ``sink`` or to this module's logger."""
        self._sink = sink or logger

    def notify(self, error: BaseException, *, context: str) -> None:
        """Log ``error`` at ERROR tagged with ``context``."""
        log_exception(
            self._sink,
            f"[{context}] {type(error).__name__}: {error}",
            error,
        )


@dataclasses.dataclass(frozen=True, slots=True)
class SyncRunContext:
    """Shared context for a single refresh attempt."""

    registry: str
    url: str
    branch: str
    started_at: dt.datetime


class SyncEventLogger:
    """Emit structured refresh events through femtologging."""

    def __init__(self, sink: SupportsLog | None = None) -> None:
        """Log to ``sink`` or to this module's logger."""
        self._sink = sink or logger

    def log_run_started(self, context: SyncRunContext) -> None:
        """Log refresh start."""
        log_info(
            self._sink,
            "[%s] registry=%s url=%s branch=%s started_at=%s",
            SyncEventType.RUN_STARTED,
            context.registry,
            context.url,
            context.branch,
            context.started_at.isoformat(),
        )

    def log_state_changed(self, context: SyncRunContext, state: SyncState) -> None:
        """Log a state machine transition."""
        log_debug(
            self._sink,
            "[%s] registry=%s state=%s",
            SyncEventType.STATE_CHANGED,
            context.registry,
            state,
        )

    def log_run_completed(self, context: SyncRunContext, result: RefreshResult) -> None:
        """Log a fully published snapshot."""
        log_info(
            self._sink,
            "[%s] registry=%s duration_seconds=%.3f paths_published=%d commit=%s",
            SyncEventType.RUN_COMPLETED,
            context.registry,
            result.duration.total_seconds(),
            len(result.paths),
            result.commit.oid if result.commit else None,
        )

    def log_run_failed(
        self,
        context: SyncRunContext,
        error: BaseException,
        state: SyncState,
        duration: dt.timedelta,
    ) -> None:
        """Log a failed refresh with error categorisation."""
        log_error(
            self._sink,
            "[%s] registry=%s state=%s duration_seconds=%.3f "
            "error_type=%s error_category=%s error_message=%s",
            SyncEventType.RUN_FAILED,
            context.registry,
            state,
            duration.total_seconds(),
            type(error).__name__,
            categorize_error(error),
            str(error),
        )

    def log_run_skipped(self, registry: str) -> None:
        """Log a refresh skipped because another is in flight."""
        log_info(
            self._sink,
            "[%s] registry=%s reason=refresh_in_flight",
            SyncEventType.RUN_SKIPPED,
            registry,
        )
