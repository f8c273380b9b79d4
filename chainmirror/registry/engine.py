"""Orchestrate one registry refresh: mirror, filter, aggregate, publish.

:meth:`RegistrySyncEngine.refresh` is the single entry point. It never raises:
failures are categorised, reported with the registry name as context, logged,
and returned in a :class:`~chainmirror.registry.models.RefreshResult`, so the
engine is safe to drive from a recurring timer. The previously published
snapshot stays queryable after a failure, apart from any document keys that
were already overwritten.
"""

from __future__ import annotations

import contextlib
import datetime as dt
import threading
import time
import typing as typ

from chainmirror.common.time import monotonic_duration, utcnow
from chainmirror.logging import get_logger, log_exception

from .aggregator import DEFAULT_MAX_CONCURRENCY, DirectoryAggregator
from .allowlist import AllowlistFetcher
from .models import AllowlistPolicy, RefreshOutcome, RefreshResult, SyncState
from .observability import (
    LoggingErrorReporter,
    SyncEventLogger,
    SyncRunContext,
    categorize_error,
)
from .publisher import PublishedSnapshot, SnapshotPublisher
from .working_copy import DEFAULT_GIT_TIMEOUT_S, WorkingCopy, WorkingCopyManager

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from chainmirror.store.protocol import DocumentStore

    from .models import AllowlistEntry, RegistryDescriptor
    from .observability import ErrorReporter

logger = get_logger(__name__)

_IN_FLIGHT_LOCK = threading.Lock()
_IN_FLIGHT: set[str] = set()


@contextlib.contextmanager
def single_flight(registry: str) -> cabc.Iterator[bool]:
    """Claim the in-flight slot for ``registry``; yield whether it was free.

    The slot is process-wide and thread-safe, so a scheduler tick and a queued
    job cannot race on the same working copy even from different event loops.
    """
    with _IN_FLIGHT_LOCK:
        acquired = registry not in _IN_FLIGHT
        if acquired:
            _IN_FLIGHT.add(registry)
    try:
        yield acquired
    finally:
        if acquired:
            with _IN_FLIGHT_LOCK:
                _IN_FLIGHT.discard(registry)


class RegistrySyncEngine:
    """Mirror one registry into the document store.

    Parameters
    ----------
    descriptor:
        Static configuration of the registry.
    store:
        Document store receiving the snapshot.
    allowlist_fetcher:
        Shared allowlist client. Created on demand, and owned by the engine,
        when omitted and the registry's policy needs one.
    error_reporter:
        Sink for refresh failures; defaults to logging them.
    event_logger:
        Structured event emitter.
    git_timeout_s:
        Deadline for each git command.
    max_concurrency:
        Upper bound on concurrent document builds.

    """

    def __init__(  # noqa: PLR0913
        self,
        descriptor: RegistryDescriptor,
        store: DocumentStore,
        *,
        allowlist_fetcher: AllowlistFetcher | None = None,
        error_reporter: ErrorReporter | None = None,
        event_logger: SyncEventLogger | None = None,
        git_timeout_s: float = DEFAULT_GIT_TIMEOUT_S,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> None:
        """Wire the engine's collaborators for ``descriptor``."""
        self._descriptor = descriptor
        self._store = store
        self._allowlist_fetcher = allowlist_fetcher
        self._owns_fetcher = False
        self._error_reporter = error_reporter or LoggingErrorReporter()
        self._event_logger = event_logger or SyncEventLogger()
        self._working_copies = WorkingCopyManager(
            descriptor, git_timeout_s=git_timeout_s
        )
        self._aggregator = DirectoryAggregator(
            descriptor, max_concurrency=max_concurrency
        )
        self._state = SyncState.IDLE
        self._context: SyncRunContext | None = None

    @property
    def descriptor(self) -> RegistryDescriptor:
        """Return the registry this engine mirrors."""
        return self._descriptor

    @property
    def state(self) -> SyncState:
        """Return the stage of the refresh in progress, or ``IDLE``."""
        return self._state

    async def aclose(self) -> None:
        """Close an allowlist fetcher the engine created for itself."""
        if self._owns_fetcher and self._allowlist_fetcher is not None:
            await self._allowlist_fetcher.aclose()
            self._allowlist_fetcher = None
            self._owns_fetcher = False

    async def refresh(self) -> RefreshResult:
        """Run one refresh attempt; never raises.

        Returns a ``skipped`` result without touching the working copy when
        another refresh of the same registry is already in flight.
        """
        name = self._descriptor.name
        with single_flight(name) as acquired:
            if not acquired:
                self._event_logger.log_run_skipped(name)
                return RefreshResult(
                    registry=name,
                    outcome=RefreshOutcome.SKIPPED,
                    state=self._state,
                    duration=dt.timedelta(0),
                )
            return await self._refresh_exclusive()

    async def _refresh_exclusive(self) -> RefreshResult:
        descriptor = self._descriptor
        started = time.monotonic()
        context = SyncRunContext(
            registry=descriptor.name,
            url=descriptor.source_url,
            branch=descriptor.branch,
            started_at=utcnow(),
        )
        self._context = context
        self._event_logger.log_run_started(context)

        try:
            working_copy = await self.update()
            snapshot = await self.load(working_copy)
        except Exception as exc:  # noqa: BLE001 - refresh must not raise to its timer
            return self._failed(context, exc, started)
        finally:
            last_state = self._state
            self._enter(SyncState.IDLE)
            self._context = None

        result = RefreshResult(
            registry=descriptor.name,
            outcome=RefreshOutcome.SUCCEEDED,
            state=last_state,
            duration=monotonic_duration(started),
            paths=snapshot.paths,
            commit=snapshot.commit,
        )
        self._event_logger.log_run_completed(context, result)
        return result

    def _failed(
        self, context: SyncRunContext, exc: Exception, started: float
    ) -> RefreshResult:
        state = self._state
        duration = monotonic_duration(started)
        try:
            self._error_reporter.notify(exc, context=context.registry)
        except Exception as report_exc:  # noqa: BLE001 - reporter outages stay local
            log_exception(
                logger,
                f"Error reporter failed for registry {context.registry}",
                report_exc,
            )
        self._event_logger.log_run_failed(context, exc, state, duration)
        return RefreshResult(
            registry=context.registry,
            outcome=RefreshOutcome.FAILED,
            state=state,
            duration=duration,
            error=exc,
            error_category=categorize_error(exc),
        )

    async def update(self) -> WorkingCopy:
        """Recreate the working copy, advancing through the git stages."""
        self._enter(SyncState.CLONING_WORKING_COPY)
        await self._working_copies.clone()
        self._enter(SyncState.FETCHING)
        await self._working_copies.fetch()
        self._enter(SyncState.CHECKING_OUT)
        return await self._working_copies.checkout()

    async def load(self, working_copy: WorkingCopy) -> PublishedSnapshot:
        """Fetch the allowlist, select directories and publish the snapshot."""
        self._enter(SyncState.FETCHING_ALLOWLIST)
        allowlist = await self._fetch_allowlist()

        self._enter(SyncState.SCANNING_DIRECTORIES)
        candidates = await self._aggregator.scan(working_copy, allowlist)

        publisher = SnapshotPublisher(
            self._descriptor,
            self._store,
            self._working_copies,
            on_state=self._enter,
        )
        return await publisher.publish(self._aggregator.iter_documents(candidates))

    async def _fetch_allowlist(self) -> list[AllowlistEntry] | None:
        if self._descriptor.allowlist_policy is AllowlistPolicy.NONE:
            return None
        if self._allowlist_fetcher is None:
            self._allowlist_fetcher = AllowlistFetcher()
            self._owns_fetcher = True
        return await self._allowlist_fetcher.fetch()

    def _enter(self, state: SyncState) -> None:
        self._state = state
        if self._context is not None:
            self._event_logger.log_state_changed(self._context, state)
