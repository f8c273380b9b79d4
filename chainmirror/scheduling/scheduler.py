"""Recurring refresh loop for a set of registries."""

from __future__ import annotations

import asyncio
import typing as typ

from chainmirror.logging import get_logger, log_info
from chainmirror.registry import RegistrySyncEngine

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from chainmirror.registry import (
        AllowlistFetcher,
        ErrorReporter,
        RefreshResult,
        RegistryDescriptor,
        SyncSettings,
    )
    from chainmirror.store.protocol import DocumentStore

logger = get_logger(__name__)


def build_engines(
    descriptors: cabc.Iterable[RegistryDescriptor],
    store: DocumentStore,
    settings: SyncSettings,
    *,
    allowlist_fetcher: AllowlistFetcher,
    error_reporter: ErrorReporter | None = None,
) -> list[RegistrySyncEngine]:
    """Create one engine per registry sharing a pooled allowlist client."""
    return [
        RegistrySyncEngine(
            descriptor,
            store,
            allowlist_fetcher=allowlist_fetcher,
            error_reporter=error_reporter,
            git_timeout_s=settings.git_timeout_s,
            max_concurrency=settings.max_concurrency,
        )
        for descriptor in descriptors
    ]


class RefreshScheduler:
    """Refresh every registry, sleep, and repeat.

    Registries are refreshed concurrently within a round; each engine
    serialises refreshes of its own registry, and ``refresh()`` never raises,
    so one failing registry cannot stop the loop.
    """

    def __init__(
        self,
        engines: cabc.Sequence[RegistrySyncEngine],
        *,
        interval_s: float,
    ) -> None:
        """Schedule ``engines`` every ``interval_s`` seconds."""
        if interval_s <= 0:
            msg = f"interval_s must be positive, got {interval_s}"
            raise ValueError(msg)
        self._engines = list(engines)
        self._interval_s = interval_s

    async def tick(self) -> list[RefreshResult]:
        """Run one round of refreshes and return their results."""
        results = await asyncio.gather(*(engine.refresh() for engine in self._engines))
        succeeded = sum(1 for result in results if result.succeeded)
        log_info(
            logger,
            "Refresh round finished: %d/%d registries succeeded",
            succeeded,
            len(results),
        )
        return list(results)

    async def run(self, *, rounds: int | None = None) -> None:
        """Run rounds forever, or ``rounds`` times when given."""
        completed = 0
        while rounds is None or completed < rounds:
            await self.tick()
            completed += 1
            if rounds is not None and completed >= rounds:
                break
            await asyncio.sleep(self._interval_s)
