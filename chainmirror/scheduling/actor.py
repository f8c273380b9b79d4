"""Dramatiq actor for queued registry refreshes.

Usage
-----
Queue a refresh of one registry:

>>> refresh_registry_job.send(
...     "registries.yaml",
...     "postgresql+asyncpg://...",
...     "chain-registry",
... )

"""

from __future__ import annotations

import asyncio
from pathlib import Path

import dramatiq

from chainmirror.registry import (
    AllowlistFetcher,
    RefreshResult,
    RegistryConfigError,
    RegistryDescriptor,
    RegistrySyncEngine,
    SyncSettings,
    load_registries,
)
from chainmirror.scheduling._broker import ensure_broker_configured
from chainmirror.store import open_sql_store

ensure_broker_configured()


def _find_descriptor(
    registries_file: str, registry_name: str, settings: SyncSettings
) -> RegistryDescriptor:
    """Return the named registry from the registries file.

    Raises
    ------
    RegistryConfigError
        If the file is invalid or does not declare ``registry_name``.

    """
    descriptors = load_registries(Path(registries_file), work_dir=settings.work_dir)
    for descriptor in descriptors:
        if descriptor.name == registry_name:
            return descriptor
    raise RegistryConfigError([f"unknown registry {registry_name!r}"])


async def _refresh_async(
    descriptor: RegistryDescriptor,
    database_url: str,
    settings: SyncSettings,
) -> RefreshResult:
    """Refresh ``descriptor`` into the SQL store at ``database_url``."""
    fetcher = AllowlistFetcher(settings.allowlist_config())
    try:
        async with open_sql_store(database_url) as store:
            engine = RegistrySyncEngine(
                descriptor,
                store,
                allowlist_fetcher=fetcher,
                git_timeout_s=settings.git_timeout_s,
                max_concurrency=settings.max_concurrency,
            )
            return await engine.refresh()
    finally:
        await fetcher.aclose()


@dramatiq.actor
def refresh_registry_job(
    registries_file: str,
    database_url: str,
    registry_name: str,
) -> str:
    """Dramatiq actor refreshing one registry.

    Parameters
    ----------
    registries_file
        Path to the YAML registries file.
    database_url
        SQLAlchemy URL of the document store database.
    registry_name
        Name of the registry to refresh.

    Returns
    -------
    str
        The refresh outcome: ``succeeded``, ``failed`` or ``skipped``.

    """
    ensure_broker_configured()
    settings = SyncSettings.from_env()
    descriptor = _find_descriptor(registries_file, registry_name, settings)
    result = asyncio.run(_refresh_async(descriptor, database_url, settings))
    return result.outcome.value
