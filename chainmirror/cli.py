"""Command-line entry point for mirroring registries.

``chainmirror sync`` runs one refresh round and exits; ``chainmirror run``
keeps refreshing on the configured interval. Settings come from
``CHAINMIRROR_*`` environment variables (see
:class:`chainmirror.registry.SyncSettings`), with ``CHAINMIRROR_REGISTRIES_FILE``,
``CHAINMIRROR_DATABASE_URL`` and ``CHAINMIRROR_LOG_LEVEL`` supplying defaults
for the matching options.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import os
import sys
import typing as typ
from pathlib import Path

import msgspec

from chainmirror.logging import configure_logging, get_logger, log_warning
from chainmirror.registry import (
    AllowlistFetcher,
    RefreshOutcome,
    RegistryConfigError,
    SyncSettings,
    load_registries,
)
from chainmirror.scheduling import RefreshScheduler, build_engines
from chainmirror.store import InMemoryDocumentStore, open_sql_store

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from chainmirror.registry import RefreshResult, RegistryDescriptor
    from chainmirror.store import DocumentStore

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_REFRESH_FAILED = 1
EXIT_CONFIG_ERROR = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chainmirror", description=__doc__)
    parser.add_argument(
        "--registries",
        type=Path,
        default=os.environ.get("CHAINMIRROR_REGISTRIES_FILE") or None,
        help="YAML file declaring the registries to mirror",
    )
    parser.add_argument(
        "--database-url",
        default=os.environ.get("CHAINMIRROR_DATABASE_URL") or None,
        help="SQLAlchemy URL of the document store",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("CHAINMIRROR_LOG_LEVEL", "INFO"),
        help="Log level (default: INFO)",
    )
    subcommands = parser.add_subparsers(dest="command", required=True)

    sync = subcommands.add_parser("sync", help="Refresh registries once")
    sync.add_argument(
        "--registry",
        action="append",
        default=None,
        help="Only refresh the named registry (repeatable)",
    )
    sync.add_argument(
        "--dry-run",
        action="store_true",
        help="Publish into memory and print the snapshot as JSON",
    )

    subcommands.add_parser("run", help="Refresh registries on an interval")
    return parser


def _select(
    descriptors: list[RegistryDescriptor], names: list[str] | None
) -> list[RegistryDescriptor]:
    if not names:
        return descriptors
    known = {descriptor.name for descriptor in descriptors}
    unknown = sorted(set(names) - known)
    if unknown:
        raise RegistryConfigError([f"unknown registry {name!r}" for name in unknown])
    return [descriptor for descriptor in descriptors if descriptor.name in names]


@contextlib.asynccontextmanager
async def _open_store(
    database_url: str | None, *, dry_run: bool
) -> cabc.AsyncIterator[DocumentStore]:
    if dry_run:
        yield InMemoryDocumentStore()
        return
    if database_url is None:
        raise RegistryConfigError(
            ["--database-url or CHAINMIRROR_DATABASE_URL is required"]
        )
    async with open_sql_store(database_url) as store:
        yield store


async def _sync(
    descriptors: list[RegistryDescriptor],
    settings: SyncSettings,
    database_url: str | None,
    *,
    dry_run: bool,
) -> list[RefreshResult]:
    fetcher = AllowlistFetcher(settings.allowlist_config())
    try:
        async with _open_store(database_url, dry_run=dry_run) as store:
            engines = build_engines(
                descriptors, store, settings, allowlist_fetcher=fetcher
            )
            results = await RefreshScheduler(
                engines, interval_s=settings.refresh_interval_s
            ).tick()
            if isinstance(store, InMemoryDocumentStore):
                sys.stdout.write(
                    msgspec.json.format(msgspec.json.encode(store.snapshot())).decode()
                    + "\n"
                )
            return results
    finally:
        await fetcher.aclose()


async def _run(
    descriptors: list[RegistryDescriptor],
    settings: SyncSettings,
    database_url: str | None,
) -> None:
    fetcher = AllowlistFetcher(settings.allowlist_config())
    try:
        async with _open_store(database_url, dry_run=False) as store:
            engines = build_engines(
                descriptors, store, settings, allowlist_fetcher=fetcher
            )
            await RefreshScheduler(
                engines, interval_s=settings.refresh_interval_s
            ).run()
    finally:
        await fetcher.aclose()


def main(argv: list[str] | None = None) -> int:
    """Run the ``chainmirror`` command.

    Parameters
    ----------
    argv : list[str] | None, optional
        Command-line arguments. ``None`` defaults to ``sys.argv``.

    Returns
    -------
    int
        0 on success, 1 when any refresh failed, 2 on configuration errors.

    """
    args = _build_parser().parse_args(argv)
    level, invalid = configure_logging(args.log_level)
    if invalid:
        log_warning(
            logger, "Invalid log level %r, falling back to %s", args.log_level, level
        )

    try:
        if args.registries is None:
            raise RegistryConfigError(
                ["--registries or CHAINMIRROR_REGISTRIES_FILE is required"]
            )
        settings = SyncSettings.from_env()
        descriptors = load_registries(args.registries, work_dir=settings.work_dir)
        if args.command == "run":
            asyncio.run(_run(descriptors, settings, args.database_url))
            return EXIT_OK
        selected = _select(descriptors, args.registry)
        results = asyncio.run(
            _sync(selected, settings, args.database_url, dry_run=args.dry_run)
        )
    except (RegistryConfigError, ValueError) as exc:
        print(f"chainmirror: configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    if any(result.outcome is RefreshOutcome.FAILED for result in results):
        return EXIT_REFRESH_FAILED
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
