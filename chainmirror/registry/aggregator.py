"""Scan a working copy and merge per-directory JSON files into documents.

Candidate directories are enumerated according to the registry's layout
variant and then filtered, in order, by hidden prefix, explicit exclusion,
allowlist policy and the required marker file. Each surviving directory is
aggregated into one document whose keys are the basenames of its immediate
``.json`` files.
"""

from __future__ import annotations

import asyncio
import dataclasses
import typing as typ

import msgspec

from chainmirror.logging import get_logger, log_debug, log_warning

from .allowlist import chain_names
from .errors import DocumentBuildError, FilesystemError
from .models import AllowlistPolicy, LayoutVariant, NetworkType

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path

    from .models import AllowlistEntry, ChainDocument, RegistryDescriptor
    from .working_copy import WorkingCopy

logger = get_logger(__name__)

DEFAULT_MAX_CONCURRENCY = 16

_JSON_SUFFIX = ".json"
_PATH_FIELD = "path"
_ABSENT = object()


@dataclasses.dataclass(frozen=True, slots=True)
class CandidateDirectory:
    """A directory that may be published, tagged with its origin network."""

    name: str
    parent: Path
    network: NetworkType | None = None

    @property
    def path(self) -> Path:
        """Return the directory's absolute path."""
        return self.parent / self.name


class _AllowlistGate:
    """Membership test derived from an allowlist policy."""

    def __init__(
        self,
        descriptor: RegistryDescriptor,
        entries: cabc.Sequence[AllowlistEntry] | None,
    ) -> None:
        self._policy = descriptor.allowlist_policy
        if self._policy is AllowlistPolicy.NONE:
            return
        if entries is None:
            msg = f"allowlist policy {self._policy} requires allowlist entries"
            raise ValueError(msg)
        self._names = chain_names(entries, include_archived=descriptor.include_archived)
        self._by_network = {
            (entry.chain_name, entry.network_type) for entry in entries
        }
        self._any_network = {entry.chain_name for entry in entries}

    def admits(self, candidate: CandidateDirectory) -> bool:
        match self._policy:
            case AllowlistPolicy.NONE:
                return True
            case AllowlistPolicy.BY_NAME:
                return candidate.name in self._names
            case AllowlistPolicy.BY_DIRECTORY_EXISTENCE:
                if candidate.network is None:
                    return candidate.name in self._any_network
                return (candidate.name, candidate.network) in self._by_network


def _list_subdirectories(root: Path) -> list[str]:
    return sorted(entry.name for entry in root.iterdir() if entry.is_dir())


def _read_json(path: Path) -> object:
    """Decode one JSON file, returning ``_ABSENT`` when it cannot be used."""
    try:
        raw = path.read_bytes()
    except OSError as exc:
        log_warning(logger, "Skipping unreadable file %s: %s", path, exc)
        return _ABSENT
    try:
        return msgspec.json.decode(raw)
    except msgspec.DecodeError as exc:
        log_warning(logger, "Skipping malformed JSON in %s: %s", path, exc)
        return _ABSENT


def build_document(candidate: CandidateDirectory) -> ChainDocument:
    """Merge a directory's immediate ``.json`` files into one document.

    The document always carries ``path`` set to the directory name, ahead of
    any file-derived keys; a ``path.json`` file cannot override it. Files that
    are unreadable, vanish mid-scan or hold malformed JSON leave their key
    absent.

    Raises
    ------
    DocumentBuildError
        If the directory itself cannot be listed.

    """
    directory = candidate.path
    try:
        json_files = sorted(
            entry for entry in directory.iterdir() if entry.suffix == _JSON_SUFFIX
        )
    except OSError as exc:
        raise DocumentBuildError(candidate.name, directory, exc) from exc

    document: ChainDocument = {_PATH_FIELD: candidate.name}
    for json_file in json_files:
        key = json_file.stem
        if key == _PATH_FIELD:
            log_warning(logger, "Ignoring %s: 'path' is reserved", json_file)
            continue
        value = _read_json(json_file)
        if value is not _ABSENT:
            document[key] = value
    return document


class DirectoryAggregator:
    """Select and aggregate the publishable directories of a working copy."""

    def __init__(
        self,
        descriptor: RegistryDescriptor,
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> None:
        """Bind the aggregator to a registry and a build concurrency bound."""
        if max_concurrency < 1:
            msg = f"max_concurrency must be positive, got {max_concurrency}"
            raise ValueError(msg)
        self._descriptor = descriptor
        self._max_concurrency = max_concurrency

    async def scan(
        self,
        working_copy: WorkingCopy,
        allowlist: cabc.Sequence[AllowlistEntry] | None = None,
    ) -> list[CandidateDirectory]:
        """Return the directories that pass every filter, in index order."""
        candidates = await asyncio.to_thread(self.enumerate, working_copy)
        gate = _AllowlistGate(self._descriptor, allowlist)
        return await asyncio.to_thread(self._select, candidates, gate)

    def enumerate(self, working_copy: WorkingCopy) -> list[CandidateDirectory]:
        """List candidate directories for the registry's layout variant.

        Raises
        ------
        FilesystemError
            If the scan root cannot be listed.

        """
        descriptor = self._descriptor
        scan_root = working_copy.root / descriptor.subpath
        try:
            names = _list_subdirectories(scan_root)
        except OSError as exc:
            raise FilesystemError.unreadable_root(scan_root, exc) from exc

        if descriptor.layout_variant is LayoutVariant.SINGLE_ROOT:
            return [CandidateDirectory(name=name, parent=scan_root) for name in names]

        testnet_root = scan_root / descriptor.testnet_subpath
        mainnet = [
            CandidateDirectory(name=name, parent=scan_root, network=NetworkType.MAINNET)
            for name in names
            if scan_root / name != testnet_root
        ]
        try:
            testnet_names = _list_subdirectories(testnet_root)
        except FileNotFoundError:
            log_warning(logger, "Testnet root %s is missing", testnet_root)
            testnet_names = []
        except OSError as exc:
            raise FilesystemError.unreadable_root(testnet_root, exc) from exc
        testnet = [
            CandidateDirectory(
                name=name, parent=testnet_root, network=NetworkType.TESTNET
            )
            for name in testnet_names
        ]
        shared = {c.name for c in mainnet}.intersection(testnet_names)
        for name in sorted(shared):
            log_warning(
                logger,
                "Mainnet and testnet both contain %s; the testnet document wins "
                "key %s",
                name,
                descriptor.key(name),
            )
        return mainnet + testnet

    def _select(
        self,
        candidates: list[CandidateDirectory],
        gate: _AllowlistGate,
    ) -> list[CandidateDirectory]:
        return [candidate for candidate in candidates if self._admits(candidate, gate)]

    def _admits(self, candidate: CandidateDirectory, gate: _AllowlistGate) -> bool:
        descriptor = self._descriptor
        reason: str | None = None
        if candidate.name.startswith("."):
            reason = "hidden"
        elif candidate.name in descriptor.exclude_set:
            reason = "excluded"
        elif not gate.admits(candidate):
            reason = "not in allowlist"
        elif (
            descriptor.required_marker_file is not None
            and not (candidate.path / descriptor.required_marker_file).exists()
        ):
            reason = f"missing {descriptor.required_marker_file}"

        if reason is None:
            return True
        log_debug(logger, "Skipping %s/%s: %s", descriptor.name, candidate.name, reason)
        return False

    async def iter_documents(
        self, candidates: cabc.Sequence[CandidateDirectory]
    ) -> cabc.AsyncIterator[ChainDocument]:
        """Build documents concurrently and yield them in candidate order.

        Builds run on worker threads, at most ``max_concurrency`` at a time.
        The first failure propagates as :class:`DocumentBuildError` and
        cancels the builds that have not completed.
        """
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _build(candidate: CandidateDirectory) -> ChainDocument:
            async with semaphore:
                return await asyncio.to_thread(build_document, candidate)

        tasks = [asyncio.create_task(_build(candidate)) for candidate in candidates]
        try:
            for task in tasks:
                yield await task
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
