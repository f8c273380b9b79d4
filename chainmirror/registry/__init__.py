"""Registry synchronisation: mirror git-backed registries into the store.

A refresh recreates a shallow working copy of the registry, fetches the
external allowlist, aggregates each eligible directory's JSON files into a
document and publishes the documents, the ``paths`` index, the commit record
and the repository descriptor under ``<registry>:<suffix>`` keys.

Usage
-----
Refresh one registry into an SQL-backed store::

    from chainmirror.registry import RegistrySyncEngine, load_registries
    from chainmirror.store import SqlDocumentStore

    store = SqlDocumentStore(session_factory)
    for descriptor in load_registries("registries.yaml", work_dir=work_dir):
        result = await RegistrySyncEngine(descriptor, store).refresh()
        print(f"{result.registry}: {result.outcome}")

"""

from chainmirror.registry.aggregator import (
    CandidateDirectory,
    DirectoryAggregator,
    build_document,
)
from chainmirror.registry.allowlist import AllowlistConfig, AllowlistFetcher
from chainmirror.registry.config import SyncSettings, load_registries
from chainmirror.registry.engine import RegistrySyncEngine, single_flight
from chainmirror.registry.errors import (
    AllowlistError,
    DocumentBuildError,
    FilesystemError,
    MirrorError,
    PublishError,
    RegistryConfigError,
    SyncError,
)
from chainmirror.registry.models import (
    AllowlistEntry,
    AllowlistPolicy,
    ChainDocument,
    CommitAuthor,
    CommitRecord,
    LayoutVariant,
    NetworkType,
    RefreshOutcome,
    RefreshResult,
    RegistryDescriptor,
    RepositoryDescriptor,
    SyncState,
)
from chainmirror.registry.observability import (
    ErrorCategory,
    ErrorReporter,
    LoggingErrorReporter,
    SyncEventLogger,
    categorize_error,
)
from chainmirror.registry.publisher import PublishedSnapshot, SnapshotPublisher
from chainmirror.registry.working_copy import WorkingCopy, WorkingCopyManager

__all__ = [
    "AllowlistConfig",
    "AllowlistEntry",
    "AllowlistError",
    "AllowlistFetcher",
    "AllowlistPolicy",
    "CandidateDirectory",
    "ChainDocument",
    "CommitAuthor",
    "CommitRecord",
    "DirectoryAggregator",
    "DocumentBuildError",
    "ErrorCategory",
    "ErrorReporter",
    "FilesystemError",
    "LayoutVariant",
    "LoggingErrorReporter",
    "MirrorError",
    "NetworkType",
    "PublishError",
    "PublishedSnapshot",
    "RefreshOutcome",
    "RefreshResult",
    "RegistryConfigError",
    "RegistryDescriptor",
    "RegistrySyncEngine",
    "RepositoryDescriptor",
    "SnapshotPublisher",
    "SyncError",
    "SyncEventLogger",
    "SyncSettings",
    "SyncState",
    "WorkingCopy",
    "WorkingCopyManager",
    "build_document",
    "categorize_error",
    "load_registries",
    "single_flight",
]
