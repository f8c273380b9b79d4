"""Typed structures describing registries and their published snapshot."""

from __future__ import annotations

import collections.abc as cabc
import dataclasses
import datetime as dt
import enum
import typing as typ
from pathlib import Path

import msgspec

ChainDocument: typ.TypeAlias = dict[str, typ.Any]
MetadataCallback: typ.TypeAlias = cabc.Callable[
    [str, list[ChainDocument]], cabc.Awaitable[None]
]


class LayoutVariant(enum.StrEnum):
    """Where candidate directories live inside a working copy."""

    SINGLE_ROOT = "single_root"
    MAINNET_TESTNET_SPLIT = "mainnet_testnet_split"


class AllowlistPolicy(enum.StrEnum):
    """How the external allowlist gates publication."""

    NONE = "none"
    BY_NAME = "by_name"
    BY_DIRECTORY_EXISTENCE = "by_directory_existence"


class NetworkType(enum.StrEnum):
    """Network a chain directory belongs to."""

    MAINNET = "mainnet"
    TESTNET = "testnet"


@dataclasses.dataclass(frozen=True, slots=True)
class RegistryDescriptor:
    """Static configuration for one mirrored registry.

    Attributes
    ----------
    name
        Namespace for every store key written by the registry.
    source_url
        Git URL of the upstream repository.
    branch
        Branch mirrored with a shallow single-branch fetch.
    local_path
        Directory holding the working copy. Wiped on every refresh.
    layout_variant
        Where candidate directories live inside the working copy.
    exclude_set
        Directory names that are never published.
    required_marker_file
        File that must exist inside a directory for it to be published.
    allowlist_policy
        How the external allowlist gates publication.
    include_archived
        Keep archived allowlist entries under ``AllowlistPolicy.BY_NAME``.
    subpath
        Directory inside the working copy to scan; empty for the root.
    testnet_subpath
        Testnet root, relative to the scan root, for the split layout.
    metadata_callback
        Awaited once per successful load with ``(name, documents)``.

    """

    name: str
    source_url: str
    branch: str
    local_path: Path
    layout_variant: LayoutVariant = LayoutVariant.SINGLE_ROOT
    exclude_set: frozenset[str] = frozenset()
    required_marker_file: str | None = None
    allowlist_policy: AllowlistPolicy = AllowlistPolicy.NONE
    include_archived: bool = False
    subpath: str = ""
    testnet_subpath: str = "testnets"
    metadata_callback: MetadataCallback | None = dataclasses.field(
        default=None, compare=False
    )

    def key(self, suffix: str) -> str:
        """Return the composite store key ``name:suffix``."""
        return f"{self.name}:{suffix}"

    def repository(self) -> RepositoryDescriptor:
        """Return the persisted descriptor for this registry."""
        return RepositoryDescriptor(
            name=self.name, url=self.source_url, branch=self.branch
        )


class AllowlistEntry(msgspec.Struct, kw_only=True, frozen=True):
    """One entry of the external supported-chain list."""

    chain_name: str
    network_type: NetworkType = NetworkType.MAINNET
    is_archive: bool = False


class CommitAuthor(msgspec.Struct, kw_only=True, frozen=True):
    """Author identity of a commit."""

    name: str
    email: str


class CommitRecord(msgspec.Struct, kw_only=True, frozen=True):
    """Branch tip recorded alongside a published snapshot.

    Attributes
    ----------
    oid : str
        Full commit hash.
    author : CommitAuthor
        Author name and email.
    timestamp : int
        Author time in seconds since the epoch.
    message : str
        Full commit message.

    """

    oid: str
    author: CommitAuthor
    timestamp: int
    message: str


class RepositoryDescriptor(msgspec.Struct, kw_only=True, frozen=True):
    """Persisted ``{name, url, branch}`` record for a registry."""

    name: str
    url: str
    branch: str


class RefreshOutcome(enum.StrEnum):
    """Terminal outcome of a refresh attempt."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class SyncState(enum.StrEnum):
    """Stages a refresh attempt passes through."""

    IDLE = "idle"
    CLONING_WORKING_COPY = "cloning_working_copy"
    FETCHING = "fetching"
    CHECKING_OUT = "checking_out"
    FETCHING_ALLOWLIST = "fetching_allowlist"
    SCANNING_DIRECTORIES = "scanning_directories"
    PUBLISHING_DOCUMENTS = "publishing_documents"
    PUBLISHING_INDEX = "publishing_index"
    PUBLISHING_COMMIT = "publishing_commit"
    PUBLISHING_DESCRIPTOR = "publishing_descriptor"


@dataclasses.dataclass(frozen=True, slots=True)
class RefreshResult:
    """Summary of a single refresh attempt.

    ``state`` is the last stage entered, so a failed result shows where the
    attempt stopped.
    """

    registry: str
    outcome: RefreshOutcome
    state: SyncState
    duration: dt.timedelta
    paths: tuple[str, ...] = ()
    commit: CommitRecord | None = None
    error: BaseException | None = None
    error_category: str | None = None

    @property
    def succeeded(self) -> bool:
        """Return True when the snapshot was fully published."""
        return self.outcome is RefreshOutcome.SUCCEEDED
