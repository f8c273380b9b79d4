"""Unit tests for snapshot publication order and contents."""

from __future__ import annotations

import typing as typ

import pytest

from chainmirror.registry import (
    CommitAuthor,
    CommitRecord,
    DocumentBuildError,
    RegistryDescriptor,
    SnapshotPublisher,
    SyncState,
)
from chainmirror.store import InMemoryDocumentStore

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path

    from chainmirror.registry import ChainDocument

TIP = CommitRecord(
    oid="0f3c9e",
    author=CommitAuthor(name="Registry Bot", email="bot@example.com"),
    timestamp=1_700_000_000,
    message="Update cosmoshub\n",
)


class _FakeWorkingCopies:
    """Stand-in for the working copy manager's commit lookup."""

    def __init__(self, commit: object = TIP) -> None:
        self.commit = commit
        self.requested: list[int] = []

    async def latest_commit(self, count: int = 1) -> object:
        self.requested.append(count)
        return self.commit


def _publisher(
    descriptor: RegistryDescriptor,
    store: InMemoryDocumentStore,
    working_copies: _FakeWorkingCopies | None = None,
    states: list[SyncState] | None = None,
) -> SnapshotPublisher:
    return SnapshotPublisher(
        descriptor,
        store,
        typ.cast("typ.Any", working_copies or _FakeWorkingCopies()),
        on_state=None if states is None else states.append,
    )


@pytest.fixture
def descriptor(tmp_path: Path) -> RegistryDescriptor:
    """Provide a descriptor for the chain registry."""
    return RegistryDescriptor(
        name="chain-registry",
        source_url="https://example/chain-registry",
        branch="master",
        local_path=tmp_path / "chain-registry",
    )


DOCUMENTS: list[ChainDocument] = [
    {"path": "cosmoshub", "chain": {"chain_id": "cosmoshub-4"}},
    {"path": "osmosis", "chain": {"chain_id": "osmosis-1"}},
]


@pytest.mark.asyncio
async def test_publish_writes_snapshot_in_order(
    descriptor: RegistryDescriptor, store: InMemoryDocumentStore
) -> None:
    """Documents precede the index, which precedes commit and descriptor."""
    states: list[SyncState] = []
    working_copies = _FakeWorkingCopies()

    snapshot = await _publisher(descriptor, store, working_copies, states).publish(
        DOCUMENTS
    )

    assert store.writes == [
        "chain-registry:cosmoshub",
        "chain-registry:osmosis",
        "chain-registry:paths",
        "chain-registry:commit",
        "chain-registry:repository",
    ]
    assert states == [
        SyncState.PUBLISHING_DOCUMENTS,
        SyncState.PUBLISHING_INDEX,
        SyncState.PUBLISHING_COMMIT,
        SyncState.PUBLISHING_DESCRIPTOR,
    ]
    assert working_copies.requested == [1]
    assert snapshot.paths == ("cosmoshub", "osmosis")
    assert snapshot.commit == TIP


@pytest.mark.asyncio
async def test_publish_persists_plain_json(
    descriptor: RegistryDescriptor, store: InMemoryDocumentStore
) -> None:
    """Commit and descriptor records are stored as plain JSON objects."""
    await _publisher(descriptor, store).publish(DOCUMENTS)

    assert await store.get_json("chain-registry:paths") == ["cosmoshub", "osmosis"]
    assert await store.get_json("chain-registry:osmosis") == DOCUMENTS[1]
    assert await store.get_json("chain-registry:commit") == {
        "oid": "0f3c9e",
        "author": {"name": "Registry Bot", "email": "bot@example.com"},
        "timestamp": 1_700_000_000,
        "message": "Update cosmoshub\n",
    }
    assert await store.get_json("chain-registry:repository") == {
        "name": "chain-registry",
        "url": "https://example/chain-registry",
        "branch": "master",
    }


@pytest.mark.asyncio
async def test_publish_accepts_async_sources(
    descriptor: RegistryDescriptor, store: InMemoryDocumentStore
) -> None:
    """Async iterables are consumed in arrival order."""

    async def documents() -> cabc.AsyncIterator[ChainDocument]:
        for document in reversed(DOCUMENTS):
            yield document

    snapshot = await _publisher(descriptor, store).publish(documents())

    assert snapshot.paths == ("osmosis", "cosmoshub")


@pytest.mark.asyncio
async def test_empty_snapshot_still_records_commit(
    descriptor: RegistryDescriptor, store: InMemoryDocumentStore
) -> None:
    """A run that selects nothing publishes an empty index."""
    await _publisher(descriptor, store).publish([])

    assert await store.get_json("chain-registry:paths") == []
    assert await store.get_json("chain-registry:commit") is not None


@pytest.mark.asyncio
async def test_source_failure_leaves_index_untouched(
    descriptor: RegistryDescriptor, tmp_path: Path
) -> None:
    """Documents written before a failure stay; later records are not written."""
    store = InMemoryDocumentStore({"chain-registry:paths": ["old"]})

    async def documents() -> cabc.AsyncIterator[ChainDocument]:
        yield DOCUMENTS[0]
        raise DocumentBuildError("osmosis", tmp_path / "osmosis", "gone")

    with pytest.raises(DocumentBuildError):
        await _publisher(descriptor, store).publish(documents())

    assert store.writes == ["chain-registry:cosmoshub"]
    assert await store.get_json("chain-registry:paths") == ["old"]


@pytest.mark.asyncio
async def test_metadata_callback_runs_after_index(
    tmp_path: Path, store: InMemoryDocumentStore
) -> None:
    """The callback sees the published documents once the index is written."""
    seen: list[tuple[str, list[str], list[str]]] = []

    async def callback(name: str, documents: list[ChainDocument]) -> None:
        seen.append((name, [doc["path"] for doc in documents], list(store.writes)))

    descriptor = RegistryDescriptor(
        name="chain-registry",
        source_url="https://example/chain-registry",
        branch="master",
        local_path=tmp_path,
        metadata_callback=callback,
    )

    await _publisher(descriptor, store).publish(DOCUMENTS)

    assert seen == [
        (
            "chain-registry",
            ["cosmoshub", "osmosis"],
            [
                "chain-registry:cosmoshub",
                "chain-registry:osmosis",
                "chain-registry:paths",
            ],
        )
    ]


@pytest.mark.asyncio
async def test_metadata_callback_failure_propagates(
    tmp_path: Path, store: InMemoryDocumentStore
) -> None:
    """A failing callback aborts before the commit record is written."""

    async def callback(name: str, documents: list[ChainDocument]) -> None:
        del documents
        message = f"status sink rejected {name}"
        raise RuntimeError(message)

    descriptor = RegistryDescriptor(
        name="chain-registry",
        source_url="https://example/chain-registry",
        branch="master",
        local_path=tmp_path,
        metadata_callback=callback,
    )

    with pytest.raises(RuntimeError, match="status sink rejected"):
        await _publisher(descriptor, store).publish(DOCUMENTS)

    assert "chain-registry:commit" not in store.writes


@pytest.mark.asyncio
async def test_multi_commit_lookup_is_rejected(
    descriptor: RegistryDescriptor, store: InMemoryDocumentStore
) -> None:
    """The commit record must be a single commit."""
    working_copies = _FakeWorkingCopies(commit=[TIP])

    with pytest.raises(TypeError, match="single CommitRecord"):
        await _publisher(descriptor, store, working_copies).publish(DOCUMENTS)
