"""Publish a registry snapshot into the document store.

Write order matters to consumers: documents first, then the ``paths`` index,
then the commit record and finally the repository descriptor. A consumer that
observes a fresh commit record can assume, best effort, that the documents
behind it are current.
"""

from __future__ import annotations

import collections.abc as cabc
import contextlib
import dataclasses
import typing as typ

import msgspec

from chainmirror.logging import get_logger, log_debug

from .models import CommitRecord, SyncState

if typ.TYPE_CHECKING:
    from chainmirror.store.protocol import DocumentStore

    from .models import ChainDocument, RegistryDescriptor
    from .working_copy import WorkingCopyManager

logger = get_logger(__name__)

PATHS_SUFFIX = "paths"
COMMIT_SUFFIX = "commit"
REPOSITORY_SUFFIX = "repository"


@dataclasses.dataclass(frozen=True, slots=True)
class PublishedSnapshot:
    """What a completed publish wrote."""

    paths: tuple[str, ...]
    commit: CommitRecord


async def _as_async(
    documents: cabc.AsyncIterable[ChainDocument] | cabc.Iterable[ChainDocument],
) -> cabc.AsyncIterator[ChainDocument]:
    if isinstance(documents, cabc.AsyncIterable):
        async for document in documents:
            yield document
    else:
        for document in documents:
            yield document


class SnapshotPublisher:
    """Write documents, index, commit record and descriptor for a registry."""

    def __init__(
        self,
        descriptor: RegistryDescriptor,
        store: DocumentStore,
        working_copies: WorkingCopyManager,
        *,
        on_state: cabc.Callable[[SyncState], None] | None = None,
    ) -> None:
        """Bind the publisher to a registry, a store and its working copy."""
        self._descriptor = descriptor
        self._store = store
        self._working_copies = working_copies
        self._on_state = on_state or (lambda _state: None)

    async def publish(
        self,
        documents: cabc.AsyncIterable[ChainDocument] | cabc.Iterable[ChainDocument],
    ) -> PublishedSnapshot:
        """Publish ``documents`` and the records that describe them.

        Each document is written as soon as it arrives. If the source raises
        part way through, the documents already written stay written and the
        index, commit and descriptor are left untouched.

        Raises
        ------
        PublishError
            If the store rejects a write.
        DocumentBuildError
            If the document source fails to build a document.

        """
        descriptor = self._descriptor
        published: list[ChainDocument] = []

        self._on_state(SyncState.PUBLISHING_DOCUMENTS)
        async with contextlib.aclosing(_as_async(documents)) as stream:
            async for document in stream:
                key = descriptor.key(document["path"])
                await self._store.set_json(key, document)
                log_debug(logger, "Published %s", key)
                published.append(document)

        self._on_state(SyncState.PUBLISHING_INDEX)
        paths = tuple(document["path"] for document in published)
        await self._store.set_json(descriptor.key(PATHS_SUFFIX), list(paths))

        if descriptor.metadata_callback is not None:
            await descriptor.metadata_callback(descriptor.name, published)

        self._on_state(SyncState.PUBLISHING_COMMIT)
        commit = await self._working_copies.latest_commit(1)
        if not isinstance(commit, CommitRecord):
            msg = "latest_commit(1) must return a single CommitRecord"
            raise TypeError(msg)
        await self._store.set_json(
            descriptor.key(COMMIT_SUFFIX), msgspec.to_builtins(commit)
        )

        self._on_state(SyncState.PUBLISHING_DESCRIPTOR)
        await self._store.set_json(
            descriptor.key(REPOSITORY_SUFFIX),
            msgspec.to_builtins(descriptor.repository()),
        )
        return PublishedSnapshot(paths=paths, commit=commit)
