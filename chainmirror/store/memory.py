"""In-process document store used for dry runs."""

from __future__ import annotations

import copy
import typing as typ

if typ.TYPE_CHECKING:
    from .protocol import JSONValue


class InMemoryDocumentStore:
    """Dictionary-backed :class:`~chainmirror.store.protocol.DocumentStore`.

    Values are deep-copied on the way in and out so callers cannot mutate
    what has been published.
    """

    def __init__(self, initial: dict[str, JSONValue] | None = None) -> None:
        """Seed the store with optional pre-existing content."""
        self._entries: dict[str, JSONValue] = copy.deepcopy(initial or {})
        self.writes: list[str] = []

    async def set_json(self, key: str, value: JSONValue) -> None:
        """Replace the value stored under ``key``."""
        self._entries[key] = copy.deepcopy(value)
        self.writes.append(key)

    async def get_json(self, key: str) -> JSONValue:
        """Return a copy of the value under ``key`` or ``None``."""
        return copy.deepcopy(self._entries.get(key))

    async def keys(self, prefix: str = "") -> list[str]:
        """Return sorted keys that start with ``prefix``."""
        return sorted(key for key in self._entries if key.startswith(prefix))

    def snapshot(self) -> dict[str, JSONValue]:
        """Return a copy of every entry, keyed and ordered by key."""
        return {key: copy.deepcopy(self._entries[key]) for key in sorted(self._entries)}
