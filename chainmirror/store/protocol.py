"""Interface of the key-value document store snapshots are published into."""

from __future__ import annotations

import typing as typ

JSONValue: typ.TypeAlias = (
    dict[str, typ.Any] | list[typ.Any] | str | int | float | bool | None
)


class DocumentStore(typ.Protocol):
    """Store of JSON values under composite ``registry:suffix`` keys.

    ``set_json`` replaces any previous value for the key. Implementations raise
    :class:`chainmirror.registry.errors.PublishError` when a write fails.
    """

    async def set_json(self, key: str, value: JSONValue) -> None:
        """Write ``value`` under ``key``, replacing prior content."""
        ...

    async def get_json(self, key: str) -> JSONValue:
        """Return the value stored under ``key``, or ``None`` when absent."""
        ...

    async def keys(self, prefix: str = "") -> list[str]:
        """Return every stored key starting with ``prefix``, sorted."""
        ...
