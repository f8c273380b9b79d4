"""Shared fixtures for unit and feature tests."""

from __future__ import annotations

import typing as typ

import pytest

from chainmirror.registry import AllowlistPolicy, RegistryDescriptor
from chainmirror.store import InMemoryDocumentStore
from tests.helpers.git_upstream import UpstreamRepository, git_available

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path


@pytest.fixture
def upstream(tmp_path: Path) -> UpstreamRepository:
    """Provide an empty upstream repository on the ``master`` branch."""
    if not git_available():
        pytest.skip("git binary required for working copy tests")
    return UpstreamRepository(tmp_path / "upstream" / "chain-registry")


@pytest.fixture
def store() -> InMemoryDocumentStore:
    """Provide an empty in-memory document store."""
    return InMemoryDocumentStore()


@pytest.fixture
def descriptor_for(tmp_path: Path) -> cabc.Callable[..., RegistryDescriptor]:
    """Build descriptors whose working copies live under ``tmp_path``."""

    def _build(upstream: UpstreamRepository, **overrides: object) -> RegistryDescriptor:
        fields: dict[str, typ.Any] = {
            "name": "chain-registry",
            "source_url": upstream.url,
            "branch": upstream.branch,
            "local_path": tmp_path / "mirrors" / "chain-registry",
            "allowlist_policy": AllowlistPolicy.NONE,
        }
        fields.update(overrides)
        return RegistryDescriptor(**fields)

    return _build
