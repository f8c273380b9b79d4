"""Behavioural tests for refreshing a registry into the SQL store."""

from __future__ import annotations

import asyncio
import json
import typing as typ

import pytest
from pytest_bdd import given, parsers, scenario, then, when
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from chainmirror.registry import (
    AllowlistPolicy,
    RefreshOutcome,
    RegistryDescriptor,
    RegistrySyncEngine,
)
from chainmirror.store import SqlDocumentStore, init_store_storage
from tests.helpers.allowlist import make_fetcher, serve_entries, serve_status
from tests.helpers.git_upstream import UpstreamRepository, git_available

if typ.TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

    from chainmirror.registry import AllowlistFetcher, RefreshResult

pytestmark = pytest.mark.skipif(
    not git_available(), reason="git binary required for registry refreshes"
)


class RefreshContext(typ.TypedDict, total=False):
    """Shared state used by BDD steps."""

    upstream: UpstreamRepository
    tip: str
    descriptor: RegistryDescriptor
    engine: AsyncEngine
    store: SqlDocumentStore
    fetcher: AllowlistFetcher
    result: RefreshResult


@scenario("../registry_refresh.feature", "Only allowlisted chains are published")
def test_allowlisted_chains_published() -> None:
    """Behavioural test wrapper for pytest-bdd."""


@scenario(
    "../registry_refresh.feature",
    "An unreachable allowlist leaves the previous snapshot in place",
)
def test_allowlist_outage_keeps_snapshot() -> None:
    """Behavioural test wrapper for pytest-bdd."""


@pytest.fixture
def refresh_context() -> typ.Iterator[RefreshContext]:
    """Provide per-scenario state and dispose of the database afterwards."""
    context: RefreshContext = {}
    yield context
    if "engine" in context:
        asyncio.run(context["engine"].dispose())


def _refresh(context: RefreshContext) -> RefreshResult:
    engine = RegistrySyncEngine(
        context["descriptor"], context["store"], allowlist_fetcher=context["fetcher"]
    )
    return asyncio.run(engine.refresh())


def _stored(context: RefreshContext, suffix: str) -> object:
    key = context["descriptor"].key(suffix)
    return asyncio.run(context["store"].get_json(key))


@given(parsers.parse('an upstream "{name}" repository containing'))
def upstream_repository(
    refresh_context: RefreshContext,
    tmp_path: Path,
    name: str,
    datatable: list[list[str]],
) -> None:
    """Commit the tabled files to a fresh upstream repository."""
    upstream = UpstreamRepository(tmp_path / "upstream" / name)
    _header, *rows = datatable
    for directory, filename, content in rows:
        upstream.write_json(f"{directory}/{filename}", json.loads(content))
    refresh_context["upstream"] = upstream
    refresh_context["tip"] = upstream.commit("Seed registry")
    refresh_context["descriptor"] = RegistryDescriptor(
        name=name,
        source_url=upstream.url,
        branch=upstream.branch,
        local_path=tmp_path / "mirrors" / name,
    )


@given("the registry is filtered by chain name")
def filtered_by_name(refresh_context: RefreshContext) -> None:
    """Gate publication on the allowlist's chain names."""
    descriptor = refresh_context["descriptor"]
    refresh_context["descriptor"] = RegistryDescriptor(
        name=descriptor.name,
        source_url=descriptor.source_url,
        branch=descriptor.branch,
        local_path=descriptor.local_path,
        required_marker_file="chain.json",
        allowlist_policy=AllowlistPolicy.BY_NAME,
    )


@given("a SQL document store")
def sql_store(refresh_context: RefreshContext, tmp_path: Path) -> None:
    """Create the store tables in a temporary SQLite database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'bdd-store.db'}")
    asyncio.run(init_store_storage(engine))
    refresh_context["engine"] = engine
    refresh_context["store"] = SqlDocumentStore(
        async_sessionmaker(engine, expire_on_commit=False)
    )


@given(parsers.parse('the allowlist contains "{chain}" on {network}'))
def allowlist_contains(
    refresh_context: RefreshContext, chain: str, network: str
) -> None:
    """Serve a single allowlist entry."""
    refresh_context["fetcher"] = make_fetcher(
        serve_entries({"chain_name": chain, "network_type": network})
    )


@given("the registry has been refreshed once")
def refreshed_once(refresh_context: RefreshContext) -> None:
    """Publish an initial snapshot."""
    result = _refresh(refresh_context)
    assert result.succeeded, f"initial refresh failed: {result.error}"


@given(parsers.parse('upstream "{chain}" now has chain_id "{chain_id}"'))
def upstream_changes(
    refresh_context: RefreshContext, chain: str, chain_id: str
) -> None:
    """Commit a new chain.json for ``chain`` upstream."""
    upstream = refresh_context["upstream"]
    upstream.write_json(f"{chain}/chain.json", {"chain_id": chain_id})
    refresh_context["tip"] = upstream.commit(f"Update {chain}")


@given("the allowlist endpoint is failing")
def allowlist_failing(refresh_context: RefreshContext) -> None:
    """Answer every allowlist request with HTTP 503."""
    refresh_context["fetcher"] = make_fetcher(serve_status(503, []))


@when("the registry is refreshed")
def refresh(refresh_context: RefreshContext) -> None:
    """Run one refresh and keep its result."""
    refresh_context["result"] = _refresh(refresh_context)


@then("the refresh succeeds")
def refresh_succeeds(refresh_context: RefreshContext) -> None:
    """The snapshot was fully published."""
    result = refresh_context["result"]
    assert result.outcome is RefreshOutcome.SUCCEEDED, (
        f"expected success, got {result.outcome}: {result.error}"
    )


@then(parsers.parse('the refresh fails with category "{category}"'))
def refresh_fails(refresh_context: RefreshContext, category: str) -> None:
    """The refresh failed without raising and was categorised."""
    result = refresh_context["result"]
    assert result.outcome is RefreshOutcome.FAILED, f"expected failure: {result}"
    assert result.error_category == category, (
        f"expected category {category}, got {result.error_category}"
    )


@then(parsers.parse('the paths index is exactly "{path}"'))
def paths_index(refresh_context: RefreshContext, path: str) -> None:
    """The index lists exactly one published directory."""
    paths = _stored(refresh_context, "paths")
    assert paths == [path], f"expected paths [{path!r}], got {paths!r}"


@then(parsers.parse('the document for "{chain}" has chain_id "{chain_id}"'))
def document_chain_id(
    refresh_context: RefreshContext, chain: str, chain_id: str
) -> None:
    """The stored document carries its path and parsed chain.json."""
    document = _stored(refresh_context, chain)
    assert document == {"path": chain, "chain": {"chain_id": chain_id}}, (
        f"unexpected document for {chain}: {document!r}"
    )


@then(parsers.parse('no document exists for "{chain}"'))
def document_absent(refresh_context: RefreshContext, chain: str) -> None:
    """Filtered directories never become keys."""
    keys = asyncio.run(refresh_context["store"].keys())
    key = refresh_context["descriptor"].key(chain)
    assert key not in keys, f"did not expect {key} among {keys}"


@then("the commit record names the upstream tip")
def commit_record(refresh_context: RefreshContext) -> None:
    """The commit record was read after checkout."""
    commit = _stored(refresh_context, "commit")
    assert isinstance(commit, dict), f"expected commit record, got {commit!r}"
    assert commit["oid"] == refresh_context["tip"], (
        f"expected tip {refresh_context['tip']}, got {commit['oid']}"
    )
