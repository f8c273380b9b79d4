"""Unit tests for refresh observability primitives."""

from __future__ import annotations

import datetime as dt
from pathlib import Path

import pytest

from chainmirror.registry import (
    AllowlistError,
    CommitAuthor,
    CommitRecord,
    DocumentBuildError,
    ErrorCategory,
    LoggingErrorReporter,
    PublishError,
    RefreshOutcome,
    RefreshResult,
    RegistryConfigError,
    SyncError,
    SyncEventLogger,
    SyncState,
    categorize_error,
)
from chainmirror.registry.observability import SyncRunContext


class _FakeLogger:
    """Collects log calls for assertions."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, object | None]] = []

    def log(
        self,
        level: str,
        message: str,
        /,
        *,
        exc_info: object | None = None,
        stack_info: bool = False,
    ) -> str:
        self.calls.append((level, message, exc_info))
        return message


CONTEXT = SyncRunContext(
    registry="chain-registry",
    url="https://example/chain-registry",
    branch="master",
    started_at=dt.datetime(2026, 1, 2, 3, 4, 5, tzinfo=dt.UTC),
)


@pytest.mark.parametrize(
    ("error", "category"),
    [
        (SyncError.timed_out("fetch", 300), ErrorCategory.GIT),
        (AllowlistError.http_error("https://a", 404), ErrorCategory.ALLOWLIST),
        (DocumentBuildError("B", Path("/r/B"), "denied"), ErrorCategory.FILESYSTEM),
        (PublishError("r:paths", "disk full"), ErrorCategory.STORE),
        (RegistryConfigError(["bad"]), ErrorCategory.CONFIGURATION),
        (KeyError("path"), ErrorCategory.UNKNOWN),
    ],
)
def test_categorize_error(error: BaseException, category: ErrorCategory) -> None:
    """Each error family maps to its alerting category."""
    assert categorize_error(error) is category


def test_logging_error_reporter_tags_context() -> None:
    """Reported errors are logged at ERROR with the registry as context."""
    sink = _FakeLogger()
    error = SyncError.command_failed("clone", 128, "fatal: repository not found\n")

    LoggingErrorReporter(sink).notify(error, context="chain-registry")

    assert sink.calls == [
        (
            "ERROR",
            "[chain-registry] SyncError: git clone failed with exit code 128: "
            "fatal: repository not found",
            error,
        )
    ]


def test_run_started_event() -> None:
    """The start event carries registry, source and start time."""
    sink = _FakeLogger()

    SyncEventLogger(sink).log_run_started(CONTEXT)

    assert sink.calls == [
        (
            "INFO",
            "[sync.run.started] registry=chain-registry "
            "url=https://example/chain-registry branch=master "
            "started_at=2026-01-02T03:04:05+00:00",
            None,
        )
    ]


def test_run_completed_event() -> None:
    """The completion event summarises paths and the published commit."""
    sink = _FakeLogger()
    result = RefreshResult(
        registry="chain-registry",
        outcome=RefreshOutcome.SUCCEEDED,
        state=SyncState.PUBLISHING_DESCRIPTOR,
        duration=dt.timedelta(seconds=1.5),
        paths=("cosmoshub", "osmosis"),
        commit=CommitRecord(
            oid="abc",
            author=CommitAuthor(name="n", email="e"),
            timestamp=0,
            message="m",
        ),
    )

    SyncEventLogger(sink).log_run_completed(CONTEXT, result)

    assert sink.calls == [
        (
            "INFO",
            "[sync.run.completed] registry=chain-registry duration_seconds=1.500 "
            "paths_published=2 commit=abc",
            None,
        )
    ]


def test_run_failed_event() -> None:
    """The failure event names the stage, error type and category."""
    sink = _FakeLogger()
    error = AllowlistError.unreachable("https://a", 4, "HTTP 503")

    SyncEventLogger(sink).log_run_failed(
        CONTEXT, error, SyncState.FETCHING_ALLOWLIST, dt.timedelta(seconds=2)
    )

    ((level, message, _exc),) = sink.calls
    assert level == "ERROR"
    assert message == (
        "[sync.run.failed] registry=chain-registry state=fetching_allowlist "
        "duration_seconds=2.000 error_type=AllowlistError error_category=allowlist "
        "error_message=allowlist https://a unreachable after 4 attempts: HTTP 503"
    )


def test_run_skipped_event() -> None:
    """Skipped refreshes are logged at INFO with the reason."""
    sink = _FakeLogger()

    SyncEventLogger(sink).log_run_skipped("chain-registry")

    assert sink.calls == [
        (
            "INFO",
            "[sync.run.skipped] registry=chain-registry reason=refresh_in_flight",
            None,
        )
    ]
