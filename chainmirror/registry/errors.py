"""Errors raised while mirroring a registry into the store."""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    from pathlib import Path


class MirrorError(Exception):
    """Base class for registry mirroring errors."""


class SyncError(MirrorError):
    """Raised when a git operation on the working copy fails."""

    def __init__(
        self, message: str, *, step: str, returncode: int | None = None
    ) -> None:
        """Initialise with the git step that failed and its exit status."""
        self.step = step
        self.returncode = returncode
        super().__init__(message)

    @classmethod
    def git_missing(cls) -> SyncError:
        """Return an error for a missing ``git`` executable."""
        return cls("git executable not found on PATH", step="locate")

    @classmethod
    def command_failed(cls, step: str, returncode: int, stderr: str) -> SyncError:
        """Return an error for a git command exiting non-zero."""
        detail = stderr.strip() or "no output"
        return cls(
            f"git {step} failed with exit code {returncode}: {detail}",
            step=step,
            returncode=returncode,
        )

    @classmethod
    def timed_out(cls, step: str, timeout_s: float) -> SyncError:
        """Return an error for a git command exceeding its deadline."""
        return cls(f"git {step} exceeded deadline of {timeout_s:g}s", step=step)

    @classmethod
    def unparseable_log(cls, ref: str) -> SyncError:
        """Return an error when ``git log`` output cannot be decoded."""
        return cls(f"git log for {ref} returned no usable commits", step="log")


class AllowlistError(MirrorError):
    """Raised when the allowlist endpoint is unreachable or malformed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        """Initialise with a message and optional HTTP status code."""
        self.status_code = status_code
        super().__init__(message)

    @classmethod
    def http_error(cls, url: str, status_code: int) -> AllowlistError:
        """Return an error for a non-2xx allowlist response."""
        return cls(
            f"allowlist {url} returned HTTP {status_code}", status_code=status_code
        )

    @classmethod
    def unreachable(cls, url: str, attempts: int, reason: object) -> AllowlistError:
        """Return an error once every attempt has failed in transport."""
        return cls(f"allowlist {url} unreachable after {attempts} attempts: {reason}")

    @classmethod
    def malformed(cls, url: str, reason: object) -> AllowlistError:
        """Return an error for a payload that is not a list of chain entries."""
        return cls(f"allowlist {url} returned a malformed payload: {reason}")


class FilesystemError(MirrorError):
    """Raised when the working copy cannot be read."""

    def __init__(self, message: str, *, path: Path | None = None) -> None:
        """Initialise with the offending filesystem path."""
        self.path = path
        super().__init__(message)

    @classmethod
    def unreadable_root(cls, path: Path, reason: object) -> FilesystemError:
        """Return an error for a scan root that cannot be listed."""
        return cls(f"cannot list registry root {path}: {reason}", path=path)


class DocumentBuildError(FilesystemError):
    """Raised when a directory cannot be aggregated into a document."""

    def __init__(self, directory: str, path: Path, reason: object) -> None:
        """Initialise with the directory name being aggregated."""
        self.directory = directory
        super().__init__(
            f"failed to build document for {directory}: {reason}", path=path
        )


class PublishError(MirrorError):
    """Raised when the store rejects a write."""

    def __init__(self, key: str, reason: object) -> None:
        """Initialise with the store key whose write failed."""
        self.key = key
        super().__init__(f"failed to write {key}: {reason}")


class RegistryConfigError(MirrorError):
    """Raised when a registries file fails to load or validate."""

    def __init__(self, issues: list[str]) -> None:
        """Keep every validation issue for CLI reporting."""
        self.issues = issues
        super().__init__("; ".join(issues))
