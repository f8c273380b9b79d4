"""Shallow git mirror lifecycle for a registry working copy.

The working copy is never updated incrementally: every refresh deletes it,
clones the branch at depth 1 without checking out, fetches the branch and
force-checks it out. Each git invocation runs on a worker thread with a
deadline so an unresponsive remote cannot stall the event loop or the
refresh forever.
"""

from __future__ import annotations

import asyncio
import dataclasses
import os
import shutil
import subprocess
import typing as typ

from chainmirror.logging import get_logger, log_debug

from .errors import SyncError
from .models import CommitAuthor, CommitRecord

if typ.TYPE_CHECKING:
    from pathlib import Path

    from .models import RegistryDescriptor

logger = get_logger(__name__)

DEFAULT_GIT_TIMEOUT_S = 300.0

# NUL between fields, RS between commits; git expands the %x escapes.
_FIELD_SEP = "\x00"
_RECORD_SEP = "\x1e"
_LOG_FORMAT = "%H%x00%an%x00%ae%x00%at%x00%B%x1e"
_LOG_FIELDS = 5


@dataclasses.dataclass(frozen=True, slots=True)
class WorkingCopy:
    """Handle to a checked-out working copy, valid for one refresh."""

    root: Path
    branch: str


def _parse_log(output: str, ref: str) -> list[CommitRecord]:
    commits: list[CommitRecord] = []
    for chunk in output.split(_RECORD_SEP):
        record = chunk.lstrip("\n")
        if not record:
            continue
        fields = record.split(_FIELD_SEP, _LOG_FIELDS - 1)
        if len(fields) != _LOG_FIELDS:
            raise SyncError.unparseable_log(ref)
        oid, author_name, author_email, timestamp, message = fields
        try:
            authored_at = int(timestamp)
        except ValueError as exc:
            raise SyncError.unparseable_log(ref) from exc
        commits.append(
            CommitRecord(
                oid=oid,
                author=CommitAuthor(name=author_name, email=author_email),
                timestamp=authored_at,
                message=message,
            )
        )
    if not commits:
        raise SyncError.unparseable_log(ref)
    return commits


class WorkingCopyManager:
    """Own the local git mirror for one registry."""

    def __init__(
        self,
        descriptor: RegistryDescriptor,
        *,
        git_timeout_s: float = DEFAULT_GIT_TIMEOUT_S,
    ) -> None:
        """Bind the manager to a registry and a per-command git deadline."""
        self._descriptor = descriptor
        self._git_timeout_s = git_timeout_s

    @property
    def root(self) -> Path:
        """Return the working copy directory."""
        return self._descriptor.local_path

    async def update(self) -> WorkingCopy:
        """Recreate the working copy at the tip of the configured branch.

        Raises
        ------
        SyncError
            If git is missing, the remote or ref is unreachable, or any git
            command exceeds its deadline.

        """
        await self.clone()
        await self.fetch()
        return await self.checkout()

    async def clone(self) -> None:
        """Delete any previous working copy and clone without checkout."""
        descriptor = self._descriptor
        await asyncio.to_thread(self._wipe)
        self.root.parent.mkdir(parents=True, exist_ok=True)
        await self._git(
            "clone",
            None,
            "clone",
            "--depth",
            "1",
            "--single-branch",
            "--branch",
            descriptor.branch,
            "--no-checkout",
            descriptor.source_url,
            str(self.root),
        )

    async def fetch(self) -> None:
        """Fetch the branch tip into its remote-tracking ref."""
        branch = self._descriptor.branch
        await self._git(
            "fetch",
            self.root,
            "fetch",
            "--depth",
            "1",
            "origin",
            f"+refs/heads/{branch}:refs/remotes/origin/{branch}",
        )

    async def checkout(self) -> WorkingCopy:
        """Force-checkout the branch and return the working copy handle."""
        branch = self._descriptor.branch
        await self._git(
            "checkout",
            self.root,
            "checkout",
            "--force",
            "-B",
            branch,
            f"refs/remotes/origin/{branch}",
        )
        return WorkingCopy(root=self.root, branch=branch)

    async def latest_commit(self, count: int = 1) -> CommitRecord | list[CommitRecord]:
        """Return the newest commit(s) on the remote-tracking branch.

        A single record is returned for ``count == 1``; otherwise a
        newest-first list, which a depth-1 mirror caps at one entry.
        """
        if count < 1:
            msg = f"count must be positive, got {count}"
            raise ValueError(msg)
        ref = f"refs/remotes/origin/{self._descriptor.branch}"
        output = await self._git(
            "log",
            self.root,
            "log",
            f"--max-count={count}",
            f"--format={_LOG_FORMAT}",
            ref,
            "--",
        )
        commits = _parse_log(output, ref)
        return commits[0] if count == 1 else commits

    def _wipe(self) -> None:
        if self.root.exists():
            log_debug(logger, "Removing previous working copy at %s", self.root)
            shutil.rmtree(self.root)

    async def _git(self, step: str, cwd: Path | None, *args: str) -> str:
        return await asyncio.to_thread(self._run_git, step, cwd, args)

    def _run_git(self, step: str, cwd: Path | None, args: tuple[str, ...]) -> str:
        git_executable = shutil.which("git")
        if git_executable is None:
            raise SyncError.git_missing()

        argv = [git_executable]
        if cwd is not None:
            argv.extend(["-C", str(cwd)])
        argv.extend(args)
        log_debug(logger, "Running git %s for %s", step, self._descriptor.name)
        try:
            result = subprocess.run(  # noqa: S603  # argv built from config, no shell
                argv,
                check=False,
                capture_output=True,
                text=True,
                timeout=self._git_timeout_s,
                env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
            )
        except subprocess.TimeoutExpired as exc:
            raise SyncError.timed_out(step, self._git_timeout_s) from exc
        except OSError as exc:
            raise SyncError.command_failed(step, -1, str(exc)) from exc
        if result.returncode != 0:
            raise SyncError.command_failed(step, result.returncode, result.stderr)
        return result.stdout
