"""Configuration for registries and the sync process.

Registries are declared in a YAML file::

    registries:
      - name: chain-registry
        url: https://github.com/cosmos/chain-registry
        branch: master
        exclude: [_IBC, _non-cosmos, _template, testnets]
        require: chain.json
        allowlist: by_name
      - url: https://github.com/eco-stake/validator-registry
        branch: master
        require: profile.json

Process-wide knobs come from ``CHAINMIRROR_*`` environment variables via
:meth:`SyncSettings.from_env`.
"""

from __future__ import annotations

import dataclasses as dc
import os
import re
from pathlib import Path

import msgspec
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from .aggregator import DEFAULT_MAX_CONCURRENCY
from .allowlist import DEFAULT_ALLOWLIST_URL, AllowlistConfig
from .errors import RegistryConfigError
from .models import AllowlistPolicy, LayoutVariant, RegistryDescriptor
from .working_copy import DEFAULT_GIT_TIMEOUT_S

YAML_VERSION = (1, 2)
NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class RegistryEntry(msgspec.Struct, kw_only=True, forbid_unknown_fields=True):
    """One registry as written in the registries file.

    Attributes
    ----------
    url : str
        Git URL of the upstream repository.
    branch : str
        Branch to mirror.
    name : str, optional
        Store namespace; defaults to the last segment of ``url``.
    path : str
        Directory inside the repository to scan.
    layout : LayoutVariant
        ``single_root`` or ``mainnet_testnet_split``.
    testnet_path : str
        Testnet root relative to ``path`` for the split layout.
    exclude : list[str]
        Directory names never published.
    require : str, optional
        Marker file a directory must contain to be published.
    allowlist : AllowlistPolicy
        ``none``, ``by_name`` or ``by_directory_existence``.
    include_archived : bool
        Keep archived allowlist entries under ``by_name``.

    """

    url: str
    branch: str = "master"
    name: str | None = None
    path: str = ""
    layout: LayoutVariant = LayoutVariant.SINGLE_ROOT
    testnet_path: str = "testnets"
    exclude: list[str] = msgspec.field(default_factory=list)
    require: str | None = None
    allowlist: AllowlistPolicy = AllowlistPolicy.NONE
    include_archived: bool = False

    @property
    def resolved_name(self) -> str:
        """Return the explicit name or the URL's last path segment."""
        if self.name:
            return self.name
        segment = self.url.rstrip("/").rsplit("/", 1)[-1]
        return segment.removesuffix(".git")


class RegistriesFile(msgspec.Struct, kw_only=True, forbid_unknown_fields=True):
    """Top-level structure of the registries file."""

    registries: list[RegistryEntry]


def _validate(entries: list[RegistryEntry]) -> list[str]:
    issues: list[str] = []
    seen: set[str] = set()
    for index, entry in enumerate(entries):
        name = entry.resolved_name
        label = f"registries[{index}]"
        if not entry.url.strip():
            issues.append(f"{label}: url must not be empty")
        if not entry.branch.strip():
            issues.append(f"{label}: branch must not be empty")
        if not NAME_PATTERN.match(name):
            issues.append(f"{label}: invalid registry name {name!r}")
        elif name in seen:
            issues.append(f"{label}: duplicate registry name {name!r}")
        seen.add(name)
        if Path(entry.path).is_absolute() or ".." in Path(entry.path).parts:
            issues.append(f"{label}: path must stay inside the repository")
    return issues


def load_registries(path: Path | str, *, work_dir: Path) -> list[RegistryDescriptor]:
    """Load and validate a registries file into descriptors.

    Each registry's working copy lives at ``work_dir / name``.

    Raises
    ------
    RegistryConfigError
        If the file cannot be parsed or fails validation.

    """
    yaml = YAML(typ="safe")
    yaml.version = YAML_VERSION
    yaml.allow_duplicate_keys = False
    try:
        loaded = yaml.load(Path(path).read_text(encoding="utf-8"))
    except (OSError, YAMLError) as exc:
        raise RegistryConfigError([f"failed to parse YAML: {exc}"]) from exc

    if loaded is None:
        raise RegistryConfigError(["registries file is empty"])

    try:
        parsed = msgspec.convert(loaded, type=RegistriesFile)
    except msgspec.ValidationError as exc:
        raise RegistryConfigError([f"schema validation failed: {exc}"]) from exc

    issues = _validate(parsed.registries)
    if issues:
        raise RegistryConfigError(issues)

    return [
        RegistryDescriptor(
            name=entry.resolved_name,
            source_url=entry.url,
            branch=entry.branch,
            local_path=work_dir / entry.resolved_name,
            layout_variant=entry.layout,
            exclude_set=frozenset(entry.exclude),
            required_marker_file=entry.require,
            allowlist_policy=entry.allowlist,
            include_archived=entry.include_archived,
            subpath=entry.path,
            testnet_subpath=entry.testnet_path,
        )
        for entry in parsed.registries
    ]


@dc.dataclass(frozen=True, slots=True)
class SyncSettings:
    """Process-wide settings for refreshing registries.

    Attributes
    ----------
    allowlist_url
        Endpoint serving the supported-chain list.
    http_timeout_s
        Timeout for each allowlist request. Default 5 seconds.
    http_retries
        Retries after a failed allowlist request. Default 3.
    git_timeout_s
        Deadline for each git command. Default 300 seconds.
    max_concurrency
        Upper bound on concurrent document builds. Default 16.
    refresh_interval_s
        Delay between scheduler rounds. Default 900 seconds.
    work_dir
        Parent directory of every working copy.

    """

    allowlist_url: str = DEFAULT_ALLOWLIST_URL
    http_timeout_s: float = 5.0
    http_retries: int = 3
    git_timeout_s: float = DEFAULT_GIT_TIMEOUT_S
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    refresh_interval_s: float = 900.0
    work_dir: Path = dc.field(default_factory=lambda: Path(".mirrors"))

    def allowlist_config(self) -> AllowlistConfig:
        """Return the allowlist resilience policy for these settings."""
        return AllowlistConfig(
            url=self.allowlist_url,
            timeout_s=self.http_timeout_s,
            retries=self.http_retries,
        )

    @staticmethod
    def _parse_int(env_var: str, default: int, *, minimum: int) -> int:
        """Read an integer env var, falling back to a default when unset."""
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            return default
        try:
            value = int(raw)
        except ValueError as exc:
            msg = f"{env_var} must be an integer, got: {raw!r}"
            raise ValueError(msg) from exc
        if value < minimum:
            msg = f"{env_var} must be at least {minimum}, got: {value}"
            raise ValueError(msg)
        return value

    @staticmethod
    def _parse_seconds(env_var: str, default: float) -> float:
        """Read a positive duration in seconds, falling back to a default."""
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            return default
        try:
            value = float(raw)
        except ValueError as exc:
            msg = f"{env_var} must be a number of seconds, got: {raw!r}"
            raise ValueError(msg) from exc
        if value <= 0:
            msg = f"{env_var} must be positive, got: {value}"
            raise ValueError(msg)
        return value

    @classmethod
    def from_env(cls) -> SyncSettings:
        """Create settings from environment variables.

        Reads ``CHAINMIRROR_ALLOWLIST_URL``, ``CHAINMIRROR_HTTP_TIMEOUT_S``,
        ``CHAINMIRROR_HTTP_RETRIES``, ``CHAINMIRROR_GIT_TIMEOUT_S``,
        ``CHAINMIRROR_MAX_CONCURRENCY``, ``CHAINMIRROR_REFRESH_INTERVAL_S``
        and ``CHAINMIRROR_WORK_DIR``; unset or blank variables keep their
        defaults.

        Raises
        ------
        ValueError
            If a numeric variable does not parse or is out of range.

        """
        defaults = cls()
        allowlist_url = (
            os.environ.get("CHAINMIRROR_ALLOWLIST_URL", "").strip()
            or defaults.allowlist_url
        )
        raw_work_dir = os.environ.get("CHAINMIRROR_WORK_DIR", "").strip()
        return cls(
            allowlist_url=allowlist_url,
            http_timeout_s=cls._parse_seconds(
                "CHAINMIRROR_HTTP_TIMEOUT_S", defaults.http_timeout_s
            ),
            http_retries=cls._parse_int(
                "CHAINMIRROR_HTTP_RETRIES", defaults.http_retries, minimum=0
            ),
            git_timeout_s=cls._parse_seconds(
                "CHAINMIRROR_GIT_TIMEOUT_S", defaults.git_timeout_s
            ),
            max_concurrency=cls._parse_int(
                "CHAINMIRROR_MAX_CONCURRENCY", defaults.max_concurrency, minimum=1
            ),
            refresh_interval_s=cls._parse_seconds(
                "CHAINMIRROR_REFRESH_INTERVAL_S", defaults.refresh_interval_s
            ),
            work_dir=Path(raw_work_dir) if raw_work_dir else defaults.work_dir,
        )
