"""Fetch the external supported-chain allowlist.

The allowlist is fetched fresh on every refresh and never cached. Transport
failures and retryable statuses are retried a bounded number of times with
exponential backoff; anything else fails the refresh, because publishing
without a valid allowlist would drop the filtering guarantee.
"""

from __future__ import annotations

import asyncio
import dataclasses
import typing as typ

import httpx
import msgspec

from chainmirror.logging import get_logger, log_warning

from .errors import AllowlistError
from .models import AllowlistEntry

logger = get_logger(__name__)

DEFAULT_ALLOWLIST_URL = (
    "https://raw.githubusercontent.com/nodejumper-org/jumper-assets/master/chains.json"
)

_RETRYABLE_STATUSES = frozenset({408, 413, 429, 500, 502, 503, 504, 521, 522, 524})
_MAX_REDIRECTS = 5


@dataclasses.dataclass(frozen=True, slots=True)
class AllowlistConfig:
    """Resilience policy for the allowlist endpoint."""

    url: str = DEFAULT_ALLOWLIST_URL
    timeout_s: float = 5.0
    retries: int = 3
    backoff_s: float = 1.0
    max_connections: int = 10
    user_agent: str = "chainmirror/0.1"


class AllowlistFetcher:
    """Retrieve and decode the supported-chain list."""

    def __init__(
        self,
        config: AllowlistConfig | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Share one pooled client across fetches unless a client is injected."""
        self._config = config or AllowlistConfig()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=self._config.timeout_s,
            max_redirects=_MAX_REDIRECTS,
            limits=httpx.Limits(max_connections=self._config.max_connections),
            headers={
                "User-Agent": self._config.user_agent,
                "Accept": "application/json",
            },
        )
        self._decoder = msgspec.json.Decoder(list[AllowlistEntry])

    @property
    def url(self) -> str:
        """Return the allowlist endpoint URL."""
        return self._config.url

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def fetch(self) -> list[AllowlistEntry]:
        """Return the allowlist entries.

        Raises
        ------
        AllowlistError
            If the endpoint keeps failing after the configured retries,
            returns a non-retryable error status, or returns a payload that
            is not a list of chain entries.

        """
        response = await self._get_with_retries()
        try:
            return self._decoder.decode(response.content)
        except (msgspec.ValidationError, msgspec.DecodeError) as exc:
            raise AllowlistError.malformed(self._config.url, exc) from exc

    async def _get_with_retries(self) -> httpx.Response:
        config = self._config
        attempts = config.retries + 1
        last_error: object = None
        for attempt in range(1, attempts + 1):
            try:
                response = await self._client.get(
                    config.url, timeout=config.timeout_s, follow_redirects=True
                )
            except httpx.TooManyRedirects as exc:
                raise AllowlistError.unreachable(config.url, attempt, exc) from exc
            except httpx.TransportError as exc:
                last_error = exc
            else:
                status = response.status_code
                if response.is_success:
                    return response
                if status not in _RETRYABLE_STATUSES:
                    raise AllowlistError.http_error(config.url, status)
                last_error = f"HTTP {status}"

            if attempt < attempts:
                delay = config.backoff_s * 2 ** (attempt - 1)
                log_warning(
                    logger,
                    "Allowlist fetch attempt %d/%d failed (%s); retrying in %.2fs",
                    attempt,
                    attempts,
                    last_error,
                    delay,
                )
                await asyncio.sleep(delay)

        raise AllowlistError.unreachable(config.url, attempts, last_error)


def chain_names(
    entries: typ.Iterable[AllowlistEntry], *, include_archived: bool
) -> frozenset[str]:
    """Return chain names from entries, dropping archived ones unless asked."""
    return frozenset(
        entry.chain_name
        for entry in entries
        if include_archived or not entry.is_archive
    )
