"""Shared async HTTP layer for registry backends: bounded concurrency and retries."""

from __future__ import annotations

import asyncio
import re

import httpx
import structlog

from infrabump import __version__
from infrabump.exceptions import FetchError

log = structlog.get_logger("infrabump.bump")

NEXT_LINK_RE = re.compile(r'<([^>]+)>;\s*rel="next"')

_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 1.0  # seconds


class RegistryHttp:
    """Thin async wrapper around ``httpx.AsyncClient``.

    At most *max_workers* requests are in flight at once across every
    backend sharing this instance.
    """

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        max_workers: int = 8,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_base_delay: float = _RETRY_BASE_DELAY,
    ) -> None:
        self._client = httpx.AsyncClient(
            headers={"User-Agent": f"infrabump/{__version__}"},
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )
        self._sem = asyncio.Semaphore(max_workers)
        self._retry_base_delay = retry_base_delay

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> RegistryHttp:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── public ─────────────────────────────────────────────────────────────

    async def get(
        self,
        url: str,
        *,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """GET with exponential backoff on 5xx, timeouts and connection errors.

        Responses below 500 are returned as-is; callers decide what a 4xx means.
        """
        last_exc: Exception | None = None
        for attempt in range(_MAX_RETRIES):
            try:
                async with self._sem:
                    resp = await self._client.get(url, params=params, headers=headers)
                if resp.status_code < 500:
                    return resp
                log.warning(
                    "registry.server_error",
                    url=url,
                    status=resp.status_code,
                    attempt=attempt + 1,
                    max_retries=_MAX_RETRIES,
                )
                last_exc = httpx.HTTPStatusError(
                    f"HTTP {resp.status_code}", request=resp.request, response=resp
                )
            except httpx.TransportError as exc:
                log.warning(
                    "registry.transport_error",
                    url=url,
                    error=str(exc) or type(exc).__name__,
                    attempt=attempt + 1,
                    max_retries=_MAX_RETRIES,
                )
                last_exc = exc

            if attempt < _MAX_RETRIES - 1:
                await asyncio.sleep(self._retry_base_delay * (2**attempt))

        raise last_exc  # type: ignore[misc]


def ensure_ok(resp: httpx.Response, identity_key: str) -> httpx.Response:
    """Raise :class:`FetchError` for any non-2xx response."""
    if resp.status_code == 404:
        raise FetchError(identity_key, f"not found (HTTP 404 from {resp.request.url})")
    if not resp.is_success:
        raise FetchError(identity_key, f"HTTP {resp.status_code} from {resp.request.url}")
    return resp


def parse_next_link(link_header: str) -> str | None:
    """Extract the ``next`` URL from a ``Link`` header."""
    match = NEXT_LINK_RE.search(link_header)
    return match.group(1) if match else None
