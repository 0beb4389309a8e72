"""ResolutionCache — session-scoped, single-flight memo of registry fetches."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from infrabump.bump.models import DependencyIdentity
from infrabump.bump.version import VersionCatalog
from infrabump.exceptions import FetchError

log = structlog.get_logger("infrabump.bump")

FetchResult = VersionCatalog | FetchError
Fetcher = Callable[[DependencyIdentity], Awaitable[FetchResult]]
BackendOf = Callable[[DependencyIdentity], str]


class ResolutionCache:
    """Memoizes ``fetch`` per ``(backend, identity)`` for one scan session.

    Concurrent callers asking for the same key share one in-flight task, so
    the underlying fetcher runs at most once per key. Failures are cached
    like successes. The fetcher must return a :class:`FetchError` value
    rather than raise.
    """

    def __init__(self, fetcher: Fetcher, backend_of: BackendOf) -> None:
        self._fetcher = fetcher
        self._backend_of = backend_of
        self._entries: dict[tuple[str, str], asyncio.Task[FetchResult]] = {}
        self.fetch_count = 0
        self.hit_count = 0

    def key_for(self, identity: DependencyIdentity) -> tuple[str, str]:
        lookup = identity.for_lookup()
        return (self._backend_of(lookup), lookup.key)

    async def get_or_fetch(self, identity: DependencyIdentity) -> FetchResult:
        key = self.key_for(identity)
        # No await between lookup and insert: the first caller owns the fetch.
        task = self._entries.get(key)
        if task is None:
            self.fetch_count += 1
            task = asyncio.ensure_future(self._fetcher(identity.for_lookup()))
            self._entries[key] = task
        else:
            self.hit_count += 1
            log.debug("cache.hit", backend=key[0], key=key[1])
        # Shield so one cancelled waiter does not cancel the shared fetch.
        return await asyncio.shield(task)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, identity: DependencyIdentity) -> bool:
        return self.key_for(identity) in self._entries
