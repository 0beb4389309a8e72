"""Registry client interface shared by all version backends."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from infrabump.bump.models import DependencyIdentity
from infrabump.bump.version import VersionCatalog


@runtime_checkable
class RegistryClient(Protocol):
    """Interface that every registry backend must satisfy.

    ``fetch`` raises :class:`~infrabump.exceptions.FetchError`, ``httpx``
    errors or ``ValueError`` on failure; the dispatcher turns those into
    recorded fetch failures.
    """

    name: str

    async def fetch(self, identity: DependencyIdentity) -> VersionCatalog: ...
