"""Shared pytest fixtures for infrabump tests."""

from __future__ import annotations

from pathlib import Path

import pytest
import structlog

from infrabump.bump.models import DependencyIdentity
from infrabump.bump.version import VersionCatalog
from infrabump.exceptions import FetchError


class FakeSource:
    """In-memory catalog source keyed by identity key.

    Unknown keys come back as a "not found" FetchError, like a registry 404.
    """

    name = "fake"

    def __init__(self, catalogs: dict[str, list | FetchError] | None = None):
        self.catalogs = dict(catalogs or {})
        self.calls: list[str] = []

    def backend_for(self, identity: DependencyIdentity) -> FakeSource:
        return self

    async def fetch(self, identity: DependencyIdentity) -> VersionCatalog | FetchError:
        self.calls.append(identity.key)
        result = self.catalogs.get(identity.key)
        if result is None:
            return FetchError(identity.key, "not found")
        if isinstance(result, FetchError):
            return result
        return VersionCatalog.build(identity.key, result)


@pytest.fixture(autouse=True, scope="session")
def _structlog_to_stdlib():
    """Route structlog through stdlib logging so pytest captures it and stdout stays clean."""
    structlog.configure(
        processors=[structlog.processors.KeyValueRenderer()],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )
    yield
    structlog.reset_defaults()


@pytest.fixture
def fake_source():
    return FakeSource


@pytest.fixture
def write(tmp_path):
    """Write *content* to ``tmp_path / rel``, creating parent directories."""

    def _write(rel: str, content: str) -> Path:
        path = tmp_path / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content.encode("utf-8"))
        return path

    return _write
