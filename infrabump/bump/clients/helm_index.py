"""Helm chart-repository backend: reads the repository's ``index.yaml``."""

from __future__ import annotations

import asyncio
from typing import Any

import structlog
import yaml

from infrabump.bump.clients.http import RegistryHttp, ensure_ok
from infrabump.bump.models import DependencyIdentity
from infrabump.bump.version import VersionCatalog
from infrabump.exceptions import FetchError

log = structlog.get_logger("infrabump.bump")


def index_url(repository: str) -> str:
    """``<repo>/index.yaml`` unless the URL already points at the index."""
    if repository.endswith("/index.yaml"):
        return repository
    return repository.rstrip("/") + "/index.yaml"


class HelmIndexClient:
    """Versions of a chart as listed in its repository index.

    Several charts often come from one repository, so each index document
    is downloaded and parsed at most once per session.
    """

    name = "helm-index"

    def __init__(self, http: RegistryHttp) -> None:
        self._http = http
        self._indexes: dict[str, asyncio.Task[dict[str, Any]]] = {}

    async def fetch(self, identity: DependencyIdentity) -> VersionCatalog:
        if not identity.repository:
            raise FetchError(identity.key, "chart has no repository")
        url = index_url(identity.repository)
        task = self._indexes.get(url)
        if task is None:
            task = asyncio.ensure_future(self._load_index(url))
            self._indexes[url] = task
        try:
            index = await asyncio.shield(task)
        except FetchError as exc:
            raise FetchError(identity.key, exc.reason) from exc

        entries = index.get("entries")
        if not isinstance(entries, dict):
            raise FetchError(identity.key, "malformed index: no 'entries' mapping")
        chart_entries = entries.get(identity.name)
        if chart_entries is None:
            raise FetchError(identity.key, f"chart {identity.name!r} not found in repository")
        if not isinstance(chart_entries, list):
            raise FetchError(identity.key, "malformed index: chart entries are not a list")

        raw: list[tuple[str, str | None]] = []
        for entry in chart_entries:
            if not isinstance(entry, dict) or entry.get("version") is None:
                continue
            app_version = entry.get("appVersion")
            raw.append(
                (str(entry["version"]), str(app_version) if app_version is not None else None)
            )
        catalog = VersionCatalog.build(identity.key, raw)
        log.debug(
            "registry.helm_index",
            chart=identity.name,
            versions=len(catalog),
            skipped=catalog.skipped,
        )
        return catalog

    async def _load_index(self, url: str) -> dict[str, Any]:
        log.debug("registry.fetch", backend=self.name, url=url)
        resp = ensure_ok(await self._http.get(url), url)
        try:
            doc = yaml.safe_load(resp.text)
        except yaml.YAMLError as exc:
            raise FetchError(url, f"malformed index YAML: {exc}") from exc
        if not isinstance(doc, dict):
            raise FetchError(url, "malformed index: top level is not a mapping")
        return doc
