"""Terraform module registry backend (module registry protocol v1)."""

from __future__ import annotations

import asyncio
from urllib.parse import urljoin

import structlog

from infrabump.bump.clients.http import RegistryHttp, ensure_ok
from infrabump.bump.models import DependencyIdentity
from infrabump.bump.version import VersionCatalog
from infrabump.core.config import DEFAULT_TERRAFORM_REGISTRY
from infrabump.exceptions import FetchError

log = structlog.get_logger("infrabump.bump")

_DISCOVERY_PATH = "/.well-known/terraform.json"


class TerraformRegistryClient:
    """List published versions of ``namespace/name/provider`` on a registry host.

    The module API base of each host is found once through Terraform's
    service discovery document and reused for the rest of the session.
    """

    name = "terraform-registry"

    def __init__(self, http: RegistryHttp, default_host: str = DEFAULT_TERRAFORM_REGISTRY) -> None:
        self._http = http
        self._default_host = default_host
        self._bases: dict[str, asyncio.Task[str]] = {}

    async def fetch(self, identity: DependencyIdentity) -> VersionCatalog:
        # The submodule path addresses content inside a release, never the registry.
        identity = identity.for_lookup()
        host = identity.host or self._default_host
        base = await self._modules_base(host, identity.key)
        url = f"{base}{identity.namespace}/{identity.name}/{identity.provider}/versions"
        log.debug("registry.fetch", backend=self.name, url=url)

        resp = ensure_ok(await self._http.get(url), identity.key)
        data = resp.json()
        modules = data.get("modules") if isinstance(data, dict) else None
        if not isinstance(modules, list) or not modules:
            raise FetchError(identity.key, "malformed registry response: no 'modules'")
        versions = modules[0].get("versions") if isinstance(modules[0], dict) else None
        if not isinstance(versions, list):
            raise FetchError(identity.key, "malformed registry response: no 'versions' list")
        raw = [
            v["version"]
            for v in versions
            if isinstance(v, dict) and isinstance(v.get("version"), str)
        ]
        return VersionCatalog.build(identity.key, raw)

    async def _modules_base(self, host: str, identity_key: str) -> str:
        task = self._bases.get(host)
        if task is None:
            task = asyncio.ensure_future(self._discover(host))
            self._bases[host] = task
        try:
            return await asyncio.shield(task)
        except FetchError as exc:
            raise FetchError(identity_key, exc.reason) from exc

    async def _discover(self, host: str) -> str:
        url = f"https://{host}{_DISCOVERY_PATH}"
        resp = ensure_ok(await self._http.get(url), host)
        services = resp.json()
        modules = services.get("modules.v1") if isinstance(services, dict) else None
        if not isinstance(modules, str):
            raise FetchError(host, f"{host} does not offer a module registry")
        base = urljoin(f"https://{host}/", modules)
        return base if base.endswith("/") else base + "/"
