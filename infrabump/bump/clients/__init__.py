"""Registry backends and the dispatcher that picks one per dependency identity."""

from __future__ import annotations

import httpx
import structlog

from infrabump.bump.clients.base import RegistryClient
from infrabump.bump.clients.helm_index import HelmIndexClient
from infrabump.bump.clients.http import RegistryHttp
from infrabump.bump.clients.oci import OciClient
from infrabump.bump.clients.terraform_registry import TerraformRegistryClient
from infrabump.bump.models import DependencyIdentity
from infrabump.bump.version import VersionCatalog
from infrabump.core.config import BumpOptions
from infrabump.exceptions import FetchError

log = structlog.get_logger("infrabump.bump")

__all__ = [
    "HelmIndexClient",
    "OciClient",
    "RegistryClient",
    "RegistryClients",
    "RegistryHttp",
    "TerraformRegistryClient",
]


class RegistryClients:
    """Tagged dispatch over the three registry backends.

    ``terraform-module`` identities go to the Terraform registry; Helm
    charts go to OCI when their repository is an ``oci://`` reference and to
    the repository index otherwise.
    """

    def __init__(
        self,
        options: BumpOptions,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_base_delay: float | None = None,
    ) -> None:
        kwargs = {} if retry_base_delay is None else {"retry_base_delay": retry_base_delay}
        self._http = RegistryHttp(
            timeout=options.timeout,
            max_workers=options.max_workers,
            transport=transport,
            **kwargs,
        )
        self.terraform = TerraformRegistryClient(self._http, options.terraform_registry)
        self.helm = HelmIndexClient(self._http)
        self.oci = OciClient(self._http, options.oci_tokens)

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def close(self) -> None:
        await self._http.close()

    async def __aenter__(self) -> RegistryClients:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── public ─────────────────────────────────────────────────────────────

    def backend_for(self, identity: DependencyIdentity) -> RegistryClient:
        if identity.backend == "terraform-module":
            return self.terraform
        if identity.is_oci:
            return self.oci
        return self.helm

    async def fetch(self, identity: DependencyIdentity) -> VersionCatalog | FetchError:
        """Fetch a catalog; every failure comes back as a :class:`FetchError` value."""
        identity = identity.for_lookup()
        backend = self.backend_for(identity)
        try:
            catalog = await backend.fetch(identity)
        except FetchError as exc:
            error = exc
        except httpx.HTTPError as exc:
            error = FetchError(identity.key, f"{type(exc).__name__}: {exc}")
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            # JSON decoding errors and payloads of an unexpected shape.
            error = FetchError(identity.key, f"malformed registry response: {exc}")
        else:
            log.debug(
                "registry.catalog",
                backend=backend.name,
                key=identity.key,
                versions=len(catalog),
            )
            return catalog
        log.warning(
            "registry.fetch_failed", backend=backend.name, key=identity.key, error=error.reason
        )
        return error
