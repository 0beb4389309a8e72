"""OCI Distribution backend: lists a chart repository's tags."""

from __future__ import annotations

import re
from urllib.parse import urljoin

import httpx
import structlog

from infrabump.bump.clients.http import RegistryHttp, ensure_ok, parse_next_link
from infrabump.bump.models import DependencyIdentity
from infrabump.bump.version import VersionCatalog
from infrabump.exceptions import FetchError

log = structlog.get_logger("infrabump.bump")

OCI_SCHEME = "oci://"

# Docker Hub's canonical registry host.
_HOST_ALIASES = {"docker.io": "registry-1.docker.io", "index.docker.io": "registry-1.docker.io"}

_CHALLENGE_PARAM_RE = re.compile(r'(\w+)="([^"]*)"')

_MAX_PAGES = 50


def oci_repository(repository: str, chart: str) -> tuple[str, str]:
    """Split an ``oci://`` reference into ``(registry host, repository path)``.

    The path after the host is the repository when its last segment is
    already the chart name; otherwise the chart name is appended, as
    ``helm pull <ref>/<chart>`` does.
    """
    if not repository.startswith(OCI_SCHEME):
        raise ValueError(f"not an OCI reference: {repository}")
    ref = repository[len(OCI_SCHEME) :].strip("/")
    host, _, path = ref.partition("/")
    if not host:
        raise ValueError(f"OCI reference has no registry host: {repository}")
    host = _HOST_ALIASES.get(host.lower(), host)
    path = path.strip("/")
    if not path:
        return host, chart
    if path.rsplit("/", 1)[-1] == chart:
        return host, path
    return host, f"{path}/{chart}"


def parse_challenge(header: str) -> dict[str, str] | None:
    """Parse a ``WWW-Authenticate: Bearer realm=...,service=...`` challenge."""
    scheme, _, params = header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return dict(_CHALLENGE_PARAM_RE.findall(params))


class OciClient:
    """Tag listing over the OCI Distribution API.

    Anonymous pull tokens are requested on a ``401`` bearer challenge;
    tokens supplied up front (keyed by registry host) are sent directly.
    """

    name = "oci"

    def __init__(self, http: RegistryHttp, tokens: dict[str, str] | None = None) -> None:
        self._http = http
        self._tokens = dict(tokens or {})

    async def fetch(self, identity: DependencyIdentity) -> VersionCatalog:
        if not identity.repository:
            raise FetchError(identity.key, "chart has no repository")
        try:
            host, repo = oci_repository(identity.repository, identity.name)
        except ValueError as exc:
            raise FetchError(identity.key, str(exc)) from exc

        headers: dict[str, str] = {}
        token = self._tokens.get(host)
        if token:
            headers["Authorization"] = f"Bearer {token}"

        url: str | None = f"https://{host}/v2/{repo}/tags/list"
        tags: list[str] = []
        pages = 0
        while url and pages < _MAX_PAGES:
            log.debug("registry.fetch", backend=self.name, url=url)
            resp = await self._http.get(url, headers=headers)
            if resp.status_code == 401 and "Authorization" not in headers:
                anon = await self._anonymous_token(resp, repo, identity.key)
                if anon:
                    headers["Authorization"] = f"Bearer {anon}"
                    resp = await self._http.get(url, headers=headers)
            ensure_ok(resp, identity.key)

            data = resp.json()
            if not isinstance(data, dict):
                raise FetchError(identity.key, "malformed tag list response")
            page_tags = data.get("tags") or []
            if not isinstance(page_tags, list):
                raise FetchError(identity.key, "malformed tag list: 'tags' is not a list")
            tags.extend(str(t) for t in page_tags)

            next_link = parse_next_link(resp.headers.get("Link", ""))
            url = urljoin(f"https://{host}/", next_link) if next_link else None
            pages += 1

        catalog = VersionCatalog.build(identity.key, tags)
        log.debug(
            "registry.oci_tags",
            host=host,
            repository=repo,
            tags=len(tags),
            versions=len(catalog),
        )
        return catalog

    async def _anonymous_token(
        self, resp: httpx.Response, repo: str, identity_key: str
    ) -> str | None:
        challenge = parse_challenge(resp.headers.get("WWW-Authenticate", ""))
        if not challenge or "realm" not in challenge:
            return None
        params = {"scope": challenge.get("scope") or f"repository:{repo}:pull"}
        if "service" in challenge:
            params["service"] = challenge["service"]
        token_resp = await self._http.get(challenge["realm"], params=params)
        if not token_resp.is_success:
            raise FetchError(
                identity_key,
                f"anonymous token request failed (HTTP {token_resp.status_code})",
            )
        body = token_resp.json()
        if not isinstance(body, dict):
            return None
        return body.get("token") or body.get("access_token")
