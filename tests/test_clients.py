"""Tests for the registry backends — HTTP is served by httpx.MockTransport."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from infrabump.bump.clients import RegistryClients
from infrabump.bump.clients.helm_index import index_url
from infrabump.bump.clients.http import RegistryHttp, ensure_ok, parse_next_link
from infrabump.bump.clients.oci import oci_repository, parse_challenge
from infrabump.bump.models import DependencyIdentity
from infrabump.bump.version import VersionCatalog
from infrabump.core.config import BumpOptions
from infrabump.exceptions import FetchError

HELM_INDEX = """\
apiVersion: v1
entries:
  postgresql:
    - version: 12.1.0
      appVersion: "15.1.0"
    - version: 12.2.0
      appVersion: "15.2.0"
    - version: not-semver
  redis:
    - version: 17.0.0
"""


# ── helpers ──────────────────────────────────────────────────────────────


def _clients(handler, **options) -> RegistryClients:
    return RegistryClients(
        BumpOptions(**options),
        transport=httpx.MockTransport(handler),
        retry_base_delay=0,
    )


def _module(source: str) -> DependencyIdentity:
    ns, name, provider = source.split("/")
    return DependencyIdentity("terraform-module", name, namespace=ns, provider=provider)


def _chart(repository: str, name: str) -> DependencyIdentity:
    return DependencyIdentity("helm-chart", name, repository=repository)


def _versions(catalog: VersionCatalog) -> list[str]:
    return [str(v) for v in catalog.versions]


# ── pure helpers ─────────────────────────────────────────────────────────


class TestHelpers:
    def test_index_url(self):
        assert index_url("https://charts.example.com") == "https://charts.example.com/index.yaml"
        assert index_url("https://charts.example.com/") == "https://charts.example.com/index.yaml"
        assert index_url("https://x.io/index.yaml") == "https://x.io/index.yaml"

    def test_oci_repository_docker_hub(self):
        assert oci_repository("oci://docker.io/org", "chart") == (
            "registry-1.docker.io",
            "org/chart",
        )

    def test_oci_repository_path_already_names_chart(self):
        assert oci_repository("oci://ghcr.io/org/chart", "chart") == ("ghcr.io", "org/chart")

    def test_oci_repository_host_only(self):
        assert oci_repository("oci://ghcr.io", "chart") == ("ghcr.io", "chart")

    def test_oci_repository_rejects_other_schemes(self):
        with pytest.raises(ValueError):
            oci_repository("https://ghcr.io/org", "chart")

    def test_parse_challenge(self):
        header = 'Bearer realm="https://auth.example.com/token",service="registry.example.com"'
        assert parse_challenge(header) == {
            "realm": "https://auth.example.com/token",
            "service": "registry.example.com",
        }
        assert parse_challenge('Basic realm="x"') is None

    def test_parse_next_link(self):
        header = '</v2/org/chart/tags/list?n=2&last=b>; rel="next"'
        assert parse_next_link(header) == "/v2/org/chart/tags/list?n=2&last=b"
        assert parse_next_link("") is None


# ── shared HTTP layer ────────────────────────────────────────────────────


class TestRegistryHttp:
    @pytest.mark.asyncio
    async def test_retry_on_server_error(self):
        calls = []

        def handler(request):
            calls.append(request.url)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, text="ok")

        async with RegistryHttp(transport=httpx.MockTransport(handler), retry_base_delay=0) as http:
            resp = await http.get("https://example.com/x")
        assert resp.status_code == 200
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_retry_exhausted(self):
        def handler(request):
            return httpx.Response(502)

        async with RegistryHttp(transport=httpx.MockTransport(handler), retry_base_delay=0) as http:
            with pytest.raises(httpx.HTTPStatusError):
                await http.get("https://example.com/x")

    @pytest.mark.asyncio
    async def test_retry_on_transport_error(self):
        calls = []

        def handler(request):
            calls.append(1)
            if len(calls) == 1:
                raise httpx.ConnectError("boom", request=request)
            return httpx.Response(200)

        async with RegistryHttp(transport=httpx.MockTransport(handler), retry_base_delay=0) as http:
            resp = await http.get("https://example.com/x")
        assert resp.status_code == 200
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(404)

        async with RegistryHttp(transport=httpx.MockTransport(handler), retry_base_delay=0) as http:
            resp = await http.get("https://example.com/x")
        assert resp.status_code == 404
        assert len(calls) == 1
        with pytest.raises(FetchError, match="404"):
            ensure_ok(resp, "key")


# ── Terraform registry ───────────────────────────────────────────────────


class TestTerraformRegistry:
    @pytest.mark.asyncio
    async def test_fetch_versions(self):
        seen = []

        def handler(request):
            seen.append(request.url.path)
            if request.url.path == "/.well-known/terraform.json":
                return httpx.Response(200, json={"modules.v1": "/v1/modules/"})
            if request.url.path == "/v1/modules/terraform-aws-modules/vpc/aws/versions":
                return httpx.Response(
                    200,
                    json={
                        "modules": [
                            {
                                "versions": [
                                    {"version": "5.0.0"},
                                    {"version": "5.1.2"},
                                    {"version": "bogus"},
                                ]
                            }
                        ]
                    },
                )
            return httpx.Response(404)

        async with _clients(handler) as clients:
            result = await clients.fetch(_module("terraform-aws-modules/vpc/aws"))
        assert isinstance(result, VersionCatalog)
        assert _versions(result) == ["5.1.2", "5.0.0"]
        assert result.skipped == 1
        assert seen[0] == "/.well-known/terraform.json"

    @pytest.mark.asyncio
    async def test_discovery_once_per_host(self):
        discovery = []

        def handler(request):
            if request.url.path == "/.well-known/terraform.json":
                discovery.append(request.url.host)
                return httpx.Response(200, json={"modules.v1": "/v1/modules/"})
            return httpx.Response(200, json={"modules": [{"versions": [{"version": "1.0.0"}]}]})

        async with _clients(handler) as clients:
            await clients.fetch(_module("a/b/aws"))
            await clients.fetch(_module("c/d/aws"))
        assert discovery == ["registry.terraform.io"]

    @pytest.mark.asyncio
    async def test_private_host_and_submodule(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            if request.url.path == "/.well-known/terraform.json":
                return httpx.Response(200, json={"modules.v1": "https://api.acme.io/modules/"})
            return httpx.Response(200, json={"modules": [{"versions": [{"version": "2.0.0"}]}]})

        identity = DependencyIdentity(
            "terraform-module",
            "network",
            namespace="acme",
            provider="aws",
            host="tf.acme.io",
            submodule="modules/sub",
        )
        async with _clients(handler) as clients:
            result = await clients.fetch(identity)
        assert _versions(result) == ["2.0.0"]
        assert seen == [
            "https://tf.acme.io/.well-known/terraform.json",
            "https://api.acme.io/modules/acme/network/aws/versions",
        ]

    @pytest.mark.asyncio
    async def test_not_found_is_fetch_error(self):
        def handler(request):
            if request.url.path == "/.well-known/terraform.json":
                return httpx.Response(200, json={"modules.v1": "/v1/modules/"})
            return httpx.Response(404)

        async with _clients(handler) as clients:
            result = await clients.fetch(_module("nope/missing/aws"))
        assert isinstance(result, FetchError)
        assert result.identity_key == "registry.terraform.io/nope/missing/aws"

    @pytest.mark.asyncio
    async def test_no_module_service(self):
        def handler(request):
            return httpx.Response(200, json={"providers.v1": "/v1/providers/"})

        async with _clients(handler) as clients:
            result = await clients.fetch(_module("a/b/aws"))
        assert isinstance(result, FetchError)
        assert "module registry" in result.reason

    @pytest.mark.asyncio
    async def test_malformed_json(self):
        def handler(request):
            if request.url.path == "/.well-known/terraform.json":
                return httpx.Response(200, json={"modules.v1": "/v1/modules/"})
            return httpx.Response(200, text="<html>")

        async with _clients(handler) as clients:
            result = await clients.fetch(_module("a/b/aws"))
        assert isinstance(result, FetchError)
        assert "malformed" in result.reason

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {"modules": [{"versions": None}]},
            {"modules": ["vpc"]},
            {"modules": [{}]},
            {"modules": [{"versions": "5.0.0"}]},
        ],
    )
    async def test_unexpected_payload_shape(self, payload):
        def handler(request):
            if request.url.path == "/.well-known/terraform.json":
                return httpx.Response(200, json={"modules.v1": "/v1/modules/"})
            return httpx.Response(200, json=payload)

        async with _clients(handler) as clients:
            result = await clients.fetch(_module("a/b/aws"))
        assert isinstance(result, FetchError)
        assert result.identity_key == "registry.terraform.io/a/b/aws"
        assert "malformed" in result.reason

    @pytest.mark.asyncio
    @pytest.mark.parametrize("exc", [TypeError("bad"), KeyError("version"), AttributeError("x")])
    async def test_backend_bug_becomes_fetch_error(self, exc):
        async with _clients(lambda request: httpx.Response(500)) as clients:
            with patch.object(clients.terraform, "fetch", AsyncMock(side_effect=exc)):
                result = await clients.fetch(_module("a/b/aws"))
        assert isinstance(result, FetchError)
        assert "malformed" in result.reason


# ── Helm repository index ────────────────────────────────────────────────


class TestHelmIndex:
    @pytest.mark.asyncio
    async def test_fetch_with_app_versions(self):
        def handler(request):
            assert str(request.url) == "https://charts.example.com/index.yaml"
            return httpx.Response(200, text=HELM_INDEX)

        async with _clients(handler) as clients:
            result = await clients.fetch(_chart("https://charts.example.com", "postgresql"))
        assert _versions(result) == ["12.2.0", "12.1.0"]
        assert result.latest().app_version == "15.2.0"
        assert result.skipped == 1

    @pytest.mark.asyncio
    async def test_index_downloaded_once_per_repository(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(200, text=HELM_INDEX)

        async with _clients(handler) as clients:
            pg = await clients.fetch(_chart("https://charts.example.com", "postgresql"))
            redis = await clients.fetch(_chart("https://charts.example.com", "redis"))
        assert _versions(pg)[0] == "12.2.0"
        assert _versions(redis) == ["17.0.0"]
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_chart_missing_from_index(self):
        def handler(request):
            return httpx.Response(200, text=HELM_INDEX)

        async with _clients(handler) as clients:
            result = await clients.fetch(_chart("https://charts.example.com", "mysql"))
        assert isinstance(result, FetchError)
        assert "not found in repository" in result.reason

    @pytest.mark.asyncio
    async def test_malformed_index(self):
        def handler(request):
            return httpx.Response(200, text="entries: [oops\n")

        async with _clients(handler) as clients:
            result = await clients.fetch(_chart("https://charts.example.com", "x"))
        assert isinstance(result, FetchError)
        assert "malformed" in result.reason

    @pytest.mark.asyncio
    async def test_unreachable_repository(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with _clients(handler) as clients:
            result = await clients.fetch(_chart("https://charts.example.com", "x"))
        assert isinstance(result, FetchError)
        assert "ConnectError" in result.reason


# ── OCI registries ───────────────────────────────────────────────────────


class TestOci:
    @pytest.mark.asyncio
    async def test_anonymous_token_and_pagination(self):
        seen = []

        def handler(request):
            seen.append((request.url.host, request.url.path))
            if request.url.host == "auth.docker.io":
                assert request.url.params["scope"] == "repository:bitnamicharts/redis:pull"
                assert request.url.params["service"] == "registry.docker.io"
                return httpx.Response(200, json={"token": "anon"})
            assert request.url.host == "registry-1.docker.io"
            assert request.url.path == "/v2/bitnamicharts/redis/tags/list"
            if request.headers.get("Authorization") != "Bearer anon":
                return httpx.Response(
                    401,
                    headers={
                        "WWW-Authenticate": (
                            'Bearer realm="https://auth.docker.io/token",'
                            'service="registry.docker.io"'
                        )
                    },
                )
            if request.url.params.get("last") == "17.1.0":
                return httpx.Response(200, json={"tags": ["18.0.0-rc.1"]})
            return httpx.Response(
                200,
                json={"name": "bitnamicharts/redis", "tags": ["17.0.0", "17.1.0", "latest"]},
                headers={
                    "Link": '</v2/bitnamicharts/redis/tags/list?n=3&last=17.1.0>; rel="next"'
                },
            )

        async with _clients(handler) as clients:
            result = await clients.fetch(_chart("oci://docker.io/bitnamicharts", "redis"))
        assert isinstance(result, VersionCatalog)
        assert _versions(result) == ["18.0.0-rc.1", "17.1.0", "17.0.0"]
        assert result.skipped == 1
        assert ("auth.docker.io", "/token") in seen

    @pytest.mark.asyncio
    async def test_supplied_token_sent_up_front(self):
        def handler(request):
            assert request.headers["Authorization"] == "Bearer secret"
            return httpx.Response(200, json={"tags": ["1.0.0"]})

        async with _clients(handler, oci_tokens={"ghcr.io": "secret"}) as clients:
            result = await clients.fetch(_chart("oci://ghcr.io/acme/charts", "app"))
        assert _versions(result) == ["1.0.0"]

    @pytest.mark.asyncio
    async def test_unauthorized_without_challenge(self):
        def handler(request):
            return httpx.Response(401)

        async with _clients(handler) as clients:
            result = await clients.fetch(_chart("oci://ghcr.io/acme", "app"))
        assert isinstance(result, FetchError)
        assert "401" in result.reason

    @pytest.mark.asyncio
    async def test_dispatch(self):
        async with _clients(lambda r: httpx.Response(404)) as clients:
            assert clients.backend_for(_chart("oci://ghcr.io/acme", "x")) is clients.oci
            assert clients.backend_for(_chart("https://charts.example.com", "x")) is clients.helm
            assert clients.backend_for(_module("a/b/aws")) is clients.terraform
