"""
Tests for the version service client.
"""
import httpx
import pytest

from dbaas_controller.exceptions import VersionResolutionError
from dbaas_controller.services.version_service import VersionServiceClient, latest

BASE_URL = "https://versions.test/v1"


def _entry(product, version, matrix):
    return {"product": product, "operator": version, "matrix": matrix}


def _client(handler, attempts=1) -> VersionServiceClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return VersionServiceClient(url=BASE_URL, http_client=http_client, attempts=attempts)


class TestLatest:
    def test_empty_map_raises(self):
        with pytest.raises(VersionResolutionError):
            latest({})

    def test_numeric_ordering(self):
        assert latest({"1.2.0": "x", "1.10.0": "y", "2.0.0": "z"}) == "2.0.0"
        assert latest({"1.2.0": "x", "1.10.0": "y"}) == "1.10.0"

    def test_unparsable_key_raises(self):
        with pytest.raises(VersionResolutionError):
            latest({"1.2.0": "x", "latest": "y"})


class TestLatestOperatorVersions:
    @pytest.mark.asyncio
    async def test_single_entry(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/pmm-server/2.26.0"
            return httpx.Response(200, json={"versions": [_entry("pmm-server", "2.26.0", {
                "pxcOperator": {"1.9.0": {}, "1.10.0": {}},
                "psmdbOperator": {"1.11.0": {}, "1.12.0": {}},
            })]})

        async with _client(handler) as client:
            versions = await client.latest_operator_versions("2.26.0")
        assert versions.pxc == "1.10.0"
        assert versions.psmdb == "1.12.0"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("entries", [0, 2])
    async def test_ambiguous_answer_is_none(self, entries):
        body = {"versions": [_entry("pmm-server", "2.26.0", {}) for _ in range(entries)]}
        async with _client(lambda request: httpx.Response(200, json=body)) as client:
            assert await client.latest_operator_versions("2.26.0") is None

    @pytest.mark.asyncio
    async def test_empty_pmm_version_raises(self):
        async with _client(lambda request: httpx.Response(200, json={})) as client:
            with pytest.raises(VersionResolutionError):
                await client.latest_operator_versions("")

    @pytest.mark.asyncio
    async def test_missing_component_raises(self):
        body = {"versions": [_entry("pmm-server", "2.26.0", {"pxcOperator": {"1.10.0": {}}})]}
        async with _client(lambda request: httpx.Response(200, json=body)) as client:
            with pytest.raises(VersionResolutionError):
                await client.latest_operator_versions("2.26.0")


class TestRecommendedImage:
    @pytest.mark.asyncio
    async def test_newest_recommended(self):
        body = {"versions": [_entry("psmdb-operator", "1.12.0", {"backup": {
            "1.6.1": {"imagePath": "percona/percona-backup-mongodb:1.6.1", "status": "recommended"},
            "1.7.0": {"imagePath": "percona/percona-backup-mongodb:1.7.0", "status": "recommended"},
            "1.8.0": {"imagePath": "percona/percona-backup-mongodb:1.8.0", "status": "available"},
        }})]}
        async with _client(lambda request: httpx.Response(200, json=body)) as client:
            image = await client.recommended_image("psmdb-operator", "1.12.0", "backup")
        assert image == "percona/percona-backup-mongodb:1.7.0"

    @pytest.mark.asyncio
    async def test_nothing_recommended(self):
        body = {"versions": [_entry("psmdb-operator", "1.12.0", {"backup": {
            "1.8.0": {"imagePath": "percona/percona-backup-mongodb:1.8.0", "status": "available"},
        }})]}
        async with _client(lambda request: httpx.Response(200, json=body)) as client:
            with pytest.raises(VersionResolutionError):
                await client.recommended_image("psmdb-operator", "1.12.0", "backup")


class TestTransport:
    @pytest.mark.asyncio
    async def test_http_error_is_not_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503)

        async with _client(handler, attempts=3) as client:
            with pytest.raises(VersionResolutionError) as exc_info:
                await client.matrix("pmm-server")
        assert exc_info.value.details["status_code"] == 503
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_transport_error_is_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 2:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"versions": [_entry("pxc-operator", "1.10.0", {})]})

        async with _client(handler, attempts=3) as client:
            assert await client.latest_product_version("pxc-operator") == "1.10.0"
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_malformed_body(self):
        async with _client(lambda request: httpx.Response(200, text="not json")) as client:
            with pytest.raises(VersionResolutionError):
                await client.matrix("pmm-server")
