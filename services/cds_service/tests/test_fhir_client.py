"""
Unit tests for the FHIR client using httpx mock transports.
"""
from __future__ import annotations
import httpx
import pytest

from services.cds_service.src.infrastructure.fhir_client import (
    FHIRClient, FHIRRequestError, create_fhir_client,
)
from services.cds_service.src.schemas import FHIRAuthorization

BASE_URL = "https://ehr.example.org/fhir"


def _searchset(resources, next_url=None):
    bundle = {"resourceType": "Bundle", "type": "searchset",
              "entry": [{"resource": r} for r in resources]}
    if next_url:
        bundle["link"] = [{"relation": "next", "url": next_url}]
    return bundle


class TestFHIRClient:
    """Tests for FHIR queries."""

    @pytest.mark.asyncio
    async def test_read_returns_resource(self, patient):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=patient)

        async with FHIRClient(BASE_URL, transport=httpx.MockTransport(handler)) as client:
            assert await client.request("Patient/123") == patient
        assert str(seen[0].url) == f"{BASE_URL}/Patient/123"
        assert seen[0].headers["Accept"] == "application/fhir+json"
        assert "Authorization" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_bearer_token_sent(self, patient):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=patient)

        auth = FHIRAuthorization(access_token="secret-token", scope="patient/*.read")
        async with FHIRClient(BASE_URL, auth, transport=httpx.MockTransport(handler)) as client:
            await client.request("Patient/123")
        assert seen[0].headers["Authorization"] == "Bearer secret-token"

    @pytest.mark.asyncio
    async def test_search_follows_next_links(self, condition):
        second = {**condition, "id": "c2"}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params.get("page") == "2":
                return httpx.Response(200, json=_searchset([second]))
            return httpx.Response(200, json=_searchset([condition], f"{BASE_URL}/Condition?patient=1&page=2"))

        async with FHIRClient(BASE_URL, transport=httpx.MockTransport(handler)) as client:
            result = await client.request("Condition?patient=1")
        assert result == [condition, second]

    @pytest.mark.asyncio
    async def test_page_limit(self, condition):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json=_searchset([condition], f"{BASE_URL}/Condition?page={len(calls) + 1}"))

        async with FHIRClient(BASE_URL, page_limit=2, transport=httpx.MockTransport(handler)) as client:
            result = await client.request("Condition")
        assert len(calls) == 2
        assert len(result) == 2

    @pytest.mark.asyncio
    async def test_unflattened_search_returns_bundle(self, condition):
        bundle = _searchset([condition])
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=bundle))
        async with FHIRClient(BASE_URL, transport=transport) as client:
            assert await client.request("Condition", flat=False) == bundle

    @pytest.mark.asyncio
    async def test_entries_without_resource_dropped(self, condition):
        bundle = {"resourceType": "Bundle", "type": "searchset", "entry": [{"resource": condition}, {}]}
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=bundle))
        async with FHIRClient(BASE_URL, transport=transport) as client:
            assert await client.request("Condition") == [condition]

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(404, json={"resourceType": "OperationOutcome"}))
        async with FHIRClient(BASE_URL, transport=transport) as client:
            with pytest.raises(FHIRRequestError) as exc_info:
                await client.request("Patient/missing")
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with FHIRClient(BASE_URL, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(FHIRRequestError) as exc_info:
                await client.request("Patient/1")
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"<html/>"))
        async with FHIRClient(BASE_URL, transport=transport) as client:
            with pytest.raises(FHIRRequestError):
                await client.request("Patient/1")

    def test_resolve_url(self):
        client = FHIRClient(BASE_URL + "/")
        assert client.resolve_url("/Patient/1") == f"{BASE_URL}/Patient/1"
        assert client.resolve_url("https://other.example.org/Patient/1") == "https://other.example.org/Patient/1"


class TestCreateFHIRClient:
    """Tests for the client factory."""

    def test_no_server_means_no_client(self):
        assert create_fhir_client(None) is None
        assert create_fhir_client("") is None

    @pytest.mark.asyncio
    async def test_client_for_server(self):
        client = create_fhir_client(BASE_URL, page_limit=3)
        assert isinstance(client, FHIRClient)
        assert client.server_url == BASE_URL + "/"
        await client.close()
