"""
CDS Hooks Service - FHIR Client.
Async httpx client for the EHR's FHIR server, built from the hook request's
`fhirServer` and `fhirAuthorization` fields.
"""
from __future__ import annotations
from typing import Any
from urllib.parse import urljoin
import httpx
import structlog

from ..schemas import FHIRAuthorization

logger = structlog.get_logger(__name__)

FHIR_JSON = "application/fhir+json"


class FHIRRequestError(Exception):
    """Raised when a FHIR query fails at the transport or HTTP level."""
    def __init__(self, url: str, reason: str, status_code: int | None = None) -> None:
        self.url = url
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"FHIR request failed for {url}: {reason}")


class FHIRClient:
    """Runs FHIR read/search queries against one server.

    Search bundles are followed through `next` links (all pages when
    `page_limit` is 0) and flattened into a resource list.
    """

    def __init__(
        self,
        server_url: str,
        authorization: FHIRAuthorization | None = None,
        timeout_seconds: float = 30.0,
        page_limit: int = 0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._server_url = server_url.rstrip("/") + "/"
        self._authorization = authorization
        self._page_limit = page_limit
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            headers=self._build_headers(),
            transport=transport,
        )

    @property
    def server_url(self) -> str:
        return self._server_url

    def _build_headers(self) -> dict[str, str]:
        headers = {"Accept": FHIR_JSON}
        if self._authorization and self._authorization.access_token:
            headers["Authorization"] = f"Bearer {self._authorization.access_token}"
        return headers

    def resolve_url(self, query: str) -> str:
        """Join a relative query onto the server base; absolute URLs pass through."""
        return urljoin(self._server_url, query.lstrip("/"))

    async def request(self, query: str, flat: bool = True) -> Any:
        """Execute a query, returning a resource, a resource list or a Bundle."""
        url = self.resolve_url(query)
        payload = await self._get(url)
        if not _is_bundle(payload):
            return payload
        pages = [payload]
        next_url = _next_link(payload)
        while next_url and (self._page_limit == 0 or len(pages) < self._page_limit):
            page = await self._get(next_url)
            pages.append(page)
            next_url = _next_link(page) if _is_bundle(page) else None
        logger.debug("fhir_search_completed", url=url, pages=len(pages))
        if not flat:
            return pages[0] if len(pages) == 1 else pages
        return [
            entry["resource"]
            for page in pages
            for entry in page.get("entry") or []
            if entry and entry.get("resource") is not None
        ]

    async def _get(self, url: str) -> Any:
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FHIRRequestError(url, f"HTTP {e.response.status_code}", e.response.status_code) from e
        except httpx.HTTPError as e:
            raise FHIRRequestError(url, str(e) or type(e).__name__) from e
        try:
            return response.json() if response.content else None
        except ValueError as e:
            raise FHIRRequestError(url, "response was not valid JSON", response.status_code) from e

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> FHIRClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


def _is_bundle(payload: Any) -> bool:
    return isinstance(payload, dict) and payload.get("resourceType") == "Bundle"


def _next_link(bundle: dict[str, Any]) -> str | None:
    for link in bundle.get("link") or []:
        if link.get("relation") == "next" and link.get("url"):
            return link["url"]
    return None


def create_fhir_client(
    server_url: str | None,
    authorization: FHIRAuthorization | None = None,
    timeout_seconds: float = 30.0,
    page_limit: int = 0,
) -> FHIRClient | None:
    """Client for the request's FHIR server, or None when the request names none."""
    if not server_url:
        return None
    logger.debug("fhir_client_created", server_url=server_url,
                 authorized=bool(authorization and authorization.access_token))
    return FHIRClient(server_url, authorization, timeout_seconds=timeout_seconds, page_limit=page_limit)
