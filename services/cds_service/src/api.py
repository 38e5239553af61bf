"""
CDS Hooks Service API - Discovery and service invocation endpoints.
@see https://cds-hooks.hl7.org/ for the protocol.
"""
from __future__ import annotations
from typing import Any
from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError
import structlog

from .domain.errors import CDSError, CDSValidationError
from .domain.service import CDSHooksService
from .schemas import CardsResponse, DiscoveryResponse, HookRequest

logger = structlog.get_logger(__name__)
router = APIRouter(tags=["cds-services"])


def get_cds_service(request: Request) -> CDSHooksService:
    """Dependency to get the CDS Hooks service from app state."""
    if not hasattr(request.app.state, "cds_service"):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                            detail="CDS Hooks service not initialized")
    return request.app.state.cds_service


def error_response(error: CDSError) -> PlainTextResponse:
    """CDS Hooks errors are plain text."""
    return PlainTextResponse(content=error.body, status_code=error.http_status)


@router.get("", response_model=DiscoveryResponse, status_code=status.HTTP_200_OK)
async def discover(cds_service: CDSHooksService = Depends(get_cds_service)) -> DiscoveryResponse:
    """List the active CDS services."""
    services = cds_service.discover()
    logger.debug("discovery_requested", services=len(services))
    return DiscoveryResponse.model_validate({"services": services})


@router.post("/{service_id}", response_model=CardsResponse, status_code=status.HTTP_200_OK,
             responses={code: {"content": {"text/plain": {}}} for code in (400, 404, 412, 422, 500, 501)})
async def call_service(
    service_id: str,
    body: dict[str, Any] = Body(...),
    cds_service: CDSHooksService = Depends(get_cds_service),
) -> CardsResponse | PlainTextResponse:
    """Invoke a CDS service and return its cards."""
    try:
        hook_request = HookRequest.model_validate(body)
    except ValidationError as e:
        return error_response(CDSValidationError([f"Invalid request. {err['msg']}" for err in e.errors()]))
    try:
        cards = await cds_service.call(service_id, hook_request)
    except CDSError as e:
        return error_response(e)
    return CardsResponse(cards=cards)
