"""
CDS Hooks Service - API Request/Response Schemas.
Pydantic models for CDS Hooks discovery and service invocation.
"""
from __future__ import annotations
from typing import Any
from pydantic import BaseModel, ConfigDict, Field


class FHIRAuthorization(BaseModel):
    """OAuth 2.0 bearer access the EHR grants for FHIR queries."""
    access_token: str | None = None
    token_type: str = Field(default="Bearer")
    expires_in: int | None = None
    scope: str | None = None
    subject: str | None = None
    model_config = ConfigDict(extra="allow")


class HookRequest(BaseModel):
    """Body of a CDS service call.

    Required fields are checked by the service rather than by pydantic so that
    a missing field yields the CDS Hooks plain-text 400 instead of a 422.
    """
    hook: str | None = None
    hook_instance: str | None = Field(default=None, alias="hookInstance")
    context: dict[str, Any] | None = None
    prefetch: dict[str, Any] | None = None
    fhir_server: str | None = Field(default=None, alias="fhirServer")
    fhir_authorization: FHIRAuthorization | None = Field(default=None, alias="fhirAuthorization")
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def missing_required_fields(self) -> list[str]:
        missing = []
        if not self.hook:
            missing.append("hook")
        if not self.hook_instance:
            missing.append("hookInstance")
        if self.context is None:
            missing.append("context")
        return missing

    def prefetch_summary(self) -> dict[str, Any]:
        """Prefetch with non-Bundle resources reduced to type and id, for logging."""
        summary: dict[str, Any] = {}
        for key, value in (self.prefetch or {}).items():
            if isinstance(value, dict) and value.get("resourceType") != "Bundle":
                summary[key] = {"id": value.get("id"), "resourceType": value.get("resourceType")}
            else:
                summary[key] = value
        return summary


class ServiceDescriptor(BaseModel):
    """Public part of a service definition returned by discovery."""
    id: str
    hook: str
    title: str | None = None
    description: str = ""
    prefetch: dict[str, str] = Field(default_factory=dict)


class DiscoveryResponse(BaseModel):
    services: list[ServiceDescriptor]


class CardsResponse(BaseModel):
    """Rendered cards, returned verbatim."""
    cards: list[dict[str, Any]] = Field(default_factory=list)
