"""CDS Hooks Service - Clinical decision support cards from rule libraries and plan definitions."""
from __future__ import annotations

__all__ = [
    "HookRequest", "FHIRAuthorization", "ServiceDescriptor",
    "DiscoveryResponse", "CardsResponse",
]


def __getattr__(name: str):
    """Lazy imports so test collection does not build the application."""
    if name in __all__:
        from .schemas import (  # noqa: F811
            HookRequest, FHIRAuthorization, ServiceDescriptor,
            DiscoveryResponse, CardsResponse,
        )
        return locals()[name]
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
