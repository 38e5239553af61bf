"""
CDS Hooks Service - Resource Reference Resolution.
"""
from __future__ import annotations
from typing import Any, Iterable

from .engines import ResourceResolver


def simple_resolver(resources: Iterable[dict[str, Any]], strip_history: bool = True) -> ResourceResolver:
    """Resolve `Type/id` or `Type` references against an in-memory pool.

    Canonical URLs ending in `Type/id` resolve too; `/_history/<v>` suffixes
    are ignored when `strip_history` is set.
    """
    pool = [r for r in resources if isinstance(r, dict)]

    def resolve(reference: str) -> list[dict[str, Any]]:
        ref = reference.split("|", 1)[0]
        if strip_history and "/_history/" in ref:
            ref = ref.split("/_history/", 1)[0]
        parts = [p for p in ref.split("/") if p]
        if len(parts) == 1:
            return [r for r in pool if r.get("resourceType") == parts[0]]
        if len(parts) < 2:
            return []
        resource_type, resource_id = parts[-2], parts[-1]
        return [
            r for r in pool
            if r.get("resourceType") == resource_type and str(r.get("id")) == resource_id
        ]

    return resolve
