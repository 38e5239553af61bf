"""
CDS Hooks Service - Clinical Bundle Assembly.
Normalizes prefetch and fetched FHIR responses into one collection bundle.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ClinicalBundle:
    """Ordered FHIR collection bundle. Each entry wraps exactly one resource."""
    entry: list[dict[str, Any]] = field(default_factory=list)

    def append(self, resource: dict[str, Any]) -> None:
        self.entry.append({"resource": resource})

    @property
    def resources(self) -> list[dict[str, Any]]:
        return [e["resource"] for e in self.entry]

    def replace_resources(self, resources: list[dict[str, Any]]) -> None:
        self.entry = [{"resource": r} for r in resources]

    def first_patient_id(self) -> str | None:
        """Id of the first Patient resource, if any."""
        for resource in self.resources:
            if resource.get("resourceType") == "Patient" and resource.get("id"):
                return str(resource["id"])
        return None

    def summary(self) -> list[str]:
        """`Type/id` labels for logging."""
        return [
            f"{r.get('resourceType', '*** no resource type ***')}/{r.get('id', '*** no resource id ***')}"
            for r in self.resources
        ]

    def to_fhir(self) -> dict[str, Any]:
        return {"resourceType": "Bundle", "type": "collection", "entry": list(self.entry)}

    def __len__(self) -> int:
        return len(self.entry)


def add_to_bundle(response: Any, bundle: ClinicalBundle) -> None:
    """Append a FHIR response to the bundle.

    Accepts a resource list, a searchset Bundle (entries without a resource are
    dropped) or a single resource. None is a no-op.
    """
    if response is None:
        return
    if isinstance(response, list):
        for resource in response:
            bundle.append(resource)
    elif response.get("resourceType") == "Bundle" and response.get("type") == "searchset":
        for entry in response.get("entry") or []:
            if entry is not None and entry.get("resource") is not None:
                bundle.append(entry["resource"])
    else:
        bundle.append(response)
