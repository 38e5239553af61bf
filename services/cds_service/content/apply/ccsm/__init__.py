"""Cervical cancer screening and management plan package."""
from __future__ import annotations
from typing import Any

PLAN_DEFINITION_ID = "CervicalCancerScreeningAndManagementClinicalDecisionSupport"

elm_json: dict[str, Any] = {
    "OrderSetLibrary": {
        "library": {
            "identifier": {"id": "OrderSetLibrary", "version": "1.0.0"},
            "usings": {"def": [
                {"localIdentifier": "System", "uri": "urn:hl7-org:elm-types:r1"},
                {"localIdentifier": "FHIR", "uri": "http://hl7.org/fhir", "version": "4.0.1"},
            ]},
            "statements": {"def": []},
        }
    }
}

cds_resources: list[dict[str, Any]] = [
    {
        "resourceType": "PlanDefinition",
        "id": PLAN_DEFINITION_ID,
        "url": f"http://OUR-PLACEHOLDER-URL.com/PlanDefinition/{PLAN_DEFINITION_ID}",
        "status": "draft",
        "title": "Cervical Cancer Screening and Management",
        "library": ["http://OUR-PLACEHOLDER-URL.com/Library/OrderSetLibrary"],
        "action": [],
    }
]

value_set_json: dict[str, Any] = {}

prefetch: dict[str, str] = {
    "Patient": "Patient/{{context.patientId}}",
    "Observations": "Observation?patient={{context.patientId}}",
    "DiagnosticReports": "DiagnosticReport?patient={{context.patientId}}",
    "Procedures": "Procedure?patient={{context.patientId}}",
}

INDICATOR_BY_PRIORITY = {"stat": "critical", "asap": "warning", "urgent": "warning"}


def _suggestion(action: dict[str, Any], resources: list[dict[str, Any]]) -> dict[str, Any] | None:
    reference = (action.get("resource") or {}).get("reference")
    if not reference:
        return None
    resource_type, _, resource_id = reference.partition("/")
    for resource in resources:
        if resource.get("resourceType") == resource_type and resource.get("id") == resource_id:
            return {
                "label": action.get("title") or resource_type,
                "actions": [{"type": "create", "description": action.get("description", ""),
                             "resource": resource}],
            }
    return None


def format_cards(actions: list[dict[str, Any]], resources: list[dict[str, Any]]) -> list[Any]:
    """One card per leaf action; grouped actions produce nested lists."""
    cards: list[Any] = []
    for action in actions:
        if action.get("action"):
            cards.append(format_cards(action["action"], resources))
            continue
        suggestion = _suggestion(action, resources)
        cards.append({
            "summary": action.get("title", "Recommendation"),
            "detail": action.get("description", ""),
            "indicator": INDICATOR_BY_PRIORITY.get(action.get("priority", ""), "info"),
            "source": {"label": "Cervical Cancer Screening and Management CDS"},
            "suggestions": [suggestion] if suggestion else [],
        })
    return cards


def collapse_into_one(cards: list[dict[str, Any]], use_html: bool = False) -> list[dict[str, Any]]:
    """Merge all cards into a single card listing every recommendation."""
    if len(cards) <= 1:
        return cards
    separator = "<br/>" if use_html else "\n\n"
    return [{
        "summary": "Cervical Cancer Screening and Management",
        "detail": separator.join(f"{c.get('summary', '')}: {c.get('detail', '')}" for c in cards),
        "indicator": "info",
        "source": {"label": "Cervical Cancer Screening and Management CDS"},
        "suggestions": [s for c in cards for s in c.get("suggestions") or []],
    }]
