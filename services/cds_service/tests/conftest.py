"""
Pytest configuration and fixtures for CDS Hooks service tests.
"""
from __future__ import annotations
import json
from pathlib import Path
from typing import Any

import pytest

from services.cds_service.src.domain.definitions import ServiceDefinition
from services.cds_service.src.domain.engines import Library
from services.cds_service.src.infrastructure.registries import (
    ApplicablePlan, ApplicablePlanRegistry, LibraryRegistry, ServiceRegistry,
)

CONTENT_DIR = Path(__file__).parent.parent / "content"


def load_content(*parts: str) -> Any:
    with (CONTENT_DIR.joinpath(*parts)).open(encoding="utf-8") as f:
        return json.load(f)


@pytest.fixture
def patient() -> dict[str, Any]:
    return {"resourceType": "Patient", "id": "123", "gender": "female", "birthDate": "1970-01-01"}


@pytest.fixture
def condition() -> dict[str, Any]:
    return {"resourceType": "Condition", "id": "c1", "subject": {"reference": "Patient/123"}}


@pytest.fixture
def statin_library() -> Library:
    """Compiled StatinUse library from the sample content."""
    return Library.from_elm(load_content("libraries", "StatinUse.json"))


@pytest.fixture
def statin_definition() -> ServiceDefinition:
    return ServiceDefinition.from_dict(load_content("services", "statin-use.json"))


@pytest.fixture
def plan_definition() -> ServiceDefinition:
    return ServiceDefinition.from_dict(load_content("services", "cervical-cancer-management.json"))


@pytest.fixture
def plan_resource() -> dict[str, Any]:
    return {"resourceType": "PlanDefinition", "id": "ScreeningPlan", "action": []}


@pytest.fixture
def applicable_plan(plan_resource) -> ApplicablePlan:
    """Plan package with a formatter that makes one card per action."""
    def format_cards(actions, resources):
        return [
            {"summary": a["title"], "indicator": "info", "source": {"label": "Plan"},
             "suggestions": [{"label": r["resourceType"]} for r in resources]}
            for a in actions
        ]

    def collapse_into_one(cards, use_html):
        separator = "<br/>" if use_html else "\n"
        return [{"summary": separator.join(c["summary"] for c in cards), "indicator": "info",
                 "source": {"label": "Plan"},
                 "suggestions": [s for c in cards for s in c["suggestions"]]}]

    return ApplicablePlan(
        key="screening",
        elm_json={"ScreeningLibrary": {"library": {}}},
        cds_resources=[plan_resource],
        value_set_json={"vs": []},
        prefetch={"Patient": "Patient/{{context.patientId}}"},
        format_cards=format_cards,
        collapse_into_one=collapse_into_one,
    )


@pytest.fixture
def service_registry(statin_definition, plan_definition) -> ServiceRegistry:
    return ServiceRegistry([statin_definition, plan_definition])


@pytest.fixture
def library_registry(statin_library) -> LibraryRegistry:
    return LibraryRegistry([statin_library])


@pytest.fixture
def plan_registry(applicable_plan) -> ApplicablePlanRegistry:
    return ApplicablePlanRegistry([ApplicablePlan(
        key="ccsm",
        cds_resources=[{"resourceType": "PlanDefinition",
                        "id": "CervicalCancerScreeningAndManagementClinicalDecisionSupport"}],
        prefetch=applicable_plan.prefetch,
        format_cards=applicable_plan.format_cards,
        collapse_into_one=applicable_plan.collapse_into_one,
    )])


@pytest.fixture
def hook_request_body(patient) -> dict[str, Any]:
    """A patient-view call with all statin prefetch supplied inline."""
    return {
        "hook": "patient-view",
        "hookInstance": "d1577c69-dfbe-44ad-ba6d-3e05e953b2ea",
        "context": {"userId": "Practitioner/example", "patientId": "123"},
        "prefetch": {
            "Patient": patient,
            "Conditions": {"resourceType": "Bundle", "type": "searchset", "entry": []},
            "Observations": {"resourceType": "Bundle", "type": "searchset", "entry": []},
        },
    }
