"""
Unit tests for the content registries and reference resolution.
"""
from __future__ import annotations
import json
from pathlib import Path

from services.cds_service.src.domain.engines import Library
from services.cds_service.src.domain.resolver import simple_resolver
from services.cds_service.src.infrastructure.registries import (
    ApplicablePlanRegistry, LibraryRegistry, ServiceRegistry,
)

CONTENT_DIR = Path(__file__).parent.parent / "content"


def _library(version):
    return Library.from_elm({"library": {"identifier": {"id": "Lib", "version": version}}})


class TestServiceRegistry:
    """Tests for service definition loading."""

    def test_load_sample_content(self):
        registry = ServiceRegistry()
        assert registry.load(CONTENT_DIR / "services") == 2
        assert registry.find("statin-use").hook == "patient-view"
        assert registry.find("missing") is None

    def test_invalid_definition_skipped(self, tmp_path):
        (tmp_path / "bad.json").write_text(json.dumps({"id": "bad", "hook": "patient-view", "_config": {}}))
        (tmp_path / "broken.json").write_text("{not json")
        (tmp_path / "good.json").write_text(json.dumps(
            {"id": "good", "hook": "patient-view", "_config": {"cql": {"library": {"id": "L"}}}}))
        registry = ServiceRegistry()
        assert registry.load(tmp_path) == 1
        assert registry.find("good") is not None

    def test_non_object_definition_skipped(self, tmp_path):
        (tmp_path / "list.json").write_text(json.dumps([1, 2]))
        (tmp_path / "string.json").write_text(json.dumps("statin-use"))
        assert ServiceRegistry().load(tmp_path) == 0

    def test_missing_folder(self, tmp_path):
        assert ServiceRegistry().load(tmp_path / "absent") == 0

    def test_all_filters_inactive(self, tmp_path):
        for service_id, active in (("on", True), ("off", False)):
            (tmp_path / f"{service_id}.json").write_text(json.dumps({
                "id": service_id, "hook": "patient-view",
                "_config": {"active": active, "cql": {"library": {"id": "L"}}},
            }))
        registry = ServiceRegistry()
        registry.load(tmp_path)
        assert [s.id for s in registry.all()] == ["on"]
        assert len(registry.all(active_only=False)) == 2


class TestLibraryRegistry:
    """Tests for rule library lookup."""

    def test_load_sample_content(self):
        registry = LibraryRegistry()
        assert registry.load(CONTENT_DIR / "libraries") == 1
        library = registry.resolve("StatinUse", "1.0.0")
        assert library.data_model_version == "4.0.1"
        assert library.value_set_refs[0]["name"] == "Hyperlipidemia"

    def test_resolve_exact_version(self):
        registry = LibraryRegistry([_library("1.0.0"), _library("2.0.0")])
        assert registry.resolve("Lib", "1.0.0").version == "1.0.0"
        assert registry.resolve("Lib", "3.0.0") is None

    def test_resolve_latest_uses_numeric_order(self):
        registry = LibraryRegistry([_library("1.10.0"), _library("1.9.0"), _library("1.2.0")])
        assert registry.resolve_latest("Lib").version == "1.10.0"

    def test_resolve_latest_unknown(self):
        assert LibraryRegistry().resolve_latest("Nope") is None

    def test_non_elm_files_skipped(self, tmp_path):
        (tmp_path / "notes.json").write_text(json.dumps({"hello": "world"}))
        assert LibraryRegistry().load(tmp_path) == 0


class TestApplicablePlanRegistry:
    """Tests for plan package loading."""

    def test_load_sample_content(self):
        registry = ApplicablePlanRegistry()
        assert registry.load(CONTENT_DIR / "apply") == 1
        plan = registry.get("ccsm")
        assert plan.prefetch["Patient"] == "Patient/{{context.patientId}}"
        assert plan.cds_resources[0]["resourceType"] == "PlanDefinition"
        assert plan.translate_response is None

    def test_sample_plan_formats_and_collapses(self):
        registry = ApplicablePlanRegistry()
        registry.load(CONTENT_DIR / "apply")
        plan = registry.get("ccsm")
        resources = [{"resourceType": "ServiceRequest", "id": "sr1"}]
        actions = [
            {"title": "Order HPV test", "resource": {"reference": "ServiceRequest/sr1"}, "priority": "routine"},
            {"action": [{"title": "Follow up", "priority": "urgent"}]},
        ]
        cards = plan.format_cards(actions, resources)
        assert cards[0]["suggestions"][0]["actions"][0]["resource"] == resources[0]
        assert cards[1][0]["indicator"] == "warning"
        collapsed = plan.collapse_into_one([cards[0], cards[1][0]], False)
        assert len(collapsed) == 1
        assert len(collapsed[0]["suggestions"]) == 1

    def test_folder_named_like_installed_module(self, tmp_path):
        """A plan folder is loaded from its own files even when its name is taken."""
        package = tmp_path / "json"
        package.mkdir()
        (package / "__init__.py").write_text('prefetch = {"Patient": "Patient/{{context.patientId}}"}\n')
        registry = ApplicablePlanRegistry()
        assert registry.load(tmp_path) == 1
        assert registry.get("json").prefetch == {"Patient": "Patient/{{context.patientId}}"}
        assert hasattr(json, "dumps")

    def test_broken_package_skipped(self, tmp_path):
        (tmp_path / "broken").mkdir()
        (tmp_path / "broken" / "__init__.py").write_text("raise RuntimeError('bad plan')\n")
        (tmp_path / "notes").mkdir()
        registry = ApplicablePlanRegistry()
        assert registry.load(tmp_path) == 0
        assert registry.get("broken") is None

    def test_unknown_key(self):
        assert ApplicablePlanRegistry().get("nope") is None


class TestSimpleResolver:
    """Tests for in-memory reference resolution."""

    def test_type_and_id(self, patient, condition):
        resolve = simple_resolver([patient, condition])
        assert resolve("Patient/123") == [patient]
        assert resolve("Patient/999") == []

    def test_type_only(self, patient, condition):
        assert simple_resolver([patient, condition])("Condition") == [condition]

    def test_canonical_url_and_version(self):
        plan = {"resourceType": "PlanDefinition", "id": "P1"}
        resolve = simple_resolver([plan])
        assert resolve("http://example.org/fhir/PlanDefinition/P1|1.0") == [plan]

    def test_history_suffix(self, patient):
        resolve = simple_resolver([patient])
        assert resolve("Patient/123/_history/2") == [patient]
        assert simple_resolver([patient], strip_history=False)("Patient/123/_history/2") == []
