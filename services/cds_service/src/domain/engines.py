"""
CDS Hooks Service - Engine Interfaces.
Contracts for the external rule engine, plan-application engine and
terminology provider, plus the compiled rule library they share.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping, Protocol, runtime_checkable

FHIR_MODEL_URL = "http://hl7.org/fhir"

ResourceResolver = Callable[[str], list[dict[str, Any]]]
SubjectResults = Mapping[str, Mapping[str, Any]]


class FHIRVersion(str, Enum):
    """FHIR data-model versions a rule library may declare."""
    DSTU2 = "1.0.2"
    STU3 = "3.0.0"
    R4_0_0 = "4.0.0"
    R4 = "4.0.1"


@dataclass(frozen=True)
class Library:
    """A compiled rule library (ELM JSON)."""
    id: str
    version: str | None
    elm: dict[str, Any] = field(repr=False, hash=False, compare=False)

    @classmethod
    def from_elm(cls, elm: dict[str, Any]) -> Library:
        identifier = elm.get("library", {}).get("identifier", {})
        if not identifier.get("id"):
            raise ValueError("ELM library has no identifier")
        return cls(id=identifier["id"], version=identifier.get("version"), elm=elm)

    @property
    def data_model_version(self) -> str | None:
        """Version of the FHIR model the library is written against."""
        usings = self.elm.get("library", {}).get("usings", {}).get("def", [])
        for using in usings:
            if FHIR_MODEL_URL in (using.get("url"), using.get("uri")) or using.get("localIdentifier") == "FHIR":
                return using.get("version")
        return None

    @property
    def value_set_refs(self) -> list[dict[str, Any]]:
        return self.elm.get("library", {}).get("valueSets", {}).get("def", [])


class PatientSource(Protocol):
    """Data-model binding that feeds bundles to the rule engine."""

    def load_bundles(self, bundles: list[dict[str, Any]]) -> None:
        ...


@runtime_checkable
class TerminologyProvider(Protocol):
    """Code service consulted by the rule engine for value-set membership."""

    def find_value_set(self, oid: str, version: str | None = None) -> Any:
        ...


class RuleEngine(Protocol):
    """Executes a rule library against patient data."""

    def patient_source(self, version: FHIRVersion) -> PatientSource:
        ...

    def execute(self, library: Library, terminology: TerminologyProvider | None,
                patient_source: PatientSource) -> SubjectResults:
        """Return expression results keyed by subject id, then expression name."""
        ...


class PlanEngine(Protocol):
    """Applies a PlanDefinition for one subject."""

    async def apply(self, plan: dict[str, Any], subject_reference: str,
                    resolver: ResourceResolver, aux: dict[str, Any]) -> list[dict[str, Any]]:
        """Return the RequestGroup followed by the resources its actions reference."""
        ...
