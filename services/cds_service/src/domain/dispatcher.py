"""
CDS Hooks Service - Evaluation Dispatch.

Runs one of the two evaluation strategies against an assembled bundle:
rule evaluation renders configured card templates from one subject's
expression results; plan application turns the RequestGroup actions
produced by the plan engine into cards with the plan package's formatter.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Mapping, TYPE_CHECKING
import structlog

from .bundle import ClinicalBundle
from .cards import CardRenderer
from .definitions import CardTemplate
from .engines import FHIRVersion, Library, PlanEngine, RuleEngine, SubjectResults, TerminologyProvider
from .errors import (
    CDSError, CDSValidationError, ConfigurationError, UnsupportedDataModelError,
    error_from_engine_failure,
)
from .resolver import simple_resolver

if TYPE_CHECKING:
    from ..infrastructure.registries import ApplicablePlan

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RuleEvaluation:
    library: Library
    cards: tuple[CardTemplate, ...]


@dataclass(frozen=True)
class PlanApplication:
    plan: ApplicablePlan
    plan_definition: str


Evaluation = RuleEvaluation | PlanApplication


def select_subject_results(results: SubjectResults) -> Mapping[str, Any]:
    """Results of the single subject evaluated; zero or several is a caller error."""
    subject_ids = list(results)
    if not subject_ids:
        raise CDSValidationError("Insufficient data to provide results.")
    if len(subject_ids) > 1:
        raise CDSValidationError("Data contained information about more than one patient.",
                                 details={"subjects": len(subject_ids)})
    return results[subject_ids[0]]


def _flatten_cards(formatted: list[Any]) -> list[dict[str, Any]]:
    cards: list[dict[str, Any]] = []
    for item in formatted:
        if isinstance(item, list):
            cards.extend(_flatten_cards(item))
        else:
            cards.append(item)
    return cards


class EvaluationDispatcher:
    """Routes a resolved evaluation to its strategy and returns cards."""

    def __init__(
        self,
        rule_engine: RuleEngine | None = None,
        plan_engine: PlanEngine | None = None,
        terminology: TerminologyProvider | None = None,
        card_renderer: CardRenderer | None = None,
        collapse_cards: bool = False,
        use_html: bool = False,
    ) -> None:
        self._rule_engine = rule_engine
        self._plan_engine = plan_engine
        self._terminology = terminology
        self._renderer = card_renderer or CardRenderer()
        self._collapse_cards = collapse_cards
        self._use_html = use_html

    @property
    def terminology(self) -> TerminologyProvider | None:
        return self._terminology

    async def dispatch(self, evaluation: Evaluation, bundle: ClinicalBundle) -> list[dict[str, Any]]:
        if isinstance(evaluation, RuleEvaluation):
            return self.evaluate_rules(evaluation, bundle)
        return await self.apply_plan(evaluation, bundle)

    def evaluate_rules(self, evaluation: RuleEvaluation, bundle: ClinicalBundle) -> list[dict[str, Any]]:
        if self._rule_engine is None:
            raise ConfigurationError("CDS Hook config specified a CQL library, but no rule engine is configured.")
        library = evaluation.library
        declared = library.data_model_version
        try:
            fhir_version = FHIRVersion(declared)
        except ValueError:
            raise UnsupportedDataModelError(
                "Not Implemented: Unsupported data model (must be FHIR 1.0.2, 3.0.0, 4.0.0, or 4.0.1)",
                details={"library": library.id, "declared_version": declared},
            ) from None
        patient_source = self._rule_engine.patient_source(fhir_version)
        patient_source.load_bundles([bundle.to_fhir()])
        logger.info("rule_evaluation_started", library=library.id, version=library.version,
                    fhir_version=fhir_version.value, entries=len(bundle))
        try:
            results = self._rule_engine.execute(library, self._terminology, patient_source)
        except CDSError:
            raise
        except Exception as e:
            raise error_from_engine_failure(e) from e
        return self._renderer.render(evaluation.cards, select_subject_results(results))

    async def apply_plan(self, evaluation: PlanApplication, bundle: ClinicalBundle) -> list[dict[str, Any]]:
        if self._plan_engine is None:
            raise ConfigurationError("CDS Hook config specified a PlanDefinition, but no plan engine is configured.")
        plan = evaluation.plan
        resolver = simple_resolver([*plan.cds_resources, *bundle.resources])
        reference = f"PlanDefinition/{evaluation.plan_definition}"
        matches = resolver(reference)
        if not matches:
            raise ConfigurationError(f"{reference} could not be located.", details={"plan": plan.key})
        patient_id = bundle.first_patient_id()
        if patient_id is None:
            raise CDSValidationError("Insufficient data to provide results.", details={"plan": plan.key})
        aux = {"elmJsonDependencies": plan.elm_json, "valueSetJson": plan.value_set_json}
        logger.info("plan_application_started", plan=reference, subject=f"Patient/{patient_id}")
        try:
            applied = await self._plan_engine.apply(matches[0], f"Patient/{patient_id}", resolver, aux)
        except CDSError:
            raise
        except Exception as e:
            raise error_from_engine_failure(e) from e
        request_group, *supporting = applied or [None]
        cards: list[dict[str, Any]] = []
        if request_group and request_group.get("action"):
            if plan.format_cards is None:
                raise ConfigurationError(f"Plan package '{plan.key}' has no card formatter.")
            cards = _flatten_cards(plan.format_cards(request_group["action"], supporting))
        if self._collapse_cards:
            cards = plan.collapse_into_one(cards, self._use_html)
        logger.info("plan_cards_formatted", plan=reference, cards=len(cards),
                    suggestions=sum(len(c.get("suggestions") or []) for c in cards),
                    supporting_resources=len(supporting))
        return cards
