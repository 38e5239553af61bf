"""
CDS Hooks Service - Request Pipeline.
Resolves the called service, gathers its data, dispatches evaluation and
returns the rendered cards. Every failure surfaces as a typed CDSError.
"""
from __future__ import annotations
import time
from typing import Any, Callable, Sequence, TYPE_CHECKING
import structlog

from ..schemas import FHIRAuthorization, HookRequest
from .acquisition import ClinicalDataClient, DataAcquisitionCoordinator
from .definitions import LibraryReference, ServiceDefinition
from .dispatcher import Evaluation, EvaluationDispatcher, PlanApplication, RuleEvaluation
from .errors import CDSValidationError, ConfigurationError, EngineError, ServiceNotFoundError, flatten_messages

if TYPE_CHECKING:
    from ..infrastructure.registries import ApplicablePlanRegistry, LibraryRegistry, ServiceRegistry

logger = structlog.get_logger(__name__)

ClientFactory = Callable[[str | None, FHIRAuthorization | None], ClinicalDataClient | None]


def _no_client(server_url: str | None, authorization: FHIRAuthorization | None) -> None:
    return None


class CDSHooksService:
    """Orchestrates discovery and service calls over injected registries."""

    def __init__(
        self,
        services: ServiceRegistry,
        libraries: LibraryRegistry,
        plans: ApplicablePlanRegistry,
        acquisition: DataAcquisitionCoordinator | None = None,
        dispatcher: EvaluationDispatcher | None = None,
        client_factory: ClientFactory = _no_client,
        supplemental_queries: Sequence[str] = (),
        ignore_value_set_errors: bool = False,
    ) -> None:
        self._services = services
        self._libraries = libraries
        self._plans = plans
        self._acquisition = acquisition or DataAcquisitionCoordinator()
        self._dispatcher = dispatcher or EvaluationDispatcher()
        self._client_factory = client_factory
        self._supplemental_queries = list(supplemental_queries)
        self._ignore_value_set_errors = ignore_value_set_errors
        self._initialized = False
        self._stats = {"calls": 0, "cards": 0, "failures": 0}

    async def initialize(self) -> None:
        self._initialized = True
        logger.info("cds_hooks_service_initialized", services=len(self._services),
                    libraries=len(self._libraries), plans=len(self._plans))

    async def shutdown(self) -> None:
        logger.info("cds_hooks_service_shutting_down", stats=self._stats)
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def stats(self) -> dict[str, int]:
        return dict(self._stats)

    async def get_status(self) -> dict[str, Any]:
        return {
            "status": "operational" if self._initialized else "initializing",
            "initialized": self._initialized,
            "services": len(self._services),
            "statistics": self.stats,
        }

    def discover(self) -> list[dict[str, Any]]:
        """Public descriptors of the active services."""
        return [s.public_view() for s in self._services.all(active_only=True)]

    def resolve(self, service_id: str) -> tuple[ServiceDefinition, Evaluation, dict[str, str]]:
        """Find the service, its evaluation target and its prefetch requirements."""
        definition = self._services.find(service_id)
        if definition is None:
            raise ServiceNotFoundError(service_id)
        strategy = definition.strategy
        if isinstance(strategy, LibraryReference):
            if strategy.version is None:
                library = self._libraries.resolve_latest(strategy.id)
            else:
                library = self._libraries.resolve(strategy.id, strategy.version)
            if library is None:
                raise ConfigurationError(
                    "CDS Hook config specified a CQL library, but library could not be located.",
                    details={"library": strategy.id, "version": strategy.version},
                )
            return definition, RuleEvaluation(library=library, cards=definition.config.cards), dict(definition.prefetch)
        plan = self._plans.get(strategy.key)
        if plan is None:
            raise ConfigurationError("CDS Hook config specified a PlanDefinition, but its plan package could not be located.",
                                     details={"plan": strategy.key})
        return definition, PlanApplication(plan=plan, plan_definition=strategy.plan_definition), dict(plan.prefetch)

    async def prepare_value_sets(self, evaluation: Evaluation) -> None:
        """Have the terminology provider fetch any value sets a rule library needs."""
        terminology = self._dispatcher.terminology
        ensure = getattr(terminology, "ensure_value_sets", None)
        if not isinstance(evaluation, RuleEvaluation) or ensure is None:
            return
        try:
            await ensure(evaluation.library)
        except Exception as e:
            if self._ignore_value_set_errors:
                logger.warning("value_set_errors_ignored", library=evaluation.library.id,
                               errors=flatten_messages(e))
                return
            raise EngineError(flatten_messages(e), details={"library": evaluation.library.id}, cause=e) from e

    async def call(self, service_id: str, request: HookRequest) -> list[dict[str, Any]]:
        """Handle one hook invocation and return its cards."""
        start_time = time.perf_counter()
        self._stats["calls"] += 1
        try:
            cards = await self._call(service_id, request)
        except Exception:
            self._stats["failures"] += 1
            raise
        self._stats["cards"] += len(cards)
        logger.info("cds_call_completed", service_id=service_id, cards=len(cards),
                    processing_time_ms=round((time.perf_counter() - start_time) * 1000, 2))
        return cards

    async def _call(self, service_id: str, request: HookRequest) -> list[dict[str, Any]]:
        missing = request.missing_required_fields()
        if missing:
            raise CDSValidationError(
                "Invalid request. Missing at least one required field from: hook, hookInstance, context.",
                details={"missing": missing},
            )
        definition, evaluation, requirements = self.resolve(service_id)
        await self.prepare_value_sets(evaluation)
        logger.info("cds_call_received", service_id=service_id, title=definition.title,
                    hook=request.hook, hook_instance=request.hook_instance,
                    prefetch=request.prefetch_summary())
        context = request.context or {}
        client = self._client_factory(request.fhir_server, request.fhir_authorization)
        try:
            bundle = await self._acquisition.gather(requirements, request.prefetch, context, client)
            if self._supplemental_queries:
                transform = evaluation.plan.translate_response if isinstance(evaluation, PlanApplication) else None
                await self._acquisition.gather_supplemental(
                    self._supplemental_queries, context, bundle, client, transform)
        finally:
            close = getattr(client, "close", None)
            if close is not None:
                await close()
        logger.info("bundle_assembled", service_id=service_id, resources=bundle.summary())
        return await self._dispatcher.dispatch(evaluation, bundle)
