"""
CDS Hooks Service - Data Acquisition.

Builds the clinical bundle for one hook call. Each prefetch requirement is
taken from the request's inline prefetch when supplied, otherwise fetched from
the EHR's FHIR server with `{{context.<key>}}` placeholders filled in. All
fetches for a request run concurrently and are joined all-or-nothing.
"""
from __future__ import annotations
import asyncio
from typing import Any, Callable, Mapping, Protocol, Sequence
import structlog

from .bundle import ClinicalBundle, add_to_bundle
from .errors import AcquisitionError
from .expressions import to_display_string

logger = structlog.get_logger(__name__)

ResponseTransform = Callable[[Any, list[dict[str, Any]]], list[dict[str, Any]]]


class ClinicalDataClient(Protocol):
    """Remote FHIR query interface used for acquisition."""

    async def request(self, query: str) -> Any:
        ...


def substitute_context(template: str, context: Mapping[str, Any]) -> str:
    """Fill `{{context.<key>}}` placeholders. Unknown keys stay in place."""
    query = template
    for key, value in context.items():
        query = query.replace(f"{{{{context.{key}}}}}", to_display_string(value))
    return query


class DataAcquisitionCoordinator:
    """Gathers prefetch requirements into a ClinicalBundle."""

    def __init__(self, fetch_if_no_prefetch: bool = True, ignore_errors: bool = False) -> None:
        self._fetch_if_no_prefetch = fetch_if_no_prefetch
        self._ignore_errors = ignore_errors

    async def gather(
        self,
        requirements: Mapping[str, str],
        inline_data: Mapping[str, Any] | None,
        context: Mapping[str, Any],
        client: ClinicalDataClient | None,
    ) -> ClinicalBundle:
        """Assemble inline data and fetched query results, in requirement order."""
        bundle = ClinicalBundle()
        inline_data = inline_data or {}
        queries: list[str] = []
        for name, template in requirements.items():
            if name in inline_data:
                add_to_bundle(inline_data[name], bundle)
                continue
            if not self._fetch_if_no_prefetch:
                if self._ignore_errors:
                    logger.warning("prefetch_missing_skipped", requirement=name)
                    continue
                raise AcquisitionError(
                    f"Prefetch '{name}' was not supplied and FHIR queries are disabled.",
                    details={"requirement": name},
                )
            queries.append(substitute_context(template, context))
        for result in await self._fetch_all(queries, client):
            add_to_bundle(result, bundle)
        logger.info("prefetch_gathered", requirements=len(requirements),
                    fetched=len(queries), entries=len(bundle))
        return bundle

    async def gather_supplemental(
        self,
        templates: Sequence[str],
        context: Mapping[str, Any],
        bundle: ClinicalBundle,
        client: ClinicalDataClient | None,
        transform: ResponseTransform | None = None,
    ) -> ClinicalBundle:
        """Run the configured supplemental queries and merge them into `bundle`.

        A patient id missing from the context is taken from the first Patient
        already in the bundle. With `transform`, each result and the current
        bundle resources are mapped to the bundle's new contents.
        """
        if not templates:
            return bundle
        patient_id = bundle.first_patient_id()
        queries = []
        for template in templates:
            query = substitute_context(template, context)
            if patient_id:
                query = query.replace("{{context.patientId}}", patient_id)
            logger.debug("supplemental_query_prepared", template=template, query=query)
            queries.append(query)
        for result in await self._fetch_all(queries, client):
            if transform is None:
                add_to_bundle(result, bundle)
            else:
                bundle.replace_resources(transform(result, bundle.resources))
        logger.info("supplemental_queries_gathered", queries=len(queries), entries=len(bundle))
        return bundle

    async def _fetch_all(self, queries: list[str], client: ClinicalDataClient | None) -> list[Any]:
        if not queries:
            return []
        if client is None:
            if self._ignore_errors:
                logger.warning("fhir_client_unavailable_skipped", queries=len(queries))
                return []
            raise AcquisitionError("Prefetch data is missing and no FHIR server was provided.",
                                   details={"queries": len(queries)})
        for query in queries:
            if "{{context." in query:
                logger.warning("query_placeholder_unresolved", query=query)
        results = await asyncio.gather(*(client.request(q) for q in queries), return_exceptions=True)
        kept = []
        for query, result in zip(queries, results):
            if not isinstance(result, Exception):
                kept.append(result)
            elif self._ignore_errors:
                logger.warning("fhir_query_failed_skipped", query=query, error=str(result))
            else:
                raise AcquisitionError(f"Failed to gather prefetch data: {result}",
                                       details={"query": query}, cause=result) from result
        return kept
