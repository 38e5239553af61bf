"""
CDS Hooks Service - FastAPI Application Entry Point.
Clinical decision support over CDS Hooks: rule evaluation and plan application.
"""
from __future__ import annotations
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator
from uuid import uuid4
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
import structlog

from .config import CDSServiceConfig, get_config

logger = structlog.get_logger(__name__)


def configure_logging(settings: CDSServiceConfig) -> None:
    """Configure structured logging for the CDS Hooks service."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.debug:
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.JSONRenderer())
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level, logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _build_engine(factory: Any, name: str) -> Any:
    if factory is None:
        logger.warning("engine_not_configured", engine=name)
        return None
    engine = factory()
    logger.info("engine_configured", engine=name, type=type(engine).__name__)
    return engine


def build_cds_service(settings: CDSServiceConfig) -> Any:
    """Load the registries and wire the request pipeline."""
    from .domain.acquisition import DataAcquisitionCoordinator
    from .domain.dispatcher import EvaluationDispatcher
    from .domain.service import CDSHooksService
    from .infrastructure.fhir_client import create_fhir_client
    from .infrastructure.registries import ApplicablePlanRegistry, LibraryRegistry, ServiceRegistry

    services = ServiceRegistry()
    services.load(settings.content.services_path)
    libraries = LibraryRegistry()
    libraries.load(settings.content.libraries_path)
    plans = ApplicablePlanRegistry()
    plans.load(settings.content.plans_path)

    acquisition_settings = settings.acquisition

    def client_factory(server_url, authorization):
        return create_fhir_client(server_url, authorization,
                                  timeout_seconds=acquisition_settings.timeout_seconds,
                                  page_limit=acquisition_settings.page_limit)

    dispatcher = EvaluationDispatcher(
        rule_engine=_build_engine(settings.engines.rule_engine, "rule_engine"),
        plan_engine=_build_engine(settings.engines.plan_engine, "plan_engine"),
        terminology=_build_engine(settings.engines.terminology_provider, "terminology_provider"),
        collapse_cards=settings.cards.collapse_cards,
        use_html=settings.cards.use_html,
    )
    return CDSHooksService(
        services=services,
        libraries=libraries,
        plans=plans,
        acquisition=DataAcquisitionCoordinator(
            fetch_if_no_prefetch=acquisition_settings.fetch_if_no_prefetch,
            ignore_errors=acquisition_settings.ignore_errors,
        ),
        dispatcher=dispatcher,
        client_factory=client_factory,
        supplemental_queries=acquisition_settings.supplemental_queries,
        ignore_value_set_errors=settings.engines.ignore_value_set_errors,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager for startup/shutdown."""
    settings = get_config()
    configure_logging(settings)
    logger.info("cds_service_starting", **settings.to_dict())
    if not hasattr(app.state, "cds_service"):
        app.state.cds_service = build_cds_service(settings)
    cds_service = app.state.cds_service
    await cds_service.initialize()
    app.state.settings = settings
    logger.info("cds_service_started", environment=settings.environment)
    yield
    logger.info("cds_service_stopping")
    await cds_service.shutdown()
    logger.info("cds_service_stopped")


def create_application() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_config()
    app = FastAPI(
        title="CDS Hooks Service",
        description="CDS Hooks services backed by rule libraries and plan definitions",
        version=settings.version,
        docs_url="/docs" if settings.environment != "production" else None,
        redoc_url="/redoc" if settings.environment != "production" else None,
        openapi_url="/openapi.json" if settings.environment != "production" else None,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        expose_headers=["Origin", "Accept", "Content-Location", "Location", "X-Requested-With"],
    )
    from .api import router
    app.include_router(router, prefix="/cds-services")
    _register_middleware(app)
    _register_exception_handlers(app)
    _register_probes(app)
    return app


def _register_middleware(app: FastAPI) -> None:
    """Register request tracking middleware."""
    @app.middleware("http")
    async def request_tracking_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid4()))
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid4()))
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            correlation_id=correlation_id,
            path=request.url.path,
            method=request.method,
        )
        start_time = time.perf_counter()
        response = await call_next(request)
        process_time_ms = (time.perf_counter() - start_time) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Process-Time-Ms"] = f"{process_time_ms:.2f}"
        response.headers["Access-Control-Allow-Private-Network"] = "true"
        logger.info("request_completed", status_code=response.status_code,
                    process_time_ms=round(process_time_ms, 2))
        return response


def _register_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers. CDS clients expect plain-text errors."""
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [f"{'.'.join(str(x) for x in e['loc'])}: {e['msg']}" for e in exc.errors()]
        logger.warning("validation_error", path=request.url.path, errors=errors)
        return PlainTextResponse("Invalid request. " + "; ".join(errors),
                                 status_code=status.HTTP_400_BAD_REQUEST)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("unhandled_exception", path=request.url.path, error=str(exc), exc_type=type(exc).__name__)
        return PlainTextResponse("An unexpected error occurred",
                                 status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


def _register_probes(app: FastAPI) -> None:
    @app.get("/health", include_in_schema=False)
    async def health_check() -> dict[str, Any]:
        """Health check endpoint with service status details."""
        cds_service = getattr(app.state, "cds_service", None)
        details = await cds_service.get_status() if cds_service else {"status": "initializing"}
        return {"service": "cds-hooks-service", **details}

    @app.get("/ready", include_in_schema=False)
    async def readiness() -> JSONResponse:
        """Kubernetes readiness probe."""
        cds_service = getattr(app.state, "cds_service", None)
        if cds_service is None or not cds_service.is_initialized:
            return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"status": "not_ready"})
        return JSONResponse(status_code=status.HTTP_200_OK, content={"status": "ready"})

    @app.get("/live", include_in_schema=False)
    async def liveness() -> dict[str, str]:
        """Kubernetes liveness probe."""
        return {"status": "alive"}


app = create_application()


def run_server() -> None:
    """Run the CDS Hooks service server."""
    import uvicorn
    settings = get_config()
    uvicorn.run(
        "services.cds_service.src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=settings.debug,
    )


if __name__ == "__main__":
    run_server()
