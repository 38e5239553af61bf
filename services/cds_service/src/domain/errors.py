"""
CDS Hooks Service - Error Hierarchy.
Typed request failures, each mapped to exactly one CDS Hooks status code.
"""
from __future__ import annotations
from enum import Enum
from typing import Any, Iterable
import structlog

logger = structlog.get_logger(__name__)


class ErrorKind(str, Enum):
    """Failure classes surfaced to CDS clients."""
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    ACQUISITION = "acquisition"
    UNPROCESSABLE = "unprocessable"
    ENGINE = "engine"
    CONFIGURATION = "configuration"
    UNSUPPORTED_MODEL = "unsupported_model"


HTTP_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.ACQUISITION: 412,
    ErrorKind.UNPROCESSABLE: 422,
    ErrorKind.ENGINE: 500,
    ErrorKind.CONFIGURATION: 500,
    ErrorKind.UNSUPPORTED_MODEL: 501,
}


class CDSError(Exception):
    """Base exception for request failures. Logs itself on construction."""
    error_code: str = "CDS_ERROR"
    kind: ErrorKind = ErrorKind.ENGINE
    log_level: str = "error"

    def __init__(self, messages: str | Iterable[str], *, details: dict[str, Any] | None = None,
                 cause: BaseException | None = None) -> None:
        self.messages = [messages] if isinstance(messages, str) else [str(m) for m in messages]
        super().__init__("; ".join(self.messages))
        self.details = details or {}
        self.cause = cause
        self._log_error()

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]

    @property
    def body(self) -> str:
        """Plain-text response body."""
        return "\n".join(self.messages)

    def _log_error(self) -> None:
        log = getattr(logger, self.log_level)
        for message in self.messages:
            log("cds_error", message=message, error_code=self.error_code, kind=self.kind.value,
                status=self.http_status, **self.details)
        if self.cause is not None:
            logger.debug("cds_error_cause", cause_type=type(self.cause).__name__, cause=str(self.cause))


class CDSValidationError(CDSError):
    error_code = "INVALID_REQUEST"
    kind = ErrorKind.VALIDATION
    log_level = "warning"


class ServiceNotFoundError(CDSError):
    error_code = "SERVICE_NOT_FOUND"
    kind = ErrorKind.NOT_FOUND
    log_level = "warning"

    def __init__(self, service_id: str) -> None:
        self.service_id = service_id
        super().__init__(f"Hook not found: {service_id}", details={"service_id": service_id})

    @property
    def body(self) -> str:
        return "Not Found"


class AcquisitionError(CDSError):
    error_code = "DATA_ACQUISITION_FAILED"
    kind = ErrorKind.ACQUISITION
    log_level = "warning"


class UnprocessableInputError(CDSError):
    error_code = "UNPROCESSABLE_INPUT"
    kind = ErrorKind.UNPROCESSABLE


class EngineError(CDSError):
    error_code = "ENGINE_ERROR"
    kind = ErrorKind.ENGINE


class ConfigurationError(CDSError):
    error_code = "CONFIGURATION_ERROR"
    kind = ErrorKind.CONFIGURATION


class UnsupportedDataModelError(CDSError):
    error_code = "UNSUPPORTED_DATA_MODEL"
    kind = ErrorKind.UNSUPPORTED_MODEL


def flatten_messages(exc: BaseException) -> list[str]:
    """Expand exception groups into a flat list of leaf messages."""
    if isinstance(exc, BaseExceptionGroup):
        messages: list[str] = []
        for inner in exc.exceptions:
            messages.extend(flatten_messages(inner))
        return messages
    return [str(exc)]


def error_from_engine_failure(exc: BaseException) -> CDSError:
    """Classify an engine exception.

    Invalid values and UCUM unit problems surface as 422; the engines give no
    dedicated error type for them, so the message text is inspected.
    """
    if isinstance(exc, CDSError):
        return exc
    messages = flatten_messages(exc)
    if not isinstance(exc, BaseExceptionGroup):
        text = messages[0]
        if "invalid" in text or "UCUM" in text:
            return UnprocessableInputError(messages, cause=exc)
    return EngineError(messages, cause=exc)
