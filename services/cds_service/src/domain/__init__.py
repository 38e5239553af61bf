"""CDS Hooks Service domain layer - Request pipeline and card rendering."""
from .acquisition import DataAcquisitionCoordinator
from .cards import CardRenderer
from .dispatcher import EvaluationDispatcher
from .service import CDSHooksService

__all__ = [
    "CDSHooksService", "DataAcquisitionCoordinator",
    "EvaluationDispatcher", "CardRenderer",
]
