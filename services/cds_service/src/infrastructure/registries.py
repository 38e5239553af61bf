"""
CDS Hooks Service - Content Registries.

Service definitions, compiled rule libraries and applicable-plan packages are
loaded once at startup through `load()` and are read-only afterwards.
"""
from __future__ import annotations
import importlib.util
import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any, Callable
import structlog

from ..domain.acquisition import ResponseTransform
from ..domain.definitions import ServiceDefinition
from ..domain.engines import Library
from ..domain.errors import ConfigurationError

logger = structlog.get_logger(__name__)


def _read_json(path: Path) -> Any:
    with path.open(encoding="utf-8") as f:
        return json.load(f)


def _version_key(version: str | None) -> tuple[tuple[int, Any], ...]:
    parts = (version or "").split(".")
    return tuple((0, int(p)) if p.isdigit() else (-1, p) for p in parts)


class ServiceRegistry:
    """CDS service definitions keyed by id."""

    def __init__(self, definitions: list[ServiceDefinition] | None = None) -> None:
        self._services: dict[str, ServiceDefinition] = {}
        for definition in definitions or []:
            self._services[definition.id] = definition

    def load(self, path: Path | str) -> int:
        """Load every `*.json` definition under `path`; invalid files are logged and skipped."""
        folder = Path(path)
        if not folder.is_dir():
            logger.error("service_folder_invalid", path=str(folder))
            return 0
        loaded = 0
        for file in sorted(folder.glob("*.json")):
            try:
                definition = ServiceDefinition.from_dict(_read_json(file))
            except ConfigurationError:
                logger.error("service_definition_rejected", file=file.name)
                continue
            except (OSError, ValueError) as e:
                logger.error("service_definition_unreadable", file=file.name, error=str(e))
                continue
            self._services[definition.id] = definition
            loaded += 1
        logger.info("services_loaded", path=str(folder), count=loaded)
        return loaded

    def find(self, service_id: str) -> ServiceDefinition | None:
        return self._services.get(service_id)

    def all(self, active_only: bool = True) -> list[ServiceDefinition]:
        return [s for s in self._services.values() if s.active or not active_only]

    def __len__(self) -> int:
        return len(self._services)


class LibraryRegistry:
    """Compiled rule libraries keyed by identifier id and version."""

    def __init__(self, libraries: list[Library] | None = None) -> None:
        self._libraries: dict[str, dict[str | None, Library]] = {}
        for library in libraries or []:
            self.add(library)

    def add(self, library: Library) -> None:
        self._libraries.setdefault(library.id, {})[library.version] = library

    def load(self, path: Path | str) -> int:
        """Load every ELM JSON file found below `path`."""
        folder = Path(path)
        if not folder.is_dir():
            logger.error("library_folder_invalid", path=str(folder))
            return 0
        loaded = 0
        for file in sorted(folder.rglob("*.json")):
            try:
                self.add(Library.from_elm(_read_json(file)))
            except (OSError, ValueError, AttributeError) as e:
                logger.warning("library_file_skipped", file=str(file), error=str(e))
                continue
            loaded += 1
        logger.info("libraries_loaded", path=str(folder), count=loaded)
        return loaded

    def resolve(self, library_id: str, version: str) -> Library | None:
        return self._libraries.get(library_id, {}).get(version)

    def resolve_latest(self, library_id: str) -> Library | None:
        versions = self._libraries.get(library_id)
        if not versions:
            return None
        return versions[max(versions, key=_version_key)]

    def __len__(self) -> int:
        return sum(len(v) for v in self._libraries.values())


CardFormatter = Callable[[list[dict[str, Any]], list[dict[str, Any]]], list[Any]]
CardCollapser = Callable[[list[dict[str, Any]], bool], list[dict[str, Any]]]


def _keep_cards(cards: list[dict[str, Any]], use_html: bool) -> list[dict[str, Any]]:
    return cards


@dataclass(frozen=True)
class ApplicablePlan:
    """Everything needed to $apply one packaged PlanDefinition."""
    key: str
    elm_json: dict[str, Any] = field(default_factory=dict, repr=False)
    cds_resources: list[dict[str, Any]] = field(default_factory=list, repr=False)
    value_set_json: Any = field(default=None, repr=False)
    prefetch: dict[str, str] = field(default_factory=dict)
    format_cards: CardFormatter | None = field(default=None, repr=False)
    collapse_into_one: CardCollapser = field(default=_keep_cards, repr=False)
    translate_response: ResponseTransform | None = field(default=None, repr=False)

    @classmethod
    def from_module(cls, key: str, module: Any) -> ApplicablePlan:
        return cls(
            key=key,
            elm_json=getattr(module, "elm_json", {}),
            cds_resources=list(getattr(module, "cds_resources", [])),
            value_set_json=getattr(module, "value_set_json", None),
            prefetch=dict(getattr(module, "prefetch", {})),
            format_cards=getattr(module, "format_cards", None),
            collapse_into_one=getattr(module, "collapse_into_one", _keep_cards),
            translate_response=getattr(module, "translate_response", None),
        )


PLAN_MODULE_PREFIX = "cds_plan_"


def _import_plan_package(package: Path) -> ModuleType:
    """Import a plan folder as its own module, never shadowed by an installed one."""
    name = f"{PLAN_MODULE_PREFIX}{package.name}"
    spec = importlib.util.spec_from_file_location(
        name, package / "__init__.py", submodule_search_locations=[str(package)])
    if spec is None or spec.loader is None:
        raise ImportError(f"cannot load plan package from {package}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[name] = module
    try:
        spec.loader.exec_module(module)
    except Exception:
        sys.modules.pop(name, None)
        raise
    return module


class ApplicablePlanRegistry:
    """Plan packages keyed by folder name.

    Each sub-folder of the plans directory is an importable package exposing
    `elm_json`, `cds_resources`, `value_set_json`, `prefetch`, `format_cards`
    and optionally `collapse_into_one` and `translate_response`.
    """

    def __init__(self, plans: list[ApplicablePlan] | None = None) -> None:
        self._plans: dict[str, ApplicablePlan] = {p.key: p for p in plans or []}

    def load(self, path: Path | str) -> int:
        folder = Path(path)
        if not folder.is_dir():
            logger.error("plan_folder_invalid", path=str(folder))
            return 0
        loaded = 0
        for package in sorted(p for p in folder.iterdir() if (p / "__init__.py").is_file()):
            try:
                module = _import_plan_package(package)
            except Exception as e:
                logger.error("plan_package_import_failed", package=package.name, error=str(e))
                continue
            self._plans[package.name] = ApplicablePlan.from_module(package.name, module)
            loaded += 1
        logger.info("plans_loaded", path=str(folder), count=loaded)
        return loaded

    def get(self, key: str) -> ApplicablePlan | None:
        return self._plans.get(key)

    def __len__(self) -> int:
        return len(self._plans)
