"""
CDS Hooks Service - Service Definitions.

A service definition names exactly one evaluation strategy: a rule library to
execute, or a plan definition to apply. The choice is fixed when the
definition is loaded; declaring both or neither is a configuration error.
"""
from __future__ import annotations
from typing import Annotated, Any, Literal
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import ConfigurationError


class LibraryReference(BaseModel):
    """Rule library to evaluate; no version means the latest loaded one."""
    kind: Literal["library"] = "library"
    id: str
    version: str | None = None
    model_config = ConfigDict(frozen=True)


class PlanReference(BaseModel):
    """Plan definition to apply, found through an applicable-plan package."""
    kind: Literal["plan"] = "plan"
    key: str
    plan_definition: str = Field(alias="planDefinition")
    model_config = ConfigDict(frozen=True, populate_by_name=True)


EvaluationStrategy = Annotated[LibraryReference | PlanReference, Field(discriminator="kind")]


class CardTemplate(BaseModel):
    """Card with `${...}` markers, shown only when its condition holds."""
    condition_expression: str | None = Field(default=None, alias="conditionExpression")
    card: dict[str, Any] = Field(default_factory=dict)
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class ServiceConfig(BaseModel):
    active: bool = True
    strategy: EvaluationStrategy
    cards: tuple[CardTemplate, ...] = ()
    model_config = ConfigDict(frozen=True)

    @model_validator(mode="before")
    @classmethod
    def select_strategy(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "strategy" in data:
            return data
        library = (data.get("cql") or {}).get("library")
        plan = data.get("apply")
        if library and plan:
            raise ValueError("CDS Hook config must not specify both a CQL library and a PlanDefinition to $apply.")
        if not library and not plan:
            raise ValueError("CDS Hook config does not specify a CQL library or a PlanDefinition to $apply.")
        strategy = {"kind": "library", **library} if library else {"kind": "plan", **plan}
        return {**data, "strategy": strategy}


class ServiceDefinition(BaseModel):
    """Immutable CDS service definition. `_config` stays private to the server."""
    id: str
    hook: str
    title: str | None = None
    description: str = ""
    prefetch: dict[str, str] = Field(default_factory=dict)
    config: ServiceConfig = Field(alias="_config")
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @classmethod
    def from_dict(cls, data: Any) -> ServiceDefinition:
        if not isinstance(data, dict):
            raise ConfigurationError("Service definition must be a JSON object.",
                                     details={"type": type(data).__name__})
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            messages = [
                f"{'.'.join(str(x) for x in err['loc'])}: {err['msg']}" if err["loc"] else err["msg"]
                for err in e.errors()
            ]
            raise ConfigurationError(messages, details={"service_id": data.get("id")}, cause=e) from e

    @property
    def strategy(self) -> LibraryReference | PlanReference:
        return self.config.strategy

    @property
    def active(self) -> bool:
        return self.config.active

    def public_view(self) -> dict[str, Any]:
        """Discovery fields only."""
        return self.model_dump(include={"id", "hook", "title", "description", "prefetch"})
