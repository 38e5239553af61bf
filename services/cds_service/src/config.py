"""
CDS Hooks Service - Centralized Configuration.
Environment-based settings for content paths, data acquisition and engines.
"""
from __future__ import annotations
from functools import lru_cache
from typing import Annotated, Any, Literal
from pydantic import Field, ImportString, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
import structlog

logger = structlog.get_logger(__name__)


class ContentSettings(BaseSettings):
    """Locations of service definitions, rule libraries and plan packages."""
    services_path: str = Field(default="services/cds_service/content/services")
    libraries_path: str = Field(default="services/cds_service/content/libraries")
    plans_path: str = Field(default="services/cds_service/content/apply")
    model_config = SettingsConfigDict(env_prefix="CDS_CONTENT_", env_file=".env", extra="ignore")


class AcquisitionSettings(BaseSettings):
    """Prefetch gathering policy."""
    fetch_if_no_prefetch: bool = Field(default=True)
    ignore_errors: bool = Field(default=False)
    supplemental_queries: Annotated[list[str], NoDecode] = Field(default_factory=list)
    timeout_seconds: float = Field(default=30.0, gt=0, le=300.0)
    page_limit: int = Field(default=0, ge=0)
    model_config = SettingsConfigDict(env_prefix="CDS_ACQUISITION_", env_file=".env", extra="ignore")

    @field_validator("supplemental_queries", mode="before")
    @classmethod
    def split_queries(cls, v: Any) -> list[str]:
        """Accept a comma-separated list from the environment."""
        if v is None or v == "":
            return []
        if isinstance(v, str):
            return [q.strip() for q in v.split(",") if q.strip()]
        return list(v)


class CardSettings(BaseSettings):
    """Post-processing of plan-generated cards."""
    collapse_cards: bool = Field(default=False)
    use_html: bool = Field(default=False)
    model_config = SettingsConfigDict(env_prefix="CDS_CARDS_", env_file=".env", extra="ignore")


class EngineSettings(BaseSettings):
    """Factories (`module:attribute`) for the external evaluation engines."""
    rule_engine: ImportString | None = Field(default=None)
    plan_engine: ImportString | None = Field(default=None)
    terminology_provider: ImportString | None = Field(default=None)
    ignore_value_set_errors: bool = Field(default=False)
    model_config = SettingsConfigDict(env_prefix="CDS_ENGINE_", env_file=".env", extra="ignore")


class CDSServiceConfig(BaseSettings):
    """Main CDS Hooks service configuration."""
    service_name: str = Field(default="cds-hooks-service")
    version: str = Field(default="1.0.0")
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000, ge=1, le=65535)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    cors_origins: str = Field(default="*")
    content: ContentSettings = Field(default_factory=ContentSettings)
    acquisition: AcquisitionSettings = Field(default_factory=AcquisitionSettings)
    cards: CardSettings = Field(default_factory=CardSettings)
    engines: EngineSettings = Field(default_factory=EngineSettings)
    model_config = SettingsConfigDict(env_prefix="CDS_", env_file=".env", extra="ignore")

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_log_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    def to_dict(self) -> dict[str, Any]:
        """Configuration summary for startup logging."""
        return {
            "service_name": self.service_name,
            "version": self.version,
            "environment": self.environment,
            "services_path": self.content.services_path,
            "libraries_path": self.content.libraries_path,
            "plans_path": self.content.plans_path,
            "fetch_if_no_prefetch": self.acquisition.fetch_if_no_prefetch,
            "ignore_acquisition_errors": self.acquisition.ignore_errors,
            "supplemental_queries": len(self.acquisition.supplemental_queries),
            "collapse_cards": self.cards.collapse_cards,
            "rule_engine_configured": self.engines.rule_engine is not None,
            "plan_engine_configured": self.engines.plan_engine is not None,
        }


@lru_cache
def get_config() -> CDSServiceConfig:
    """Get cached configuration instance."""
    config = CDSServiceConfig()
    logger.debug("cds_config_loaded", **config.to_dict())
    return config
