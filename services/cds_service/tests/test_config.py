"""
Unit tests for CDS Hooks service configuration.
"""
from __future__ import annotations
import pytest

from services.cds_service.src.config import (
    AcquisitionSettings, CardSettings, CDSServiceConfig, ContentSettings, EngineSettings,
)
from services.cds_service.src.domain.resolver import simple_resolver


class TestCDSServiceConfig:
    """Tests for the main settings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("CDS_LOG_LEVEL", raising=False)
        monkeypatch.delenv("CDS_ENVIRONMENT", raising=False)
        config = CDSServiceConfig()
        assert config.port == 3000
        assert config.log_level == "INFO"
        assert config.cors_origins_list == ["*"]
        assert config.acquisition.fetch_if_no_prefetch is True

    def test_log_level_is_normalized(self, monkeypatch):
        monkeypatch.setenv("CDS_LOG_LEVEL", "warning")
        assert CDSServiceConfig().log_level == "WARNING"

    def test_cors_origins_list(self, monkeypatch):
        monkeypatch.setenv("CDS_CORS_ORIGINS", "https://ehr.example.org, https://sandbox.example.org")
        assert CDSServiceConfig().cors_origins_list == ["https://ehr.example.org", "https://sandbox.example.org"]

    def test_to_dict_summary(self):
        summary = CDSServiceConfig().to_dict()
        assert summary["service_name"] == "cds-hooks-service"
        assert summary["rule_engine_configured"] is False


class TestNestedSettings:
    """Tests for the grouped settings and their environment prefixes."""

    def test_content_paths(self, monkeypatch):
        monkeypatch.setenv("CDS_CONTENT_SERVICES_PATH", "/srv/cds/services")
        settings = ContentSettings()
        assert settings.services_path == "/srv/cds/services"
        assert settings.plans_path.endswith("content/apply")

    def test_acquisition_flags(self, monkeypatch):
        monkeypatch.setenv("CDS_ACQUISITION_FETCH_IF_NO_PREFETCH", "false")
        monkeypatch.setenv("CDS_ACQUISITION_IGNORE_ERRORS", "true")
        settings = AcquisitionSettings()
        assert settings.fetch_if_no_prefetch is False
        assert settings.ignore_errors is True

    def test_supplemental_queries_split(self, monkeypatch):
        monkeypatch.setenv("CDS_ACQUISITION_SUPPLEMENTAL_QUERIES",
                           "Procedure?patient={{context.patientId}}, Encounter?patient={{context.patientId}}")
        assert AcquisitionSettings().supplemental_queries == [
            "Procedure?patient={{context.patientId}}",
            "Encounter?patient={{context.patientId}}",
        ]

    def test_supplemental_queries_default_empty(self):
        assert AcquisitionSettings().supplemental_queries == []

    def test_timeout_bounds(self):
        with pytest.raises(ValueError):
            AcquisitionSettings(timeout_seconds=0)

    def test_card_settings(self, monkeypatch):
        monkeypatch.setenv("CDS_CARDS_COLLAPSE_CARDS", "1")
        assert CardSettings().collapse_cards is True

    def test_engine_factory_import_string(self, monkeypatch):
        monkeypatch.setenv("CDS_ENGINE_RULE_ENGINE",
                           "services.cds_service.src.domain.resolver:simple_resolver")
        assert EngineSettings().rule_engine is simple_resolver

    def test_engines_unset_by_default(self):
        settings = EngineSettings()
        assert settings.rule_engine is None
        assert settings.plan_engine is None
