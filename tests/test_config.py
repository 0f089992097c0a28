"""Tests for environment-driven configuration."""

import pytest
from pydantic import ValidationError

import cfp.core.config as config_module
from cfp.core.config import (
    DEFAULT_FINGERPRINT_MODELS,
    KnowledgeGraphConfig,
    LLMConfig,
    PipelineConfig,
    Settings,
    validate_required_settings,
)


@pytest.fixture
def fresh_settings(monkeypatch):
    """Drop the cached global settings so each test sees its own environment."""
    monkeypatch.setattr(config_module, "settings", None)
    for var in (
        "OPENROUTER_API_KEY",
        "GOOGLE_API_KEY",
        "GOOGLE_CSE_ID",
        "WIKIDATA_PUBLISH_MODE",
        "WIKIDATA_BOT_USERNAME",
        "WIKIDATA_BOT_PASSWORD",
        "FINGERPRINT_MODELS",
    ):
        monkeypatch.delenv(var, raising=False)
    yield monkeypatch
    config_module.settings = None


class TestSettings:
    def test_models_parsed_from_comma_list(self, fresh_settings):
        fresh_settings.setenv("FINGERPRINT_MODELS", "a/one, b/two,,c/three")
        assert LLMConfig().models == ["a/one", "b/two", "c/three"]

    def test_default_models(self, fresh_settings):
        assert LLMConfig().models == DEFAULT_FINGERPRINT_MODELS

    def test_publish_mode_normalized(self, fresh_settings):
        fresh_settings.setenv("WIKIDATA_PUBLISH_MODE", " TEST ")
        assert KnowledgeGraphConfig().publish_mode == "test"

    def test_unknown_publish_mode_rejected(self, fresh_settings):
        fresh_settings.setenv("WIKIDATA_PUBLISH_MODE", "staging")
        with pytest.raises(ValidationError):
            KnowledgeGraphConfig()

    def test_pipeline_defaults(self, fresh_settings):
        pipeline = PipelineConfig()
        assert pipeline.max_attempts >= 1
        assert pipeline.business_timeout_seconds > 0

    def test_nested_configs_read_environment(self, fresh_settings):
        fresh_settings.setenv("PIPELINE_MAX_ATTEMPTS", "5")
        fresh_settings.setenv("SPARQL_ENABLED", "no")
        settings = Settings()
        assert settings.pipeline.max_attempts == 5
        assert settings.knowledge_graph.sparql_enabled is False


class TestValidateRequiredSettings:
    def test_missing_keys_reported(self, fresh_settings):
        missing = validate_required_settings("pipeline")
        assert "OPENROUTER_API_KEY" in missing
        assert "GOOGLE_API_KEY" in missing
        assert "GOOGLE_CSE_ID" in missing
        # Mock publishing needs no credentials
        assert "WIKIDATA_BOT_USERNAME" not in missing

    def test_live_publishing_needs_bot_credentials(self, fresh_settings):
        fresh_settings.setenv("WIKIDATA_PUBLISH_MODE", "test")
        missing = validate_required_settings("publish")
        assert missing == ["WIKIDATA_BOT_USERNAME", "WIKIDATA_BOT_PASSWORD"]

    def test_fingerprint_only_needs_llm_key(self, fresh_settings):
        fresh_settings.setenv("OPENROUTER_API_KEY", "sk-test")
        assert validate_required_settings("fingerprint") == []
