"""
Configuration management for the CFP pipeline.

Provides centralized, validated configuration from environment variables
with proper type checking and defaults.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from typing_extensions import Annotated

DEFAULT_FINGERPRINT_MODELS = [
    "openai/gpt-4-turbo",
    "anthropic/claude-3-opus",
    "google/gemini-2.5-flash",
]


def _parse_bool(v) -> bool:
    if isinstance(v, str):
        return v.lower() in ("1", "true", "yes", "y")
    return bool(v)


class LLMConfig(BaseSettings):
    """OpenRouter / LLM configuration."""

    api_key: Optional[str] = Field(default=None, alias="OPENROUTER_API_KEY")
    base_url: str = Field(default="https://openrouter.ai/api/v1", alias="OPENROUTER_BASE_URL")
    app_url: str = Field(default="https://github.com/cfp-pipeline", alias="OPENROUTER_APP_URL")
    models: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_FINGERPRINT_MODELS), alias="FINGERPRINT_MODELS"
    )
    max_concurrency: int = Field(default=3, alias="LLM_MAX_CONCURRENCY")
    timeout_seconds: float = Field(default=30.0, alias="LLM_TIMEOUT_SECONDS")
    max_tokens: int = Field(default=2000, alias="LLM_MAX_TOKENS")
    calls_per_second: float = Field(default=2.0, alias="LLM_CALLS_PER_SECOND")

    # Notability assessment
    notability_model: str = Field(default="openai/gpt-4-turbo", alias="NOTABILITY_MODEL")
    notability_temperature: float = Field(default=0.1, alias="NOTABILITY_TEMPERATURE")

    @field_validator("models", mode="before")
    @classmethod
    def parse_models(cls, v):
        if isinstance(v, str):
            return [m.strip() for m in v.split(",") if m.strip()]
        return v or list(DEFAULT_FINGERPRINT_MODELS)

    model_config = SettingsConfigDict(env_prefix="", extra="ignore", populate_by_name=True)


class SearchConfig(BaseSettings):
    """Google Custom Search configuration for the notability gate."""

    google_api_key: Optional[str] = Field(default=None, alias="GOOGLE_API_KEY")
    google_cse_id: Optional[str] = Field(default=None, alias="GOOGLE_CSE_ID")
    daily_query_limit: int = Field(default=100, alias="NOTABILITY_DAILY_QUERY_LIMIT")
    max_results: int = Field(default=15, alias="NOTABILITY_MAX_RESULTS")
    min_serious_references: int = Field(default=3, alias="NOTABILITY_MIN_SERIOUS_REFERENCES")
    min_confidence: float = Field(default=0.7, alias="NOTABILITY_MIN_CONFIDENCE")
    timeout_seconds: float = Field(default=15.0, alias="SEARCH_TIMEOUT_SECONDS")

    model_config = SettingsConfigDict(env_prefix="", extra="ignore", populate_by_name=True)


class KnowledgeGraphConfig(BaseSettings):
    """Wikidata publishing and QID resolution configuration."""

    publish_mode: str = Field(default="mock", alias="WIKIDATA_PUBLISH_MODE")
    bot_username: Optional[str] = Field(default=None, alias="WIKIDATA_BOT_USERNAME")
    bot_password: Optional[str] = Field(default=None, alias="WIKIDATA_BOT_PASSWORD")
    user_agent: str = Field(
        default="CFPPipeline/1.0 (https://github.com/cfp-pipeline)", alias="WIKIDATA_USER_AGENT"
    )
    request_timeout: float = Field(default=30.0, alias="WIKIDATA_TIMEOUT_SECONDS")

    qid_cache_path: str = Field(default=".cache/qid_cache.json", alias="QID_CACHE_PATH")
    sparql_enabled: bool = Field(default=True, alias="SPARQL_ENABLED")
    sparql_timeout: float = Field(default=5.0, alias="SPARQL_TIMEOUT_SECONDS")

    @field_validator("publish_mode", mode="before")
    @classmethod
    def parse_publish_mode(cls, v):
        mode = (v or "mock").strip().lower()
        if mode not in ("mock", "test", "production"):
            raise ValueError("WIKIDATA_PUBLISH_MODE must be mock, test or production")
        return mode

    @field_validator("sparql_enabled", mode="before")
    @classmethod
    def parse_sparql_enabled(cls, v):
        return _parse_bool(v)

    model_config = SettingsConfigDict(env_prefix="", extra="ignore", populate_by_name=True)


class PipelineConfig(BaseSettings):
    """Orchestrator limits and retry behaviour."""

    business_timeout_seconds: float = Field(default=120.0, alias="BUSINESS_TIMEOUT_SECONDS")
    max_attempts: int = Field(default=2, alias="PIPELINE_MAX_ATTEMPTS")
    retry_delay_seconds: float = Field(default=30.0, alias="PIPELINE_RETRY_DELAY_SECONDS")
    max_concurrent_businesses: int = Field(default=4, alias="MAX_CONCURRENT_BUSINESSES")
    business_store_path: str = Field(
        default=".cache/businesses.json", alias="BUSINESS_STORE_PATH"
    )

    model_config = SettingsConfigDict(env_prefix="", extra="ignore", populate_by_name=True)


class Settings(BaseSettings):
    """Main application settings."""

    # Environment
    environment: str = Field(default="production", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # Component configurations
    llm: LLMConfig = Field(default_factory=LLMConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    knowledge_graph: KnowledgeGraphConfig = Field(default_factory=KnowledgeGraphConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)

    @field_validator("debug", mode="before")
    @classmethod
    def parse_debug(cls, v):
        return _parse_bool(v)

    def model_post_init(self, __context) -> None:
        # Initialize sub-configurations
        self.llm = LLMConfig()
        self.search = SearchConfig()
        self.knowledge_graph = KnowledgeGraphConfig()
        self.pipeline = PipelineConfig()

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global settings
    if settings is None:
        settings = Settings()
    return settings


def validate_required_settings(for_workflow: str = "pipeline") -> List[str]:
    """
    Validate that required settings are present for specific workflows.

    Args:
        for_workflow: Workflow name ("pipeline", "fingerprint", "notability" or "publish")

    Returns:
        List of missing required settings
    """
    missing = []
    try:
        config = get_settings()

        if for_workflow in ("pipeline", "fingerprint", "notability"):
            if not config.llm.api_key:
                missing.append("OPENROUTER_API_KEY")

        if for_workflow in ("pipeline", "notability"):
            if not config.search.google_api_key:
                missing.append("GOOGLE_API_KEY")
            if not config.search.google_cse_id:
                missing.append("GOOGLE_CSE_ID")

        if for_workflow in ("pipeline", "publish"):
            if config.knowledge_graph.publish_mode != "mock":
                if not config.knowledge_graph.bot_username:
                    missing.append("WIKIDATA_BOT_USERNAME")
                if not config.knowledge_graph.bot_password:
                    missing.append("WIKIDATA_BOT_PASSWORD")

    except Exception as e:
        missing.append(f"Configuration error: {e}")

    return missing


def configuration_status() -> Dict[str, str]:
    """Return a service -> status map for the configured integrations."""
    config = get_settings()
    return {
        "openrouter": "available" if config.llm.api_key else "unavailable",
        "google_search": (
            "available"
            if config.search.google_api_key and config.search.google_cse_id
            else "unavailable"
        ),
        "wikidata": config.knowledge_graph.publish_mode,
        "sparql_fallback": "enabled" if config.knowledge_graph.sparql_enabled else "disabled",
    }


def print_configuration_summary():
    """Print a summary of the current configuration for debugging."""
    try:
        config = get_settings()
        print("=== CFP Configuration Summary ===")
        print(f"Environment: {config.environment}")
        print(f"Debug Mode: {config.debug}")
        print()
        print(f"Fingerprint Models: {', '.join(config.llm.models)}")
        print(f"LLM Concurrency: {config.llm.max_concurrency}")
        print(f"Notability Model: {config.llm.notability_model}")
        print(f"Business Timeout: {config.pipeline.business_timeout_seconds}s")
        print(f"Pipeline Attempts: {config.pipeline.max_attempts}")
        print()
        for service, status in configuration_status().items():
            print(f"{service}: {status}")
        print("=" * 33)
    except Exception as e:
        print(f"Error loading configuration: {e}")
