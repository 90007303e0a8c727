"""Service settings (pydantic-settings).

Values come from environment variables or a local .env file, matched
case-insensitively by field name (e.g. CHUNK_SIZE, LLM_EXTRACTION).
"""

from __future__ import annotations

from typing import NamedTuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class OracleSpec(NamedTuple):
    provider: str
    model: str


class Settings(BaseSettings):
    """Story glossary service settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Redis ---
    redis_url: str = "redis://:storyglossary@localhost:6379"
    projects_key: str = "storyglossary:projects"

    # --- LLM Providers ---
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    gemini_api_key: str = ""

    # --- Extraction oracle ---
    default_oracle_provider: str = "openai"
    llm_extraction: str = "gemini:gemini-2.5-flash"
    llm_consolidation: str = "gemini:gemini-2.5-flash"
    oracle_timeout_seconds: float = 120.0
    oracle_max_attempts: int = 3
    oracle_temperature: float = 0.3
    oracle_retry_initial_wait: float = 1.0
    oracle_retry_max_wait: float = 30.0
    breaker_failure_threshold: int = 5  # consecutive failures before failing fast
    breaker_cooldown_seconds: float = 60.0

    # --- Pipeline ---
    chunk_size: int = Field(default=8000, ge=1)  # characters per chunk
    default_target_language: str = "en"
    consolidation_min_chunks: int = 2  # consolidate only when totalChunks > this
    consolidation_min_arcs: int = 3  # ... and when arc count > this
    consolidation_target_min: int = 5
    consolidation_target_max: int = 8

    # --- App ---
    cors_origins: list[str] = Field(default=["http://localhost:5173"])
    log_level: str = "INFO"
    log_format: str = "json"

    # --- Task Queue (arq) ---
    arq_max_jobs: int = 2
    arq_job_timeout: int = 7200  # a long novel can take a while chunk by chunk
    arq_keep_result: int = 86400

    debug: bool = False

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: str | list[str]) -> list[str]:
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    def parse_llm_spec(self, spec: str) -> OracleSpec:
        """Split a 'provider:model' spec; a bare model name uses the default provider."""
        provider, sep, model = spec.strip().partition(":")
        if not sep:
            return OracleSpec(self.default_oracle_provider, provider)
        return OracleSpec(provider.strip().lower(), model.strip())


settings = Settings()
