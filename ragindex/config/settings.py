"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK ────────────────────────────────────────────────
#
# Values are resolved from (highest priority first):
#
#   1. Environment variables  -- e.g. OPENAI_API_KEY=sk-abc123
#   2. .env file              -- local development overrides
#   3. Constructor kwargs     -- config/config.yaml values, passed in
#                                by ragindex.config.loader
#   4. The defaults below
#
# Field ``embedding_batch_size`` maps to env var ``EMBEDDING_BATCH_SIZE``.
#
# Every numeric knob carries its valid range so a bad deployment fails at
# startup.  ``load_settings`` collects all violations into one
# ConfigurationError instead of stopping at the first.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class Settings(BaseSettings):
    """ragindex settings.

    Environment variables override YAML defaults, which override the
    defaults declared here.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === LLM / Embedding Providers ===
    # Empty OPENAI_API_KEY means "use the local Ollama server instead".
    openai_api_key: str = ""
    openai_base_url: str = ""
    openai_text_model: str = "gpt-4o-mini"
    openai_embedding_model: str = "text-embedding-3-small"
    ollama_base_url: str = "http://localhost:11434"
    ollama_text_model: str = "llama3.1"
    ollama_embedding_model: str = "nomic-embed-text"
    # 0 = trust the provider's native dimension.
    embedding_dimension: int = Field(default=0, ge=0)

    # === Timeouts (seconds) ===
    llm_timeout_seconds: float = Field(default=60.0, gt=0)
    embedding_timeout_seconds: float = Field(default=30.0, gt=0)
    extract_timeout_seconds: float = Field(default=30.0, gt=0)

    # === Storage ===
    database_path: str = "data/ragindex.db"

    # === Semantic Chunking ===
    chunk_max_size: int = Field(default=1000, ge=50)
    chunk_language: str = "English"
    chunk_llm_attempts: int = Field(default=2, ge=1, le=10)

    # === BM25 / Keyword Extraction ===
    bm25_k1: float = Field(default=1.2, ge=0)
    bm25_b: float = Field(default=0.75, ge=0, le=1)
    keyword_max_keywords: int = Field(default=8, ge=1, le=50)
    keyword_min_confidence: float = Field(default=0.6, ge=0, le=1)
    keyword_min_bm25: float = Field(default=0.1, ge=0)
    keyword_concurrency: int = Field(default=3, ge=1)
    keyword_llm_attempts: int = Field(default=3, ge=1, le=10)
    keyword_retry_delay: float = Field(default=2.0, ge=0)

    # === Embedding Batches ===
    embedding_batch_size: int = Field(default=10, ge=1, le=2048)
    embedding_batch_delay: float = Field(default=0.5, ge=0)
    embedding_max_attempts: int = Field(default=3, ge=1, le=10)
    embedding_retry_delay: float = Field(default=1.0, ge=0)
    embedding_rate_limit_delay: float = Field(default=5.0, ge=0)
    embedding_fallback_concurrency: int = Field(default=3, ge=1)

    # === Ingestion Jobs ===
    extract_concurrency: int = Field(default=5, ge=1)
    phase_weight_fetch: float = Field(default=30.0, gt=0)
    phase_weight_extract: float = Field(default=25.0, gt=0)
    phase_weight_chunk: float = Field(default=15.0, gt=0)
    phase_weight_embed: float = Field(default=15.0, gt=0)
    phase_weight_keyword: float = Field(default=15.0, gt=0)
    status_update_interval: float = Field(default=2.0, ge=0)

    # === Search Defaults ===
    search_limit: int = Field(default=5, ge=1, le=100)
    search_threshold: float = Field(default=0.7, ge=-1, le=1)
    search_keyword_weight: float = Field(default=0.7, ge=0, le=1)
    search_bm25_threshold: float = Field(default=0.1, ge=0)

    # === App Config ===
    app_env: str = "development"
    log_level: str = "INFO"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Constructor kwargs carry the YAML defaults, so the environment
        # and .env are consulted before them.
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        upper = value.upper()
        if upper not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}")
        return upper

    @model_validator(mode="after")
    def _check_phase_weights(self) -> Settings:
        total = sum(self.phase_weights().values())
        if abs(total - 100.0) > 1e-6:
            raise ValueError(f"phase weights must sum to 100, got {total:g}")
        return self

    def phase_weights(self) -> dict[str, float]:
        """Return the ingestion phase weights keyed by phase name."""
        return {
            "fetch": self.phase_weight_fetch,
            "extract": self.phase_weight_extract,
            "chunk": self.phase_weight_chunk,
            "embed": self.phase_weight_embed,
            "keyword": self.phase_weight_keyword,
        }

    def uses_openai(self) -> bool:
        """Return ``True`` when an OpenAI(-compatible) key is configured."""
        return bool(self.openai_api_key)
