"""Configuration management using pydantic-settings.

Settings are built once at the entry point (CLI or HTTP app) with
``get_settings()`` and the relevant sub-settings are handed to each component
constructor. Components never look settings up on their own.
"""

import logging
import warnings
from enum import Enum
from typing import Dict, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Output sizes of the OpenAI embedding models (default dimensions)
KNOWN_MODEL_DIMENSIONS: Dict[str, int] = {
    "text-embedding-ada-002": 1536,
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
}


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class EmbeddingSettings(BaseSettings):
    """Embedding API configuration."""

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    openai_api_key: Optional[str] = Field(
        default=None,
        description="OpenAI API key for embeddings. Env var: OPENAI_API_KEY",
    )
    # Optional alternate env var name some users use
    open_ai_api_key: Optional[str] = Field(
        default=None,
        description="Alternate OpenAI API key env var name. Env var: OPEN_AI_API_KEY",
    )
    openai_base_url: Optional[str] = Field(
        default=None,
        description="Optional OpenAI base URL (advanced). Env var: OPENAI_BASE_URL",
    )

    embedding_model: str = Field(
        default="text-embedding-3-small",
        description="Embedding model name. Env var: EMBEDDING_MODEL",
    )
    embedding_dimension: Optional[int] = Field(
        default=None,
        ge=1,
        description="Expected vector size; defaults to the model's known size. Env var: EMBEDDING_DIMENSION",
    )
    embedding_batch_size: int = Field(
        default=25,
        ge=1,
        description="Texts per embedding request (sub-batch). Env var: EMBEDDING_BATCH_SIZE",
    )
    embedding_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Embedding request timeout in seconds. Env var: EMBEDDING_TIMEOUT",
    )
    probe_text: str = Field(
        default="connection test",
        description="Text embedded by the connectivity probe. Env var: PROBE_TEXT",
    )

    @model_validator(mode="after")
    def normalize_openai_env_vars(self) -> "EmbeddingSettings":
        """Accept OPEN_AI_API_KEY as an alias for OPENAI_API_KEY."""
        if not self.openai_api_key and self.open_ai_api_key:
            self.openai_api_key = self.open_ai_api_key
        return self

    @property
    def is_configured(self) -> bool:
        """Check if embeddings can be requested."""
        return bool(self.openai_api_key)

    @property
    def expected_dimension(self) -> Optional[int]:
        """Vector size every embedding must have, when known up front."""
        if self.embedding_dimension is not None:
            return self.embedding_dimension
        return KNOWN_MODEL_DIMENSIONS.get(self.embedding_model)


class QdrantSettings(BaseSettings):
    """Qdrant vector database configuration."""

    model_config = SettingsConfigDict(env_prefix="QDRANT_", case_sensitive=False)

    url: str = Field(
        default="http://localhost:6333", description="Qdrant connection URL"
    )
    api_key: Optional[str] = Field(
        default=None, description="Qdrant API key (for Qdrant Cloud). Env var: QDRANT_API_KEY"
    )
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    collection_name: str = Field(
        default="document_chunks",
        description="Collection holding the chunk vectors. Env var: QDRANT_COLLECTION_NAME",
    )


class BatchSettings(BaseSettings):
    """Batch scheduler pacing and retry configuration."""

    model_config = SettingsConfigDict(env_prefix="BATCH_", case_sensitive=False)

    batch_size: int = Field(default=25, ge=1, description="Chunks per batch. Env var: BATCH_BATCH_SIZE")
    max_retries: int = Field(
        default=3, ge=0, description="Retries per batch for transient failures. Env var: BATCH_MAX_RETRIES"
    )
    pacing_step: float = Field(
        default=1.0, ge=0, description="Pacing delay added per batch index, in seconds"
    )
    pacing_cap: float = Field(default=10.0, ge=0, description="Upper bound of the pacing delay, in seconds")
    backoff_base: float = Field(
        default=1.0, ge=0, description="Backoff unit; retry n waits 2**n * backoff_base seconds"
    )
    rate_limit_pause: float = Field(
        default=60.0, ge=0, description="Pipeline-wide pause after a rate-limit response, in seconds"
    )


class WriterSettings(BaseSettings):
    """Vector store writer configuration."""

    model_config = SettingsConfigDict(env_prefix="WRITER_", case_sensitive=False)

    sub_batch_size: int = Field(default=50, ge=1, description="Records per bulk insert")
    pause_seconds: float = Field(default=0.15, ge=0, description="Pause between bulk inserts")


class SearchSettings(BaseSettings):
    """Search defaults and caller-facing limits."""

    model_config = SettingsConfigDict(env_prefix="SEARCH_", case_sensitive=False)

    default_max_results: int = Field(default=5, ge=1)
    max_results_cap: int = Field(default=20, ge=1, description="Upper bound applied by the HTTP/CLI layer")
    default_score_threshold: float = Field(default=0.8, ge=0, le=1)


class ChunkSourceSettings(BaseSettings):
    """Location of the chunk files produced upstream."""

    model_config = SettingsConfigDict(env_prefix="CHUNKS_", case_sensitive=False)

    directory: str = Field(default="./chunks", description="Directory of chunk JSON files. Env var: CHUNKS_DIRECTORY")


class ServerSettings(BaseSettings):
    """Server configuration."""

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    host: str = Field(default="0.0.0.0", description="Server host. Env var: HOST")
    port: int = Field(default=8004, description="HTTP server port. Env var: PORT")
    reload: bool = Field(
        default=False, description="Enable auto-reload (development only). Env var: RELOAD"
    )


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(
        default="semantic-indexer", description="Application name. Env var: APP_NAME"
    )
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment. Env var: ENVIRONMENT",
    )
    debug: bool = Field(default=False, description="Enable debug mode. Env var: DEBUG")
    log_level: str = Field(
        default="INFO", description="Logging level. Env var: LOG_LEVEL"
    )

    # Sub-settings
    embedding: Optional[EmbeddingSettings] = None
    qdrant: Optional[QdrantSettings] = None
    batch: Optional[BatchSettings] = None
    writer: Optional[WriterSettings] = None
    search: Optional[SearchSettings] = None
    chunks: Optional[ChunkSourceSettings] = None
    server: Optional[ServerSettings] = None

    @model_validator(mode="after")
    def initialize_nested_settings(self) -> "Settings":
        """Initialize nested settings to ensure they read from environment."""
        if self.embedding is None:
            self.embedding = EmbeddingSettings()
        if self.qdrant is None:
            self.qdrant = QdrantSettings()
        if self.batch is None:
            self.batch = BatchSettings()
        if self.writer is None:
            self.writer = WriterSettings()
        if self.search is None:
            self.search = SearchSettings()
        if self.chunks is None:
            self.chunks = ChunkSourceSettings()
        if self.server is None:
            self.server = ServerSettings()
        return self

    @field_validator("environment", mode="before")
    @classmethod
    def parse_environment(cls, v):
        """Parse environment from string."""
        if isinstance(v, str):
            try:
                return Environment(v.lower())
            except ValueError:
                return Environment.DEVELOPMENT
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    def validate_configuration(self) -> None:
        """Warn about services that are not configured."""
        if not self.embedding.is_configured:
            warnings.warn(
                "Embeddings are not configured. Set OPENAI_API_KEY.",
                UserWarning,
            )

    def validate_production_settings(self) -> None:
        """Validate that production settings are secure."""
        if self.is_production:
            if self.debug:
                raise ValueError("DEBUG must be False in production")

            if not self.embedding.is_configured:
                raise ValueError("Embeddings must be configured in production. Set OPENAI_API_KEY.")


def get_settings(**overrides) -> Settings:
    """Build and validate a settings value.

    Call once at startup and pass the result (or its sub-settings) on.
    """
    settings = Settings(**overrides)
    settings.validate_configuration()
    try:
        settings.validate_production_settings()
    except ValueError as e:
        logging.getLogger("semantic_indexer.config").error(f"Configuration validation failed: {e}")
        if settings.is_production:
            raise  # Fail fast in production
    return settings
