"""Configuration models for the knowledge search service."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ChunkingConfig(BaseModel):
    """Configures boundary-aware character chunking."""

    max_chars: int = Field(default=1000, ge=16)
    min_chars: int = Field(default=200, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "ChunkingConfig":
        if self.min_chars >= self.max_chars:
            raise ValueError("min_chars must be less than max_chars")
        return self


class RetrievalConfig(BaseModel):
    """Configures dual-route retrieval, fusion weights and result caching."""

    semantic_k: int = Field(default=10, ge=1)
    keyword_k: int = Field(default=10, ge=1)
    final_k: int = Field(default=10, ge=1)
    vector_weight: float = Field(default=0.6, ge=0.0)
    keyword_weight: float = Field(default=0.4, ge=0.0)
    cache_ttl_seconds: int = Field(default=3600, ge=1)
    cache_prefix: str = "hybrid:"


class IngestConfig(BaseModel):
    """Configures batching and retry behavior of the ingestion pipeline."""

    batch_size: int = Field(default=1, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    backoff_initial_seconds: float = Field(default=0.5, ge=0.0)
    backoff_max_seconds: float = Field(default=8.0, ge=0.0)


class Settings(BaseSettings):
    """Process-level settings read from `KNOWLEDGE_*` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="KNOWLEDGE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    vector_backend: Literal["memory", "qdrant"] = "memory"
    cache_backend: Literal["memory", "redis"] = "memory"
    embedding_backend: Literal["hashing", "openai"] = "hashing"

    qdrant_url: str = "http://localhost:6333"
    qdrant_api_key: str | None = None
    qdrant_timeout_seconds: float = Field(default=30.0, gt=0.0)
    qdrant_text_scan_limit: int = Field(default=4096, ge=1)
    redis_url: str = "redis://localhost:6379"

    collection: str = "knowledge_chunks"
    embedding_dimension: int = Field(default=768, ge=1)
    openai_embedding_model: str = "text-embedding-3-small"
    storage_path: str = "/tmp/knowledge_search/files"

    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"
