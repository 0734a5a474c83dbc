"""
Application settings and configuration.
"""

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration settings."""

    # Application settings
    app_name: str = "Curriculum RAG"
    app_version: str = "1.0.0"
    log_level: str = "INFO"
    log_json: bool = True
    environment: str = "development"

    # Feature toggles
    use_cache: bool = True
    use_smart_context: bool = True
    use_fallback_search: bool = True
    log_performance: bool = False
    widen_scope_on_miss: bool = False

    # Answer cache
    cache_ttl: int = Field(default=3600, gt=0, description="Answer cache TTL in seconds")
    max_cache_size: int = Field(default=200, gt=0)
    cache_confidence_threshold: int = Field(default=40, ge=0, le=100)
    cache_sweep_interval: int = Field(default=3600, gt=0)

    # Embedding cache
    max_embedding_cache_size: int = Field(default=500, gt=0)
    embedding_cache_ttl: int = Field(default=24 * 60 * 60, gt=0)

    # Retrieval
    default_similarity_threshold: float = Field(default=0.2, ge=-1.0, le=1.0)
    min_similarity_threshold: float = Field(default=0.15, ge=-1.0, le=1.0)

    # Chunking
    chunk_size: int = Field(default=500, gt=0)
    chunk_overlap_words: int = Field(default=10, ge=0)

    # Embedding batching
    embedding_batch_size: int = Field(default=100, gt=0)
    embedding_batch_delay: float = Field(default=0.5, ge=0.0)

    # OpenAI settings
    openai_api_key: str = ""
    openai_base_url: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = Field(default=1536, gt=0)
    openai_max_tokens: int = Field(default=1000, gt=0)
    openai_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    openai_timeout: float = Field(default=60.0, gt=0)
    openai_retry_count: int = Field(default=3, ge=1)
    openai_retry_delay: float = Field(default=1.0, ge=0.0, description="Base backoff in seconds")
    min_request_interval: float = Field(default=0.1, ge=0.0)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Returns a cached instance of the application settings."""
    return Settings()
