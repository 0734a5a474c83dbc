"""
RAG Configuration Management

Centralized configuration for all RAG components.
"""

from typing import Any, Dict, Optional
from dataclasses import dataclass, field, asdict

from ..config.settings import Settings, get_settings


@dataclass
class ChunkingConfig:
    """Document chunking configuration"""
    chunk_size: int = 500           # characters
    overlap_words: int = 10
    min_sentence_length: int = 30
    min_chunk_length: int = 20


@dataclass
class EmbeddingConfig:
    """Embedding provider and cache configuration"""
    model: str = "text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 100
    batch_delay: float = 0.5
    cache_size: int = 500
    cache_ttl: float = 24 * 60 * 60


@dataclass
class RetrievalConfig:
    """Retrieval configuration"""
    default_threshold: float = 0.2
    min_threshold: float = 0.15
    scoped_limit: int = 5
    unscoped_limit: int = 8
    vector_weight: float = 0.6
    keyword_weight: float = 0.4
    keyword_occurrence_score: float = 0.1
    confidence_weights: tuple = (0.5, 0.3, 0.2)
    high_quality_score: float = 0.6
    diversity_bonus_step: float = 0.05
    diversity_bonus_cap: float = 0.15


@dataclass
class CacheConfig:
    """Answer cache configuration"""
    ttl: float = 3600
    max_size: int = 200
    confidence_threshold: int = 40
    eviction_fraction: float = 0.2
    sweep_interval: float = 3600


@dataclass
class GenerationConfig:
    """Completion model configuration"""
    chat_model: str = "gpt-4o-mini"
    max_tokens: int = 1000
    temperature: float = 0.7
    answer_temperature: float = 0.5
    answer_max_tokens: int = 800
    retry_count: int = 3
    retry_delay: float = 1.0
    min_request_interval: float = 0.1
    max_context_chars: int = 6000
    max_prompt_tokens: int = 6000
    strong_relevance: float = 0.7
    medium_relevance: float = 0.4


@dataclass
class FeatureFlags:
    """Runtime feature toggles"""
    use_cache: bool = True
    use_smart_context: bool = True
    use_fallback_search: bool = True
    log_performance: bool = False
    widen_scope_on_miss: bool = False


@dataclass
class RAGConfig:
    """Main RAG system configuration"""
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    features: FeatureFlags = field(default_factory=FeatureFlags)

    def validate(self) -> bool:
        """Validate configuration"""
        if self.chunking.chunk_size <= self.chunking.min_chunk_length:
            raise ValueError("Chunk size must be larger than the minimum chunk length")

        if self.chunking.overlap_words < 0:
            raise ValueError("overlap_words cannot be negative")

        retrieval = self.retrieval
        for name in ("default_threshold", "min_threshold"):
            value = getattr(retrieval, name)
            if not -1.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [-1, 1], got {value}")

        if retrieval.min_threshold > retrieval.default_threshold:
            raise ValueError("min_threshold cannot exceed default_threshold")

        if retrieval.vector_weight <= retrieval.keyword_weight:
            raise ValueError("vector_weight must be greater than keyword_weight")

        if retrieval.scoped_limit <= 0 or retrieval.unscoped_limit <= 0:
            raise ValueError("search limits must be positive")

        if not retrieval.confidence_weights or any(w <= 0 for w in retrieval.confidence_weights):
            raise ValueError("confidence_weights must be positive")

        if self.embedding.dimensions <= 0:
            raise ValueError("embedding dimensions must be positive")

        if self.embedding.batch_size <= 0:
            raise ValueError("embedding batch_size must be positive")

        if self.cache.max_size <= 0 or self.embedding.cache_size <= 0:
            raise ValueError("cache sizes must be positive")

        if not 0 <= self.cache.confidence_threshold <= 100:
            raise ValueError("confidence_threshold must be within [0, 100]")

        if not 0 < self.cache.eviction_fraction <= 1:
            raise ValueError("eviction_fraction must be within (0, 1]")

        if self.generation.retry_count < 1:
            raise ValueError("retry_count must be at least 1")

        return True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> 'RAGConfig':
        """Create configuration from application settings"""
        settings = settings or get_settings()
        config = cls(
            chunking=ChunkingConfig(
                chunk_size=settings.chunk_size,
                overlap_words=settings.chunk_overlap_words,
            ),
            embedding=EmbeddingConfig(
                model=settings.openai_embedding_model,
                dimensions=settings.embedding_dimensions,
                batch_size=settings.embedding_batch_size,
                batch_delay=settings.embedding_batch_delay,
                cache_size=settings.max_embedding_cache_size,
                cache_ttl=settings.embedding_cache_ttl,
            ),
            retrieval=RetrievalConfig(
                default_threshold=settings.default_similarity_threshold,
                min_threshold=settings.min_similarity_threshold,
            ),
            cache=CacheConfig(
                ttl=settings.cache_ttl,
                max_size=settings.max_cache_size,
                confidence_threshold=settings.cache_confidence_threshold,
                sweep_interval=settings.cache_sweep_interval,
            ),
            generation=GenerationConfig(
                chat_model=settings.openai_model,
                max_tokens=settings.openai_max_tokens,
                temperature=settings.openai_temperature,
                retry_count=settings.openai_retry_count,
                retry_delay=settings.openai_retry_delay,
                min_request_interval=settings.min_request_interval,
            ),
            features=FeatureFlags(
                use_cache=settings.use_cache,
                use_smart_context=settings.use_smart_context,
                use_fallback_search=settings.use_fallback_search,
                log_performance=settings.log_performance,
                widen_scope_on_miss=settings.widen_scope_on_miss,
            ),
        )
        config.validate()
        return config

    @classmethod
    def from_env(cls) -> 'RAGConfig':
        """Create configuration from environment variables"""
        return cls.from_settings(Settings())
