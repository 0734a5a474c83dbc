"""
RAG (Retrieval-Augmented Generation) System

A modular RAG implementation for curriculum question answering with:
- Section-aware chunking with word overlap
- Cached embeddings with degraded-mode pseudo-vectors
- Brute-force vector search with a hybrid/keyword/partial fallback cascade
- Smart context building and confidence scoring
- Hit-count answer cache with a background TTL sweeper
"""

from .config import RAGConfig
from .chunker import DocumentChunker
from .embedder import EmbeddingCache, EmbeddingClient, ProviderEmbedding
from .retriever import FallbackCascade, VectorSearchEngine, calculate_confidence
from .context import ContextBuilder
from .cache import AnswerCache, CacheSweeper, make_cache_key
from .generator import AnswerGenerator, CompletionClient
from .models import DocumentChunk, EmbeddingResult, RAGResponse, SearchResult
from .store import InMemoryContentStore, InMemoryEmbeddingStore
from .pipeline import RAGPipeline, create_rag_pipeline

__all__ = [
    'RAGConfig',
    'DocumentChunker',
    'EmbeddingCache',
    'EmbeddingClient',
    'ProviderEmbedding',
    'FallbackCascade',
    'VectorSearchEngine',
    'calculate_confidence',
    'ContextBuilder',
    'AnswerCache',
    'CacheSweeper',
    'make_cache_key',
    'AnswerGenerator',
    'CompletionClient',
    'DocumentChunk',
    'EmbeddingResult',
    'RAGResponse',
    'SearchResult',
    'InMemoryContentStore',
    'InMemoryEmbeddingStore',
    'RAGPipeline',
    'create_rag_pipeline',
]
