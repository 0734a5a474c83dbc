"""
Domain types shared by the indexing and query paths.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

# Reserved chunk_index ranges, so chunks derived from different parts of a
# lesson never become "adjacent" to each other.
BODY_INDEX_BASE = 0
EXAMPLE_INDEX_BASE = 1000
EXERCISE_INDEX_BASE = 2000


@dataclass(frozen=True)
class DocumentChunk:
    """Immutable unit of indexed text."""
    id: str
    content_id: str
    chunk_index: int
    text: str
    embedding: np.ndarray = field(compare=False, repr=False)
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)
    degraded: bool = False

    @property
    def scope_id(self) -> str:
        """Identifier matched against a query scope."""
        return self.metadata.get("lesson_id") or self.content_id

    @property
    def title(self) -> str:
        return self.metadata.get("lesson_title") or self.metadata.get("title") or ""

    @staticmethod
    def make_id(content_id: str, chunk_index: int) -> str:
        return f"{content_id}:{chunk_index}"


@dataclass
class EmbeddingResult:
    """Vector returned by the embedding client, flagged when it is a stand-in."""
    vector: np.ndarray
    token_count: int = 0
    degraded: bool = False


class SearchResult:
    """Represents a search result with relevance score"""

    def __init__(self, chunk: DocumentChunk, score: float, strategy: str = "vector",
                 degraded: bool = False):
        self.chunk = chunk
        self.score = float(score)
        self.strategy = strategy  # "vector", "keyword", "hybrid", "partial" or "lesson"
        self.degraded = degraded or chunk.degraded

    @property
    def source_info(self) -> Dict[str, Any]:
        metadata = self.chunk.metadata
        return {
            "lesson_id": self.chunk.scope_id,
            "title": self.chunk.title,
            "unit_title": metadata.get("unit_title"),
            "subject_name": metadata.get("subject_name"),
        }

    def with_score(self, score: float, strategy: Optional[str] = None) -> 'SearchResult':
        return SearchResult(self.chunk, score, strategy or self.strategy, self.degraded)

    def to_dict(self) -> Dict[str, Any]:
        text = self.chunk.text
        return {
            "chunk_id": self.chunk.id,
            "content_id": self.chunk.content_id,
            "chunk_index": self.chunk.chunk_index,
            "content_preview": text[:200] + "..." if len(text) > 200 else text,
            "relevance_score": round(self.score, 3),
            "search_type": self.strategy,
            "degraded": self.degraded,
            "source": self.source_info,
        }

    def __repr__(self):
        return f"SearchResult(chunk={self.chunk.id}, score={self.score:.3f}, strategy={self.strategy})"


@dataclass
class RAGResponse:
    """Answer returned to callers of the pipeline."""
    answer: str
    sources: List[SearchResult] = field(default_factory=list)
    confidence: int = 0
    cached: bool = False
    degraded: bool = False
    strategy: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "answer": self.answer,
            "sources": [source.to_dict() for source in self.sources],
            "confidence": self.confidence,
            "cached": self.cached,
            "degraded": self.degraded,
            "strategy": self.strategy,
        }
