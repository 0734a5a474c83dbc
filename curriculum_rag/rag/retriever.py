"""
Retrieval Module

Brute-force vector search over the embedding store, keyword and hybrid
search, and the fallback cascade used when a plain vector search finds
nothing.
"""

from typing import Dict, List, Optional, Protocol, Sequence, Tuple
import math
import string

import numpy as np
import structlog

from .config import RetrievalConfig
from .embedder import EmbeddingClient
from .models import DocumentChunk, SearchResult
from .store import EmbeddingStore

logger = structlog.get_logger(__name__)

ARABIC_STOP_WORDS = {'في', 'من', 'على', 'هي', 'هو', 'ما', 'كيف', 'متى', 'أين', 'لماذا'}
ENGLISH_STOP_WORDS = {'the', 'is', 'at', 'which', 'on', 'a', 'an', 'as', 'are', 'was', 'were'}

# Curated term -> substrings that trigger it
DOMAIN_TERMS: Dict[str, Tuple[str, ...]] = {
    'ضرب': ('ضرب',),
    'جمع': ('جمع',),
    'طرح': ('طرح',),
    'قسمة': ('قسم',),
    'كسور': ('كسر', 'كسور'),
    'أعداد': ('عدد', 'أعداد'),
    'multiplication': ('multipl',),
    'addition': ('addition', 'adding'),
    'subtraction': ('subtract',),
    'division': ('divid', 'divis'),
    'fractions': ('fraction',),
    'numbers': ('number',),
}

PUNCTUATION = string.punctuation + '؟،؛«»“”‘’'


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """
    Cosine similarity of two vectors

    Returns 0.0 when either vector has zero norm or the dimensions differ.
    """
    if a.shape != b.shape:
        logger.error("Vector length mismatch", left=a.shape[0] if a.ndim else 0,
                     right=b.shape[0] if b.ndim else 0)
        return 0.0

    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0:
        return 0.0
    return float(np.dot(a, b) / norm)


def extract_keywords(text: str) -> List[str]:
    """Content words of text plus any curated domain terms it mentions"""
    keywords = []
    for token in text.split():
        word = token.strip(PUNCTUATION).lower()
        if len(word) <= 2:
            continue
        if word in ARABIC_STOP_WORDS or word in ENGLISH_STOP_WORDS:
            continue
        keywords.append(word)

    lowered = text.lower()
    for term, triggers in DOMAIN_TERMS.items():
        if any(trigger in lowered for trigger in triggers):
            keywords.append(term)

    return list(dict.fromkeys(keywords))


def _rank(results: List[SearchResult], limit: int) -> List[SearchResult]:
    return sorted(results, key=lambda r: r.score, reverse=True)[:limit]


class VectorSearchEngine:
    """
    Scores every stored chunk in scope against the query
    """

    def __init__(self, embedder: EmbeddingClient, store: EmbeddingStore,
                 config: Optional[RetrievalConfig] = None):
        self.embedder = embedder
        self.store = store
        self.config = config or RetrievalConfig()

    async def search(self, query: str, scope_id: Optional[str] = None, limit: int = 5,
                     threshold: Optional[float] = None) -> List[SearchResult]:
        """
        Vector similarity search

        Args:
            query: Search query
            scope_id: Restrict to chunks of this lesson
            limit: Maximum results
            threshold: Minimum cosine score (configured default if None)

        Returns:
            Results sorted by descending score
        """
        if threshold is None:
            threshold = self.config.default_threshold

        query_embedding = await self.embedder.embed(query)
        chunks = await self.store.list_chunks(scope_id)

        scored = [(chunk, cosine_similarity(query_embedding.vector, chunk.embedding)) for chunk in chunks]
        results = self._filter(scored, threshold, limit, query_embedding.degraded)

        if not results and threshold > self.config.min_threshold:
            logger.debug("No results above threshold, retrying",
                         threshold=threshold, min_threshold=self.config.min_threshold)
            results = self._filter(scored, self.config.min_threshold, limit, query_embedding.degraded)

        return results

    def _filter(self, scored: List[Tuple[DocumentChunk, float]], threshold: float, limit: int,
                degraded: bool) -> List[SearchResult]:
        results = [
            SearchResult(chunk, score, strategy="vector", degraded=degraded)
            for chunk, score in scored if score >= threshold
        ]
        return _rank(results, limit)

    async def keyword_search(self, keywords: Sequence[str], scope_id: Optional[str] = None,
                             limit: int = 5) -> List[SearchResult]:
        """Case-insensitive substring search scored by total keyword occurrences"""
        terms = [k.lower() for k in keywords if k]
        if not terms:
            return []

        results = []
        for chunk in await self.store.list_chunks(scope_id):
            text = chunk.text.lower()
            occurrences = sum(text.count(term) for term in terms)
            if occurrences:
                score = min(occurrences * self.config.keyword_occurrence_score, 1.0)
                results.append(SearchResult(chunk, score, strategy="keyword"))

        return _rank(results, limit)

    async def hybrid_search(self, query: str, scope_id: Optional[str] = None,
                            limit: int = 5) -> List[SearchResult]:
        """Weighted merge of a low-threshold vector search and a keyword search"""
        vector_results = await self.search(query, scope_id, limit * 2, threshold=self.config.min_threshold)

        keywords = extract_keywords(query)
        if not keywords:
            return vector_results[:limit]

        keyword_results = await self.keyword_search(keywords, scope_id, limit * 2)

        merged: Dict[str, Tuple[float, float, SearchResult]] = {}
        for weight, results in ((self.config.vector_weight, vector_results),
                                (self.config.keyword_weight, keyword_results)):
            for result in results:
                contribution = weight * max(result.score, 0.0)
                if result.chunk.id in merged:
                    total, best, kept = merged[result.chunk.id]
                    if contribution > best:
                        best, kept = contribution, result
                    merged[result.chunk.id] = (total + contribution, best, kept)
                else:
                    merged[result.chunk.id] = (contribution, contribution, result)

        combined = [kept.with_score(total, strategy="hybrid") for total, _, kept in merged.values()]
        return _rank(combined, limit)

    async def partial_search(self, query: str, scope_id: Optional[str] = None,
                             limit: int = 5) -> List[SearchResult]:
        """Vector search using the first half of the query's content words"""
        words = [w for w in query.split() if len(w) > 2]
        if len(words) <= 1:
            return []

        half_query = " ".join(words[:math.ceil(len(words) / 2)])
        logger.debug("Partial search", partial_query=half_query)
        results = await self.search(half_query, scope_id, limit, threshold=self.config.min_threshold)
        return [r.with_score(r.score, strategy="partial") for r in results]

    async def lesson_chunks(self, scope_id: str, limit: Optional[int] = None) -> List[SearchResult]:
        """Every chunk of a lesson in reading order, each scored 1.0"""
        chunks = sorted(await self.store.list_chunks(scope_id), key=lambda c: c.chunk_index)
        if limit is not None:
            chunks = chunks[:limit]
        return [SearchResult(chunk, 1.0, strategy="lesson") for chunk in chunks]


class SearchStrategy(Protocol):
    name: str

    async def attempt_search(self, query: str, scope_id: Optional[str],
                             limit: int) -> List[SearchResult]:
        ...


class VectorStrategy:
    name = "vector"

    def __init__(self, engine: VectorSearchEngine):
        self.engine = engine

    async def attempt_search(self, query, scope_id, limit):
        return await self.engine.search(query, scope_id, limit)


class HybridStrategy:
    name = "hybrid"

    def __init__(self, engine: VectorSearchEngine):
        self.engine = engine

    async def attempt_search(self, query, scope_id, limit):
        return await self.engine.hybrid_search(query, scope_id, limit)


class KeywordStrategy:
    name = "keyword"

    def __init__(self, engine: VectorSearchEngine):
        self.engine = engine

    async def attempt_search(self, query, scope_id, limit):
        return await self.engine.keyword_search(extract_keywords(query), scope_id, limit)


class PartialQueryStrategy:
    name = "partial"

    def __init__(self, engine: VectorSearchEngine):
        self.engine = engine

    async def attempt_search(self, query, scope_id, limit):
        return await self.engine.partial_search(query, scope_id, limit)


class FallbackCascade:
    """
    Runs search strategies in order until one returns results
    """

    def __init__(self, strategies: List[SearchStrategy]):
        self.strategies = strategies

    @classmethod
    def default(cls, engine: VectorSearchEngine) -> 'FallbackCascade':
        return cls([
            VectorStrategy(engine),
            HybridStrategy(engine),
            KeywordStrategy(engine),
            PartialQueryStrategy(engine),
        ])

    async def run(self, query: str, scope_id: Optional[str] = None,
                  limit: int = 5) -> Tuple[List[SearchResult], Optional[str]]:
        """
        Returns:
            The first non-empty result set and the name of the stage that produced it,
            or ([], None) when every stage came back empty
        """
        for strategy in self.strategies:
            try:
                results = await strategy.attempt_search(query, scope_id, limit)
            except Exception as e:
                logger.error("Search stage failed", stage=strategy.name,
                             error=str(e), error_type=type(e).__name__)
                continue

            if results:
                logger.debug("Search stage succeeded", stage=strategy.name, results=len(results))
                return results, strategy.name

            logger.debug("Search stage empty", stage=strategy.name)

        return [], None


def calculate_confidence(results: List[SearchResult], config: Optional[RetrievalConfig] = None) -> int:
    """
    Confidence (0-100) from a weighted average of the top scores plus a bonus
    for several high-quality sources
    """
    if not results:
        return 0

    config = config or RetrievalConfig()
    scores = sorted((max(r.score, 0.0) for r in results), reverse=True)
    weights = config.confidence_weights
    top = scores[:len(weights)]

    used = weights[:len(top)]
    average = sum(s * w for s, w in zip(top, used)) / sum(used)

    high_quality = sum(1 for s in scores if s > config.high_quality_score)
    bonus = min(high_quality * config.diversity_bonus_step, config.diversity_bonus_cap)

    return max(0, min(round((average + bonus) * 100), 100))
