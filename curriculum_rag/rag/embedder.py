"""
Embedding Generation Module

Handles vector embeddings for document chunks and queries, with an LRU cache
in front of the provider and deterministic stand-in vectors when the
provider is unavailable.
"""

from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple
import asyncio
import hashlib
import time

import numpy as np
import structlog

from .config import EmbeddingConfig
from .exceptions import ProviderError
from .models import EmbeddingResult

logger = structlog.get_logger(__name__)


@dataclass
class ProviderEmbedding:
    """Raw vector returned by an embedding provider."""
    vector: Sequence[float]
    token_count: int = 0


class EmbeddingProvider(Protocol):
    async def embed(self, texts: List[str]) -> List[ProviderEmbedding]:
        """Embed texts in order; raises ProviderError subclasses on failure."""
        ...


class EmbeddingCache:
    """
    Exact-text LRU cache of embedding vectors with a time-to-live
    """

    def __init__(self, max_size: int = 500, ttl_seconds: float = 24 * 60 * 60,
                 clock: Callable[[], float] = time.monotonic):
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[np.ndarray, int, float]]" = OrderedDict()

    def get(self, text: str) -> Optional[EmbeddingResult]:
        entry = self._entries.get(text)
        if entry is None:
            return None

        vector, token_count, created_at = entry
        if self._clock() - created_at > self.ttl_seconds:
            del self._entries[text]
            return None

        self._entries.move_to_end(text)
        return EmbeddingResult(vector=vector, token_count=token_count)

    def set(self, text: str, result: EmbeddingResult) -> None:
        if result.degraded:
            return

        if text in self._entries:
            self._entries.move_to_end(text)
        self._entries[text] = (result.vector, result.token_count, self._clock())

        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def sweep(self) -> int:
        """Remove expired entries; returns how many were removed"""
        now = self._clock()
        expired = [key for key, (_, _, created_at) in self._entries.items()
                   if now - created_at > self.ttl_seconds]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> int:
        removed = len(self._entries)
        self._entries.clear()
        return removed

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, text: str) -> bool:
        return text in self._entries


def pseudo_embedding(text: str, dimensions: int) -> np.ndarray:
    """Deterministic unit vector derived from the SHA-256 digest of text."""
    seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
    rng = np.random.default_rng(seed)
    vector = rng.standard_normal(dimensions).astype(np.float32)
    return vector / np.linalg.norm(vector)


class EmbeddingClient:
    """
    Generate embeddings through a provider, caching by exact text
    """

    def __init__(self, provider: EmbeddingProvider, cache: Optional[EmbeddingCache] = None,
                 config: Optional[EmbeddingConfig] = None):
        self.config = config or EmbeddingConfig()
        self.provider = provider
        self.cache = cache if cache is not None else EmbeddingCache(
            max_size=self.config.cache_size, ttl_seconds=self.config.cache_ttl
        )
        self.provider_calls = 0
        self.degraded_count = 0

    async def embed(self, text: str) -> EmbeddingResult:
        """
        Generate embedding for a single text

        Args:
            text: Text to embed

        Returns:
            EmbeddingResult, degraded when the provider failed
        """
        results = await self.embed_batch([text])
        return results[0]

    async def embed_batch(self, texts: List[str]) -> List[EmbeddingResult]:
        """
        Generate embeddings for multiple texts, calling the provider only for cache misses

        Misses are sent in sequential batches of ``batch_size`` with ``batch_delay``
        seconds between batches.
        """
        results: List[Optional[EmbeddingResult]] = [None] * len(texts)
        misses: Dict[str, List[int]] = {}

        for i, text in enumerate(texts):
            cached = self.cache.get(text)
            if cached is not None:
                results[i] = cached
            else:
                misses.setdefault(text, []).append(i)

        pending = list(misses)
        batch_size = self.config.batch_size
        for start in range(0, len(pending), batch_size):
            if start and self.config.batch_delay > 0:
                await asyncio.sleep(self.config.batch_delay)

            batch = pending[start:start + batch_size]
            for text, result in zip(batch, await self._embed_uncached(batch)):
                self.cache.set(text, result)
                for i in misses[text]:
                    results[i] = result

        return results

    async def _embed_uncached(self, texts: List[str]) -> List[EmbeddingResult]:
        """Process a batch of texts"""
        self.provider_calls += 1
        try:
            embeddings = await self.provider.embed(texts)
            if len(embeddings) != len(texts):
                raise ProviderError(
                    f"Provider returned {len(embeddings)} embeddings for {len(texts)} texts"
                )
        except ProviderError as e:
            self.degraded_count += len(texts)
            logger.warning("Embedding provider failed, using pseudo-embeddings",
                           error=str(e), error_type=type(e).__name__, batch_size=len(texts))
            return [
                EmbeddingResult(vector=pseudo_embedding(text, self.config.dimensions), degraded=True)
                for text in texts
            ]

        return [
            EmbeddingResult(vector=np.asarray(e.vector, dtype=np.float32), token_count=e.token_count)
            for e in embeddings
        ]
