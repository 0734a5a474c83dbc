"""
Pytest configuration and fixtures.
"""

import hashlib
import re

import numpy as np
import pytest

from curriculum_rag.models.content import ContentRecord
from curriculum_rag.rag.config import EmbeddingConfig, GenerationConfig, RAGConfig
from curriculum_rag.rag.embedder import ProviderEmbedding
from curriculum_rag.rag.exceptions import ProviderUnavailable
from curriculum_rag.rag.pipeline import RAGPipeline
from curriculum_rag.rag.store import InMemoryContentStore, InMemoryEmbeddingStore

DIMENSIONS = 1024

FRACTIONS_BODY = " ".join(
    f"Sentence {i:02d} explains how we add and subtract small fractions." for i in range(1, 21)
)


def bag_of_words(text: str, dimensions: int = DIMENSIONS) -> np.ndarray:
    """Hashed word-count vector; texts sharing words have positive cosine similarity."""
    vector = np.zeros(dimensions, dtype=np.float32)
    for word in re.findall(r"\w+", text.lower()):
        index = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % dimensions
        vector[index] += 1.0
    return vector


def word_count(text: str) -> int:
    return len(text.split())


class FakeEmbeddingProvider:
    """Deterministic embedding provider recording every batch it receives."""

    def __init__(self, dimensions: int = DIMENSIONS, fail: bool = False):
        self.dimensions = dimensions
        self.fail = fail
        self.calls = []

    async def embed(self, texts):
        self.calls.append(list(texts))
        if self.fail:
            raise ProviderUnavailable("embedding service unavailable")
        return [ProviderEmbedding(vector=bag_of_words(t, self.dimensions), token_count=word_count(t))
                for t in texts]


class FakeCompletionProvider:
    """Completion provider returning canned responses, optionally raising queued errors first."""

    def __init__(self, responses=None, errors=None):
        self.responses = list(responses or ["Fractions are added by finding a common denominator."])
        self.errors = list(errors or [])
        self.calls = []

    async def complete(self, messages, *, temperature, max_tokens):
        self.calls.append({"messages": messages, "temperature": temperature, "max_tokens": max_tokens})
        if self.errors:
            error = self.errors.pop(0)
            if error is not None:
                raise error
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


@pytest.fixture
def rag_config():
    """Configuration with delays disabled and small embeddings."""
    return RAGConfig(
        embedding=EmbeddingConfig(dimensions=DIMENSIONS, batch_delay=0.0),
        generation=GenerationConfig(retry_delay=0.0, min_request_interval=0.0),
    )


@pytest.fixture
def embedding_provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def completion_provider():
    return FakeCompletionProvider()


@pytest.fixture
def fractions_lesson():
    return ContentRecord(
        content_id="content-fractions",
        lesson_id="lesson-fractions",
        title="Adding and Subtracting Fractions",
        unit_title="Fractions",
        subject_name="Mathematics",
        grade=4,
        full_text=FRACTIONS_BODY,
    )


@pytest.fixture
def geometry_lesson():
    return ContentRecord(
        content_id="content-triangles",
        lesson_id="lesson-triangles",
        title="Triangles",
        unit_title="Shapes",
        subject_name="Mathematics",
        grade=5,
        full_text=("Triangles have three sides and three angles that always add up "
                   "to one hundred and eighty degrees in total."),
        examples=[{"problem": "Two angles are 50 and 60 degrees. Find the third.",
                   "solution": "180 - 50 - 60 = 70 degrees."}],
        exercises=["A triangle has angles of 90 and 45 degrees. What is the third angle?"],
    )


@pytest.fixture
def content_store(fractions_lesson, geometry_lesson):
    return InMemoryContentStore([fractions_lesson, geometry_lesson])


@pytest.fixture
def embedding_store():
    return InMemoryEmbeddingStore()


@pytest.fixture
def pipeline(rag_config, embedding_provider, completion_provider, embedding_store, content_store):
    return RAGPipeline(
        rag_config,
        embedding_provider=embedding_provider,
        completion_provider=completion_provider,
        store=embedding_store,
        content_store=content_store,
        token_counter=word_count,
    )


@pytest.fixture
def completion_provider_factory():
    return FakeCompletionProvider


@pytest.fixture
def embedding_provider_factory():
    return FakeEmbeddingProvider


@pytest.fixture
def make_pipeline(rag_config, embedding_store, content_store):
    """Build a pipeline over the shared stores with custom providers or config."""
    def _make(embedding_provider=None, completion_provider=None, config=None, **kwargs):
        return RAGPipeline(
            config or rag_config,
            embedding_provider=embedding_provider or FakeEmbeddingProvider(),
            completion_provider=completion_provider or FakeCompletionProvider(),
            store=embedding_store,
            content_store=content_store,
            token_counter=word_count,
            **kwargs,
        )
    return _make


@pytest.fixture
def vectorize():
    return bag_of_words


@pytest.fixture
def fractions_body():
    return FRACTIONS_BODY
