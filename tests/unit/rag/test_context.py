"""
Unit tests for ContextBuilder.
"""

import numpy as np
import pytest

from curriculum_rag.rag.config import GenerationConfig
from curriculum_rag.rag.context import CONTEXT_HEADER, ContextBuilder
from curriculum_rag.rag.models import DocumentChunk, SearchResult


def result(index, score, lesson_id="l1", text=None, content_id=None):
    content_id = content_id or f"content-{lesson_id}"
    chunk = DocumentChunk(
        id=DocumentChunk.make_id(content_id, index),
        content_id=content_id,
        chunk_index=index,
        text=text or f"Chunk {index} of {lesson_id} talks about fractions.",
        embedding=np.zeros(4),
        metadata={"lesson_id": lesson_id, "lesson_title": f"Lesson {lesson_id}"},
    )
    return SearchResult(chunk, score)


class TestContextBuilder:
    """Test cases for ContextBuilder."""

    def test_no_results_gives_empty_context(self):
        assert ContextBuilder().build("q", []) == ""

    def test_simple_mode_orders_by_score(self):
        results = [result(0, 0.3), result(1, 0.9), result(2, 0.5)]

        context = ContextBuilder(smart=False).build("q", results)

        assert context.startswith(CONTEXT_HEADER)
        assert context.index("Chunk 1 ") < context.index("Chunk 2 ") < context.index("Chunk 0 ")
        assert "[Fragment 1]:\nChunk 1 of l1" in context
        assert "(From lesson: Lesson l1)" in context
        assert context.count("\n---\n") == 3

    def test_smart_mode_adds_one_neighbour_per_top_result(self):
        results = [
            result(2, 0.9), result(4, 0.8), result(0, 0.75),
            result(1, 0.5), result(3, 0.25), result(5, 0.2), result(7, 0.1),
        ]

        context = ContextBuilder().build("q", results)

        for index in (0, 1, 2, 3, 4):
            assert f"Chunk {index} of l1" in context
        assert "Chunk 5 of l1" not in context
        assert "Chunk 7 of l1" not in context

    def test_smart_mode_reads_in_lesson_order(self):
        results = [result(2, 0.9), result(1, 0.3), result(0, 0.8)]

        context = ContextBuilder().build("q", results)

        assert context.index("Chunk 0 ") < context.index("Chunk 1 ") < context.index("Chunk 2 ")

    def test_neighbours_must_share_lesson(self):
        results = [result(2, 0.9, "l1"), result(1, 0.3, "l2")]

        context = ContextBuilder().build("q", results)

        assert "Chunk 1 of l2" not in context

    def test_neighbours_must_share_document(self):
        results = [
            result(2, 0.9, content_id="content-a"),
            result(7, 0.8, content_id="content-a"),
            result(9, 0.7, content_id="content-a"),
            result(3, 0.1, text="Chunk 3 of another document in l1.", content_id="content-b"),
        ]

        context = ContextBuilder().build("q", results)

        assert "Chunk 2 of l1" in context
        assert "another document" not in context

    def test_lesson_headers_and_relevance_markers(self):
        results = [result(0, 0.9, "l1"), result(3, 0.5, "l2"), result(6, 0.2, "l3")]

        context = ContextBuilder().build("q", results)

        assert context.count("From lesson: ") == 3
        assert "From lesson: Lesson l1\n" + "-" * 40 in context
        assert "(strong relevance: 90%)" in context
        assert "(medium relevance: 50%)" in context
        assert "relevance: 20%" not in context

    @pytest.mark.parametrize("smart", [True, False])
    def test_context_capped_at_max_chars(self, smart):
        builder = ContextBuilder(GenerationConfig(max_context_chars=100))
        results = [result(0, 0.9, text="a" * 60), result(5, 0.8, text="b" * 60)]

        context = builder.build("q", results, smart=smart)

        assert "a" * 60 in context
        assert "b" * 60 not in context

    def test_first_fragment_kept_even_when_oversized(self):
        builder = ContextBuilder(GenerationConfig(max_context_chars=10))

        context = builder.build("q", [result(0, 0.9, text="x" * 50)])

        assert "x" * 50 in context
