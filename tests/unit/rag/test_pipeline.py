"""
Unit tests for RAGPipeline.
"""

import json
from dataclasses import replace

import pytest

from curriculum_rag.rag.cache import make_cache_key
from curriculum_rag.rag.config import FeatureFlags
from curriculum_rag.rag.exceptions import ContentNotFoundError, ProviderUnavailable
from curriculum_rag.rag.generator import APOLOGY_ANSWER, INSUFFICIENT_INFO_ANSWER
from curriculum_rag.rag.pipeline import (
    DEFAULT_STUDY_TIPS,
    NO_CONTENT_SUMMARY,
    SUMMARY_FAILED,
    school_stage,
)

FRACTIONS_QUESTION = "How do we add and subtract small fractions?"

VALID_QUESTION = {
    "question": "What is 1/4 + 1/4?",
    "options": ["1/2", "1/8", "2/8", "1"],
    "correctAnswer": "1/2",
    "explanation": "Add the numerators and keep the denominator.",
}


class TestIndexing:
    """Test cases for indexing content records."""

    async def test_index_document_sections_use_reserved_ranges(self, pipeline, embedding_store):
        count = await pipeline.index_document("content-triangles")

        chunks = await embedding_store.list_chunks("lesson-triangles")
        assert count == 3
        assert [c.chunk_index for c in chunks] == [0, 1000, 2000]
        assert [c.metadata["section"] for c in chunks] == ["body", "example", "exercise"]
        assert chunks[2].text.startswith("Exercise 1:")

    async def test_chunk_metadata(self, pipeline, embedding_store):
        await pipeline.index_document("content-fractions")

        chunks = await embedding_store.list_chunks("lesson-fractions")
        assert len(chunks) == 3
        first = chunks[0]
        assert first.id == "content-fractions:0"
        assert first.metadata["lesson_title"] == "Adding and Subtracting Fractions"
        assert first.metadata["subject_name"] == "Mathematics"
        assert first.metadata["grade"] == 4
        assert [c.metadata["chunk_number"] for c in chunks] == [1, 2, 3]
        assert all(c.metadata["total_chunks"] == 3 for c in chunks)
        assert not any(c.degraded for c in chunks)

    async def test_reindex_replaces_chunks(self, pipeline, embedding_store):
        await pipeline.index_document("content-fractions")
        await pipeline.index_document("content-fractions")

        assert await embedding_store.count() == 3

    async def test_unknown_content_raises(self, pipeline):
        with pytest.raises(ContentNotFoundError):
            await pipeline.index_document("content-missing")

    async def test_index_documents_summary(self, pipeline):
        summary = await pipeline.index_documents(["content-fractions", "content-missing"])

        assert summary["total_documents"] == 2
        assert summary["successful"] == 1
        assert summary["failed_ids"] == ["content-missing"]
        assert summary["total_chunks"] == 3
        assert summary["success_rate"] == 0.5

    async def test_provider_outage_indexes_degraded_chunks(self, make_pipeline, embedding_provider_factory,
                                                           embedding_store):
        pipeline = make_pipeline(embedding_provider=embedding_provider_factory(fail=True))

        assert await pipeline.index_document("content-fractions") == 3
        assert all(c.degraded for c in await embedding_store.list_chunks())


class TestAnswerQuestion:
    """Test cases for answer_question."""

    async def test_blank_question(self, pipeline, completion_provider):
        response = await pipeline.answer_question("   ")

        assert response.answer == INSUFFICIENT_INFO_ANSWER
        assert response.confidence == 0
        assert completion_provider.calls == []

    async def test_answer_cached_after_confident_generation(self, pipeline, completion_provider):
        await pipeline.index_document("content-fractions")

        first = await pipeline.answer_question(FRACTIONS_QUESTION, "lesson-fractions")
        second = await pipeline.answer_question("how do we add and subtract small fractions", "lesson-fractions")

        assert first.strategy == "vector"
        assert first.confidence > 40
        assert first.sources
        assert not first.cached
        assert second.cached
        assert second.answer == first.answer
        assert len(completion_provider.calls) == 1

    async def test_generation_failure_returns_apology(self, make_pipeline, completion_provider_factory):
        provider = completion_provider_factory(errors=[ProviderUnavailable("down")])
        pipeline = make_pipeline(completion_provider=provider)
        await pipeline.index_document("content-fractions")

        response = await pipeline.answer_question(FRACTIONS_QUESTION, "lesson-fractions")

        assert response.answer == APOLOGY_ANSWER
        assert response.confidence == 0
        assert response.sources == []
        assert make_cache_key(FRACTIONS_QUESTION, "lesson-fractions") not in pipeline.answer_cache
        assert pipeline.get_metrics()["failed_generations"] == 1

    async def test_degraded_answers_not_cached(self, make_pipeline, embedding_provider_factory,
                                               completion_provider):
        pipeline = make_pipeline(embedding_provider=embedding_provider_factory(fail=True),
                                 completion_provider=completion_provider)
        await pipeline.index_document("content-fractions")

        first = await pipeline.answer_question(FRACTIONS_QUESTION, "lesson-fractions")
        second = await pipeline.answer_question(FRACTIONS_QUESTION, "lesson-fractions")

        assert first.degraded
        assert not second.cached
        assert len(pipeline.answer_cache) == 0
        assert len(completion_provider.calls) == 2
        assert pipeline.get_metrics()["degraded_answers"] == 2

    async def test_cache_disabled(self, make_pipeline, rag_config, completion_provider):
        config = replace(rag_config, features=FeatureFlags(use_cache=False))
        pipeline = make_pipeline(completion_provider=completion_provider, config=config)
        await pipeline.index_document("content-fractions")

        await pipeline.answer_question(FRACTIONS_QUESTION, "lesson-fractions")
        second = await pipeline.answer_question(FRACTIONS_QUESTION, "lesson-fractions")

        assert not second.cached
        assert len(completion_provider.calls) == 2

    async def test_empty_scope_is_not_widened_by_default(self, pipeline):
        await pipeline.index_document("content-fractions")

        response = await pipeline.answer_question(FRACTIONS_QUESTION, "lesson-empty")

        assert response.answer == INSUFFICIENT_INFO_ANSWER
        assert pipeline.get_metrics()["no_result_answers"] == 1

    async def test_widen_scope_on_miss(self, make_pipeline, rag_config):
        config = replace(rag_config, features=FeatureFlags(widen_scope_on_miss=True))
        pipeline = make_pipeline(config=config)
        await pipeline.index_document("content-fractions")

        response = await pipeline.answer_question(FRACTIONS_QUESTION, "lesson-empty")

        assert response.sources
        assert all(s.chunk.scope_id == "lesson-fractions" for s in response.sources)

    async def test_vector_only_search_without_fallback(self, make_pipeline, rag_config):
        config = replace(rag_config, features=FeatureFlags(use_fallback_search=False))
        pipeline = make_pipeline(config=config)
        await pipeline.index_document("content-fractions")

        response = await pipeline.answer_question(FRACTIONS_QUESTION, "lesson-fractions")

        assert response.strategy == "vector"


class TestLessonFeatures:
    """Test cases for quiz, explanation, study tips and summary generation."""

    async def test_quiz_keeps_only_valid_questions(self, make_pipeline, completion_provider_factory):
        invalid = dict(VALID_QUESTION, correctAnswer="3/4")
        provider = completion_provider_factory([json.dumps([VALID_QUESTION, invalid, "not a question"])])
        pipeline = make_pipeline(completion_provider=provider)
        await pipeline.index_document("content-fractions")

        questions = await pipeline.generate_quiz_questions("lesson-fractions", count=3)

        assert questions == [VALID_QUESTION]
        assert "Sentence 01" in provider.calls[0]["messages"][1]["content"]

    async def test_quiz_accepts_questions_object(self, make_pipeline, completion_provider_factory):
        payload = "```json\n" + json.dumps({"questions": [VALID_QUESTION] * 4}) + "\n```"
        pipeline = make_pipeline(completion_provider=completion_provider_factory([payload]))
        await pipeline.index_document("content-fractions")

        assert len(await pipeline.generate_quiz_questions("lesson-fractions", count=2)) == 2

    async def test_quiz_unparseable_output(self, make_pipeline, completion_provider_factory):
        pipeline = make_pipeline(completion_provider=completion_provider_factory(["Sorry, no quiz."]))
        await pipeline.index_document("content-fractions")

        assert await pipeline.generate_quiz_questions("lesson-fractions") == []

    async def test_quiz_without_indexed_lesson(self, pipeline):
        with pytest.raises(ContentNotFoundError):
            await pipeline.generate_quiz_questions("lesson-fractions")

    async def test_explanation_cached_per_grade(self, make_pipeline, completion_provider_factory):
        provider = completion_provider_factory(["A fraction is a part of a whole."])
        pipeline = make_pipeline(completion_provider=provider)

        first = await pipeline.explain_concept("fractions", 4)
        second = await pipeline.explain_concept("fractions", 4)
        await pipeline.explain_concept("fractions", 8)

        assert first == second == "A fraction is a part of a whole."
        assert len(provider.calls) == 2
        assert "primary" in provider.calls[0]["messages"][0]["content"]
        assert "preparatory" in provider.calls[1]["messages"][0]["content"]

    async def test_explanation_fallback(self, make_pipeline, completion_provider_factory):
        provider = completion_provider_factory(errors=[ProviderUnavailable("down")])
        pipeline = make_pipeline(completion_provider=provider)

        explanation = await pipeline.explain_concept("fractions", 4)

        assert "fractions" in explanation
        assert "explain-fractions-4" not in pipeline.answer_cache

    async def test_study_tips_from_json(self, make_pipeline, completion_provider_factory):
        tips = ["Draw pizzas", "Use a number line", "Practise daily", "Check answers", "Teach a friend"]
        pipeline = make_pipeline(completion_provider=completion_provider_factory([json.dumps(tips)]))

        assert await pipeline.generate_study_tips("fractions", 4) == tips

    async def test_study_tips_from_lines(self, make_pipeline, completion_provider_factory):
        raw = "1. Draw pizzas\n2) Use a number line\n\n- Practise daily\n* Check answers\n• Teach a friend\n6. Rest"
        pipeline = make_pipeline(completion_provider=completion_provider_factory([raw]))

        assert await pipeline.generate_study_tips("fractions", 4) == [
            "Draw pizzas", "Use a number line", "Practise daily", "Check answers", "Teach a friend",
        ]

    async def test_study_tips_default(self, make_pipeline, completion_provider_factory):
        provider = completion_provider_factory(errors=[ProviderUnavailable("down")])
        pipeline = make_pipeline(completion_provider=provider)

        assert await pipeline.generate_study_tips("fractions", 4) == DEFAULT_STUDY_TIPS

    async def test_summary(self, make_pipeline, completion_provider_factory):
        provider = completion_provider_factory(["Fractions are added with common denominators."])
        pipeline = make_pipeline(completion_provider=provider)
        await pipeline.index_document("content-fractions")

        summary = await pipeline.summarize_lesson("lesson-fractions")

        assert summary == "Fractions are added with common denominators."
        assert "Sentence 20" in provider.calls[0]["messages"][1]["content"]

    async def test_summary_without_content(self, pipeline, completion_provider):
        assert await pipeline.summarize_lesson("lesson-fractions") == NO_CONTENT_SUMMARY
        assert completion_provider.calls == []

    async def test_summary_failure(self, make_pipeline, completion_provider_factory):
        provider = completion_provider_factory(errors=[ProviderUnavailable("down")])
        pipeline = make_pipeline(completion_provider=provider)
        await pipeline.index_document("content-fractions")

        assert await pipeline.summarize_lesson("lesson-fractions") == SUMMARY_FAILED


class TestPipelineManagement:
    """Test cases for metrics, feature status and cache management."""

    async def test_metrics(self, pipeline):
        await pipeline.index_document("content-fractions")
        await pipeline.answer_question(FRACTIONS_QUESTION, "lesson-fractions")
        await pipeline.answer_question(FRACTIONS_QUESTION, "lesson-fractions")

        metrics = pipeline.get_metrics()

        assert metrics["total_questions"] == 2
        assert metrics["cache_hits"] == 1
        assert metrics["cache_misses"] == 1
        assert metrics["cache_hit_rate"] == 50
        assert metrics["average_confidence"] > 40
        assert metrics["answer_cache_size"] == 1
        assert metrics["completion_requests"] == 1
        assert metrics["embedding_provider_calls"] >= 2

    async def test_feature_status_and_sweeper(self, pipeline):
        assert pipeline.get_feature_status()["sweeper_running"] is False

        pipeline.start()
        status = pipeline.get_feature_status()
        await pipeline.aclose()

        assert status["sweeper_running"] is True
        assert status["use_cache"] is True
        assert status["max_cache_size"] == 200
        assert not pipeline.sweeper.running

    async def test_clear_cache(self, pipeline):
        await pipeline.index_document("content-fractions")
        await pipeline.answer_question(FRACTIONS_QUESTION, "lesson-fractions")

        assert pipeline.clear_cache() == 1
        assert len(pipeline.answer_cache) == 0
        embeddings = len(pipeline.embedding_cache)
        assert embeddings > 0
        assert pipeline.clear_cache(include_embeddings=True) == embeddings
        assert len(pipeline.embedding_cache) == 0


@pytest.mark.parametrize("grade, stage", [(1, "primary"), (6, "primary"), (7, "preparatory"),
                                          (9, "preparatory"), (10, "secondary")])
def test_school_stage(grade, stage):
    assert school_stage(grade) == stage
