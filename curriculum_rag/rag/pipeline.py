"""
RAG Pipeline Orchestration

Main pipeline that orchestrates lesson indexing and question answering.
"""

from dataclasses import asdict
from typing import Any, Callable, Dict, List, Optional, Tuple
import re
import time

import structlog

from .cache import AnswerCache, CacheSweeper, make_cache_key
from .chunker import DocumentChunker, prepare_exercises, prepare_examples, prepare_lesson_text
from .config import RAGConfig
from .context import ContextBuilder
from .embedder import EmbeddingCache, EmbeddingClient, EmbeddingProvider
from .exceptions import ContentNotFoundError, MalformedGeneratedOutput, ProviderError, RAGError
from .generator import (
    APOLOGY_ANSWER,
    INSUFFICIENT_INFO_ANSWER,
    AnswerGenerator,
    CompletionClient,
    CompletionProvider,
    count_tokens,
    parse_structured_output,
)
from .models import (
    BODY_INDEX_BASE,
    EXAMPLE_INDEX_BASE,
    EXERCISE_INDEX_BASE,
    DocumentChunk,
    RAGResponse,
    SearchResult,
)
from .retriever import FallbackCascade, VectorSearchEngine, calculate_confidence
from .store import ContentStore, EmbeddingStore
from . import prompts
from ..models.content import ContentRecord
from ..models.quiz import QuizQuestion

logger = structlog.get_logger(__name__)

EXPLANATION_CONFIDENCE = 95
QUIZ_CONTEXT_CHUNKS = 10
SUMMARY_CONTEXT_CHUNKS = 20

NO_CONTENT_SUMMARY = "There is no content available to summarise for this lesson."
SUMMARY_FAILED = "Sorry, I could not summarise this lesson."
EXPLANATION_FALLBACK = (
    "{concept} is one of the important concepts in the curriculum. "
    "Please review your textbook or ask your teacher for a detailed explanation."
)
DEFAULT_STUDY_TIPS = [
    "Read the lesson carefully and mark the important points",
    "Write a summary in your own words",
    "Solve a variety of exercises to practise",
    "Review the lesson regularly",
    "Ask about the parts you find difficult",
]

LIST_MARKER = re.compile(r'^\s*(?:[-*•]|\d+[.)])\s*')


def school_stage(grade: int) -> str:
    if grade <= 6:
        return "primary"
    if grade <= 9:
        return "preparatory"
    return "secondary"


class RAGPipeline:
    """
    Main RAG pipeline that orchestrates indexing and question answering
    """

    def __init__(self, config: Optional[RAGConfig],
                 embedding_provider: EmbeddingProvider,
                 completion_provider: CompletionProvider,
                 store: EmbeddingStore,
                 content_store: ContentStore,
                 answer_cache: Optional[AnswerCache] = None,
                 embedding_cache: Optional[EmbeddingCache] = None,
                 token_counter: Callable[[str], int] = count_tokens):
        self.config = config or RAGConfig.from_env()
        self.config.validate()

        self.store = store
        self.content_store = content_store

        self.answer_cache = answer_cache if answer_cache is not None else AnswerCache(
            max_size=self.config.cache.max_size,
            ttl_seconds=self.config.cache.ttl,
            min_confidence=self.config.cache.confidence_threshold,
            eviction_fraction=self.config.cache.eviction_fraction,
        )
        self.embedding_cache = embedding_cache if embedding_cache is not None else EmbeddingCache(
            max_size=self.config.embedding.cache_size,
            ttl_seconds=self.config.embedding.cache_ttl,
        )

        # Initialize components
        self.chunker = DocumentChunker(self.config.chunking)
        self.embedder = EmbeddingClient(embedding_provider, self.embedding_cache, self.config.embedding)
        self.search_engine = VectorSearchEngine(self.embedder, store, self.config.retrieval)
        self.cascade = FallbackCascade.default(self.search_engine)
        self.context_builder = ContextBuilder(self.config.generation,
                                              smart=self.config.features.use_smart_context)
        self.completion_client = CompletionClient(completion_provider, self.config.generation,
                                                  token_counter=token_counter)
        self.generator = AnswerGenerator(self.completion_client, self.config.generation)
        self.sweeper = CacheSweeper([self.answer_cache, self.embedding_cache],
                                    interval=self.config.cache.sweep_interval)

        self.metrics: Dict[str, Any] = {
            "total_questions": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "no_result_answers": 0,
            "failed_generations": 0,
            "degraded_answers": 0,
        }
        self._confidence_total = 0
        self._scored_answers = 0

    def start(self) -> None:
        """Start the background cache sweeper; requires a running event loop"""
        self.sweeper.start()

    async def aclose(self) -> None:
        await self.sweeper.stop()

    async def answer_question(self, question: str, scope_id: Optional[str] = None) -> RAGResponse:
        """
        Answer a question using the RAG pipeline

        Args:
            question: Student's question
            scope_id: Restrict retrieval to one lesson

        Returns:
            Answer with sources and a 0-100 confidence score
        """
        start_time = time.perf_counter()
        features = self.config.features
        self.metrics["total_questions"] += 1

        if not question or not question.strip():
            return RAGResponse(answer=INSUFFICIENT_INFO_ANSWER)

        cache_key = make_cache_key(question, scope_id)
        if features.use_cache:
            cached = self.answer_cache.get(cache_key)
            if cached is not None:
                self.metrics["cache_hits"] += 1
                logger.info("Answer cache hit", scope_id=scope_id)
                return RAGResponse(answer=cached, confidence=100, cached=True)
            self.metrics["cache_misses"] += 1

        results, strategy = await self._search(question, scope_id)
        if not results:
            self.metrics["no_result_answers"] += 1
            logger.info("No relevant chunks found", scope_id=scope_id)
            return RAGResponse(answer=INSUFFICIENT_INFO_ANSWER)

        context = self.context_builder.build(question, results, smart=features.use_smart_context)
        degraded = any(result.degraded for result in results)

        try:
            answer = await self.generator.generate_answer(question, context)
        except ProviderError as e:
            self.metrics["failed_generations"] += 1
            logger.error("Answer generation failed", error=str(e), error_type=type(e).__name__)
            return RAGResponse(answer=APOLOGY_ANSWER, degraded=degraded, strategy=strategy)

        confidence = calculate_confidence(results, self.config.retrieval)
        self._confidence_total += confidence
        self._scored_answers += 1

        if degraded:
            self.metrics["degraded_answers"] += 1
            logger.warning("Answer built from pseudo-embeddings", confidence=confidence)
        elif features.use_cache:
            self.answer_cache.set(cache_key, answer, confidence)

        if features.log_performance:
            logger.info("Answered question",
                        duration_ms=round((time.perf_counter() - start_time) * 1000),
                        confidence=confidence, chunks=len(results), strategy=strategy,
                        cache_size=len(self.answer_cache))

        return RAGResponse(answer=answer, sources=results, confidence=confidence,
                           degraded=degraded, strategy=strategy)

    async def _search(self, question: str,
                      scope_id: Optional[str]) -> Tuple[List[SearchResult], Optional[str]]:
        retrieval = self.config.retrieval
        limit = retrieval.scoped_limit if scope_id else retrieval.unscoped_limit

        results, strategy = await self._run_search(question, scope_id, limit)

        if not results and scope_id and self.config.features.widen_scope_on_miss:
            logger.info("No results in lesson, widening search", scope_id=scope_id)
            results, strategy = await self._run_search(question, None, retrieval.unscoped_limit)

        return results, strategy

    async def _run_search(self, question: str, scope_id: Optional[str],
                          limit: int) -> Tuple[List[SearchResult], Optional[str]]:
        if self.config.features.use_fallback_search:
            return await self.cascade.run(question, scope_id, limit)

        try:
            results = await self.search_engine.search(question, scope_id, limit)
        except Exception as e:
            logger.error("Vector search failed", error=str(e), error_type=type(e).__name__)
            return [], None
        return results, "vector" if results else None

    async def index_document(self, content_id: str) -> int:
        """
        Chunk, embed and store one content record, replacing its previous chunks

        Returns:
            Number of chunks stored

        Raises:
            ContentNotFoundError: the content store has no such record
        """
        record = await self.content_store.get_content(content_id)
        if record is None:
            raise ContentNotFoundError(content_id)

        pieces = self._prepare_pieces(record)
        embeddings = await self.embedder.embed_batch([text for _, text, _ in pieces])

        section_totals: Dict[str, int] = {}
        for _, _, section in pieces:
            section_totals[section] = section_totals.get(section, 0) + 1

        chunks = []
        for (chunk_index, text, section), embedding in zip(pieces, embeddings):
            metadata = self._chunk_metadata(record, section)
            metadata["chunk_number"] = chunk_index % EXAMPLE_INDEX_BASE + 1
            metadata["total_chunks"] = section_totals[section]
            chunks.append(DocumentChunk(
                id=DocumentChunk.make_id(content_id, chunk_index),
                content_id=content_id,
                chunk_index=chunk_index,
                text=text,
                embedding=embedding.vector,
                metadata=metadata,
                degraded=embedding.degraded,
            ))

        await self.store.replace_chunks(content_id, chunks)

        degraded = sum(1 for chunk in chunks if chunk.degraded)
        logger.info("Indexed content", content_id=content_id, chunks=len(chunks), degraded=degraded)
        return len(chunks)

    def _prepare_pieces(self, record: ContentRecord) -> List[Tuple[int, str, str]]:
        """(chunk_index, text, section) for body, example and exercise chunks"""
        sections = [
            (BODY_INDEX_BASE, "body", self.chunker.chunk(prepare_lesson_text(record))),
            (EXAMPLE_INDEX_BASE, "example",
             [piece for text in prepare_examples(record) for piece in self.chunker.chunk(text)]),
            (EXERCISE_INDEX_BASE, "exercise",
             [piece for text in prepare_exercises(record) for piece in self.chunker.chunk(text)]),
        ]

        pieces = []
        for base, section, texts in sections:
            if len(texts) > EXAMPLE_INDEX_BASE:
                logger.warning("Too many chunks for section, truncating",
                               content_id=record.content_id, section=section, chunks=len(texts))
                texts = texts[:EXAMPLE_INDEX_BASE]
            pieces.extend((base + i, text, section) for i, text in enumerate(texts))
        return pieces

    def _chunk_metadata(self, record: ContentRecord, section: str) -> Dict[str, Any]:
        metadata = dict(record.metadata)
        metadata.update({
            "lesson_id": record.scope_id,
            "lesson_title": record.title,
            "title_en": record.title_en,
            "unit_title": record.unit_title,
            "subject_name": record.subject_name,
            "grade": record.grade,
            "difficulty": record.difficulty,
            "section": section,
        })
        return metadata

    async def index_documents(self, content_ids: List[str]) -> Dict[str, Any]:
        """
        Index multiple content records

        Returns:
            Indexing results summary
        """
        total_docs = len(content_ids)
        successful = 0
        total_chunks = 0
        failed_ids = []

        for i, content_id in enumerate(content_ids):
            logger.info("Indexing content", position=i + 1, total=total_docs, content_id=content_id)
            try:
                total_chunks += await self.index_document(content_id)
                successful += 1
            except RAGError as e:
                logger.error("Failed to index content", content_id=content_id, error=str(e))
                failed_ids.append(content_id)

        return {
            "total_documents": total_docs,
            "successful": successful,
            "failed": len(failed_ids),
            "failed_ids": failed_ids,
            "total_chunks": total_chunks,
            "success_rate": successful / total_docs if total_docs > 0 else 0,
        }

    async def generate_quiz_questions(self, lesson_id: str, count: int = 5) -> List[Dict[str, Any]]:
        """
        Generate multiple-choice questions from a lesson's indexed content

        Returns:
            Validated questions, ``[]`` when generation or parsing fails

        Raises:
            ContentNotFoundError: the lesson has no indexed chunks
        """
        chunks = await self.search_engine.lesson_chunks(lesson_id, limit=QUIZ_CONTEXT_CHUNKS)
        if not chunks:
            raise ContentNotFoundError(lesson_id)

        context = self.context_builder.build("", chunks)
        try:
            data = await self.generator.generate_structured(
                prompts.QUIZ_SYSTEM_PROMPT,
                prompts.QUIZ_USER_PROMPT.format(count=count, context=context),
                default=[],
            )
        except ProviderError as e:
            logger.error("Quiz generation failed", lesson_id=lesson_id, error=str(e))
            return []

        if isinstance(data, dict):
            data = data.get("questions", [])
        if not isinstance(data, list):
            return []

        questions = []
        for item in data:
            try:
                questions.append(QuizQuestion.model_validate(item).model_dump(by_alias=True))
            except ValueError as e:
                logger.warning("Discarding invalid quiz question", lesson_id=lesson_id, error=str(e))

        logger.info("Generated quiz questions", lesson_id=lesson_id,
                    requested=count, generated=len(questions))
        return questions[:count]

    async def explain_concept(self, concept: str, grade_level: int) -> str:
        """Explain a concept at the level of the given grade"""
        cache_key = f"explain-{concept}-{grade_level}"
        use_cache = self.config.features.use_cache
        if use_cache:
            cached = self.answer_cache.get(cache_key)
            if cached is not None:
                return cached

        try:
            explanation = await self.generator.generate_text(
                prompts.EXPLAIN_SYSTEM_PROMPT.format(stage=school_stage(grade_level), grade=grade_level),
                prompts.EXPLAIN_USER_PROMPT.format(concept=concept),
                temperature=0.6,
            )
        except ProviderError as e:
            logger.error("Concept explanation failed", concept=concept, error=str(e))
            return EXPLANATION_FALLBACK.format(concept=concept)

        if use_cache:
            self.answer_cache.set(cache_key, explanation, EXPLANATION_CONFIDENCE)
        return explanation

    async def generate_study_tips(self, topic: str, grade_level: int) -> List[str]:
        """Five study tips for a topic"""
        try:
            raw = await self.generator.generate_text(
                prompts.STUDY_TIPS_SYSTEM_PROMPT,
                prompts.STUDY_TIPS_USER_PROMPT.format(topic=topic, grade=grade_level),
            )
        except ProviderError as e:
            logger.error("Study tips generation failed", topic=topic, error=str(e))
            return list(DEFAULT_STUDY_TIPS)

        try:
            tips = parse_structured_output(raw)
        except MalformedGeneratedOutput:
            tips = None

        if isinstance(tips, list) and tips:
            return [str(tip) for tip in tips]

        lines = [LIST_MARKER.sub('', line).strip() for line in raw.splitlines()]
        lines = [line for line in lines if line]
        return lines[:5] or list(DEFAULT_STUDY_TIPS)

    async def summarize_lesson(self, lesson_id: str) -> str:
        """Summarise a lesson from its indexed chunks"""
        chunks = await self.search_engine.lesson_chunks(lesson_id, limit=SUMMARY_CONTEXT_CHUNKS)
        if not chunks:
            return NO_CONTENT_SUMMARY

        context = "\n\n".join(result.chunk.text for result in chunks)
        try:
            return await self.generator.generate_text(
                prompts.SUMMARY_SYSTEM_PROMPT,
                prompts.SUMMARY_USER_PROMPT.format(context=context),
                temperature=0.5,
            )
        except ProviderError as e:
            logger.error("Lesson summary failed", lesson_id=lesson_id, error=str(e))
            return SUMMARY_FAILED

    def get_metrics(self) -> Dict[str, Any]:
        """Get question, cache and provider statistics"""
        total = self.metrics["total_questions"]
        return {
            **self.metrics,
            "cache_hit_rate": round(self.metrics["cache_hits"] / total * 100) if total else 0,
            "average_confidence": (round(self._confidence_total / self._scored_answers, 1)
                                   if self._scored_answers else 0),
            "answer_cache_size": len(self.answer_cache),
            "embedding_cache_size": len(self.embedding_cache),
            "embedding_provider_calls": self.embedder.provider_calls,
            "degraded_embeddings": self.embedder.degraded_count,
            "completion_requests": self.completion_client.request_count,
        }

    def get_feature_status(self) -> Dict[str, Any]:
        """Get feature toggles and cache limits"""
        return {
            **asdict(self.config.features),
            "cache_ttl": self.config.cache.ttl,
            "max_cache_size": self.config.cache.max_size,
            "cache_confidence_threshold": self.config.cache.confidence_threshold,
            "sweeper_running": self.sweeper.running,
        }

    def clear_cache(self, include_embeddings: bool = False) -> int:
        """
        Clear the answer cache

        Returns:
            Number of entries removed
        """
        removed = self.answer_cache.clear()
        if include_embeddings:
            removed += self.embedding_cache.clear()
        logger.info("Cache cleared", removed=removed, include_embeddings=include_embeddings)
        return removed


def create_rag_pipeline(content_store: ContentStore, store: Optional[EmbeddingStore] = None,
                        config: Optional[RAGConfig] = None) -> RAGPipeline:
    """Create a pipeline backed by the OpenAI providers configured in the environment"""
    from ..config.settings import get_settings
    from ..integrations.openai_client import OpenAICompletionProvider, OpenAIEmbeddingProvider
    from .store import InMemoryEmbeddingStore

    settings = get_settings()
    config = config or RAGConfig.from_settings(settings)
    return RAGPipeline(
        config,
        embedding_provider=OpenAIEmbeddingProvider.from_settings(settings),
        completion_provider=OpenAICompletionProvider.from_settings(settings),
        store=store if store is not None else InMemoryEmbeddingStore(),
        content_store=content_store,
    )
