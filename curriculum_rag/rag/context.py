"""
Context assembly for answer generation.
"""

from typing import List, Optional

import structlog

from .config import GenerationConfig
from .models import SearchResult

logger = structlog.get_logger(__name__)

CONTEXT_HEADER = "Relevant curriculum information:\n\n"
LESSON_RULE = "-" * 40


class ContextBuilder:
    """
    Formats search results into the context block sent to the completion model
    """

    def __init__(self, config: Optional[GenerationConfig] = None, smart: bool = True):
        self.config = config or GenerationConfig()
        self.smart = smart

    def build(self, question: str, results: List[SearchResult], smart: Optional[bool] = None) -> str:
        """
        Build context from search results

        Args:
            question: The question being answered
            results: Retrieved chunks
            smart: Override the configured mode

        Returns:
            Context text, empty when there are no results
        """
        if not results:
            return ""

        use_smart = self.smart if smart is None else smart
        if use_smart:
            return self._build_smart(results)
        return self._build_simple(results)

    def _build_simple(self, results: List[SearchResult]) -> str:
        ranked = self._within_budget(sorted(results, key=lambda r: r.score, reverse=True))

        parts = [CONTEXT_HEADER]
        for i, result in enumerate(ranked, 1):
            parts.append(f"[Fragment {i}]:\n{result.chunk.text}\n")
            if result.chunk.title:
                parts.append(f"(From lesson: {result.chunk.title})\n")
            parts.append("\n---\n\n")
        return "".join(parts)

    def _build_smart(self, results: List[SearchResult]) -> str:
        top = sorted(results, key=lambda r: r.score, reverse=True)[:3]

        # Priority order: the top three, then at most one neighbour from the same document for each
        selected = list(top)
        seen = {r.chunk.id for r in selected}
        for result in top:
            for candidate in results:
                if (candidate.chunk.id not in seen
                        and candidate.chunk.scope_id == result.chunk.scope_id
                        and candidate.chunk.content_id == result.chunk.content_id
                        and abs(candidate.chunk.chunk_index - result.chunk.chunk_index) == 1):
                    selected.append(candidate)
                    seen.add(candidate.chunk.id)
                    break

        kept = self._within_budget(selected)
        kept.sort(key=lambda r: (r.chunk.scope_id, r.chunk.content_id, r.chunk.chunk_index))

        parts = [CONTEXT_HEADER]
        current_lesson = None
        for i, result in enumerate(kept, 1):
            lesson = result.chunk.scope_id
            if lesson != current_lesson:
                current_lesson = lesson
                parts.append(f"\nFrom lesson: {result.chunk.title or lesson}\n{LESSON_RULE}\n")

            parts.append(f"[Fragment {i}]:\n{result.chunk.text}\n")

            percent = round(result.score * 100)
            if result.score > self.config.strong_relevance:
                parts.append(f"(strong relevance: {percent}%)\n")
            elif result.score > self.config.medium_relevance:
                parts.append(f"(medium relevance: {percent}%)\n")
            parts.append("\n")

        return "".join(parts)

    def _within_budget(self, ordered: List[SearchResult]) -> List[SearchResult]:
        """Keep results in priority order until max_context_chars is reached; the first always stays"""
        kept: List[SearchResult] = []
        used = 0
        for result in ordered:
            size = len(result.chunk.text)
            if kept and used + size > self.config.max_context_chars:
                continue
            kept.append(result)
            used += size

        if len(kept) < len(ordered):
            logger.debug("Context truncated", kept=len(kept), dropped=len(ordered) - len(kept))
        return kept
