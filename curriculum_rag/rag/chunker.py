"""
Document Chunking Module

Section-aware chunking with word-level overlap between consecutive chunks.
"""

from typing import List, Optional
import re

import structlog

from .config import ChunkingConfig
from ..models.content import ContentRecord

logger = structlog.get_logger(__name__)

# "=== Key Points ===" style markers and Markdown headers start a new section.
SECTION_HEADER = re.compile(r'^\s*(?:={3,}\s*(?P<eq>[^=\n]*?)\s*=*|#{1,6}\s+(?P<md>.+?))\s*$')

# Sentence terminators for Latin, Arabic and Indic scripts (the terminator stays
# with its sentence), blank lines, or a newline that opens a capitalised Latin
# or Arabic line. "1. " list markers are not boundaries.
SENTENCE_BOUNDARY = re.compile(
    r'(?<=[.!?؟।॥])(?<!\d\.)\s+'
    r'|\n\s*\n'
    r'|\n(?=[A-Z\u0600-\u06FF])'
)


class DocumentChunker:
    """
    Splits document text into bounded, overlapping chunks
    """

    def __init__(self, config: Optional[ChunkingConfig] = None):
        self.config = config or ChunkingConfig()

    def chunk(self, text: str, target_size: Optional[int] = None,
              overlap_words: Optional[int] = None) -> List[str]:
        """
        Chunk document text into ordered fragments

        Args:
            text: Full document text
            target_size: Maximum characters per chunk before overlap is added
            overlap_words: Words carried from the end of one chunk into the next

        Returns:
            Ordered list of chunk texts
        """
        if not text or not text.strip():
            return []

        target_size = target_size or self.config.chunk_size
        if overlap_words is None:
            overlap_words = self.config.overlap_words

        content = self._normalize_content(text)

        chunks: List[str] = []
        for section in self._split_sections(content):
            if len(section) <= target_size:
                chunks.append(section)
                continue
            sentences = self._split_sentences(section, target_size)
            chunks.extend(self._chunk_by_sentences(sentences, target_size, overlap_words))

        return self._post_process_chunks(chunks)

    def _normalize_content(self, content: str) -> str:
        """Normalize content for consistent chunking"""
        content = content.replace('\r\n', '\n').replace('\r', '\n')
        content = re.sub(r'\n\s*\n\s*\n+', '\n\n', content)
        content = re.sub(r'[ \t]+', ' ', content)
        return content.strip()

    def _split_sections(self, content: str) -> List[str]:
        """Split content at section markers, keeping each header's title with its section"""
        sections: List[List[str]] = [[]]
        for line in content.split('\n'):
            match = SECTION_HEADER.match(line)
            if match:
                title = (match.group('eq') or match.group('md') or '').strip()
                sections.append([title] if title else [])
            else:
                sections[-1].append(line)

        joined = ('\n'.join(lines).strip() for lines in sections)
        return [section for section in joined if section]

    def _split_sentences(self, text: str, target_size: int) -> List[str]:
        """Split a section into sentences, merging very short ones into their predecessor"""
        raw = [" ".join(s.split()) for s in SENTENCE_BOUNDARY.split(text)]
        raw = [s for s in raw if s]

        merged: List[str] = []
        current = ""
        for sentence in raw:
            if len(sentence) < self.config.min_sentence_length and current:
                current = f"{current} {sentence}"
            else:
                if current:
                    merged.append(current)
                current = sentence
        if current:
            merged.append(current)

        sentences: List[str] = []
        for sentence in merged:
            if len(sentence) > target_size:
                sentences.extend(self._split_oversized(sentence, target_size))
            else:
                sentences.append(sentence)
        return sentences

    def _split_oversized(self, sentence: str, target_size: int) -> List[str]:
        """Break a sentence longer than target_size at word boundaries, slicing words that cannot fit"""
        pieces: List[str] = []
        current = ""
        for word in sentence.split(' '):
            while len(word) > target_size:
                if current:
                    pieces.append(current)
                    current = ""
                pieces.append(word[:target_size])
                word = word[target_size:]
            if not word:
                continue
            if current and len(current) + 1 + len(word) > target_size:
                pieces.append(current)
                current = word
            else:
                current = f"{current} {word}" if current else word
        if current:
            pieces.append(current)
        return pieces

    def _chunk_by_sentences(self, sentences: List[str], target_size: int,
                            overlap_words: int) -> List[str]:
        """Accumulate sentences into chunks, seeding each new chunk with the tail of the last"""
        chunks: List[str] = []
        buffer = ""

        for sentence in sentences:
            if buffer and len(buffer) + 1 + len(sentence) > target_size:
                chunks.append(buffer)
                overlap = self._get_overlap(buffer, overlap_words, target_size // 2)
                # Overlap is dropped when it would push the chunk past target_size
                if overlap and len(overlap) + 1 + len(sentence) <= target_size:
                    buffer = f"{overlap} {sentence}"
                else:
                    buffer = sentence
            else:
                buffer = f"{buffer} {sentence}" if buffer else sentence

        if buffer:
            chunks.append(buffer)
        return chunks

    def _get_overlap(self, chunk: str, overlap_words: int, max_chars: int) -> str:
        """Last overlap_words words of chunk, shortened from the front to fit max_chars"""
        if overlap_words <= 0:
            return ""
        words = chunk.split()[-overlap_words:]
        while words and len(" ".join(words)) > max_chars:
            words = words[1:]
        return " ".join(words)

    def _post_process_chunks(self, chunks: List[str]) -> List[str]:
        """Drop fragments below the minimum chunk length"""
        processed = [c.strip() for c in chunks if len(c.strip()) >= self.config.min_chunk_length]
        dropped = len(chunks) - len(processed)
        if dropped:
            logger.debug("Dropped undersized chunks", dropped=dropped)
        return processed


def prepare_lesson_text(record: ContentRecord) -> str:
    """Body text of a lesson: main content followed by key points and summary sections"""
    parts = [record.full_text.strip()] if record.full_text.strip() else []

    if record.key_points:
        parts.append("=== Key Points ===")
        parts.extend(f"{i}. {point}" for i, point in enumerate(record.key_points, 1))

    if record.summary and record.summary.strip():
        parts.append("=== Summary ===")
        parts.append(record.summary.strip())

    return "\n".join(parts)


def prepare_examples(record: ContentRecord) -> List[str]:
    """One text per worked example"""
    return record.worked_examples()


def prepare_exercises(record: ContentRecord) -> List[str]:
    """One text per exercise or assessment question"""
    return [f"Exercise {i}: {exercise.strip()}"
            for i, exercise in enumerate(record.exercises, 1) if exercise.strip()]
