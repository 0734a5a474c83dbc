"""
Storage interfaces for indexed chunks and source content, with in-memory
implementations.
"""

from typing import Dict, Iterable, List, Optional, Protocol
import json
from pathlib import Path

import structlog

from .models import DocumentChunk
from ..models.content import ContentRecord

logger = structlog.get_logger(__name__)


class EmbeddingStore(Protocol):
    async def replace_chunks(self, content_id: str, chunks: List[DocumentChunk]) -> None:
        """Atomically replace every chunk owned by content_id."""
        ...

    async def delete_chunks(self, content_id: str) -> int:
        ...

    async def list_chunks(self, scope_id: Optional[str] = None) -> List[DocumentChunk]:
        """All chunks, or only those whose scope_id matches."""
        ...

    async def count(self) -> int:
        ...


class ContentStore(Protocol):
    async def get_content(self, content_id: str) -> Optional[ContentRecord]:
        ...


class InMemoryEmbeddingStore:
    """Chunk store held in process memory, keyed by content id."""

    def __init__(self):
        self._chunks: Dict[str, List[DocumentChunk]] = {}

    async def replace_chunks(self, content_id: str, chunks: List[DocumentChunk]) -> None:
        self._chunks[content_id] = sorted(chunks, key=lambda c: c.chunk_index)

    async def delete_chunks(self, content_id: str) -> int:
        return len(self._chunks.pop(content_id, []))

    async def list_chunks(self, scope_id: Optional[str] = None) -> List[DocumentChunk]:
        chunks = [chunk for owned in self._chunks.values() for chunk in owned]
        if scope_id is None:
            return chunks
        return [chunk for chunk in chunks if chunk.scope_id == scope_id]

    async def count(self) -> int:
        return sum(len(owned) for owned in self._chunks.values())


class InMemoryContentStore:
    """Content records held in process memory."""

    def __init__(self, records: Iterable[ContentRecord] = ()):
        self._records: Dict[str, ContentRecord] = {}
        for record in records:
            self.add(record)

    def add(self, record: ContentRecord) -> None:
        self._records[record.content_id] = record

    def content_ids(self) -> List[str]:
        return list(self._records)

    async def get_content(self, content_id: str) -> Optional[ContentRecord]:
        return self._records.get(content_id)

    @classmethod
    def from_json_file(cls, path: Path) -> 'InMemoryContentStore':
        """Load a JSON array of content records"""
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        if isinstance(data, dict):
            data = data.get("lessons", [])

        records = [ContentRecord.model_validate(item) for item in data]
        logger.info("Loaded content records", path=str(path), count=len(records))
        return cls(records)
