"""Paragraph- and sentence-aware chunking implementation."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from dev_assistant.config import ChunkingConfig
from dev_assistant.types import Chunk, Document

_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


@dataclass(slots=True)
class _ChunkState:
    path: str
    limit: int
    buffer: str = ""
    chunks: list[Chunk] = field(default_factory=list)

    def add(self, unit: str, separator: str) -> None:
        if self.buffer and len(self.buffer) + len(separator) + len(unit) > self.limit:
            self.flush()
        self.buffer = f"{self.buffer}{separator}{unit}" if self.buffer else unit

    def flush(self) -> None:
        text = self.buffer.strip()
        if text:
            self.chunks.append(
                Chunk(path=self.path, content=text, chunk_index=len(self.chunks))
            )
        self.buffer = ""


class ParagraphChunker:
    """Splits documents into bounded, semantically coherent chunks.

    Design notes:
    1. A document that fits into `max_chunk_size` characters is one chunk.
    2. Otherwise the text is split on blank lines into paragraphs, and
       paragraphs are packed greedily (joined by a blank line) until the next
       one would overflow the limit.
    3. A paragraph that is itself over the limit starts a fresh chunk and is
       split on sentence boundaries (whitespace after `.`, `!` or `?`);
       sentences are packed the same way, joined by a single space.

    Words and sentences are never cut. A single sentence longer than the limit
    becomes its own oversized chunk. There is no rebalancing pass, so the
    output depends only on the input text and the limit.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def chunk_document(
        self, document: Document, max_chunk_size: int | None = None
    ) -> list[Chunk]:
        """Chunk one document; chunk indexes start at 0 with no gaps."""

        limit = max_chunk_size or self.config.max_chunk_size
        if len(document.content) <= limit:
            text = document.content.strip()
            return [Chunk(path=document.path, content=text, chunk_index=0)] if text else []

        state = _ChunkState(path=document.path, limit=limit)
        for paragraph in self._split_paragraphs(document.content):
            if len(paragraph) <= limit:
                state.add(paragraph, "\n\n")
                continue

            state.flush()
            for sentence in self._split_sentences(paragraph):
                state.add(sentence, " ")
        state.flush()
        return state.chunks

    def chunk_documents(self, documents: list[Document]) -> list[Chunk]:
        chunks: list[Chunk] = []
        for document in documents:
            chunks.extend(self.chunk_document(document))
        return chunks

    @staticmethod
    def _split_paragraphs(text: str) -> list[str]:
        return [part.strip() for part in _PARAGRAPH_SPLIT.split(text) if part.strip()]

    @staticmethod
    def _split_sentences(paragraph: str) -> list[str]:
        return [part.strip() for part in _SENTENCE_SPLIT.split(paragraph) if part.strip()]
