"""In-memory document/chunk/vector index with JSON snapshot persistence."""

from __future__ import annotations

import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from dev_assistant.config import ProjectInfo
from dev_assistant.errors import EmbeddingError
from dev_assistant.ingest.chunker import ParagraphChunker
from dev_assistant.ingest.embedder import Embedder
from dev_assistant.types import Chunk, Document

logger = logging.getLogger(__name__)


class IndexSnapshot(BaseModel):
    """Serialized form of one project's index."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    project_name: str
    project_path: str
    documents: list[Document]
    chunks: list[Chunk]
    embeddings: list[list[float]]
    timestamp: int
    vectorization_enabled: bool


@dataclass(frozen=True, slots=True)
class IndexState:
    """Immutable view of the index; swapped as a whole on build/load."""

    documents: tuple[Document, ...] = ()
    chunks: tuple[Chunk, ...] = ()
    embeddings: tuple[list[float], ...] = ()
    vectorization_enabled: bool = False
    timestamp: int = 0

    def __post_init__(self) -> None:
        if self.embeddings and len(self.embeddings) != len(self.chunks):
            raise ValueError("chunks and embeddings must have the same length")

    @property
    def has_embeddings(self) -> bool:
        return self.vectorization_enabled and bool(self.embeddings)


class IndexStore:
    """Holds the documents, chunks and chunk vectors of one project.

    `embeddings[i]` always belongs to `chunks[i]`. The whole state is replaced
    in a single assignment so concurrent readers never observe a half-built
    index.
    """

    def __init__(
        self,
        project: ProjectInfo,
        chunker: ParagraphChunker,
        embedder: Embedder | None = None,
        *,
        vectorization_enabled: bool = False,
        max_embedding_chars: int = 8000,
    ) -> None:
        self.project = project
        self.chunker = chunker
        self.embedder = embedder
        self.vectorization_enabled = vectorization_enabled and embedder is not None
        self.max_embedding_chars = max_embedding_chars
        self._state = IndexState()

    @property
    def state(self) -> IndexState:
        return self._state

    @property
    def documents(self) -> list[Document]:
        return list(self._state.documents)

    @property
    def chunks(self) -> list[Chunk]:
        return list(self._state.chunks)

    @property
    def embeddings(self) -> list[list[float]]:
        return list(self._state.embeddings)

    def build(self, documents: list[Document]) -> None:
        """Rebuild the index from scratch for the given documents."""

        unique: dict[str, Document] = {}
        for document in documents:
            unique[document.path] = document
        ordered = list(unique.values())
        chunks = self.chunker.chunk_documents(ordered)
        logger.info("Indexed %d documents into %d chunks", len(ordered), len(chunks))

        embeddings: list[list[float]] = []
        vectorized = False
        if self.vectorization_enabled and chunks:
            embeddings = self._embed_chunks(chunks)
            vectorized = bool(embeddings)
        elif not self.vectorization_enabled:
            logger.info("Vectorization disabled; keyword search only")

        self._state = IndexState(
            documents=tuple(ordered),
            chunks=tuple(chunks),
            embeddings=tuple(embeddings),
            vectorization_enabled=vectorized,
            timestamp=int(time.time() * 1000),
        )

    def save(self, path: str | Path) -> None:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        payload = self.snapshot().model_dump_json(by_alias=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.info("Index saved to %s (%d chunks)", target, len(self._state.chunks))

    def load(self, path: str | Path) -> bool:
        """Adopt a cached snapshot; returns False when it must be rebuilt."""

        source = Path(path)
        if not source.is_file():
            logger.info("No index cache at %s", source)
            return False
        try:
            snapshot = IndexSnapshot.model_validate_json(source.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValidationError) as exc:
            logger.warning("Index cache %s is unreadable, rebuilding: %s", source, exc)
            return False

        if not _same_path(snapshot.project_path, self.project.path):
            logger.warning(
                "Index cache belongs to %s, not %s; rebuilding",
                snapshot.project_path,
                self.project.path,
            )
            return False
        if snapshot.embeddings and len(snapshot.embeddings) != len(snapshot.chunks):
            logger.warning(
                "Index cache has %d chunks but %d embeddings; rebuilding",
                len(snapshot.chunks),
                len(snapshot.embeddings),
            )
            return False
        if snapshot.vectorization_enabled and not snapshot.embeddings and snapshot.chunks:
            logger.warning("Index cache claims vectors but holds none; rebuilding")
            return False

        vectorized = snapshot.vectorization_enabled and self.vectorization_enabled
        self._state = IndexState(
            documents=tuple(snapshot.documents),
            chunks=tuple(snapshot.chunks),
            embeddings=tuple(snapshot.embeddings) if vectorized else (),
            vectorization_enabled=vectorized,
            timestamp=snapshot.timestamp,
        )
        logger.info(
            "Loaded index cache %s: %d documents, %d chunks, vectors=%s",
            source,
            len(snapshot.documents),
            len(snapshot.chunks),
            vectorized,
        )
        return True

    def snapshot(self) -> IndexSnapshot:
        state = self._state
        return IndexSnapshot(
            project_name=self.project.name,
            project_path=self.project.path,
            documents=list(state.documents),
            chunks=list(state.chunks),
            embeddings=list(state.embeddings),
            timestamp=state.timestamp,
            vectorization_enabled=state.vectorization_enabled,
        )

    def get_document(self, path: str) -> Document | None:
        for document in self._state.documents:
            if document.path == path:
                return document
        return None

    def _embed_chunks(self, chunks: list[Chunk]) -> list[list[float]]:
        assert self.embedder is not None
        texts = [chunk.content[: self.max_embedding_chars] for chunk in chunks]
        try:
            embeddings = self.embedder.embed_batch(texts)
        except EmbeddingError as exc:
            logger.warning("Embedding failed, falling back to keyword search: %s", exc)
            return []
        if len(embeddings) != len(chunks):
            logger.warning(
                "Embedding service returned %d vectors for %d chunks; "
                "falling back to keyword search",
                len(embeddings),
                len(chunks),
            )
            return []
        logger.info("Vectorized %d chunks", len(embeddings))
        return embeddings


def _same_path(a: str, b: str) -> bool:
    return Path(a).expanduser().resolve() == Path(b).expanduser().resolve()
