"""End-to-end indexing: scan -> chunk -> embed -> persist."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path

from dev_assistant.ingest.scanner import DocumentScanner
from dev_assistant.obs.tracing import Timer
from dev_assistant.retrieval.index_store import IndexStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class IndexReport:
    documents: int
    chunks: int
    vectorized: bool
    from_cache: bool
    elapsed_ms: float


class ProjectIndexer:
    """Coordinates scanner/index store/cache file stages for one project.

    Build, load and reindex are serialized by a per-indexer lock, so a reindex
    requested while another is running waits for it instead of overlapping.
    """

    def __init__(
        self,
        scanner: DocumentScanner,
        store: IndexStore,
        cache_path: str | Path,
    ) -> None:
        self._scanner = scanner
        self._store = store
        self._cache_path = Path(cache_path)
        self._lock = threading.Lock()

    @property
    def cache_path(self) -> Path:
        return self._cache_path

    def load_or_build(self) -> IndexReport:
        """Adopt the cache when it matches this project, else rebuild it."""

        with self._lock, Timer() as timer:
            from_cache = self._store.load(self._cache_path)
            if not from_cache:
                logger.info("Index cache missing or stale, indexing %s", self._store.project.name)
                self._rebuild()
        return self._report(from_cache, timer.elapsed_ms)

    def reindex(self) -> IndexReport:
        """Full rebuild from the current project files."""

        with self._lock, Timer() as timer:
            self._rebuild()
        return self._report(False, timer.elapsed_ms)

    def _rebuild(self) -> None:
        logger.info("Indexing project %s at %s", self._store.project.name, self._store.project.path)
        self._store.build(self._scanner.scan())
        try:
            self._store.save(self._cache_path)
        except OSError as exc:
            logger.warning("Could not write index cache %s: %s", self._cache_path, exc)

    def _report(self, from_cache: bool, elapsed_ms: float) -> IndexReport:
        state = self._store.state
        return IndexReport(
            documents=len(state.documents),
            chunks=len(state.chunks),
            vectorized=state.has_embeddings,
            from_cache=from_cache,
            elapsed_ms=elapsed_ms,
        )
