"""Keyword and vector retrieval over the project index."""

from __future__ import annotations

import logging
import re
from collections import Counter

from dev_assistant.config import RetrievalConfig
from dev_assistant.errors import EmbeddingError, RetrievalUnavailableError
from dev_assistant.ingest.embedder import Embedder
from dev_assistant.retrieval.index_store import IndexState, IndexStore
from dev_assistant.types import Document, RetrievalContext, ScoredChunk, SearchMode, SearchResult

logger = logging.getLogger(__name__)

_WORD_SPLIT = re.compile(r"\W+", flags=re.UNICODE)
_CONTEXT_RULE = "\n\n" + "=" * 80 + "\n\n"
NOTHING_FOUND = "No documentation found for this query."


class RetrievalEngine:
    """Ranks chunks for a query and reports the files backing them.

    Vector search is used whenever an embedder is configured and the index
    holds vectors; otherwise (or when the embedder fails at query time) the
    engine counts query-term occurrences.
    """

    def __init__(
        self,
        store: IndexStore,
        embedder: Embedder | None = None,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.config = config or RetrievalConfig()

    @property
    def vector_ready(self) -> bool:
        return self.embedder is not None and self.store.state.has_embeddings

    def search(self, query: str, limit: int | None = None) -> SearchResult:
        limit = limit or self.config.default_limit
        state = self.store.state
        terms = query_terms(query)
        if not state.chunks or not terms:
            return SearchResult.empty()

        if self.embedder is not None and state.has_embeddings:
            try:
                scored = self._vector_scores(state, query)
            except EmbeddingError as exc:
                logger.warning("Vector search failed, falling back to keyword search: %s", exc)
            else:
                logger.debug("Vector search for %r over %d chunks", query, len(scored))
                return _result(scored[:limit], "vector")

        scored = self._keyword_scores(state, terms)
        logger.debug("Keyword search for %r: %d matching chunks", query, len(scored))
        return _result(scored[:limit], "keyword")

    def similarity_candidates(self, query: str, limit: int | None = None) -> list[ScoredChunk]:
        """Vector-ranked candidates with raw cosine scores, for reranking."""

        state = self.store.state
        if self.embedder is None or not state.has_embeddings:
            raise RetrievalUnavailableError("similarity search requires a vectorized index")
        if not query_terms(query):
            return []
        scored = self._vector_scores(state, query)
        return scored[: limit or self.config.candidate_pool]

    def build_context(self, query: str, max_chunks: int | None = None) -> RetrievalContext:
        return format_context(self.search(query, max_chunks or self.config.context_chunks))

    def documents(self) -> list[Document]:
        return self.store.documents

    def get_document(self, path: str) -> Document | None:
        return self.store.get_document(path)

    def _vector_scores(self, state: IndexState, query: str) -> list[ScoredChunk]:
        assert self.embedder is not None
        query_vector = self.embedder.embed(query[: self.config.max_embedding_chars])
        scored = [
            ScoredChunk(chunk=chunk, score=self.embedder.similarity(query_vector, vector))
            for chunk, vector in zip(state.chunks, state.embeddings, strict=True)
        ]
        scored.sort(key=lambda item: item.score, reverse=True)
        return scored

    @staticmethod
    def _keyword_scores(state: IndexState, terms: list[str]) -> list[ScoredChunk]:
        scored: list[ScoredChunk] = []
        for chunk in state.chunks:
            counts = Counter(token.lower() for token in _WORD_SPLIT.split(chunk.content) if token)
            score = sum(counts[term] for term in terms)
            if score > 0:
                scored.append(ScoredChunk(chunk=chunk, score=float(score)))
        scored.sort(key=lambda item: item.score, reverse=True)
        return scored


def query_terms(query: str) -> list[str]:
    """Lowercased, de-duplicated query words longer than two characters."""
    terms: list[str] = []
    for token in _WORD_SPLIT.split(query.lower()):
        if len(token) > 2 and token not in terms:
            terms.append(token)
    return terms


def format_context(result: SearchResult) -> RetrievalContext:
    if not result.found:
        return RetrievalContext(context=NOTHING_FOUND, sources=[])
    blocks = [
        f"File: {item.chunk.path} (chunk {item.chunk.chunk_index})\n\n{item.chunk.content}"
        for item in result.chunks
    ]
    return RetrievalContext(context=_CONTEXT_RULE.join(blocks), sources=list(result.sources))


def _result(scored: list[ScoredChunk], mode: SearchMode) -> SearchResult:
    if not scored:
        return SearchResult.empty()
    ranked = [
        ScoredChunk(chunk=item.chunk, score=item.score, rank=i + 1)
        for i, item in enumerate(scored)
    ]
    return SearchResult(chunks=ranked, sources=distinct_sources(ranked), mode=mode)


def distinct_sources(items: list[ScoredChunk]) -> list[str]:
    sources: list[str] = []
    for item in items:
        if item.chunk.path not in sources:
            sources.append(item.chunk.path)
    return sources
