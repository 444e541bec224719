"""Threshold + model-scored reranking with fallback to plain retrieval."""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Literal

from dev_assistant.config import RerankConfig
from dev_assistant.errors import (
    EmbeddingError,
    LanguageModelError,
    RerankUnavailableError,
    RetrievalUnavailableError,
)
from dev_assistant.llm.chat import LanguageModel
from dev_assistant.retrieval.engine import RetrievalEngine, distinct_sources
from dev_assistant.types import ConversationMessage, RankedChunk, ScoredChunk, SearchResult

logger = logging.getLogger(__name__)

_SCORE_PATTERN = re.compile(r"\d+(?:\.\d+)?")

SCORING_SYSTEM_PROMPT = """
You rate how useful one documentation chunk is for answering a developer's question.

Rate liberally:
- If the chunk is related to the topic of the question at all, score it 5 or higher.
- If the chunk contains keywords from the question, that alone is worth 5.
- Score 0 only when the chunk is about something else entirely.

Reply with ONE integer from 0 to 10 and nothing else.
""".strip()


@dataclass(slots=True)
class RerankStats:
    initial: int
    after_threshold: int
    after_model: int
    final: int


@dataclass(slots=True)
class RerankResult:
    chunks: list[RankedChunk]
    reason: Literal["success", "no_results_above_threshold"]
    stats: RerankStats | None = None


class Reranker(ABC):
    """Reranker interface applied to similarity-scored candidates."""

    @abstractmethod
    def rerank(self, query: str, candidates: list[ScoredChunk]) -> RerankResult:
        """Return candidates in the final ranking order."""


class HybridReranker(Reranker):
    """Similarity threshold first, then per-chunk relevance scores from the model.

    Only the first `max_chunks_for_model` survivors (in similarity order) are
    sent to the model, one request each. Survivors past that cap keep their
    similarity score, are never promoted above a scored chunk, and only fill
    the result when fewer than `top_k` chunks were scored.
    """

    def __init__(self, llm: LanguageModel, config: RerankConfig | None = None) -> None:
        self.llm = llm
        self.config = config or RerankConfig()

    def filter_by_threshold(self, candidates: list[ScoredChunk]) -> list[RankedChunk]:
        kept = [
            RankedChunk(chunk=item.chunk, similarity_score=item.score)
            for item in candidates
            if item.score >= self.config.min_similarity
        ]
        logger.info(
            "Threshold %.2f kept %d of %d candidates",
            self.config.min_similarity,
            len(kept),
            len(candidates),
        )
        return kept

    def score_with_model(self, query: str, ranked: list[RankedChunk]) -> list[RankedChunk]:
        ordered = sorted(ranked, key=lambda item: item.similarity_score, reverse=True)
        to_score = ordered[: self.config.max_chunks_for_model]
        if len(ordered) > len(to_score):
            logger.info(
                "Scoring top %d of %d candidates with the model", len(to_score), len(ordered)
            )

        scored: list[RankedChunk] = []
        for index, item in enumerate(to_score, start=1):
            try:
                reply = self.llm.ask(_scoring_messages(query, item))
            except LanguageModelError as exc:
                logger.warning("Scoring %s failed, counting it as 0: %s", item.chunk.id, exc)
                reply = ""
            score = parse_relevance_score(reply)
            logger.debug(
                "[%d/%d] %s scored %.0f/10", index, len(to_score), item.chunk.id, score
            )
            scored.append(
                RankedChunk(chunk=item.chunk, similarity_score=item.similarity_score, model_score=score)
            )

        scored.sort(key=lambda item: (item.model_score or 0.0, item.similarity_score), reverse=True)
        return scored + ordered[len(to_score) :]

    def rerank(self, query: str, candidates: list[ScoredChunk]) -> RerankResult:
        after_threshold = self.filter_by_threshold(candidates)
        if not after_threshold:
            logger.warning("No candidates above similarity threshold %.2f", self.config.min_similarity)
            return RerankResult(
                chunks=[],
                reason="no_results_above_threshold",
                stats=RerankStats(
                    initial=len(candidates), after_threshold=0, after_model=0, final=0
                ),
            )

        after_model = self.score_with_model(query, after_threshold)
        final = after_model[: self.config.top_k]
        stats = RerankStats(
            initial=len(candidates),
            after_threshold=len(after_threshold),
            after_model=len(after_model),
            final=len(final),
        )
        logger.info(
            "Rerank stats: initial=%d after_threshold=%d after_model=%d final=%d",
            stats.initial,
            stats.after_threshold,
            stats.after_model,
            stats.final,
        )
        for position, item in enumerate(final, start=1):
            logger.info(
                "  %d. [model %s, sim %.0f%%] %s",
                position,
                "-" if item.model_score is None else f"{item.model_score:.0f}/10",
                item.similarity_score * 100,
                item.chunk.id,
            )
        return RerankResult(chunks=final, reason="success", stats=stats)


class RerankedRetriever:
    """Precision search: rerank similarity candidates, else plain retrieval.

    Any reranking failure (keyword-only index, embedding error, or no candidate
    above the threshold) returns the engine's ordinary result with
    `reranked=False`; it never raises for those conditions.
    """

    def __init__(
        self,
        engine: RetrievalEngine,
        reranker: Reranker | None,
        config: RerankConfig | None = None,
    ) -> None:
        self.engine = engine
        self.reranker = reranker
        self.config = config or RerankConfig()

    def search(self, query: str, top_k: int | None = None) -> SearchResult:
        top_k = top_k or self.config.top_k
        try:
            ranked = self._rerank(query, top_k)
        except (RerankUnavailableError, RetrievalUnavailableError, EmbeddingError) as exc:
            logger.warning("Reranking unavailable, using plain retrieval: %s", exc)
            return self.engine.search(query, top_k)

        items = [
            ScoredChunk(chunk=item.chunk, score=item.similarity_score, rank=i + 1)
            for i, item in enumerate(ranked)
        ]
        return SearchResult(
            chunks=items, sources=distinct_sources(items), mode="vector", reranked=True
        )

    def _rerank(self, query: str, top_k: int) -> list[RankedChunk]:
        if self.reranker is None:
            raise RerankUnavailableError("no reranker configured")
        candidates = self.engine.similarity_candidates(query, self.engine.config.candidate_pool)
        if not candidates:
            raise RerankUnavailableError("no candidates to rerank")
        result = self.reranker.rerank(query, candidates)
        if result.reason != "success" or not result.chunks:
            raise RerankUnavailableError(result.reason)
        return result.chunks[:top_k]


def parse_relevance_score(reply: str) -> float:
    """Parse a 0-10 score; anything else counts as 0."""
    text = reply.strip()
    if not _SCORE_PATTERN.fullmatch(text):
        return 0.0
    score = float(text)
    return score if 0.0 <= score <= 10.0 else 0.0


def _scoring_messages(query: str, item: RankedChunk) -> list[ConversationMessage]:
    return [
        ConversationMessage(role="system", content=SCORING_SYSTEM_PROMPT),
        ConversationMessage(
            role="user",
            content=(
                f"QUESTION: {query}\n\n"
                f"DOCUMENT CHUNK (file {item.chunk.path}, chunk {item.chunk.chunk_index}):\n"
                f"{item.chunk.content}\n\n"
                "Relevance (0-10):"
            ),
        ),
    ]
