"""Embedding abstractions, an Ollama HTTP adapter and a deterministic baseline."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt
from typing import Any

import httpx

from dev_assistant.config import VectorizationConfig
from dev_assistant.errors import EmbeddingError

logger = logging.getLogger(__name__)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Return dot(a, b) / (|a| * |b|), or 0.0 for empty, mismatched or zero vectors."""
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)


class Embedder(ABC):
    """Embedding port used by indexing and retrieval components."""

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        """Embed one text."""

    @abstractmethod
    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed many texts, preserving order."""

    def health_check(self) -> bool:
        return True

    def similarity(self, a: list[float], b: list[float]) -> float:
        return cosine_similarity(a, b)


class HashingEmbedder(Embedder):
    """Deterministic sparse-like embedding without external model calls.

    Used for offline runs and deterministic tests. Tokens are hashed into a
    fixed number of signed buckets and the result is L2-normalized.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [self.embed(text) for text in texts]

    def embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = text.lower().split()
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


class OllamaEmbedder(Embedder):
    """Embedding client for the Ollama `/api/embeddings` endpoint."""

    def __init__(
        self,
        config: VectorizationConfig,
        *,
        client: httpx.Client | None = None,
        timeout: float = 180.0,
    ) -> None:
        self.config = config
        self._base_url = config.ollama_url.rstrip("/")
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout, connect=30.0))

    def embed(self, text: str) -> list[float]:
        logger.debug("Embedding text (%d chars) with %s", len(text), self.config.model)
        try:
            response = self._client.post(
                f"{self._base_url}/api/embeddings",
                json={"model": self.config.model, "prompt": text},
            )
            response.raise_for_status()
            payload: Any = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise EmbeddingError(f"Failed to generate embedding: {exc}") from exc

        embedding = payload.get("embedding") if isinstance(payload, dict) else None
        if not isinstance(embedding, list) or not embedding:
            raise EmbeddingError("Embedding response did not contain a vector")
        return [float(value) for value in embedding]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        logger.info("Generating embeddings for %d texts", len(texts))
        embeddings = []
        for index, text in enumerate(texts, start=1):
            logger.debug("Embedding %d/%d", index, len(texts))
            embeddings.append(self.embed(text))
        return embeddings

    def health_check(self) -> bool:
        try:
            response = self._client.get(self._base_url, timeout=5.0)
        except httpx.HTTPError as exc:
            logger.warning("Ollama is unreachable at %s: %s", self._base_url, exc)
            return False
        if response.status_code != 200:
            logger.warning("Ollama health check returned HTTP %d", response.status_code)
            return False
        return True
