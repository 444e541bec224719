import json

import pytest

from dev_assistant.config import ProjectInfo
from dev_assistant.errors import EmbeddingError
from dev_assistant.ingest.chunker import ParagraphChunker
from dev_assistant.ingest.embedder import Embedder, HashingEmbedder
from dev_assistant.retrieval.index_store import IndexState, IndexStore
from dev_assistant.types import Chunk, Document


class FailingEmbedder(Embedder):
    def embed(self, text: str) -> list[float]:
        raise EmbeddingError("connection refused")

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [self.embed(text) for text in texts]


class ShortBatchEmbedder(HashingEmbedder):
    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return super().embed_batch(texts)[:-1]


def _documents() -> list[Document]:
    return [
        Document.from_text("README.md", "Project overview.\n\nRun make to build."),
        Document.from_text("docs/api.md", "The API exposes a health endpoint."),
    ]


def _store(path, embedder=None, *, name: str = "demo") -> IndexStore:
    return IndexStore(
        ProjectInfo(name=name, path=str(path)),
        ParagraphChunker(),
        embedder,
        vectorization_enabled=embedder is not None,
    )


def test_build_aligns_chunks_and_embeddings(tmp_path) -> None:
    store = _store(tmp_path, HashingEmbedder())
    store.build(_documents())

    assert len(store.chunks) == 2
    assert len(store.embeddings) == len(store.chunks)
    assert store.state.has_embeddings
    assert store.state.timestamp > 0


def test_build_replaces_duplicates_by_path(tmp_path) -> None:
    store = _store(tmp_path)
    store.build(_documents() + [Document.from_text("README.md", "Replacement text.")])

    assert [doc.path for doc in store.documents] == ["README.md", "docs/api.md"]
    assert store.get_document("README.md").content == "Replacement text."
    assert store.get_document("missing.md") is None


def test_embedding_failure_degrades_to_keyword_index(tmp_path) -> None:
    store = _store(tmp_path, FailingEmbedder())
    store.build(_documents())

    assert store.chunks
    assert store.embeddings == []
    assert not store.state.has_embeddings


def test_embedding_batch_length_mismatch_is_rejected(tmp_path) -> None:
    store = _store(tmp_path, ShortBatchEmbedder())
    store.build(_documents())

    assert store.embeddings == []
    assert not store.state.vectorization_enabled


def test_save_and_load_snapshot(tmp_path) -> None:
    cache = tmp_path / "cache" / "index.json"
    store = _store(tmp_path, HashingEmbedder())
    store.build(_documents())
    store.save(cache)

    payload = json.loads(cache.read_text(encoding="utf-8"))
    assert set(payload) == {
        "projectName",
        "projectPath",
        "documents",
        "chunks",
        "embeddings",
        "timestamp",
        "vectorizationEnabled",
    }
    assert payload["chunks"][0]["chunkIndex"] == 0

    restored = _store(tmp_path, HashingEmbedder())
    assert restored.load(cache)
    assert restored.chunks == store.chunks
    assert restored.embeddings == store.embeddings
    assert restored.state.timestamp == store.state.timestamp


def test_load_rejects_other_project_missing_and_corrupt_files(tmp_path) -> None:
    cache = tmp_path / "index.json"
    store = _store(tmp_path)
    store.build(_documents())
    store.save(cache)

    other_root = tmp_path / "other"
    other_root.mkdir()
    assert not _store(other_root).load(cache)
    assert not _store(tmp_path).load(tmp_path / "absent.json")

    cache.write_text("{not json", encoding="utf-8")
    assert not _store(tmp_path).load(cache)


def test_load_rejects_misaligned_snapshot(tmp_path) -> None:
    cache = tmp_path / "index.json"
    store = _store(tmp_path, HashingEmbedder())
    store.build(_documents())
    store.save(cache)

    payload = json.loads(cache.read_text(encoding="utf-8"))
    payload["embeddings"] = payload["embeddings"][:1]
    cache.write_text(json.dumps(payload), encoding="utf-8")

    assert not _store(tmp_path, HashingEmbedder()).load(cache)


def test_keyword_store_ignores_cached_vectors(tmp_path) -> None:
    cache = tmp_path / "index.json"
    vector_store = _store(tmp_path, HashingEmbedder())
    vector_store.build(_documents())
    vector_store.save(cache)

    keyword_store = _store(tmp_path)
    assert keyword_store.load(cache)
    assert keyword_store.embeddings == []
    assert not keyword_store.state.has_embeddings


def test_index_state_rejects_misaligned_vectors() -> None:
    chunk = Chunk(path="a.md", content="alpha", chunk_index=0)
    with pytest.raises(ValueError):
        IndexState(chunks=(chunk,), embeddings=([0.1], [0.2]))
