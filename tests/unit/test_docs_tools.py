from pathlib import Path

from dev_assistant.agent.docs_tools import (
    build_docs_provider,
    find_project_file,
    parse_sources,
    read_project_file,
    with_sources,
)
from dev_assistant.agent.registry import ToolRegistry
from dev_assistant.config import ProjectInfo, RerankConfig
from dev_assistant.ingest.chunker import ParagraphChunker
from dev_assistant.ingest.pipeline import ProjectIndexer
from dev_assistant.ingest.scanner import DocumentScanner
from dev_assistant.retrieval.engine import RetrievalEngine
from dev_assistant.retrieval.index_store import IndexStore
from dev_assistant.retrieval.reranker import RerankedRetriever
from dev_assistant.types import RetrievalContext


def _project(tmp_path: Path) -> DocumentScanner:
    (tmp_path / "backend").mkdir()
    (tmp_path / "backend" / "Router.py").write_text("ROUTES = []\n", encoding="utf-8")
    (tmp_path / "frontend").mkdir()
    (tmp_path / "frontend" / "App.jsx").write_text("export default App;\n", encoding="utf-8")
    (tmp_path / "docs").mkdir()
    (tmp_path / "docs" / "deploy.md").write_text("Deploy with make deploy.\n", encoding="utf-8")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "lib.py").write_text("hidden\n", encoding="utf-8")
    return DocumentScanner(ProjectInfo(name="demo", path=str(tmp_path), docs=["docs/**"]))


def test_find_project_file_by_path_name_and_case(tmp_path) -> None:
    scanner = _project(tmp_path)

    assert find_project_file(scanner, "backend/Router.py").name == "Router.py"
    assert find_project_file(scanner, "BACKEND/router.py").name == "Router.py"
    assert find_project_file(scanner, "router.py").name == "Router.py"
    assert find_project_file(scanner, "lib.py") is None
    assert find_project_file(scanner, "../outside.py") is None


def test_read_project_file_lists_the_file_as_source(tmp_path) -> None:
    text = read_project_file(_project(tmp_path), "App.jsx")

    assert "File: frontend/App.jsx" in text
    assert "export default App;" in text
    assert parse_sources(text) == ["frontend/App.jsx"]


def test_read_project_file_offers_similar_file(tmp_path) -> None:
    text = read_project_file(_project(tmp_path), "frontend/App.tsx")

    assert "was not found, but a similar file exists" in text
    assert "File: frontend/App.jsx" in text


def test_read_project_file_reports_missing_file(tmp_path) -> None:
    text = read_project_file(_project(tmp_path), "settings.toml")

    assert "was not found in the project" in text
    assert parse_sources(text) == []


def test_parse_sources_reads_every_sources_section() -> None:
    text = (
        with_sources(RetrievalContext(context="first", sources=["a.md", "b.md"]))
        + "\n\n"
        + with_sources(RetrievalContext(context="second", sources=["b.md", "c.md"]))
    )

    assert parse_sources(text) == ["a.md", "b.md", "c.md"]
    assert with_sources(RetrievalContext(context="nothing", sources=[])) == "nothing"


def test_docs_provider_tools_end_to_end(tmp_path) -> None:
    scanner = _project(tmp_path)
    store = IndexStore(scanner.project, ParagraphChunker())
    indexer = ProjectIndexer(scanner, store, tmp_path / ".cache" / "index.json")
    engine = RetrievalEngine(store)
    registry = ToolRegistry()
    registry.register_provider(
        "docs",
        build_docs_provider(engine, RerankedRetriever(engine, None, RerankConfig()), indexer, scanner),
    )

    assert registry.tags_for("search_knowledge_base") == ["retrieval"]
    assert registry.tags_for("rerank_search") == ["retrieval"]

    reindexed = registry.call_tool("reindex_documents", {})
    assert "1 documents" in reindexed
    assert "keyword search" in reindexed

    found = registry.call_tool("search_knowledge_base", {"query": "deploy"})
    assert "Deploy with make deploy." in found
    assert parse_sources(found) == ["docs/deploy.md"]

    reranked = registry.call_tool("rerank_search", {"query": "deploy"})
    assert parse_sources(reranked) == ["docs/deploy.md"]

    missing = registry.call_tool("search_knowledge_base", {"query": "kubernetes"})
    assert parse_sources(missing) == []
