"""FastAPI entrypoint for question answering, search, docs, git and trace endpoints."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field
from typing import Any

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from dev_assistant.agent.docs_tools import build_docs_provider
from dev_assistant.agent.git_tools import GitClient, GitCommandError, build_git_provider
from dev_assistant.agent.loop import AgentLoop
from dev_assistant.agent.registry import ToolRegistry
from dev_assistant.agent.session import SessionStore
from dev_assistant.agent.stdio_provider import StdioToolProvider
from dev_assistant.config import AssistantConfig
from dev_assistant.errors import LanguageModelError
from dev_assistant.ingest.chunker import ParagraphChunker
from dev_assistant.ingest.embedder import Embedder, OllamaEmbedder
from dev_assistant.ingest.pipeline import ProjectIndexer
from dev_assistant.ingest.scanner import DocumentScanner
from dev_assistant.llm.chat import ChatModelClient, LanguageModel, create_chat_model
from dev_assistant.obs.logging import configure_logging
from dev_assistant.obs.tracing import TraceStore
from dev_assistant.retrieval.engine import RetrievalEngine
from dev_assistant.retrieval.index_store import IndexStore
from dev_assistant.retrieval.reranker import HybridReranker, RerankedRetriever
from dev_assistant.types import ToolTrace

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Assistant:
    """Everything one project's API needs, wired from configuration."""

    config: AssistantConfig
    store: IndexStore
    engine: RetrievalEngine
    indexer: ProjectIndexer
    registry: ToolRegistry
    loop: AgentLoop
    sessions: SessionStore
    trace_store: TraceStore
    git: GitClient | None = None
    tool_servers: list[StdioToolProvider] = field(default_factory=list)

    def close(self) -> None:
        for provider in self.tool_servers:
            provider.close()


def build_assistant(
    config: AssistantConfig,
    *,
    llm: LanguageModel | None = None,
    embedder: Embedder | None = None,
    load_index: bool = True,
) -> Assistant:
    """Wire the index, retrieval, tools and agent loop for `config.project`.

    `llm` and `embedder` default to the configured chat endpoint and, when
    vectorization is enabled, the Ollama embedding service.
    """

    project = config.project
    if embedder is None and config.vectorization.enabled:
        embedder = OllamaEmbedder(config.vectorization)
        if not embedder.health_check():
            logger.warning("Embedding service at %s is not reachable", config.vectorization.ollama_url)
    if llm is None:
        llm = ChatModelClient(create_chat_model(config.ai))

    scanner = DocumentScanner(project)
    store = IndexStore(
        project,
        ParagraphChunker(config.chunking),
        embedder,
        vectorization_enabled=config.vectorization.enabled,
        max_embedding_chars=config.retrieval.max_embedding_chars,
    )
    indexer = ProjectIndexer(scanner, store, config.index.cache_path)
    if load_index:
        report = indexer.load_or_build()
        logger.info(
            "Index ready: %d documents, %d chunks, vectorized=%s, from_cache=%s (%.0fms)",
            report.documents,
            report.chunks,
            report.vectorized,
            report.from_cache,
            report.elapsed_ms,
        )

    engine = RetrievalEngine(store, embedder, config.retrieval)
    reranked = RerankedRetriever(engine, HybridReranker(llm, config.rerank), config.rerank)

    registry = ToolRegistry()
    registry.set_observer(_log_tool_trace)
    registry.register_provider("docs", build_docs_provider(engine, reranked, indexer, scanner))
    git = GitClient(project.path) if config.git.enabled else None
    if git is not None:
        registry.register_provider("git", build_git_provider(git))
    tool_servers: list[StdioToolProvider] = []
    for server in config.tool_servers:
        provider = StdioToolProvider(server)
        registry.register_provider(server.name, provider)
        tool_servers.append(provider)

    trace_store = TraceStore()
    loop = AgentLoop(
        llm=llm,
        registry=registry,
        reranked=reranked,
        project_name=project.name,
        config=config.agent,
        trace_store=trace_store,
    )
    return Assistant(
        config=config,
        store=store,
        engine=engine,
        indexer=indexer,
        registry=registry,
        loop=loop,
        sessions=SessionStore(config.agent.max_sessions),
        trace_store=trace_store,
        git=git,
        tool_servers=tool_servers,
    )


def create_app(assistant: Assistant) -> FastAPI:
    config = assistant.config

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        assistant.close()

    # `/docs` lists project documents, so the interactive API docs move.
    app = FastAPI(
        title="Dev Assistant",
        version="0.1.0",
        docs_url="/api/docs",
        redoc_url=None,
        lifespan=lifespan,
    )

    @app.exception_handler(LanguageModelError)
    async def model_unavailable(_: Request, exc: LanguageModelError) -> JSONResponse:
        logger.error("Model unavailable: %s", exc)
        return JSONResponse(status_code=502, content={"error": "model_unavailable", "detail": str(exc)})

    @app.get("/", response_class=PlainTextResponse)
    def index() -> str:
        return (
            "Dev Assistant\n"
            f"Project: {config.project.name}\n"
            f"Path: {config.project.path}\n\n"
            "Endpoints:\n"
            "- GET  /health          service status\n"
            "- GET  /help?q=...      ask a question about the project\n"
            "- GET  /search?q=...    search the documentation\n"
            "- GET  /docs            indexed documents\n"
            "- GET  /docs/{path}     one document\n"
            "- GET  /git/info        repository summary\n"
            "- POST /reindex         rebuild the index\n"
            "- GET  /tools           available tools\n"
            "- GET  /traces          recent agent turns\n"
        )

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "project": config.project.name,
            "docs_count": len(assistant.store.state.documents),
            "chunk_count": len(assistant.store.state.chunks),
            "vector_search": assistant.engine.vector_ready,
            "git_enabled": assistant.git is not None,
            "tool_count": len(assistant.registry.tool_names()),
            "trace_count": len(assistant.trace_store.list_recent(limit=1000)),
        }

    @app.get("/help", response_model=None)
    def help_(q: str | None = None, session_id: str | None = None) -> dict[str, Any] | JSONResponse:
        if q is None or not q.strip():
            return JSONResponse(status_code=400, content={"error": "Parameter 'q' (question) is required"})
        logger.info("Question: %s", q)
        session = assistant.sessions.get(session_id)
        result = assistant.loop.run(q, session=session)
        return {
            "project": config.project.name,
            "question": q,
            "answer": result.answer,
            "sources": result.sources,
            "session_id": session.session_id,
            "stop_reason": result.stop_reason,
            "iterations": result.iterations,
            "trace_id": result.trace_id,
        }

    @app.get("/search", response_model=None)
    def search(q: str, limit: int | None = Query(default=None, ge=1)) -> dict[str, Any] | JSONResponse:
        result = assistant.engine.search(q, limit)
        if not result.found:
            return JSONResponse(status_code=404, content={"error": "nothing_found", "query": q})
        return {
            "query": q,
            "mode": result.mode,
            "sources": result.sources,
            "results": [
                {
                    "path": item.chunk.path,
                    "chunk_index": item.chunk.chunk_index,
                    "score": item.score,
                    "rank": item.rank,
                    "content": item.chunk.content,
                }
                for item in result.chunks
            ],
        }

    @app.get("/docs")
    def documents() -> dict[str, Any]:
        docs = assistant.engine.documents()
        return {
            "count": len(docs),
            "documents": [
                {"path": doc.path, "lines": doc.line_count, "size": doc.byte_size} for doc in docs
            ],
        }

    @app.get("/docs/{path:path}", response_model=None)
    def document(path: str) -> dict[str, Any] | JSONResponse:
        doc = assistant.engine.get_document(path)
        if doc is None:
            return JSONResponse(status_code=404, content={"error": f"Document not found: {path}"})
        return doc.model_dump(by_alias=True)

    @app.get("/git/info", response_model=None)
    def git_info() -> dict[str, Any] | JSONResponse:
        if assistant.git is None:
            return _git_disabled()
        return asdict(assistant.git.info())

    @app.get("/git/status", response_model=None)
    def git_status() -> dict[str, Any] | JSONResponse:
        if assistant.git is None:
            return _git_disabled()
        try:
            return {"branch": assistant.git.current_branch(), "status": assistant.git.status()}
        except GitCommandError as exc:
            return JSONResponse(status_code=500, content={"error": str(exc)})

    @app.get("/git/branch", response_model=None)
    def git_branch() -> dict[str, Any] | JSONResponse:
        if assistant.git is None:
            return _git_disabled()
        try:
            return {"branch": assistant.git.current_branch()}
        except GitCommandError as exc:
            return JSONResponse(status_code=500, content={"error": str(exc)})

    @app.post("/reindex")
    def reindex() -> dict[str, Any]:
        report = assistant.indexer.reindex()
        return {"status": "ok", **asdict(report)}

    @app.get("/tools")
    def tools() -> dict[str, Any]:
        items = assistant.registry.list_all_tools()
        return {"count": len(items), "tools": [tool.model_dump(by_alias=True) for tool in items]}

    @app.get("/traces")
    def traces(limit: int = 20) -> dict[str, Any]:
        records = [asdict(record) for record in assistant.trace_store.list_recent(limit=limit)]
        return {"items": records}

    @app.get("/traces/{trace_id}", response_model=None)
    def trace_detail(trace_id: str) -> dict[str, Any] | JSONResponse:
        try:
            record = assistant.trace_store.get(trace_id)
        except KeyError as exc:
            return JSONResponse(status_code=404, content={"error": str(exc).strip("'\"")})
        return asdict(record)

    @app.get("/metrics")
    def metrics() -> dict[str, Any]:
        return assistant.trace_store.summary()

    return app


def main() -> None:
    import uvicorn

    configure_logging()
    config = AssistantConfig.load()
    app = create_app(build_assistant(config))
    logger.info("Serving %s on http://%s:%d", config.project.name, config.server.host, config.server.port)
    uvicorn.run(app, host=config.server.host, port=config.server.port)


def _git_disabled() -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": "Git integration disabled"})


def _log_tool_trace(trace: ToolTrace) -> None:
    logger.debug(
        "Tool %s finished in %.1fms%s", trace.name, trace.latency_ms, " (error)" if trace.error else ""
    )


if __name__ == "__main__":
    main()
