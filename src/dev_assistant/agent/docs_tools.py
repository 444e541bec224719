"""Documentation tools: knowledge-base search, reranked search, file reads, reindex."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, Field

from dev_assistant.agent.registry import InProcessToolProvider, ToolSpec
from dev_assistant.ingest.pipeline import ProjectIndexer
from dev_assistant.ingest.scanner import DocumentScanner
from dev_assistant.retrieval.engine import RetrievalEngine, format_context
from dev_assistant.retrieval.reranker import RerankedRetriever
from dev_assistant.types import RetrievalContext

logger = logging.getLogger(__name__)

RETRIEVAL_TAG = "retrieval"
SOURCES_HEADER = "Sources:"

SEARCH_KNOWLEDGE_BASE = "search_knowledge_base"
RERANK_SEARCH = "rerank_search"
READ_PROJECT_FILE = "read_project_file"
REINDEX_DOCUMENTS = "reindex_documents"


class SearchInput(BaseModel):
    query: str = Field(min_length=1, description="Search query for the project documentation")
    limit: int = Field(default=2, ge=1, le=10, description="Maximum number of chunks to return")


class RerankSearchInput(BaseModel):
    query: str = Field(min_length=1, description="Search query to rerank results for")
    top_k: int = Field(default=1, ge=1, le=10, description="Number of best chunks to keep")


class ReadFileInput(BaseModel):
    filename: str = Field(
        min_length=1, description="File name (router.py) or project-relative path (src/router.py)"
    )


class ReindexInput(BaseModel):
    pass


def build_docs_provider(
    engine: RetrievalEngine,
    reranked: RerankedRetriever,
    indexer: ProjectIndexer,
    scanner: DocumentScanner,
) -> InProcessToolProvider:
    """Tools backed by the project index.

    Tools:
    - `search_knowledge_base`: plain retrieval over documentation chunks.
    - `rerank_search`: threshold + model-scored retrieval for a sharper answer.
    - `read_project_file`: full source of one project file, by name or path.
    - `reindex_documents`: rebuild the index from the configured patterns.

    Retrieval tools end their output with a `Sources:` list of file paths.
    """

    def _search(input_data: SearchInput) -> str:
        logger.info("Searching documentation for %r", input_data.query)
        context = format_context(engine.search(input_data.query, input_data.limit))
        logger.info("Search found %d sources", len(context.sources))
        return with_sources(context)

    def _rerank_search(input_data: RerankSearchInput) -> str:
        logger.info("Reranked search for %r", input_data.query)
        result = reranked.search(input_data.query, input_data.top_k)
        return with_sources(format_context(result))

    def _read_file(input_data: ReadFileInput) -> str:
        return read_project_file(scanner, input_data.filename)

    def _reindex(input_data: ReindexInput) -> str:
        report = indexer.reindex()
        mode = "vector" if report.vectorized else "keyword"
        return (
            f"Documentation reindexed: {report.documents} documents, "
            f"{report.chunks} chunks ({mode} search)"
        )

    return InProcessToolProvider(
        [
            ToolSpec(
                name=READ_PROJECT_FILE,
                description=(
                    "Reads the SOURCE CODE of a project file. Use it whenever the user "
                    "mentions a specific file (router.py, App.jsx, main.go, ...). "
                    "Returns the full file content."
                ),
                args_schema=ReadFileInput,
                handler=_read_file,
                tags=["files"],
            ),
            ToolSpec(
                name=SEARCH_KNOWLEDGE_BASE,
                description=(
                    "Searches the project documentation (README, guides, API and "
                    "architecture notes). Use it for conceptual questions about setup, "
                    "architecture and usage. It does not search source code; use "
                    "read_project_file for that."
                ),
                args_schema=SearchInput,
                handler=_search,
                tags=[RETRIEVAL_TAG],
            ),
            ToolSpec(
                name=REINDEX_DOCUMENTS,
                description="Rescans all documentation configured for the project and rebuilds the index.",
                args_schema=ReindexInput,
                handler=_reindex,
                tags=["index"],
            ),
            ToolSpec(
                name=RERANK_SEARCH,
                description=(
                    "Documentation search with reranking for higher relevance. Use it when "
                    "the user is unhappy with a previous answer."
                ),
                args_schema=RerankSearchInput,
                handler=_rerank_search,
                tags=[RETRIEVAL_TAG],
            ),
        ]
    )


def with_sources(context: RetrievalContext) -> str:
    if not context.sources:
        return context.context
    listing = "\n".join(f"- {source}" for source in context.sources)
    return f"{context.context}\n\n{SOURCES_HEADER}\n{listing}"


def parse_sources(text: str) -> list[str]:
    """Paths listed under each `Sources:` header, in order, without repeats."""

    sources: list[str] = []
    in_section = False
    for line in text.splitlines():
        stripped = line.strip()
        if stripped == SOURCES_HEADER:
            in_section = True
            continue
        if not in_section:
            continue
        if stripped.startswith("- "):
            source = stripped[2:].strip()
            if source and source not in sources:
                sources.append(source)
        else:
            in_section = False
    return sources


def read_project_file(scanner: DocumentScanner, filename: str) -> str:
    found = find_project_file(scanner, filename)
    note = ""
    if found is None:
        stem = Path(filename.rsplit("/", 1)[-1]).stem
        found = find_similar_file(scanner, stem)
        if found is None:
            logger.info("File %r not found in project", filename)
            return (
                f"File '{filename}' was not found in the project.\n"
                "Try:\n"
                "- checking the file name\n"
                "- giving the full path (backend/router.py)\n"
                "- calling git_status to see the project layout"
            )
        note = f"File '{filename}' was not found, but a similar file exists:\n\n"

    relative_path = scanner.relative(found)
    try:
        content = found.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return f"File '{relative_path}' is not a text file."
    logger.info("Read project file %s (%d chars)", relative_path, len(content))
    return (
        f"{note}File: {relative_path}\n"
        f"Lines: {len(content.splitlines())}\n\n"
        f"```\n{content}\n```\n\n"
        f"{SOURCES_HEADER}\n- {relative_path}"
    )


def find_project_file(scanner: DocumentScanner, filename: str) -> Path | None:
    """Locate `filename` by exact path, then case-insensitive path, then by name."""

    wanted = filename.strip().removeprefix("./")
    direct = (scanner.root / wanted).resolve()
    if direct.is_file() and direct.is_relative_to(scanner.root) and not scanner.should_ignore(direct):
        return direct

    files = _project_files(scanner)
    if "/" in wanted:
        lowered = wanted.lower()
        for path in files:
            if scanner.relative(path).lower() == lowered:
                return path
        directory, name = lowered.rsplit("/", 1)
        for path in files:
            if path.name.lower() == name and scanner.relative(path).lower().startswith(directory):
                return path
        return None

    lowered = wanted.lower()
    return next((path for path in files if path.name.lower() == lowered), None)


def find_similar_file(scanner: DocumentScanner, stem: str) -> Path | None:
    """A file with the same base name and any extension."""

    lowered = stem.lower()
    return next((path for path in _project_files(scanner) if path.stem.lower() == lowered), None)


def _project_files(scanner: DocumentScanner) -> list[Path]:
    return sorted(
        path
        for path in scanner.root.rglob("*")
        if path.is_file() and not scanner.should_ignore(path)
    )
