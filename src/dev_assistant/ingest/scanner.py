"""Project file discovery driven by glob-style documentation patterns."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from fnmatch import fnmatchcase
from pathlib import Path

from dev_assistant.config import ProjectInfo
from dev_assistant.types import Document

logger = logging.getLogger(__name__)


class DocumentScanner:
    """Resolves `project.docs` patterns into documents.

    Supported patterns, relative to the project root:
    - exact file path: `README.md`, `docs/setup.md`
    - one directory level: `docs/*.md`, `*.txt`
    - recursive: `docs/**`, `docs/**/*.md`, `**/*.md`
    - a plain directory is treated as `dir/**`

    Files whose relative path contains any `project.ignore` fragment are
    skipped, and so are files that are not valid UTF-8.
    """

    def __init__(self, project: ProjectInfo) -> None:
        self.project = project
        self.root = Path(project.path).expanduser().resolve()

    def scan(self, patterns: Iterable[str] | None = None) -> list[Document]:
        found: dict[str, Path] = {}
        for pattern in patterns if patterns is not None else self.project.docs:
            logger.debug("Resolving pattern: %s", pattern)
            for path in self.find_files(pattern):
                found.setdefault(self.relative(path), path)

        documents: list[Document] = []
        for relative_path in sorted(found):
            try:
                content = found[relative_path].read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Skipping unreadable file %s: %s", relative_path, exc)
                continue
            documents.append(Document.from_text(relative_path, content))
        logger.info(
            "Scanned %d documents (%d KB) under %s",
            len(documents),
            sum(doc.byte_size for doc in documents) // 1024,
            self.root,
        )
        return documents

    def find_files(self, pattern: str) -> list[Path]:
        pattern = pattern.strip()
        if pattern.startswith("./"):
            pattern = pattern[2:]
        direct = self.root / pattern
        if "*" not in pattern:
            if direct.is_file():
                return [] if self.should_ignore(direct) else [direct]
            if direct.is_dir():
                return self.find_files(f"{pattern.rstrip('/')}/**")
            logger.warning("Documentation path not found: %s", direct)
            return []

        parts = pattern.split("/")
        first_glob = next(i for i, part in enumerate(parts) if "*" in part)
        search_dir = self.root.joinpath(*parts[:first_glob])
        rest = parts[first_glob:]
        recursive = "**" in rest
        name_pattern = "*" if rest[-1] == "**" else rest[-1]

        if not search_dir.is_dir():
            logger.warning("Directory not found: %s", search_dir)
            return []

        candidates = search_dir.rglob("*") if recursive else search_dir.iterdir()
        return sorted(
            path
            for path in self._files(candidates)
            if fnmatchcase(path.name, name_pattern) and not self.should_ignore(path)
        )

    def should_ignore(self, path: Path) -> bool:
        relative_path = self.relative(path)
        return any(fragment and fragment in relative_path for fragment in self.project.ignore)

    def relative(self, path: Path) -> str:
        # symlinks may point outside the root; keep their in-project location
        absolute = path if path.is_absolute() else self.root / path
        return absolute.relative_to(self.root).as_posix()

    @staticmethod
    def _files(paths: Iterable[Path]) -> Iterator[Path]:
        return (path for path in paths if path.is_file())
