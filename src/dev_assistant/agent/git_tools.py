"""Git inspection of the project working tree, exposed as tools."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field

from pydantic import BaseModel, Field

from dev_assistant.agent.registry import InProcessToolProvider, ToolSpec
from dev_assistant.errors import ToolExecutionError

logger = logging.getLogger(__name__)


class GitCommandError(ToolExecutionError):
    """A git command exited with a non-zero status."""


@dataclass(slots=True)
class GitInfo:
    is_git_repo: bool
    current_branch: str
    last_commit: str
    modified_files: list[str] = field(default_factory=list)
    status: str = ""
    remote: str = ""


class GitClient:
    """Runs read-only git commands with `git -C <project path>`."""

    def __init__(self, project_path: str, *, timeout: float = 30.0) -> None:
        self.project_path = project_path
        self.timeout = timeout

    def current_branch(self) -> str:
        return self._git("branch", "--show-current").strip()

    def status(self) -> str:
        return self._git("status", "--short")

    def recent_commits(self, limit: int = 5) -> list[str]:
        output = self._git("log", "--oneline", "-n", str(limit))
        return [line for line in output.splitlines() if line.strip()]

    def last_commit(self) -> str:
        return self._git("log", "-1", "--pretty=format:%h - %s (%an, %ar)")

    def modified_files(self) -> list[str]:
        files: list[str] = []
        for line in self.status().splitlines():
            if not line.strip():
                continue
            # " M file.txt" or "?? file.txt"
            parts = line.strip().split(maxsplit=1)
            files.append(parts[1] if len(parts) == 2 else line)
        return files

    def branches(self) -> list[str]:
        output = self._git("branch", "-a")
        return [line.strip().removeprefix("* ").strip() for line in output.splitlines() if line.strip()]

    def remote(self) -> str:
        try:
            return self._git("remote", "-v")
        except GitCommandError:
            return "No remote configured"

    def diff(self, path: str | None = None) -> str:
        args = ["diff"] if path is None else ["diff", "--", path]
        return self._git(*args)

    def is_repository(self) -> bool:
        try:
            self._git("rev-parse", "--git-dir")
        except GitCommandError:
            return False
        return True

    def info(self) -> GitInfo:
        if not self.is_repository():
            return GitInfo(is_git_repo=False, current_branch="unknown", last_commit="unknown")
        try:
            return GitInfo(
                is_git_repo=True,
                current_branch=self.current_branch(),
                last_commit=self.last_commit(),
                modified_files=self.modified_files(),
                status=self.status(),
                remote=self.remote(),
            )
        except GitCommandError as exc:
            logger.error("Could not read git information: %s", exc)
            return GitInfo(
                is_git_repo=True,
                current_branch="unknown",
                last_commit="unknown",
                status=f"Error: {exc}",
                remote="unknown",
            )

    def _git(self, *args: str) -> str:
        command = ["git", "-C", self.project_path, *args]
        logger.debug("Running %s", " ".join(command))
        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise GitCommandError(f"Could not run {' '.join(command)}: {exc}") from exc
        if completed.returncode != 0:
            logger.warning("git exited with %d: %s", completed.returncode, " ".join(command))
            raise GitCommandError(
                f"Git command failed (exit code: {completed.returncode}): "
                f"{' '.join(command)}\n{completed.stderr or completed.stdout}"
            )
        return completed.stdout


class NoInput(BaseModel):
    pass


class RecentCommitsInput(BaseModel):
    limit: int = Field(default=5, ge=1, le=50, description="Number of commits to list")


class DiffInput(BaseModel):
    path: str | None = Field(default=None, description="Limit the diff to one file")


def build_git_provider(client: GitClient) -> InProcessToolProvider:
    """Register git tools over `client`'s working tree."""

    def _status(_: NoInput) -> str:
        output = client.status()
        return output if output.strip() else "Working tree clean"

    def _branch(_: NoInput) -> str:
        current = client.current_branch() or "(detached HEAD)"
        branches = "\n".join(f"- {name}" for name in client.branches())
        return f"Current branch: {current}\n\nBranches:\n{branches}"

    def _recent_commits(input_data: RecentCommitsInput) -> str:
        commits = client.recent_commits(input_data.limit)
        return "\n".join(commits) if commits else "No commits yet"

    def _diff(input_data: DiffInput) -> str:
        output = client.diff(input_data.path)
        return output if output.strip() else "No changes"

    def _info(_: NoInput) -> str:
        info = client.info()
        if not info.is_git_repo:
            return "The project is not a git repository."
        modified = "\n".join(f"- {name}" for name in info.modified_files) or "none"
        return (
            f"Branch: {info.current_branch}\n"
            f"Last commit: {info.last_commit}\n"
            f"Modified files:\n{modified}\n"
            f"Remote:\n{info.remote.strip()}"
        )

    return InProcessToolProvider(
        [
            ToolSpec(
                name="git_status",
                description="Short git status of the project: modified, added and untracked files.",
                args_schema=NoInput,
                handler=_status,
                tags=["git"],
            ),
            ToolSpec(
                name="git_branch",
                description="Current git branch and the list of all branches.",
                args_schema=NoInput,
                handler=_branch,
                tags=["git"],
            ),
            ToolSpec(
                name="git_recent_commits",
                description="Most recent commits, one line each.",
                args_schema=RecentCommitsInput,
                handler=_recent_commits,
                tags=["git"],
            ),
            ToolSpec(
                name="git_diff",
                description="Uncommitted changes in the working tree, optionally for one file.",
                args_schema=DiffInput,
                handler=_diff,
                tags=["git"],
            ),
            ToolSpec(
                name="git_info",
                description="Summary of the repository: branch, last commit, modified files, remote.",
                args_schema=NoInput,
                handler=_info,
                tags=["git"],
            ),
        ]
    )
