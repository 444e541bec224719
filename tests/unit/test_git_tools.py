import shutil
import subprocess

import pytest

from dev_assistant.agent.git_tools import GitClient, GitCommandError, build_git_provider
from dev_assistant.agent.registry import ToolRegistry

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def _run_git(path, *args: str) -> None:
    identity = ["-c", "user.name=Dev", "-c", "user.email=dev@example.com", "-c", "commit.gpgsign=false"]
    subprocess.run(
        ["git", "-C", str(path), *identity, *args],
        check=True,
        capture_output=True,
    )


def _init(path) -> None:
    _run_git(path, "init")
    _run_git(path, "symbolic-ref", "HEAD", "refs/heads/main")


@pytest.fixture(autouse=True)
def _no_parent_repositories(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path.parent))


@pytest.fixture()
def repo(tmp_path):
    path = tmp_path / "repo"
    path.mkdir()
    _init(path)
    (path / "README.md").write_text("first line\n", encoding="utf-8")
    _run_git(path, "add", "README.md")
    _run_git(path, "commit", "-m", "initial commit")
    (path / "README.md").write_text("first line\nsecond line\n", encoding="utf-8")
    (path / "new.txt").write_text("untracked\n", encoding="utf-8")
    return path


def test_client_reads_branch_status_and_commits(repo) -> None:
    client = GitClient(str(repo))

    assert client.is_repository()
    assert client.current_branch() == "main"
    assert client.modified_files() == ["README.md", "new.txt"]
    [commit] = client.recent_commits(5)
    assert commit.endswith("initial commit")
    assert "initial commit" in client.last_commit()
    assert client.branches() == ["main"]


def test_diff_with_and_without_a_path(repo) -> None:
    client = GitClient(str(repo))

    assert "+second line" in client.diff()
    assert "+second line" in client.diff("README.md")
    assert client.diff("new.txt") == ""


def test_info_summarises_the_repository(repo) -> None:
    info = GitClient(str(repo)).info()

    assert info.is_git_repo
    assert info.current_branch == "main"
    assert "initial commit" in info.last_commit
    assert info.modified_files == ["README.md", "new.txt"]
    assert "?? new.txt" in info.status
    assert info.remote == ""


def test_git_tools_through_the_registry(repo) -> None:
    registry = ToolRegistry()
    registry.register_provider("git", build_git_provider(GitClient(str(repo))))

    assert registry.tags_for("git_status") == ["git"]
    assert "?? new.txt" in registry.call_tool("git_status", {})
    assert registry.call_tool("git_branch", {}) == "Current branch: main\n\nBranches:\n- main"
    assert registry.call_tool("git_recent_commits", {"limit": 1}).endswith("initial commit")
    assert "+second line" in registry.call_tool("git_diff", {"path": None})
    assert registry.call_tool("git_diff", {"path": "new.txt"}) == "No changes"
    info = registry.call_tool("git_info", {})
    assert info.startswith("Branch: main\nLast commit: ")
    assert "- README.md\n- new.txt" in info


def test_repository_without_commits_degrades(tmp_path) -> None:
    _init(tmp_path)
    client = GitClient(str(tmp_path))

    info = client.info()

    assert info.is_git_repo
    assert info.current_branch == "unknown"
    assert info.status.startswith("Error: Git command failed")
    with pytest.raises(GitCommandError):
        build_git_provider(client).call_tool("git_recent_commits", {})


def test_directory_that_is_not_a_repository(tmp_path) -> None:
    client = GitClient(str(tmp_path))
    registry = ToolRegistry()
    registry.register_provider("git", build_git_provider(client))

    assert not client.is_repository()
    info = client.info()
    assert not info.is_git_repo
    assert info.current_branch == "unknown"
    assert registry.call_tool("git_info", {}) == "The project is not a git repository."
    with pytest.raises(GitCommandError, match="Git command failed"):
        registry.call_tool("git_status", {})


def test_missing_git_binary_raises_command_error(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("PATH", str(tmp_path / "empty-bin"))

    with pytest.raises(GitCommandError, match="Could not run"):
        GitClient(str(tmp_path)).status()
