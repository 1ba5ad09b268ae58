"""Pytest configuration for fixgate tests."""

import os
import subprocess
from pathlib import Path

import pytest


def pytest_configure(config: pytest.Config) -> None:
    """Configure test environment before collection.

    Sets up environment variables to:
    - Keep the user's ~/.config/fixgate/.env and FIXGATE_* settings out of tests
    - Give git a fixed identity so test commits never depend on user config
    """
    for var in list(os.environ):
        if var.startswith("FIXGATE_"):
            os.environ.pop(var, None)

    os.environ["GIT_AUTHOR_NAME"] = "fixgate tests"
    os.environ["GIT_AUTHOR_EMAIL"] = "tests@fixgate.invalid"
    os.environ["GIT_COMMITTER_NAME"] = "fixgate tests"
    os.environ["GIT_COMMITTER_EMAIL"] = "tests@fixgate.invalid"
    os.environ["GIT_CONFIG_NOSYSTEM"] = "1"


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Default unmarked tests to unit category."""
    for item in items:
        if any(marker in item.keywords for marker in ("unit", "integration")):
            continue
        item.add_marker(pytest.mark.unit)


class GitRepoBuilder:
    """Builds a throw-away git repository commit by commit."""

    def __init__(self, path: Path) -> None:
        self.path = path
        path.mkdir(parents=True, exist_ok=True)
        self.git("init", "-q")
        self.git("config", "commit.gpgsign", "false")

    def git(self, *args: str) -> str:
        result = subprocess.run(
            ["git", *args],
            cwd=self.path,
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout

    def write(self, rel_path: str, content: str) -> None:
        target = self.path / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)

    def delete(self, rel_path: str) -> None:
        (self.path / rel_path).unlink()

    def commit(self, message: str) -> str:
        """Commit all changes and return the new commit id."""
        self.git("add", "-A")
        self.git("commit", "-q", "--allow-empty", "-m", message)
        return self.git("rev-parse", "HEAD").strip()

    def worktrees(self) -> list[str]:
        out = self.git("worktree", "list", "--porcelain")
        return [
            line.split(" ", 1)[1] for line in out.splitlines() if line.startswith("worktree ")
        ]


@pytest.fixture
def git_repo(tmp_path: Path) -> GitRepoBuilder:
    """Empty git repository in tmp_path/repo."""
    return GitRepoBuilder(tmp_path / "repo")


@pytest.fixture
def workspace_root(tmp_path: Path) -> Path:
    root = tmp_path / "workspaces"
    root.mkdir()
    return root
