"""Git access for fixgate.

GitRepository implements VersionControlPort on top of the git CLI: it reads
commit metadata and diffs, resolves revision ranges, and materializes trees as
detached worktrees. History is only ever read; every worktree is private to the
caller that created it.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from typing import TYPE_CHECKING

from fixgate.core.errors import CheckoutFailure
from fixgate.core.models import Commit
from fixgate.domain.diff_parser import parse_unified_diff
from fixgate.infra.tools.command_runner import CommandResult, CommandRunner

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

# Default timeout for git commands (seconds)
DEFAULT_GIT_TIMEOUT = 120.0

# Options that keep user/repo configuration from changing the diff format
_DIFF_OPTIONS = (
    "--binary",
    "--no-color",
    "--no-ext-diff",
    "--no-textconv",
    "--find-renames",
    "--src-prefix=a/",
    "--dst-prefix=b/",
)


class GitRepository:
    """Read-only view of a git repository plus worktree checkouts.

    Example:
        repo = GitRepository(Path("."))
        commit = await repo.read_commit("HEAD")
        await repo.checkout(commit.commit_id, Path("/tmp/ws/tree"))
        ...
        await repo.remove_checkout(Path("/tmp/ws/tree"))
    """

    def __init__(self, repo_path: Path, timeout: float = DEFAULT_GIT_TIMEOUT) -> None:
        self.repo_path = repo_path.resolve()
        self._runner = CommandRunner(
            cwd=self.repo_path,
            timeout_seconds=timeout,
            encoding_errors="surrogateescape",
        )

    async def _git(self, *args: str) -> CommandResult:
        cmd = [
            "git",
            "-c",
            "core.quotePath=false",
            "-c",
            "core.hooksPath=/dev/null",
            *args,
        ]
        try:
            result = await self._runner.run_async(cmd)
        except OSError as e:
            raise CheckoutFailure(f"git could not be started: {e}") from e
        if result.timed_out:
            raise CheckoutFailure(
                f"git {args[0]} timed out after {self._runner.timeout_seconds}s"
            )
        return result

    async def read_commit(self, rev: str) -> Commit:
        """Read a commit and its diff against its first parent.

        Raises:
            CheckoutFailure: If the revision does not exist or git fails.
            MalformedDiff: If git's diff output cannot be parsed.
        """
        meta = await self._git("show", "-s", "--format=%H%x00%P%x00%B", rev, "--")
        if not meta.ok:
            raise CheckoutFailure(_format_git_error(f"git show {rev}", meta))
        commit_id, parents, message = meta.stdout.split("\x00", 2)
        parent_ids = parents.split()
        parent_id = parent_ids[0] if parent_ids else None

        if parent_id is not None:
            diff = await self._git("diff", *_DIFF_OPTIONS, parent_id, commit_id, "--")
        else:
            diff = await self._git(
                "diff-tree", "-p", "--root", "--no-commit-id", *_DIFF_OPTIONS, commit_id
            )
        if not diff.ok:
            raise CheckoutFailure(_format_git_error(f"git diff {commit_id}", diff))

        logger.debug(
            "Read commit %s (parent=%s, %d diff bytes)",
            commit_id,
            parent_id,
            len(diff.stdout),
        )
        return Commit(
            commit_id=commit_id,
            parent_id=parent_id,
            message=message.rstrip("\n"),
            changes=parse_unified_diff(diff.stdout),
            raw_diff=diff.stdout,
        )

    async def list_commits(self, rev_range: str) -> list[str]:
        """Resolve a revision or a range (A..B) to commit ids, oldest first.

        Raises:
            CheckoutFailure: If the revision or range cannot be resolved.
        """
        if ".." in rev_range:
            result = await self._git("rev-list", "--reverse", rev_range, "--")
        else:
            result = await self._git("rev-parse", "--verify", f"{rev_range}^{{commit}}")
        if not result.ok:
            raise CheckoutFailure(_format_git_error(f"resolve {rev_range}", result))
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    async def checkout(self, rev: str, dest: Path) -> None:
        """Check out rev into dest as a detached worktree.

        Raises:
            CheckoutFailure: If git cannot create the worktree.
        """
        result = await self._git(
            "worktree", "add", "--detach", "--quiet", str(dest), rev
        )
        if not result.ok:
            # Clean up any partial directory
            if dest.exists():
                shutil.rmtree(dest, ignore_errors=True)
            raise CheckoutFailure(_format_git_error("git worktree add", result))
        logger.debug("Checked out %s into %s", rev, dest)

    async def remove_checkout(self, dest: Path) -> None:
        """Remove a worktree created by checkout(). Never raises."""
        try:
            result = await self._git("worktree", "remove", "--force", str(dest))
            if not result.ok:
                logger.debug("%s", _format_git_error("git worktree remove", result))
        except CheckoutFailure as e:
            logger.warning("Failed to remove worktree %s: %s", dest, e)

        # Even if git worktree remove fails, try to clean up the directory
        if dest.exists():
            await asyncio.to_thread(shutil.rmtree, dest, ignore_errors=True)
        await self.prune_worktrees()

    async def prune_worktrees(self) -> None:
        """Drop worktree records whose directories no longer exist."""
        try:
            await self._git("worktree", "prune")
        except CheckoutFailure as e:
            logger.warning("git worktree prune failed: %s", e)


def _format_git_error(cmd_name: str, result: CommandResult) -> str:
    """Format a git command error message."""
    msg = f"{cmd_name} exited {result.returncode}"
    stderr = result.stderr_tail(max_chars=400, max_lines=5).strip()
    if stderr:
        msg = f"{msg}: {stderr}"
    return msg
