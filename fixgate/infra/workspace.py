"""Workspace materialization for the pre-fix and post-fix stages.

Each stage gets its own freshly checked-out tree, owned by exactly one test
run and removed afterwards. Workspace paths follow the format:
{workspace_root}/{run_id}/{short commit id}-{stage}-{n}/tree

The slot directory around the tree also holds the per-file patches applied
to the pre-fix tree, so nothing the gate writes lands inside the tree itself
except the test changes.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import shutil
import threading
import uuid
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fixgate.core.errors import CheckoutFailure, PatchConflict
from fixgate.core.models import AppliedPatch, Stage, Workspace
from fixgate.infra.git_utils import DEFAULT_GIT_TIMEOUT, GitRepository
from fixgate.infra.tools.command_runner import CommandResult, CommandRunner

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable
    from pathlib import Path

    from fixgate.core.models import ChangeSet, Commit
    from fixgate.core.protocols import VersionControlPort

logger = logging.getLogger(__name__)

TREE_DIR_NAME = "tree"
_PATCH_DIR_NAME = "patches"


class WorkspaceMaterializer:
    """Builds and tears down isolated trees for test runs.

    Example:
        materializer = WorkspaceMaterializer(repo, Path("/tmp/ws"))
        async with materializer.pre_fix(commit, change_set) as workspace:
            result = await runner.run(workspace, "pytest", timeout=600)
    """

    def __init__(
        self,
        vcs: VersionControlPort,
        workspace_root: Path,
        run_id: str | None = None,
        git_timeout: float = DEFAULT_GIT_TIMEOUT,
    ) -> None:
        """Initialize the materializer.

        Args:
            vcs: Source of commit trees.
            workspace_root: Directory under which workspaces are created.
            run_id: Groups this process's workspaces. Generated when omitted.
            git_timeout: Timeout for each `git apply` invocation.
        """
        self.vcs = vcs
        self.workspace_root = workspace_root
        self.run_id = run_id or uuid.uuid4().hex[:8]
        self._runner = CommandRunner(cwd=workspace_root, timeout_seconds=git_timeout)
        self._lock = threading.Lock()
        self._counter = itertools.count(1)
        self._live: dict[str, Workspace] = {}

    @property
    def run_dir(self) -> Path:
        return self.workspace_root / self.run_id

    def live_workspaces(self) -> list[Workspace]:
        """Workspaces built and not yet torn down."""
        with self._lock:
            return list(self._live.values())

    def _allocate_slot(self, commit: Commit, stage: Stage) -> Path:
        """Reserve a unique, empty slot directory."""
        with self._lock:
            name = f"{commit.short_id}-{stage.value}-{next(self._counter)}"
            slot = self.run_dir / name
            slot.mkdir(parents=True, exist_ok=False)
        logger.debug("Allocated workspace slot %s", slot)
        return slot

    async def build_pre_fix(self, commit: Commit, change_set: ChangeSet) -> Workspace:
        """Check out the parent tree and apply only the test changes.

        Raises:
            CheckoutFailure: If the commit has no parent or git fails.
            PatchConflict: If a test file's changes do not apply cleanly.
        """
        if commit.parent_id is None:
            raise CheckoutFailure(
                f"{commit.short_id} is a root commit; there is no parent tree "
                "to run the regression tests against",
                Stage.PRE_FIX,
            )
        slot = self._allocate_slot(commit, Stage.PRE_FIX)
        workspace = Workspace(
            workspace_id=f"{self.run_id}/{slot.name}",
            path=slot / TREE_DIR_NAME,
            base_commit=commit.parent_id,
            applied_patch=AppliedPatch.TEST_ONLY,
            stage=Stage.PRE_FIX,
        )
        try:
            await self._checkout(commit.parent_id, workspace)
            await self._apply_test_changes(workspace, change_set)
        except BaseException:
            await _run_shielded(self._discard(workspace))
            raise
        return self._register(workspace)

    async def build_post_fix(self, commit: Commit) -> Workspace:
        """Check out the commit's own tree, unmodified.

        Raises:
            CheckoutFailure: If git cannot produce the tree.
        """
        slot = self._allocate_slot(commit, Stage.POST_FIX)
        workspace = Workspace(
            workspace_id=f"{self.run_id}/{slot.name}",
            path=slot / TREE_DIR_NAME,
            base_commit=commit.commit_id,
            applied_patch=AppliedPatch.FULL,
            stage=Stage.POST_FIX,
        )
        try:
            await self._checkout(commit.commit_id, workspace)
        except BaseException:
            await _run_shielded(self._discard(workspace))
            raise
        return self._register(workspace)

    async def teardown(self, workspace: Workspace) -> None:
        """Remove a workspace and its slot directory. Safe to call twice."""
        with self._lock:
            if self._live.pop(workspace.workspace_id, None) is None:
                return
        await self._discard(workspace)

    @asynccontextmanager
    async def pre_fix(
        self, commit: Commit, change_set: ChangeSet
    ) -> AsyncIterator[Workspace]:
        workspace = await self.build_pre_fix(commit, change_set)
        try:
            yield workspace
        finally:
            await _run_shielded(self.teardown(workspace))

    @asynccontextmanager
    async def post_fix(self, commit: Commit) -> AsyncIterator[Workspace]:
        workspace = await self.build_post_fix(commit)
        try:
            yield workspace
        finally:
            await _run_shielded(self.teardown(workspace))

    def _register(self, workspace: Workspace) -> Workspace:
        with self._lock:
            self._live[workspace.workspace_id] = workspace
        logger.debug(
            "Workspace %s ready (%s at %s)",
            workspace.workspace_id,
            workspace.applied_patch.value,
            workspace.base_commit[:12],
        )
        return workspace

    async def _checkout(self, rev: str, workspace: Workspace) -> None:
        try:
            await self.vcs.checkout(rev, workspace.path)
        except CheckoutFailure as e:
            # Re-raise with the stage attached
            raise CheckoutFailure(str(e), workspace.stage) from e

    async def _apply_test_changes(
        self, workspace: Workspace, change_set: ChangeSet
    ) -> None:
        """Apply each test file's changes, checking every file before any write.

        Checking files one at a time pinpoints the file whose hunks do not
        fit the parent tree.
        """
        patch_dir = workspace.path.parent / _PATCH_DIR_NAME
        patch_dir.mkdir(exist_ok=True)
        patches: list[tuple[str, Path]] = []
        for index, change in enumerate(change_set.test_changes):
            patch_file = patch_dir / f"{index:04d}.patch"
            patch_file.write_bytes(change.render().encode("utf-8", "surrogateescape"))
            patches.append((change.path, patch_file))

        for path, patch_file in patches:
            check = await self._git_apply(workspace, "--check", patch_file)
            if not check.ok:
                raise PatchConflict(path, _first_line(check.stderr), Stage.PRE_FIX)

        for path, patch_file in patches:
            applied = await self._git_apply(workspace, None, patch_file)
            if not applied.ok:
                raise PatchConflict(path, _first_line(applied.stderr), Stage.PRE_FIX)
        logger.debug(
            "Applied %d test file(s) to %s", len(patches), workspace.workspace_id
        )

    async def _git_apply(
        self, workspace: Workspace, mode: str | None, patch_file: Path
    ) -> CommandResult:
        cmd = ["git", "apply", "--whitespace=nowarn"]
        if mode is not None:
            cmd.append(mode)
        cmd.append(str(patch_file))
        try:
            result = await self._runner.run_async(cmd, cwd=workspace.path)
        except OSError as e:
            raise CheckoutFailure(f"git could not be started: {e}", workspace.stage) from e
        if result.timed_out:
            raise CheckoutFailure("git apply timed out", workspace.stage)
        return result

    async def _discard(self, workspace: Workspace) -> None:
        slot = workspace.path.parent
        await self.vcs.remove_checkout(workspace.path)
        if slot.exists():
            await asyncio.to_thread(shutil.rmtree, slot, ignore_errors=True)
        with self._lock:
            # Drop the run directory once its last slot is gone
            try:
                self.run_dir.rmdir()
            except OSError:
                pass
        logger.debug("Removed workspace %s", workspace.workspace_id)


async def cleanup_stale_workspaces(
    repo_path: Path,
    workspace_root: Path,
    run_id: str | None = None,
) -> int:
    """Clean up workspaces left behind by crashed runs.

    Args:
        repo_path: Path to the main git repository.
        workspace_root: Directory under which workspaces were created.
        run_id: If provided, only clean up workspaces for this run.
            If None, clean up all runs under workspace_root.

    Returns:
        Number of workspace slots removed.
    """
    if not workspace_root.exists():
        return 0

    repo = GitRepository(repo_path)
    if run_id:
        run_dirs = [workspace_root / run_id]
    else:
        run_dirs = [d for d in workspace_root.iterdir() if d.is_dir()]

    cleaned = 0
    for run_dir in run_dirs:
        if not run_dir.is_dir():
            continue
        for slot in run_dir.iterdir():
            if not slot.is_dir():
                continue
            tree = slot / TREE_DIR_NAME
            if tree.exists():
                await repo.remove_checkout(tree)
            if slot.exists():
                shutil.rmtree(slot, ignore_errors=True)
            if not slot.exists():
                cleaned += 1
        # Remove empty run directories
        try:
            if not any(run_dir.iterdir()):
                run_dir.rmdir()
        except OSError:
            pass

    await repo.prune_worktrees()
    if cleaned:
        logger.info("Removed %d stale workspace(s) under %s", cleaned, workspace_root)
    return cleaned


async def _run_shielded(aw: Awaitable[None]) -> None:
    """Await aw to completion even if the caller is cancelled meanwhile."""
    task = asyncio.ensure_future(aw)
    try:
        await asyncio.shield(task)
    except asyncio.CancelledError:
        await task
        raise


def _first_line(text: str) -> str:
    stripped = text.strip()
    return stripped.splitlines()[0] if stripped else ""


__all__ = [
    "TREE_DIR_NAME",
    "WorkspaceMaterializer",
    "cleanup_stale_workspaces",
]
