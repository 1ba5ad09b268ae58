"""Protocol definitions for fixgate's collaborators.

The domain and pipeline layers depend on these protocols rather than on the
infrastructure implementations, so tests can inject fakes for git, the test
runner and the console.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from pathlib import Path

    from fixgate.core.models import (
        Classification,
        Commit,
        Stage,
        TestRunResult,
        Verdict,
        Workspace,
    )


@runtime_checkable
class PathPredicate(Protocol):
    """Decides whether a repository-relative path is test code.

    The canonical implementation is GlobTestPathPredicate in
    fixgate/domain/changeset.py.
    """

    def __call__(self, path: str) -> bool: ...


@runtime_checkable
class VersionControlPort(Protocol):
    """Read-only access to commit history plus tree checkout.

    The canonical implementation is GitRepository in
    fixgate/infra/git_utils.py.
    """

    async def read_commit(self, rev: str) -> Commit:
        """Read a commit's metadata and its diff against its first parent.

        Raises:
            CheckoutFailure: If the revision cannot be read.
            MalformedDiff: If the diff cannot be parsed.
        """
        ...

    async def list_commits(self, rev_range: str) -> list[str]:
        """Resolve a revision or range to full commit ids, oldest first."""
        ...

    async def checkout(self, rev: str, dest: Path) -> None:
        """Materialize the tree of rev into dest.

        Raises:
            CheckoutFailure: If the tree cannot be produced.
        """
        ...

    async def remove_checkout(self, dest: Path) -> None:
        """Remove a tree created by checkout(). Must not raise."""
        ...


@runtime_checkable
class RunnerPort(Protocol):
    """Runs the test command inside one workspace.

    The canonical implementation is TestRunner in fixgate/infra/test_runner.py.
    """

    async def run(
        self, workspace: Workspace, command: str | list[str], timeout: float
    ) -> TestRunResult: ...


class GateEventSink(Protocol):
    """Receives progress events from the gate.

    Implementations live in fixgate/infra/io/event_sink.py.
    """

    def on_batch_started(self, commit_count: int, max_workers: int) -> None: ...

    def on_commit_classified(
        self, commit_id: str, classification: Classification
    ) -> None: ...

    def on_stage_started(self, commit_id: str, stage: Stage) -> None: ...

    def on_stage_finished(
        self, commit_id: str, stage: Stage, result: TestRunResult
    ) -> None: ...

    def on_verdict(self, verdict: Verdict) -> None: ...

    def on_batch_finished(self, verdicts: dict[str, Verdict], exit_code: int) -> None: ...
