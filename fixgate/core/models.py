"""Shared dataclasses for fixgate.

This module holds the types passed between the classifier, extractor,
materializer, test runner and verdict engine, so none of those layers has to
import another to agree on a data shape.

Types:
- Commit, FileChange, Hunk, ChangeKind: a commit as read from git
- ChangeSet: a commit's changes split into test and non-test files
- Workspace, AppliedPatch, Stage: an isolated checkout used by one test run
- TestRunResult, RunStatus: outcome of one test command invocation
- Classification, VerdictTag, StageOutcome, Verdict: gate decisions
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

    from fixgate.core.errors import GateError


class ChangeKind(Enum):
    """Kind of a file-level change in a diff."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


@dataclass(frozen=True)
class Hunk:
    """A contiguous block of changed lines within one file's diff.

    Attributes:
        origin_start: First line of the hunk in the original file.
        origin_count: Number of original lines covered (context + removed).
        dest_start: First line of the hunk in the new file.
        dest_count: Number of new lines covered (context + added).
        header: The raw ``@@ -a,b +c,d @@`` line, terminator included.
        lines: Raw body lines, terminators included.
    """

    origin_start: int
    origin_count: int
    dest_start: int
    dest_count: int
    header: str
    lines: tuple[str, ...]

    @property
    def added_lines(self) -> list[str]:
        return [line[1:].rstrip("\r\n") for line in self.lines if line[:1] == "+"]

    @property
    def removed_lines(self) -> list[str]:
        return [line[1:].rstrip("\r\n") for line in self.lines if line[:1] == "-"]

    def render(self) -> str:
        return self.header + "".join(self.lines)


@dataclass(frozen=True)
class FileChange:
    """One file's section of a unified diff.

    Attributes:
        path: Destination path (the source path for deletions).
        old_path: Source path. Differs from path only for renames.
        kind: Added, modified, deleted or renamed.
        header_lines: Raw lines preceding the first hunk (``diff --git``,
            extended headers, ``---``/``+++``, opaque binary patch data).
        hunks: Hunks in diff order.
        position: Index of this file in the original diff.
    """

    path: str
    old_path: str
    kind: ChangeKind
    header_lines: tuple[str, ...]
    hunks: tuple[Hunk, ...]
    position: int

    def render(self) -> str:
        """Reproduce this file's section of the diff exactly."""
        return "".join(self.header_lines) + "".join(h.render() for h in self.hunks)


@dataclass(frozen=True)
class Commit:
    """A commit as read from the version-control system."""

    commit_id: str
    parent_id: str | None
    message: str
    changes: tuple[FileChange, ...]
    raw_diff: str = ""

    @property
    def short_id(self) -> str:
        return self.commit_id[:12]


@dataclass(frozen=True)
class ChangeSet:
    """A commit's file changes partitioned into test and non-test files.

    Every FileChange of the commit appears in exactly one partition, with its
    hunks untouched.
    """

    test_changes: tuple[FileChange, ...]
    non_test_changes: tuple[FileChange, ...]

    @property
    def has_test_changes(self) -> bool:
        return bool(self.test_changes)

    @property
    def test_paths(self) -> list[str]:
        """Paths of test files that exist after the commit."""
        return [c.path for c in self.test_changes if c.kind is not ChangeKind.DELETED]

    def test_patch(self) -> str:
        return "".join(c.render() for c in self.test_changes)

    def reconstruct(self) -> str:
        """Re-render the original diff from both partitions."""
        merged = sorted(
            (*self.test_changes, *self.non_test_changes), key=lambda c: c.position
        )
        return "".join(c.render() for c in merged)


class Stage(Enum):
    """Validation stage a workspace or test run belongs to."""

    PRE_FIX = "pre-fix"
    POST_FIX = "post-fix"


class AppliedPatch(Enum):
    """Which patch has been applied on top of a workspace's base commit."""

    NONE = "none"
    TEST_ONLY = "test-only"
    FULL = "full"


@dataclass(frozen=True)
class Workspace:
    """An isolated checkout owned by exactly one test run.

    Attributes:
        workspace_id: Unique identifier within the process.
        path: Root directory of the materialized tree.
        base_commit: Commit the tree was checked out from.
        applied_patch: Patch applied on top of base_commit.
        stage: Stage this workspace was built for.
    """

    workspace_id: str
    path: Path
    base_commit: str
    applied_patch: AppliedPatch
    stage: Stage


class RunStatus(Enum):
    """Outcome of one test command invocation."""

    PASSED = "passed"
    FAILED = "failed"
    CRASHED = "crashed"
    TIMED_OUT = "timed-out"
    ERROR = "error"

    @property
    def is_failure(self) -> bool:
        """True when the tests ran and did not succeed."""
        return self in (RunStatus.FAILED, RunStatus.CRASHED)


@dataclass(frozen=True)
class TestRunResult:
    """Result of running the test command in one workspace.

    Attributes:
        status: Interpreted outcome.
        exit_code: Process exit code (None if the process never started).
        duration_seconds: Wall-clock duration.
        output: Combined stdout/stderr, bounded to the configured size.
        output_truncated: Whether older output was dropped.
        workspace_id: Workspace the command ran in.
        stage: Stage of that workspace.
        error: Tooling diagnostic when status is ERROR.
        timeout_seconds: Wall-clock limit the command ran under.
    """

    __test__ = False

    status: RunStatus
    exit_code: int | None
    duration_seconds: float
    output: str
    workspace_id: str
    stage: Stage
    output_truncated: bool = False
    error: str | None = None
    timeout_seconds: float | None = None

    def output_tail(self, max_chars: int = 2000, max_lines: int = 20) -> str:
        """Return the last lines of output, bounded by line and char count."""
        lines = self.output.rstrip("\n").splitlines()[-max_lines:]
        tail = "\n".join(lines)
        if len(tail) > max_chars:
            tail = tail[-max_chars:]
        return tail


class Classification(Enum):
    """Whether a commit message claims a bug fix."""

    APPLICABLE = "applicable"
    NOT_APPLICABLE = "not-applicable"
    WAIVED = "waived"


class VerdictTag(Enum):
    """Terminal classification of one evaluated commit."""

    NOT_APPLICABLE = "NOT_APPLICABLE"
    BYPASSED = "BYPASSED"
    VALID = "VALID"
    MISSING_REGRESSION_TEST = "MISSING_REGRESSION_TEST"
    FIX_INCOMPLETE = "FIX_INCOMPLETE"
    AMBIGUOUS_PATCH = "AMBIGUOUS_PATCH"
    ERROR = "ERROR"

    @property
    def is_passing(self) -> bool:
        return self in (VerdictTag.NOT_APPLICABLE, VerdictTag.BYPASSED, VerdictTag.VALID)


@dataclass(frozen=True)
class StageOutcome:
    """What happened in one stage: a test run result or a gate error."""

    stage: Stage
    result: TestRunResult | None = None
    error: GateError | None = None


@dataclass(frozen=True)
class Verdict:
    """The single terminal decision for one commit.

    Attributes:
        commit_id: Evaluated commit.
        tag: Verdict tag.
        diagnostic: Human-readable explanation of the tag.
        classification: Commit message classification, if it was reached.
        pre_fix: Pre-fix test run, if one happened.
        post_fix: Post-fix test run, if one happened.
    """

    commit_id: str
    tag: VerdictTag
    diagnostic: str
    classification: Classification | None = None
    pre_fix: TestRunResult | None = None
    post_fix: TestRunResult | None = None
