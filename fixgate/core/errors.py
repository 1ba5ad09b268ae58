"""Error taxonomy for a single commit evaluation.

Every GateError is scoped to one commit. The pipeline catches them and turns
them into that commit's Verdict; they never abort sibling evaluations.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fixgate.core.models import Stage


class GateError(Exception):
    """Base class for failures while evaluating one commit.

    Attributes:
        stage: Stage the failure happened in, or None if it happened
            before any workspace was built.
    """

    def __init__(self, message: str, stage: Stage | None = None) -> None:
        super().__init__(message)
        self.stage = stage


class MalformedDiff(GateError):
    """A hunk cannot be parsed against its stated line ranges."""

    def __init__(self, message: str, line_number: int | None = None) -> None:
        if line_number is not None:
            message = f"{message} (diff line {line_number})"
        super().__init__(message)
        self.line_number = line_number


class PatchConflict(GateError):
    """Test hunks do not apply cleanly to the parent tree.

    Raised when test and production edits are interleaved so that the
    test-only patch cannot be split out unambiguously.
    """

    def __init__(self, path: str, detail: str = "", stage: Stage | None = None) -> None:
        message = f"test changes to {path} do not apply cleanly to the parent tree"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, stage)
        self.path = path
        self.detail = detail


class ToolingFailure(GateError):
    """The test command could not be launched."""


class TestTimeout(GateError):
    """The test command exceeded its allotted time."""

    __test__ = False

    def __init__(self, timeout_seconds: float, stage: Stage | None = None) -> None:
        super().__init__(f"test command timed out after {timeout_seconds:g}s", stage)
        self.timeout_seconds = timeout_seconds


class CheckoutFailure(GateError):
    """Git could not produce the requested tree or commit data."""


class EvaluationCancelled(GateError):
    """The evaluation was cancelled by an external signal."""
