"""Verdict engine.

Combines the commit classification and the outcomes of the pre-fix and
post-fix stages into exactly one Verdict. Pure functions only: the pipeline
gathers the inputs, this module decides.

Decision table (first matching row wins):

    not-applicable                          -> NOT_APPLICABLE
    waived                                  -> BYPASSED
    no test changes                         -> MISSING_REGRESSION_TEST
    pre-fix PatchConflict                   -> AMBIGUOUS_PATCH
    pre-fix timed out / error               -> ERROR
    pre-fix passed                          -> MISSING_REGRESSION_TEST
    pre-fix failed, post-fix timed out/error-> ERROR
    pre-fix failed, post-fix passed         -> VALID
    pre-fix failed, post-fix failed         -> FIX_INCOMPLETE
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fixgate.core.errors import (
    EvaluationCancelled,
    GateError,
    PatchConflict,
    TestTimeout,
    ToolingFailure,
)
from fixgate.core.models import (
    Classification,
    RunStatus,
    StageOutcome,
    Verdict,
    VerdictTag,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from fixgate.core.models import TestRunResult

__all__ = [
    "aggregate_exit_code",
    "decide_verdict",
    "verdict_for_failure",
]

# Lines / characters of captured output quoted in diagnostics.
DIAGNOSTIC_TAIL_LINES = 20
DIAGNOSTIC_TAIL_CHARS = 2000


def decide_verdict(
    commit_id: str,
    classification: Classification,
    pre_fix: StageOutcome | None = None,
    post_fix: StageOutcome | None = None,
    *,
    has_test_changes: bool = True,
) -> Verdict:
    """Decide the verdict for one commit.

    Args:
        commit_id: Evaluated commit.
        classification: Result of the commit message classifier.
        pre_fix: Outcome of the pre-fix stage, if it ran.
        post_fix: Outcome of the post-fix stage, if it ran.
        has_test_changes: Whether the commit touches any test file.

    Returns:
        The commit's Verdict.
    """
    if classification is Classification.NOT_APPLICABLE:
        return Verdict(
            commit_id=commit_id,
            tag=VerdictTag.NOT_APPLICABLE,
            diagnostic="commit message does not claim a bug fix",
            classification=classification,
        )
    if classification is Classification.WAIVED:
        return Verdict(
            commit_id=commit_id,
            tag=VerdictTag.BYPASSED,
            diagnostic="regression check waived by skip token in commit message",
            classification=classification,
        )
    if not has_test_changes:
        return Verdict(
            commit_id=commit_id,
            tag=VerdictTag.MISSING_REGRESSION_TEST,
            diagnostic="bug-fix commit does not change any test file",
            classification=classification,
        )

    pre_result = pre_fix.result if pre_fix is not None else None
    post_result = post_fix.result if post_fix is not None else None

    def verdict(tag: VerdictTag, diagnostic: str) -> Verdict:
        return Verdict(
            commit_id=commit_id,
            tag=tag,
            diagnostic=diagnostic,
            classification=classification,
            pre_fix=pre_result,
            post_fix=post_result,
        )

    if pre_fix is None:
        return verdict(VerdictTag.ERROR, "pre-fix stage did not run")
    if isinstance(pre_fix.error, PatchConflict):
        return verdict(
            VerdictTag.AMBIGUOUS_PATCH,
            f"pre-fix stage: {pre_fix.error} "
            f"(test and production edits are interleaved in {pre_fix.error.path}; "
            "split them so the test hunks apply to the parent commit)",
        )
    problem = _stage_problem(pre_fix)
    if problem is not None:
        return verdict(VerdictTag.ERROR, problem)

    assert pre_result is not None
    if pre_result.status is RunStatus.PASSED:
        return verdict(
            VerdictTag.MISSING_REGRESSION_TEST,
            "pre-fix stage: tests passed against the unfixed code, so they do "
            "not catch the defect" + _tail_section(pre_result),
        )

    if post_fix is None:
        return verdict(VerdictTag.ERROR, "post-fix stage did not run")
    problem = _stage_problem(post_fix)
    if problem is not None:
        return verdict(VerdictTag.ERROR, problem)

    assert post_result is not None
    if post_result.status is RunStatus.PASSED:
        return verdict(
            VerdictTag.VALID,
            f"pre-fix stage: tests {pre_result.status.value} as expected; "
            "post-fix stage: tests passed",
        )
    return verdict(
        VerdictTag.FIX_INCOMPLETE,
        f"post-fix stage: tests {post_result.status.value} "
        f"(exit code {post_result.exit_code}) with the fix applied"
        + _tail_section(post_result),
    )


def verdict_for_failure(
    commit_id: str,
    error: GateError,
    classification: Classification | None = None,
) -> Verdict:
    """Build the ERROR verdict for a failure outside the test stages."""
    prefix = f"{error.stage.value} stage: " if error.stage is not None else ""
    kind = "cancelled" if isinstance(error, EvaluationCancelled) else type(error).__name__
    return Verdict(
        commit_id=commit_id,
        tag=VerdictTag.ERROR,
        diagnostic=f"{prefix}{kind}: {error}",
        classification=classification,
    )


def aggregate_exit_code(verdicts: Iterable[Verdict]) -> int:
    """Return 0 only if every verdict is NOT_APPLICABLE, BYPASSED or VALID."""
    return 0 if all(v.tag.is_passing for v in verdicts) else 1


def _stage_problem(outcome: StageOutcome) -> str | None:
    """Describe why a stage could not produce a usable pass/fail result."""
    error = outcome.error
    result = outcome.result
    if error is None and result is not None:
        if result.status is RunStatus.TIMED_OUT:
            limit = result.timeout_seconds
            if limit is None:
                limit = result.duration_seconds
            error = TestTimeout(limit, outcome.stage)
        elif result.status is RunStatus.ERROR:
            error = ToolingFailure(
                result.error or "test command could not be started", outcome.stage
            )
        else:
            return None
    if error is None:
        return f"{outcome.stage.value} stage produced no result"

    kind = "cancelled" if isinstance(error, EvaluationCancelled) else type(error).__name__
    message = f"{outcome.stage.value} stage: {kind}: {error}"
    if result is not None:
        message += _tail_section(result)
    return message


def _tail_section(result: TestRunResult) -> str:
    tail = result.output_tail(DIAGNOSTIC_TAIL_CHARS, DIAGNOSTIC_TAIL_LINES)
    if not tail:
        return ""
    return f"\n--- {result.stage.value} output (tail) ---\n{tail}"
