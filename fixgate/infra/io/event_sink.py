"""Event sink implementations for the gate.

Provides concrete implementations of the GateEventSink protocol:
- NullEventSink: Silent sink for library use and testing
- ConsoleEventSink: Progress output using the console log helpers
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fixgate.core.models import RunStatus, VerdictTag
from fixgate.infra.io.log_output.console import Colors, log, log_verbose

if TYPE_CHECKING:
    from fixgate.core.models import Classification, Stage, TestRunResult, Verdict

__all__ = [
    "ConsoleEventSink",
    "NullEventSink",
]

_TAG_STYLE: dict[VerdictTag, tuple[str, str]] = {
    VerdictTag.VALID: ("✓", Colors.GREEN),
    VerdictTag.NOT_APPLICABLE: ("○", Colors.GRAY),
    VerdictTag.BYPASSED: ("○", Colors.YELLOW),
    VerdictTag.MISSING_REGRESSION_TEST: ("✗", Colors.RED),
    VerdictTag.FIX_INCOMPLETE: ("✗", Colors.RED),
    VerdictTag.AMBIGUOUS_PATCH: ("⚠", Colors.YELLOW),
    VerdictTag.ERROR: ("✗", Colors.RED),
}


class NullEventSink:
    """No-op event sink.

    Example:
        runner = BatchRunner(evaluator, max_workers=2, event_sink=NullEventSink())
        verdicts = await runner.run(commit_ids)  # No console output
    """

    def on_batch_started(self, commit_count: int, max_workers: int) -> None:
        pass

    def on_commit_classified(
        self, commit_id: str, classification: Classification
    ) -> None:
        pass

    def on_stage_started(self, commit_id: str, stage: Stage) -> None:
        pass

    def on_stage_finished(
        self, commit_id: str, stage: Stage, result: TestRunResult
    ) -> None:
        pass

    def on_verdict(self, verdict: Verdict) -> None:
        pass

    def on_batch_finished(self, verdicts: dict[str, Verdict], exit_code: int) -> None:
        pass


class ConsoleEventSink(NullEventSink):
    """Event sink that writes progress lines to the console."""

    def on_batch_started(self, commit_count: int, max_workers: int) -> None:
        log("→", f"[START] Evaluating {commit_count} commit(s)", Colors.CYAN)
        log_verbose("◦", f"Parallelism: {max_workers}")

    def on_commit_classified(
        self, commit_id: str, classification: Classification
    ) -> None:
        log_verbose("◦", f"Classified as {classification.value}", commit_id=commit_id)

    def on_stage_started(self, commit_id: str, stage: Stage) -> None:
        log("◦", f"{stage.value}: running tests", Colors.MUTED, commit_id=commit_id)

    def on_stage_finished(
        self, commit_id: str, stage: Stage, result: TestRunResult
    ) -> None:
        color = Colors.GREEN if result.status is RunStatus.PASSED else Colors.YELLOW
        log(
            "◦",
            f"{stage.value}: tests {result.status.value} "
            f"in {result.duration_seconds:.1f}s",
            color,
            commit_id=commit_id,
        )

    def on_verdict(self, verdict: Verdict) -> None:
        icon, color = _TAG_STYLE[verdict.tag]
        summary = verdict.diagnostic.splitlines()[0] if verdict.diagnostic else ""
        log(icon, f"{verdict.tag.value}: {summary}", color, commit_id=verdict.commit_id)

    def on_batch_finished(self, verdicts: dict[str, Verdict], exit_code: int) -> None:
        failing = sum(1 for v in verdicts.values() if not v.tag.is_passing)
        if exit_code == 0:
            log("✓", f"[DONE] {len(verdicts)} commit(s) passed the gate", Colors.GREEN)
        else:
            log(
                "✗",
                f"[DONE] {failing} of {len(verdicts)} commit(s) failed the gate",
                Colors.RED,
            )
