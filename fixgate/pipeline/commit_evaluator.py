"""CommitEvaluator: evaluates one commit end to end.

This module handles, for a single commit:
- Reading the commit and classifying its message
- Splitting its diff into test and non-test changes (once, up front)
- Running the pre-fix stage, then the post-fix stage, each in a fresh workspace
- Handing the stage outcomes to the verdict engine

Every GateError is turned into the commit's Verdict; nothing escapes to the
caller except truly unexpected exceptions, which BatchRunner contains.

Design principles:
- Protocol-based dependencies (VersionControlPort, RunnerPort) for testability
- Pre-fix strictly precedes post-fix; post-fix is skipped when the pre-fix
  result already decides the verdict
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from fixgate.core.errors import GateError
from fixgate.core.models import Classification, Stage, StageOutcome
from fixgate.domain.changeset import GlobTestPathPredicate, extract_change_set
from fixgate.domain.classifier import ClassifierRules, classify_commit_message
from fixgate.domain.verdict import decide_verdict, verdict_for_failure
from fixgate.infra.cancellation import CancellationGuard, run_with_cancellation
from fixgate.infra.io.event_sink import NullEventSink
from fixgate.infra.test_runner import expand_test_command

if TYPE_CHECKING:
    import asyncio

    from fixgate.core.models import ChangeSet, Commit, TestRunResult, Verdict
    from fixgate.core.protocols import (
        GateEventSink,
        PathPredicate,
        RunnerPort,
        VersionControlPort,
    )
    from fixgate.infra.io.config import GateConfig
    from fixgate.infra.workspace import WorkspaceMaterializer

logger = logging.getLogger(__name__)


@dataclass
class EvaluatorConfig:
    """Configuration for CommitEvaluator behavior.

    Attributes:
        test_command: Shell string or argv list run in each workspace.
        timeout_seconds: Wall-clock limit per test run.
        classifier_rules: Bug-fix patterns and skip token.
        is_test_path: Predicate deciding which files are test code.
    """

    test_command: str | list[str]
    timeout_seconds: float = 600.0
    classifier_rules: ClassifierRules = field(
        default_factory=ClassifierRules.from_patterns
    )
    is_test_path: PathPredicate = field(default_factory=GlobTestPathPredicate)

    @classmethod
    def from_gate_config(cls, config: GateConfig) -> EvaluatorConfig:
        """Build evaluator settings from a validated GateConfig.

        Raises:
            ValueError: If the config has no test command.
        """
        if config.test_command is None:
            raise ValueError("no test command configured")
        command = config.test_command
        return cls(
            test_command=command if isinstance(command, str) else list(command),
            timeout_seconds=config.timeout_seconds,
            classifier_rules=ClassifierRules.from_patterns(
                config.fix_prefix_patterns,
                config.issue_reference_patterns,
                config.skip_token,
            ),
            is_test_path=GlobTestPathPredicate(config.test_path_patterns),
        )


@dataclass
class CommitEvaluator:
    """Evaluates one commit and produces exactly one Verdict.

    Usage:
        evaluator = CommitEvaluator(
            vcs=GitRepository(repo_path),
            materializer=WorkspaceMaterializer(repo, workspace_root),
            runner=TestRunner(max_output_bytes=256 * 1024),
            config=EvaluatorConfig(test_command="pytest -q"),
        )
        verdict = await evaluator.evaluate("HEAD")

    Attributes:
        vcs: Source of commits and trees.
        materializer: Builds the per-stage workspaces.
        runner: Runs the test command in a workspace.
        config: Evaluation settings.
        event_sink: Receives progress events.
    """

    vcs: VersionControlPort
    materializer: WorkspaceMaterializer
    runner: RunnerPort
    config: EvaluatorConfig
    event_sink: GateEventSink = field(default_factory=NullEventSink)

    async def evaluate(
        self, commit_id: str, cancel_event: asyncio.Event | None = None
    ) -> Verdict:
        """Evaluate a commit.

        Args:
            commit_id: Revision to evaluate.
            cancel_event: When set, in-flight work is cancelled and the
                verdict is ERROR with a cancellation diagnostic.

        Returns:
            The commit's Verdict.
        """
        guard = CancellationGuard(cancel_event)
        classification: Classification | None = None
        try:
            guard.raise_if_cancelled()
            commit = await run_with_cancellation(
                self.vcs.read_commit(commit_id), cancel_event
            )
            classification = classify_commit_message(
                commit.message, self.config.classifier_rules
            )
            self.event_sink.on_commit_classified(commit_id, classification)
            verdict = await self._evaluate_commit(
                commit_id, commit, classification, cancel_event
            )
        except GateError as e:
            logger.debug("Evaluation of %s failed: %s", commit_id, e)
            verdict = verdict_for_failure(commit_id, e, classification)

        self.event_sink.on_verdict(verdict)
        return verdict

    async def _evaluate_commit(
        self,
        commit_id: str,
        commit: Commit,
        classification: Classification,
        cancel_event: asyncio.Event | None,
    ) -> Verdict:
        if classification is not Classification.APPLICABLE:
            return decide_verdict(commit_id, classification)

        change_set = extract_change_set(commit.changes, self.config.is_test_path)
        if not change_set.has_test_changes:
            return decide_verdict(commit_id, classification, has_test_changes=False)
        logger.debug(
            "%s: %d test file(s), %d other file(s)",
            commit.short_id,
            len(change_set.test_changes),
            len(change_set.non_test_changes),
        )

        command = expand_test_command(self.config.test_command, change_set.test_paths)
        pre_fix = await self._run_stage(
            Stage.PRE_FIX, commit_id, commit, change_set, command, cancel_event
        )
        if pre_fix.result is None or not pre_fix.result.status.is_failure:
            # Conflict, error, timeout or a passing pre-fix run decides alone
            return decide_verdict(commit_id, classification, pre_fix)

        post_fix = await self._run_stage(
            Stage.POST_FIX, commit_id, commit, change_set, command, cancel_event
        )
        return decide_verdict(commit_id, classification, pre_fix, post_fix)

    async def _run_stage(
        self,
        stage: Stage,
        commit_id: str,
        commit: Commit,
        change_set: ChangeSet,
        command: str | list[str],
        cancel_event: asyncio.Event | None,
    ) -> StageOutcome:
        try:
            CancellationGuard(cancel_event).raise_if_cancelled(stage)
            result = await run_with_cancellation(
                self._materialize_and_run(stage, commit_id, commit, change_set, command),
                cancel_event,
                stage,
            )
        except GateError as e:
            if e.stage is None:
                e.stage = stage
            return StageOutcome(stage=stage, error=e)
        return StageOutcome(stage=stage, result=result)

    async def _materialize_and_run(
        self,
        stage: Stage,
        commit_id: str,
        commit: Commit,
        change_set: ChangeSet,
        command: str | list[str],
    ) -> TestRunResult:
        if stage is Stage.PRE_FIX:
            scope = self.materializer.pre_fix(commit, change_set)
        else:
            scope = self.materializer.post_fix(commit)
        async with scope as workspace:
            self.event_sink.on_stage_started(commit_id, stage)
            result = await self.runner.run(
                workspace, command, self.config.timeout_seconds
            )
        self.event_sink.on_stage_finished(commit_id, stage, result)
        return result
