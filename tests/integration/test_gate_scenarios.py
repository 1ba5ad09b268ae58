"""End-to-end gate scenarios against real git repositories.

Each test builds a small history, evaluates it with the production
GitRepository, WorkspaceMaterializer and TestRunner, and checks the verdict
and that no workspace or worktree survives the evaluation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from fixgate.core.models import RunStatus, VerdictTag
from fixgate.domain.verdict import aggregate_exit_code
from fixgate.infra.git_utils import GitRepository
from fixgate.infra.test_runner import TestRunner
from fixgate.infra.workspace import WorkspaceMaterializer
from fixgate.pipeline.batch_runner import BatchRunner
from fixgate.pipeline.commit_evaluator import CommitEvaluator, EvaluatorConfig
from tests.fakes import FakeEventSink
from tests.scenarios import (
    TEST_COMMAND,
    commit_base,
    commit_docs,
    commit_hanging_test,
    commit_incomplete_fix,
    commit_untested_fix,
    commit_valid_fix,
)

if TYPE_CHECKING:
    from pathlib import Path

    from tests.conftest import GitRepoBuilder

pytestmark = pytest.mark.integration


def make_evaluator(
    git_repo: GitRepoBuilder,
    workspace_root: Path,
    timeout_seconds: float = 60.0,
    runner: TestRunner | None = None,
) -> CommitEvaluator:
    repo = GitRepository(git_repo.path)
    return CommitEvaluator(
        vcs=repo,
        materializer=WorkspaceMaterializer(repo, workspace_root),
        runner=runner or TestRunner(),
        config=EvaluatorConfig(
            test_command=TEST_COMMAND, timeout_seconds=timeout_seconds
        ),
    )


def assert_nothing_left(git_repo: GitRepoBuilder, workspace_root: Path) -> None:
    assert not any(workspace_root.iterdir())
    assert len(git_repo.worktrees()) == 1


class TestSingleCommit:
    @pytest.mark.asyncio
    async def test_test_catches_bug(
        self, git_repo: GitRepoBuilder, workspace_root: Path
    ) -> None:
        commit_base(git_repo)
        fix = commit_valid_fix(git_repo)

        verdict = await make_evaluator(git_repo, workspace_root).evaluate(fix)

        assert verdict.tag is VerdictTag.VALID, verdict.diagnostic
        assert verdict.pre_fix is not None
        assert verdict.pre_fix.status is RunStatus.FAILED
        assert "IndexError" in verdict.pre_fix.output
        assert verdict.post_fix is not None
        assert verdict.post_fix.status is RunStatus.PASSED
        assert_nothing_left(git_repo, workspace_root)

    @pytest.mark.asyncio
    async def test_test_does_not_catch_bug(
        self, git_repo: GitRepoBuilder, workspace_root: Path
    ) -> None:
        commit_base(git_repo)
        fix = commit_untested_fix(git_repo)

        verdict = await make_evaluator(git_repo, workspace_root).evaluate(fix)

        assert verdict.tag is VerdictTag.MISSING_REGRESSION_TEST
        assert verdict.post_fix is None
        assert_nothing_left(git_repo, workspace_root)

    @pytest.mark.asyncio
    async def test_fix_does_not_fix(
        self, git_repo: GitRepoBuilder, workspace_root: Path
    ) -> None:
        commit_base(git_repo)
        fix = commit_incomplete_fix(git_repo)

        verdict = await make_evaluator(git_repo, workspace_root).evaluate(fix)

        assert verdict.tag is VerdictTag.FIX_INCOMPLETE
        assert "AssertionError" in verdict.diagnostic
        assert_nothing_left(git_repo, workspace_root)

    @pytest.mark.asyncio
    async def test_hanging_test_times_out(
        self, git_repo: GitRepoBuilder, workspace_root: Path
    ) -> None:
        commit_base(git_repo)
        fix = commit_hanging_test(git_repo)
        evaluator = make_evaluator(
            git_repo,
            workspace_root,
            timeout_seconds=1.0,
            runner=TestRunner(kill_grace_seconds=0.5),
        )

        verdict = await evaluator.evaluate(fix)

        assert verdict.tag is VerdictTag.ERROR
        assert verdict.diagnostic.startswith(
            "pre-fix stage: TestTimeout: test command timed out after 1s"
        )
        assert verdict.pre_fix is not None
        assert verdict.pre_fix.status is RunStatus.TIMED_OUT
        assert_nothing_left(git_repo, workspace_root)

    @pytest.mark.asyncio
    async def test_root_fix_commit_is_error(
        self, git_repo: GitRepoBuilder, workspace_root: Path
    ) -> None:
        fix = commit_valid_fix(git_repo)

        verdict = await make_evaluator(git_repo, workspace_root).evaluate(fix)

        assert verdict.tag is VerdictTag.ERROR
        assert "root commit" in verdict.diagnostic
        assert_nothing_left(git_repo, workspace_root)

    @pytest.mark.asyncio
    async def test_repeated_evaluation_is_stable(
        self, git_repo: GitRepoBuilder, workspace_root: Path
    ) -> None:
        commit_base(git_repo)
        fix = commit_valid_fix(git_repo)
        evaluator = make_evaluator(git_repo, workspace_root)

        first = await evaluator.evaluate(fix)
        second = await evaluator.evaluate(fix)

        assert first.tag is second.tag is VerdictTag.VALID
        assert git_repo.git("status", "--porcelain") == ""
        assert_nothing_left(git_repo, workspace_root)


class TestBatch:
    @pytest.mark.asyncio
    async def test_range(self, git_repo: GitRepoBuilder, workspace_root: Path) -> None:
        base = commit_base(git_repo)
        docs = commit_docs(git_repo)
        valid = commit_valid_fix(git_repo)
        untested = commit_untested_fix(git_repo)
        repo = GitRepository(git_repo.path)
        sink = FakeEventSink()
        batch = BatchRunner(
            make_evaluator(git_repo, workspace_root), max_workers=2, event_sink=sink
        )

        commit_ids = await repo.list_commits(f"{base}..HEAD")
        verdicts = await batch.run(commit_ids)

        assert commit_ids == [docs, valid, untested]
        assert verdicts[docs].tag is VerdictTag.NOT_APPLICABLE
        assert verdicts[valid].tag is VerdictTag.VALID
        assert verdicts[untested].tag is VerdictTag.MISSING_REGRESSION_TEST
        assert aggregate_exit_code(verdicts.values()) == 1
        assert sink.events[-1] == ("batch_finished", (verdicts, 1))
        assert_nothing_left(git_repo, workspace_root)
