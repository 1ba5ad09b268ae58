"""Unit tests for fixgate/infra/io/report.py."""

import json
from pathlib import Path

from fixgate.core.models import (
    Classification,
    RunStatus,
    Stage,
    TestRunResult,
    Verdict,
    VerdictTag,
)
from fixgate.infra.io.report import verdict_to_dict, write_verdict_report


def _verdict() -> Verdict:
    pre = TestRunResult(
        status=RunStatus.FAILED,
        exit_code=1,
        duration_seconds=0.12345,
        output="AssertionError\n",
        workspace_id="run/abc-pre-fix-1",
        stage=Stage.PRE_FIX,
    )
    post = TestRunResult(
        status=RunStatus.PASSED,
        exit_code=0,
        duration_seconds=0.2,
        output="ok\n",
        workspace_id="run/abc-post-fix-2",
        stage=Stage.POST_FIX,
        output_truncated=True,
        timeout_seconds=600.0,
    )
    return Verdict(
        commit_id="abc",
        tag=VerdictTag.VALID,
        diagnostic="pre-fix stage: tests failed as expected",
        classification=Classification.APPLICABLE,
        pre_fix=pre,
        post_fix=post,
    )


class TestVerdictToDict:
    def test_full_verdict(self) -> None:
        data = verdict_to_dict(_verdict())
        assert data["tag"] == "VALID"
        assert data["classification"] == "applicable"
        assert data["pre_fix"]["status"] == "failed"
        assert data["pre_fix"]["duration_seconds"] == 0.123
        assert data["pre_fix"]["output"] == "AssertionError\n"
        assert data["post_fix"]["output_truncated"] is True
        assert data["post_fix"]["timeout_seconds"] == 600.0
        assert data["pre_fix"]["timeout_seconds"] is None

    def test_verdict_without_runs(self) -> None:
        data = verdict_to_dict(
            Verdict(commit_id="x", tag=VerdictTag.NOT_APPLICABLE, diagnostic="")
        )
        assert data["classification"] is None
        assert data["pre_fix"] is None
        assert data["post_fix"] is None


class TestWriteVerdictReport:
    def test_writes_json(self, tmp_path: Path) -> None:
        path = tmp_path / "out" / "report.json"
        written = write_verdict_report(
            path,
            {"abc": _verdict()},
            run_id="r1",
            repo_path=tmp_path,
            exit_code=0,
        )
        assert written == path
        data = json.loads(path.read_text())
        assert data["run_id"] == "r1"
        assert data["exit_code"] == 0
        assert data["repo_path"] == str(tmp_path)
        assert [v["commit_id"] for v in data["verdicts"]] == ["abc"]
        assert "completed_at" in data
