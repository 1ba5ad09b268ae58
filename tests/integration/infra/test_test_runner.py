"""Integration tests for fixgate/infra/test_runner.py."""

from __future__ import annotations

import shlex
import sys
from typing import TYPE_CHECKING

import pytest

from fixgate.core.models import AppliedPatch, RunStatus, Stage, Workspace
from fixgate.infra.test_runner import (
    DEFAULT_MAX_OUTPUT_BYTES,
    TestRunner,
    expand_test_command,
)

if TYPE_CHECKING:
    from pathlib import Path

pytestmark = pytest.mark.integration

PY = shlex.quote(sys.executable)


def _workspace(path: Path, stage: Stage = Stage.PRE_FIX) -> Workspace:
    return Workspace(
        workspace_id="run/ws-1",
        path=path,
        base_commit="0" * 40,
        applied_patch=AppliedPatch.TEST_ONLY,
        stage=stage,
    )


class TestExpandTestCommand:
    """Test {test_files} substitution."""

    @pytest.mark.unit
    def test_shell_string(self) -> None:
        command = expand_test_command("pytest -q {test_files}", ["a_test.py", "dir/b c.py"])
        assert command == "pytest -q a_test.py 'dir/b c.py'"

    @pytest.mark.unit
    def test_argv(self) -> None:
        command = expand_test_command(["pytest", "{test_files}", "-x"], ["a.py", "b.py"])
        assert command == ["pytest", "a.py", "b.py", "-x"]

    @pytest.mark.unit
    def test_without_placeholder(self) -> None:
        assert expand_test_command("make test", ["a.py"]) == "make test"
        assert expand_test_command(("make", "test"), ["a.py"]) == ["make", "test"]


class TestTestRunner:
    """Test TestRunner.run() status interpretation."""

    @pytest.mark.asyncio
    async def test_passed(self, tmp_path: Path) -> None:
        result = await TestRunner().run(
            _workspace(tmp_path), f"{PY} -c 'print(\"ok\")'", timeout=30
        )
        assert result.status is RunStatus.PASSED
        assert result.exit_code == 0
        assert result.output == "ok\n"
        assert result.workspace_id == "run/ws-1"
        assert result.stage is Stage.PRE_FIX

    @pytest.mark.asyncio
    async def test_runs_in_workspace_root(self, tmp_path: Path) -> None:
        (tmp_path / "check_test.py").write_text("import sys; sys.exit(0)\n")
        result = await TestRunner().run(
            _workspace(tmp_path), [sys.executable, "check_test.py"], timeout=30
        )
        assert result.status is RunStatus.PASSED

    @pytest.mark.asyncio
    async def test_failed_captures_stderr(self, tmp_path: Path) -> None:
        result = await TestRunner().run(
            _workspace(tmp_path),
            f"{PY} -c 'raise AssertionError(\"boom\")'",
            timeout=30,
        )
        assert result.status is RunStatus.FAILED
        assert result.exit_code == 1
        assert "AssertionError: boom" in result.output

    @pytest.mark.asyncio
    async def test_signal_is_crashed(self, tmp_path: Path) -> None:
        script = "import os, signal; os.kill(os.getpid(), signal.SIGSEGV)"
        result = await TestRunner().run(
            _workspace(tmp_path), [sys.executable, "-c", script], timeout=30
        )
        assert result.status is RunStatus.CRASHED
        assert result.status.is_failure
        assert result.error == "terminated by SIGSEGV"

    @pytest.mark.asyncio
    async def test_shell_reported_signal_is_crashed(self, tmp_path: Path) -> None:
        result = await TestRunner().run(_workspace(tmp_path), "exit 139", timeout=30)
        assert result.status is RunStatus.CRASHED

    @pytest.mark.asyncio
    async def test_command_not_found_is_error(self, tmp_path: Path) -> None:
        result = await TestRunner().run(
            _workspace(tmp_path), "definitely-not-a-real-command-xyz", timeout=30
        )
        assert result.status is RunStatus.ERROR
        assert result.exit_code == 127
        assert "not found" in (result.error or "")

    @pytest.mark.asyncio
    async def test_argv_spawn_failure_is_error(self, tmp_path: Path) -> None:
        result = await TestRunner().run(
            _workspace(tmp_path), ["definitely-not-a-real-command-xyz"], timeout=30
        )
        assert result.status is RunStatus.ERROR
        assert result.exit_code is None
        assert "could not be started" in (result.error or "")

    @pytest.mark.asyncio
    async def test_timeout(self, tmp_path: Path) -> None:
        runner = TestRunner(kill_grace_seconds=0.5)
        result = await runner.run(
            _workspace(tmp_path, Stage.POST_FIX),
            [sys.executable, "-c", "while True: pass"],
            timeout=0.5,
        )
        assert result.status is RunStatus.TIMED_OUT
        assert result.stage is Stage.POST_FIX

    @pytest.mark.asyncio
    async def test_output_is_bounded(self, tmp_path: Path) -> None:
        runner = TestRunner(max_output_bytes=2048)
        script = "print('x' * 100000); print('LAST LINE')"
        result = await runner.run(
            _workspace(tmp_path), [sys.executable, "-c", script], timeout=30
        )
        assert result.output_truncated
        assert "bytes truncated" in result.output
        assert result.output.rstrip().endswith("LAST LINE")

    @pytest.mark.asyncio
    async def test_default_output_limit(self, tmp_path: Path) -> None:
        runner = TestRunner()
        assert runner.max_output_bytes == DEFAULT_MAX_OUTPUT_BYTES
        script = f"print('y' * {DEFAULT_MAX_OUTPUT_BYTES + 4096})"
        result = await runner.run(
            _workspace(tmp_path), [sys.executable, "-c", script], timeout=30
        )
        assert result.output_truncated
        assert len(result.output) < DEFAULT_MAX_OUTPUT_BYTES + 100

    @pytest.mark.asyncio
    async def test_timeout_records_the_limit(self, tmp_path: Path) -> None:
        result = await TestRunner(kill_grace_seconds=0.5).run(
            _workspace(tmp_path), [sys.executable, "-c", "while True: pass"], timeout=0.5
        )
        assert result.status is RunStatus.TIMED_OUT
        assert result.timeout_seconds == 0.5
        assert result.duration_seconds >= 0.5

    @pytest.mark.asyncio
    async def test_background_job_does_not_outlast_the_command(
        self, tmp_path: Path
    ) -> None:
        runner = TestRunner(kill_grace_seconds=0.2)
        result = await runner.run(
            _workspace(tmp_path), "sleep 5 & echo failing; exit 1", timeout=3.0
        )
        assert result.status is RunStatus.FAILED
        assert result.exit_code == 1
        assert "failing" in result.output
        assert result.duration_seconds < 2.5
