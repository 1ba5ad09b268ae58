"""Standardized subprocess execution for fixgate.

CommandRunner runs a command asynchronously with:
- a hard wall-clock timeout that terminates the whole process group
  (SIGTERM, then SIGKILL after a grace period)
- bounded output capture: only the newest max_output_bytes are kept, and
  the result says how much was dropped
- the run ends when the command exits: leftover background processes in its
  group are killed and output still buffered in the pipes is drained
- immediate process-group kill when the awaiting task is cancelled
- a registry of active process groups so a SIGINT handler can kill every
  running command at once (kill_active_process_groups)
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import signal
import sys
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

logger = logging.getLogger(__name__)

# Exit code reported for timed-out commands (same as coreutils `timeout`)
TIMEOUT_EXIT_CODE = 124

# Seconds between SIGTERM and SIGKILL when terminating a process group
DEFAULT_KILL_GRACE_SECONDS = 2.0

_READ_CHUNK_BYTES = 64 * 1024

# How often to check whether the command itself has exited
_EXIT_POLL_SECONDS = 0.05

# Time allowed for output still in the pipes once the command has exited
_DRAIN_TIMEOUT_SECONDS = 1.0

# Process groups of commands currently running, keyed by pgid
_ACTIVE_PGIDS: set[int] = set()


@dataclass
class CommandResult:
    """Result of a command execution.

    Attributes:
        command: The command that was run.
        returncode: Exit code (negative when killed by a signal,
            TIMEOUT_EXIT_CODE when timed out).
        stdout: Captured stdout (combined output when stderr was merged).
        stderr: Captured stderr (empty when merged into stdout).
        duration_seconds: Wall-clock execution time.
        timed_out: Whether the command was killed for exceeding its timeout.
        output_truncated: Whether older output was dropped to stay bounded.
    """

    command: list[str] | str
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    timed_out: bool = False
    output_truncated: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    def stderr_tail(self, max_chars: int = 800, max_lines: int = 20) -> str:
        return _tail(self.stderr, max_chars=max_chars, max_lines=max_lines)


def _tail(text: str, max_chars: int = 800, max_lines: int = 20) -> str:
    if not text:
        return ""
    lines = text.splitlines()[-max_lines:]
    clipped = "\n".join(lines)
    if len(clipped) > max_chars:
        clipped = clipped[-max_chars:]
    return clipped


@dataclass
class _OutputBuffer:
    """Keeps the newest `limit` bytes of a stream."""

    limit: int | None
    data: bytearray = field(default_factory=bytearray)
    dropped: int = 0

    def feed(self, chunk: bytes) -> None:
        self.data += chunk
        if self.limit is not None and len(self.data) > self.limit:
            excess = len(self.data) - self.limit
            del self.data[:excess]
            self.dropped += excess

    def text(self, errors: str) -> str:
        decoded = self.data.decode("utf-8", errors=errors)
        if self.dropped:
            return f"[... {self.dropped} bytes truncated ...]\n{decoded}"
        return decoded


class CommandRunner:
    """Runs subprocesses with timeout, process-group cleanup and bounded output.

    Example:
        runner = CommandRunner(cwd=workspace, timeout_seconds=60)
        result = await runner.run_async("make test", shell=True, merge_stderr=True)
        if result.timed_out:
            ...
    """

    def __init__(
        self,
        cwd: Path,
        timeout_seconds: float | None = None,
        kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
        max_output_bytes: int | None = None,
        encoding_errors: str = "replace",
    ) -> None:
        """Initialize the runner.

        Args:
            cwd: Default working directory for commands.
            timeout_seconds: Default timeout; None means no timeout.
            kill_grace_seconds: Delay between SIGTERM and SIGKILL.
            max_output_bytes: Per-stream capture limit; None keeps everything.
            encoding_errors: Error handler used to decode output as UTF-8.
        """
        self.cwd = cwd
        self.timeout_seconds = timeout_seconds
        self.kill_grace_seconds = kill_grace_seconds
        self.max_output_bytes = max_output_bytes
        self.encoding_errors = encoding_errors

    async def run_async(
        self,
        cmd: list[str] | str,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        use_process_group: bool | None = None,
        shell: bool = False,
        cwd: Path | None = None,
        merge_stderr: bool = False,
    ) -> CommandResult:
        """Run a command and wait for it.

        Args:
            cmd: Argument list, or a string (parsed with shlex unless shell=True).
            env: Extra environment variables, merged over os.environ.
            timeout: Overrides the runner's default timeout.
            use_process_group: Start the command in its own session so the
                whole tree can be killed. Defaults to True on POSIX.
            shell: Run through /bin/sh.
            cwd: Overrides the runner's working directory.
            merge_stderr: Capture stderr into stdout.

        Returns:
            CommandResult. Timeouts are reported, not raised.

        Raises:
            OSError: If the process cannot be started.
            asyncio.CancelledError: Propagated after the process group is killed.
        """
        effective_timeout = timeout if timeout is not None else self.timeout_seconds
        use_pg = _resolve_use_process_group(use_process_group)
        workdir = cwd if cwd is not None else self.cwd
        merged_env = {**os.environ, **env} if env else None
        stderr_target = asyncio.subprocess.STDOUT if merge_stderr else asyncio.subprocess.PIPE

        start = time.monotonic()
        if shell:
            shell_cmd = cmd if isinstance(cmd, str) else shlex.join(cmd)
            proc = await asyncio.create_subprocess_shell(
                shell_cmd,
                cwd=workdir,
                env=merged_env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=stderr_target,
                start_new_session=use_pg,
            )
        else:
            argv = shlex.split(cmd) if isinstance(cmd, str) else list(cmd)
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=workdir,
                env=merged_env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=stderr_target,
                start_new_session=use_pg,
            )

        pgid = proc.pid if use_pg else None
        if pgid is not None:
            CommandRunner.register_pgid(pgid)
        logger.debug("Started pid=%s cwd=%s cmd=%s", proc.pid, workdir, cmd)

        stdout_buf = _OutputBuffer(self.max_output_bytes)
        stderr_buf = _OutputBuffer(self.max_output_bytes)
        readers = [asyncio.create_task(_drain(proc.stdout, stdout_buf))]
        if not merge_stderr:
            readers.append(asyncio.create_task(_drain(proc.stderr, stderr_buf)))

        timed_out = False
        try:
            try:
                returncode = await asyncio.wait_for(
                    _wait_for_leader(proc), timeout=effective_timeout
                )
            except TimeoutError:
                timed_out = True
                logger.debug("Timed out after %ss: pid=%s", effective_timeout, proc.pid)
                await self._terminate(proc, pgid)
                returncode = TIMEOUT_EXIT_CODE
            else:
                # Background jobs left behind would keep the pipes open
                _kill_now(proc, pgid)
            await _finish_readers(readers, _DRAIN_TIMEOUT_SECONDS)
        except asyncio.CancelledError:
            _kill_now(proc, pgid)
            for reader in readers:
                reader.cancel()
            raise
        finally:
            if pgid is not None:
                CommandRunner.unregister_pgid(pgid)

        return CommandResult(
            command=cmd,
            returncode=returncode,
            stdout=stdout_buf.text(self.encoding_errors),
            stderr=stderr_buf.text(self.encoding_errors),
            duration_seconds=time.monotonic() - start,
            timed_out=timed_out,
            output_truncated=bool(stdout_buf.dropped or stderr_buf.dropped),
        )

    async def _terminate(
        self, proc: asyncio.subprocess.Process, pgid: int | None
    ) -> None:
        """SIGTERM the process tree, then SIGKILL whatever is left after grace."""
        _send_signal(proc, pgid, signal.SIGTERM)
        try:
            await asyncio.wait_for(
                _wait_for_leader(proc), timeout=self.kill_grace_seconds
            )
        except TimeoutError:
            pass
        # Descendants may outlive the leader; the group kill covers them too.
        _kill_now(proc, pgid)
        await _wait_for_leader(proc)

    @staticmethod
    def register_pgid(pgid: int) -> None:
        _ACTIVE_PGIDS.add(pgid)

    @staticmethod
    def unregister_pgid(pgid: int) -> None:
        _ACTIVE_PGIDS.discard(pgid)

    @staticmethod
    def kill_active_process_groups() -> None:
        """SIGKILL every process group started by a running command.

        Used on SIGINT so no test process outlives the gate. No-op on Windows.
        """
        if sys.platform == "win32":
            return
        pgids = set(_ACTIVE_PGIDS)
        for pgid in pgids:
            try:
                os.killpg(pgid, signal.SIGKILL)
            except (ProcessLookupError, PermissionError):
                pass
        _ACTIVE_PGIDS.difference_update(pgids)


async def _drain(stream: asyncio.StreamReader | None, buffer: _OutputBuffer) -> None:
    if stream is None:
        return
    while chunk := await stream.read(_READ_CHUNK_BYTES):
        buffer.feed(chunk)


async def _wait_for_leader(proc: asyncio.subprocess.Process) -> int:
    """Wait for the command itself to exit, whoever still holds its pipes.

    Process.wait() can also wait for the output pipes to close, which a
    leftover background child may never do.
    """
    while proc.returncode is None:
        await asyncio.sleep(_EXIT_POLL_SECONDS)
    return proc.returncode


async def _finish_readers(readers: list[asyncio.Task[None]], timeout: float) -> None:
    """Let the readers reach EOF, cancelling any still blocked after timeout."""
    _, pending = await asyncio.wait(readers, timeout=timeout)
    for reader in pending:
        reader.cancel()
    await asyncio.gather(*readers, return_exceptions=True)


def _resolve_use_process_group(requested: bool | None) -> bool:
    if sys.platform == "win32":
        return False
    return True if requested is None else requested


def _send_signal(
    proc: asyncio.subprocess.Process, pgid: int | None, sig: signal.Signals
) -> None:
    try:
        if pgid is not None:
            os.killpg(pgid, sig)
        elif proc.returncode is None:
            proc.send_signal(sig)
    except (ProcessLookupError, PermissionError):
        pass


def _kill_now(proc: asyncio.subprocess.Process, pgid: int | None) -> None:
    if sys.platform == "win32":
        if proc.returncode is None:
            proc.kill()
        return
    _send_signal(proc, pgid, signal.SIGKILL)

