#!/usr/bin/env python3
# ruff: noqa: E402
"""
fixgate CLI: regression-validation gate for bug-fix commits.

Usage:
    fixgate check [OPTIONS] [REV_RANGE]
    fixgate classify MESSAGE
    fixgate clean [OPTIONS]
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING

from fixgate.infra.tools.env import load_user_env

if TYPE_CHECKING:
    from fixgate.core.models import Verdict
    from fixgate.infra.io.config import GateConfig

# Bootstrap state: tracks whether bootstrap() has been called
_bootstrapped = False


def bootstrap() -> None:
    """Initialize environment.

    Must be called before loading configuration. Idempotent.

    Side effects:
        - Loads environment variables from ~/.config/fixgate/.env
    """
    global _bootstrapped

    if _bootstrapped:
        return

    load_user_env()

    _bootstrapped = True


import asyncio
import logging
import signal
import sys
import uuid
from typing import Annotated, Never

import typer
from tabulate import tabulate

from fixgate.core.errors import CheckoutFailure
from fixgate.domain.classifier import ClassifierRules, classify_commit_message
from fixgate.domain.verdict import aggregate_exit_code
from fixgate.infra.git_utils import GitRepository
from fixgate.infra.io.config import ConfigError, load_config
from fixgate.infra.io.event_sink import ConsoleEventSink
from fixgate.infra.io.log_output.console import (
    Colors,
    log,
    set_verbose,
    truncate_text,
)
from fixgate.infra.io.report import write_verdict_report
from fixgate.infra.test_runner import TestRunner
from fixgate.infra.tools.command_runner import CommandRunner
from fixgate.infra.workspace import WorkspaceMaterializer, cleanup_stale_workspaces
from fixgate.pipeline.batch_runner import BatchRunner
from fixgate.pipeline.commit_evaluator import CommitEvaluator, EvaluatorConfig

# Exit codes: 0/1 come from the verdicts; these cover everything else
EXIT_USAGE_ERROR = 2
EXIT_INTERRUPTED = 130

_LOG_HANDLER_NAME = "fixgate_stderr"

app = typer.Typer(
    name="fixgate",
    help="Verify that bug-fix commits ship a regression test that catches the bug",
    add_completion=False,
)


def _configure_logging(verbose: bool) -> None:
    """Route fixgate's library logging to stderr (DEBUG when verbose)."""
    pkg_logger = logging.getLogger("fixgate")
    # Remove any previous fixgate handler to avoid duplicates
    for existing in pkg_logger.handlers[:]:
        if existing.get_name() == _LOG_HANDLER_NAME:
            existing.close()
            pkg_logger.removeHandler(existing)

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_LOG_HANDLER_NAME)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S"
        )
    )
    level = logging.DEBUG if verbose else logging.WARNING
    handler.setLevel(level)
    pkg_logger.setLevel(level)
    pkg_logger.addHandler(handler)


def _load_config_or_exit(repo_path: Path, config_file: Path | None) -> GateConfig:
    try:
        return load_config(repo_path, config_file)
    except ConfigError as e:
        log("✗", f"Configuration error: {e}", Colors.RED)
        raise typer.Exit(EXIT_USAGE_ERROR) from e


def _print_summary(verdicts: dict[str, Verdict]) -> None:
    rows = []
    for commit_id, verdict in verdicts.items():
        summary = verdict.diagnostic.splitlines()[0] if verdict.diagnostic else ""
        summary = truncate_text(summary, 77)
        rows.append([commit_id[:12], verdict.tag.value, summary])
    print()
    print(tabulate(rows, headers=["Commit", "Verdict", "Diagnostic"], tablefmt="simple"))
    print()


def _print_failure_details(verdicts: dict[str, Verdict]) -> None:
    """Print full diagnostics (with output tails) of failing commits."""
    for commit_id, verdict in verdicts.items():
        if verdict.tag.is_passing:
            continue
        log("✗", f"{verdict.tag.value}", Colors.RED, commit_id=commit_id)
        for line in verdict.diagnostic.splitlines():
            print(f"    {line}")


async def _run_check(
    repo_path: Path,
    rev_range: str,
    config: GateConfig,
    run_id: str,
) -> tuple[dict[str, Verdict], bool]:
    """Evaluate the range. Returns (verdicts, interrupted)."""
    repo = GitRepository(repo_path, timeout=config.git_timeout_seconds)
    commit_ids = await repo.list_commits(rev_range)

    sink = ConsoleEventSink()
    materializer = WorkspaceMaterializer(
        repo,
        config.workspace_root,
        run_id=run_id,
        git_timeout=config.git_timeout_seconds,
    )
    evaluator = CommitEvaluator(
        vcs=repo,
        materializer=materializer,
        runner=TestRunner(max_output_bytes=config.max_output_bytes),
        config=EvaluatorConfig.from_gate_config(config),
        event_sink=sink,
    )
    batch = BatchRunner(evaluator, max_workers=config.max_workers, event_sink=sink)

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def handle_sigint(sig: int, frame: object) -> None:
        loop.call_soon_threadsafe(cancel_event.set)
        loop.call_soon_threadsafe(CommandRunner.kill_active_process_groups)

    original_handler = signal.signal(signal.SIGINT, handle_sigint)
    try:
        verdicts = await batch.run(commit_ids, cancel_event)
    finally:
        signal.signal(signal.SIGINT, original_handler)
    return verdicts, cancel_event.is_set()


@app.command()
def check(
    rev_range: Annotated[
        str,
        typer.Argument(
            help="Commit or range to evaluate (e.g. HEAD, main..feature)",
        ),
    ] = "HEAD",
    repo_path: Annotated[
        Path,
        typer.Option(
            "--repo",
            "-r",
            help="Path to the git repository",
        ),
    ] = Path("."),
    command: Annotated[
        str | None,
        typer.Option(
            "--command",
            "-c",
            help="Test command, run through the shell in each workspace. "
            "{test_files} expands to the test files touched by the commit.",
        ),
    ] = None,
    timeout: Annotated[
        float | None,
        typer.Option(
            "--timeout",
            "-t",
            help="Timeout per test run in seconds (default: 600)",
        ),
    ] = None,
    workers: Annotated[
        int | None,
        typer.Option(
            "--workers",
            "-n",
            help="Commits evaluated concurrently (default: 4)",
        ),
    ] = None,
    config_file: Annotated[
        Path | None,
        typer.Option(
            "--config",
            help="Config file (default: fixgate.yaml in the repository)",
        ),
    ] = None,
    report: Annotated[
        Path | None,
        typer.Option(
            "--report",
            help="Write all verdicts, with captured output, to this JSON file",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable verbose output and debug logging",
        ),
    ] = False,
) -> Never:
    """Evaluate bug-fix commits and exit non-zero if any fails the gate."""
    set_verbose(verbose)
    _configure_logging(verbose)

    repo_path = repo_path.resolve()
    config = _load_config_or_exit(repo_path, config_file)

    # CLI options override config file and environment
    overrides: dict[str, object] = {}
    if command is not None:
        overrides["test_command"] = command
    if timeout is not None:
        overrides["timeout_seconds"] = timeout
    if workers is not None:
        overrides["max_workers"] = workers
    if overrides:
        config = replace(config, **overrides)  # type: ignore[arg-type]
        errors = config.validate()
        if errors:
            log("✗", f"Configuration error: {ConfigError(errors)}", Colors.RED)
            raise typer.Exit(EXIT_USAGE_ERROR)

    if config.test_command is None:
        log(
            "✗",
            "No test command configured. Pass --command, set FIXGATE_TEST_COMMAND "
            "or add test_command to fixgate.yaml",
            Colors.RED,
        )
        raise typer.Exit(EXIT_USAGE_ERROR)

    run_id = uuid.uuid4().hex[:8]
    try:
        verdicts, interrupted = asyncio.run(
            _run_check(repo_path, rev_range, config, run_id)
        )
    except CheckoutFailure as e:
        log("✗", f"Cannot resolve {rev_range}: {e}", Colors.RED)
        raise typer.Exit(EXIT_USAGE_ERROR) from e

    exit_code = aggregate_exit_code(verdicts.values())
    if verdicts:
        _print_summary(verdicts)
        _print_failure_details(verdicts)
    else:
        log("○", f"No commits in {rev_range}", Colors.GRAY)

    if report is not None:
        path = write_verdict_report(
            report, verdicts, run_id=run_id, repo_path=repo_path, exit_code=exit_code
        )
        log("◦", f"Report written to {path}", Colors.MUTED)

    if interrupted:
        log("⚠", "Interrupted; remaining commits were not evaluated", Colors.YELLOW)
        raise typer.Exit(EXIT_INTERRUPTED)
    raise typer.Exit(exit_code)


@app.command()
def classify(
    message: Annotated[
        str,
        typer.Argument(help="Commit message to classify"),
    ],
    repo_path: Annotated[
        Path,
        typer.Option(
            "--repo",
            "-r",
            help="Repository whose fixgate.yaml patterns apply",
        ),
    ] = Path("."),
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Config file"),
    ] = None,
) -> None:
    """Print how the gate classifies a commit message."""
    config = _load_config_or_exit(repo_path.resolve(), config_file)
    rules = ClassifierRules.from_patterns(
        config.fix_prefix_patterns,
        config.issue_reference_patterns,
        config.skip_token,
    )
    print(classify_commit_message(message, rules).value)


@app.command()
def clean(
    repo_path: Annotated[
        Path,
        typer.Option(
            "--repo",
            "-r",
            help="Path to the git repository",
        ),
    ] = Path("."),
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Config file"),
    ] = None,
) -> None:
    """Remove workspaces left behind by crashed runs.

    Use this when a previous run was killed before it could tear down its
    workspaces.
    """
    repo_path = repo_path.resolve()
    config = _load_config_or_exit(repo_path, config_file)
    cleaned = asyncio.run(cleanup_stale_workspaces(repo_path, config.workspace_root))
    if cleaned:
        log("🧹", f"Removed {cleaned} stale workspace(s)", Colors.GREEN)
    else:
        log("○", "No stale workspaces to clean", Colors.GRAY)
