"""JSON verdict report for post-mortem review.

The report holds every verdict of one gate run, including the captured output
of both stages, so a reviewer can act without re-running the gate.
"""

from __future__ import annotations

import json
import os
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path

    from fixgate.core.models import TestRunResult, Verdict


def verdict_to_dict(verdict: Verdict) -> dict[str, Any]:
    return {
        "commit_id": verdict.commit_id,
        "tag": verdict.tag.value,
        "diagnostic": verdict.diagnostic,
        "classification": (
            verdict.classification.value if verdict.classification else None
        ),
        "pre_fix": _run_to_dict(verdict.pre_fix),
        "post_fix": _run_to_dict(verdict.post_fix),
    }


def _run_to_dict(result: TestRunResult | None) -> dict[str, Any] | None:
    if result is None:
        return None
    return {
        "status": result.status.value,
        "exit_code": result.exit_code,
        "duration_seconds": round(result.duration_seconds, 3),
        "workspace_id": result.workspace_id,
        "output": result.output,
        "output_truncated": result.output_truncated,
        "timeout_seconds": result.timeout_seconds,
        "error": result.error,
    }


def write_verdict_report(
    path: Path,
    verdicts: dict[str, Verdict],
    *,
    run_id: str,
    repo_path: Path,
    exit_code: int,
) -> Path:
    """Write all verdicts of a run to a JSON file.

    Args:
        path: Destination file. Parent directories are created.
        verdicts: Verdicts keyed by commit id.
        run_id: Identifier of the gate run.
        repo_path: Repository that was evaluated.
        exit_code: Aggregate exit status of the run.

    Returns:
        The path written.
    """
    data = {
        "run_id": run_id,
        "repo_path": str(repo_path),
        "completed_at": datetime.now(UTC).isoformat(),
        "exit_code": exit_code,
        "verdicts": [verdict_to_dict(v) for v in verdicts.values()],
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.flush()
        os.fsync(f.fileno())
    return path
