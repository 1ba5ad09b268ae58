"""BatchRunner: evaluates many commits concurrently.

Each commit is an independent unit of work. Concurrency is bounded by an
asyncio.Semaphore; a failure in one evaluation never affects the others,
and the batch always returns one verdict per requested commit.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from fixgate.core.models import Verdict, VerdictTag
from fixgate.domain.verdict import aggregate_exit_code
from fixgate.infra.io.event_sink import NullEventSink

if TYPE_CHECKING:
    from collections.abc import Iterable

    from fixgate.core.protocols import GateEventSink
    from fixgate.pipeline.commit_evaluator import CommitEvaluator

logger = logging.getLogger(__name__)


class BatchRunner:
    """Runs CommitEvaluator over a list of commits with bounded parallelism.

    Example:
        runner = BatchRunner(evaluator, max_workers=4)
        verdicts = await runner.run(["abc123", "def456"])
        exit_code = aggregate_exit_code(verdicts.values())
    """

    def __init__(
        self,
        evaluator: CommitEvaluator,
        max_workers: int = 4,
        event_sink: GateEventSink | None = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")
        self.evaluator = evaluator
        self.max_workers = max_workers
        self.event_sink = event_sink if event_sink is not None else NullEventSink()

    async def run(
        self,
        commit_ids: Iterable[str],
        cancel_event: asyncio.Event | None = None,
    ) -> dict[str, Verdict]:
        """Evaluate every commit and return verdicts keyed by commit id.

        Args:
            commit_ids: Commits to evaluate. Duplicates are evaluated once.
            cancel_event: Shared cancel signal. Commits not yet started when
                it is set yield ERROR without materializing anything.

        Returns:
            Verdicts in the order the commits were given.
        """
        ids = list(dict.fromkeys(commit_ids))
        self.event_sink.on_batch_started(len(ids), self.max_workers)
        semaphore = asyncio.Semaphore(self.max_workers)

        async def evaluate_one(commit_id: str) -> Verdict:
            async with semaphore:
                try:
                    return await self.evaluator.evaluate(commit_id, cancel_event)
                except Exception as e:
                    logger.exception("Unexpected error evaluating %s", commit_id)
                    verdict = Verdict(
                        commit_id=commit_id,
                        tag=VerdictTag.ERROR,
                        diagnostic=f"internal error: {type(e).__name__}: {e}",
                    )
                    self.event_sink.on_verdict(verdict)
                    return verdict

        results = await asyncio.gather(*(evaluate_one(c) for c in ids))
        verdicts = dict(zip(ids, results, strict=True))

        exit_code = aggregate_exit_code(verdicts.values())
        self.event_sink.on_batch_finished(verdicts, exit_code)
        return verdicts
