"""Cancellation helpers for commit evaluations.

A gate run shares one asyncio.Event as its cancel signal (set by the CLI on
SIGINT). Evaluations check it between steps and race long-running steps
against it, so a cancelled run stops promptly and still tears down every
workspace it built.

Key components:
- CancellationGuard: check/raise on the cancel event
- run_with_cancellation(): run a coroutine, cancelling it if the event fires
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine  # noqa: TC003 - runtime for TypeVar
from typing import TYPE_CHECKING, TypeVar

from fixgate.core.errors import EvaluationCancelled

if TYPE_CHECKING:
    from fixgate.core.models import Stage

__all__ = [
    "CancellationGuard",
    "run_with_cancellation",
]


class CancellationGuard:
    """Wraps the cancel event with convenient check/raise methods."""

    def __init__(self, event: asyncio.Event | None) -> None:
        """Initialize the guard.

        Args:
            event: The cancel event to monitor. If None, cancellation
                   checking is disabled (is_cancelled always returns False).
        """
        self._event = event

    def is_cancelled(self) -> bool:
        if self._event is None:
            return False
        return self._event.is_set()

    def raise_if_cancelled(self, stage: Stage | None = None) -> None:
        """Raise EvaluationCancelled if the cancel event is set.

        Raises:
            EvaluationCancelled: If the cancel event is set.
        """
        if self.is_cancelled():
            raise EvaluationCancelled("evaluation cancelled", stage)


T = TypeVar("T")


async def run_with_cancellation(
    coro: Coroutine[object, object, T],
    cancel_event: asyncio.Event | None,
    stage: Stage | None = None,
) -> T:
    """Run a coroutine, cancelling it when the cancel event is set.

    The coroutine's own cleanup (process-group kill, workspace teardown)
    completes before EvaluationCancelled is raised.

    Args:
        coro: The coroutine to run.
        cancel_event: Event to monitor. If None, the coroutine simply runs.
        stage: Stage reported on the EvaluationCancelled error.

    Returns:
        The coroutine result.

    Raises:
        EvaluationCancelled: If the event was set before completion.
    """
    if cancel_event is None:
        return await coro
    if cancel_event.is_set():
        coro.close()
        raise EvaluationCancelled("evaluation cancelled before it started", stage)

    task = asyncio.create_task(coro)
    cancel_task = asyncio.create_task(cancel_event.wait())
    try:
        done, _ = await asyncio.wait(
            {task, cancel_task}, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        # Cleanup on cancellation of the caller
        task.cancel()
        cancel_task.cancel()
        await asyncio.gather(task, cancel_task, return_exceptions=True)
        raise

    if task in done:
        cancel_task.cancel()
        try:
            await cancel_task
        except asyncio.CancelledError:
            pass
        return task.result()

    # Cancel event was set
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    else:
        # Finished just as the event fired; keep the result
        return task.result()
    raise EvaluationCancelled("evaluation cancelled", stage)
