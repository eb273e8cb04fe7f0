"""Delayed continuations bound to a run generation.

Every node-to-node transition is an asyncio task that sleeps the pacing
delay, then runs under a single lock so node behaviours never interleave.
A task only runs if the generation it was scheduled under is still current;
``new_generation()`` cancels everything outstanding.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Literal

logger = logging.getLogger(__name__)

GateDecision = Literal["run", "park", "drop"]
NodeRunner = Callable[[str], Awaitable[None]]
ContinuationGate = Callable[[str], GateDecision]


class RunScheduler:
    """Single-pointer cooperative scheduler with a generation token."""

    def __init__(
        self,
        runner: NodeRunner,
        gate: ContinuationGate,
        delay_seconds: float = 0.5,
    ):
        self._runner = runner
        self._gate = gate
        self.delay_seconds = max(0.0, float(delay_seconds))
        self._generation = 0
        self._pending: set[asyncio.Task] = set()
        self._parked: list[str] = []
        self._lock = asyncio.Lock()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def parked(self) -> list[str]:
        return list(self._parked)

    def new_generation(self) -> int:
        """Invalidate every outstanding continuation and return the new token."""
        current = asyncio.current_task() if _loop_running() else None
        for task in list(self._pending):
            if task is not current and not task.done():
                task.cancel()
        self._parked.clear()
        self._generation += 1
        return self._generation

    def schedule(self, node_id: str, generation: int | None = None) -> asyncio.Task | None:
        """Run ``node_id`` after the pacing delay, if the generation still holds.

        A caller that passes the ``generation`` it was started under gets
        ``None`` back, and nothing scheduled, once that generation is stale.
        """
        if generation is not None and generation != self._generation:
            logger.debug("Not scheduling '%s' for stale generation %d", node_id, generation)
            return None
        task = asyncio.get_running_loop().create_task(
            self._fire(self._generation, node_id),
            name=f"workflow-node:{node_id}",
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def release_parked(self) -> list[str]:
        """Re-schedule parked continuations in arrival order."""
        released, self._parked = self._parked, []
        for node_id in released:
            self.schedule(node_id)
        return released

    def has_other_pending(self) -> bool:
        """True when any continuation besides the running one is outstanding."""
        current = asyncio.current_task() if _loop_running() else None
        return any(task is not current and not task.done() for task in self._pending)

    async def wait_until_idle(self) -> None:
        """Wait until no continuation is scheduled (parked ones do not count)."""
        current = asyncio.current_task()
        while True:
            pending = [task for task in self._pending if task is not current and not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def _fire(self, generation: int, node_id: str) -> None:
        # Always yield once so scheduling never runs a node inline.
        await asyncio.sleep(self.delay_seconds)
        async with self._lock:
            if generation != self._generation:
                logger.debug("Dropping stale continuation for '%s' (generation %d)", node_id, generation)
                return

            decision = self._gate(node_id)
            if decision == "park":
                logger.debug("Run paused; parking continuation for '%s'", node_id)
                self._parked.append(node_id)
                return
            if decision == "drop":
                logger.debug("Run halted; dropping continuation for '%s'", node_id)
                return

            try:
                await self._runner(node_id)
            except Exception:
                logger.exception("Unhandled error while running node '%s'", node_id)


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True
