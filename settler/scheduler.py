"""
Fixed-interval driver for the reconciliation loop.

Each tick runs, strictly in order:

1) a confirmation sweep over all tracked transaction hashes,
2) one `ReconciliationPipeline` step,
3) registration of the step's new pending hash (if any) with the tracker.

Ticks never overlap. A tick that outlasts the interval delays the next one;
the sleep after a tick is the remainder of the interval, never negative.

Error boundary: anything escaping a tick is logged and the previous state is
kept. The loop only ends through `stop()` or `max_ticks`.
"""

import asyncio
import logging
from typing import Optional

from .lib.enums.message import FailMessage, ProgressMessage
from .models import ProcessState
from .pipeline import ReconciliationPipeline
from .tracker import ConfirmationTracker

logger = logging.getLogger(__name__)


class ReconciliationScheduler:
    """
    Single logical actor ticking the pipeline and tracker.

    Attributes:
        pipeline: Reconciliation step to run once per tick.
        tracker: Confirmation tracker swept at the start of each tick.
        interval: Seconds between tick starts.
        state: Last state produced by the pipeline.
        ticks: Completed tick count.
    """

    def __init__(
        self,
        pipeline: ReconciliationPipeline,
        tracker: ConfirmationTracker,
        interval: float,
    ) -> None:
        self.pipeline = pipeline
        self.tracker = tracker
        self.interval = interval
        self.state = ProcessState()
        self.ticks = 0
        self._stop = asyncio.Event()

    def stop(self) -> None:
        """Request shutdown; the current tick is allowed to finish."""
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    async def tick(self, state: ProcessState) -> ProcessState:
        """
        Run one sweep-then-step cycle.

        Args:
            state: State produced by the previous tick.

        Returns:
            The next state. On an unexpected error, `state` itself.
        """
        logger.debug(f"{ProgressMessage.TICK_STARTED} #{self.ticks + 1}")
        try:
            await self.tracker.sweep()
            outcome = await self.pipeline.run(state)
        except Exception:
            logger.exception(FailMessage.TICK_FAILED)
            return state

        if outcome.tx_hash is not None:
            self.tracker.add(outcome.tx_hash)
        logger.debug(
            f"Tick finished: {outcome.status} "
            f"(claim_pending={outcome.state.claim_pending}, tracked={len(self.tracker)})"
        )
        return outcome.state

    async def run(
        self, state: Optional[ProcessState] = None, max_ticks: Optional[int] = None
    ) -> ProcessState:
        """
        Tick until `stop()` is called or `max_ticks` ticks have completed.

        The first tick runs immediately.

        Returns:
            The final state.
        """
        loop = asyncio.get_running_loop()
        if state is not None:
            self.state = state

        logger.info(f"Reconciliation loop online, interval={self.interval}s")
        while not self.stopping:
            started = loop.time()
            self.state = await self.tick(self.state)
            self.ticks += 1

            if max_ticks is not None and self.ticks >= max_ticks:
                break

            remaining = max(0.0, self.interval - (loop.time() - started))
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                pass

        logger.info(
            f"Reconciliation loop stopped after {self.ticks} ticks, "
            f"{len(self.tracker)} transactions still unconfirmed"
        )
        return self.state
