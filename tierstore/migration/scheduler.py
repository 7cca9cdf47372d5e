"""
Migration Scheduler: Periodic Cycles in the Background

Runs one migration cycle per interval on an asyncio task. A failed cycle
is logged and the loop keeps going; the next cycle resumes from the
persisted cursor.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from datetime import timedelta
from typing import Deque, Optional

from tierstore.core.errors import TierStoreError
from tierstore.core.types import Result
from tierstore.migration.engine import CycleReport, MigrationEngine

logger = logging.getLogger(__name__)


class MigrationScheduler:
    """
    Runs MigrationEngine.run_cycle every `interval`.

    Usage:
        scheduler = MigrationScheduler(engine, timedelta(days=1))
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    __slots__ = ("_engine", "_interval_s", "_task", "_stop_event", "_history", "_cycles_run")

    def __init__(
        self,
        engine: MigrationEngine,
        interval: timedelta,
        history_size: int = 16,
    ) -> None:
        if interval.total_seconds() <= 0:
            raise ValueError("interval must be positive")
        self._engine = engine
        self._interval_s = interval.total_seconds()
        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()
        self._history: Deque[Result[CycleReport, TierStoreError]] = deque(maxlen=history_size)
        self._cycles_run = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def cycles_run(self) -> int:
        return self._cycles_run

    @property
    def history(self) -> list[Result[CycleReport, TierStoreError]]:
        """Most recent cycle results, oldest first."""
        return list(self._history)

    async def run_once(self) -> Result[CycleReport, TierStoreError]:
        """Run a single cycle now and record its result."""
        result = await self._engine.run_cycle()
        self._cycles_run += 1
        self._history.append(result)
        if result.is_err():
            logger.error(
                f"Migration cycle failed: {result.error}",
                extra={"job_id": self._engine.job_id},
            )
        return result

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception:
                # An adapter that raised instead of returning Err; the
                # persisted cursor still holds the last confirmed progress.
                logger.exception(
                    "Migration cycle raised",
                    extra={"job_id": self._engine.job_id},
                )
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval_s)
            except asyncio.TimeoutError:
                continue

    async def start(self) -> None:
        """Start the background loop; the first cycle runs immediately."""
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "Migration scheduler started",
            extra={"job_id": self._engine.job_id, "interval_s": self._interval_s},
        )

    async def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop after the running cycle's current page.

        The task is cancelled if it does not finish within `timeout`
        seconds; the cursor then holds the last persisted page.
        """
        if self._task is None:
            return
        self._stop_event.set()
        self._engine.request_stop()
        try:
            await asyncio.wait_for(self._task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Migration scheduler did not stop in time; cancelled")
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Migration scheduler stopped", extra={"job_id": self._engine.job_id})


__all__ = ["MigrationScheduler"]
