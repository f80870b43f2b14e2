"""Periodic index maintenance as a long-lived asyncio task."""

import asyncio
import contextlib

import structlog

from orgdir.indexing.maintenance import IndexMaintenance
from orgdir.indexing.schemas import MaintenanceRun

logger = structlog.get_logger()


class MaintenanceScheduler:
    """Runs IndexMaintenance.run_scheduled() on a fixed interval.

    Maintenance runs in a worker thread so the event loop keeps serving
    requests while indexes are rebuilt or compacted.

    Attributes:
        last_run: Outcome of the most recent pass, None before the first.
    """

    def __init__(self, maintenance: IndexMaintenance, interval_seconds: float) -> None:
        """Initialize scheduler.

        Args:
            maintenance: Maintenance operations to run.
            interval_seconds: Delay between passes.
        """
        self._maintenance = maintenance
        self._interval = interval_seconds
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self.last_run: MaintenanceRun | None = None

    @property
    def is_running(self) -> bool:
        """Whether the background task is alive."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background task; no-op when already running."""
        if self.is_running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run())
        logger.info("maintenance_scheduler_started", interval_seconds=self._interval)

    async def stop(self) -> None:
        """Signal the task to exit and wait for it."""
        if self._task is None:
            return
        self._stop.set()
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("maintenance_scheduler_stopped")

    async def run_once(self) -> MaintenanceRun:
        """Run one maintenance pass off the event loop thread."""
        self.last_run = await asyncio.to_thread(self._maintenance.run_scheduled)
        return self.last_run

    async def _run(self) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                try:
                    await self.run_once()
                except Exception:
                    # The loop must survive a failed pass; the next one retries.
                    logger.exception("maintenance_pass_crashed")
