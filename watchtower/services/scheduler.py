"""
WATCHTOWER - Sweep Scheduler
============================

Runs the breach monitoring sweep on a cron schedule inside the API process.

- Next run calculated with croniter from ``sweep_cron``
- One sweep at a time; a run that is still going when the next is due is skipped
- A failed sweep is logged and the loop keeps going
"""

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

import structlog
from croniter import croniter

from watchtower.config import get_settings
from watchtower.errors import ConfigurationError
from watchtower.services.breach_monitor import SweepResult, run_sweep

logger = structlog.get_logger(__name__)


def next_run_after(cron_expression: str, base: Optional[datetime] = None) -> datetime:
    """
    Next fire time of a cron expression.

    Raises:
        ValueError: the expression is invalid
    """
    base = base or datetime.now(timezone.utc)
    try:
        return croniter(cron_expression, base).get_next(datetime)
    except (ValueError, KeyError) as e:
        raise ValueError(f"Invalid cron expression: {e}")


class SweepScheduler:
    """
    Background task that fires breach monitoring sweeps on a cron schedule.
    """

    def __init__(
        self,
        cron_expression: Optional[str] = None,
        sweep: Callable[[], Awaitable[SweepResult]] = run_sweep,
    ):
        self.cron_expression = cron_expression or get_settings().sweep_cron
        # Validate up front
        self.next_run_at = next_run_after(self.cron_expression)
        self.sweep = sweep
        self.last_result: Optional[SweepResult] = None
        self.last_run_at: Optional[datetime] = None
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the scheduler loop."""
        if self._running:
            return

        self._running = True
        self.next_run_at = next_run_after(self.cron_expression)
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "sweep_scheduler_started",
            cron=self.cron_expression,
            next_run=self.next_run_at.isoformat(),
        )

    async def stop(self):
        """Stop the scheduler loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("sweep_scheduler_stopped")

    async def run_once(self) -> Optional[SweepResult]:
        """Run one sweep now unless one is already in progress."""
        if self._lock.locked():
            logger.warning("sweep_already_running")
            return None

        async with self._lock:
            self.last_run_at = datetime.now(timezone.utc)
            try:
                self.last_result = await self.sweep()
            except ConfigurationError as e:
                logger.error("sweep_not_configured", setting=e.setting)
                return None
            except Exception as e:
                logger.error("scheduled_sweep_failed", error=str(e))
                return None
            return self.last_result

    async def _run_loop(self):
        """Sleep until the next cron tick, sweep, repeat."""
        while self._running:
            delay = (self.next_run_at - datetime.now(timezone.utc)).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)

            await self.run_once()
            self.next_run_at = next_run_after(self.cron_expression)
            logger.info("sweep_next_run", next_run=self.next_run_at.isoformat())


# Global scheduler instance
_sweep_scheduler: Optional[SweepScheduler] = None


def get_sweep_scheduler() -> SweepScheduler:
    """Get the global sweep scheduler instance."""
    global _sweep_scheduler
    if _sweep_scheduler is None:
        _sweep_scheduler = SweepScheduler()
    return _sweep_scheduler


async def start_sweep_scheduler():
    """Start the sweep scheduler (call on app startup)."""
    await get_sweep_scheduler().start()


async def stop_sweep_scheduler():
    """Stop the sweep scheduler (call on app shutdown)."""
    if _sweep_scheduler is not None:
        await _sweep_scheduler.stop()
