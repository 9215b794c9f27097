"""APScheduler-based snapshot warmer.

Periodically rebuilds selected feeds in the background so that the
spreadsheet cache is warm and a fallback snapshot exists before the first
upstream failure, not only after the first successful user request.
"""

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Tuple

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = structlog.get_logger(__name__)

WarmTask = Callable[[], Awaitable[Any]]


class SnapshotWarmer:
    """Runs registered warm-up tasks on a fixed interval.

    A failing task is logged and does not stop the others or the scheduler.
    """

    JOB_ID = "snapshot_warmer"

    def __init__(self, interval_minutes: int = 10):
        """Initialize snapshot warmer.

        Args:
            interval_minutes: Minutes between warm-up runs
        """
        self.interval_minutes = interval_minutes
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.logger = logger.bind(service="snapshot_warmer")
        self._tasks: List[Tuple[str, WarmTask]] = []

    def add_task(self, name: str, task: WarmTask) -> None:
        self._tasks.append((name, task))

    async def run_once(self) -> Dict[str, bool]:
        """Run every task once; returns task name -> success."""
        outcome: Dict[str, bool] = {}
        for name, task in self._tasks:
            try:
                await task()
                outcome[name] = True
            except Exception as e:
                self.logger.error("warm_task_failed", task=name, error=str(e), error_type=type(e).__name__)
                outcome[name] = False
        self.logger.info("warm_run_complete", results=outcome)
        return outcome

    def start(self) -> None:
        """Start the scheduler with an immediate first run."""
        if self.scheduler.running:
            self.logger.warning("scheduler_already_running")
            return

        self.scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(minutes=self.interval_minutes, timezone="UTC"),
            id=self.JOB_ID,
            next_run_time=datetime.now(timezone.utc),
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        self.logger.info("scheduler_started", interval_minutes=self.interval_minutes, tasks=len(self._tasks))

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            self.logger.info("scheduler_stopped")
