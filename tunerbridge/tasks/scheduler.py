"""
Interval scheduler for background refresh tasks.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class ScheduledTask:
    """An interval task and its run state."""

    name: str
    func: Callable[[], Awaitable[Any]]
    interval_seconds: int

    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    run_count: int = 0
    error_count: int = 0
    is_running: bool = False

    def schedule_next(self) -> None:
        base = self.last_run or datetime.now()
        self.next_run = base + timedelta(seconds=self.interval_seconds)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "interval_seconds": self.interval_seconds,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "is_running": self.is_running,
        }


class TaskScheduler:
    """
    Runs async callables on fixed intervals.

    A task that is still running when it comes due again is not started a
    second time. Failures are logged and the task is rescheduled.
    """

    def __init__(self, poll_seconds: float = 1.0):
        self._tasks: dict[str, ScheduledTask] = {}
        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._active: set[asyncio.Task] = set()
        self._poll_seconds = poll_seconds

    @property
    def is_running(self) -> bool:
        return self._running

    def add_task(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: int,
        run_immediately: bool = False,
    ) -> ScheduledTask:
        """
        Add an interval task.

        Args:
            name: Unique task name
            func: Async callable to execute
            interval_seconds: Run interval in seconds
            run_immediately: Run once as soon as the scheduler starts
        """
        task = ScheduledTask(name=name, func=func, interval_seconds=interval_seconds)
        if run_immediately:
            task.next_run = datetime.now()
        else:
            task.schedule_next()

        self._tasks[name] = task
        logger.info(f"Scheduled task added: {name} (every {interval_seconds}s)")
        return task

    def get_tasks(self) -> list[dict[str, Any]]:
        return [t.to_dict() for t in self._tasks.values()]

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._scheduler_loop())
        logger.info("Task scheduler started")

    async def stop(self) -> None:
        """Stop the loop and cancel tasks still in flight."""
        if not self._running:
            return
        self._running = False

        pending = [t for t in (self._loop_task, *self._active) if t is not None]
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._active.clear()

        logger.info("Task scheduler stopped")

    async def _scheduler_loop(self) -> None:
        while self._running:
            now = datetime.now()
            for task in self._tasks.values():
                if task.next_run and task.next_run <= now and not task.is_running:
                    runner = asyncio.create_task(self._execute_task(task))
                    self._active.add(runner)
                    runner.add_done_callback(self._active.discard)
            await asyncio.sleep(self._poll_seconds)

    async def _execute_task(self, task: ScheduledTask) -> None:
        task.is_running = True
        task.last_run = datetime.now()
        try:
            logger.debug(f"Running scheduled task: {task.name}")
            await task.func()
            task.run_count += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            task.error_count += 1
            logger.error(f"Scheduled task failed: {task.name}: {e}", exc_info=True)
        finally:
            task.is_running = False
            task.schedule_next()
