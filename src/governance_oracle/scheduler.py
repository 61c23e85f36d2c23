"""Interval scheduler for named sync tasks with overlap protection."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from .utils.logging import error_context, log_with_context

logger = logging.getLogger(__name__)

TaskFunc = Callable[[], Awaitable[Any]]


@dataclass
class ScheduledTask:
    """Registration plus the mutable run record of one named task."""
    name: str
    interval_ms: int
    task: TaskFunc
    timer: Optional[asyncio.Task] = None
    is_running: bool = False
    last_run: Optional[int] = None
    last_error: Optional[str] = None


class Scheduler:
    """
    Runs each registered task on its own fixed interval.

    A tick that finds its task still running is skipped, so one task never
    overlaps itself; different tasks run concurrently. The is_running flag is
    only safe because everything runs on one event loop thread.
    """

    def __init__(self):
        self._tasks: Dict[str, ScheduledTask] = {}
        self._in_flight: Set[asyncio.Task] = set()
        self._started = False

    @property
    def is_started(self) -> bool:
        return self._started

    def register(self, name: str, interval_ms: int, task: TaskFunc, immediate: bool = False) -> None:
        """Register a task, replacing any registration with the same name."""
        if name in self._tasks:
            logger.warning(f"Task {name} already registered, replacing")
            self.unregister(name)

        scheduled = ScheduledTask(name=name, interval_ms=interval_ms, task=task)
        self._tasks[name] = scheduled
        log_with_context(logger, logging.INFO, f"Task registered: {name}", interval_ms=interval_ms, immediate=immediate)

        if self._started:
            scheduled.timer = asyncio.create_task(self._timer_loop(scheduled))
            if immediate:
                self._spawn(name)

    def unregister(self, name: str) -> None:
        scheduled = self._tasks.pop(name, None)
        if scheduled:
            if scheduled.timer:
                scheduled.timer.cancel()
            logger.info(f"Task unregistered: {name}")

    def start(self) -> None:
        """Arm one timer per task and run every task once right away."""
        if self._started:
            logger.warning("Scheduler already started")
            return

        log_with_context(logger, logging.INFO, "Starting scheduler", task_count=len(self._tasks))
        self._started = True

        for name, scheduled in self._tasks.items():
            scheduled.timer = asyncio.create_task(self._timer_loop(scheduled))
            self._spawn(name)

    def stop(self) -> None:
        """Cancel every timer. In-flight runs are left to finish on their own."""
        if not self._started:
            return

        logger.info("Stopping scheduler")
        self._started = False

        for scheduled in self._tasks.values():
            if scheduled.timer:
                scheduled.timer.cancel()
                scheduled.timer = None

    async def _timer_loop(self, scheduled: ScheduledTask) -> None:
        interval_seconds = scheduled.interval_ms / 1000.0
        while True:
            await asyncio.sleep(interval_seconds)
            self._spawn(scheduled.name)

    def _spawn(self, name: str) -> None:
        # The loop only keeps weak references to tasks
        run = asyncio.create_task(self.run_task(name))
        self._in_flight.add(run)
        run.add_done_callback(self._in_flight.discard)

    async def run_task(self, name: str) -> None:
        """Run a task now unless it is already running."""
        scheduled = self._tasks.get(name)
        if not scheduled:
            logger.warning(f"Task not found: {name}")
            return

        if scheduled.is_running:
            logger.debug(f"Task {name} is already running, skipping")
            return

        scheduled.is_running = True
        start_time = time.monotonic()

        try:
            logger.debug(f"Running task: {name}")
            await scheduled.task()
            scheduled.last_run = int(time.time() * 1000)
            scheduled.last_error = None
            log_with_context(
                logger, logging.DEBUG, f"Task {name} completed",
                duration_ms=int((time.monotonic() - start_time) * 1000)
            )
        except Exception as e:
            scheduled.last_error = str(e) or type(e).__name__
            log_with_context(logger, logging.ERROR, f"Task {name} failed", **error_context(e))
        finally:
            scheduled.is_running = False

    def get_status(self) -> Dict[str, Dict[str, Any]]:
        """Per-task running flag, last successful run, last error and interval."""
        return {
            name: {
                'is_running': scheduled.is_running,
                'last_run': scheduled.last_run,
                'last_error': scheduled.last_error,
                'interval_ms': scheduled.interval_ms,
            }
            for name, scheduled in self._tasks.items()
        }
