"""
Periodic job scheduler.

Runs named jobs (task sync, detection, AI analysis) on the event loop, each
with its own initial delay and a fixed delay between runs.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class PeriodicJob:
    """A coroutine function run every interval seconds after initial_delay."""
    name: str
    func: Callable[[], Awaitable[object]]
    interval: float
    initial_delay: float = 0.0


class Scheduler:
    """Background loops for periodic jobs."""

    def __init__(self):
        self._jobs: List[PeriodicJob] = []
        self._tasks: Dict[str, asyncio.Task] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def job_names(self) -> List[str]:
        return [job.name for job in self._jobs]

    def add_job(self, name: str, func: Callable[[], Awaitable[object]], interval: float, initial_delay: float = 0.0):
        if any(job.name == name for job in self._jobs):
            raise ValueError(f"Job already registered: {name}")
        self._jobs.append(PeriodicJob(name=name, func=func, interval=interval, initial_delay=initial_delay))
        logger.info(f"Added scheduled job: {name} every {interval}s (initial delay {initial_delay}s)")

    async def _job_loop(self, job: PeriodicJob):
        logger.info(f"Job {job.name} started")
        try:
            await asyncio.sleep(job.initial_delay)
            while self._running:
                try:
                    await job.func()
                except Exception as e:
                    logger.error(f"Job {job.name} failed: {e}", exc_info=True)
                await asyncio.sleep(job.interval)
        except asyncio.CancelledError:
            logger.info(f"Job {job.name} cancelled")
        logger.info(f"Job {job.name} stopped")

    def start(self):
        """Start every job on the running event loop."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._running = True
        loop = asyncio.get_running_loop()
        for job in self._jobs:
            self._tasks[job.name] = loop.create_task(self._job_loop(job))
        logger.info(f"Scheduler started with {len(self._jobs)} job(s)")

    async def stop(self, timeout: Optional[float] = 5.0):
        """Cancel every job and wait for the loops to exit."""
        if not self._running:
            return

        self._running = False
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks, timeout=timeout)
        self._tasks.clear()
        logger.info("Scheduler stopped")
