"""Periodic execution of a coroutine with a timeout and at most one run in flight."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)


class TaskSchedule(BaseModel):
    """How often a task runs and how long one run may take."""

    frequency: timedelta = timedelta(hours=24)
    timeout: timedelta = timedelta(hours=3)
    initial_delay: timedelta = timedelta(0)

    @field_validator("frequency", "timeout")
    @classmethod
    def _positive(cls, value: timedelta) -> timedelta:
        if value.total_seconds() <= 0:
            raise ValueError("must be a positive duration")
        return value


DEFAULT_INGESTION_SCHEDULE = TaskSchedule()


class ScheduledTaskRunner:
    """Runs ``fn`` every ``schedule.frequency``, each run bounded by ``schedule.timeout``.

    A trigger that arrives while a run is still in progress (for instance a
    manual :meth:`run_now` during a scheduled run) is skipped, so two runs
    never overlap.
    """

    def __init__(self, schedule: TaskSchedule = DEFAULT_INGESTION_SCHEDULE) -> None:
        self.schedule = schedule
        self._lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None
        self._task_id: str | None = None
        self.last_run: datetime | None = None
        self.last_result: Any = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def busy(self) -> bool:
        """``True`` while a run is executing."""
        return self._lock.locked()

    def start(self, task_id: str, fn: Callable[[], Awaitable[Any]]) -> None:
        """Arm the periodic task on the running event loop."""
        if self.running:
            logger.warning("[%s] Scheduler already running", self._task_id)
            return
        self._task_id = task_id
        self._task = asyncio.create_task(self._run_loop(fn), name=task_id)
        logger.info(
            "[%s] Scheduler started (frequency=%s, timeout=%s)",
            task_id,
            self.schedule.frequency,
            self.schedule.timeout,
        )

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("[%s] Scheduler stopped", self._task_id)

    async def run_now(self, fn: Callable[[], Awaitable[Any]]) -> bool:
        """Execute one run immediately. Returns ``False`` if a run was already in flight."""
        if self._lock.locked():
            logger.warning("[%s] Previous run still in progress, skipping", self._task_id)
            return False
        async with self._lock:
            started = datetime.now(timezone.utc)
            try:
                self.last_result = await asyncio.wait_for(fn(), timeout=self.schedule.timeout.total_seconds())
            except asyncio.TimeoutError:
                logger.error("[%s] Run timed out after %s", self._task_id, self.schedule.timeout)
            finally:
                self.last_run = started
        return True

    async def _run_loop(self, fn: Callable[[], Awaitable[Any]]) -> None:
        if self.schedule.initial_delay:
            await asyncio.sleep(self.schedule.initial_delay.total_seconds())
        while True:
            try:
                await self.run_now(fn)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[%s] Scheduled run failed", self._task_id)
            await asyncio.sleep(self.schedule.frequency.total_seconds())
