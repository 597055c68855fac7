# poolroute/infra/scheduler.py
"""
In-process wall-clock scheduler for the dispatch passes.

One asyncio task wakes every ``tick_seconds`` and runs whichever
registered tasks are due. Triggers are evaluated in the dispatch zone:

    scheduler = DispatchScheduler(tz=settings.tz)
    scheduler.register("morning-digest", DailyAt(time(6, 30), tz), run_morning)
    scheduler.register("customer", Every(120), drain_customers)
    await scheduler.start()

There is no catch-up: a daily task whose time passed while the process
was down waits for the next day.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, tzinfo
from typing import Any, Awaitable, Callable, Optional

from poolroute.infra.logging_config import get_logger
from poolroute.infra.metrics import inc_counter

logger = get_logger(__name__)


class DailyAt:
    """Fires once a day at a local wall-clock time."""

    def __init__(self, at: time, tz: tzinfo):
        self.at = at
        self.tz = tz

    def first_run(self, now: datetime) -> datetime:
        return self.next_after(now)

    def next_after(self, after: datetime) -> datetime:
        local = after.astimezone(self.tz)
        candidate = datetime.combine(local.date(), self.at, tzinfo=self.tz)
        if candidate <= local:
            candidate = datetime.combine(local.date() + timedelta(days=1), self.at, tzinfo=self.tz)
        return candidate

    def __repr__(self) -> str:
        return f"DailyAt({self.at.strftime('%H:%M')})"


class Every:
    """Fires on a fixed interval, first on the first tick after start."""

    def __init__(self, seconds: float):
        if seconds <= 0:
            raise ValueError("interval must be positive")
        self.seconds = seconds

    def first_run(self, now: datetime) -> datetime:
        return now

    def next_after(self, after: datetime) -> datetime:
        return after + timedelta(seconds=self.seconds)

    def __repr__(self) -> str:
        return f"Every({self.seconds:g}s)"


@dataclass
class ScheduledTask:
    name: str
    trigger: Any
    func: Callable[[], Awaitable[Any]]
    next_run: Optional[datetime] = None
    last_run: Optional[datetime] = None
    last_error: Optional[str] = None
    runs: int = 0
    failures: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "trigger": repr(self.trigger),
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_error": self.last_error,
            "runs": self.runs,
            "failures": self.failures,
        }


class DispatchScheduler:
    def __init__(
        self,
        *,
        tz: tzinfo,
        tick_seconds: float = 30.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.tz = tz
        self._tick_seconds = tick_seconds
        self._clock = clock or (lambda: datetime.now(tz))
        self._tasks: dict[str, ScheduledTask] = {}
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def tasks(self) -> list[ScheduledTask]:
        return list(self._tasks.values())

    @property
    def running(self) -> bool:
        return self._running

    def register(self, name: str, trigger: Any, func: Callable[[], Awaitable[Any]]) -> ScheduledTask:
        task = ScheduledTask(name=name, trigger=trigger, func=func)
        task.next_run = trigger.first_run(self._clock())
        self._tasks[name] = task
        return task

    async def start(self) -> None:
        """Start the scheduler loop as an asyncio task."""
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="dispatch_scheduler")
        self._task.add_done_callback(self._on_task_done)
        logger.info(
            f"Dispatch scheduler started: tick={self._tick_seconds}s, "
            f"tasks={[f'{t.name}={t.trigger!r}' for t in self._tasks.values()]}",
        )

    async def stop(self) -> None:
        """Stop ticking; a task that is mid-run is cancelled."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Dispatch scheduler stopped")

    async def tick(self, now: Optional[datetime] = None) -> list[str]:
        """Run every due task once, in registration order. Returns the names run."""
        now = now or self._clock()
        ran: list[str] = []
        for task in list(self._tasks.values()):
            if task.next_run is None or now < task.next_run:
                continue
            await self.run_safely(task)
            task.next_run = task.trigger.next_after(now)
            ran.append(task.name)
        return ran

    async def run_safely(self, task: ScheduledTask) -> None:
        task.last_run = self._clock()
        task.runs += 1
        try:
            await task.func()
            task.last_error = None
        except Exception as exc:
            task.failures += 1
            task.last_error = f"{exc.__class__.__name__}: {exc}"[:500]
            inc_counter("scheduler_task_errors", task=task.name)
            logger.error(f"Scheduled task {task.name} failed: {exc}", exc_info=True)

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.tick()
                await asyncio.sleep(self._tick_seconds)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(f"Dispatch scheduler loop error: {exc}", exc_info=True)
                inc_counter("scheduler_loop_errors")
                await asyncio.sleep(self._tick_seconds)

    @staticmethod
    def _on_task_done(task: asyncio.Task) -> None:
        """Log unexpected scheduler death."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc:
            logger.error(
                f"Dispatch scheduler task died unexpectedly: {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )
