"""
Периодические задачи: чистка очереди, чистка матчей, пинг соединений.
run_pending(now) детерминирован для тестов, run_forever крутится в lifespan.
"""
import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)

Job = Callable[[], Any]


@dataclass
class PeriodicJob:
    name: str
    interval: float
    fn: Job
    next_run: float


class Scheduler:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._jobs: list[PeriodicJob] = []

    def add(self, name: str, interval: float, fn: Job) -> None:
        if interval <= 0:
            raise ValueError(f"interval for {name} must be positive")
        self._jobs.append(PeriodicJob(name, interval, fn, self.clock() + interval))

    @property
    def jobs(self) -> list[str]:
        return [j.name for j in self._jobs]

    async def run_pending(self, now: float | None = None) -> list[str]:
        """Запустить задачи, у которых подошло время. Возвращает имена запущенных."""
        now = self.clock() if now is None else now
        ran = []
        for job in self._jobs:
            if now < job.next_run:
                continue
            job.next_run = now + job.interval
            try:
                result = job.fn()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                # Одна упавшая задача не должна останавливать остальные
                logger.exception("Scheduler: job %s failed", job.name)
            ran.append(job.name)
        return ran

    def seconds_until_next(self, now: float | None = None) -> float:
        if not self._jobs:
            return 1.0
        now = self.clock() if now is None else now
        return max(0.0, min(j.next_run for j in self._jobs) - now)

    async def run_forever(self, max_sleep: float = 1.0) -> None:
        logger.info("Scheduler: started with jobs %s", ", ".join(self.jobs))
        try:
            while True:
                await asyncio.sleep(min(max_sleep, self.seconds_until_next()))
                await self.run_pending()
        except asyncio.CancelledError:
            logger.info("Scheduler: stopped")
            raise
