from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[Any]]


class DeferredTaskScheduler:
    """Run coroutine factories on the running loop after a fixed delay.

    `schedule` returns immediately; each job waits out `delay_seconds` on its
    own task, so jobs overlap freely. Failures are logged, never re-raised.
    """

    def __init__(self, *, name: str, delay_seconds: float = 0.0, sleep: SleepFn = asyncio.sleep) -> None:
        self._name = name
        self._delay_seconds = max(0.0, delay_seconds)
        self._sleep = sleep
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def delay_seconds(self) -> float:
        return self._delay_seconds

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(self, factory: Callable[[], Awaitable[None]]) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(self._run(factory), name=f"deferred-{self._name}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, factory: Callable[[], Awaitable[None]]) -> None:
        if self._delay_seconds > 0:
            await self._sleep(self._delay_seconds)
        try:
            await factory()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Deferred job failed", extra={"scheduler": self._name})

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*tuple(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        tasks = tuple(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
