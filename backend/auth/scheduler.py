"""
Gatekeeper - Periodic Maintenance Tasks

Runs a job on a fixed period for the lifetime of the process.
Used for the revocation-registry sweep and expired-session purge.

Usage:
    task = PeriodicTask("blacklist-sweep", blacklist.sweep, interval_seconds=900)
    task.start()
    ...
    await task.stop()
"""

import asyncio
import inspect
from typing import Any, Callable, Optional

from backend.logging import get_logger


logger = get_logger(__name__)


class PeriodicTask:
    """
    asyncio task that calls `job` every `interval_seconds`.

    A failing run is logged and the loop continues with the next period.
    """

    def __init__(self, name: str, job: Callable[[], Any], interval_seconds: float):
        self.name = name
        self.job = job
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=self.name)
        logger.info("scheduler.started", task=self.name, interval_seconds=self.interval_seconds)

    async def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop the loop and wait for an in-flight run to finish.

        The task is cancelled if it does not finish within `timeout`.
        """
        if self._task is None:
            return

        self._stopping.set()
        try:
            await asyncio.wait_for(self._task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("scheduler.stop_timeout", task=self.name)
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None
        logger.info("scheduler.stopped", task=self.name)

    async def run_once(self) -> Any:
        """Run the job once; coroutine jobs are awaited, plain callables run in a worker thread."""
        if inspect.iscoroutinefunction(self.job):
            return await self.job()
        result = await asyncio.to_thread(self.job)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self.run_once()
            except Exception:
                logger.exception("scheduler.job_failed", task=self.name)
