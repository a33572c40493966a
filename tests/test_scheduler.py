"""
Gatekeeper - Periodic Task Tests

Run with: pytest tests/test_scheduler.py -v
"""

import asyncio
import threading
from datetime import timedelta

from backend.auth.blacklist import TokenBlacklist
from backend.auth.models import utcnow
from backend.auth.scheduler import PeriodicTask


class TestPeriodicTask:

    async def test_runs_job_every_interval(self):
        calls = []
        task = PeriodicTask("counter", lambda: calls.append(1), interval_seconds=0.01)

        task.start()
        await asyncio.sleep(0.1)
        await task.stop(timeout=1)

        assert len(calls) >= 2
        assert task.is_running is False

    async def test_async_job(self):
        calls = []

        async def job():
            calls.append(1)

        task = PeriodicTask("async", job, interval_seconds=0.01)
        task.start()
        await asyncio.sleep(0.05)
        await task.stop(timeout=1)

        assert calls

    async def test_plain_job_runs_in_worker_thread(self):
        threads = []
        task = PeriodicTask("threads", lambda: threads.append(threading.get_ident()), interval_seconds=60)

        await task.run_once()

        assert len(threads) == 1
        assert threads[0] != threading.get_ident()

    async def test_failing_job_keeps_running(self):
        calls = []

        def job():
            calls.append(1)
            raise RuntimeError("boom")

        task = PeriodicTask("failing", job, interval_seconds=0.01)
        task.start()
        await asyncio.sleep(0.1)

        assert task.is_running is True
        await task.stop(timeout=1)
        assert len(calls) >= 2

    async def test_stop_before_first_run(self):
        calls = []
        task = PeriodicTask("slow", lambda: calls.append(1), interval_seconds=60)

        task.start()
        await task.stop(timeout=1)

        assert calls == []
        assert task.is_running is False

    async def test_stop_without_start(self):
        await PeriodicTask("idle", lambda: None, interval_seconds=1).stop()

    async def test_sweeps_blacklist(self):
        blacklist = TokenBlacklist()
        blacklist.revoke("stale", utcnow() - timedelta(seconds=1))
        blacklist.revoke("live", utcnow() + timedelta(minutes=15))

        removed = await PeriodicTask("sweep", blacklist.sweep, interval_seconds=900).run_once()

        assert removed == 1
        assert blacklist.is_revoked("live") is True
