# tests/test_host_loop.py

from __future__ import annotations

import asyncio
import threading

import pytest

from tickwork.tasks.host_loop import HostLoopRunner, run_host_loop
from tickwork.tasks.task_api import submit_task
from tickwork.tasks.task_models import QuantumReport, TaskStatus
from tickwork.tasks.task_scheduler import Scheduler


@pytest.mark.asyncio
async def test_host_loop_drives_tasks_to_completion(scheduler: Scheduler) -> None:
    submit_task(scheduler, "count", {"target": 3}, task_id="bg")
    reports: list[QuantumReport] = []

    runner = asyncio.create_task(
        run_host_loop(scheduler, interval_seconds=0.01, on_report=reports.append)
    )

    await asyncio.sleep(0.2)
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner

    assert scheduler.status("bg") is TaskStatus.COMPLETED
    assert reports
    assert [r.quantum for r in reports] == list(range(1, len(reports) + 1))


@pytest.mark.asyncio
async def test_host_loop_survives_failing_report_callback(scheduler: Scheduler) -> None:
    calls = 0

    def bad_callback(report: QuantumReport) -> None:
        nonlocal calls
        calls += 1
        raise RuntimeError("boom")

    runner = asyncio.create_task(
        run_host_loop(scheduler, interval_seconds=0.01, on_report=bad_callback)
    )

    await asyncio.sleep(0.1)
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner

    assert calls >= 2


def test_runner_thread_ticks_and_stops(scheduler: Scheduler) -> None:
    submit_task(scheduler, "count", {"target": 2}, task_id="thr")
    lock = threading.Lock()

    host = HostLoopRunner(scheduler, interval_seconds=0.01, lock=lock)
    host.start()
    try:
        for _ in range(200):
            with lock:
                if scheduler.status("thr") is TaskStatus.COMPLETED:
                    break
            threading.Event().wait(0.01)
    finally:
        host.stop()
        host.join(timeout=5.0)

    assert scheduler.status("thr") is TaskStatus.COMPLETED
