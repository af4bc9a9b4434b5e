# src/tickwork/tasks/host_loop.py

from __future__ import annotations

"""
Host-side driver.

In production the host runtime calls run_quantum() once per tick on its own.
This loop plays that role for the CLI: it ticks every interval_seconds and
otherwise makes no assumption about tick frequency.
"""

import asyncio
import contextlib
import logging
import threading
from collections.abc import Callable

from .task_models import QuantumReport
from .task_scheduler import Scheduler

logger = logging.getLogger(__name__)


async def run_host_loop(
        scheduler: Scheduler,
        *,
        interval_seconds: float = 1.0,
        lock: threading.Lock | None = None,
        on_report: Callable[[QuantumReport], None] | None = None,
) -> None:
    """
    Tick forever:
    - run one quantum (under `lock`, if the caller shares the scheduler with
      another thread such as the console)
    - hand the report to on_report
    - sleep until the next tick

    To stop the loop, cancel the coroutine/task.
    """
    sleep_s = max(0.01, float(interval_seconds))

    while True:
        if lock is not None:
            with lock:
                report = scheduler.run_quantum()
        else:
            report = scheduler.run_quantum()

        if report.steps or report.recovered or report.cancelled:
            logger.debug(
                "Tick quantum=%s steps=%s completed=%s failed=%s",
                report.quantum,
                report.steps,
                report.completed,
                report.failed,
            )

        if on_report is not None:
            try:
                on_report(report)
            except Exception:
                logger.exception("on_report callback failed quantum=%s", report.quantum)

        await asyncio.sleep(sleep_s)


class HostLoopRunner:
    """Runs run_host_loop in a background thread with its own event loop."""

    def __init__(
            self,
            scheduler: Scheduler,
            *,
            interval_seconds: float,
            lock: threading.Lock | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._interval_seconds = interval_seconds
        self._lock = lock
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task[None] | None = None
        self._stop_requested = threading.Event()
        self._thread = threading.Thread(target=self._run, name="tickwork-host", daemon=True)

    def _run(self) -> None:
        loop = asyncio.new_event_loop()
        self._loop = loop
        asyncio.set_event_loop(loop)
        self._task = loop.create_task(
            run_host_loop(self._scheduler, interval_seconds=self._interval_seconds, lock=self._lock)
        )
        if self._stop_requested.is_set():
            self._task.cancel()
        try:
            with contextlib.suppress(asyncio.CancelledError):
                loop.run_until_complete(self._task)
        finally:
            loop.close()
            logger.info("Host loop stopped.")

    def start(self) -> None:
        logger.info("Host loop starting (interval=%.2fs).", self._interval_seconds)
        self._thread.start()

    def stop(self) -> None:
        self._stop_requested.set()
        loop, task = self._loop, self._task
        if loop is None or task is None:
            return
        # The loop may close between the check and the call.
        with contextlib.suppress(RuntimeError):
            loop.call_soon_threadsafe(task.cancel)

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout=timeout)
