# src/tickwork/tasks/task_api.py

from __future__ import annotations

import logging
from typing import Any

from ..core.errors import UnrecoverableStepError
from .idempotency import StepContext
from .task_models import QuantumReport, StepOutcome, TaskDescriptor, TaskStatus
from .task_scheduler import Scheduler

logger = logging.getLogger(__name__)

_UNFINISHED = (TaskStatus.PENDING, TaskStatus.SUSPENDED, TaskStatus.RUNNING)


def submit_task(
    scheduler: Scheduler,
    kind: str,
    payload: Any = None,
    *,
    priority: int = 0,
    task_id: str | None = None,
    max_retries: int | None = None,
) -> str:
    """Convenience wrapper around Scheduler.submit for call sites that don't build descriptors."""
    return scheduler.submit(
        TaskDescriptor(
            kind=kind,
            payload=payload,
            priority=priority,
            task_id=task_id,
            max_retries=max_retries,
        )
    )


def run_until_idle(scheduler: Scheduler, *, max_quanta: int = 1000) -> list[QuantumReport]:
    """
    Keep ticking until no pending, suspended or running task is left (or
    max_quanta is hit). A task left "running" by a failed quantum is recovered
    by the next one, so it still counts as work.

    Assumes the host keeps invoking run_quantum(); this is that assumption made
    explicit for tests and the console's /tick command.
    """
    reports: list[QuantumReport] = []
    for _ in range(max(1, int(max_quanta))):
        reports.append(scheduler.run_quantum())
        if not any(scheduler.list(_UNFINISHED)):
            break
    return reports


# ---- built-in handlers (used by the console) ----


def count_step(ctx: StepContext) -> StepOutcome:
    """
    Count 1..payload["target"], one number per step (a target of 0 takes one step).

    State is {"n": last counted, "target": N}; a fresh payload has no "n".
    """
    state = ctx.state if isinstance(ctx.state, dict) else {}
    try:
        target = int(state.get("target", 0))
    except (TypeError, ValueError) as e:
        raise UnrecoverableStepError(f"target must be an integer, got {state.get('target')!r}") from e
    if target < 0:
        raise UnrecoverableStepError("target must be >= 0")

    n = int(state.get("n", 0)) + 1
    return StepOutcome(state={"n": n, "target": target}, done=n >= target)


def echo_step(ctx: StepContext) -> StepOutcome:
    """Log each line of payload["lines"] exactly once, one line per step."""
    state = ctx.state if isinstance(ctx.state, dict) else {"lines": [str(ctx.state)]}
    lines = [str(x) for x in state.get("lines", [])]
    i = int(state.get("i", 0))
    if i >= len(lines):
        return StepOutcome(state={"lines": lines, "i": i}, done=True)

    ctx.effect(logger.info, "echo %s: %s", ctx.task_id, lines[i])
    i += 1
    return StepOutcome(state={"lines": lines, "i": i}, done=i >= len(lines))


def register_builtin_handlers(scheduler: Scheduler) -> None:
    scheduler.register("count", count_step)
    scheduler.register("echo", echo_step)
