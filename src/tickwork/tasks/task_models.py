# src/tickwork/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

CANCELLED_REASON = "cancelled"


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    Notes:
    - "running" may be left behind by a quantum the host cut off; the next quantum
      recovers such tasks to "suspended" before scheduling.
    - "completed" and "failed" are terminal.
    """

    PENDING = "pending"
    RUNNING = "running"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


# Allowed compare-and-set edges. pending/suspended -> failed are the cancel edges.
TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.RUNNING, TaskStatus.FAILED}),
    TaskStatus.RUNNING: frozenset(
        {TaskStatus.COMPLETED, TaskStatus.SUSPENDED, TaskStatus.FAILED}
    ),
    TaskStatus.SUSPENDED: frozenset({TaskStatus.RUNNING, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}

RUNNABLE_STATUSES = (TaskStatus.PENDING, TaskStatus.SUSPENDED)


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    return target in TRANSITIONS[current]


@dataclass(slots=True, frozen=True)
class TaskDescriptor:
    """What a caller submits. `task_id=None` lets the registry generate one."""

    kind: str
    payload: Any = None
    priority: int = 0
    task_id: str | None = None
    max_retries: int | None = None


@dataclass(slots=True)
class Task:
    id: str
    kind: str
    priority: int
    status: TaskStatus
    payload: Any

    retry_count: int
    max_retries: int
    last_error: str | None
    cancel_requested: bool

    # Cursor as of the last status change; the checkpoint store has the live one.
    cursor: int

    # Quantum counters, not wall-clock time.
    created_at: int
    last_run_at: int | None

    seq: int = 0

    # Cost of the most recent step; None until the task has run once.
    last_cost: int | None = None


@dataclass(slots=True, frozen=True)
class Checkpoint:
    """
    Everything a resumed execution may know about a task.

    cursor: number of steps durably committed so far.
    state:  JSON-serializable, handler-defined progress data.
    """

    cursor: int
    state: Any
    version: int = 1


@dataclass(slots=True, frozen=True)
class StepOutcome:
    state: Any
    done: bool = False
    cost: int = 1


@dataclass(slots=True, frozen=True)
class TaskSummary:
    id: str
    kind: str
    status: TaskStatus
    priority: int
    cursor: int
    retry_count: int
    last_error: str | None
    created_at: int
    last_run_at: int | None


@dataclass(slots=True)
class QuantumReport:
    quantum: int
    budget: int
    consumed: int = 0
    steps: int = 0
    halted_on_budget: bool = False

    completed: list[str] = field(default_factory=list)
    suspended: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    recovered: list[str] = field(default_factory=list)
    cancelled: list[str] = field(default_factory=list)
