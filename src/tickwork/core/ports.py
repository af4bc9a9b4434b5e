# src/tickwork/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the scheduler.

The scheduler depends on Protocols instead of concrete implementations.
This keeps the host, the stores and step handlers swappable and makes
testing easier (e.g. a checkpoint store that fails on demand).
"""

from collections.abc import Iterable
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from ..tasks.idempotency import StepContext
    from ..tasks.task_models import Checkpoint, StepOutcome, Task, TaskDescriptor, TaskStatus


class BudgetSignal(Protocol):
    """
    Host-side estimate of operations left before the quantum is cut off.

    Monotonically decreasing within a quantum, reset by the host at quantum start.
    """

    def remaining(self) -> int: ...


class StepHandler(Protocol):
    """One atomic unit of progress: (checkpoint) -> next state / done / error."""

    def __call__(self, ctx: StepContext) -> StepOutcome: ...


class TaskRepo(Protocol):
    def submit(self, descriptor: TaskDescriptor) -> str: ...
    def get(self, task_id: str) -> Task: ...
    def list(self, status: Any = None, *, page_size: int = 100) -> Iterable[Task]: ...
    def list_runnable(self) -> Iterable[Task]: ...
    def transition(
            self,
            task_id: str,
            from_status: TaskStatus,
            to_status: TaskStatus,
            **fields: Any,
    ) -> None: ...
    def cancel(self, task_id: str) -> TaskStatus: ...
    def purge(self, task_id: str) -> None: ...

    # Quantum bookkeeping
    def advance_quantum(self) -> int: ...
    def ids_with_status(self, status: TaskStatus) -> list[str]: ...
    def ids_pending_cancellation(self) -> list[str]: ...
    def band_cursors(self) -> dict[int, tuple[int, int]]: ...
    def mark_served(self, task: Task) -> None: ...


class CheckpointRepo(Protocol):
    def save(self, task_id: str, checkpoint: Checkpoint) -> None: ...
    def load(self, task_id: str) -> Checkpoint | None: ...
    def clear(self, task_id: str) -> None: ...
