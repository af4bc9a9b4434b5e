# src/tickwork/tasks/task_scheduler.py

from __future__ import annotations

"""
Quantum scheduler.

The host calls run_quantum() once per tick and may cut the tick off at any
point. Each quantum:
- recovers tasks an earlier, interrupted quantum left "running",
- applies deferred cancellations,
- walks pending/suspended tasks in (priority, created_at) order, starting each
  priority band just after the task it served last,
- gives every task a slice of steps in turn, persisting the checkpoint after
  every step and checking the cost ledger before the next one,
- suspends whatever is still running once the budget is spent.

Nothing about a task survives the quantum except what is in the stores.
"""

import itertools
import logging
from collections import deque
from collections.abc import Iterable, Iterator
from enum import Enum

from ..core.errors import (
    InvalidTransitionError,
    NotFoundError,
    StorageError,
    UnrecoverableStepError,
)
from ..core.ports import BudgetSignal, CheckpointRepo, StepHandler, TaskRepo
from .cost_ledger import CostLedger
from .idempotency import IdempotencyGuard, StepContext
from .task_models import (
    Checkpoint,
    QuantumReport,
    StepOutcome,
    Task,
    TaskDescriptor,
    TaskStatus,
    TaskSummary,
)

logger = logging.getLogger(__name__)


class SliceResult(str, Enum):
    CONTINUE = "continue"  # still running, wants more steps this quantum
    FINISHED = "finished"  # left the running set (completed / suspended / failed)
    HALT = "halt"  # budget spent; stop the quantum


def _describe(exc: BaseException) -> str:
    text = str(exc).strip()
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


def _rotate_bands(tasks: list[Task], cursors: dict[int, tuple[int, int]]) -> list[Task]:
    """
    Start each equal-priority run of `tasks` just after the task last served
    in that band, wrapping around to its front.
    """
    out: list[Task] = []
    for priority, band_iter in itertools.groupby(tasks, key=lambda t: t.priority):
        band = list(band_iter)
        last = cursors.get(priority)
        k = 0
        if last is not None:
            k = next((i for i, t in enumerate(band) if (t.created_at, t.seq) > last), 0)
        out.extend(band[k:] + band[:k])
    return out


def _cost_hint(task_id: str, expected_cost: dict[str, int]) -> int:
    """Last observed step cost; a task with no history is priced like the dearest step seen."""
    return expected_cost.get(task_id, max(expected_cost.values(), default=1))


def _cost_fields(task: Task) -> dict[str, int]:
    return {} if task.last_cost is None else {"last_cost": task.last_cost}


class Scheduler:
    """
    Caller-facing facade and per-quantum entry point.

    Callers: register / submit / status / cancel / list / purge.
    Host:    run_quantum(), once per tick.
    """

    def __init__(
        self,
        task_store: TaskRepo,
        checkpoint_store: CheckpointRepo,
        guard: IdempotencyGuard,
        *,
        budget: int,
        safety_margin: int = 0,
        steps_per_slice: int = 1,
        retain_checkpoints: bool = False,
        budget_signal: BudgetSignal | None = None,
    ) -> None:
        self._tasks = task_store
        self._checkpoints = checkpoint_store
        self._guard = guard
        self._budget = max(0, int(budget))
        self._steps_per_slice = max(1, int(steps_per_slice))
        self._retain_checkpoints = bool(retain_checkpoints)
        self._budget_signal = budget_signal
        self._ledger = CostLedger(self._budget, safety_margin=safety_margin)
        self._handlers: dict[str, StepHandler] = {}

    @property
    def ledger(self) -> CostLedger:
        return self._ledger

    # ---- caller API ----

    def register(self, kind: str, handler: StepHandler) -> None:
        key = (kind or "").strip()
        if not key:
            raise ValueError("kind is required")
        self._handlers[key] = handler

    def submit(self, descriptor: TaskDescriptor) -> str:
        return self._tasks.submit(descriptor)

    def status(self, task_id: str) -> TaskStatus:
        return self._tasks.get(task_id).status

    def cancel(self, task_id: str) -> TaskStatus:
        return self._tasks.cancel(task_id)

    def get(self, task_id: str) -> TaskSummary:
        return self._summarize(self._tasks.get(task_id))

    def list(self, status: TaskStatus | Iterable[TaskStatus] | None = None) -> Iterator[TaskSummary]:
        for task in self._tasks.list(status):
            yield self._summarize(task)

    def purge(self, task_id: str) -> None:
        """Drop a terminal task the caller has finished with, plus anything retained for it."""
        self._tasks.purge(task_id)
        self._checkpoints.clear(task_id)
        self._guard.forget(task_id)

    def _summarize(self, task: Task) -> TaskSummary:
        cursor = task.cursor
        if not task.status.terminal:
            try:
                checkpoint = self._checkpoints.load(task.id)
            except StorageError:
                logger.warning("Checkpoint unreadable for task_id=%s", task.id, exc_info=True)
                checkpoint = None
            if checkpoint is not None:
                cursor = checkpoint.cursor
        return TaskSummary(
            id=task.id,
            kind=task.kind,
            status=task.status,
            priority=task.priority,
            cursor=cursor,
            retry_count=task.retry_count,
            last_error=task.last_error,
            created_at=task.created_at,
            last_run_at=task.last_run_at,
        )

    # ---- host API ----

    def run_quantum(self) -> QuantumReport:
        """
        Run one quantum. Never raises Exception: per-task failures become that
        task's own status transition, and a store outage ends the quantum early.
        """
        report = QuantumReport(quantum=0, budget=self._budget)
        try:
            self._run(report)
        except Exception:
            logger.exception("Quantum %s aborted", report.quantum)
        logger.info(
            "Quantum %s: steps=%s consumed=%s/%s completed=%s suspended=%s failed=%s halted=%s",
            report.quantum,
            report.steps,
            report.consumed,
            report.budget,
            len(report.completed),
            len(report.suspended),
            len(report.failed),
            report.halted_on_budget,
        )
        return report

    def _run(self, report: QuantumReport) -> None:
        report.quantum = self._tasks.advance_quantum()
        self._ledger.reset(self._budget)
        self._observe_host()
        report.budget = self._ledger.budget

        report.recovered = self._recover_interrupted()
        report.cancelled = self._apply_deferred_cancellations()

        ordered = _rotate_bands(list(self._tasks.list_runnable()), self._tasks.band_cursors())
        queue: deque[Task] = deque(ordered)

        # Per-quantum only; dropped when the quantum ends.
        running: dict[str, Checkpoint] = {}
        claimed: dict[str, Task] = {}
        # Step cost per task as last observed, seeded from the registry.
        expected_cost: dict[str, int] = {}

        try:
            while queue:
                if self._exhausted(1):
                    report.halted_on_budget = True
                    break

                task = queue.popleft()
                if task.id not in running:
                    if task.last_cost is not None:
                        expected_cost.setdefault(task.id, task.last_cost)
                    # Checked before the pick so a task that cannot afford a step
                    # is not counted as served in its band.
                    if self._exhausted(_cost_hint(task.id, expected_cost)):
                        report.halted_on_budget = True
                        break

                try:
                    if task.id not in running:
                        checkpoint = self._pick(task, report)
                        if checkpoint is None:
                            continue
                        running[task.id] = checkpoint
                        claimed[task.id] = task
                    result = self._run_slice(task, running, expected_cost, report)
                except Exception:
                    # Store trouble: leave the task "running" so the next
                    # quantum recovers it from its last durable checkpoint.
                    logger.exception("Slice failed task_id=%s", task.id)
                    running.pop(task.id, None)
                    continue

                if result is SliceResult.CONTINUE:
                    queue.append(task)
                elif result is SliceResult.HALT:
                    report.halted_on_budget = True
                    break
        finally:
            report.consumed = self._ledger.consumed
            for task_id, checkpoint in running.items():
                self._suspend(claimed[task_id], checkpoint.cursor, report)

    def _observe_host(self) -> None:
        if self._budget_signal is None:
            return
        try:
            self._ledger.observe(self._budget_signal.remaining())
        except Exception:
            logger.exception("Host budget signal failed; keeping local estimate")

    def _exhausted(self, threshold: int) -> bool:
        self._observe_host()
        return self._ledger.exhausted(threshold)

    def _recover_interrupted(self) -> list[str]:
        recovered: list[str] = []
        for task_id in self._tasks.ids_with_status(TaskStatus.RUNNING):
            try:
                self._tasks.transition(task_id, TaskStatus.RUNNING, TaskStatus.SUSPENDED)
            except (InvalidTransitionError, NotFoundError):
                continue
            logger.info("Task %s was interrupted mid-quantum; recovered to suspended", task_id)
            recovered.append(task_id)
        return recovered

    def _apply_deferred_cancellations(self) -> list[str]:
        cancelled: list[str] = []
        for task_id in self._tasks.ids_pending_cancellation():
            try:
                self._tasks.cancel(task_id)
            except Exception:
                logger.exception("Deferred cancellation failed task_id=%s", task_id)
                continue
            cancelled.append(task_id)
        return cancelled

    def _pick(self, task: Task, report: QuantumReport) -> Checkpoint | None:
        """Claim a task for this quantum and load where it left off."""
        if task.cancel_requested:
            return None
        try:
            self._tasks.transition(task.id, task.status, TaskStatus.RUNNING, last_run_at=report.quantum)
        except (InvalidTransitionError, NotFoundError) as e:
            logger.info("Skipping task_id=%s: %s", task.id, e)
            return None
        task.status = TaskStatus.RUNNING
        task.last_run_at = report.quantum
        self._tasks.mark_served(task)

        try:
            checkpoint = self._checkpoints.load(task.id)
        except StorageError as e:
            logger.exception("Checkpoint load failed task_id=%s", task.id)
            self._finish_failed(task, task.cursor, _describe(e))
            report.failed.append(task.id)
            return None
        if checkpoint is None:
            checkpoint = Checkpoint(cursor=0, state=task.payload)
        return checkpoint

    def _run_slice(
        self,
        task: Task,
        running: dict[str, Checkpoint],
        expected_cost: dict[str, int],
        report: QuantumReport,
    ) -> SliceResult:
        handler = self._handlers.get(task.kind)
        checkpoint = running[task.id]

        if handler is None:
            running.pop(task.id)
            self._finish_failed(task, checkpoint.cursor, f"No handler registered for kind {task.kind!r}")
            report.failed.append(task.id)
            return SliceResult.FINISHED

        for _ in range(self._steps_per_slice):
            cost_hint = _cost_hint(task.id, expected_cost)
            if self._exhausted(cost_hint):
                return SliceResult.HALT

            ctx = StepContext(task, checkpoint, self._guard)
            try:
                outcome = handler(ctx)
                if not isinstance(outcome, StepOutcome):
                    raise UnrecoverableStepError(
                        f"handler for {task.kind!r} returned {type(outcome).__name__}, not StepOutcome"
                    )
            except UnrecoverableStepError as e:
                self._ledger.consume(cost_hint)
                running.pop(task.id)
                logger.warning("Task %s failed at cursor=%s: %s", task.id, checkpoint.cursor, e)
                self._finish_failed(task, checkpoint.cursor, _describe(e))
                report.failed.append(task.id)
                return SliceResult.FINISHED
            except Exception as e:
                self._ledger.consume(cost_hint)
                running.pop(task.id)
                logger.warning("Task %s step error at cursor=%s: %s", task.id, checkpoint.cursor, e)
                self._retry_or_fail(task, checkpoint.cursor, e, report)
                return SliceResult.FINISHED

            self._ledger.consume(outcome.cost)
            task.last_cost = max(1, int(outcome.cost))
            expected_cost[task.id] = task.last_cost

            # Persist before anything else; the host may stop us right after.
            next_checkpoint = Checkpoint(cursor=checkpoint.cursor + 1, state=outcome.state)
            try:
                self._checkpoints.save(task.id, next_checkpoint)
            except Exception as e:
                running.pop(task.id)
                logger.error("Checkpoint save failed task_id=%s cursor=%s: %s", task.id, next_checkpoint.cursor, e)
                self._retry_or_fail(task, checkpoint.cursor, e, report)
                return SliceResult.FINISHED

            checkpoint = next_checkpoint
            running[task.id] = checkpoint
            report.steps += 1

            if outcome.done:
                running.pop(task.id)
                self._finish_completed(task, checkpoint.cursor)
                report.completed.append(task.id)
                return SliceResult.FINISHED

        return SliceResult.CONTINUE

    # ---- transitions out of "running" ----

    def _suspend(self, task: Task, cursor: int, report: QuantumReport) -> None:
        try:
            self._tasks.transition(
                task.id, TaskStatus.RUNNING, TaskStatus.SUSPENDED, cursor=cursor, **_cost_fields(task)
            )
        except Exception:
            logger.exception("Suspend failed task_id=%s; next quantum will recover it", task.id)
            return
        report.suspended.append(task.id)

    def _retry_or_fail(self, task: Task, cursor: int, error: BaseException, report: QuantumReport) -> None:
        retry_count = task.retry_count + 1
        reason = _describe(error)
        if retry_count < task.max_retries:
            self._tasks.transition(
                task.id,
                TaskStatus.RUNNING,
                TaskStatus.SUSPENDED,
                retry_count=retry_count,
                last_error=reason,
                cursor=cursor,
                **_cost_fields(task),
            )
            logger.info("Task %s will retry (%s/%s)", task.id, retry_count, task.max_retries)
            report.suspended.append(task.id)
            return

        self._tasks.transition(
            task.id,
            TaskStatus.RUNNING,
            TaskStatus.FAILED,
            retry_count=retry_count,
            last_error=reason,
            cursor=cursor,
            **_cost_fields(task),
        )
        logger.warning("Task %s failed after %s attempts: %s", task.id, retry_count, reason)
        report.failed.append(task.id)

    def _finish_failed(self, task: Task, cursor: int, reason: str) -> None:
        self._tasks.transition(
            task.id,
            TaskStatus.RUNNING,
            TaskStatus.FAILED,
            last_error=reason,
            cursor=cursor,
            **_cost_fields(task),
        )

    def _finish_completed(self, task: Task, cursor: int) -> None:
        self._tasks.transition(
            task.id, TaskStatus.RUNNING, TaskStatus.COMPLETED, cursor=cursor, **_cost_fields(task)
        )
        logger.info("Task %s completed at cursor=%s", task.id, cursor)
        if self._retain_checkpoints:
            return
        self._checkpoints.clear(task.id)
        self._guard.forget(task.id)
