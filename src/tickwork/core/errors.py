# src/tickwork/core/errors.py

"""
Error taxonomy.

- TaskError and subclasses: caller/API misuse, surfaced immediately, never retried.
- StepError and subclasses: raised by step handlers, converted by the scheduler
  into the task's own status transition.
- StorageError and subclasses: raised by the SQLite stores.
"""

from __future__ import annotations


class TaskError(Exception):
    """Base class for registry/API misuse."""


class DuplicateTaskError(TaskError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task id already in use: {task_id}")
        self.task_id = task_id


class NotFoundError(TaskError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class InvalidTransitionError(TaskError):
    def __init__(self, task_id: str, expected: str, actual: str | None, target: str) -> None:
        super().__init__(
            f"Task {task_id}: cannot move {expected} -> {target} (current status: {actual})"
        )
        self.task_id = task_id
        self.expected = expected
        self.actual = actual
        self.target = target


class CancelError(TaskError):
    def __init__(self, task_id: str, status: str) -> None:
        super().__init__(f"Task {task_id} cannot be cancelled in status {status}")
        self.task_id = task_id
        self.status = status


class StepError(Exception):
    """Base class for errors raised from inside a step handler."""


class RecoverableStepError(StepError):
    """The step may succeed if retried in a later quantum."""


class UnrecoverableStepError(StepError):
    """The task can never succeed; fail it without retrying."""


class StorageError(Exception):
    """Base class for persistence failures."""


class CheckpointPersistError(StorageError):
    pass


class CheckpointDecodeError(StorageError):
    pass
