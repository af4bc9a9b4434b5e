# src/tickwork/tasks/idempotency.py

"""
Idempotency guard for externally visible effects.

A step may be cut off after its effect went out but before its checkpoint was
saved. On resume the same step runs again from the same cursor; every effect
it routes through the guard is looked up by (task_id, cursor, key) and, if it
was already applied, skipped, with the recorded result handed back instead.

The mark is written right after the effect returns, in its own commit, so the
only window left open is "effect applied, cursor not advanced", which replays
as a skip.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from ..core.errors import CheckpointPersistError, UnrecoverableStepError
from ..core.sqlite_db import connect
from .task_models import Checkpoint, Task

logger = logging.getLogger(__name__)

_MISSING: Any = object()


def _encode_result(result: Any) -> str | None:
    """JSON text for `result`, or None if decoding it would not give `result` back."""
    try:
        encoded = json.dumps(result, ensure_ascii=False)
    except (TypeError, ValueError):
        return None
    return encoded if json.loads(encoded) == result else None


class IdempotencyGuard:
    def __init__(self, db_path: str | Path = "tickwork.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _get_conn(self) -> sqlite3.Connection:
        return connect(self._db_path)

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS applied_effects (
                    task_id TEXT NOT NULL,
                    cursor INTEGER NOT NULL,
                    effect_key TEXT NOT NULL,
                    result TEXT NOT NULL DEFAULT 'null',
                    applied_at REAL NOT NULL,
                    PRIMARY KEY (task_id, cursor, effect_key)
                )
                """
            )
            conn.commit()
        finally:
            conn.close()

    def _lookup(self, task_id: str, cursor: int, key: str) -> Any:
        conn = self._get_conn()
        try:
            row = conn.execute(
                """
                SELECT result
                FROM applied_effects
                WHERE task_id = ? AND cursor = ? AND effect_key = ?
                """,
                (task_id, int(cursor), key),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return _MISSING
        return json.loads(row["result"])

    def _mark(self, task_id: str, cursor: int, key: str, encoded: str) -> None:
        try:
            conn = self._get_conn()
            try:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO applied_effects(task_id, cursor, effect_key, result, applied_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (task_id, int(cursor), key, encoded, time.time()),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CheckpointPersistError(
                f"Failed to mark effect applied task_id={task_id} cursor={cursor} key={key}: {e}"
            ) from e

    def is_applied(self, task_id: str, cursor: int, key: str) -> bool:
        return self._lookup(task_id, cursor, key) is not _MISSING

    def run(self, task_id: str, cursor: int, key: str, effect: Callable[[], Any]) -> Any:
        """Apply `effect` at most once for (task_id, cursor, key); return its (recorded) result."""
        recorded = self._lookup(task_id, cursor, key)
        if recorded is not _MISSING:
            logger.info("Effect already applied task_id=%s cursor=%s key=%s; skipping", task_id, cursor, key)
            return recorded

        result = effect()
        encoded = _encode_result(result)
        # Marked either way: the effect is out and must not be applied again.
        self._mark(task_id, cursor, key, "null" if encoded is None else encoded)
        if encoded is None:
            raise UnrecoverableStepError(
                f"Result of effect {key} at cursor {cursor} cannot be recorded as JSON "
                f"({type(result).__name__}); a replay could not reproduce it"
            )
        return result

    def forget(self, task_id: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM applied_effects WHERE task_id = ?", (task_id,))
            conn.commit()
        finally:
            conn.close()


class StepContext:
    """
    What a step handler sees: the task, its checkpoint, and an effect runner
    bound to the current (task_id, cursor).
    """

    __slots__ = ("task", "checkpoint", "_guard", "_ordinal")

    def __init__(self, task: Task, checkpoint: Checkpoint, guard: IdempotencyGuard) -> None:
        self.task = task
        self.checkpoint = checkpoint
        self._guard = guard
        self._ordinal = 0

    @property
    def task_id(self) -> str:
        return self.task.id

    @property
    def cursor(self) -> int:
        return self.checkpoint.cursor

    @property
    def state(self) -> Any:
        return self.checkpoint.state

    def effect(self, fn: Callable[..., Any], *args: Any, key: str | None = None, **kwargs: Any) -> Any:
        """
        Run an externally visible effect at most once for this step.

        Without an explicit key, effects are keyed by their order within the
        step, so a step must issue its effects in a deterministic order.

        The result must survive a JSON round trip unchanged (no sets, tuples
        or non-string dict keys); otherwise the step fails as unrecoverable.
        """
        if key is None:
            key = f"#{self._ordinal}"
        self._ordinal += 1
        return self._guard.run(self.task_id, self.cursor, key, lambda: fn(*args, **kwargs))
