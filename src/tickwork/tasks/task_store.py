# src/tickwork/tasks/task_store.py

from __future__ import annotations

import json
import logging
import sqlite3
import time
import uuid
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

from ..core.errors import (
    CancelError,
    DuplicateTaskError,
    InvalidTransitionError,
    NotFoundError,
)
from ..core.sqlite_db import add_missing_columns, connect
from .task_models import (
    CANCELLED_REASON,
    RUNNABLE_STATUSES,
    Task,
    TaskDescriptor,
    TaskStatus,
    can_transition,
)

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class TaskListing:
    """
    Lazy, restartable enumeration of tasks in scheduling order.

    Each iteration runs a fresh keyset-paged query ordered by
    (priority, created_at, seq), so iterating twice sees current data twice.
    """

    def __init__(
        self,
        store: TaskStore,
        statuses: tuple[TaskStatus, ...] | None,
        page_size: int = 100,
    ) -> None:
        self._store = store
        self._statuses = statuses
        self._page_size = max(1, int(page_size))

    def __iter__(self) -> Iterator[Task]:
        after: tuple[int, int, int] | None = None
        while True:
            page = self._store._fetch_page(self._statuses, after, self._page_size)
            yield from page
            if len(page) < self._page_size:
                return
            last = page[-1]
            after = (last.priority, last.created_at, last.seq)


class TaskStore:
    """
    SQLite task registry: the source of truth for task identity and status.

    The schema is migration-safe:
    - create tables if missing
    - add columns with ALTER TABLE only when needed

    Every status change goes through a compare-and-set UPDATE, so a task can
    never be picked up twice for the same quantum.
    """

    def __init__(self, db_path: str | Path = "tickwork.sqlite3", *, default_max_retries: int = 3) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._default_max_retries = max(1, int(default_max_retries))
        self._ensure_schema()
        logger.info("TaskStore ready db=%s total=%s", self._db_path, self.count_tasks())

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        return connect(self._db_path)

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    kind TEXT NOT NULL,
                    priority INTEGER NOT NULL DEFAULT 0,
                    status TEXT NOT NULL DEFAULT 'pending',
                    payload TEXT NOT NULL DEFAULT 'null',
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    max_retries INTEGER NOT NULL DEFAULT 3,
                    last_error TEXT,
                    cancel_requested INTEGER NOT NULL DEFAULT 0,
                    created_at INTEGER NOT NULL DEFAULT 0,
                    last_run_at INTEGER,
                    cursor INTEGER NOT NULL DEFAULT 0,
                    last_cost INTEGER,
                    updated_at REAL NOT NULL DEFAULT 0
                )
                """
            )
            add_missing_columns(
                cur,
                "tasks",
                {
                    "retry_count": "INTEGER NOT NULL DEFAULT 0",
                    "max_retries": "INTEGER NOT NULL DEFAULT 3",
                    "last_error": "TEXT",
                    "cancel_requested": "INTEGER NOT NULL DEFAULT 0",
                    "last_run_at": "INTEGER",
                    "cursor": "INTEGER NOT NULL DEFAULT 0",
                    "last_cost": "INTEGER",
                    "updated_at": "REAL NOT NULL DEFAULT 0",
                },
            )
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_tasks_sched ON tasks(status, priority, created_at, seq)"
            )

            # Purged ids stay here so they are never handed out again.
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS retired_task_ids (
                    id TEXT PRIMARY KEY,
                    retired_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS scheduler_meta (
                    key TEXT PRIMARY KEY,
                    value INTEGER NOT NULL
                )
                """
            )
            cur.execute("INSERT OR IGNORE INTO scheduler_meta(key, value) VALUES ('quantum', 0)")
            # Last task served in each priority band; the next quantum starts after it.
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS band_cursors (
                    priority INTEGER PRIMARY KEY,
                    created_at INTEGER NOT NULL,
                    seq INTEGER NOT NULL
                )
                """
            )
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=str(row["id"]),
            kind=str(row["kind"]),
            priority=int(row["priority"]),
            status=TaskStatus(row["status"]),
            payload=json.loads(row["payload"]) if row["payload"] else None,
            retry_count=int(row["retry_count"] or 0),
            max_retries=int(row["max_retries"] or 0),
            last_error=row["last_error"],
            cancel_requested=bool(row["cancel_requested"]),
            cursor=int(row["cursor"] or 0),
            created_at=int(row["created_at"] or 0),
            last_run_at=int(row["last_run_at"]) if row["last_run_at"] is not None else None,
            seq=int(row["seq"]),
            last_cost=int(row["last_cost"]) if row["last_cost"] is not None else None,
        )

    def _current_status(self, conn: sqlite3.Connection, task_id: str) -> TaskStatus | None:
        row = conn.execute("SELECT status FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return TaskStatus(row["status"]) if row else None

    def _fetch_page(
        self,
        statuses: tuple[TaskStatus, ...] | None,
        after: tuple[int, int, int] | None,
        limit: int,
    ) -> list[Task]:
        where: list[str] = []
        params: list[Any] = []
        if statuses:
            where.append(f"status IN ({','.join('?' for _ in statuses)})")
            params.extend(s.value for s in statuses)
        if after is not None:
            where.append("(priority, created_at, seq) > (?, ?, ?)")
            params.extend(after)
        sql = "SELECT * FROM tasks"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY priority ASC, created_at ASC, seq ASC LIMIT ?"
        params.append(int(limit))

        conn = self._get_conn()
        try:
            return [self._row_to_task(r) for r in conn.execute(sql, params).fetchall()]
        finally:
            conn.close()

    # ---- quantum counter ----

    def current_quantum(self) -> int:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT value FROM scheduler_meta WHERE key = 'quantum'").fetchone()
            return int(row["value"]) if row else 0
        finally:
            conn.close()

    def advance_quantum(self) -> int:
        """Bump and return the persisted quantum counter."""
        conn = self._get_conn()
        try:
            conn.execute("UPDATE scheduler_meta SET value = value + 1 WHERE key = 'quantum'")
            row = conn.execute("SELECT value FROM scheduler_meta WHERE key = 'quantum'").fetchone()
            conn.commit()
            return int(row["value"])
        finally:
            conn.close()

    # ---- fairness rotation ----

    def band_cursors(self) -> dict[int, tuple[int, int]]:
        """priority -> (created_at, seq) of the task last served in that band."""
        conn = self._get_conn()
        try:
            rows = conn.execute("SELECT priority, created_at, seq FROM band_cursors").fetchall()
            return {int(r["priority"]): (int(r["created_at"]), int(r["seq"])) for r in rows}
        finally:
            conn.close()

    def mark_served(self, task: Task) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO band_cursors(priority, created_at, seq)
                VALUES (?, ?, ?)
                ON CONFLICT(priority) DO UPDATE SET
                    created_at = excluded.created_at,
                    seq = excluded.seq
                """,
                (int(task.priority), int(task.created_at), int(task.seq)),
            )
            conn.commit()
        finally:
            conn.close()

    # ---- public API ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)
        finally:
            conn.close()

    def submit(self, descriptor: TaskDescriptor) -> str:
        kind = (descriptor.kind or "").strip()
        if not kind:
            raise ValueError("kind is required")
        try:
            payload = json.dumps(descriptor.payload, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise ValueError(f"payload must be JSON-serializable: {e}") from e

        task_id = descriptor.task_id or uuid.uuid4().hex
        max_retries = descriptor.max_retries
        if max_retries is None:
            max_retries = self._default_max_retries

        conn = self._get_conn()
        try:
            retired = conn.execute(
                "SELECT 1 FROM retired_task_ids WHERE id = ?", (task_id,)
            ).fetchone()
            if retired or self._current_status(conn, task_id) is not None:
                raise DuplicateTaskError(task_id)

            (quantum,) = conn.execute(
                "SELECT value FROM scheduler_meta WHERE key = 'quantum'"
            ).fetchone()
            try:
                conn.execute(
                    """
                    INSERT INTO tasks(
                        id, kind, priority, status, payload,
                        retry_count, max_retries, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, 0, ?, ?, ?)
                    """,
                    (
                        task_id,
                        kind,
                        int(descriptor.priority),
                        TaskStatus.PENDING.value,
                        payload,
                        max(1, int(max_retries)),
                        int(quantum),
                        time.time(),
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateTaskError(task_id) from e
            conn.commit()
        finally:
            conn.close()

        logger.debug("Task submitted id=%s kind=%s priority=%s", task_id, kind, descriptor.priority)
        return task_id

    def get(self, task_id: str) -> Task:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        finally:
            conn.close()
        if row is None:
            raise NotFoundError(task_id)
        return self._row_to_task(row)

    def list(
        self,
        status: TaskStatus | Iterable[TaskStatus] | None = None,
        *,
        page_size: int = 100,
    ) -> TaskListing:
        if status is None:
            statuses = None
        elif isinstance(status, TaskStatus):
            statuses = (status,)
        else:
            statuses = tuple(TaskStatus(s) for s in status)
        return TaskListing(self, statuses, page_size=page_size)

    def list_runnable(self) -> TaskListing:
        return self.list(RUNNABLE_STATUSES)

    def transition(
        self,
        task_id: str,
        from_status: TaskStatus,
        to_status: TaskStatus,
        *,
        retry_count: int = _UNSET,
        last_error: str | None = _UNSET,
        last_run_at: int = _UNSET,
        cursor: int = _UNSET,
        last_cost: int = _UNSET,
    ) -> None:
        """
        Atomic compare-and-set:
          status == from_status -> status = to_status (+ bookkeeping fields)

        Raises InvalidTransitionError if the edge is not allowed or the current
        status is not from_status, NotFoundError for unknown ids.
        """
        from_status = TaskStatus(from_status)
        to_status = TaskStatus(to_status)

        fields = ["status = ?", "updated_at = ?"]
        params: list[Any] = [to_status.value, time.time()]
        if retry_count is not _UNSET:
            fields.append("retry_count = ?")
            params.append(int(retry_count))
        if last_error is not _UNSET:
            fields.append("last_error = ?")
            params.append(last_error)
        if last_run_at is not _UNSET:
            fields.append("last_run_at = ?")
            params.append(int(last_run_at))
        if cursor is not _UNSET:
            fields.append("cursor = ?")
            params.append(int(cursor))
        if last_cost is not _UNSET:
            fields.append("last_cost = ?")
            params.append(int(last_cost))
        params.extend([task_id, from_status.value])

        conn = self._get_conn()
        try:
            if can_transition(from_status, to_status):
                cur = conn.execute(
                    f"UPDATE tasks SET {', '.join(fields)} WHERE id = ? AND status = ?",
                    params,
                )
                conn.commit()
                if cur.rowcount == 1:
                    logger.debug("Task %s: %s -> %s", task_id, from_status, to_status)
                    return
            actual = self._current_status(conn, task_id)
        finally:
            conn.close()

        if actual is None:
            raise NotFoundError(task_id)
        raise InvalidTransitionError(task_id, from_status.value, actual.value, to_status.value)

    def cancel(self, task_id: str) -> TaskStatus:
        """
        Cancel a task.

        - pending / suspended -> failed (last_error = "cancelled"), returns FAILED
        - running             -> cancel_requested flag; the next quantum fails it
                                 instead of resuming it. Returns RUNNING.
        - terminal            -> CancelError
        """
        now = time.time()
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                UPDATE tasks
                SET status = 'failed', last_error = ?, cancel_requested = 1, updated_at = ?
                WHERE id = ?
                  AND status IN ('pending', 'suspended')
                """,
                (CANCELLED_REASON, now, task_id),
            )
            if cur.rowcount == 1:
                conn.commit()
                logger.info("Task %s cancelled", task_id)
                return TaskStatus.FAILED

            cur = conn.execute(
                """
                UPDATE tasks
                SET cancel_requested = 1, updated_at = ?
                WHERE id = ?
                  AND status = 'running'
                """,
                (now, task_id),
            )
            if cur.rowcount == 1:
                conn.commit()
                logger.info("Task %s is running; cancellation deferred to next quantum", task_id)
                return TaskStatus.RUNNING

            actual = self._current_status(conn, task_id)
        finally:
            conn.close()

        if actual is None:
            raise NotFoundError(task_id)
        raise CancelError(task_id, actual.value)

    def purge(self, task_id: str) -> None:
        """Delete a terminal record on behalf of its owner; the id is retired for good."""
        conn = self._get_conn()
        try:
            actual = self._current_status(conn, task_id)
            if actual is None:
                raise NotFoundError(task_id)
            if not actual.terminal:
                raise InvalidTransitionError(task_id, "terminal", actual.value, "purged")
            conn.execute(
                "INSERT OR IGNORE INTO retired_task_ids(id, retired_at) VALUES (?, ?)",
                (task_id, time.time()),
            )
            conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            conn.commit()
        finally:
            conn.close()
        logger.info("Task %s purged", task_id)

    def ids_with_status(self, status: TaskStatus) -> list[str]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT id FROM tasks WHERE status = ? ORDER BY seq ASC", (TaskStatus(status).value,)
            ).fetchall()
            return [str(r["id"]) for r in rows]
        finally:
            conn.close()

    def ids_pending_cancellation(self) -> list[str]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT id
                FROM tasks
                WHERE cancel_requested = 1
                  AND status IN ('pending', 'suspended')
                ORDER BY seq ASC
                """
            ).fetchall()
            return [str(r["id"]) for r in rows]
        finally:
            conn.close()
