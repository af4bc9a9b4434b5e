# src/tickwork/tasks/checkpoint_store.py

from __future__ import annotations

import json
import logging
import sqlite3
import time
from collections.abc import Callable
from pathlib import Path

from ..core.errors import CheckpointDecodeError, CheckpointPersistError
from ..core.sqlite_db import connect
from .task_models import Checkpoint

logger = logging.getLogger(__name__)

CHECKPOINT_FORMAT_VERSION = 1


def _encode_v1(checkpoint: Checkpoint) -> bytes:
    body = {"cursor": int(checkpoint.cursor), "state": checkpoint.state}
    return json.dumps(body, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def _decode_v1(body: bytes) -> Checkpoint:
    data = json.loads(body.decode("utf-8"))
    return Checkpoint(cursor=int(data["cursor"]), state=data.get("state"), version=1)


# Older formats stay decodable when a new version is introduced.
_DECODERS: dict[int, Callable[[bytes], Checkpoint]] = {
    1: _decode_v1,
}


class CheckpointStore:
    """
    Durable per-task progress storage.

    Checkpoints are opaque here: the store persists (version tag, bytes) and
    never looks at what the cursor means. `save` commits with synchronous=FULL,
    so a checkpoint is recoverable as soon as the call returns.
    """

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
                CREATE TABLE IF NOT EXISTS checkpoints (
                    task_id TEXT PRIMARY KEY,
                    version INTEGER NOT NULL,
                    body BLOB NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            conn.commit()
        finally:
            conn.close()

    def save(self, task_id: str, checkpoint: Checkpoint) -> None:
        try:
            body = _encode_v1(checkpoint)
        except (TypeError, ValueError) as e:
            raise CheckpointPersistError(f"Checkpoint for {task_id} is not serializable: {e}") from e

        try:
            conn = self._get_conn()
            try:
                conn.execute(
                    """
                    INSERT INTO checkpoints(task_id, version, body, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(task_id) DO UPDATE SET
                        version = excluded.version,
                        body = excluded.body,
                        updated_at = excluded.updated_at
                    """,
                    (task_id, CHECKPOINT_FORMAT_VERSION, body, time.time()),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CheckpointPersistError(f"Failed to save checkpoint for {task_id}: {e}") from e

        logger.debug("Checkpoint saved task_id=%s cursor=%s", task_id, checkpoint.cursor)

    def load(self, task_id: str) -> Checkpoint | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT version, body FROM checkpoints WHERE task_id = ?", (task_id,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None

        version = int(row["version"])
        decoder = _DECODERS.get(version)
        if decoder is None:
            raise CheckpointDecodeError(
                f"Checkpoint for {task_id} has unknown format version {version}"
            )
        try:
            return decoder(bytes(row["body"]))
        except (KeyError, TypeError, ValueError) as e:
            raise CheckpointDecodeError(f"Checkpoint for {task_id} is corrupt: {e}") from e

    def clear(self, task_id: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM checkpoints WHERE task_id = ?", (task_id,))
            conn.commit()
        finally:
            conn.close()
