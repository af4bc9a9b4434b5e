# tests/test_checkpoint_store.py

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from tickwork.core.errors import CheckpointDecodeError, CheckpointPersistError
from tickwork.tasks.checkpoint_store import CHECKPOINT_FORMAT_VERSION, CheckpointStore
from tickwork.tasks.task_models import Checkpoint


def test_save_load_clear(tmp_path: Path) -> None:
    store = CheckpointStore(tmp_path / "cp.sqlite3")

    assert store.load("t1") is None

    store.save("t1", Checkpoint(cursor=3, state={"n": 3, "items": ["a", "b"]}))
    store.save("t1", Checkpoint(cursor=4, state={"n": 4, "items": ["a", "b"]}))

    loaded = store.load("t1")
    assert loaded is not None
    assert loaded.cursor == 4
    assert loaded.state == {"n": 4, "items": ["a", "b"]}
    assert loaded.version == CHECKPOINT_FORMAT_VERSION

    store.clear("t1")
    assert store.load("t1") is None


def test_checkpoint_survives_reopen(tmp_path: Path) -> None:
    db = tmp_path / "cp.sqlite3"
    CheckpointStore(db).save("t1", Checkpoint(cursor=7, state="opaque"))

    loaded = CheckpointStore(db).load("t1")

    assert loaded == Checkpoint(cursor=7, state="opaque")


def test_unserializable_state_is_a_persist_error(tmp_path: Path) -> None:
    store = CheckpointStore(tmp_path / "cp.sqlite3")

    with pytest.raises(CheckpointPersistError):
        store.save("t1", Checkpoint(cursor=1, state={"bad": object()}))
    assert store.load("t1") is None


def _write_raw(db: Path, task_id: str, version: int, body: bytes) -> None:
    conn = sqlite3.connect(db)
    try:
        conn.execute(
            "INSERT INTO checkpoints(task_id, version, body, updated_at) VALUES (?, ?, ?, 0)",
            (task_id, version, body),
        )
        conn.commit()
    finally:
        conn.close()


def test_unknown_format_version_is_a_decode_error(tmp_path: Path) -> None:
    db = tmp_path / "cp.sqlite3"
    store = CheckpointStore(db)
    _write_raw(db, "future", 99, b'{"cursor": 1, "state": null}')

    with pytest.raises(CheckpointDecodeError, match="version 99"):
        store.load("future")


def test_corrupt_body_is_a_decode_error(tmp_path: Path) -> None:
    db = tmp_path / "cp.sqlite3"
    store = CheckpointStore(db)
    _write_raw(db, "garbled", 1, b"{not json")

    with pytest.raises(CheckpointDecodeError):
        store.load("garbled")
