# src/tickwork/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the SQLite stores, the idempotency guard and the scheduler into AppState,
- registers the built-in step handlers.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.state import AppState
from ..tasks.checkpoint_store import CheckpointStore
from ..tasks.idempotency import IdempotencyGuard
from ..tasks.task_api import register_builtin_handlers
from ..tasks.task_scheduler import Scheduler
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    task_store = TaskStore(settings.db_path, default_max_retries=settings.max_retries)
    checkpoint_store = CheckpointStore(settings.db_path)
    guard = IdempotencyGuard(settings.db_path)

    scheduler = Scheduler(
        task_store,
        checkpoint_store,
        guard,
        budget=settings.quantum_budget,
        safety_margin=settings.safety_margin,
        steps_per_slice=settings.steps_per_slice,
        retain_checkpoints=settings.retain_checkpoints,
    )
    register_builtin_handlers(scheduler)

    logger.debug(
        "Scheduler wired db=%s budget=%s margin=%s slice=%s",
        settings.db_path,
        settings.quantum_budget,
        settings.safety_margin,
        settings.steps_per_slice,
    )

    return AppState(
        settings=settings,
        task_store=task_store,
        checkpoint_store=checkpoint_store,
        guard=guard,
        scheduler=scheduler,
    )
