# src/tickwork/core/state.py

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

from ..tasks.checkpoint_store import CheckpointStore
from ..tasks.idempotency import IdempotencyGuard
from ..tasks.task_scheduler import Scheduler
from ..tasks.task_store import TaskStore


@dataclass
class AppState:
    # Settings object (real Settings or a SimpleNamespace in tests).
    settings: Any

    task_store: TaskStore
    checkpoint_store: CheckpointStore
    guard: IdempotencyGuard
    scheduler: Scheduler

    # Console and host loop share the scheduler; one of them at a time.
    lock: threading.Lock = field(default_factory=threading.Lock)
