# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from tickwork.cli.bootstrap import create_initial_state
from tickwork.core.state import AppState
from tickwork.tasks.task_scheduler import Scheduler


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with create_initial_state().

    We intentionally use a SimpleNamespace rather than the real Settings,
    to keep unit tests isolated from the environment.
    """
    return SimpleNamespace(
        app_name="tickwork-test",
        log_level="DEBUG",
        console_enabled=False,
        # Paths (tmp per test run)
        data_dir=tmp_path,
        db_path=tmp_path / "tickwork.sqlite3",
        # Two one-unit steps per quantum, no margin.
        quantum_budget=2,
        safety_margin=0,
        steps_per_slice=1,
        tick_interval_seconds=0.01,
        max_retries=3,
        retain_checkpoints=False,
    )


@pytest.fixture()
def state(settings: SimpleNamespace) -> AppState:
    """
    AppState wired exactly like the CLI does it.

    NOTE: We keep real SQLite stores here; their durability and compare-and-set
    behavior is part of what we want to test.
    """
    return create_initial_state(settings=settings)


@pytest.fixture()
def scheduler(state: AppState) -> Scheduler:
    return state.scheduler
