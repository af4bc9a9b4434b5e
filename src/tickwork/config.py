# src/tickwork/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

- One Settings object for the whole app.
- Every knob has a safe default, so nothing is required at import time.
- Components receive settings explicitly; get_settings() is only used by the
  composition root (cli/bootstrap.py).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "TICKWORK"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int, *, minimum: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if minimum is not None and value < minimum:
        return minimum
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    console_enabled: bool

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    db_path: Path

    # ---- Quantum budget ----
    quantum_budget: int
    safety_margin: int
    steps_per_slice: int
    tick_interval_seconds: float

    # ---- Failure handling / retention ----
    max_retries: int
    retain_checkpoints: bool

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "tickwork")
        log_level = _env(_k("LOG_LEVEL"), "INFO")
        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/tickwork"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "tickwork.sqlite3")

        quantum_budget = _env_int(_k("QUANTUM_BUDGET"), 100, minimum=1)
        safety_margin = _env_int(_k("SAFETY_MARGIN"), 5, minimum=0)
        steps_per_slice = _env_int(_k("STEPS_PER_SLICE"), 1, minimum=1)
        tick_interval_seconds = _env_float(_k("TICK_INTERVAL_SECONDS"), 1.0)

        max_retries = _env_int(_k("MAX_RETRIES"), 3, minimum=1)
        retain_checkpoints = _env_bool(_k("RETAIN_CHECKPOINTS"), False)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            console_enabled=console_enabled,
            data_dir=data_dir,
            db_path=db_path,
            quantum_budget=quantum_budget,
            safety_margin=safety_margin,
            steps_per_slice=steps_per_slice,
            tick_interval_seconds=tick_interval_seconds,
            max_retries=max_retries,
            retain_checkpoints=retain_checkpoints,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
