# src/tickwork/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Ticked from the background thread; on the console only WARNING+ gets through.
BACKGROUND_LOGGERS = frozenset({"tickwork.tasks.host_loop", "tickwork.tasks.task_scheduler"})


class ConsoleFilter(logging.Filter):
    """
    Console policy: own logs pass (background ones from WARNING up),
    anything else (including captured warnings) only from ERROR up.
    The file handler has no filter.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not record.name.startswith("tickwork."):
            return record.levelno >= logging.ERROR
        if record.name in BACKGROUND_LOGGERS:
            return record.levelno >= logging.WARNING
        return True


def _handler(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logging(
    *,
    log_dir: str | Path = ".local/tickwork",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Replace the root handlers with a filtered stderr handler and a
    `tickwork.log` file handler under `log_dir`. Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "tickwork.log"

    root = logging.getLogger()
    root.setLevel(min(console_level, file_level))
    for old in list(root.handlers):
        root.removeHandler(old)

    console = _handler(logging.StreamHandler(sys.stderr), console_level)
    console.addFilter(ConsoleFilter())
    root.addHandler(console)
    root.addHandler(_handler(logging.FileHandler(str(log_file), encoding="utf-8"), file_level))

    logging.captureWarnings(True)
    return log_file
