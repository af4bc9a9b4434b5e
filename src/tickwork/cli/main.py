# src/tickwork/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then starts:
- the host loop in a background thread (one quantum per tick),
- the console REPL in the main thread (optional).
"""

from __future__ import annotations

import contextlib
import logging
import signal
import threading

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..logging_setup import setup_logging
from ..tasks.host_loop import HostLoopRunner

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    log_file = setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s (full log: %s)...", settings.app_name, log_file)

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)

    host = HostLoopRunner(
        state.scheduler,
        interval_seconds=settings.tick_interval_seconds,
        lock=state.lock,
    )
    host.start()

    # Use an Event so main can wait without a busy while-loop.
    stop_main = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()

    try:
        if settings.console_enabled:
            run_console_loop(state)
            stop_main.set()
        else:
            # The console handles Ctrl+C itself; headless runs need the signals.
            with contextlib.suppress(ValueError, OSError, AttributeError):
                signal.signal(signal.SIGINT, _handle_signal)
                signal.signal(signal.SIGTERM, _handle_signal)
            logger.info("Console disabled. Ticking in the background. Press Ctrl+C to stop.")
            stop_main.wait()
    finally:
        host.stop()
        host.join(timeout=10.0)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
