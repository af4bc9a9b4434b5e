# src/tickwork/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from typing import Any, cast

from ..core.errors import TaskError
from ..core.state import AppState
from ..tasks.task_api import submit_task
from ..tasks.task_models import TaskStatus, TaskSummary

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /submit, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        try:
            if nparams >= 3:
                h3 = cast(CommandHandler3, handler)
                return h3(state, args, emit)
            h2 = cast(CommandHandler2, handler)
            return h2(state, args)
        except TaskError as e:
            return f"Error: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _coerce(value: str) -> Any:
    try:
        return int(value)
    except ValueError:
        return value


def _format_summary(s: TaskSummary) -> str:
    line = (
        f"{s.id} [{s.status}] kind={s.kind} prio={s.priority} "
        f"cursor={s.cursor} retries={s.retry_count}"
    )
    if s.last_error:
        line += f" error={s.last_error}"
    return line


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_submit(state: AppState, args: list[str]) -> str:
    """
    /submit <kind> [--priority N] [--id ID] [--retries N] [key=value ...] [words ...]

    key=value pairs become payload fields; bare words become payload["lines"].
    """
    if not args:
        return "Usage: /submit <kind> [--priority N] [--id ID] [--retries N] [key=value ...] [words ...]"

    kind = args[0]
    priority = 0
    task_id: str | None = None
    max_retries: int | None = None
    payload: dict[str, Any] = {}
    words: list[str] = []

    it = iter(args[1:])
    for arg in it:
        if arg in ("--priority", "-p", "--id", "--retries"):
            value = next(it, None)
            if value is None:
                return f"Missing value for {arg}."
            if arg == "--id":
                task_id = value
                continue
            try:
                number = int(value)
            except ValueError:
                return f"{arg} expects an integer, got {value!r}."
            if arg == "--retries":
                max_retries = number
            else:
                priority = number
        elif "=" in arg:
            key, _, value = arg.partition("=")
            payload[key] = _coerce(value)
        else:
            words.append(arg)

    if words:
        payload["lines"] = words

    new_id = submit_task(
        state.scheduler,
        kind,
        payload,
        priority=priority,
        task_id=task_id,
        max_retries=max_retries,
    )
    return f"Submitted {new_id} (kind={kind}, priority={priority})."


def cmd_status(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /status <task_id>"
    return _format_summary(state.scheduler.get(args[0]))


def cmd_list(state: AppState, args: list[str]) -> str:
    status: TaskStatus | None = None
    if args:
        try:
            status = TaskStatus(args[0].lower())
        except ValueError:
            names = ", ".join(s.value for s in TaskStatus)
            return f"Unknown status {args[0]!r}. Use one of: {names}."

    lines = [_format_summary(s) for s in state.scheduler.list(status)]
    if not lines:
        return "No tasks."
    return "\n".join(lines)


def cmd_cancel(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /cancel <task_id>"
    result = state.scheduler.cancel(args[0])
    if result is TaskStatus.RUNNING:
        return f"Task {args[0]} is running; it will be cancelled at the next quantum."
    return f"Task {args[0]} cancelled."


def cmd_purge(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /purge <task_id>"
    state.scheduler.purge(args[0])
    return f"Task {args[0]} purged."


def cmd_tick(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /tick      -> run one quantum now
    /tick N    -> run N quanta now
    """
    try:
        n = max(1, int(args[0])) if args else 1
    except ValueError:
        return "Usage: /tick [N]"

    out: list[str] = []
    for _ in range(n):
        report = state.scheduler.run_quantum()
        line = (
            f"quantum {report.quantum}: steps={report.steps} "
            f"consumed={report.consumed}/{report.budget} "
            f"completed={len(report.completed)} suspended={len(report.suspended)} "
            f"failed={len(report.failed)}"
        )
        if emit is not None and n > 1:
            emit(line)
        out.append(line)
    return out[-1] if emit is not None and n > 1 else "\n".join(out)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register(
    "submit",
    cmd_submit,
    help_text="Submit a task: /submit count target=5 | /submit echo hello world [--priority N].",
)
registry.register("status", cmd_status, help_text="Show one task: /status <task_id>.")
registry.register("list", cmd_list, help_text="List tasks: /list [pending|running|suspended|completed|failed].", aliases=["ls"])
registry.register("cancel", cmd_cancel, help_text="Cancel a pending/suspended task (deferred if running).")
registry.register("purge", cmd_purge, help_text="Forget a completed/failed task for good.")
registry.register("tick", cmd_tick, help_text="Run quanta right now: /tick [N].")
