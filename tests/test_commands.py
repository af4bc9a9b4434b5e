# tests/test_commands.py

from __future__ import annotations

from tickwork.cli.commands import CommandRegistry, registry
from tickwork.tasks.task_models import TaskStatus


def test_command_registry_routes_2_and_3_params(state) -> None:
    reg = CommandRegistry()
    called = {"h2": 0, "h3": 0}
    notes: list[str] = []

    def h2(state, args):
        called["h2"] += 1
        return "h2:" + ",".join(args)

    def h3(state, args, emit):
        called["h3"] += 1
        if emit is not None:
            emit("note")
        return "h3"

    reg.register("a", h2, "a")
    reg.register("b", h3, "b", aliases=["bee"])

    assert reg.handle(state, "/a x y") == "h2:x,y"
    assert reg.handle(state, "/BEE z", emit=notes.append) == "h3"
    assert called == {"h2": 1, "h3": 1}
    assert notes == ["note"]


def test_command_registry_unknown_and_non_command(state) -> None:
    reg = CommandRegistry()
    assert reg.handle(state, "hello") is None
    assert "Unknown command" in (reg.handle(state, "/nope") or "")
    assert "Empty command" in (reg.handle(state, "/") or "")


def test_help_lists_registered_commands(state) -> None:
    text = registry.handle(state, "/help") or ""
    for name in ("/submit", "/status", "/list", "/cancel", "/purge", "/tick"):
        assert name in text


def test_submit_tick_status_roundtrip(state) -> None:
    reply = registry.handle(state, "/submit count target=2 --id job1 --priority 1")
    assert reply == "Submitted job1 (kind=count, priority=1)."

    task = state.task_store.get("job1")
    assert task.payload == {"target": 2}
    assert task.priority == 1

    reply = registry.handle(state, "/tick")
    assert (reply or "").startswith("quantum 1: steps=2")

    status = registry.handle(state, "/status job1") or ""
    assert "job1 [completed]" in status
    assert "cursor=2" in status


def test_submit_echo_collects_words(state) -> None:
    registry.handle(state, "/submit echo hello world --id e1")
    assert state.task_store.get("e1").payload == {"lines": ["hello", "world"]}

    registry.handle(state, "/tick 3")
    assert state.scheduler.status("e1") is TaskStatus.COMPLETED


def test_submit_usage_errors(state) -> None:
    assert (registry.handle(state, "/submit") or "").startswith("Usage:")
    assert "expects an integer" in (registry.handle(state, "/submit count --priority high") or "")
    assert "Missing value" in (registry.handle(state, "/submit count --id") or "")


def test_tick_many_emits_each_quantum(state) -> None:
    lines: list[str] = []
    reply = registry.handle(state, "/tick 3", emit=lines.append)

    assert len(lines) == 3
    assert reply == lines[-1]
    assert lines[0].startswith("quantum 1:")


def test_task_errors_become_replies(state) -> None:
    assert (registry.handle(state, "/status missing") or "").startswith("Error: Task not found")

    registry.handle(state, "/submit count target=1 --id once")
    assert "Error:" in (registry.handle(state, "/submit count --id once") or "")

    registry.handle(state, "/tick")
    assert "Error:" in (registry.handle(state, "/cancel once") or "")
    assert registry.handle(state, "/purge once") == "Task once purged."
    assert "Error:" in (registry.handle(state, "/submit count --id once") or "")


def test_list_and_cancel(state) -> None:
    registry.handle(state, "/submit count target=5 --id a")
    registry.handle(state, "/submit count target=5 --id b")

    assert registry.handle(state, "/cancel a") == "Task a cancelled."

    failed = registry.handle(state, "/list failed") or ""
    assert failed.startswith("a [failed]")
    assert "error=cancelled" in failed
    assert "b [pending]" in (registry.handle(state, "/ls") or "")
    assert "Unknown status" in (registry.handle(state, "/list bogus") or "")
    assert registry.handle(state, "/list completed") == "No tasks."
