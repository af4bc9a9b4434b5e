# tests/fakes.py

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from tickwork.core.errors import CheckpointPersistError, RecoverableStepError
from tickwork.tasks.checkpoint_store import CheckpointStore
from tickwork.tasks.idempotency import StepContext
from tickwork.tasks.task_models import Checkpoint, StepOutcome


class HostKilled(BaseException):
    """
    The host tearing the quantum down.

    BaseException on purpose: run_quantum() only isolates Exception, so this
    escapes exactly like a forced stop would.
    """


@dataclass(slots=True)
class KillSwitch:
    """Raises HostKilled on the listed call numbers (1-based)."""

    kill_on: set[int] = field(default_factory=set)
    calls: int = 0

    def tick(self) -> None:
        self.calls += 1
        if self.calls in self.kill_on:
            raise HostKilled(f"killed at call {self.calls}")


@dataclass(slots=True)
class EffectJournal:
    """Stand-in for the outside world: every applied effect is appended here."""

    entries: list[str] = field(default_factory=list)

    def append(self, entry: str) -> int:
        self.entries.append(entry)
        return len(self.entries)


def make_journal_handler(journal: EffectJournal, kill: KillSwitch | None = None):
    """
    Step handler over state {"i": next index, "n": total}.

    Each step writes "<task_id>:<i>" to the journal through the guard, and may
    then be killed before it gets to return (effect out, cursor not advanced).
    """

    def step(ctx: StepContext) -> StepOutcome:
        i = int(ctx.state.get("i", 0))
        n = int(ctx.state["n"])
        ctx.effect(journal.append, f"{ctx.task_id}:{i}")
        if kill is not None:
            kill.tick()
        return StepOutcome(state={"i": i + 1, "n": n}, done=i + 1 >= n)

    return step


class FlakyHandler:
    """Raises RecoverableStepError for the first `failures` calls, then finishes in one step."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    def __call__(self, ctx: StepContext) -> StepOutcome:
        self.calls += 1
        if self.calls <= self.failures:
            raise RecoverableStepError(f"transient failure #{self.calls}")
        return StepOutcome(state=ctx.state, done=True)


class CountingHandler:
    """Wraps a handler and counts invocations."""

    def __init__(self, inner) -> None:
        self.inner = inner
        self.calls = 0

    def __call__(self, ctx: StepContext) -> StepOutcome:
        self.calls += 1
        return self.inner(ctx)


class FlakyCheckpointStore(CheckpointStore):
    """Real SQLite store whose save() fails for the listed call numbers (1-based)."""

    def __init__(self, db_path, fail_on: Iterable[int]) -> None:
        super().__init__(db_path)
        self.fail_on = set(fail_on)
        self.save_calls = 0

    def save(self, task_id: str, checkpoint: Checkpoint) -> None:
        self.save_calls += 1
        if self.save_calls in self.fail_on:
            raise CheckpointPersistError(f"disk full (save #{self.save_calls})")
        super().save(task_id, checkpoint)


class ScriptedBudget:
    """BudgetSignal that always reports the same remaining budget."""

    def __init__(self, remaining: int) -> None:
        self.value = remaining

    def remaining(self) -> int:
        return self.value
