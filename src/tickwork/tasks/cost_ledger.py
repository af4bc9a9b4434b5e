# src/tickwork/tasks/cost_ledger.py

from __future__ import annotations


class CostLedger:
    """
    Per-quantum operation budget, as seen from inside the scheduler.

    The host's own accounting is authoritative and invisible to us, so this is a
    conservative estimator: it only ever lowers its idea of what is left
    (consume / observe) and keeps a safety margin in reserve.
    """

    __slots__ = ("_budget", "_consumed", "_safety_margin")

    def __init__(self, budget: int, *, safety_margin: int = 0) -> None:
        self._safety_margin = max(0, int(safety_margin))
        self._budget = 0
        self._consumed = 0
        self.reset(budget)

    @property
    def budget(self) -> int:
        return self._budget

    @property
    def consumed(self) -> int:
        return self._consumed

    @property
    def safety_margin(self) -> int:
        return self._safety_margin

    def reset(self, budget: int) -> None:
        """Start a new quantum."""
        self._budget = max(0, int(budget))
        self._consumed = 0

    def consume(self, units: int) -> None:
        self._consumed += max(0, int(units))

    def observe(self, host_remaining: int) -> None:
        """Fold in the host's budget signal; never raises the estimate."""
        self._budget = min(self._budget, self._consumed + max(0, int(host_remaining)))

    def remaining(self) -> int:
        return max(0, self._budget - self._consumed)

    def exhausted(self, threshold: int = 1) -> bool:
        """True once `threshold` more units cannot be afforded without eating the margin."""
        return self.remaining() - self._safety_margin < max(1, int(threshold))
