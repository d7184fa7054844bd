"""Per-session spend control.

:class:`BudgetGuard` wraps a session's :class:`CostLedger` and gates every
cost-incurring operation against the ledger's fixed ceiling.  Spend only
ever grows; ``current + remaining == total`` holds after every write.

Classes
-------
- BudgetAlertLevel  — NONE / WARNING / CRITICAL / EXHAUSTED
- BudgetDecision    — result of a can-proceed check
- BudgetGuard       — check and record spend on one ledger
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from agent_handoff_coordinator.config import BudgetConfig
from agent_handoff_coordinator.errors import BudgetExhaustedError
from agent_handoff_coordinator.session.state import CostCategory, CostLedger, Session

logger = logging.getLogger(__name__)

_PRECISION = 6


class BudgetAlertLevel(str, Enum):
    NONE = "none"
    WARNING = "warning"
    CRITICAL = "critical"
    EXHAUSTED = "exhausted"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY: dict[BudgetAlertLevel, int] = {
    BudgetAlertLevel.NONE: 0,
    BudgetAlertLevel.WARNING: 1,
    BudgetAlertLevel.CRITICAL: 2,
    BudgetAlertLevel.EXHAUSTED: 3,
}


@dataclass(frozen=True)
class BudgetDecision:
    allowed: bool
    remaining: float
    reason: str | None = None


class BudgetGuard:
    """Check and record spend against a fixed ceiling.

    Parameters
    ----------
    ledger:
        The ledger to guard.  It is mutated in place by :meth:`record`.
    config:
        Supplies the warning and critical threshold fractions.  The ceiling
        itself is ``ledger.total``.
    """

    def __init__(self, ledger: CostLedger, config: BudgetConfig | None = None) -> None:
        self._ledger = ledger
        self._config = config or BudgetConfig()

    @classmethod
    def for_session(cls, session: Session, config: BudgetConfig | None = None) -> BudgetGuard:
        return cls(session.costs, config)

    @property
    def ledger(self) -> CostLedger:
        return self._ledger

    @property
    def remaining(self) -> float:
        return self._ledger.remaining

    # ------------------------------------------------------------------
    # Gate
    # ------------------------------------------------------------------

    def can_proceed(self, estimated_cost: float) -> BudgetDecision:
        """Return whether an operation costing ``estimated_cost`` fits the budget.

        Allowed iff ``current + estimated_cost <= total``.
        """
        if estimated_cost < 0:
            raise ValueError(f"estimated_cost must be non-negative, got {estimated_cost!r}.")
        ledger = self._ledger
        projected = round(ledger.current + estimated_cost, _PRECISION)
        if projected <= ledger.total:
            return BudgetDecision(allowed=True, remaining=ledger.remaining)
        return BudgetDecision(
            allowed=False,
            remaining=ledger.remaining,
            reason=(
                f"Insufficient budget. Estimated cost: ${estimated_cost:.4f}, "
                f"remaining: ${ledger.remaining:.4f}"
            ),
        )

    def require(self, estimated_cost: float) -> BudgetDecision:
        """Like :meth:`can_proceed` but raise when the check fails.

        Raises
        ------
        BudgetExhaustedError
            If the operation does not fit the remaining budget.
        """
        decision = self.can_proceed(estimated_cost)
        if not decision.allowed:
            raise BudgetExhaustedError(decision.remaining, estimated_cost, decision.reason or "")
        return decision

    # ------------------------------------------------------------------
    # Record
    # ------------------------------------------------------------------

    def record(self, category: CostCategory, amount: float) -> CostLedger:
        """Add ``amount`` to the ledger under ``category``.

        The amount is checked again before it is applied; a rejected amount
        leaves the ledger untouched.

        Raises
        ------
        BudgetExhaustedError
            If ``amount`` does not fit the remaining budget.
        ValueError
            If ``amount`` is negative.
        """
        if amount < 0:
            raise ValueError(f"Cost amounts must be non-negative, got {amount!r}.")
        self.require(amount)
        return self._apply(category, amount)

    def settle(self, category: CostCategory, amount: float) -> float:
        """Record the actual cost of an operation that has already run.

        Unlike :meth:`record` this never rejects: the money is spent.  An
        amount larger than the remaining budget is clamped so the ledger ends
        at its ceiling and every later :meth:`require` fails.

        Returns
        -------
        float
            The amount actually recorded.
        """
        if amount < 0:
            raise ValueError(f"Cost amounts must be non-negative, got {amount!r}.")
        recorded = max(0.0, min(round(amount, _PRECISION), self._ledger.remaining))
        if recorded < amount:
            logger.warning(
                "BudgetGuard: actual cost $%.4f exceeds remaining $%.4f; clamped",
                amount,
                self._ledger.remaining,
            )
        self._apply(category, recorded)
        return recorded

    def _apply(self, category: CostCategory, amount: float) -> CostLedger:
        before = self.alert_level()
        ledger = self._ledger
        ledger.current = round(ledger.current + amount, _PRECISION)
        ledger.breakdown[category] = round(ledger.breakdown[category] + amount, _PRECISION)
        ledger.remaining = round(ledger.total - ledger.current, _PRECISION)
        ledger.budget_alert = ledger.current >= self._config.warning_threshold * ledger.total

        after = self.alert_level()
        if after.severity > before.severity:
            logger.warning(
                "BudgetGuard: spend $%.2f of $%.2f reached %s level",
                ledger.current,
                ledger.total,
                after.value,
            )
        return ledger

    def alert_level(self) -> BudgetAlertLevel:
        ledger = self._ledger
        if ledger.current >= ledger.total:
            return BudgetAlertLevel.EXHAUSTED
        if ledger.current >= self._config.critical_threshold * ledger.total:
            return BudgetAlertLevel.CRITICAL
        if ledger.current >= self._config.warning_threshold * ledger.total:
            return BudgetAlertLevel.WARNING
        return BudgetAlertLevel.NONE

    def is_balanced(self, tolerance: float = 1e-6) -> bool:
        """Return True when ``current + remaining == total`` within ``tolerance``."""
        ledger = self._ledger
        return abs(ledger.current + ledger.remaining - ledger.total) <= tolerance

    def __repr__(self) -> str:
        return (
            f"BudgetGuard(current={self._ledger.current!r}, "
            f"total={self._ledger.total!r}, level={self.alert_level().value!r})"
        )


__all__ = ["BudgetAlertLevel", "BudgetDecision", "BudgetGuard"]
