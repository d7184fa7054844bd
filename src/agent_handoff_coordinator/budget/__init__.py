"""Budget ceiling enforcement."""
from __future__ import annotations

from agent_handoff_coordinator.budget.guard import BudgetAlertLevel, BudgetDecision, BudgetGuard

__all__ = ["BudgetAlertLevel", "BudgetDecision", "BudgetGuard"]
