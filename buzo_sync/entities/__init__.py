"""
Entity Services Package

One service per entity kind. Services own the online/offline branching
and the cross-entity side effects between expenses, budgets and savings.
"""

from buzo_sync.entities.base import EntityService, UnauthenticatedError
from buzo_sync.entities.budget import BudgetService
from buzo_sync.entities.expense import ExpenseService
from buzo_sync.entities.savings import SavingsService
from buzo_sync.entities.side_effects import SideEffectOutcome, run_side_effect

__all__ = [
    "BudgetService",
    "EntityService",
    "ExpenseService",
    "SavingsService",
    "SideEffectOutcome",
    "UnauthenticatedError",
    "run_side_effect",
]
