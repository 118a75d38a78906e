"""
Query and summary models returned by the entity services.

These are read-only views computed from the local collections.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from buzo_sync.models.entities import PaymentMethod


class ExpenseFilter(BaseModel):
    """Optional criteria for filtering expenses. All given criteria must match."""
    category: Optional[str] = None
    budget_id: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    min_amount: Optional[Decimal] = Field(default=None, ge=0)
    max_amount: Optional[Decimal] = Field(default=None, ge=0)
    tags: list[str] = Field(
        default_factory=list,
        description="Expense must carry every listed tag"
    )
    search: Optional[str] = Field(
        default=None,
        description="Case-insensitive match on title or description"
    )

    @model_validator(mode='after')
    def validate_ranges(self) -> 'ExpenseFilter':
        if self.date_from and self.date_to and self.date_to < self.date_from:
            raise ValueError("date_to cannot be before date_from")
        if (
            self.min_amount is not None
            and self.max_amount is not None
            and self.max_amount < self.min_amount
        ):
            raise ValueError("max_amount cannot be below min_amount")
        return self


class ExpenseStatistics(BaseModel):
    count: int = 0
    total: Decimal = Decimal("0")
    average: Decimal = Decimal("0")
    by_category: dict[str, Decimal] = Field(default_factory=dict)
    by_payment_method: dict[str, Decimal] = Field(default_factory=dict)


class BudgetUtilization(BaseModel):
    """Spending picture for one budget."""
    budget_id: str
    name: str
    amount: Decimal
    spent: Decimal
    savings_allocation: Decimal
    remaining_amount: Decimal
    utilization_percentage: float
    linked_expense_count: int
    is_over_budget: bool


class BudgetStatistics(BaseModel):
    count: int = 0
    total_budgeted: Decimal = Decimal("0")
    total_spent: Decimal = Decimal("0")
    total_savings_allocation: Decimal = Decimal("0")
    total_remaining: Decimal = Decimal("0")
    over_budget_ids: list[str] = Field(default_factory=list)
    average_utilization: float = 0.0


class SavingsAnalytics(BaseModel):
    goal_count: int = 0
    completed_count: int = 0
    total_saved: Decimal = Decimal("0")
    total_target: Decimal = Decimal("0")
    overall_progress: float = 0.0
    completed_milestones: int = 0
    total_milestones: int = 0
    contributions_by_source: dict[str, Decimal] = Field(default_factory=dict)
