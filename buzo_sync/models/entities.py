"""
Domain Entity Models for Buzo Sync

These models define the strict schemas for the three synchronised entity
types: expenses, budgets and savings goals. They are designed to:
1. Enforce type safety at runtime
2. Carry the bookkeeping the sync core needs (origin, timestamps)
3. Keep the derived budget and savings fields consistent
4. Be serializable for local storage and for the remote row mappers

DESIGN DECISION: Money is Decimal, never float.
Budget arithmetic (remaining = amount - spent - allocation) is checked
for exact equality, which floats cannot guarantee.

DESIGN DECISION: Whether an entity has been confirmed by the backend is an
explicit `origin` field, set when the entity is created. Nothing in the
sync core inspects the shape of an id.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


def utc_now() -> datetime:
    """Timezone-aware current time, used for every entity timestamp."""
    return datetime.now(timezone.utc)


def new_entity_id() -> str:
    return str(uuid4())


# =============================================================================
# ENUMS
# =============================================================================

class EntityKind(str, Enum):
    """Logical entity kinds handled by the sync core."""
    EXPENSE = "expense"
    BUDGET = "budget"
    SAVINGS_GOAL = "savings_goal"


class EntityOrigin(str, Enum):
    """
    Where the current copy of an entity was first confirmed.

    LOCAL entities were created on this device and the backend has not yet
    acknowledged them. Update and delete skip the remote call for them.
    """
    LOCAL = "local"
    REMOTE = "remote"


class PaymentMethod(str, Enum):
    """How an expense was paid."""
    CASH = "cash"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    BANK_TRANSFER = "bank_transfer"
    MOBILE_PAYMENT = "mobile_payment"
    AUTOMATED_SAVING = "automated_saving"
    OTHER = "other"


class ContributionSource(str, Enum):
    """Where a savings contribution came from."""
    MANUAL = "manual"
    AUTOMATED = "automated"
    BUDGET_ALLOCATION = "budget_allocation"
    WITHDRAWAL = "withdrawal"


# =============================================================================
# BASE ENTITY
# =============================================================================

class Entity(BaseModel):
    """
    An identified, timestamped record.

    `updated_at` is refreshed on every local mutation and decides which
    copy wins when local and remote versions of the same id are reconciled.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    kind: ClassVar[EntityKind]

    id: str = Field(
        default_factory=new_entity_id,
        min_length=1,
        description="Globally unique entity id"
    )
    user_id: Optional[str] = Field(
        default=None,
        description="Owning user, required by the backend's row-level security"
    )
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    origin: EntityOrigin = Field(
        default=EntityOrigin.REMOTE,
        description="LOCAL until the backend has confirmed the entity"
    )

    @property
    def is_local_only(self) -> bool:
        return self.origin == EntityOrigin.LOCAL

    def touch(self) -> None:
        """Refresh updated_at after a local mutation."""
        self.updated_at = utc_now()

    def is_newer_than(self, other: "Entity") -> bool:
        return self.updated_at > other.updated_at

    def to_storage_dict(self) -> dict:
        """JSON-safe dict for the local store."""
        return self.model_dump(mode="json")


# =============================================================================
# EXPENSE
# =============================================================================

class Expense(Entity):
    """
    A single spending record.

    An expense may be linked to one budget (its amount counts towards the
    budget's `spent`) and to savings goals (its `savings_contribution` is
    added to each linked goal).
    """
    kind: ClassVar[EntityKind] = EntityKind.EXPENSE

    title: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0, description="Amount spent")
    date: datetime = Field(default_factory=utc_now)
    category: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    tags: list[str] = Field(default_factory=list)
    payment_method: PaymentMethod = Field(default=PaymentMethod.OTHER)
    receipt_image: Optional[str] = None

    budget_id: Optional[str] = None
    linked_savings_goals: list[str] = Field(default_factory=list)
    savings_contribution: Optional[Decimal] = Field(default=None, ge=0)
    is_automated_saving: bool = False

    @property
    def contributes_to_savings(self) -> bool:
        return bool(self.linked_savings_goals) and bool(self.savings_contribution)


# =============================================================================
# BUDGET
# =============================================================================

class Budget(Entity):
    """
    A spending allowance for a category.

    INVARIANT: remaining_amount == amount - spent - savings_allocation.
    The model recomputes it on construction; services call
    `recompute_remaining()` after touching spent or savings_allocation.
    """
    kind: ClassVar[EntityKind] = EntityKind.BUDGET

    name: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., ge=0, description="Allocated amount")
    spent: Decimal = Field(default=Decimal("0"))
    category: str = Field(..., min_length=1, max_length=100)
    color: Optional[str] = None
    icon: Optional[str] = None

    linked_expenses: list[str] = Field(default_factory=list)
    savings_allocation: Decimal = Field(default=Decimal("0"), ge=0)
    linked_savings_goals: list[str] = Field(default_factory=list)
    auto_save_percentage: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    remaining_amount: Decimal = Field(default=Decimal("0"))

    @model_validator(mode='after')
    def derive_remaining(self) -> 'Budget':
        """remaining_amount is always derived, never trusted from input."""
        self.remaining_amount = self.amount - self.spent - self.savings_allocation
        return self

    def recompute_remaining(self) -> Decimal:
        self.remaining_amount = self.amount - self.spent - self.savings_allocation
        return self.remaining_amount

    @property
    def auto_save_enabled(self) -> bool:
        return self.auto_save_percentage > 0

    @property
    def utilization_percentage(self) -> float:
        if not self.amount:
            return 0.0
        return float(self.spent / self.amount * 100)


# =============================================================================
# SAVINGS GOAL
# =============================================================================

class Milestone(BaseModel):
    """
    An intermediate target on a savings goal.

    Once completed a milestone stays completed, even if the goal's
    balance later drops below its target.
    """
    id: str = Field(default_factory=new_entity_id)
    title: str = Field(..., min_length=1, max_length=200)
    target_amount: Decimal = Field(..., gt=0)
    is_completed: bool = False
    completed_date: Optional[datetime] = None


class ContributionRecord(BaseModel):
    """One entry in a savings goal's history. Withdrawals are negative."""
    id: str = Field(default_factory=new_entity_id)
    date: datetime = Field(default_factory=utc_now)
    amount: Decimal
    source: ContributionSource = ContributionSource.MANUAL
    expense_id: Optional[str] = None
    budget_id: Optional[str] = None
    note: Optional[str] = None


class SavingsGoal(Entity):
    """A savings target with milestones and a contribution history."""
    kind: ClassVar[EntityKind] = EntityKind.SAVINGS_GOAL

    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    target_amount: Decimal = Field(..., gt=0)
    current_amount: Decimal = Field(default=Decimal("0"), ge=0)
    start_date: datetime = Field(default_factory=utc_now)
    target_date: datetime
    category: Optional[str] = None
    is_completed: bool = False

    milestones: list[Milestone] = Field(default_factory=list)
    saving_history: list[ContributionRecord] = Field(default_factory=list)

    @field_validator('milestones')
    @classmethod
    def unique_milestone_ids(cls, v: list[Milestone]) -> list[Milestone]:
        ids = [m.id for m in v]
        if len(ids) != len(set(ids)):
            raise ValueError("Milestone ids must be unique within a goal")
        return v

    @property
    def progress_percentage(self) -> float:
        return float(self.current_amount / self.target_amount * 100)

    def apply_contribution(self, record: ContributionRecord) -> list[Milestone]:
        """
        Add a contribution (or withdrawal) and re-evaluate milestones.

        Returns the milestones completed by this contribution.

        Raises:
            ValueError: If the contribution would make the balance negative
        """
        new_amount = self.current_amount + record.amount
        if new_amount < 0:
            raise ValueError(
                f"Balance of goal {self.id} cannot go below zero "
                f"(current {self.current_amount}, change {record.amount})"
            )
        self.current_amount = new_amount
        self.saving_history.append(record)
        self.is_completed = self.current_amount >= self.target_amount
        return self.complete_reached_milestones(record.date)

    def complete_reached_milestones(self, when: Optional[datetime] = None) -> list[Milestone]:
        """Mark every incomplete milestone whose target has been reached."""
        newly_completed = []
        for milestone in self.milestones:
            if not milestone.is_completed and self.current_amount >= milestone.target_amount:
                milestone.is_completed = True
                milestone.completed_date = when or utc_now()
                newly_completed.append(milestone)
        return newly_completed


ENTITY_MODELS: dict[EntityKind, type[Entity]] = {
    EntityKind.EXPENSE: Expense,
    EntityKind.BUDGET: Budget,
    EntityKind.SAVINGS_GOAL: SavingsGoal,
}
