"""
Budget Service

Owns budget mutations and two budget-specific behaviours:

- Spending adjustments driven by expenses (`adjust_spent`), which keep
  remaining_amount = amount - spent - savings_allocation and raise
  threshold alerts.
- Auto-save: updating a budget with auto_save_percentage > 0 reserves
  amount * pct / 100 as savings_allocation and, if savings goals are
  linked, records an automated savings expense through the expense
  service. That expense is flagged is_automated_saving, and the expense
  service never routes such expenses back into budget adjustments, so
  the cascade stops at the savings goal.
"""

from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from buzo_sync.entities.base import EntityService
from buzo_sync.entities.side_effects import run_side_effect
from buzo_sync.models.analytics import BudgetStatistics, BudgetUtilization
from buzo_sync.models.entities import Budget, EntityKind, Expense, PaymentMethod

if TYPE_CHECKING:
    from buzo_sync.entities.expense import ExpenseService


HUNDRED = Decimal("100")


class BudgetService(EntityService[Budget]):
    """Budget mutations, spending adjustments and auto-save."""

    kind = EntityKind.BUDGET
    model = Budget

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._expenses: Optional["ExpenseService"] = None

    def attach_expense_service(self, expenses: "ExpenseService") -> None:
        """Wire the expense service used for automated savings expenses."""
        self._expenses = expenses

    def _create_priority(self) -> int:
        return self._settings.budget_create_priority

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def create(self, budget: Budget) -> Budget:
        """Create a budget. Auto-save allocation is reserved immediately."""
        if budget.auto_save_enabled:
            budget = self._with_allocation(budget)
        return await self._create_entity(budget)

    async def update(self, budget_id: str, changes: dict[str, Any]) -> Budget:
        """
        Update a budget and run auto-save if it is enabled.

        Raises:
            NotFoundError: If the budget does not exist locally
            ValueError: If the changes are invalid
        """
        current = await self._require(budget_id)
        updated = self._merge(current, changes)
        if updated.auto_save_enabled:
            updated = self._with_allocation(updated)
        elif current.auto_save_enabled:
            updated = updated.model_copy(update={"savings_allocation": Decimal("0")})
            updated.recompute_remaining()

        saved = await self._persist_update(current, updated)
        if saved.auto_save_enabled and saved.linked_savings_goals and saved.savings_allocation > 0:
            await run_side_effect(
                "budget_auto_save",
                saved.id,
                self._record_auto_save(saved),
                self._audit,
            )
        return saved

    async def delete(self, budget_id: str) -> bool:
        """Delete a budget. Returns False if it was already gone."""
        return await self._delete_entity(budget_id) is not None

    @staticmethod
    def _with_allocation(budget: Budget) -> Budget:
        allocation = budget.amount * budget.auto_save_percentage / HUNDRED
        updated = budget.model_copy(update={"savings_allocation": allocation})
        updated.recompute_remaining()
        return updated

    async def _record_auto_save(self, budget: Budget) -> None:
        if self._expenses is None:
            raise RuntimeError("No expense service attached for automated savings")
        await self._expenses.create(Expense(
            title=f"Automated Savings from {budget.name}",
            amount=budget.savings_allocation,
            category="Savings",
            payment_method=PaymentMethod.AUTOMATED_SAVING,
            budget_id=budget.id,
            linked_savings_goals=list(budget.linked_savings_goals),
            savings_contribution=budget.savings_allocation,
            is_automated_saving=True,
        ))

    async def adjust_spent(
        self,
        budget_id: str,
        delta: Decimal,
        expense_id: Optional[str] = None,
        unlink: bool = False,
    ) -> Budget:
        """
        Add `delta` (negative to reverse) to a budget's spent total.

        Args:
            budget_id: Budget to adjust
            delta: Amount to add to spent
            expense_id: Expense to link (or unlink) on the budget
            unlink: Remove expense_id from linked_expenses instead of adding it

        Raises:
            NotFoundError: If the budget does not exist locally
        """
        current = await self._require(budget_id)
        linked = list(current.linked_expenses)
        if expense_id:
            if unlink and expense_id in linked:
                linked.remove(expense_id)
            elif not unlink and expense_id not in linked:
                linked.append(expense_id)

        updated = current.model_copy(update={
            "spent": current.spent + delta,
            "linked_expenses": linked,
        })
        updated.recompute_remaining()
        saved = await self._persist_update(current, updated)

        if delta > 0:
            await self._check_threshold(saved)
        return saved

    async def update_spending(self, budget_id: str, amount: Decimal) -> Budget:
        """Record `amount` of spending against a budget."""
        return await self.adjust_spent(budget_id, Decimal(str(amount)))

    async def link_savings_goal(
        self,
        budget_id: str,
        goal_id: str,
        auto_save_percentage: Optional[Decimal] = None,
    ) -> Budget:
        """Link a savings goal and optionally set the auto-save percentage."""
        current = await self._require(budget_id)
        changes: dict[str, Any] = {}
        if goal_id not in current.linked_savings_goals:
            changes["linked_savings_goals"] = [*current.linked_savings_goals, goal_id]
        if auto_save_percentage is not None:
            changes["auto_save_percentage"] = Decimal(str(auto_save_percentage))
        if not changes:
            return current
        return await self.update(budget_id, changes)

    async def _check_threshold(self, budget: Budget) -> None:
        if self._notifier is None or budget.amount <= 0:
            return

        remaining_percentage = float(budget.remaining_amount / budget.amount * HUNDRED)
        if budget.remaining_amount <= 0:
            alert_type = "limit_reached"
        elif budget.remaining_amount < budget.amount * Decimal(str(self._settings.budget_alert_threshold)):
            alert_type = "threshold"
        else:
            return

        await run_side_effect(
            "budget_alert",
            budget.id,
            self._notifier.send_budget_alert(budget.id, alert_type, remaining_percentage),
            self._audit,
        )

    # -------------------------------------------------------------------------
    # Analytics
    # -------------------------------------------------------------------------

    async def get_budget_analytics(self) -> list[BudgetUtilization]:
        """Per-budget utilization, most utilized first."""
        rows = [
            BudgetUtilization(
                budget_id=b.id,
                name=b.name,
                amount=b.amount,
                spent=b.spent,
                savings_allocation=b.savings_allocation,
                remaining_amount=b.remaining_amount,
                utilization_percentage=b.utilization_percentage,
                linked_expense_count=len(b.linked_expenses),
                is_over_budget=b.remaining_amount < 0,
            )
            for b in await self.get_all()
        ]
        rows.sort(key=lambda r: r.utilization_percentage, reverse=True)
        return rows

    async def get_budget_statistics(self) -> BudgetStatistics:
        budgets = await self.get_all()
        if not budgets:
            return BudgetStatistics()
        return BudgetStatistics(
            count=len(budgets),
            total_budgeted=sum((b.amount for b in budgets), Decimal("0")),
            total_spent=sum((b.spent for b in budgets), Decimal("0")),
            total_savings_allocation=sum((b.savings_allocation for b in budgets), Decimal("0")),
            total_remaining=sum((b.remaining_amount for b in budgets), Decimal("0")),
            over_budget_ids=[b.id for b in budgets if b.remaining_amount < 0],
            average_utilization=sum(b.utilization_percentage for b in budgets) / len(budgets),
        )
