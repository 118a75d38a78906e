"""
Expense Service

Expense mutations plus their cascade into budgets and savings goals:

- An expense linked to a budget adds its amount to the budget's spent
  total. Updates apply only the difference; moving an expense to another
  budget is two adjustments (old budget minus old amount, new budget plus
  new amount). Deleting reverses the adjustment.
- An expense with a savings contribution credits every linked goal with
  that contribution (source "automated" for automated savings, "manual"
  otherwise). Updates credit or reverse the difference per goal.

Automated savings expenses are created by budget auto-save; their amount
is already reserved in the budget's savings_allocation, so they never
adjust the budget's spent total.

Cascade failures are logged side-effect outcomes; they never fail the
expense mutation itself.
"""

from decimal import Decimal
from typing import Any, Optional

from buzo_sync.entities.base import EntityService
from buzo_sync.entities.budget import BudgetService
from buzo_sync.entities.savings import SavingsService
from buzo_sync.entities.side_effects import SideEffectOutcome, run_side_effect
from buzo_sync.models.analytics import ExpenseFilter, ExpenseStatistics
from buzo_sync.models.entities import ContributionSource, EntityKind, Expense
from buzo_sync.services.integrations import InsightGenerator


ZERO = Decimal("0")


def _budget_of(expense: Expense) -> Optional[str]:
    """The budget whose spent total this expense counts towards."""
    return None if expense.is_automated_saving else expense.budget_id


def _contributions_of(expense: Expense) -> dict[str, Decimal]:
    if not expense.contributes_to_savings:
        return {}
    return {goal_id: expense.savings_contribution for goal_id in expense.linked_savings_goals}


def _source_of(expense: Expense) -> ContributionSource:
    return ContributionSource.AUTOMATED if expense.is_automated_saving else ContributionSource.MANUAL


class ExpenseService(EntityService[Expense]):
    """Expense mutations and the budget/savings cascade."""

    kind = EntityKind.EXPENSE
    model = Expense

    def __init__(
        self,
        *args,
        budgets: Optional[BudgetService] = None,
        savings: Optional[SavingsService] = None,
        insights: Optional[InsightGenerator] = None,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self._budgets = budgets
        self._savings = savings
        self._insights = insights

    def _priority_for(self, operation) -> int:
        # Every expense mutation is served ahead of generic updates
        return max(self._settings.expense_priority, super()._priority_for(operation))

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def create(self, expense: Expense) -> Expense:
        """
        Record an expense and apply its budget and savings effects.

        Raises:
            UnauthenticatedError: If no user is signed in
        """
        created = await self._create_entity(expense)

        budget_id = _budget_of(created)
        if budget_id:
            await self._adjust_budget(budget_id, created.amount, created.id)
        for goal_id, amount in _contributions_of(created).items():
            await self._credit_goal(goal_id, amount, created)

        if self._insights is not None:
            await run_side_effect(
                "financial_insights",
                created.id,
                self._insights.generate_for_expense(created.id, created.user_id),
                self._audit,
            )
        return created

    async def update(self, expense_id: str, changes: dict[str, Any]) -> Expense:
        """
        Update an expense and reconcile budget and savings by difference.

        Raises:
            NotFoundError: If the expense does not exist locally
            ValueError: If the changes are invalid
        """
        previous, updated = await self._update_entity(expense_id, changes)

        old_budget, new_budget = _budget_of(previous), _budget_of(updated)
        if old_budget and old_budget == new_budget:
            delta = updated.amount - previous.amount
            if delta:
                await self._adjust_budget(old_budget, delta, updated.id)
        else:
            if old_budget:
                await self._adjust_budget(old_budget, -previous.amount, updated.id, unlink=True)
            if new_budget:
                await self._adjust_budget(new_budget, updated.amount, updated.id)

        old_contributions = _contributions_of(previous)
        new_contributions = _contributions_of(updated)
        for goal_id in dict.fromkeys([*old_contributions, *new_contributions]):
            delta = new_contributions.get(goal_id, ZERO) - old_contributions.get(goal_id, ZERO)
            if delta > 0:
                await self._credit_goal(goal_id, delta, updated)
            elif delta < 0:
                await self._reverse_goal(goal_id, -delta, previous)
        return updated

    async def delete(self, expense_id: str) -> bool:
        """
        Delete an expense and reverse its budget and savings effects.

        Returns:
            False if the expense was already gone
        """
        deleted = await self._delete_entity(expense_id)
        if deleted is None:
            return False

        budget_id = _budget_of(deleted)
        if budget_id:
            await self._adjust_budget(budget_id, -deleted.amount, deleted.id, unlink=True)
        for goal_id, amount in _contributions_of(deleted).items():
            await self._reverse_goal(goal_id, amount, deleted)
        return True

    # -------------------------------------------------------------------------
    # Side effects
    # -------------------------------------------------------------------------

    async def _adjust_budget(
        self,
        budget_id: str,
        delta: Decimal,
        expense_id: str,
        unlink: bool = False,
    ) -> Optional[SideEffectOutcome]:
        if self._budgets is None:
            return None
        return await run_side_effect(
            "budget_spent",
            expense_id,
            self._budgets.adjust_spent(budget_id, delta, expense_id=expense_id, unlink=unlink),
            self._audit,
        )

    async def _credit_goal(self, goal_id: str, amount: Decimal, expense: Expense) -> Optional[SideEffectOutcome]:
        if self._savings is None:
            return None
        return await run_side_effect(
            "savings_contribution",
            expense.id,
            self._savings.add_contribution(
                goal_id,
                amount,
                source=_source_of(expense),
                expense_id=expense.id,
                budget_id=expense.budget_id,
            ),
            self._audit,
        )

    async def _reverse_goal(self, goal_id: str, amount: Decimal, expense: Expense) -> Optional[SideEffectOutcome]:
        if self._savings is None:
            return None
        return await run_side_effect(
            "savings_reversal",
            expense.id,
            self._savings.reverse_contribution(
                goal_id,
                amount,
                source=_source_of(expense),
                expense_id=expense.id,
            ),
            self._audit,
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def filter_expenses(self, criteria: ExpenseFilter) -> list[Expense]:
        """Expenses matching every given criterion, newest first."""
        search = criteria.search.lower() if criteria.search else None
        matches = []
        for expense in await self.get_all():
            if criteria.category and expense.category != criteria.category:
                continue
            if criteria.budget_id and expense.budget_id != criteria.budget_id:
                continue
            if criteria.payment_method and expense.payment_method != criteria.payment_method:
                continue
            if criteria.date_from and expense.date < criteria.date_from:
                continue
            if criteria.date_to and expense.date > criteria.date_to:
                continue
            if criteria.min_amount is not None and expense.amount < criteria.min_amount:
                continue
            if criteria.max_amount is not None and expense.amount > criteria.max_amount:
                continue
            if criteria.tags and not set(criteria.tags).issubset(expense.tags):
                continue
            if search and search not in expense.title.lower() and search not in (expense.description or "").lower():
                continue
            matches.append(expense)

        matches.sort(key=lambda e: e.date, reverse=True)
        return matches

    async def get_expense_statistics(self, criteria: Optional[ExpenseFilter] = None) -> ExpenseStatistics:
        expenses = await self.filter_expenses(criteria or ExpenseFilter())
        if not expenses:
            return ExpenseStatistics()

        by_category: dict[str, Decimal] = {}
        by_method: dict[str, Decimal] = {}
        for expense in expenses:
            by_category[expense.category] = by_category.get(expense.category, ZERO) + expense.amount
            method = expense.payment_method.value
            by_method[method] = by_method.get(method, ZERO) + expense.amount

        total = sum((e.amount for e in expenses), ZERO)
        return ExpenseStatistics(
            count=len(expenses),
            total=total,
            average=total / len(expenses),
            by_category=by_category,
            by_payment_method=by_method,
        )
