"""
Savings Service

Savings goal mutations. The balance of a goal only moves through recorded
contributions (positive) and withdrawals or reversals (negative); every
movement is appended to the goal's saving_history.

After each movement the goal's milestones are re-evaluated. A milestone
completes once, when the balance first reaches its target, and is never
un-completed by a later withdrawal. Milestone and progress notifications
are best effort.
"""

from decimal import Decimal
from typing import Any, Optional

from buzo_sync.entities.base import EntityService
from buzo_sync.entities.side_effects import run_side_effect
from buzo_sync.models.analytics import SavingsAnalytics
from buzo_sync.models.entities import (
    ContributionRecord,
    ContributionSource,
    EntityKind,
    Milestone,
    SavingsGoal,
)


# Only contributions and withdrawals may change these
BALANCE_FIELDS = {"current_amount", "saving_history"}

PROGRESS_STEP = 25


def _keep_completed_milestones(current: SavingsGoal, updated: SavingsGoal) -> None:
    """Carry completion over from `current` for every milestone still present by id."""
    completed = {m.id: m for m in current.milestones if m.is_completed}
    for milestone in updated.milestones:
        previous = completed.get(milestone.id)
        if previous is not None and not milestone.is_completed:
            milestone.is_completed = True
            milestone.completed_date = previous.completed_date


class SavingsService(EntityService[SavingsGoal]):
    """Savings goal mutations, contributions and milestones."""

    kind = EntityKind.SAVINGS_GOAL
    model = SavingsGoal

    def _create_priority(self) -> int:
        return self._settings.savings_goal_create_priority

    async def create(self, goal: SavingsGoal) -> SavingsGoal:
        goal = goal.model_copy(deep=True)
        goal.complete_reached_milestones()
        goal.is_completed = goal.current_amount >= goal.target_amount
        return await self._create_entity(goal)

    async def update(self, goal_id: str, changes: dict[str, Any]) -> SavingsGoal:
        """
        Update goal details (title, target, dates, milestones).

        Raises:
            NotFoundError: If the goal does not exist locally
            ValueError: If the changes touch the balance directly
        """
        balance_changes = BALANCE_FIELDS.intersection(changes)
        if balance_changes:
            raise ValueError(
                f"Use add_contribution or withdraw_funds to change {sorted(balance_changes)}"
            )
        current = await self._require(goal_id)
        updated = self._merge(current, changes)
        _keep_completed_milestones(current, updated)
        completed = updated.complete_reached_milestones()
        updated.is_completed = updated.current_amount >= updated.target_amount

        saved = await self._persist_update(current, updated)
        await self._send_milestone_alerts(saved, completed)
        return saved

    async def delete(self, goal_id: str) -> bool:
        return await self._delete_entity(goal_id) is not None

    async def add_contribution(
        self,
        goal_id: str,
        amount: Decimal,
        source: ContributionSource = ContributionSource.MANUAL,
        expense_id: Optional[str] = None,
        budget_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> SavingsGoal:
        """
        Credit a goal and complete any milestones it reaches.

        Raises:
            NotFoundError: If the goal does not exist locally
            ValueError: If amount is not positive
        """
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValueError("Contribution amount must be positive")
        record = ContributionRecord(
            amount=amount,
            source=source,
            expense_id=expense_id,
            budget_id=budget_id,
            note=note,
        )
        return await self._apply(goal_id, record)

    async def withdraw_funds(self, goal_id: str, amount: Decimal, note: Optional[str] = None) -> SavingsGoal:
        """
        Take money out of a goal. Completed milestones stay completed.

        Raises:
            ValueError: If amount is not positive or exceeds the balance
        """
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValueError("Withdrawal amount must be positive")
        goal = await self._require(goal_id)
        if amount > goal.current_amount:
            raise ValueError(
                f"Cannot withdraw {amount}: only {goal.current_amount} saved in {goal_id}"
            )
        record = ContributionRecord(amount=-amount, source=ContributionSource.WITHDRAWAL, note=note)
        return await self._apply(goal_id, record)

    async def reverse_contribution(
        self,
        goal_id: str,
        amount: Decimal,
        source: ContributionSource,
        expense_id: Optional[str] = None,
    ) -> SavingsGoal:
        """
        Undo (part of) an earlier contribution, e.g. when its expense is
        deleted. Never takes the balance below zero.
        """
        goal = await self._require(goal_id)
        amount = min(Decimal(str(amount)), goal.current_amount)
        if amount <= 0:
            return goal
        record = ContributionRecord(
            amount=-amount,
            source=source,
            expense_id=expense_id,
            note="reversal",
        )
        return await self._apply(goal_id, record)

    async def add_milestone(self, goal_id: str, title: str, target_amount: Decimal) -> SavingsGoal:
        """Add a milestone; it completes immediately if the balance already reaches it."""
        current = await self._require(goal_id)
        updated = current.model_copy(deep=True)
        updated.milestones.append(Milestone(title=title, target_amount=Decimal(str(target_amount))))
        completed = updated.complete_reached_milestones()

        saved = await self._persist_update(current, updated)
        await self._send_milestone_alerts(saved, completed)
        return saved

    async def _apply(self, goal_id: str, record: ContributionRecord) -> SavingsGoal:
        current = await self._require(goal_id)
        updated = current.model_copy(deep=True)
        completed = updated.apply_contribution(record)

        saved = await self._persist_update(current, updated)
        self._logger.info(
            "savings_balance_changed",
            goal_id=goal_id,
            amount=str(record.amount),
            source=record.source.value,
            balance=str(saved.current_amount),
        )

        await self._send_milestone_alerts(saved, completed)
        old_step = int(current.progress_percentage // PROGRESS_STEP)
        new_step = int(saved.progress_percentage // PROGRESS_STEP)
        if new_step > old_step and self._notifier is not None:
            await run_side_effect(
                "savings_progress_alert",
                saved.id,
                self._notifier.send_savings_progress_alert(saved.id, saved.progress_percentage),
                self._audit,
            )
        return saved

    async def _send_milestone_alerts(self, goal: SavingsGoal, milestones: list[Milestone]) -> None:
        if self._notifier is None:
            return
        for milestone in milestones:
            await run_side_effect(
                "milestone_alert",
                goal.id,
                self._notifier.send_milestone_alert(goal.id, milestone.id, milestone.title),
                self._audit,
            )

    async def get_savings_analytics(self) -> SavingsAnalytics:
        goals = await self.get_all()
        if not goals:
            return SavingsAnalytics()

        by_source: dict[str, Decimal] = {}
        for goal in goals:
            for record in goal.saving_history:
                by_source[record.source.value] = by_source.get(record.source.value, Decimal("0")) + record.amount

        total_saved = sum((g.current_amount for g in goals), Decimal("0"))
        total_target = sum((g.target_amount for g in goals), Decimal("0"))
        return SavingsAnalytics(
            goal_count=len(goals),
            completed_count=sum(1 for g in goals if g.is_completed),
            total_saved=total_saved,
            total_target=total_target,
            overall_progress=float(total_saved / total_target * 100),
            completed_milestones=sum(1 for g in goals for m in g.milestones if m.is_completed),
            total_milestones=sum(len(g.milestones) for g in goals),
            contributions_by_source=by_source,
        )
