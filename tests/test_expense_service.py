"""
Tests for the expense service and its cascade into budgets and savings.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from buzo_sync.entities import UnauthenticatedError
from buzo_sync.models import (
    Budget,
    ContributionSource,
    EntityKind,
    EntityOrigin,
    Expense,
    ExpenseFilter,
    PaymentMethod,
    SavingsGoal,
    SyncEventType,
    SyncOperation,
)
from buzo_sync.services.remote import UnreachableError
from buzo_sync.services.storage import LocalAuditStorage, NotFoundError


def make_expense(amount: str = "200", **overrides) -> Expense:
    data = {"title": "Groceries", "amount": Decimal(amount), "category": "Food"}
    data.update(overrides)
    return Expense(**data)


GOAL_DATE = datetime(2030, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
async def budget(app):
    return await app.budgets.create(Budget(name="Food", amount=Decimal("1000"), category="Food"))


@pytest.fixture
async def goal(app):
    return await app.savings.create(SavingsGoal(
        title="Vacation",
        target_amount=Decimal("1000"),
        target_date=GOAL_DATE,
    ))


class TestBudgetCascade:
    """Tests for expense amounts flowing into budget spent."""

    @pytest.mark.asyncio
    async def test_create_update_delete_cascade(self, app, budget):
        """Test spent and remaining follow the expense through its lifecycle."""
        created = await app.expenses.create(make_expense("200", budget_id=budget.id))
        current = await app.budgets.get(budget.id)
        assert current.spent == Decimal("200")
        assert current.remaining_amount == Decimal("800")
        assert created.id in current.linked_expenses

        await app.expenses.update(created.id, {"amount": Decimal("300")})
        current = await app.budgets.get(budget.id)
        assert current.spent == Decimal("300")
        assert current.remaining_amount == Decimal("700")

        assert await app.expenses.delete(created.id)
        current = await app.budgets.get(budget.id)
        assert current.spent == Decimal("0")
        assert current.remaining_amount == Decimal("1000")
        assert created.id not in current.linked_expenses

    @pytest.mark.asyncio
    async def test_cascade_reaches_backend(self, app, budget, gateways):
        """Test the budget adjustment is pushed remotely when online."""
        await app.expenses.create(make_expense("150", budget_id=budget.id))

        row = gateways[EntityKind.BUDGET].rows[budget.id]
        assert Decimal(row["spent"]) == Decimal("150")
        assert await app.queue.list_items() == []

    @pytest.mark.asyncio
    async def test_moving_expense_between_budgets(self, app, budget):
        """Test changing budget_id moves the amount."""
        other = await app.budgets.create(Budget(name="Fun", amount=Decimal("500"), category="Fun"))
        created = await app.expenses.create(make_expense("100", budget_id=budget.id))

        await app.expenses.update(created.id, {"budget_id": other.id, "amount": Decimal("120")})

        assert (await app.budgets.get(budget.id)).spent == Decimal("0")
        moved_to = await app.budgets.get(other.id)
        assert moved_to.spent == Decimal("120")
        assert moved_to.remaining_amount == Decimal("380")

    @pytest.mark.asyncio
    async def test_unrelated_update_leaves_budget_alone(self, app, budget):
        """Test a title change does not touch spent."""
        created = await app.expenses.create(make_expense("50", budget_id=budget.id))
        await app.expenses.update(created.id, {"title": "Market"})

        assert (await app.budgets.get(budget.id)).spent == Decimal("50")

    @pytest.mark.asyncio
    async def test_missing_budget_does_not_fail_expense(self, app, store):
        """Test a failed cascade is logged, not raised."""
        created = await app.expenses.create(make_expense("10", budget_id="no-such-budget"))

        assert await app.expenses.get(created.id) is not None
        events = await LocalAuditStorage(store).get_events_by_entity(created.id)
        assert any(e.event_type == SyncEventType.SIDE_EFFECT_FAILED for e in events)

    @pytest.mark.asyncio
    async def test_cascade_offline(self, app, budget, connectivity):
        """Test the budget is adjusted locally and queued while offline."""
        connectivity.set_online(False)
        await app.expenses.create(make_expense("75", budget_id=budget.id))

        assert (await app.budgets.get(budget.id)).spent == Decimal("75")
        items = await app.queue.list_items()
        kinds = {(item.entity_kind, item.operation) for item in items}
        assert (EntityKind.EXPENSE, SyncOperation.CREATE) in kinds
        assert (EntityKind.BUDGET, SyncOperation.UPDATE) in kinds


class TestSavingsCascade:
    """Tests for expense contributions to savings goals."""

    @pytest.mark.asyncio
    async def test_contribution_credited_and_reversed(self, app, goal):
        """Test a contributing expense credits its goal and deleting it reverses."""
        created = await app.expenses.create(make_expense(
            "50",
            linked_savings_goals=[goal.id],
            savings_contribution=Decimal("50"),
        ))
        credited = await app.savings.get(goal.id)
        assert credited.current_amount == Decimal("50")
        assert credited.saving_history[-1].source == ContributionSource.MANUAL
        assert credited.saving_history[-1].expense_id == created.id

        await app.expenses.delete(created.id)
        assert (await app.savings.get(goal.id)).current_amount == Decimal("0")

    @pytest.mark.asyncio
    async def test_contribution_delta_on_update(self, app, goal):
        """Test changing the contribution credits only the difference."""
        created = await app.expenses.create(make_expense(
            "50",
            linked_savings_goals=[goal.id],
            savings_contribution=Decimal("50"),
        ))
        await app.expenses.update(created.id, {"savings_contribution": Decimal("80")})
        assert (await app.savings.get(goal.id)).current_amount == Decimal("80")

        await app.expenses.update(created.id, {"savings_contribution": Decimal("30")})
        assert (await app.savings.get(goal.id)).current_amount == Decimal("30")

    @pytest.mark.asyncio
    async def test_automated_saving_skips_budget(self, app, budget, goal):
        """Test automated savings expenses never count as budget spending."""
        await app.expenses.create(make_expense(
            "100",
            category="Savings",
            payment_method=PaymentMethod.AUTOMATED_SAVING,
            budget_id=budget.id,
            linked_savings_goals=[goal.id],
            savings_contribution=Decimal("100"),
            is_automated_saving=True,
        ))

        assert (await app.budgets.get(budget.id)).spent == Decimal("0")
        credited = await app.savings.get(goal.id)
        assert credited.current_amount == Decimal("100")
        assert credited.saving_history[-1].source == ContributionSource.AUTOMATED


class TestPrimaryMutations:
    """Tests for the online/offline branching of the expense itself."""

    @pytest.mark.asyncio
    async def test_online_create_goes_straight_to_backend(self, app, gateways):
        """Test an online create is not queued."""
        created = await app.expenses.create(make_expense())

        assert created.origin == EntityOrigin.REMOTE
        assert created.user_id == "user-123"
        assert created.id in gateways[EntityKind.EXPENSE].rows
        assert await app.queue.list_items() == []

    @pytest.mark.asyncio
    async def test_backend_failure_falls_back_to_queue(self, app, gateways):
        """Test a failed remote create is kept locally and queued."""
        gateways[EntityKind.EXPENSE].fail_with = UnreachableError("timed out")

        created = await app.expenses.create(make_expense())

        assert created.is_local_only
        items = await app.queue.list_items()
        assert [(i.entity_id, i.operation) for i in items] == [(created.id, SyncOperation.CREATE)]

    @pytest.mark.asyncio
    async def test_create_requires_user(self, app, identity):
        """Test creating while signed out is rejected."""
        identity.sign_out()
        with pytest.raises(UnauthenticatedError):
            await app.expenses.create(make_expense())

    @pytest.mark.asyncio
    async def test_update_rejects_protected_fields(self, app):
        """Test ids and bookkeeping fields cannot be changed."""
        created = await app.expenses.create(make_expense())
        with pytest.raises(ValueError, match="cannot be updated"):
            await app.expenses.update(created.id, {"id": "other"})

    @pytest.mark.asyncio
    async def test_update_rejects_invalid_values(self, app):
        """Test validation still applies to updates."""
        created = await app.expenses.create(make_expense())
        with pytest.raises(ValueError):
            await app.expenses.update(created.id, {"amount": Decimal("-5")})

    @pytest.mark.asyncio
    async def test_update_missing_expense(self, app):
        """Test updating an unknown id raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await app.expenses.update("missing", {"title": "x"})

    @pytest.mark.asyncio
    async def test_delete_missing_expense(self, app):
        """Test deleting twice is harmless."""
        assert await app.expenses.delete("missing") is False

    @pytest.mark.asyncio
    async def test_online_update_sends_only_changes(self, app, gateways):
        """Test the remote update payload carries the changed fields."""
        created = await app.expenses.create(make_expense())
        await app.expenses.update(created.id, {"title": "Market"})

        row = gateways[EntityKind.EXPENSE].rows[created.id]
        assert row["title"] == "Market"
        assert gateways[EntityKind.EXPENSE].calls_for("update") == [created.id]


class TestQueries:
    """Tests for filtering and statistics."""

    @pytest.mark.asyncio
    async def test_filter_and_statistics(self, app):
        """Test filters combine and statistics aggregate the matches."""
        await app.expenses.create(make_expense("10", title="Coffee", category="Food", tags=["work"]))
        await app.expenses.create(make_expense("30", title="Dinner", category="Food"))
        await app.expenses.create(make_expense(
            "100", title="Train", category="Travel", payment_method=PaymentMethod.DEBIT_CARD
        ))

        food = await app.expenses.filter_expenses(ExpenseFilter(category="Food"))
        assert {e.title for e in food} == {"Coffee", "Dinner"}

        tagged = await app.expenses.filter_expenses(ExpenseFilter(tags=["work"]))
        assert [e.title for e in tagged] == ["Coffee"]

        search = await app.expenses.filter_expenses(ExpenseFilter(search="train"))
        assert [e.title for e in search] == ["Train"]

        stats = await app.expenses.get_expense_statistics()
        assert stats.count == 3
        assert stats.total == Decimal("140")
        assert stats.by_category == {"Food": Decimal("40"), "Travel": Decimal("100")}
        assert stats.by_payment_method["debit_card"] == Decimal("100")

    @pytest.mark.asyncio
    async def test_statistics_empty(self, app):
        """Test statistics with no expenses."""
        stats = await app.expenses.get_expense_statistics()
        assert stats.count == 0
        assert stats.total == Decimal("0")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
