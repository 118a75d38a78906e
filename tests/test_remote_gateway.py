"""
Tests for the remote gateway layer: error classification and row mapping.

The Supabase gateway itself is exercised with a stubbed query object; no
network is used.
"""

from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest
from postgrest.exceptions import APIError

from buzo_sync.models import (
    Budget,
    ContributionRecord,
    ContributionSource,
    EntityKind,
    EntityOrigin,
    Expense,
    Milestone,
    SavingsGoal,
)
from buzo_sync.services.remote import (
    AuthRequiredError,
    BudgetRowMapper,
    DuplicateKeyError,
    ExpenseRowMapper,
    RemoteError,
    RemoteNotFoundError,
    SavingsGoalGateway,
    SavingsGoalRowMapper,
    SupabaseEntityGateway,
    UnreachableError,
    classify_remote_error,
)


class TestClassifyRemoteError:
    """Tests for mapping backend error signatures to the taxonomy."""

    def test_duplicate_key_by_code(self):
        """Test the unique-violation SQL state."""
        assert isinstance(classify_remote_error("conflict", code="23505"), DuplicateKeyError)

    def test_duplicate_key_by_message(self):
        """Test the duplicate-key message without a code."""
        error = classify_remote_error('duplicate key value violates unique constraint "expenses_pkey"')
        assert isinstance(error, DuplicateKeyError)

    def test_not_found_by_code(self):
        """Test PostgREST's no-rows code."""
        assert isinstance(classify_remote_error("JSON object requested", code="PGRST116"), RemoteNotFoundError)

    def test_not_found_by_status(self):
        """Test HTTP 404."""
        assert isinstance(classify_remote_error("missing", status=404), RemoteNotFoundError)

    def test_schema_error_is_not_not_found(self):
        """Test an undefined-column error is not mistaken for a missing row."""
        error = classify_remote_error('column "foo" does not exist', code="42703")
        assert not isinstance(error, RemoteNotFoundError)
        assert isinstance(error, RemoteError)

    def test_auth_errors(self):
        """Test auth codes, statuses and JWT messages."""
        assert isinstance(classify_remote_error("denied", code="42501"), AuthRequiredError)
        assert isinstance(classify_remote_error("nope", status=401), AuthRequiredError)
        assert isinstance(classify_remote_error("JWT expired"), AuthRequiredError)

    def test_server_errors_are_unreachable(self):
        """Test 5xx responses are retryable."""
        assert isinstance(classify_remote_error("bad gateway", status=502), UnreachableError)

    def test_other_errors(self):
        """Test anything else is a plain RemoteError carrying its code."""
        error = classify_remote_error("check constraint", code="23514")
        assert type(error) is RemoteError
        assert error.code == "23514"


class TestRowMappers:
    """Tests for entity <-> row mapping."""

    def test_expense_to_row(self):
        """Test renames, numeric money and no local bookkeeping."""
        expense = Expense(
            title="Taxi",
            amount=Decimal("23.40"),
            category="Travel",
            receipt_image="receipts/1.jpg",
            origin=EntityOrigin.LOCAL,
        )
        row = ExpenseRowMapper().to_row(expense, user_id="u1")

        assert row["amount"] == 23.4
        assert row["receipt_image_path"] == "receipts/1.jpg"
        assert "receipt_image" not in row
        assert "origin" not in row
        assert row["user_id"] == "u1"
        assert row["payment_method"] == "other"

    def test_expense_from_row(self):
        """Test NULL columns fall back to defaults and origin is remote."""
        row = {
            "id": "e1",
            "title": "Taxi",
            "amount": 23.4,
            "category": "Travel",
            "receipt_image_path": "receipts/1.jpg",
            "budget_id": None,
            "tags": None,
            "created_at": "2024-03-01T10:00:00+00:00",
            "updated_at": "2024-03-01T10:00:00+00:00",
            "unknown_column": "ignored",
        }
        expense = ExpenseRowMapper().from_row(row)

        assert expense.id == "e1"
        assert expense.amount == Decimal("23.4")
        assert expense.receipt_image == "receipts/1.jpg"
        assert expense.tags == []
        assert expense.origin == EntityOrigin.REMOTE

    def test_changes_to_row_drops_id(self):
        """Test the id is never part of an update payload."""
        row = BudgetRowMapper().changes_to_row({"id": "b1", "spent": "150.00", "origin": "local"})
        assert row == {"spent": 150.0}

    def test_budget_from_row_derives_remaining(self):
        """Test remaining_amount is recomputed from the row's parts."""
        budget = BudgetRowMapper().from_row({
            "id": "b1",
            "name": "Food",
            "amount": 1000,
            "spent": 250,
            "savings_allocation": 100,
            "remaining_amount": 0,
            "category": "Food",
        })
        assert isinstance(budget, Budget)
        assert budget.remaining_amount == Decimal("650")

    def test_savings_goal_child_rows(self):
        """Test milestones and history map to their own tables, not goal columns."""
        goal = SavingsGoal(
            title="Car",
            target_amount=Decimal("5000"),
            target_date=datetime(2030, 1, 1, tzinfo=timezone.utc),
            milestones=[Milestone(title="First 1k", target_amount=Decimal("1000"))],
            saving_history=[
                ContributionRecord(amount=Decimal("300"), note="bonus"),
                ContributionRecord(amount=Decimal("-50"), source=ContributionSource.WITHDRAWAL),
            ],
            current_amount=Decimal("250"),
        )
        mapper = SavingsGoalRowMapper()

        row = mapper.to_row(goal, user_id="u1")
        assert "milestones" not in row
        assert "saving_history" not in row
        assert row["target_date"] == "2030-01-01T00:00:00Z"

        milestones = mapper.milestone_rows(goal.id, goal.milestones, "u1")
        assert milestones[0]["goal_id"] == goal.id
        assert milestones[0]["amount"] == 1000.0
        assert milestones[0]["is_reached"] is False

        contributions = mapper.contribution_rows(goal.id, goal.saving_history, "u1")
        assert contributions[0]["metadata"] == {"note": "bonus"}
        assert contributions[1]["source"] == "manual"
        assert contributions[1]["metadata"] == {"kind": "withdrawal"}

    def test_savings_goal_from_embedded_rows(self):
        """Test a goal read with its child tables embedded is rebuilt in order."""
        row = {
            "id": "g1",
            "title": "Car",
            "target_amount": 5000,
            "current_amount": 250,
            "start_date": "2024-01-01T00:00:00+00:00",
            "target_date": "2030-01-01T00:00:00+00:00",
            "icon": "car",
            "milestones": [
                {"id": "m2", "title": "Second", "amount": 2000, "is_reached": False, "display_order": 1},
                {
                    "id": "m1",
                    "title": "First",
                    "amount": 1000,
                    "is_reached": True,
                    "completed_date": "2024-02-01T00:00:00+00:00",
                    "display_order": 0,
                },
            ],
            "contributions": [
                {
                    "id": "c2",
                    "amount": -50,
                    "source": "manual",
                    "metadata": {"kind": "withdrawal"},
                    "created_at": "2024-03-01T00:00:00+00:00",
                },
                {"id": "c1", "amount": 300, "source": "automated", "created_at": "2024-02-01T00:00:00+00:00"},
            ],
        }
        goal = SavingsGoalRowMapper().from_row(row)

        assert [m.id for m in goal.milestones] == ["m1", "m2"]
        assert goal.milestones[0].is_completed
        assert [c.id for c in goal.saving_history] == ["c1", "c2"]
        assert goal.saving_history[0].source == ContributionSource.AUTOMATED
        assert goal.saving_history[1].source == ContributionSource.WITHDRAWAL
        assert goal.saving_history[1].amount == Decimal("-50")


class _StubQuery:
    """Stands in for a PostgREST request builder."""

    def __init__(self, outcome):
        self._outcome = outcome

    async def execute(self):
        if isinstance(self._outcome, Exception):
            raise self._outcome
        return type("Response", (), {"data": self._outcome})()


class TestSupabaseExecute:
    """Tests for error translation around a single request."""

    def _gateway(self) -> SupabaseEntityGateway:
        return SupabaseEntityGateway(
            EntityKind.EXPENSE,
            "expenses",
            client=None,
            mapper=ExpenseRowMapper(),
            timeout_seconds=1.0,
        )

    @pytest.mark.asyncio
    async def test_returns_rows(self):
        """Test a successful response yields its rows."""
        rows = await self._gateway()._execute(_StubQuery([{"id": "e1"}]))
        assert rows == [{"id": "e1"}]

    @pytest.mark.asyncio
    async def test_api_error_is_classified(self):
        """Test PostgREST errors go through the classifier."""
        error = APIError({"message": "duplicate key value", "code": "23505"})
        with pytest.raises(DuplicateKeyError):
            await self._gateway()._execute(_StubQuery(error))

    @pytest.mark.asyncio
    async def test_transport_error_is_unreachable(self):
        """Test httpx failures surface as UnreachableError."""
        with pytest.raises(UnreachableError):
            await self._gateway()._execute(_StubQuery(httpx.ConnectError("refused")))

    def test_identity(self):
        """Test kind and table are exposed."""
        gateway = self._gateway()
        assert gateway.kind == EntityKind.EXPENSE
        assert gateway.table == "expenses"


class _RecordingTable:
    """Chainable stand-in for a PostgREST table builder that records calls."""

    def __init__(self, client, name):
        self._client = client
        self._name = name
        self.calls = []

    def __getattr__(self, method):
        def call(*args, **kwargs):
            self.calls.append((method, args, kwargs))
            return self
        return call

    async def execute(self):
        self._client.requests.append((self._name, self.calls))
        return type("Response", (), {"data": self._client.respond(self._name, self.calls)})()


class _StubSupabaseClient:
    """Answers like a Supabase project holding one goal and its milestones."""

    def __init__(self, goal_row=None, milestone_ids=()):
        self.requests = []
        self.goal_row = goal_row or {}
        self.milestone_ids = list(milestone_ids)

    async def connect(self):
        return self

    async def get_current_user_id(self):
        return "u1"

    def table(self, name):
        return _RecordingTable(self, name)

    def respond(self, table, calls):
        method, args, _ = calls[0]
        if method == "insert":
            return [args[0]]
        if method == "update":
            return [{**self.goal_row, **args[0]}]
        if method == "upsert":
            return args[0]
        if method == "select":
            return [{"id": milestone_id} for milestone_id in self.milestone_ids]
        return []


class TestSavingsGoalGateway:
    """Tests for writing goals across the goal, milestone and contribution tables."""

    def _goal(self) -> SavingsGoal:
        return SavingsGoal(
            title="Car",
            target_amount=Decimal("5000"),
            target_date=datetime(2030, 1, 1, tzinfo=timezone.utc),
            milestones=[Milestone(title="First 1k", target_amount=Decimal("1000"))],
            saving_history=[ContributionRecord(amount=Decimal("250"))],
            current_amount=Decimal("250"),
        )

    @pytest.mark.asyncio
    async def test_create_writes_child_tables(self):
        """Test the goal row is inserted first, then milestones and contributions."""
        client = _StubSupabaseClient()
        gateway = SavingsGoalGateway("savings_goals", client, timeout_seconds=1.0)
        goal = self._goal()

        created = await gateway.create(goal)

        assert [table for table, _ in client.requests] == [
            "savings_goals",
            "savings_milestones",
            "savings_contributions",
        ]
        goal_row = client.requests[0][1][0][1][0]
        assert goal_row["user_id"] == "u1"
        assert "milestones" not in goal_row
        milestone_upsert = client.requests[1][1][0]
        assert milestone_upsert[0] == "upsert"
        assert milestone_upsert[1][0][0]["goal_id"] == goal.id
        assert milestone_upsert[2] == {"on_conflict": "id"}
        assert created.milestones[0].title == "First 1k"
        assert created.saving_history[0].amount == Decimal("250")

    @pytest.mark.asyncio
    async def test_update_prunes_removed_milestones(self):
        """Test milestones missing from an update are deleted remotely."""
        goal = self._goal()
        client = _StubSupabaseClient(
            goal_row=SavingsGoalRowMapper().to_row(goal, user_id="u1"),
            milestone_ids=[goal.milestones[0].id, "removed"],
        )
        gateway = SavingsGoalGateway("savings_goals", client, timeout_seconds=1.0)

        await gateway.update(goal.id, {
            "id": goal.id,
            "title": "Electric car",
            "milestones": [goal.milestones[0].model_dump(mode="json")],
        })

        goal_update = client.requests[0]
        assert goal_update[0] == "savings_goals"
        assert goal_update[1][0][1][0] == {"title": "Electric car"}
        table, calls = client.requests[-1]
        assert table == "savings_milestones"
        assert calls[0][0] == "delete"
        assert calls[1] == ("in_", ("id", ["removed"]), {})

    @pytest.mark.asyncio
    async def test_update_without_children_touches_goal_only(self):
        """Test plain detail updates do not write child tables."""
        goal = self._goal()
        client = _StubSupabaseClient(goal_row=SavingsGoalRowMapper().to_row(goal, user_id="u1"))
        gateway = SavingsGoalGateway("savings_goals", client, timeout_seconds=1.0)

        await gateway.update(goal.id, {"id": goal.id, "title": "Van"})

        assert [table for table, _ in client.requests] == ["savings_goals"]

    def test_select_embeds_child_tables(self):
        """Test reads embed milestones and contributions from the configured tables."""
        gateway = SavingsGoalGateway(
            "goals",
            _StubSupabaseClient(),
            milestones_table="goal_milestones",
            contributions_table="goal_contributions",
            timeout_seconds=1.0,
        )
        assert gateway.select_columns == (
            "*, milestones:goal_milestones(*), contributions:goal_contributions(*)"
        )
        assert gateway.kind == EntityKind.SAVINGS_GOAL


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
