"""
Row mappers between domain entities and backend rows.

Backend rows use snake_case column names, carry a `user_id` column for
row-level security, and store money as plain numbers. Most domain field
names already match their columns; the few that differ are renamed here.
Local bookkeeping (`origin`) never leaves the device.
"""

from decimal import Decimal
from typing import Any, Generic, Optional, TypeVar

from buzo_sync.models.entities import (
    Budget,
    ContributionRecord,
    ContributionSource,
    Entity,
    EntityOrigin,
    Expense,
    Milestone,
    SavingsGoal,
)


E = TypeVar("E", bound=Entity)

LOCAL_ONLY_FIELDS = {"origin"}


class EntityRowMapper(Generic[E]):
    """
    Two-way mapping for one entity model.

    Subclasses list their money columns (sent as numbers) and any
    field -> column renames.
    """

    model: type[E]
    money_fields: tuple[str, ...] = ()
    renames: dict[str, str] = {}
    # Fields stored in child tables rather than on the row itself
    child_fields: tuple[str, ...] = ()

    def _to_columns(self, fields: dict[str, Any]) -> dict[str, Any]:
        row = {}
        for name, value in fields.items():
            if name in LOCAL_ONLY_FIELDS or name in self.child_fields:
                continue
            if name in self.money_fields and value is not None:
                value = float(Decimal(str(value)))
            row[self.renames.get(name, name)] = value
        return row

    def to_row(self, entity: E, user_id: Optional[str] = None) -> dict[str, Any]:
        """Full row for an insert."""
        row = self._to_columns(entity.model_dump(mode="json"))
        if user_id is not None:
            row["user_id"] = user_id
        return row

    def changes_to_row(self, changes: dict[str, Any]) -> dict[str, Any]:
        """Partial row for an update; the id is never part of the SET clause."""
        fields = {k: v for k, v in changes.items() if k != "id"}
        return self._to_columns(fields)

    def from_row(self, row: dict[str, Any]) -> E:
        """
        Build a domain entity from a backend row.

        NULL columns fall back to model defaults, and unknown columns are
        ignored.
        """
        columns_to_fields = {column: field for field, column in self.renames.items()}
        data = {}
        for column, value in row.items():
            if value is None:
                continue
            data[columns_to_fields.get(column, column)] = value
        data["origin"] = EntityOrigin.REMOTE
        return self.model.model_validate(data)

    def field_to_column(self, name: str) -> str:
        return self.renames.get(name, name)


class ExpenseRowMapper(EntityRowMapper[Expense]):
    model = Expense
    money_fields = ("amount", "savings_contribution")
    renames = {"receipt_image": "receipt_image_path"}


class BudgetRowMapper(EntityRowMapper[Budget]):
    model = Budget
    money_fields = (
        "amount",
        "spent",
        "savings_allocation",
        "auto_save_percentage",
        "remaining_amount",
    )


# Contribution sources the backend's CHECK constraint accepts
REMOTE_CONTRIBUTION_SOURCES = {
    ContributionSource.MANUAL,
    ContributionSource.AUTOMATED,
    ContributionSource.BUDGET_ALLOCATION,
}


class SavingsGoalRowMapper(EntityRowMapper[SavingsGoal]):
    """
    Savings goals span three tables: the goal row, one `savings_milestones`
    row per milestone and one `savings_contributions` row per history
    entry. Reads embed both child tables under `milestones` and
    `contributions`.

    Withdrawals are stored as negative `manual` contributions tagged
    `{"kind": "withdrawal"}` in `metadata`, since the backend only accepts
    the three contribution sources.
    """
    model = SavingsGoal
    money_fields = ("target_amount", "current_amount")
    child_fields = ("milestones", "saving_history")

    def milestone_rows(
        self,
        goal_id: str,
        milestones: list[Any],
        user_id: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        rows = []
        for order, item in enumerate(milestones):
            milestone = Milestone.model_validate(item)
            row = {
                "id": milestone.id,
                "goal_id": goal_id,
                "title": milestone.title,
                "amount": float(milestone.target_amount),
                "is_reached": milestone.is_completed,
                "completed_date": milestone.completed_date.isoformat() if milestone.completed_date else None,
                "display_order": order,
            }
            if user_id is not None:
                row["user_id"] = user_id
            rows.append(row)
        return rows

    def contribution_rows(
        self,
        goal_id: str,
        history: list[Any],
        user_id: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        rows = []
        for item in history:
            record = ContributionRecord.model_validate(item)
            metadata = {"note": record.note} if record.note else {}
            source = record.source
            if source not in REMOTE_CONTRIBUTION_SOURCES:
                metadata["kind"] = source.value
                source = ContributionSource.MANUAL
            row = {
                "id": record.id,
                "goal_id": goal_id,
                "amount": float(record.amount),
                "source": source.value,
                "budget_id": record.budget_id,
                "expense_id": record.expense_id,
                "metadata": metadata or None,
                "created_at": record.date.isoformat(),
            }
            if user_id is not None:
                row["user_id"] = user_id
            rows.append(row)
        return rows

    def from_row(self, row: dict[str, Any]) -> SavingsGoal:
        row = dict(row)
        milestone_rows = sorted(row.pop("milestones", None) or [], key=lambda r: r.get("display_order") or 0)
        contribution_rows = sorted(row.pop("contributions", None) or [], key=lambda r: r.get("created_at") or "")
        goal = super().from_row(row)
        goal.milestones = [
            Milestone(
                id=m["id"],
                title=m["title"],
                target_amount=Decimal(str(m["amount"])),
                is_completed=bool(m.get("is_reached")),
                completed_date=m.get("completed_date"),
            )
            for m in milestone_rows
        ]
        goal.saving_history = [self._record_from_row(c) for c in contribution_rows]
        return goal

    def _record_from_row(self, row: dict[str, Any]) -> ContributionRecord:
        metadata = row.get("metadata") or {}
        source = ContributionSource(metadata.get("kind") or row.get("source") or "manual")
        data = {
            "id": row["id"],
            "amount": Decimal(str(row["amount"])),
            "source": source,
            "budget_id": row.get("budget_id"),
            "expense_id": row.get("expense_id"),
            "note": metadata.get("note"),
        }
        if row.get("created_at"):
            data["date"] = row["created_at"]
        return ContributionRecord.model_validate(data)
