"""
Supabase Remote Gateway Implementation

DESIGN DECISION: The hosted backend is Supabase (Postgres behind PostgREST).
We use the async supabase client so that a slow backend suspends the
calling task instead of blocking the event loop.

Every request runs under a deadline (`request_timeout_seconds`), and
transport failures are retried a few times with tenacity before they
surface as UnreachableError. PostgREST errors are classified into the
gateway taxonomy by `classify_remote_error`.
"""

import asyncio
from typing import Any, Optional

import httpx
import structlog
from postgrest.exceptions import APIError
from supabase import AsyncClient, acreate_client
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from buzo_sync.config import SupabaseSettings, get_settings
from buzo_sync.models.entities import Entity, EntityKind
from buzo_sync.services.integrations import UserIdentityProvider
from buzo_sync.services.remote.interface import (
    DuplicateKeyError,
    RemoteEntityGateway,
    RemoteError,
    RemoteNotFoundError,
    UnreachableError,
    classify_remote_error,
)
from buzo_sync.services.remote.mappers import (
    BudgetRowMapper,
    EntityRowMapper,
    ExpenseRowMapper,
    SavingsGoalRowMapper,
)


class SupabaseClient:
    """
    Low-level Supabase client wrapper.

    Handles lazy connection and resolving the signed-in user.
    """

    def __init__(self, settings: Optional[SupabaseSettings] = None):
        self._settings = settings or get_settings().supabase
        self._client: Optional[AsyncClient] = None
        self._logger = structlog.get_logger()

    @property
    def settings(self) -> SupabaseSettings:
        return self._settings

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def connect(self) -> AsyncClient:
        """Create the async client on first use."""
        if self._client is None:
            try:
                self._client = await acreate_client(
                    self._settings.url,
                    self._settings.anon_key,
                )
            except Exception as e:
                raise UnreachableError(f"Failed to connect to Supabase: {e}")
        return self._client

    async def get_current_user_id(self) -> Optional[str]:
        """The signed-in user's id, or None if there is no valid session."""
        client = await self.connect()
        try:
            if self._settings.access_token:
                response = await client.auth.get_user(self._settings.access_token)
            else:
                response = await client.auth.get_user()
        except Exception as e:
            self._logger.warning("current_user_lookup_failed", error=str(e))
            return None
        if response is None or response.user is None:
            return None
        return response.user.id


class SupabaseIdentityProvider(UserIdentityProvider):
    """Current user id from the Supabase auth session."""

    def __init__(self, client: SupabaseClient):
        self._client = client

    async def get_current_user_id(self) -> Optional[str]:
        return await self._client.get_current_user_id()


class SupabaseEntityGateway(RemoteEntityGateway):
    """
    Supabase implementation of the remote gateway for one table.

    Rows are mapped with an EntityRowMapper. Updates and deletes that match
    no row raise RemoteNotFoundError.
    """

    select_columns = "*"

    def __init__(
        self,
        kind: EntityKind,
        table: str,
        client: SupabaseClient,
        mapper: EntityRowMapper,
        timeout_seconds: Optional[float] = None,
    ):
        self._kind = kind
        self._table = table
        self._client = client
        self._mapper = mapper
        self._timeout = timeout_seconds or get_settings().sync.request_timeout_seconds
        self._logger = structlog.get_logger()

    @property
    def kind(self) -> EntityKind:
        return self._kind

    @property
    def table(self) -> str:
        return self._table

    async def _execute(self, query) -> list[dict[str, Any]]:
        """Run a PostgREST query under the request deadline and translate errors."""
        try:
            response = await asyncio.wait_for(query.execute(), timeout=self._timeout)
        except APIError as e:
            raise classify_remote_error(str(e.message or e), code=e.code)
        except asyncio.TimeoutError:
            raise UnreachableError(
                f"{self._table} request timed out after {self._timeout}s"
            )
        except httpx.HTTPError as e:
            raise UnreachableError(f"{self._table} request failed: {e}")
        return response.data or []

    async def _table_query(self):
        client = await self._client.connect()
        return client.table(self._table)

    @retry(
        retry=retry_if_exception_type(UnreachableError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def create(self, entity: Entity) -> Entity:
        user_id = entity.user_id or await self._client.get_current_user_id()
        row = self._mapper.to_row(entity, user_id=user_id)
        table = await self._table_query()
        rows = await self._execute(table.insert(row))
        if not rows:
            raise RemoteError(f"No data returned from {self._table} insert")
        self._logger.info("remote_created", table=self._table, entity_id=entity.id)
        return self._mapper.from_row(rows[0])

    @retry(
        retry=retry_if_exception_type(UnreachableError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def update(self, entity_id: str, changes: dict[str, Any]) -> Entity:
        row = self._mapper.changes_to_row(changes)
        table = await self._table_query()
        rows = await self._execute(table.update(row).eq("id", entity_id))
        if not rows:
            raise RemoteNotFoundError(f"{self._table} row not found: {entity_id}")
        return self._mapper.from_row(rows[0])

    @retry(
        retry=retry_if_exception_type(UnreachableError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def delete(self, entity_id: str) -> bool:
        table = await self._table_query()
        rows = await self._execute(table.delete().eq("id", entity_id))
        if not rows:
            raise RemoteNotFoundError(f"{self._table} row not found: {entity_id}")
        return True

    async def get_by_id(self, entity_id: str) -> Optional[Entity]:
        table = await self._table_query()
        rows = await self._execute(table.select(self.select_columns).eq("id", entity_id).limit(1))
        return self._mapper.from_row(rows[0]) if rows else None

    async def list(self, filters: Optional[dict[str, Any]] = None) -> list[Entity]:
        table = await self._table_query()
        query = table.select(self.select_columns)
        for name, value in (filters or {}).items():
            query = query.eq(self._mapper.field_to_column(name), value)
        rows = await self._execute(query.order("created_at", desc=True))

        entities = []
        for row in rows:
            try:
                entities.append(self._mapper.from_row(row))
            except ValueError as e:
                # Skip malformed rows rather than failing the whole listing
                self._logger.warning(
                    "remote_row_skipped",
                    table=self._table,
                    row_id=row.get("id"),
                    error=str(e),
                )
        return entities


class SavingsGoalGateway(SupabaseEntityGateway):
    """
    Savings goals together with their milestone and contribution rows.

    The goal row is written first and its child rows are upserted by id
    afterwards, so replaying a create or update never duplicates them.
    Child rows go away with the goal through ON DELETE CASCADE.
    """

    def __init__(
        self,
        table: str,
        client: SupabaseClient,
        milestones_table: str = "savings_milestones",
        contributions_table: str = "savings_contributions",
        timeout_seconds: Optional[float] = None,
    ):
        super().__init__(
            EntityKind.SAVINGS_GOAL, table, client, SavingsGoalRowMapper(), timeout_seconds
        )
        self._milestones_table = milestones_table
        self._contributions_table = contributions_table
        self.select_columns = (
            f"*, milestones:{milestones_table}(*), contributions:{contributions_table}(*)"
        )

    async def _child_query(self, table: str):
        client = await self._client.connect()
        return client.table(table)

    @retry(
        retry=retry_if_exception_type(UnreachableError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _write_children(
        self,
        goal_id: str,
        milestones: Optional[list[Any]],
        history: Optional[list[Any]],
        user_id: Optional[str],
        prune_milestones: bool = False,
    ) -> None:
        if milestones is not None:
            rows = self._mapper.milestone_rows(goal_id, milestones, user_id)
            if rows:
                table = await self._child_query(self._milestones_table)
                await self._execute(table.upsert(rows, on_conflict="id"))
            if prune_milestones:
                keep = {row["id"] for row in rows}
                table = await self._child_query(self._milestones_table)
                existing = await self._execute(table.select("id").eq("goal_id", goal_id))
                removed = [row["id"] for row in existing if row["id"] not in keep]
                if removed:
                    table = await self._child_query(self._milestones_table)
                    await self._execute(table.delete().in_("id", removed))

        if history:
            rows = self._mapper.contribution_rows(goal_id, history, user_id)
            table = await self._child_query(self._contributions_table)
            await self._execute(table.upsert(rows, on_conflict="id", ignore_duplicates=True))

    async def create(self, entity: Entity) -> Entity:
        user_id = entity.user_id or await self._client.get_current_user_id()
        try:
            created = await super().create(entity)
        except DuplicateKeyError:
            # The goal row exists from an earlier attempt; its children may not
            await self._write_children(entity.id, entity.milestones, entity.saving_history, user_id)
            raise
        await self._write_children(created.id, entity.milestones, entity.saving_history, user_id)
        return created.model_copy(update={
            "milestones": entity.milestones,
            "saving_history": entity.saving_history,
        })

    async def update(self, entity_id: str, changes: dict[str, Any]) -> Entity:
        updated = await super().update(entity_id, changes)
        milestones = changes.get("milestones")
        history = changes.get("saving_history")
        if milestones is not None or history:
            user_id = updated.user_id or await self._client.get_current_user_id()
            await self._write_children(
                entity_id, milestones, history, user_id, prune_milestones=True
            )
        return updated


def create_supabase_gateways(
    client: Optional[SupabaseClient] = None,
) -> dict[EntityKind, SupabaseEntityGateway]:
    """Build one gateway per entity kind against the configured tables."""
    client = client or SupabaseClient()
    settings = client.settings
    return {
        EntityKind.EXPENSE: SupabaseEntityGateway(
            EntityKind.EXPENSE, settings.expenses_table, client, ExpenseRowMapper()
        ),
        EntityKind.BUDGET: SupabaseEntityGateway(
            EntityKind.BUDGET, settings.budgets_table, client, BudgetRowMapper()
        ),
        EntityKind.SAVINGS_GOAL: SavingsGoalGateway(
            settings.savings_goals_table,
            client,
            milestones_table=settings.savings_milestones_table,
            contributions_table=settings.savings_contributions_table,
        ),
    }
