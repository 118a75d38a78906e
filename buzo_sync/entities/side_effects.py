"""
Best-effort side effects.

A primary mutation (creating an expense) triggers secondary ones
(adjusting a budget, crediting a savings goal, sending a notification).
Secondary failures must never fail or roll back the primary mutation.

Instead of a bare try/except at each call site, every side effect runs
through `run_side_effect`, which returns a SideEffectOutcome. The outcome
is logged (and audited) and the caller moves on.
"""

from typing import Any, Awaitable, Optional

import structlog
from pydantic import BaseModel

from buzo_sync.audit import SyncAuditLogger


class SideEffectOutcome(BaseModel):
    """Result of one side effect: ok, or the error it failed with."""
    name: str
    entity_id: str
    ok: bool
    error: Optional[str] = None

    @classmethod
    def success(cls, name: str, entity_id: str) -> "SideEffectOutcome":
        return cls(name=name, entity_id=entity_id, ok=True)

    @classmethod
    def failure(cls, name: str, entity_id: str, error: str) -> "SideEffectOutcome":
        return cls(name=name, entity_id=entity_id, ok=False, error=error)


async def run_side_effect(
    name: str,
    entity_id: str,
    action: Awaitable[Any],
    audit_logger: Optional[SyncAuditLogger] = None,
) -> SideEffectOutcome:
    """
    Await `action`, converting any exception into a failed outcome.

    Args:
        name: Short label for logs (e.g. "budget_spent")
        entity_id: The primary entity that triggered the side effect
        action: The side effect coroutine
        audit_logger: Optional audit sink for failures
    """
    try:
        await action
    except Exception as e:
        message = str(e) or type(e).__name__
        structlog.get_logger().warning(
            "side_effect_failed",
            side_effect=name,
            entity_id=entity_id,
            error=message,
        )
        if audit_logger:
            await audit_logger.log_side_effect_failed(name, entity_id, message)
        return SideEffectOutcome.failure(name, entity_id, message)
    return SideEffectOutcome.success(name, entity_id)
