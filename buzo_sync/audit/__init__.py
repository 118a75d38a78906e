"""Audit logging package."""

from buzo_sync.audit.logger import SyncAuditLogger, configure_logging

__all__ = [
    "SyncAuditLogger",
    "configure_logging",
]
