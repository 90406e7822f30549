"""
audit_service.py — Append-only trail of provider HTTP exchanges.

Location: facturacion_core/services/audit_service.py

One row per upstream call in provider_audit_log. Rows are written by the
traced transport from a detached task and never updated afterwards.
"""

import asyncio
import logging
from typing import Any

from facturacion_core.schemas.models import ProviderAuditLog

logger = logging.getLogger(__name__)

AUDIT_TABLE = "provider_audit_log"


class AuditRepository:
    """
    Supabase-backed provider_audit_log access.

    The supabase client is synchronous; calls run in a worker thread so the
    event loop keeps serving requests while the insert is in flight.
    """

    def __init__(self, supabase: Any):
        self.supabase = supabase

    async def save(self, record: ProviderAuditLog) -> None:
        """Insert one audit row. Raises on database errors."""
        row = record.model_dump(exclude={"id", "created_at"})
        logger.debug(
            f"Saving audit log: correlation_id={record.correlation_id}, "
            f"operation={record.operation}, status={record.response_status}"
        )
        await asyncio.to_thread(self._insert, row)

    def _insert(self, row: dict) -> None:
        self.supabase.table(AUDIT_TABLE).insert(row).execute()

    async def find_by_correlation_id(self, correlation_id: str) -> list[ProviderAuditLog]:
        """All exchanges for one inbound request, newest first."""
        result = await asyncio.to_thread(self._select, correlation_id)
        return [ProviderAuditLog(**row) for row in (result.data or [])]

    def _select(self, correlation_id: str):
        return (
            self.supabase.table(AUDIT_TABLE)
            .select("*")
            .eq("correlation_id", correlation_id)
            .order("created_at", desc=True)
            .execute()
        )
