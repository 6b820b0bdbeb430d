"""Supabase-backed AuditLog implementation.

Writes entries to ``audit_logs`` via PostgREST.  Unlike a
fire-and-forget emitter, ``append`` reports outages as
``TransientStoreError`` so callers decide whether a missing entry is
acceptable.  Details are sanitized before persistence.
"""

from __future__ import annotations

from dataclasses import replace

from filetrace.audit.model import (
    AuditLogEntry,
    coerce_action,
    sanitize_details,
)

from .errors import translate_errors
from .supabase_client import SupabaseClient

NEWEST_FIRST = "timestamp.desc,seq.desc"


class SupabaseAuditLog:
    """AuditLog backed by ``audit_logs``."""

    TABLE = "audit_logs"

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def append(self, entry: AuditLogEntry) -> AuditLogEntry:
        action = coerce_action(entry.action)
        row = {
            "action": action.value,
            "resource_id": entry.resource_id,
            "actor_id": entry.actor_id,
            "actor_username": entry.actor_username,
            "source_address": entry.source_address,
            "details": sanitize_details(entry.details),
            "timestamp": entry.timestamp.isoformat(),
        }
        with translate_errors("append audit entry"):
            rows = await self._client.insert(self.TABLE, row)
        if rows:
            return AuditLogEntry.from_row(rows[0])
        return replace(entry, action=action, details=row["details"])

    async def list_by_resource(
        self, resource_id: str, *, limit: int | None = None,
    ) -> list[AuditLogEntry]:
        with translate_errors("list audit entries"):
            rows = await self._client.select(
                self.TABLE,
                {"resource_id": resource_id},
                order=NEWEST_FIRST,
                limit=limit,
            )
        return [AuditLogEntry.from_row(row) for row in rows]
