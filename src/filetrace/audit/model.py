"""Append-only audit log: actions, entries, and the in-memory store.

Every user-visible file action and every share access attempt is
recorded here.  Entries are never updated or deleted; the protocol
deliberately exposes no such operation.

Security invariant:
  Plaintext share tokens must NEVER appear in entry details.  Only a
  token prefix (first 8 chars) is kept for correlation.

This module provides:
  1. ``AuditAction``: the closed set of action kinds.
  2. ``AuditLogEntry``: structured, immutable entry.
  3. ``AuditLog``: protocol for append/query backends.
  4. ``InMemoryAuditLog``: test/local implementation.
  5. ``record`` / ``record_quietly``: build-and-append coroutines.
  6. ``redact_token`` / ``sanitize_details``: payload hygiene.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Protocol, runtime_checkable

from filetrace.errors import TransientStoreError, ValidationError
from filetrace.sharing.model import parse_timestamp, utcnow

# ── Constants ─────────────────────────────────────────────────────────

logger = logging.getLogger(__name__)

TOKEN_PREFIX_LENGTH = 8

_SENSITIVE_KEYS = frozenset({
    'token',
    'authorization',
    'password',
    'secret',
    'api_key',
    'service_role_key',
})


class AuditAction(str, Enum):
    UPLOAD = 'UPLOAD'
    DOWNLOAD = 'DOWNLOAD'
    NAME_CHANGE = 'NAME_CHANGE'
    CATEGORY_CHANGE = 'CATEGORY_CHANGE'
    DELETE = 'DELETE'
    SHARE_CREATED = 'SHARE_CREATED'
    SHARE_WITH_USER = 'SHARE_WITH_USER'
    SHARE_ACCESSED = 'SHARE_ACCESSED'
    LINK_ACCESSED = 'LINK_ACCESSED'
    EXPIRED_LINK_ATTEMPT = 'EXPIRED_LINK_ATTEMPT'
    SHARE_REVOKED = 'SHARE_REVOKED'
    SHARES_REVOKED_ALL = 'SHARES_REVOKED_ALL'


def coerce_action(action: AuditAction | str) -> AuditAction:
    try:
        return AuditAction(action)
    except ValueError:
        raise ValidationError(f'Unknown audit action: {action!r}') from None


# ── Redaction ────────────────────────────────────────────────────────


def redact_token(token: str | None) -> str:
    """Truncate a token to a correlation prefix.

    Returns ``<prefix>...`` or ``<redacted>`` for missing/short tokens.
    """
    if not token or len(token) < TOKEN_PREFIX_LENGTH:
        return '<redacted>'
    return f'{token[:TOKEN_PREFIX_LENGTH]}...'


def sanitize_details(details: Mapping[str, Any]) -> dict[str, Any]:
    """Copy *details* with sensitive keys redacted (recursively)."""
    sanitized: dict[str, Any] = {}
    for key, value in details.items():
        if key.lower() in _SENSITIVE_KEYS:
            sanitized[key] = '[REDACTED]'
        elif isinstance(value, Mapping):
            sanitized[key] = sanitize_details(value)
        else:
            sanitized[key] = value
    return sanitized


# ── Entry model ──────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class AuditLogEntry:
    """One immutable audit record.

    Attributes:
        action: What happened.
        resource_id: File involved; None when a token resolves to nothing.
        actor_id: Acting user; None for anonymous/public actions.
        actor_username: Username snapshot taken at write time.
        source_address: Client address of the request.
        details: Action-specific payload.
        timestamp: When it happened.
        id: Assigned by the store on append.
    """

    action: AuditAction
    resource_id: str | None = None
    actor_id: str | None = None
    actor_username: str | None = None
    source_address: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'resource_id': self.resource_id,
            'action': self.action.value,
            'actor_id': self.actor_id,
            'actor_username': self.actor_username,
            'source_address': self.source_address,
            'details': dict(self.details),
            'timestamp': self.timestamp.isoformat(),
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> AuditLogEntry:
        return cls(
            id=str(row['id']) if row.get('id') is not None else None,
            resource_id=row.get('resource_id'),
            action=AuditAction(row['action']),
            actor_id=row.get('actor_id'),
            actor_username=row.get('actor_username'),
            source_address=row.get('source_address'),
            details=dict(row.get('details') or {}),
            timestamp=parse_timestamp(row.get('timestamp')) or utcnow(),
        )


# ── Protocol ─────────────────────────────────────────────────────────


@runtime_checkable
class AuditLog(Protocol):
    """Append-only audit store."""

    async def append(self, entry: AuditLogEntry) -> AuditLogEntry: ...

    async def list_by_resource(
        self, resource_id: str, *, limit: int | None = None,
    ) -> list[AuditLogEntry]: ...


# ── In-memory implementation ─────────────────────────────────────────


class InMemoryAuditLog:
    """List-backed audit log for local runs and tests."""

    def __init__(self) -> None:
        self._entries: list[tuple[int, AuditLogEntry]] = []
        self._next_id = 1

    async def append(self, entry: AuditLogEntry) -> AuditLogEntry:
        stored = replace(
            entry,
            action=coerce_action(entry.action),
            details=sanitize_details(entry.details),
            id=str(self._next_id),
        )
        self._entries.append((self._next_id, stored))
        self._next_id += 1
        return stored

    async def list_by_resource(
        self, resource_id: str, *, limit: int | None = None,
    ) -> list[AuditLogEntry]:
        matching = [
            (seq, e) for seq, e in self._entries
            if e.resource_id == resource_id
        ]
        # Newest first; later insertion wins ties.
        matching.sort(key=lambda item: (item[1].timestamp, item[0]), reverse=True)
        entries = [e for _, e in matching]
        return entries[:limit] if limit is not None else entries

    @property
    def entries(self) -> list[AuditLogEntry]:
        """All entries in insertion order (for test assertions)."""
        return [e for _, e in self._entries]

    def find(
        self,
        action: AuditAction | str | None = None,
        resource_id: str | None = None,
    ) -> list[AuditLogEntry]:
        """Filter entries by action and/or resource."""
        result = self.entries
        if action is not None:
            result = [e for e in result if e.action == AuditAction(action)]
        if resource_id is not None:
            result = [e for e in result if e.resource_id == resource_id]
        return result


# ── Convenience ──────────────────────────────────────────────────────


async def record(
    audit_log: AuditLog,
    action: AuditAction | str,
    *,
    resource_id: str | None = None,
    actor_id: str | None = None,
    actor_username: str | None = None,
    source_address: str | None = None,
    details: Mapping[str, Any] | None = None,
    now: datetime | None = None,
) -> AuditLogEntry:
    """Build an entry and append it to *audit_log*."""
    entry = AuditLogEntry(
        action=coerce_action(action),
        resource_id=resource_id,
        actor_id=actor_id,
        actor_username=actor_username,
        source_address=source_address,
        details=dict(details or {}),
        timestamp=now or utcnow(),
    )
    return await audit_log.append(entry)


async def record_quietly(
    audit_log: AuditLog,
    action: AuditAction | str,
    **fields: Any,
) -> AuditLogEntry | None:
    """Like ``record`` but for entries written after a committed mutation.

    An unreachable store is logged and swallowed; the mutation it
    describes has already happened and must not be reported as failed.
    """
    try:
        return await record(audit_log, action, **fields)
    except TransientStoreError:
        logger.warning(
            'Audit append failed (action=%s, resource=%s)',
            coerce_action(action).value,
            fields.get('resource_id'),
            exc_info=True,
        )
        return None
