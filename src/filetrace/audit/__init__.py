"""Append-only audit log."""

from .model import (
    AuditAction,
    AuditLog,
    AuditLogEntry,
    InMemoryAuditLog,
    record,
    record_quietly,
)

__all__ = [
    'AuditAction',
    'AuditLog',
    'AuditLogEntry',
    'InMemoryAuditLog',
    'record',
    'record_quietly',
]
