"""Tests for the append-only audit log and its helpers."""

from __future__ import annotations

import uuid
from datetime import timedelta

import pytest

from filetrace.audit.model import (
    AuditAction,
    AuditLogEntry,
    InMemoryAuditLog,
    coerce_action,
    record,
    record_quietly,
    redact_token,
    sanitize_details,
)
from filetrace.errors import TransientStoreError, ValidationError


class UnreachableAuditLog(InMemoryAuditLog):
    async def append(self, entry):
        raise TransientStoreError('down')


# =====================================================================
# Redaction
# =====================================================================


class TestRedaction:

    def test_token_truncated_to_prefix(self):
        assert redact_token('abcdef0123456789') == 'abcdef01...'

    @pytest.mark.parametrize('token', [None, '', 'short'])
    def test_short_or_missing_token(self, token):
        assert redact_token(token) == '<redacted>'

    def test_sensitive_keys_redacted_recursively(self):
        details = {
            'token': 'a' * 64,
            'share_id': 'x',
            'nested': {'Authorization': 'Bearer abc', 'ok': 1},
        }
        assert sanitize_details(details) == {
            'token': '[REDACTED]',
            'share_id': 'x',
            'nested': {'Authorization': '[REDACTED]', 'ok': 1},
        }

    @pytest.mark.asyncio
    async def test_append_sanitizes_details(self, audit_log):
        stored = await record(
            audit_log, AuditAction.LINK_ACCESSED,
            resource_id=str(uuid.uuid4()),
            details={'token': 'f' * 64, 'token_prefix': 'ffffffff...'},
        )
        assert stored.details == {'token': '[REDACTED]', 'token_prefix': 'ffffffff...'}


# =====================================================================
# Append and query
# =====================================================================


class TestAppendAndList:

    @pytest.mark.asyncio
    async def test_append_assigns_id(self, audit_log, now):
        entry = await record(audit_log, 'UPLOAD', resource_id='r1', now=now)
        assert entry.id == '1'
        assert entry.action is AuditAction.UPLOAD
        assert entry.timestamp == now

    @pytest.mark.asyncio
    async def test_unknown_action_rejected(self, audit_log):
        with pytest.raises(ValidationError):
            await record(audit_log, 'FILE_TELEPORTED', resource_id='r1')
        assert audit_log.entries == []

    def test_coerce_action_accepts_enum_and_string(self):
        assert coerce_action('DELETE') is AuditAction.DELETE
        assert coerce_action(AuditAction.DELETE) is AuditAction.DELETE

    @pytest.mark.asyncio
    async def test_list_newest_first_with_tie_break(self, audit_log, now):
        first = await record(audit_log, 'UPLOAD', resource_id='r1', now=now)
        second = await record(audit_log, 'DOWNLOAD', resource_id='r1', now=now)
        third = await record(
            audit_log, 'DELETE', resource_id='r1', now=now + timedelta(seconds=1),
        )
        await record(audit_log, 'UPLOAD', resource_id='other', now=now)

        listed = await audit_log.list_by_resource('r1')
        assert [e.id for e in listed] == [third.id, second.id, first.id]

    @pytest.mark.asyncio
    async def test_list_respects_limit(self, audit_log, now):
        for i in range(5):
            await record(
                audit_log, 'DOWNLOAD', resource_id='r1', now=now + timedelta(seconds=i),
            )
        listed = await audit_log.list_by_resource('r1', limit=2)
        assert len(listed) == 2
        assert listed[0].timestamp == now + timedelta(seconds=4)

    @pytest.mark.asyncio
    async def test_find_filters(self, audit_log):
        await record(audit_log, 'UPLOAD', resource_id='r1')
        await record(audit_log, 'DOWNLOAD', resource_id='r1')
        await record(audit_log, 'DOWNLOAD', resource_id='r2')
        assert len(audit_log.find('DOWNLOAD')) == 2
        assert len(audit_log.find(AuditAction.DOWNLOAD, resource_id='r1')) == 1


# =====================================================================
# Serialization
# =====================================================================


class TestEntryRows:

    def test_from_row(self):
        entry = AuditLogEntry.from_row({
            'id': 12,
            'resource_id': 'r1',
            'action': 'SHARE_REVOKED',
            'actor_id': 'u1',
            'actor_username': 'owner',
            'source_address': '10.0.0.1',
            'details': {'share_id': 's1'},
            'timestamp': '2026-03-01T12:00:00+00:00',
        })
        assert entry.id == '12'
        assert entry.action is AuditAction.SHARE_REVOKED
        assert entry.timestamp.tzinfo is not None
        assert entry.to_dict()['details'] == {'share_id': 's1'}


# =====================================================================
# Quiet recording
# =====================================================================


class TestRecordQuietly:

    @pytest.mark.asyncio
    async def test_returns_entry_on_success(self, audit_log):
        entry = await record_quietly(audit_log, 'UPLOAD', resource_id='r1')
        assert entry is not None
        assert len(audit_log.entries) == 1

    @pytest.mark.asyncio
    async def test_swallows_transient_failure(self, caplog):
        entry = await record_quietly(UnreachableAuditLog(), 'UPLOAD', resource_id='r1')
        assert entry is None
        assert 'Audit append failed (action=UPLOAD, resource=r1)' in caplog.text
