"""Share-grant domain model, token generation, and validity evaluation.

A share grant authorizes access to one file (the *resource*).  Two
variants share a single record shape, discriminated by ``kind``:

  - ``link`` grants carry a bearer ``token``; anyone holding it may access.
  - ``user`` grants carry a ``recipient_id``; only that user may access.

Validity rules (``is_valid``):

  - the grant exists and ``is_active`` is true,
  - ``expires_at`` is unset or strictly in the future,
  - ``max_access_count`` is unset or ``access_count`` is strictly below it.

The same function gates metadata previews, listings and access
accounting so "looks valid" and "is valid" can never drift apart.

This module provides:
  1. ``ShareKind`` / ``ShareGrant``: the record and its discriminator.
  2. ``generate_share_token``: 256-bit hex bearer tokens.
  3. ``is_valid`` / ``denial_reason``: the pure evaluator.
  4. Identifier and expiration helpers used by stores and routes.
"""

from __future__ import annotations

import re
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Mapping

from filetrace.errors import ValidationError

# ── Constants ─────────────────────────────────────────────────────────

TOKEN_BYTES = 32  # 256-bit tokens.
TOKEN_LENGTH = TOKEN_BYTES * 2  # Hex encoding.

MIN_EXPIRATION_MINUTES = 10
MAX_EXPIRATION_MINUTES = 525960  # One year.

_TOKEN_PATTERN = re.compile(r'^[0-9a-f]{64}$')


class ShareKind(str, Enum):
    LINK = 'link'
    USER = 'user'


# ── Time helpers ──────────────────────────────────────────────────────


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC (SQLite/JSON round-trips drop tzinfo)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    text = str(value)
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    return as_utc(datetime.fromisoformat(text))


# ── Token operations ──────────────────────────────────────────────────


def generate_share_token() -> str:
    """Return a fresh bearer token: 64 lowercase hex characters.

    Uniqueness is probabilistic; stores still enforce it on insert.
    """
    return secrets.token_hex(TOKEN_BYTES)


def is_well_formed_token(token: Any) -> bool:
    return isinstance(token, str) and bool(_TOKEN_PATTERN.match(token))


# ── Input validation ─────────────────────────────────────────────────


def validate_identifier(value: Any, field_name: str) -> str:
    """Return the canonical UUID string for *value* or raise ValidationError."""
    try:
        return str(uuid.UUID(str(value)))
    except (TypeError, ValueError, AttributeError):
        raise ValidationError(f'{field_name} must be a valid identifier') from None


def expires_at_from_minutes(minutes: int, *, now: datetime) -> datetime:
    """Convert a relative expiration into an absolute timestamp.

    Raises:
        ValidationError: ``minutes`` outside [10, 525960].
    """
    if isinstance(minutes, bool) or not isinstance(minutes, int):
        raise ValidationError('expiration_minutes must be an integer')
    if not MIN_EXPIRATION_MINUTES <= minutes <= MAX_EXPIRATION_MINUTES:
        raise ValidationError(
            f'expiration_minutes must be between {MIN_EXPIRATION_MINUTES} '
            f'and {MAX_EXPIRATION_MINUTES}'
        )
    return as_utc(now) + timedelta(minutes=minutes)


# ── Domain model ──────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class ShareGrant:
    """A link or user share on a single resource.

    Attributes:
        id: Store-assigned identifier.
        resource_id: Shared file identifier.
        grantor_id: User who created the grant.
        kind: ``ShareKind.LINK`` or ``ShareKind.USER``.
        token: Bearer token (link grants only).
        recipient_id: Grantee (user grants only).
        expires_at: Absolute expiry; None means no time limit.
        max_access_count: Access ceiling; None means no count limit.
        access_count: Successful accesses so far. Never decreases.
        is_active: False once revoked.
        created_at: Creation timestamp.
        updated_at: Last mutation timestamp.
    """

    id: str
    resource_id: str
    grantor_id: str
    kind: ShareKind
    token: str | None = None
    recipient_id: str | None = None
    expires_at: datetime | None = None
    max_access_count: int | None = None
    access_count: int = 0
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def remaining_accesses(self) -> int | None:
        if self.max_access_count is None:
            return None
        return max(0, self.max_access_count - self.access_count)

    def to_row(self) -> dict[str, Any]:
        """Serialize for persistence (no derived fields)."""
        return {
            'id': self.id,
            'resource_id': self.resource_id,
            'grantor_id': self.grantor_id,
            'kind': self.kind.value,
            'token': self.token,
            'recipient_id': self.recipient_id,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'max_access_count': self.max_access_count,
            'access_count': self.access_count,
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
        }

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses, including ``remaining_accesses``."""
        data = self.to_row()
        data['remaining_accesses'] = self.remaining_accesses
        return data

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> ShareGrant:
        return cls(
            id=str(row['id']),
            resource_id=str(row['resource_id']),
            grantor_id=str(row['grantor_id']),
            kind=ShareKind(row['kind']),
            token=row.get('token'),
            recipient_id=(
                str(row['recipient_id']) if row.get('recipient_id') else None
            ),
            expires_at=parse_timestamp(row.get('expires_at')),
            max_access_count=row.get('max_access_count'),
            access_count=int(row.get('access_count') or 0),
            is_active=bool(row.get('is_active', True)),
            created_at=parse_timestamp(row.get('created_at')) or utcnow(),
            updated_at=parse_timestamp(row.get('updated_at')) or utcnow(),
        )


# ── Evaluator ────────────────────────────────────────────────────────


def denial_reason(grant: ShareGrant | None, *, now: datetime) -> str | None:
    """Return why *grant* is not honoured, or None when it is valid.

    Reasons: ``not_found``, ``revoked``, ``expired``, ``exhausted``.
    Used for audit details only; clients always get a generic denial.
    """
    if grant is None:
        return 'not_found'
    if not grant.is_active:
        return 'revoked'
    if grant.expires_at is not None and not as_utc(now) < as_utc(grant.expires_at):
        return 'expired'
    if (
        grant.max_access_count is not None
        and grant.access_count >= grant.max_access_count
    ):
        return 'exhausted'
    return None


def is_valid(grant: ShareGrant | None, *, now: datetime) -> bool:
    """Pure validity check. The instant of expiry is already invalid."""
    return denial_reason(grant, now=now) is None
