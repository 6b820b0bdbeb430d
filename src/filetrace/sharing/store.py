"""Share store protocol and in-memory implementation.

Every mutation is field-scoped: ``increment_access`` adds exactly one to
``access_count`` and ``revoke`` flips ``is_active`` only on grants that
are still active.  Neither reads a whole record into application code,
edits it and writes it back.

Implementations: InMemoryShareStore (local/testing),
SupabaseShareStore (``filetrace.db.share_store``).
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime
from typing import Callable, Protocol, runtime_checkable

from filetrace.errors import (
    DuplicateShareError,
    NotFoundError,
    ShareStoreError,
    ValidationError,
)

from .model import (
    ShareGrant,
    ShareKind,
    as_utc,
    generate_share_token,
    is_valid,
    is_well_formed_token,
    utcnow,
    validate_identifier,
)

TOKEN_RETRY_ATTEMPTS = 3


# ── Protocol ─────────────────────────────────────────────────────────


@runtime_checkable
class ShareStore(Protocol):
    """Persistence and atomic mutation of share grants."""

    async def create(
        self,
        resource_id: str,
        grantor_id: str,
        kind: ShareKind | str,
        *,
        recipient_id: str | None = None,
        expires_at: datetime | None = None,
        max_access_count: int | None = None,
        now: datetime | None = None,
    ) -> ShareGrant: ...

    async def get(self, grant_id: str) -> ShareGrant | None: ...

    async def get_by_token(self, token: str) -> ShareGrant | None: ...

    async def get_for_recipient(
        self, resource_id: str, recipient_id: str,
    ) -> ShareGrant | None: ...

    async def list_active_by_resource(
        self, resource_id: str, *, now: datetime | None = None,
    ) -> list[ShareGrant]: ...

    async def list_all_by_resource(self, resource_id: str) -> list[ShareGrant]: ...

    async def list_active_for_recipient(
        self, recipient_id: str, *, now: datetime | None = None,
    ) -> list[ShareGrant]: ...

    async def revoke(self, grant_id: str, *, now: datetime | None = None) -> int: ...

    async def revoke_all_for_resource(
        self, resource_id: str, *, now: datetime | None = None,
    ) -> int: ...

    async def increment_access(
        self, grant_id: str, *, now: datetime | None = None,
    ) -> int: ...

    async def delete_for_resource(self, resource_id: str) -> int: ...


# ── Shared validation ────────────────────────────────────────────────


def build_grant(
    resource_id: str,
    grantor_id: str,
    kind: ShareKind | str,
    *,
    recipient_id: str | None,
    expires_at: datetime | None,
    max_access_count: int | None,
    now: datetime,
) -> ShareGrant:
    """Validate creation input and return an unsaved grant (no token yet).

    Raises:
        ValidationError: with one message per problem found.
    """
    problems: list[str] = []

    def _ident(value: object, name: str) -> str:
        try:
            return validate_identifier(value, name)
        except ValidationError as exc:
            problems.extend(exc.details)
            return ''

    resource_id = _ident(resource_id, 'resource_id')
    grantor_id = _ident(grantor_id, 'grantor_id')

    try:
        kind = ShareKind(kind)
    except ValueError:
        problems.append("kind must be 'link' or 'user'")
        kind = ShareKind.LINK

    if kind is ShareKind.USER:
        if recipient_id is None:
            problems.append('recipient_id is required for user shares')
        else:
            recipient_id = _ident(recipient_id, 'recipient_id')
    elif recipient_id is not None:
        problems.append('recipient_id is only allowed for user shares')

    if expires_at is None and max_access_count is None:
        problems.append(
            'At least one expiration method (expiration_minutes or '
            'max_access_count) is required'
        )
    if expires_at is not None and as_utc(expires_at) <= as_utc(now):
        problems.append('expires_at must be in the future')
    if max_access_count is not None and (
        isinstance(max_access_count, bool)
        or not isinstance(max_access_count, int)
        or max_access_count < 1
    ):
        problems.append('max_access_count must be a positive integer')

    if problems:
        raise ValidationError(problems)

    return ShareGrant(
        id=str(uuid.uuid4()),
        resource_id=resource_id,
        grantor_id=grantor_id,
        kind=kind,
        recipient_id=recipient_id if kind is ShareKind.USER else None,
        expires_at=expires_at,
        max_access_count=max_access_count,
        access_count=0,
        is_active=True,
        created_at=now,
        updated_at=now,
    )


# ── In-memory implementation ─────────────────────────────────────────


class InMemoryShareStore:
    """Dict-backed share store.

    Mutations never await between reading and writing a field, so each
    one is atomic on the event loop.
    """

    def __init__(
        self,
        *,
        token_factory: Callable[[], str] = generate_share_token,
    ) -> None:
        self._grants: dict[str, ShareGrant] = {}
        self._by_token: dict[str, str] = {}
        self._seq: dict[str, int] = {}
        self._next_seq = 1
        self._token_factory = token_factory

    def _newest_first(self, grants: list[ShareGrant]) -> list[ShareGrant]:
        return sorted(
            grants,
            key=lambda g: (g.created_at, self._seq[g.id]),
            reverse=True,
        )

    def _store(self, grant: ShareGrant) -> ShareGrant:
        self._grants[grant.id] = grant
        self._seq[grant.id] = self._next_seq
        self._next_seq += 1
        if grant.token is not None:
            self._by_token[grant.token] = grant.id
        return grant

    async def create(
        self,
        resource_id: str,
        grantor_id: str,
        kind: ShareKind | str,
        *,
        recipient_id: str | None = None,
        expires_at: datetime | None = None,
        max_access_count: int | None = None,
        now: datetime | None = None,
    ) -> ShareGrant:
        grant = build_grant(
            resource_id,
            grantor_id,
            kind,
            recipient_id=recipient_id,
            expires_at=expires_at,
            max_access_count=max_access_count,
            now=now or utcnow(),
        )

        if grant.kind is ShareKind.USER:
            for existing in self._grants.values():
                if (
                    existing.kind is ShareKind.USER
                    and existing.is_active
                    and existing.resource_id == grant.resource_id
                    and existing.recipient_id == grant.recipient_id
                ):
                    raise DuplicateShareError(grant.resource_id, grant.recipient_id)
            return self._store(grant)

        for _ in range(TOKEN_RETRY_ATTEMPTS):
            token = self._token_factory()
            if token not in self._by_token:
                return self._store(replace(grant, token=token))
        raise ShareStoreError(
            f'Could not allocate a unique share token after '
            f'{TOKEN_RETRY_ATTEMPTS} attempts'
        )

    async def get(self, grant_id: str) -> ShareGrant | None:
        return self._grants.get(validate_identifier(grant_id, 'grant_id'))

    async def get_by_token(self, token: str) -> ShareGrant | None:
        if not is_well_formed_token(token):
            return None
        grant_id = self._by_token.get(token)
        return self._grants.get(grant_id) if grant_id else None

    async def get_for_recipient(
        self, resource_id: str, recipient_id: str,
    ) -> ShareGrant | None:
        resource_id = validate_identifier(resource_id, 'resource_id')
        recipient_id = validate_identifier(recipient_id, 'recipient_id')
        matches = [
            g for g in self._grants.values()
            if g.kind is ShareKind.USER
            and g.resource_id == resource_id
            and g.recipient_id == recipient_id
        ]
        if not matches:
            return None
        return self._newest_first(matches)[0]

    async def list_active_by_resource(
        self, resource_id: str, *, now: datetime | None = None,
    ) -> list[ShareGrant]:
        now = now or utcnow()
        return [
            g for g in await self.list_all_by_resource(resource_id)
            if is_valid(g, now=now)
        ]

    async def list_all_by_resource(self, resource_id: str) -> list[ShareGrant]:
        resource_id = validate_identifier(resource_id, 'resource_id')
        return self._newest_first(
            [g for g in self._grants.values() if g.resource_id == resource_id]
        )

    async def list_active_for_recipient(
        self, recipient_id: str, *, now: datetime | None = None,
    ) -> list[ShareGrant]:
        recipient_id = validate_identifier(recipient_id, 'recipient_id')
        now = now or utcnow()
        return self._newest_first([
            g for g in self._grants.values()
            if g.kind is ShareKind.USER
            and g.recipient_id == recipient_id
            and is_valid(g, now=now)
        ])

    async def revoke(self, grant_id: str, *, now: datetime | None = None) -> int:
        grant = self._grants.get(validate_identifier(grant_id, 'grant_id'))
        if grant is None or not grant.is_active:
            return 0
        self._grants[grant.id] = replace(
            grant, is_active=False, updated_at=now or utcnow(),
        )
        return 1

    async def revoke_all_for_resource(
        self, resource_id: str, *, now: datetime | None = None,
    ) -> int:
        resource_id = validate_identifier(resource_id, 'resource_id')
        now = now or utcnow()
        count = 0
        for grant in list(self._grants.values()):
            if grant.resource_id == resource_id and grant.is_active:
                self._grants[grant.id] = replace(
                    grant, is_active=False, updated_at=now,
                )
                count += 1
        return count

    async def increment_access(
        self, grant_id: str, *, now: datetime | None = None,
    ) -> int:
        grant = self._grants.get(validate_identifier(grant_id, 'grant_id'))
        if grant is None:
            raise NotFoundError(f'Share {grant_id} not found')
        updated = replace(
            grant,
            access_count=grant.access_count + 1,
            updated_at=now or utcnow(),
        )
        self._grants[grant.id] = updated
        return updated.access_count

    async def delete_for_resource(self, resource_id: str) -> int:
        resource_id = validate_identifier(resource_id, 'resource_id')
        doomed = [g for g in self._grants.values() if g.resource_id == resource_id]
        for grant in doomed:
            del self._grants[grant.id]
            del self._seq[grant.id]
            if grant.token is not None:
                self._by_token.pop(grant.token, None)
        return len(doomed)
