"""Supabase-backed ShareStore implementation.

Persists grants in ``share_grants`` via PostgREST.  Mutations are
field-scoped at the database:

  - ``increment_access`` calls the ``increment_share_access`` function
    (``access_count = access_count + 1 ... RETURNING access_count``).
  - ``revoke`` PATCHes ``is_active`` filtered on ``is_active=eq.true``,
    so the returned row count is exactly the number of grants that
    changed state.

Uniqueness is enforced by the indexes in ``001_filetrace.sql``: a unique
``token`` index and a partial unique index on active user grants.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable

from filetrace.errors import DuplicateShareError, NotFoundError, ShareStoreError
from filetrace.sharing.model import (
    ShareGrant,
    ShareKind,
    generate_share_token,
    is_valid,
    is_well_formed_token,
    utcnow,
    validate_identifier,
)
from filetrace.sharing.store import TOKEN_RETRY_ATTEMPTS, build_grant

from .errors import SupabaseConflictError, translate_errors
from .supabase_client import SupabaseClient

logger = logging.getLogger(__name__)

NEWEST_FIRST = "created_at.desc,seq.desc"


class SupabaseShareStore:
    """ShareStore backed by ``share_grants``."""

    TABLE = "share_grants"
    INCREMENT_FUNCTION = "increment_share_access"

    def __init__(
        self,
        client: SupabaseClient,
        *,
        token_factory: Callable[[], str] = generate_share_token,
    ) -> None:
        self._client = client
        self._token_factory = token_factory

    @staticmethod
    def _grants(rows: list[dict]) -> list[ShareGrant]:
        return [ShareGrant.from_row(row) for row in rows]

    async def _insert(self, grant: ShareGrant) -> ShareGrant:
        rows = await self._client.insert(self.TABLE, grant.to_row())
        return ShareGrant.from_row(rows[0]) if rows else grant

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

        with translate_errors("create share"):
            if grant.kind is ShareKind.USER:
                try:
                    return await self._insert(grant)
                except SupabaseConflictError as exc:
                    raise DuplicateShareError(grant.resource_id, grant.recipient_id) from exc

            for attempt in range(1, TOKEN_RETRY_ATTEMPTS + 1):
                try:
                    return await self._insert(replace(grant, token=self._token_factory()))
                except SupabaseConflictError:
                    logger.warning("Share token collision (attempt %d/%d)", attempt, TOKEN_RETRY_ATTEMPTS)

        raise ShareStoreError(
            f"Could not allocate a unique share token after {TOKEN_RETRY_ATTEMPTS} attempts"
        )

    async def get(self, grant_id: str) -> ShareGrant | None:
        grant_id = validate_identifier(grant_id, "grant_id")
        with translate_errors("get share"):
            rows = await self._client.select(self.TABLE, {"id": grant_id}, limit=1)
        return ShareGrant.from_row(rows[0]) if rows else None

    async def get_by_token(self, token: str) -> ShareGrant | None:
        if not is_well_formed_token(token):
            return None
        with translate_errors("get share by token"):
            rows = await self._client.select(self.TABLE, {"token": token}, limit=1)
        return ShareGrant.from_row(rows[0]) if rows else None

    async def get_for_recipient(
        self, resource_id: str, recipient_id: str,
    ) -> ShareGrant | None:
        filters = {
            "resource_id": validate_identifier(resource_id, "resource_id"),
            "recipient_id": validate_identifier(recipient_id, "recipient_id"),
            "kind": ShareKind.USER.value,
        }
        with translate_errors("get share for recipient"):
            rows = await self._client.select(
                self.TABLE, filters, order=NEWEST_FIRST, limit=1,
            )
        return ShareGrant.from_row(rows[0]) if rows else None

    async def list_all_by_resource(self, resource_id: str) -> list[ShareGrant]:
        resource_id = validate_identifier(resource_id, "resource_id")
        with translate_errors("list shares"):
            rows = await self._client.select(
                self.TABLE, {"resource_id": resource_id}, order=NEWEST_FIRST,
            )
        return self._grants(rows)

    async def list_active_by_resource(
        self, resource_id: str, *, now: datetime | None = None,
    ) -> list[ShareGrant]:
        resource_id = validate_identifier(resource_id, "resource_id")
        now = now or utcnow()
        with translate_errors("list active shares"):
            rows = await self._client.select(
                self.TABLE,
                {"resource_id": resource_id, "is_active": True},
                order=NEWEST_FIRST,
            )
        # Expiry and exhaustion depend on ``now``; evaluate them here.
        return [g for g in self._grants(rows) if is_valid(g, now=now)]

    async def list_active_for_recipient(
        self, recipient_id: str, *, now: datetime | None = None,
    ) -> list[ShareGrant]:
        recipient_id = validate_identifier(recipient_id, "recipient_id")
        now = now or utcnow()
        with translate_errors("list shares for recipient"):
            rows = await self._client.select(
                self.TABLE,
                {
                    "recipient_id": recipient_id,
                    "kind": ShareKind.USER.value,
                    "is_active": True,
                },
                order=NEWEST_FIRST,
            )
        return [g for g in self._grants(rows) if is_valid(g, now=now)]

    async def revoke(self, grant_id: str, *, now: datetime | None = None) -> int:
        grant_id = validate_identifier(grant_id, "grant_id")
        with translate_errors("revoke share"):
            rows = await self._client.update(
                self.TABLE,
                {"id": grant_id, "is_active": True},
                {"is_active": False, "updated_at": (now or utcnow()).isoformat()},
            )
        return len(rows)

    async def revoke_all_for_resource(
        self, resource_id: str, *, now: datetime | None = None,
    ) -> int:
        resource_id = validate_identifier(resource_id, "resource_id")
        with translate_errors("revoke shares"):
            rows = await self._client.update(
                self.TABLE,
                {"resource_id": resource_id, "is_active": True},
                {"is_active": False, "updated_at": (now or utcnow()).isoformat()},
            )
        return len(rows)

    async def increment_access(
        self, grant_id: str, *, now: datetime | None = None,
    ) -> int:
        grant_id = validate_identifier(grant_id, "grant_id")
        with translate_errors("increment share access"):
            count = await self._client.rpc(
                self.INCREMENT_FUNCTION,
                {"p_grant_id": grant_id, "p_now": (now or utcnow()).isoformat()},
            )
        if count is None:
            raise NotFoundError(f"Share {grant_id} not found")
        return int(count)

    async def delete_for_resource(self, resource_id: str) -> int:
        resource_id = validate_identifier(resource_id, "resource_id")
        with translate_errors("delete shares"):
            rows = await self._client.delete(self.TABLE, {"resource_id": resource_id})
        return len(rows)
