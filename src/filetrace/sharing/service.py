"""Owner-side share management: create, list, revoke.

Ownership is checked against the file catalog before any grant is
touched.  Files that exist but belong to someone else are reported as
missing so callers cannot discover foreign file ids.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from filetrace.audit.model import AuditAction, AuditLog, record_quietly, redact_token
from filetrace.errors import NotFoundError, ValidationError
from filetrace.files.model import FileCatalog, FileRecord
from filetrace.security.token_verify import AuthIdentity
from filetrace.users import UserDirectory, UserRecord

from .model import (
    ShareGrant,
    ShareKind,
    expires_at_from_minutes,
    utcnow,
    validate_identifier,
)
from .store import ShareStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CreatedShare:
    grant: ShareGrant
    share_url: str | None = None
    recipient: UserRecord | None = None

    def to_dict(self) -> dict[str, Any]:
        data = self.grant.to_dict()
        if self.share_url is not None:
            data['share_url'] = self.share_url
        if self.recipient is not None:
            data['recipient'] = self.recipient.public_dict()
        return data


def _coerce_kind(kind: ShareKind | str) -> ShareKind:
    try:
        return ShareKind(kind)
    except ValueError:
        raise ValidationError("share_type must be 'link' or 'user'") from None


class ShareService:
    """Grant lifecycle on behalf of a file owner.

    Args:
        share_store: Grant persistence.
        audit_log: Audit sink.
        file_catalog: Used for ownership checks and shared-with-me metadata.
        user_directory: Resolves recipient identifiers.
        public_url: Base URL used to build ``share_url`` for link grants.
    """

    def __init__(
        self,
        share_store: ShareStore,
        audit_log: AuditLog,
        file_catalog: FileCatalog,
        user_directory: UserDirectory,
        *,
        public_url: str = 'http://localhost:8000',
    ) -> None:
        self._shares = share_store
        self._audit = audit_log
        self._files = file_catalog
        self._users = user_directory
        self._public_url = public_url.rstrip('/')

    def share_url(self, token: str) -> str:
        return f'{self._public_url}/share/{token}'

    async def _owned_file(self, file_id: str, owner: AuthIdentity) -> FileRecord:
        file_id = validate_identifier(file_id, 'file_id')
        record = await self._files.get_owned(file_id, owner.user_id)
        if record is None:
            raise NotFoundError('File not found')
        return record

    async def _owned_grant(self, share_id: str, owner: AuthIdentity) -> ShareGrant:
        grant = await self._shares.get(share_id)
        if grant is None or grant.grantor_id != owner.user_id:
            raise NotFoundError('Share not found')
        return grant

    # ── Creation ──

    async def create_share(
        self,
        owner: AuthIdentity,
        file_id: str,
        share_type: ShareKind | str,
        *,
        recipient_identifier: str | None = None,
        expiration_minutes: int | None = None,
        max_access_count: int | None = None,
        source_address: str | None = None,
        now: datetime | None = None,
    ) -> CreatedShare:
        """Create a link or user grant on a file the caller owns.

        Raises:
            ValidationError: Bad kind, range, or no expiration method.
            NotFoundError: File not owned by caller, or unknown recipient.
            DuplicateShareError: Active user grant already exists.
        """
        now = now or utcnow()
        kind = _coerce_kind(share_type)
        file = await self._owned_file(file_id, owner)

        expires_at = None
        if expiration_minutes is not None:
            expires_at = expires_at_from_minutes(expiration_minutes, now=now)

        recipient = None
        if kind is ShareKind.USER:
            if not recipient_identifier or not recipient_identifier.strip():
                raise ValidationError('recipient_identifier is required for user shares')
            recipient = await self._users.resolve(recipient_identifier)
            if recipient is None:
                raise NotFoundError('Recipient not found')
            if recipient.id == owner.user_id:
                raise ValidationError('Cannot share a file with yourself')

        grant = await self._shares.create(
            file.id,
            owner.user_id,
            kind,
            recipient_id=recipient.id if recipient else None,
            expires_at=expires_at,
            max_access_count=max_access_count,
            now=now,
        )

        details: dict[str, Any] = {
            'share_id': grant.id,
            'share_type': kind.value,
            'expires_at': grant.expires_at.isoformat() if grant.expires_at else None,
            'max_access_count': grant.max_access_count,
        }
        if kind is ShareKind.LINK:
            action = AuditAction.SHARE_CREATED
            details['token_prefix'] = redact_token(grant.token)
        else:
            action = AuditAction.SHARE_WITH_USER
            details['recipient_id'] = recipient.id
            details['recipient_username'] = recipient.username

        await record_quietly(
            self._audit,
            action,
            resource_id=file.id,
            actor_id=owner.user_id,
            actor_username=owner.username,
            source_address=source_address,
            details=details,
            now=now,
        )
        logger.info('Share created (share=%s, kind=%s, file=%s)', grant.id, kind.value, file.id)

        if kind is ShareKind.LINK:
            return CreatedShare(grant=grant, share_url=self.share_url(grant.token))
        return CreatedShare(grant=grant, recipient=recipient)

    # ── Queries ──

    async def list_for_file(
        self,
        owner: AuthIdentity,
        file_id: str,
        *,
        active_only: bool = False,
        now: datetime | None = None,
    ) -> list[ShareGrant]:
        file = await self._owned_file(file_id, owner)
        if active_only:
            return await self._shares.list_active_by_resource(file.id, now=now)
        return await self._shares.list_all_by_resource(file.id)

    async def shared_with_me(
        self,
        actor: AuthIdentity,
        *,
        now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Active user grants addressed to *actor*, with file metadata."""
        grants = await self._shares.list_active_for_recipient(actor.user_id, now=now)
        items = []
        for grant in grants:
            file = await self._files.get(grant.resource_id)
            if file is None:
                continue
            grantor = await self._users.get(grant.grantor_id)
            items.append({
                'share': grant.to_dict(),
                'file': file.public_dict(),
                'shared_by': grantor.public_dict() if grantor else None,
            })
        return items

    # ── Revocation ──

    async def revoke(
        self,
        owner: AuthIdentity,
        share_id: str,
        *,
        source_address: str | None = None,
        now: datetime | None = None,
    ) -> int:
        """Revoke one grant. Returns 1 if it was active, 0 otherwise."""
        now = now or utcnow()
        grant = await self._owned_grant(share_id, owner)
        modified = await self._shares.revoke(grant.id, now=now)
        if modified:
            await record_quietly(
                self._audit,
                AuditAction.SHARE_REVOKED,
                resource_id=grant.resource_id,
                actor_id=owner.user_id,
                actor_username=owner.username,
                source_address=source_address,
                details={'share_id': grant.id, 'share_type': grant.kind.value},
                now=now,
            )
        return modified

    async def revoke_all(
        self,
        owner: AuthIdentity,
        file_id: str,
        *,
        source_address: str | None = None,
        now: datetime | None = None,
    ) -> int:
        """Revoke every active grant on an owned file."""
        now = now or utcnow()
        file = await self._owned_file(file_id, owner)
        modified = await self._shares.revoke_all_for_resource(file.id, now=now)
        await record_quietly(
            self._audit,
            AuditAction.SHARES_REVOKED_ALL,
            resource_id=file.id,
            actor_id=owner.user_id,
            actor_username=owner.username,
            source_address=source_address,
            details={'modified_count': modified},
            now=now,
        )
        return modified
