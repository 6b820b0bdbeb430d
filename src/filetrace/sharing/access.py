"""Access accounting: validate, increment, and audit share access.

Every call to ``access_via_token`` / ``access_via_user`` ends in exactly
one audit entry:

  - denied (unknown, revoked, expired or exhausted grant)
    -> ``EXPIRED_LINK_ATTEMPT`` with an internal ``reason`` detail;
  - granted -> one atomic ``increment_access`` then ``LINK_ACCESSED``
    (link grants) or ``SHARE_ACCESSED`` (user grants).

Concurrency contract:
  Validation and increment are two store round-trips.  Requests racing
  on the last remaining access may all pass validation and overshoot
  ``max_access_count`` by the number in flight; that overshoot is
  accepted.  The increment itself is atomic, so no update is ever lost.

Failure contract:
  Store failures on lookup/increment propagate (``TransientStoreError``).
  If the audit append fails *after* a successful increment, the access
  stands and the gap is logged as a warning.  A grant that vanishes
  between lookup and increment (its file was deleted) is a denial.
  Downloads resolve the file before incrementing, so a grant pointing
  at a missing file is denied without consuming an access.

Previews (``preview_token``) evaluate the same validity rule but never
increment and never count as an access.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from filetrace.audit.model import AuditAction, AuditLog, record, redact_token
from filetrace.errors import NotFoundError, TransientStoreError
from filetrace.files.model import FileCatalog, FileRecord
from filetrace.security.token_verify import AuthIdentity
from filetrace.storage import DOWNLOAD_URL_TTL_SECONDS, ObjectStore

from .model import ShareGrant, denial_reason, utcnow
from .store import ShareStore

logger = logging.getLogger(__name__)


# ── Results ──────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class AccessResult:
    """Outcome of one access attempt.

    Denials carry no detail; callers must not reveal why access failed.
    """

    granted: bool
    resource_id: str | None = None
    grant_id: str | None = None
    access_count: int | None = None


DENIED = AccessResult(granted=False)


@dataclass(frozen=True, slots=True)
class SharePreview:
    grant: ShareGrant
    file: FileRecord | None

    def to_dict(self) -> dict[str, Any]:
        grant = self.grant
        return {
            'file': self.file.public_dict() if self.file else None,
            'share': {
                'id': grant.id,
                'share_type': grant.kind.value,
                'expires_at': grant.expires_at.isoformat() if grant.expires_at else None,
                'max_access_count': grant.max_access_count,
                'access_count': grant.access_count,
                'remaining_accesses': grant.remaining_accesses,
                'created_at': grant.created_at.isoformat(),
            },
        }


@dataclass(frozen=True, slots=True)
class DownloadGrant:
    download_url: str
    file: FileRecord
    access: AccessResult


# ── Accountant ───────────────────────────────────────────────────────


class AccessAccountant:
    """Single entry point turning a token or identity into access or denial.

    Args:
        share_store: Grant persistence.
        audit_log: Audit sink; every attempt is recorded here.
        file_catalog: Needed for previews and downloads.
        object_store: Needed for downloads.
    """

    def __init__(
        self,
        share_store: ShareStore,
        audit_log: AuditLog,
        *,
        file_catalog: FileCatalog | None = None,
        object_store: ObjectStore | None = None,
        download_ttl_seconds: int = DOWNLOAD_URL_TTL_SECONDS,
    ) -> None:
        self._shares = share_store
        self._audit = audit_log
        self._files = file_catalog
        self._objects = object_store
        self._download_ttl = download_ttl_seconds

    # ── Internals ──

    async def _deny(
        self,
        grant: ShareGrant | None,
        reason: str,
        *,
        source_address: str | None,
        actor: AuthIdentity | None,
        now: datetime,
        extra: dict[str, Any],
    ) -> AccessResult:
        details = {'reason': reason, **extra}
        if grant is not None:
            details['share_id'] = grant.id
            details['share_type'] = grant.kind.value
        await record(
            self._audit,
            AuditAction.EXPIRED_LINK_ATTEMPT,
            resource_id=grant.resource_id if grant else None,
            actor_id=actor.user_id if actor else None,
            actor_username=actor.username if actor else None,
            source_address=source_address,
            details=details,
            now=now,
        )
        logger.info(
            'Share access denied (reason=%s, share=%s)',
            reason,
            grant.id if grant else None,
        )
        return DENIED

    async def _grant(
        self,
        grant: ShareGrant,
        action: AuditAction,
        *,
        source_address: str | None,
        actor: AuthIdentity | None,
        now: datetime,
        extra: dict[str, Any],
    ) -> AccessResult:
        try:
            count = await self._shares.increment_access(grant.id, now=now)
        except NotFoundError:
            # Grant removed between lookup and increment (file deleted).
            return await self._deny(
                grant, 'not_found',
                source_address=source_address, actor=actor, now=now, extra=extra,
            )
        try:
            await record(
                self._audit,
                action,
                resource_id=grant.resource_id,
                actor_id=actor.user_id if actor else None,
                actor_username=actor.username if actor else None,
                source_address=source_address,
                details={'share_id': grant.id, 'access_count': count, **extra},
                now=now,
            )
        except TransientStoreError:
            # The increment stands; audit completeness is best effort.
            logger.warning(
                'Audit append failed after access increment (share=%s, count=%s)',
                grant.id,
                count,
                exc_info=True,
            )
        return AccessResult(
            granted=True,
            resource_id=grant.resource_id,
            grant_id=grant.id,
            access_count=count,
        )

    async def _evaluate(
        self,
        grant: ShareGrant | None,
        action: AuditAction,
        *,
        source_address: str | None,
        actor: AuthIdentity | None,
        now: datetime | None,
        extra: dict[str, Any],
        load_file: bool = False,
    ) -> tuple[AccessResult, FileRecord | None]:
        """Deny or consume one access; optionally resolve the file first.

        With ``load_file`` a grant whose file record is gone is denied
        before anything is incremented.
        """
        now = now or utcnow()
        reason = denial_reason(grant, now=now)
        if grant is None or reason is not None:
            denied = await self._deny(
                grant, reason or 'not_found',
                source_address=source_address, actor=actor, now=now, extra=extra,
            )
            return denied, None

        file = None
        if load_file:
            file = await self._files.get(grant.resource_id)
            if file is None:
                logger.warning(
                    'Share points at a missing file (resource=%s, share=%s)',
                    grant.resource_id,
                    grant.id,
                )
                denied = await self._deny(
                    grant, 'not_found',
                    source_address=source_address,
                    actor=actor,
                    now=now,
                    extra={**extra, 'file_missing': True},
                )
                return denied, None

        access = await self._grant(
            grant, action,
            source_address=source_address, actor=actor, now=now, extra=extra,
        )
        return access, file if access.granted else None

    def _require_download_backends(self) -> None:
        if self._files is None or self._objects is None:
            raise RuntimeError('Downloads require a file catalog and an object store')

    async def _signed_download(
        self, access: AccessResult, file: FileRecord | None,
    ) -> DownloadGrant | None:
        if not access.granted or file is None:
            return None
        url = await self._objects.signed_url(
            file.storage_key,
            filename=file.filename,
            expires_in=self._download_ttl,
        )
        return DownloadGrant(download_url=url, file=file, access=access)

    # ── Public API ──

    async def access_via_token(
        self,
        token: str,
        source_address: str | None,
        *,
        actor: AuthIdentity | None = None,
        now: datetime | None = None,
    ) -> AccessResult:
        """Consume one access of a link grant."""
        access, _ = await self._via_token(token, source_address, actor=actor, now=now)
        return access

    async def _via_token(
        self,
        token: str,
        source_address: str | None,
        *,
        actor: AuthIdentity | None,
        now: datetime | None,
        load_file: bool = False,
    ) -> tuple[AccessResult, FileRecord | None]:
        grant = await self._shares.get_by_token(token)
        return await self._evaluate(
            grant,
            AuditAction.LINK_ACCESSED,
            source_address=source_address,
            actor=actor,
            now=now,
            extra={'token_prefix': redact_token(token)},
            load_file=load_file,
        )

    async def access_via_user(
        self,
        resource_id: str,
        actor: AuthIdentity,
        source_address: str | None,
        *,
        now: datetime | None = None,
    ) -> AccessResult:
        """Consume one access of the caller's user grant on *resource_id*."""
        access, _ = await self._via_user(resource_id, actor, source_address, now=now)
        return access

    async def _via_user(
        self,
        resource_id: str,
        actor: AuthIdentity,
        source_address: str | None,
        *,
        now: datetime | None,
        load_file: bool = False,
    ) -> tuple[AccessResult, FileRecord | None]:
        grant = await self._shares.get_for_recipient(resource_id, actor.user_id)
        extra: dict[str, Any] = {}
        if grant is None:
            # Unknown pair: tie the attempt to the resource anyway.
            extra['requested_resource_id'] = resource_id
        return await self._evaluate(
            grant,
            AuditAction.SHARE_ACCESSED,
            source_address=source_address,
            actor=actor,
            now=now,
            extra=extra,
            load_file=load_file,
        )

    async def preview_token(
        self,
        token: str,
        source_address: str | None = None,
        *,
        actor: AuthIdentity | None = None,
        now: datetime | None = None,
    ) -> SharePreview | None:
        """Return grant + file metadata for a valid token, without mutation.

        Invalid tokens return None and are audited as attempts.
        """
        now = now or utcnow()
        grant = await self._shares.get_by_token(token)
        reason = denial_reason(grant, now=now)
        if grant is None or reason is not None:
            await self._deny(
                grant, reason or 'not_found',
                source_address=source_address,
                actor=actor,
                now=now,
                extra={'token_prefix': redact_token(token), 'operation': 'preview'},
            )
            return None
        file = await self._files.get(grant.resource_id) if self._files else None
        return SharePreview(grant=grant, file=file)

    async def download_via_token(
        self,
        token: str,
        source_address: str | None,
        *,
        actor: AuthIdentity | None = None,
        now: datetime | None = None,
    ) -> DownloadGrant | None:
        """Consume one access and issue a short-lived retrieval URL."""
        self._require_download_backends()
        access, file = await self._via_token(
            token, source_address, actor=actor, now=now, load_file=True,
        )
        return await self._signed_download(access, file)

    async def download_via_user(
        self,
        resource_id: str,
        actor: AuthIdentity,
        source_address: str | None,
        *,
        now: datetime | None = None,
    ) -> DownloadGrant | None:
        self._require_download_backends()
        access, file = await self._via_user(
            resource_id, actor, source_address, now=now, load_file=True,
        )
        return await self._signed_download(access, file)
