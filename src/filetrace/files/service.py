"""Owner actions on files, each leaving one audit entry."""

from __future__ import annotations

import logging
from datetime import datetime

from filetrace.audit.model import AuditAction, AuditLog, record_quietly
from filetrace.errors import NotFoundError
from filetrace.security.token_verify import AuthIdentity
from filetrace.sharing.model import utcnow, validate_identifier
from filetrace.sharing.store import ShareStore
from filetrace.storage import DOWNLOAD_URL_TTL_SECONDS, ObjectStore

from .model import (
    FileCatalog,
    FileRecord,
    new_file_record,
    validate_category,
    validate_filename,
)

logger = logging.getLogger(__name__)


class FileService:
    def __init__(
        self,
        file_catalog: FileCatalog,
        object_store: ObjectStore,
        share_store: ShareStore,
        audit_log: AuditLog,
    ) -> None:
        self._files = file_catalog
        self._objects = object_store
        self._shares = share_store
        self._audit = audit_log

    async def _owned(self, file_id: str, owner: AuthIdentity) -> FileRecord:
        record = await self._files.get_owned(
            validate_identifier(file_id, 'file_id'), owner.user_id,
        )
        if record is None:
            raise NotFoundError('File not found')
        return record

    async def _audit_action(
        self,
        action: AuditAction,
        record: FileRecord,
        owner: AuthIdentity,
        source_address: str | None,
        now: datetime,
        **details,
    ) -> None:
        await record_quietly(
            self._audit,
            action,
            resource_id=record.id,
            actor_id=owner.user_id,
            actor_username=owner.username,
            source_address=source_address,
            details={'filename': record.filename, **details},
            now=now,
        )

    async def list_files(self, owner: AuthIdentity) -> list[FileRecord]:
        return await self._files.list_for_owner(owner.user_id)

    async def upload(
        self,
        owner: AuthIdentity,
        data: bytes,
        *,
        filename: str,
        category: str,
        mimetype: str = 'application/octet-stream',
        description: str = '',
        source_address: str | None = None,
        now: datetime | None = None,
    ) -> FileRecord:
        """Validate metadata, store the bytes, then catalog the file.

        Raises:
            ValidationError: Bad filename, category or description.
        """
        now = now or utcnow()
        # Validate before touching the object store.
        new_file_record(
            owner_id=owner.user_id,
            filename=filename,
            category=category,
            size=len(data),
            mimetype=mimetype,
            storage_key='',
            description=description,
            now=now,
        )
        storage_key = await self._objects.put(
            data,
            owner_id=owner.user_id,
            filename=validate_filename(filename),
            content_type=mimetype,
        )
        record = await self._files.add(new_file_record(
            owner_id=owner.user_id,
            filename=filename,
            category=category,
            size=len(data),
            mimetype=mimetype,
            storage_key=storage_key,
            description=description,
            now=now,
        ))
        await self._audit_action(
            AuditAction.UPLOAD, record, owner, source_address, now,
            size=record.size, category=record.category,
        )
        logger.info('File uploaded (file=%s, size=%d)', record.id, record.size)
        return record

    async def download_url(
        self,
        owner: AuthIdentity,
        file_id: str,
        *,
        source_address: str | None = None,
        now: datetime | None = None,
    ) -> tuple[FileRecord, str]:
        """Owner download: signed URL plus a ``DOWNLOAD`` entry."""
        now = now or utcnow()
        record = await self._owned(file_id, owner)
        url = await self._objects.signed_url(
            record.storage_key,
            filename=record.filename,
            expires_in=DOWNLOAD_URL_TTL_SECONDS,
        )
        await self._audit_action(
            AuditAction.DOWNLOAD, record, owner, source_address, now,
        )
        return record, url

    async def rename(
        self,
        owner: AuthIdentity,
        file_id: str,
        new_filename: str,
        *,
        source_address: str | None = None,
        now: datetime | None = None,
    ) -> FileRecord:
        now = now or utcnow()
        record = await self._owned(file_id, owner)
        new_filename = validate_filename(new_filename)
        if new_filename == record.filename:
            return record
        updated = await self._files.update(record.id, filename=new_filename)
        if updated is None:
            raise NotFoundError('File not found')
        await record_quietly(
            self._audit,
            AuditAction.NAME_CHANGE,
            resource_id=record.id,
            actor_id=owner.user_id,
            actor_username=owner.username,
            source_address=source_address,
            details={'old_filename': record.filename, 'new_filename': new_filename},
            now=now,
        )
        return updated

    async def change_category(
        self,
        owner: AuthIdentity,
        file_id: str,
        category: str,
        *,
        source_address: str | None = None,
        now: datetime | None = None,
    ) -> FileRecord:
        now = now or utcnow()
        record = await self._owned(file_id, owner)
        category = validate_category(category)
        if category == record.category:
            return record
        updated = await self._files.update(record.id, category=category)
        if updated is None:
            raise NotFoundError('File not found')
        await self._audit_action(
            AuditAction.CATEGORY_CHANGE, updated, owner, source_address, now,
            old_category=record.category, new_category=category,
        )
        return updated

    async def delete(
        self,
        owner: AuthIdentity,
        file_id: str,
        *,
        source_address: str | None = None,
        now: datetime | None = None,
    ) -> None:
        """Delete a file and every grant on it (revoked first, then removed)."""
        now = now or utcnow()
        record = await self._owned(file_id, owner)
        revoked = await self._shares.revoke_all_for_resource(record.id, now=now)
        removed = await self._shares.delete_for_resource(record.id)
        await self._files.delete(record.id)
        await self._objects.delete(record.storage_key)
        await self._audit_action(
            AuditAction.DELETE, record, owner, source_address, now,
            shares_revoked=revoked, shares_removed=removed,
        )
        logger.info('File deleted (file=%s, shares_removed=%d)', record.id, removed)
