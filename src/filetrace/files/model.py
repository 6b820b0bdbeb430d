"""File records and the catalog protocol.

The catalog holds metadata only; bytes live in the object store under
``storage_key``.  Owner-scoped lookups (``get_owned``) return None for
files that exist but belong to someone else, so routes can answer both
cases with the same 404.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Mapping, Protocol, runtime_checkable

from filetrace.errors import ValidationError
from filetrace.sharing.model import parse_timestamp, utcnow, validate_identifier

FILE_CATEGORIES = ('Personal', 'Work', 'Documents', 'Archive')
MAX_FILENAME_LENGTH = 255
MAX_DESCRIPTION_LENGTH = 250

_INVALID_FILENAME = re.compile(r'[\\/:*?"<>|\x00-\x1f]')


def validate_filename(filename: Any) -> str:
    if not isinstance(filename, str):
        raise ValidationError('filename must be a string')
    name = filename.strip()
    if not name:
        raise ValidationError('filename must not be empty')
    if len(name) > MAX_FILENAME_LENGTH:
        raise ValidationError(
            f'filename must be at most {MAX_FILENAME_LENGTH} characters'
        )
    if _INVALID_FILENAME.search(name) or name in ('.', '..'):
        raise ValidationError('filename contains invalid characters')
    return name


def validate_category(category: Any) -> str:
    if category not in FILE_CATEGORIES:
        raise ValidationError(
            f'category must be one of: {", ".join(FILE_CATEGORIES)}'
        )
    return category


@dataclass(frozen=True, slots=True)
class FileRecord:
    id: str
    owner_id: str
    filename: str
    category: str
    size: int
    mimetype: str
    storage_key: str
    description: str = ''
    upload_date: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'owner_id': self.owner_id,
            'filename': self.filename,
            'category': self.category,
            'size': self.size,
            'mimetype': self.mimetype,
            'description': self.description,
            'upload_date': self.upload_date.isoformat(),
            'updated_at': self.updated_at.isoformat(),
        }

    def public_dict(self) -> dict[str, Any]:
        """Metadata safe to show to share recipients (no owner/storage key)."""
        return {
            'id': self.id,
            'filename': self.filename,
            'size': self.size,
            'mimetype': self.mimetype,
            'description': self.description,
            'upload_date': self.upload_date.isoformat(),
        }

    def to_row(self) -> dict[str, Any]:
        row = self.to_dict()
        row['storage_key'] = self.storage_key
        return row

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> FileRecord:
        return cls(
            id=str(row['id']),
            owner_id=str(row['owner_id']),
            filename=row['filename'],
            category=row['category'],
            size=int(row.get('size') or 0),
            mimetype=row.get('mimetype') or 'application/octet-stream',
            storage_key=row['storage_key'],
            description=row.get('description') or '',
            upload_date=parse_timestamp(row.get('upload_date')) or utcnow(),
            updated_at=parse_timestamp(row.get('updated_at')) or utcnow(),
        )


@runtime_checkable
class FileCatalog(Protocol):
    """File metadata persistence."""

    async def add(self, record: FileRecord) -> FileRecord: ...
    async def get(self, file_id: str) -> FileRecord | None: ...
    async def get_owned(self, file_id: str, owner_id: str) -> FileRecord | None: ...
    async def list_for_owner(self, owner_id: str) -> list[FileRecord]: ...
    async def update(self, file_id: str, **fields: Any) -> FileRecord | None: ...
    async def delete(self, file_id: str) -> bool: ...


def new_file_record(
    *,
    owner_id: str,
    filename: str,
    category: str,
    size: int,
    mimetype: str,
    storage_key: str,
    description: str = '',
    now: datetime | None = None,
) -> FileRecord:
    """Validate upload metadata and build an unsaved record."""
    problems: list[str] = []
    for check, value in (
        (lambda v: validate_identifier(v, 'owner_id'), owner_id),
        (validate_filename, filename),
        (validate_category, category),
    ):
        try:
            check(value)
        except ValidationError as exc:
            problems.extend(exc.details)
    if size < 0:
        problems.append('size must not be negative')
    if len(description) > MAX_DESCRIPTION_LENGTH:
        problems.append(
            f'description must be at most {MAX_DESCRIPTION_LENGTH} characters'
        )
    if problems:
        raise ValidationError(problems)

    now = now or utcnow()
    return FileRecord(
        id=str(uuid.uuid4()),
        owner_id=validate_identifier(owner_id, 'owner_id'),
        filename=validate_filename(filename),
        category=category,
        size=size,
        mimetype=mimetype or 'application/octet-stream',
        storage_key=storage_key,
        description=description,
        upload_date=now,
        updated_at=now,
    )


class InMemoryFileCatalog:
    def __init__(self) -> None:
        self._files: dict[str, FileRecord] = {}

    async def add(self, record: FileRecord) -> FileRecord:
        self._files[record.id] = record
        return record

    async def get(self, file_id: str) -> FileRecord | None:
        return self._files.get(validate_identifier(file_id, 'file_id'))

    async def get_owned(self, file_id: str, owner_id: str) -> FileRecord | None:
        record = await self.get(file_id)
        if record is None or record.owner_id != owner_id:
            return None
        return record

    async def list_for_owner(self, owner_id: str) -> list[FileRecord]:
        return sorted(
            (f for f in self._files.values() if f.owner_id == owner_id),
            key=lambda f: f.upload_date,
            reverse=True,
        )

    async def update(self, file_id: str, **fields: Any) -> FileRecord | None:
        record = await self.get(file_id)
        if record is None:
            return None
        updated = replace(record, **fields, updated_at=utcnow())
        self._files[record.id] = updated
        return updated

    async def delete(self, file_id: str) -> bool:
        return self._files.pop(validate_identifier(file_id, 'file_id'), None) is not None
