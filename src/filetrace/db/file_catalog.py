"""Supabase-backed FileCatalog implementation (``files`` table)."""

from __future__ import annotations

from typing import Any

from filetrace.files.model import FileRecord
from filetrace.sharing.model import utcnow, validate_identifier

from .errors import translate_errors
from .supabase_client import SupabaseClient

_UPDATABLE = frozenset({"filename", "category", "description"})


class SupabaseFileCatalog:
    TABLE = "files"

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def add(self, record: FileRecord) -> FileRecord:
        with translate_errors("add file"):
            rows = await self._client.insert(self.TABLE, record.to_row())
        return FileRecord.from_row(rows[0]) if rows else record

    async def get(self, file_id: str) -> FileRecord | None:
        file_id = validate_identifier(file_id, "file_id")
        with translate_errors("get file"):
            rows = await self._client.select(self.TABLE, {"id": file_id}, limit=1)
        return FileRecord.from_row(rows[0]) if rows else None

    async def get_owned(self, file_id: str, owner_id: str) -> FileRecord | None:
        filters = {
            "id": validate_identifier(file_id, "file_id"),
            "owner_id": validate_identifier(owner_id, "owner_id"),
        }
        with translate_errors("get file"):
            rows = await self._client.select(self.TABLE, filters, limit=1)
        return FileRecord.from_row(rows[0]) if rows else None

    async def list_for_owner(self, owner_id: str) -> list[FileRecord]:
        owner_id = validate_identifier(owner_id, "owner_id")
        with translate_errors("list files"):
            rows = await self._client.select(
                self.TABLE, {"owner_id": owner_id}, order="upload_date.desc",
            )
        return [FileRecord.from_row(row) for row in rows]

    async def update(self, file_id: str, **fields: Any) -> FileRecord | None:
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update file fields: {sorted(unknown)}")
        file_id = validate_identifier(file_id, "file_id")
        with translate_errors("update file"):
            rows = await self._client.update(
                self.TABLE,
                {"id": file_id},
                {**fields, "updated_at": utcnow().isoformat()},
            )
        return FileRecord.from_row(rows[0]) if rows else None

    async def delete(self, file_id: str) -> bool:
        file_id = validate_identifier(file_id, "file_id")
        with translate_errors("delete file"):
            rows = await self._client.delete(self.TABLE, {"id": file_id})
        return bool(rows)
