"""Supabase-backed UserDirectory (read-only view over ``profiles``)."""

from __future__ import annotations

from filetrace.errors import ValidationError
from filetrace.sharing.model import validate_identifier
from filetrace.users import UserRecord

from .errors import translate_errors
from .supabase_client import SupabaseClient


class SupabaseUserDirectory:
    TABLE = "profiles"
    COLUMNS = "id,username,email"

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def get(self, user_id: str) -> UserRecord | None:
        try:
            user_id = validate_identifier(user_id, "user_id")
        except ValidationError:
            return None
        with translate_errors("get user"):
            rows = await self._client.select(
                self.TABLE, {"id": user_id}, columns=self.COLUMNS, limit=1,
            )
        return UserRecord.from_row(rows[0]) if rows else None

    async def resolve(self, identifier: str) -> UserRecord | None:
        needle = identifier.strip()
        if not needle:
            return None
        column = "email" if "@" in needle else "username"
        with translate_errors("resolve user"):
            rows = await self._client.select(
                self.TABLE,
                {column: ("ilike", needle)},
                columns=self.COLUMNS,
                limit=1,
            )
        return UserRecord.from_row(rows[0]) if rows else None
