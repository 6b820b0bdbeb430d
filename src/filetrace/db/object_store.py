"""Supabase Storage-backed ObjectStore."""

from __future__ import annotations

from urllib.parse import urlencode

from filetrace.storage import DOWNLOAD_URL_TTL_SECONDS, build_storage_key

from .errors import translate_errors
from .supabase_client import SupabaseClient


class SupabaseObjectStore:
    def __init__(self, client: SupabaseClient, *, bucket: str) -> None:
        if not bucket:
            raise ValueError("bucket is required")
        self._client = client
        self._bucket = bucket

    async def put(
        self,
        data: bytes,
        *,
        owner_id: str,
        filename: str,
        content_type: str,
    ) -> str:
        key = build_storage_key(owner_id, filename)
        with translate_errors("upload object"):
            await self._client.storage_upload(
                self._bucket, key, data, content_type=content_type,
            )
        return key

    async def signed_url(
        self,
        storage_key: str,
        *,
        filename: str,
        expires_in: int = DOWNLOAD_URL_TTL_SECONDS,
    ) -> str:
        with translate_errors("sign object url"):
            url = await self._client.storage_sign(
                self._bucket, storage_key, expires_in=expires_in,
            )
        # ``download`` makes Storage send Content-Disposition: attachment.
        separator = "&" if "?" in url else "?"
        return f"{url}{separator}{urlencode({'download': filename})}"

    async def delete(self, storage_key: str) -> None:
        with translate_errors("delete object"):
            await self._client.storage_remove(self._bucket, [storage_key])
