"""Object storage abstraction for file payloads.

FileTrace never streams file bytes through its own responses.  Uploads
are handed to the object store, which returns a storage key; downloads
are served from short-lived signed URLs issued for that key.

Implementations: InMemoryObjectStore (local/testing),
SupabaseObjectStore (``filetrace.db.object_store``).
"""

from __future__ import annotations

import hashlib
import hmac
import time
import uuid
from typing import Protocol, runtime_checkable
from urllib.parse import quote, urlencode

DOWNLOAD_URL_TTL_SECONDS = 3600


def build_storage_key(owner_id: str, filename: str) -> str:
    """``users/<owner>/<random>-<filename>`` so names never collide."""
    return f'users/{owner_id}/{uuid.uuid4().hex}-{filename}'


@runtime_checkable
class ObjectStore(Protocol):
    """Bytes in, storage key out; storage key in, retrieval URL out."""

    async def put(
        self,
        data: bytes,
        *,
        owner_id: str,
        filename: str,
        content_type: str,
    ) -> str: ...

    async def signed_url(
        self,
        storage_key: str,
        *,
        filename: str,
        expires_in: int = DOWNLOAD_URL_TTL_SECONDS,
    ) -> str: ...

    async def delete(self, storage_key: str) -> None: ...


class InMemoryObjectStore:
    """Keeps payloads in a dict and signs URLs with an HMAC.

    The URLs point at ``base_url`` and are not served by anything; they
    exist so callers can assert on shape and expiry.
    """

    def __init__(
        self,
        *,
        base_url: str = 'http://localhost:8000/objects',
        signing_key: bytes | None = None,
    ) -> None:
        self._objects: dict[str, tuple[bytes, str]] = {}
        self._base_url = base_url.rstrip('/')
        self._signing_key = signing_key or uuid.uuid4().bytes

    async def put(
        self,
        data: bytes,
        *,
        owner_id: str,
        filename: str,
        content_type: str,
    ) -> str:
        key = build_storage_key(owner_id, filename)
        self._objects[key] = (bytes(data), content_type)
        return key

    async def signed_url(
        self,
        storage_key: str,
        *,
        filename: str,
        expires_in: int = DOWNLOAD_URL_TTL_SECONDS,
    ) -> str:
        expires = int(time.time()) + int(expires_in)
        signature = hmac.new(
            self._signing_key,
            f'{storage_key}:{expires}'.encode(),
            hashlib.sha256,
        ).hexdigest()
        query = urlencode({
            'expires': expires,
            'download': filename,
            'signature': signature,
        })
        return f'{self._base_url}/{quote(storage_key)}?{query}'

    async def delete(self, storage_key: str) -> None:
        self._objects.pop(storage_key, None)

    def contains(self, storage_key: str) -> bool:
        return storage_key in self._objects
