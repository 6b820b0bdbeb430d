"""Async Supabase client (PostgREST + Storage) over httpx.

This is the single point of Supabase HTTP interaction for FileTrace
stores.  Every request goes through ``_send`` so transport failures and
5xx responses surface uniformly as ``SupabaseUnavailableError``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping
from urllib.parse import quote

import httpx

from .errors import (
    SupabaseAuthError,
    SupabaseConflictError,
    SupabaseError,
    SupabaseNotFoundError,
    SupabaseRequestError,
    SupabaseUnavailableError,
)

logger = logging.getLogger(__name__)

# Module-level shared client for connection pooling.
_shared_async_client: httpx.AsyncClient | None = None


def _get_shared_async_client() -> httpx.AsyncClient:
    global _shared_async_client
    if _shared_async_client is None:
        _shared_async_client = httpx.AsyncClient()
    return _shared_async_client


async def close_shared_async_client() -> None:
    global _shared_async_client
    if _shared_async_client is not None:
        await _shared_async_client.aclose()
        _shared_async_client = None


Filters = Mapping[str, tuple[str, Any] | Any]


def _encode_value(op: str, value: Any) -> str:
    if op == "is":
        if value is None:
            return "null"
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)
    if op == "in":
        if not isinstance(value, (list, tuple, set, frozenset)):
            raise ValueError("in operator requires an iterable of values")
        # PostgREST expects quoted strings inside `in.(...)`.
        items = [json.dumps(v) if isinstance(v, str) else str(v) for v in value]
        return f"({','.join(items)})"
    if value is None:
        raise ValueError(f"{op} does not support None; use op='is'")
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def filters_to_params(filters: Filters | None) -> dict[str, str]:
    """``{"col": ("op", value)}`` or ``{"col": value}`` (eq) to query params."""
    params: dict[str, str] = {}
    for column, spec in (filters or {}).items():
        op, value = spec if isinstance(spec, tuple) and len(spec) == 2 else ("eq", spec)
        params[column] = f"{op}.{_encode_value(op, value)}"
    return params


def _error_class(status_code: int) -> type[SupabaseError]:
    if status_code in (401, 403):
        return SupabaseAuthError
    if status_code == 404:
        return SupabaseNotFoundError
    if status_code == 409:
        return SupabaseConflictError
    if status_code >= 500:
        return SupabaseUnavailableError
    return SupabaseRequestError


def _raise_for_error(resp: httpx.Response) -> None:
    if resp.status_code < 400:
        return

    message = resp.text
    code = details = hint = None
    try:
        payload = resp.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        message = payload.get("message") or payload.get("error") or message
        code = payload.get("code")
        details = payload.get("details")
        hint = payload.get("hint")
        # Storage API reports unique violations as 400 + statusCode "409".
        if str(payload.get("statusCode", "")) == "409":
            raise SupabaseConflictError(
                status_code=409, message=message, code=code, details=details, hint=hint,
            )

    raise _error_class(resp.status_code)(
        status_code=resp.status_code,
        message=message,
        code=code,
        details=details,
        hint=hint,
    )


class SupabaseClient:
    """Minimal async Supabase client (service role)."""

    def __init__(
        self,
        *,
        supabase_url: str,
        service_role_key: str,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        if not supabase_url:
            raise ValueError("supabase_url is required")
        if not service_role_key:
            raise ValueError("service_role_key is required")

        self._supabase_url = supabase_url.rstrip("/")
        self._service_role_key = service_role_key
        self._timeout_seconds = float(timeout_seconds)
        self._client = http_client or _get_shared_async_client()

    @property
    def base_rest_url(self) -> str:
        return f"{self._supabase_url}/rest/v1"

    @property
    def base_storage_url(self) -> str:
        return f"{self._supabase_url}/storage/v1"

    def _auth_headers(self) -> dict[str, str]:
        # Never log these headers.
        return {
            "apikey": self._service_role_key,
            "Authorization": f"Bearer {self._service_role_key}",
        }

    async def _send(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            resp = await self._client.request(
                method,
                url,
                headers={**self._auth_headers(), **(headers or {})},
                timeout=self._timeout_seconds,
                **kwargs,
            )
        except httpx.TransportError as exc:
            logger.warning("Supabase %s %s transport error: %s", method, url, type(exc).__name__)
            raise SupabaseUnavailableError(
                status_code=503, message=f"transport error: {type(exc).__name__}",
            ) from exc
        _raise_for_error(resp)
        return resp

    async def _rows(self, method: str, table: str, **kwargs: Any) -> list[dict[str, Any]]:
        resp = await self._send(method, f"{self.base_rest_url}/{table}", **kwargs)
        payload = resp.json()
        if not isinstance(payload, list):
            raise SupabaseRequestError(status_code=500, message=f"expected list response from {method}")
        return payload

    # ── PostgREST ──

    async def select(
        self,
        table: str,
        filters: Filters | None = None,
        *,
        columns: str = "*",
        limit: int | None = None,
        order: str | None = None,
    ) -> list[dict[str, Any]]:
        params = filters_to_params(filters)
        params["select"] = columns
        if limit is not None:
            params["limit"] = str(int(limit))
        if order:
            params["order"] = order
        return await self._rows("GET", table, params=params)

    async def insert(self, table: str, data: Mapping[str, Any]) -> list[dict[str, Any]]:
        return await self._rows(
            "POST", table, json=dict(data), headers={"Prefer": "return=representation"},
        )

    async def update(
        self,
        table: str,
        filters: Filters,
        data: Mapping[str, Any],
    ) -> list[dict[str, Any]]:
        """Field-scoped PATCH; returns the rows the filter matched."""
        return await self._rows(
            "PATCH",
            table,
            params=filters_to_params(filters),
            json=dict(data),
            headers={"Prefer": "return=representation"},
        )

    async def delete(self, table: str, filters: Filters) -> list[dict[str, Any]]:
        return await self._rows(
            "DELETE",
            table,
            params=filters_to_params(filters),
            headers={"Prefer": "return=representation"},
        )

    async def rpc(self, function_name: str, params: Mapping[str, Any] | None = None) -> Any:
        resp = await self._send(
            "POST", f"{self.base_rest_url}/rpc/{function_name}", json=dict(params or {}),
        )
        return resp.json()

    # ── Storage ──

    def _object_url(self, bucket: str, key: str, *, action: str = "") -> str:
        prefix = f"{self.base_storage_url}/object"
        if action:
            prefix = f"{prefix}/{action}"
        return f"{prefix}/{bucket}/{quote(key)}"

    async def storage_upload(
        self,
        bucket: str,
        key: str,
        data: bytes,
        *,
        content_type: str,
    ) -> None:
        await self._send(
            "POST",
            self._object_url(bucket, key),
            content=data,
            headers={"Content-Type": content_type, "x-upsert": "false"},
        )

    async def storage_sign(self, bucket: str, key: str, *, expires_in: int) -> str:
        """Return an absolute signed URL for *key*."""
        resp = await self._send(
            "POST",
            self._object_url(bucket, key, action="sign"),
            json={"expiresIn": int(expires_in)},
        )
        payload = resp.json()
        signed = None
        if isinstance(payload, dict):
            signed = payload.get("signedURL") or payload.get("signedUrl")
        if not signed:
            raise SupabaseRequestError(status_code=500, message="sign response missing signedURL")
        return f"{self.base_storage_url}{signed}"

    async def storage_remove(self, bucket: str, keys: list[str]) -> None:
        await self._send(
            "DELETE",
            f"{self.base_storage_url}/object/{bucket}",
            json={"prefixes": keys},
        )
