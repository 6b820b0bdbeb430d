"""Supabase client error hierarchy.

These errors stay small and free of httpx.Response objects (and secrets)
so they can cross layers.  Stores translate them into
``filetrace.errors`` types via ``translate_errors``.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from filetrace.errors import TransientStoreError


@dataclass(frozen=True, slots=True)
class SupabaseError(Exception):
    """Base Supabase error for PostgREST and Storage requests."""

    status_code: int
    message: str
    code: str | None = None
    details: str | None = None
    hint: str | None = None

    def __str__(self) -> str:
        bits: list[str] = [f"SupabaseError(status={self.status_code})", self.message]
        if self.code:
            bits.append(f"code={self.code}")
        if self.details:
            bits.append(f"details={self.details}")
        return " ".join(bits)


class SupabaseAuthError(SupabaseError):
    """401/403 auth errors (bad key, RLS, etc.)."""


class SupabaseNotFoundError(SupabaseError):
    """404 errors (missing table/view/route/object)."""


class SupabaseConflictError(SupabaseError):
    """409 conflicts (unique violations, etc.)."""


class SupabaseUnavailableError(SupabaseError):
    """5xx responses, timeouts and connection failures."""


class SupabaseRequestError(SupabaseError):
    """Other 4xx responses and malformed response bodies."""


@contextmanager
def translate_errors(operation: str) -> Iterator[None]:
    """Surface backend outages as ``TransientStoreError``.

    Auth and 4xx errors indicate a bug or misconfiguration and propagate
    unchanged.
    """
    try:
        yield
    except SupabaseUnavailableError as exc:
        raise TransientStoreError(f"{operation} failed: storage unavailable") from exc
