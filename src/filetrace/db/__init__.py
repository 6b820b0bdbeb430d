"""Supabase-backed stores (PostgREST + Storage)."""

from .errors import (
    SupabaseAuthError,
    SupabaseConflictError,
    SupabaseError,
    SupabaseNotFoundError,
    SupabaseRequestError,
    SupabaseUnavailableError,
)
from .supabase_client import SupabaseClient

__all__ = [
    "SupabaseAuthError",
    "SupabaseClient",
    "SupabaseConflictError",
    "SupabaseError",
    "SupabaseNotFoundError",
    "SupabaseRequestError",
    "SupabaseUnavailableError",
]
