"""Domain error hierarchy shared by stores, services and routes.

Stores raise these regardless of backend so callers never depend on
httpx or PostgREST specifics.  Denied share access is *not* an error;
see ``filetrace.sharing.access``.
"""

from __future__ import annotations


class FileTraceError(Exception):
    """Base class for all FileTrace domain errors."""


class ValidationError(FileTraceError, ValueError):
    """Malformed input: bad identifier, missing expiration method, bad range.

    ``details`` is a list of human-readable messages, one per problem.
    """

    def __init__(self, details: list[str] | str) -> None:
        if isinstance(details, str):
            details = [details]
        self.details = list(details)
        super().__init__('; '.join(self.details))


class NotFoundError(FileTraceError):
    """A record that the calling context assumes to exist is missing."""


class DuplicateShareError(FileTraceError):
    """An active user share already exists for (resource_id, recipient_id)."""

    def __init__(self, resource_id: str, recipient_id: str) -> None:
        self.resource_id = resource_id
        self.recipient_id = recipient_id
        super().__init__(
            f'Resource {resource_id} is already shared with user {recipient_id}'
        )


class ShareStoreError(FileTraceError):
    """Unrecoverable store condition (e.g. token collisions exhausted retries)."""


class TransientStoreError(FileTraceError):
    """Storage unreachable or timed out.

    Safe to retry for reads and idempotent writes.  An ambiguous failure
    during an access increment must be treated as "it happened".
    """
