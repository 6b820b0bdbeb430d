"""Share grants: link and user shares with expiry and access limits."""

from .model import (
    MAX_EXPIRATION_MINUTES,
    MIN_EXPIRATION_MINUTES,
    ShareGrant,
    ShareKind,
    denial_reason,
    generate_share_token,
    is_valid,
)
from .store import (
    TOKEN_RETRY_ATTEMPTS,
    InMemoryShareStore,
    ShareStore,
)

__all__ = [
    'InMemoryShareStore',
    'MAX_EXPIRATION_MINUTES',
    'MIN_EXPIRATION_MINUTES',
    'ShareGrant',
    'ShareKind',
    'ShareStore',
    'TOKEN_RETRY_ATTEMPTS',
    'denial_reason',
    'generate_share_token',
    'is_valid',
]
