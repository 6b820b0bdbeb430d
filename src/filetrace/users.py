"""User directory used to resolve share recipients.

Account management (registration, password hashing, sessions) is owned
by the authentication service; FileTrace only reads users.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping, Protocol, runtime_checkable

if TYPE_CHECKING:
    from filetrace.security.token_verify import AuthIdentity


@dataclass(frozen=True, slots=True)
class UserRecord:
    id: str
    username: str
    email: str

    def public_dict(self) -> dict[str, Any]:
        return {'id': self.id, 'username': self.username, 'email': self.email}

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> UserRecord:
        return cls(
            id=str(row['id']),
            username=row['username'],
            email=row.get('email') or '',
        )


@runtime_checkable
class UserDirectory(Protocol):
    async def get(self, user_id: str) -> UserRecord | None: ...

    async def resolve(self, identifier: str) -> UserRecord | None:
        """Find a user by username or email (case-insensitive)."""
        ...


class InMemoryUserDirectory:
    def __init__(self) -> None:
        self._users: dict[str, UserRecord] = {}

    def add(self, username: str, email: str, user_id: str | None = None) -> UserRecord:
        user = UserRecord(
            id=user_id or str(uuid.uuid4()),
            username=username,
            email=email,
        )
        self._users[user.id] = user
        return user

    def remember(self, identity: AuthIdentity) -> UserRecord:
        """Record a verified caller so others can share with them.

        Local mode has no profiles table; the directory is filled from
        the identities that authenticate. Known ids are left as they are.
        """
        known = self._users.get(identity.user_id)
        if known is not None:
            return known
        return self.add(identity.username, identity.email, user_id=identity.user_id)

    async def get(self, user_id: str) -> UserRecord | None:
        return self._users.get(user_id)

    async def resolve(self, identifier: str) -> UserRecord | None:
        needle = identifier.strip().lower()
        if not needle:
            return None
        for user in self._users.values():
            if user.username.lower() == needle or user.email.lower() == needle:
                return user
        return None
