"""Access-token verification.

Token issuance (login, password hashing) belongs to the authentication
service.  FileTrace only verifies the tokens it is handed and turns
them into an ``AuthIdentity``.

Key sources:
  - JWKS (RS256) from the Supabase project when ``SUPABASE_URL`` is set
    and no shared secret is configured.
  - A shared secret (HS256) otherwise, typically ``JWT_SECRET``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import jwt
from jwt import PyJWKClient, PyJWKClientError
from starlette.requests import Request

# ── Constants ─────────────────────────────────────────────────────────

DEFAULT_AUDIENCE = 'authenticated'
JWKS_CACHE_TTL_SECONDS = 300
BEARER_PREFIX = 'Bearer '

# ── Types ─────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class AuthIdentity:
    """Verified identity extracted from a valid JWT.

    Attributes:
        user_id: User identifier (``sub`` claim).
        username: Display username, snapshotted into audit entries.
        email: Normalized email address.
        raw_claims: Full decoded JWT payload.
    """

    user_id: str
    username: str
    email: str = ''
    raw_claims: dict[str, Any] = field(default_factory=dict)


class TokenVerificationError(Exception):
    """Raised when token verification fails."""

    def __init__(self, code: str, detail: str = '') -> None:
        self.code = code
        self.detail = detail
        super().__init__(f'{code}: {detail}' if detail else code)


class KeyProvider(Protocol):
    def get_signing_key(self, token: str) -> Any: ...


class JWKSKeyProvider:
    """Fetches signing keys from a JWKS endpoint with caching."""

    def __init__(self, jwks_url: str, cache_ttl: int = JWKS_CACHE_TTL_SECONDS) -> None:
        self._client = PyJWKClient(jwks_url, cache_jwk_set=True, lifespan=cache_ttl)

    def get_signing_key(self, token: str) -> Any:
        try:
            return self._client.get_signing_key_from_jwt(token).key
        except PyJWKClientError as exc:
            raise TokenVerificationError('jwks_fetch_error', str(exc)) from exc


class StaticKeyProvider:
    """Shared-secret key provider for HS256."""

    def __init__(self, secret: str) -> None:
        self._secret = secret

    def get_signing_key(self, token: str) -> str:
        return self._secret


# ── Token Verifier ───────────────────────────────────────────────────


def _username_from_claims(claims: dict[str, Any]) -> str:
    metadata = claims.get('user_metadata') or {}
    username = claims.get('username') or metadata.get('username')
    if username:
        return str(username)
    email = claims.get('email') or ''
    return email.split('@', 1)[0] if email else str(claims.get('sub', ''))


class TokenVerifier:
    """Verifies JWTs and extracts identity claims.

    Args:
        key_provider: Resolves the signing key for a token.
        algorithms: Accepted JWT algorithms.
        audience: Expected ``aud`` claim, or None to skip the check.
    """

    def __init__(
        self,
        key_provider: KeyProvider,
        algorithms: list[str],
        audience: str | None = None,
    ) -> None:
        self._key_provider = key_provider
        self._algorithms = algorithms
        self._audience = audience

    def verify(self, token: str) -> AuthIdentity:
        """Verify a raw JWT (no ``Bearer `` prefix).

        Raises:
            TokenVerificationError: On any verification failure.
        """
        if not token or not token.strip():
            raise TokenVerificationError('empty_token')

        key = self._key_provider.get_signing_key(token)
        required = ['sub', 'exp'] + (['aud'] if self._audience else [])
        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=self._algorithms,
                audience=self._audience,
                options={
                    'require': required,
                    'verify_exp': True,
                    'verify_aud': self._audience is not None,
                },
            )
        except jwt.ExpiredSignatureError:
            raise TokenVerificationError('token_expired')
        except jwt.InvalidAudienceError:
            raise TokenVerificationError('invalid_audience', f'expected {self._audience}')
        except jwt.InvalidTokenError as exc:
            raise TokenVerificationError('invalid_token', str(exc))

        user_id = claims.get('sub')
        if not user_id:
            raise TokenVerificationError('missing_sub_claim')

        email = claims.get('email') or ''
        return AuthIdentity(
            user_id=str(user_id),
            username=_username_from_claims(claims),
            email=email.lower(),
            raw_claims=claims,
        )


# ── Request helpers ──────────────────────────────────────────────────


def extract_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get('authorization', '')
    if auth_header.startswith(BEARER_PREFIX):
        return auth_header[len(BEARER_PREFIX):].strip()
    return None


def create_token_verifier(
    *,
    jwt_secret: str | None = None,
    supabase_url: str | None = None,
) -> TokenVerifier:
    """Build a verifier: HS256 with ``jwt_secret``, else Supabase JWKS.

    Raises:
        ValueError: If neither a secret nor a Supabase URL is provided.
    """
    if jwt_secret:
        return TokenVerifier(StaticKeyProvider(jwt_secret), algorithms=['HS256'])

    if supabase_url:
        jwks_url = f'{supabase_url.rstrip("/")}/auth/v1/.well-known/jwks.json'
        return TokenVerifier(
            JWKSKeyProvider(jwks_url),
            algorithms=['RS256'],
            audience=DEFAULT_AUDIENCE,
        )

    raise ValueError('Either jwt_secret (HS256) or supabase_url (JWKS) is required')
