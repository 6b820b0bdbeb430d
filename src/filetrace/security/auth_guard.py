"""Authentication middleware and route dependencies.

The middleware runs in optional-auth mode: it attaches a verified
``AuthIdentity`` to ``request.state.auth_identity`` when a valid Bearer
token is present and rejects requests carrying an *invalid* token.
Requests without credentials pass through so public share-link routes
keep working; protected routes declare ``Depends(get_auth_identity)``.
"""

from __future__ import annotations

from typing import Callable

from fastapi import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from .token_verify import (
    AuthIdentity,
    TokenVerificationError,
    TokenVerifier,
    extract_bearer_token,
)


class AuthGuardMiddleware(BaseHTTPMiddleware):
    """Verify Bearer tokens; ``on_identity`` sees every verified caller."""

    def __init__(
        self,
        app,
        token_verifier: TokenVerifier,
        on_identity: Callable[[AuthIdentity], object] | None = None,
    ) -> None:
        super().__init__(app)
        self._verifier = token_verifier
        self._on_identity = on_identity

    async def dispatch(self, request: Request, call_next) -> Response:
        request.state.auth_identity = None

        token = extract_bearer_token(request)
        if token:
            try:
                request.state.auth_identity = self._verifier.verify(token)
            except TokenVerificationError as exc:
                return JSONResponse(
                    status_code=401,
                    content={
                        'error': 'unauthorized',
                        'code': exc.code,
                        'detail': exc.detail,
                    },
                    headers={'WWW-Authenticate': 'Bearer'},
                )
            if self._on_identity is not None:
                self._on_identity(request.state.auth_identity)

        return await call_next(request)


def get_optional_identity(request: Request) -> AuthIdentity | None:
    """FastAPI dependency: the caller's identity, or None if anonymous."""
    return getattr(request.state, 'auth_identity', None)


def get_auth_identity(request: Request) -> AuthIdentity:
    """FastAPI dependency that requires an authenticated caller.

    Raises:
        HTTPException: 401 if no authenticated identity on the request.
    """
    identity = get_optional_identity(request)
    if identity is None:
        raise HTTPException(
            status_code=401,
            detail={
                'error': 'unauthorized',
                'code': 'no_credentials',
                'detail': 'Authentication required',
            },
            headers={'WWW-Authenticate': 'Bearer'},
        )
    return identity


def client_address(request: Request) -> str | None:
    """Best-effort source address (first X-Forwarded-For hop, else peer)."""
    forwarded = request.headers.get('x-forwarded-for', '')
    if forwarded:
        return forwarded.split(',', 1)[0].strip() or None
    return request.client.host if request.client else None
