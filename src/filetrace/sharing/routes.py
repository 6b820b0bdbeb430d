"""Share API endpoints.

  POST   /api/share/create                   → create link or user share
  GET    /api/share/shared-with-me           → active user shares for caller
  POST   /api/share/user/{file_id}/download  → download via user share
  GET    /api/share/file/{file_id}           → list shares on owned file
  DELETE /api/share/file/{file_id}/all       → revoke all shares on file
  DELETE /api/share/{share_id}               → revoke one share
  GET    /api/share/{token}                  → public preview
  POST   /api/share/{token}/download         → public download

Denial contract:
  Unknown, revoked, expired and exhausted tokens all get the same 403
  body.  The specific reason only reaches the audit log.

This module provides:
  ``create_share_router``: FastAPI router factory with injected deps.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from filetrace.security.auth_guard import (
    client_address,
    get_auth_identity,
    get_optional_identity,
)
from filetrace.security.token_verify import AuthIdentity

from .access import AccessAccountant
from .model import MAX_EXPIRATION_MINUTES, MIN_EXPIRATION_MINUTES, ShareKind
from .service import ShareService

SHARE_DENIED_MESSAGE = 'Share link has expired or reached maximum accesses'


# ── Request schemas ──────────────────────────────────────────────────


class CreateShareRequest(BaseModel):
    """Request body for share creation.

    At least one of ``expiration_minutes`` / ``max_access_count`` is
    required; the store enforces that so every entry point agrees.
    """

    file_id: str = Field(..., min_length=1)
    share_type: ShareKind
    recipient_identifier: str | None = Field(
        default=None, description='Username or email (user shares only)',
    )
    expiration_minutes: int | None = Field(
        default=None, ge=MIN_EXPIRATION_MINUTES, le=MAX_EXPIRATION_MINUTES,
    )
    max_access_count: int | None = Field(default=None, ge=1)


def _denied() -> JSONResponse:
    return JSONResponse(status_code=403, content={'error': SHARE_DENIED_MESSAGE})


# ── Route factory ────────────────────────────────────────────────────


def create_share_router(
    share_service: ShareService,
    accountant: AccessAccountant,
) -> APIRouter:
    """Create the share router with injected dependencies.

    Fixed paths are registered before ``/{token}`` so they are not
    captured as tokens.
    """
    router = APIRouter(prefix='/api/share', tags=['shares'])

    @router.post('/create', status_code=201)
    async def create_share(
        body: CreateShareRequest,
        request: Request,
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        created = await share_service.create_share(
            identity,
            body.file_id,
            body.share_type,
            recipient_identifier=body.recipient_identifier,
            expiration_minutes=body.expiration_minutes,
            max_access_count=body.max_access_count,
            source_address=client_address(request),
        )
        return {'share': created.to_dict()}

    @router.get('/shared-with-me')
    async def shared_with_me(
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        return {'shares': await share_service.shared_with_me(identity)}

    @router.post('/user/{file_id}/download')
    async def download_user_share(
        file_id: str,
        request: Request,
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        grant = await accountant.download_via_user(
            file_id, identity, client_address(request),
        )
        if grant is None:
            return _denied()
        return {
            'download_url': grant.download_url,
            'file': grant.file.public_dict(),
        }

    @router.get('/file/{file_id}')
    async def list_file_shares(
        file_id: str,
        active_only: bool = False,
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        grants = await share_service.list_for_file(
            identity, file_id, active_only=active_only,
        )
        return {'shares': [g.to_dict() for g in grants]}

    @router.delete('/file/{file_id}/all')
    async def revoke_all_shares(
        file_id: str,
        request: Request,
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        modified = await share_service.revoke_all(
            identity, file_id, source_address=client_address(request),
        )
        return {'modified_count': modified}

    @router.delete('/{share_id}')
    async def revoke_share(
        share_id: str,
        request: Request,
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        """Revoke one share. Idempotent: a second call reports 0."""
        modified = await share_service.revoke(
            identity, share_id, source_address=client_address(request),
        )
        return {'modified_count': modified}

    @router.get('/{token}')
    async def preview_share(
        token: str,
        request: Request,
        identity: AuthIdentity | None = Depends(get_optional_identity),
    ):
        """Public metadata for a valid token. Does not count as an access."""
        preview = await accountant.preview_token(
            token, client_address(request), actor=identity,
        )
        if preview is None:
            return _denied()
        return preview.to_dict()

    @router.post('/{token}/download')
    async def download_share(
        token: str,
        request: Request,
        identity: AuthIdentity | None = Depends(get_optional_identity),
    ):
        grant = await accountant.download_via_token(
            token, client_address(request), actor=identity,
        )
        if grant is None:
            return _denied()
        return {
            'download_url': grant.download_url,
            'file': grant.file.public_dict(),
            'access_count': grant.access.access_count,
        }

    return router
