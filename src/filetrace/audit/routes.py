"""Audit trail API.

  GET /api/audit/file/{file_id} → entries for an owned file, newest first
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from filetrace.errors import NotFoundError
from filetrace.files.model import FileCatalog
from filetrace.security.auth_guard import get_auth_identity
from filetrace.security.token_verify import AuthIdentity
from filetrace.sharing.model import validate_identifier

from .model import AuditLog

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 1000


def create_audit_router(
    audit_log: AuditLog,
    file_catalog: FileCatalog,
) -> APIRouter:
    router = APIRouter(prefix='/api/audit', tags=['audit'])

    @router.get('/file/{file_id}')
    async def file_audit_trail(
        file_id: str,
        limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        """Only the file owner may read its trail."""
        file_id = validate_identifier(file_id, 'file_id')
        if await file_catalog.get_owned(file_id, identity.user_id) is None:
            raise NotFoundError('File not found')
        entries = await audit_log.list_by_resource(file_id, limit=limit)
        return {'logs': [e.to_dict() for e in entries]}

    return router
