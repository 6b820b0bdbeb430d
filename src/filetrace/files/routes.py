"""File API endpoints (owner only).

  POST   /api/files?filename=..&category=..  → upload (raw request body)
  GET    /api/files                          → list caller's files
  POST   /api/files/{file_id}/download       → signed download URL
  PATCH  /api/files/{file_id}                → rename and/or recategorize
  DELETE /api/files/{file_id}                → delete file and its shares
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from filetrace.errors import ValidationError
from filetrace.security.auth_guard import client_address, get_auth_identity
from filetrace.security.token_verify import AuthIdentity

from .model import MAX_DESCRIPTION_LENGTH, MAX_FILENAME_LENGTH
from .service import FileService


class UpdateFileRequest(BaseModel):
    filename: str | None = Field(default=None, min_length=1, max_length=MAX_FILENAME_LENGTH)
    category: str | None = None


def create_files_router(file_service: FileService) -> APIRouter:
    router = APIRouter(prefix='/api/files', tags=['files'])

    @router.post('', status_code=201)
    async def upload_file(
        request: Request,
        filename: str = Query(..., min_length=1, max_length=MAX_FILENAME_LENGTH),
        category: str = Query(...),
        description: str = Query(default='', max_length=MAX_DESCRIPTION_LENGTH),
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        data = await request.body()
        record = await file_service.upload(
            identity,
            data,
            filename=filename,
            category=category,
            mimetype=request.headers.get('content-type') or 'application/octet-stream',
            description=description,
            source_address=client_address(request),
        )
        return {'file': record.to_dict()}

    @router.get('')
    async def list_files(identity: AuthIdentity = Depends(get_auth_identity)):
        files = await file_service.list_files(identity)
        return {'files': [f.to_dict() for f in files]}

    @router.post('/{file_id}/download')
    async def download_file(
        file_id: str,
        request: Request,
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        record, url = await file_service.download_url(
            identity, file_id, source_address=client_address(request),
        )
        return {'download_url': url, 'file': record.to_dict()}

    @router.patch('/{file_id}')
    async def update_file(
        file_id: str,
        body: UpdateFileRequest,
        request: Request,
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        source = client_address(request)
        record = None
        if body.filename is not None:
            record = await file_service.rename(
                identity, file_id, body.filename, source_address=source,
            )
        if body.category is not None:
            record = await file_service.change_category(
                identity, file_id, body.category, source_address=source,
            )
        if record is None:
            raise ValidationError('filename or category is required')
        return {'file': record.to_dict()}

    @router.delete('/{file_id}')
    async def delete_file(
        file_id: str,
        request: Request,
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        await file_service.delete(
            identity, file_id, source_address=client_address(request),
        )
        return {'deleted': True}

    return router
