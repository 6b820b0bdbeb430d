"""Domain error to HTTP response normalization.

Maps ``FileTraceError`` subclasses and request validation failures to
stable, browser-safe JSON bodies without leaking storage internals.

Goals:
  1. No backend URLs, PostgREST messages, or stack traces reach clients.
  2. Every domain error maps to a known status and body shape.
  3. Failures are logged with full detail server-side.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from filetrace.errors import (
    DuplicateShareError,
    FileTraceError,
    NotFoundError,
    ShareStoreError,
    TransientStoreError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error categories ──


class ErrorCategory(Enum):
    VALIDATION = 'validation'
    NOT_FOUND = 'not_found'
    CONFLICT = 'conflict'
    UNAVAILABLE = 'unavailable'
    INTERNAL = 'internal'


@dataclass(frozen=True)
class NormalizedError:
    """A normalized error ready for client consumption.

    Fields:
      category: High-level error type for programmatic handling
      http_status: HTTP status code
      message: Safe, human-readable error message
      retry_after: Seconds the client should wait before retrying (0 = no retry)
    """
    category: ErrorCategory
    http_status: int
    message: str
    retry_after: int = 0


_INTERNAL = NormalizedError(
    category=ErrorCategory.INTERNAL,
    http_status=500,
    message='Internal error',
)

# Most specific class first.
_ERROR_MAP: tuple[tuple[type[FileTraceError], NormalizedError], ...] = (
    (ValidationError, NormalizedError(
        category=ErrorCategory.VALIDATION,
        http_status=400,
        message='Validation failed',
    )),
    (NotFoundError, NormalizedError(
        category=ErrorCategory.NOT_FOUND,
        http_status=404,
        message='Resource not found',
    )),
    (DuplicateShareError, NormalizedError(
        category=ErrorCategory.CONFLICT,
        http_status=409,
        message='File is already shared with this user',
    )),
    (TransientStoreError, NormalizedError(
        category=ErrorCategory.UNAVAILABLE,
        http_status=503,
        message='Service temporarily unavailable',
        retry_after=5,
    )),
    (ShareStoreError, _INTERNAL),
)


def normalize_error(exc: FileTraceError) -> NormalizedError:
    for exc_type, normalized in _ERROR_MAP:
        if isinstance(exc, exc_type):
            return normalized
    return _INTERNAL


def error_response_body(normalized: NormalizedError, exc: Exception | None = None) -> dict:
    """Build the JSON body for *normalized*.

    Validation errors carry their ``details`` list; not-found errors
    carry their (already client-safe) message.  Nothing else does.
    """
    body: dict = {'error': normalized.message}
    if isinstance(exc, ValidationError):
        body['details'] = exc.details
    elif isinstance(exc, NotFoundError) and str(exc):
        body['error'] = str(exc)
    if normalized.retry_after > 0:
        body['retry_after'] = normalized.retry_after
    return body


def _request_id(request: Request) -> str:
    return getattr(request.state, 'request_id', '') or ''


async def _handle_domain_error(request: Request, exc: FileTraceError) -> JSONResponse:
    normalized = normalize_error(exc)
    if normalized.http_status >= 500:
        logger.error(
            'Request failed %s %s -> %d (request_id=%s, internal=%r)',
            request.method, request.url.path, normalized.http_status,
            _request_id(request), exc,
        )
    headers = (
        {'Retry-After': str(normalized.retry_after)}
        if normalized.retry_after > 0 else None
    )
    return JSONResponse(
        status_code=normalized.http_status,
        content=error_response_body(normalized, exc),
        headers=headers,
    )


async def _handle_request_validation(
    request: Request, exc: RequestValidationError,
) -> JSONResponse:
    details = []
    for error in exc.errors():
        location = '.'.join(str(part) for part in error.get('loc', ()) if part != 'body')
        message = error.get('msg', 'invalid value')
        details.append(f'{location}: {message}' if location else message)
    return JSONResponse(
        status_code=400,
        content={'error': 'Validation failed', 'details': details},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FileTraceError, _handle_domain_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation)
