"""Request correlation middleware."""

from __future__ import annotations

import re
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from .logging import request_id_ctx

# 8-128 chars of hex, dash, or alphanumeric.
_VALID_REQUEST_ID = re.compile(r"^[a-zA-Z0-9\-]{8,128}$")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Generate or accept X-Request-ID and propagate it via contextvars.

    Malformed incoming IDs are replaced with a fresh UUID.  The ID is
    also stored on ``request.state.request_id`` for error handlers.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        incoming_id = request.headers.get("x-request-id", "")
        if incoming_id and _VALID_REQUEST_ID.match(incoming_id):
            rid = incoming_id
        else:
            rid = str(uuid.uuid4())

        request.state.request_id = rid
        token = request_id_ctx.set(rid)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(token)

        response.headers["X-Request-ID"] = rid
        return response
