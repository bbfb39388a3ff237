"""HTTP middleware for cryptouser.

RequestIdMiddleware
  Assigns every request a ULID, binds it into the structlog context for the
  duration of the request, and returns it in the X-Request-ID header.

BodySizeLimitMiddleware
  Enforces the MAX_REQUEST_BODY_BYTES cap before any handler runs:
    1. Content-Length fast path: reject immediately on an oversized value.
    2. Chunked / no Content-Length: accumulate with a rolling cap and reject
       as soon as the cap is crossed.
"""

from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from cryptouser.constants import MAX_REQUEST_BODY_BYTES
from cryptouser.utils.logger import clear_request_id, get_logger, set_request_id
from cryptouser.utils.ulid import generate_ulid

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

_PAYLOAD_TOO_LARGE_BODY: dict = {"error": "413 Payload Too Large"}

_INVALID_CONTENT_LENGTH_BODY: dict = {"error": "400 Bad Request"}


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag each request with a ULID for log correlation."""

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        request_id = generate_ulid()
        set_request_id(request_id)
        try:
            response = await call_next(request)
        finally:
            clear_request_id()
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject request bodies larger than MAX_REQUEST_BODY_BYTES with HTTP 413.

    Registration (in create_app() in cryptouser/main.py):
        application.add_middleware(BodySizeLimitMiddleware)
    """

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        content_length_header = request.headers.get("content-length")

        # ── Phase 1: Content-Length fast path ─────────────────────────────────
        if content_length_header is not None:
            try:
                declared_size = int(content_length_header)
            except ValueError:
                logger.warning(
                    "Invalid Content-Length header",
                    value=content_length_header,
                    path=request.url.path,
                )
                return JSONResponse(status_code=400, content=_INVALID_CONTENT_LENGTH_BODY)

            if declared_size > MAX_REQUEST_BODY_BYTES:
                logger.warning(
                    "Request body too large (Content-Length)",
                    declared_size=declared_size,
                    limit=MAX_REQUEST_BODY_BYTES,
                    path=request.url.path,
                )
                return JSONResponse(status_code=413, content=_PAYLOAD_TOO_LARGE_BODY)

            return await call_next(request)

        # ── Phase 2: Chunked / no Content-Length: rolling cap ───────────────
        body_chunks: list[bytes] = []
        total_size: int = 0

        async for chunk in request.stream():
            total_size += len(chunk)
            if total_size > MAX_REQUEST_BODY_BYTES:
                logger.warning(
                    "Request body too large (chunked)",
                    accumulated_size=total_size,
                    limit=MAX_REQUEST_BODY_BYTES,
                    path=request.url.path,
                )
                return JSONResponse(status_code=413, content=_PAYLOAD_TOO_LARGE_BODY)
            body_chunks.append(chunk)

        # Starlette's Request.body() returns request._body when set, so the
        # handler can still read the already-consumed stream.
        request._body = b"".join(body_chunks)  # type: ignore[attr-defined]

        return await call_next(request)
