"""HTTP middleware for request ID propagation and correlation.

Every request/response pair carries a correlation ID so that governance
events (``rate_limit.rejected``, ``cache.hit``) logged while serving a request
can be tied back to it.

The middleware:
- Accepts the configured request-id header or generates a UUID
- Stores request_id in contextvars for the request lifecycle
- Echoes request_id and the request duration in response headers
- Clears context after completion to prevent context leaks

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response

from ai_governance.core.config import settings
from ai_governance.core.logging import clear_request_id, set_request_id

_MAX_REQUEST_ID_LENGTH = 128


def _incoming_request_id(request: Request, header_name: str) -> str:
    """Return the client's request id, or a fresh UUID when absent or oversized."""
    incoming = (request.headers.get(header_name) or "").strip()
    if incoming and len(incoming) <= _MAX_REQUEST_ID_LENGTH:
        return incoming
    return str(uuid.uuid4())


async def request_id_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """Bind a request id for the request and echo it on the response.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response with the request id and ``X-Request-Duration-ms`` headers.
    """

    header_name = settings.log.request_id_header
    request_id = _incoming_request_id(request, header_name)
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
