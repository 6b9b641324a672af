"""Request id middleware.

Every request gets a correlation id: the one the client sent in the
configured header (``LOG_REQUEST_ID_HEADER``, default ``X-Request-ID``) or a
fresh UUID. The id is bound to the logging context for the duration of the
request, so rejections logged by the quota gate carry it, and it is echoed
back together with the request duration.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from app.core.config import settings
from app.core.logging import clear_request_id, set_request_id


async def request_id_middleware(request: Request, call_next) -> Response:
    """Bind a request id to the logging context and echo it in the response.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The downstream response with ``X-Request-ID`` (or the
            configured header) and ``X-Request-Duration-ms`` added.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault(
        "X-Request-Duration-ms", f"{(time.perf_counter() - start) * 1000:.2f}"
    )
    return response
