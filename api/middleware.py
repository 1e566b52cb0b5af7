"""Request-scoped middleware for API requests."""

import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns a unique request ID to every request.

    An inbound X-Request-ID is honoured when it looks sane, so traces can
    span a proxy.
    """

    HEADER = "X-Request-ID"
    MAX_INBOUND_LENGTH = 128

    async def dispatch(self, request: Request, call_next):
        inbound = request.headers.get(self.HEADER)
        if inbound and len(inbound) <= self.MAX_INBOUND_LENGTH and inbound.isprintable():
            request_id = inbound
        else:
            request_id = str(uuid4())
        request.state.request_id = request_id

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        response.headers[self.HEADER] = request_id
        logger.debug(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"({elapsed_ms:.1f}ms) [{request_id}]"
        )
        return response
