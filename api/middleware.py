"""Request-scoped middleware for API requests."""

import logging
import time
from contextvars import ContextVar
from uuid import UUID, uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

_current_request_id: ContextVar[str | None] = ContextVar("current_request_id", default=None)


def get_request_id() -> str | None:
    """Request id of the request being handled, None outside a request."""
    return _current_request_id.get()


def _inbound_request_id(request: Request) -> str | None:
    """Reuse a proxy-assigned id only if it is a well-formed UUID."""
    value = request.headers.get(REQUEST_ID_HEADER)
    if not value:
        return None
    try:
        return str(UUID(value))
    except ValueError:
        return None


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns a request ID to every request and echoes it in the response.

    The same id is stamped into the response envelope's meta.request_id.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = _inbound_request_id(request) or str(uuid4())
        request.state.request_id = request_id
        token = _current_request_id.set(request_id)
        started = time.monotonic()
        try:
            response = await call_next(request)
        finally:
            _current_request_id.reset(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        logger.debug(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"in {(time.monotonic() - started) * 1000:.1f}ms [{request_id}]"
        )
        return response
