"""Request ID Middleware.

Tags every request with an id that is:
- Taken from the X-Request-ID header, or generated
- Bound to services.logging_config.request_id_var for the request's logs
- Returned in the X-Request-ID response header

Usage:
    from middleware.correlation import RequestIdMiddleware

    app.add_middleware(RequestIdMiddleware)
"""

import uuid
from typing import Any, Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from services.logging_config import request_id_var

REQUEST_ID_HEADER = "X-Request-ID"


def get_request_id() -> Optional[str]:
    return request_id_var.get()


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Binds a request id to the logging context for each request."""

    def __init__(
        self,
        app,
        header_name: str = REQUEST_ID_HEADER,
        generator: Optional[Callable[[], str]] = None,
    ):
        super().__init__(app)
        self.header_name = header_name
        self.generator = generator or (lambda: f"req_{uuid.uuid4().hex[:12]}")

    async def dispatch(self, request: Request, call_next: Callable[[Request], Any]) -> Response:
        request_id = request.headers.get(self.header_name) or self.generator()
        token = request_id_var.set(request_id)
        try:
            request.state.request_id = request_id
            response = await call_next(request)
            response.headers[self.header_name] = request_id
            return response
        finally:
            request_id_var.reset(token)
