import logging
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from relay_gateway.core.logging import request_id_var

logger = logging.getLogger("relay_gateway.access")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id and logs its arrival."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        try:
            logger.info(
                "request_received",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "origin": request.headers.get("origin") or "none",
                },
            )
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers["x-request-id"] = request_id
        return response
