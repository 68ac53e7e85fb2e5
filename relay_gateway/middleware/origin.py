import logging

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from relay_gateway.core.errors import app_error_response, request_id_from_request
from relay_gateway.core.origin import OriginRules, normalize_origin

logger = logging.getLogger("relay_gateway.origin")

ALLOWED_METHODS = "GET, POST, OPTIONS"
ALLOWED_HEADERS = "Content-Type"
PREFLIGHT_MAX_AGE = "600"


def _add_vary_origin(response: Response) -> None:
    existing = response.headers.get("vary")
    if not existing:
        response.headers["Vary"] = "Origin"
    elif "origin" not in {item.strip().lower() for item in existing.split(",")}:
        response.headers["Vary"] = f"{existing}, Origin"


def _add_cors_headers(response: Response, origin: str) -> None:
    response.headers["Access-Control-Allow-Origin"] = origin
    response.headers["Access-Control-Allow-Credentials"] = "true"


class OriginGateMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, rules: OriginRules, strict: bool = False):
        super().__init__(app)
        self._rules = rules
        self._strict = strict

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        origin = normalize_origin(request.headers.get("origin"))
        allowed = self._rules.is_allowed(origin)

        if not allowed:
            logger.warning(
                "origin_rejected",
                extra={"origin": origin, "method": request.method, "path": request.url.path},
            )

        if request.method == "OPTIONS" and "access-control-request-method" in request.headers:
            response = Response(status_code=204)
            if allowed and origin:
                _add_cors_headers(response, origin)
                response.headers["Access-Control-Allow-Methods"] = ALLOWED_METHODS
                response.headers["Access-Control-Allow-Headers"] = ALLOWED_HEADERS
                response.headers["Access-Control-Max-Age"] = PREFLIGHT_MAX_AGE
            _add_vary_origin(response)
            return response

        if not allowed and self._strict:
            response = app_error_response(
                403, "origin_not_allowed", "Origin not allowed", request_id_from_request(request)
            )
            _add_vary_origin(response)
            return response

        response = await call_next(request)
        if allowed and origin:
            _add_cors_headers(response, origin)
        _add_vary_origin(response)
        return response
