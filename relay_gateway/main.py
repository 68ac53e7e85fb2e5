import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from relay_gateway.api.routes import router
from relay_gateway.config.settings import SUPPORTED_REQUEST_MODES, Settings, get_settings
from relay_gateway.core.errors import AppError, app_error_response, request_id_from_request
from relay_gateway.core.logging import configure_logging
from relay_gateway.core.origin import OriginRules
from relay_gateway.middleware.origin import OriginGateMiddleware
from relay_gateway.middleware.request_id import RequestIDMiddleware
from relay_gateway.providers.base import CompletionProvider
from relay_gateway.providers.http_openai import HTTPOpenAIProvider
from relay_gateway.services.relay_service import RelayService

logger = logging.getLogger("relay_gateway")


def _build_provider(settings: Settings) -> CompletionProvider | None:
    if not settings.openai_api_key:
        logger.warning(
            "upstream_credential_missing",
            extra={"error": "RELAY_OPENAI_API_KEY is not set"},
        )
        return None
    return HTTPOpenAIProvider(
        base_url=settings.openai_base_url,
        api_key=settings.openai_api_key,
        timeout_s=settings.upstream_timeout_s,
    )


def create_app(provider: CompletionProvider | None = None) -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    if settings.request_mode_normalized not in SUPPORTED_REQUEST_MODES:
        raise RuntimeError(f"Unsupported RELAY_REQUEST_MODE value: {settings.request_mode}")

    origin_rules = OriginRules.from_settings(settings)

    app = FastAPI(title="Embed Relay Gateway", version="0.1.0")

    # RequestIDMiddleware must stay outermost so origin rejections carry a request id.
    app.add_middleware(OriginGateMiddleware, rules=origin_rules, strict=settings.origin_strict)
    app.add_middleware(RequestIDMiddleware)

    if provider is None:
        provider = _build_provider(settings)
    app.state.origin_rules = origin_rules
    app.state.relay_service = RelayService(settings=settings, provider=provider)

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        request_id = request_id_from_request(request)
        return app_error_response(exc.status_code, exc.code, exc.message, request_id)

    @app.exception_handler(Exception)
    async def unhandled_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = request_id_from_request(request)
        logger.error("unhandled_error", exc_info=exc, extra={"path": request.url.path})
        return app_error_response(500, "internal_error", "Internal server error", request_id)

    app.include_router(router)
    return app


app = create_app()
