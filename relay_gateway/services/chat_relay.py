import dataclasses
import logging
from time import perf_counter

from relay_gateway import metrics
from relay_gateway.core.errors import UpstreamError
from relay_gateway.models.chat import CompletionRequest
from relay_gateway.providers.base import CompletionProvider, ProviderError

logger = logging.getLogger("relay_gateway.chat")

EMPTY_REPLY_PLACEHOLDER = "(No content returned from model)"
UPSTREAM_FALLBACK_MESSAGE = "Upstream provider error"


def supports_temperature(model: str, fixed_temperature_prefixes: tuple[str, ...]) -> bool:
    return not any(model.startswith(prefix) for prefix in fixed_temperature_prefixes)


def prepare_for_upstream(
    request: CompletionRequest, fixed_temperature_prefixes: tuple[str, ...]
) -> CompletionRequest:
    """Drop the temperature override for models that only accept their default."""
    if request.temperature is None:
        return request
    if supports_temperature(request.model, fixed_temperature_prefixes):
        return request
    return dataclasses.replace(request, temperature=None)


def upstream_error_from_provider_error(exc: ProviderError) -> UpstreamError:
    message = exc.message or UPSTREAM_FALLBACK_MESSAGE
    if exc.status_code == 504:
        return UpstreamError(message, status_code=504, code="upstream_timeout")
    return UpstreamError(message)


def extract_reply(payload: dict[str, object]) -> str:
    choices = payload.get("choices")
    if isinstance(choices, list) and choices:
        first_choice = choices[0]
        if isinstance(first_choice, dict):
            message = first_choice.get("message")
            if isinstance(message, dict):
                content = message.get("content")
                if isinstance(content, str) and content.strip():
                    return content.strip()
    return EMPTY_REPLY_PLACEHOLDER


class ChatRelay:
    def __init__(
        self,
        provider: CompletionProvider,
        fixed_temperature_prefixes: tuple[str, ...] = (),
    ):
        self._provider = provider
        self._fixed_temperature_prefixes = fixed_temperature_prefixes

    async def complete(self, request: CompletionRequest) -> str:
        upstream_request = prepare_for_upstream(request, self._fixed_temperature_prefixes)
        started = perf_counter()
        try:
            payload = await self._provider.complete(upstream_request)
        except ProviderError as exc:
            latency_ms = round((perf_counter() - started) * 1000, 2)
            logger.error(
                "upstream_error",
                extra={
                    "endpoint": "/generate",
                    "model": upstream_request.model,
                    "status_code": exc.status_code,
                    "latency_ms": latency_ms,
                    "error": exc.message,
                },
            )
            error = upstream_error_from_provider_error(exc)
            metrics.record_request(
                "/generate", upstream_request.model, error.status_code, latency_ms / 1000
            )
            raise error from exc

        reply = extract_reply(payload)
        latency_ms = round((perf_counter() - started) * 1000, 2)
        logger.info(
            "generate_completed",
            extra={
                "endpoint": "/generate",
                "model": upstream_request.model,
                "status_code": 200,
                "latency_ms": latency_ms,
            },
        )
        metrics.record_request("/generate", upstream_request.model, 200, latency_ms / 1000)
        return reply
