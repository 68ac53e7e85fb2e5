from collections.abc import AsyncIterator

from fastapi import Request

from relay_gateway.config.settings import Settings
from relay_gateway.core.errors import ConfigError, PayloadTooLargeError
from relay_gateway.models.chat import CompletionRequest
from relay_gateway.providers.base import CompletionProvider
from relay_gateway.services.chat_relay import ChatRelay
from relay_gateway.services.stream_relay import StreamRelay
from relay_gateway.services.validator import RequestValidator, decode_body

MISSING_CREDENTIAL = "Missing OPENAI_API_KEY"


class RelayService:
    """Boundary checks shared by both endpoints, then hand-off to a relay."""

    def __init__(self, settings: Settings, provider: CompletionProvider | None):
        self._settings = settings
        self._validator = RequestValidator.from_settings(settings)
        self._chat_relay: ChatRelay | None = None
        self._stream_relay: StreamRelay | None = None
        if provider is not None:
            prefixes = settings.fixed_temperature_prefix_tuple
            self._chat_relay = ChatRelay(provider, fixed_temperature_prefixes=prefixes)
            self._stream_relay = StreamRelay(
                provider,
                heartbeat_interval_s=settings.heartbeat_interval_s,
                fixed_temperature_prefixes=prefixes,
            )

    async def handle_generate(self, request: Request) -> str:
        if self._chat_relay is None:
            raise ConfigError(MISSING_CREDENTIAL)
        completion_request = await self._read_request(request)
        return await self._chat_relay.complete(completion_request)

    async def handle_chat_stream(self, request: Request) -> AsyncIterator[str]:
        if self._stream_relay is None:
            raise ConfigError(MISSING_CREDENTIAL)
        completion_request = await self._read_request(request)
        session = await self._stream_relay.open(completion_request)
        return self._stream_relay.stream(
            session,
            model=completion_request.model,
            request_id=getattr(request.state, "request_id", None),
        )

    async def _read_request(self, request: Request) -> CompletionRequest:
        declared = request.headers.get("content-length")
        if declared is not None and declared.isdigit():
            if int(declared) > self._settings.max_body_bytes:
                raise PayloadTooLargeError()
        raw = await request.body()
        if len(raw) > self._settings.max_body_bytes:
            raise PayloadTooLargeError()
        body = decode_body(raw, request.headers.get("content-type"))
        return self._validator.validate(body)
