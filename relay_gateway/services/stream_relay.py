import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from time import perf_counter

from relay_gateway import metrics
from relay_gateway.models.chat import CompletionRequest
from relay_gateway.providers.base import CompletionProvider, ProviderError
from relay_gateway.services.chat_relay import (
    prepare_for_upstream,
    upstream_error_from_provider_error,
)
from relay_gateway.streaming.session import (
    DEFAULT_HEARTBEAT_INTERVAL_S,
    StreamSession,
    StreamState,
)

logger = logging.getLogger("relay_gateway.stream")

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class StreamRelay:
    def __init__(
        self,
        provider: CompletionProvider,
        heartbeat_interval_s: float = DEFAULT_HEARTBEAT_INTERVAL_S,
        fixed_temperature_prefixes: tuple[str, ...] = (),
    ):
        self._provider = provider
        self._heartbeat_interval_s = heartbeat_interval_s
        self._fixed_temperature_prefixes = fixed_temperature_prefixes

    async def open(self, request: CompletionRequest) -> StreamSession:
        """Connect to the upstream before any response header is committed.

        A refusal here is still reportable as a plain JSON error with a status
        code, so it is raised as ``UpstreamError``.
        """
        upstream_request = prepare_for_upstream(request, self._fixed_temperature_prefixes)
        try:
            deltas = await self._provider.open_stream(upstream_request)
        except ProviderError as exc:
            logger.error(
                "upstream_error",
                extra={
                    "endpoint": "/chat-stream",
                    "model": upstream_request.model,
                    "status_code": exc.status_code,
                    "error": exc.message,
                },
            )
            error = upstream_error_from_provider_error(exc)
            metrics.record_request("/chat-stream", upstream_request.model, error.status_code, 0.0)
            raise error from exc

        logger.info(
            "chat_stream_opened",
            extra={"endpoint": "/chat-stream", "model": upstream_request.model},
        )
        return StreamSession(deltas, heartbeat_interval_s=self._heartbeat_interval_s)

    async def stream(
        self, session: StreamSession, model: str, request_id: str | None = None
    ) -> AsyncIterator[str]:
        """Encode the session's frames as SSE text once headers are committed."""
        started = perf_counter()
        frames_sent = 0
        outcome = "disconnected"
        try:
            async with aclosing(session.frames()) as frames:
                async for frame in frames:
                    yield frame.encode()
                    frames_sent += 1
            outcome = "completed" if session.state is StreamState.COMPLETED else "failed"
        finally:
            latency_ms = round((perf_counter() - started) * 1000, 2)
            log_extra: dict[str, object] = {
                "request_id": request_id,
                "endpoint": "/chat-stream",
                "model": model,
                "frames": frames_sent,
                "outcome": outcome,
                "latency_ms": latency_ms,
            }
            if session.error is not None:
                log_extra["error"] = str(session.error)
            logger.info("chat_stream_completed", extra=log_extra)
            metrics.record_request("/chat-stream", model, 200, latency_ms / 1000)
            metrics.record_stream_outcome(outcome, frames_sent)
            await session.aclose()
