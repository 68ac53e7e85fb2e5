import asyncio
from collections.abc import Callable

import pytest
from fastapi.testclient import TestClient

from relay_gateway import metrics
from relay_gateway.config.settings import clear_settings_cache
from relay_gateway.main import create_app
from relay_gateway.models.chat import CompletionRequest
from relay_gateway.providers.base import ProviderError

EMBED_ORIGIN = "https://support.example.com"


class ScriptedStream:
    """Delta stream that replays a fixed script and records how it was released."""

    def __init__(
        self,
        deltas: list[str],
        first_delay_s: float = 0.0,
        delay_s: float = 0.0,
        fail_after: int | None = None,
    ):
        self._deltas = list(deltas)
        self._first_delay_s = first_delay_s
        self._delay_s = delay_s
        self._fail_after = fail_after
        self._index = 0
        self.close_count = 0

    def __aiter__(self) -> "ScriptedStream":
        return self

    async def __anext__(self) -> str:
        delay = self._first_delay_s if self._index == 0 else self._delay_s
        if delay:
            await asyncio.sleep(delay)
        if self._fail_after is not None and self._index >= self._fail_after:
            raise ProviderError(502, "provider_stream_error", "upstream connection reset")
        if self._index >= len(self._deltas):
            raise StopAsyncIteration
        delta = self._deltas[self._index]
        self._index += 1
        return delta

    async def aclose(self) -> None:
        self.close_count += 1


class ScriptedProvider:
    def __init__(self) -> None:
        self.reply: object = "Hello from the model"
        self.deltas: list[str] = ["Hel", "lo"]
        self.first_delay_s = 0.0
        self.delay_s = 0.0
        self.fail_after: int | None = None
        self.complete_error: ProviderError | None = None
        self.open_error: ProviderError | None = None
        self.calls: list[CompletionRequest] = []
        self.streams: list[ScriptedStream] = []

    async def complete(self, request: CompletionRequest) -> dict[str, object]:
        self.calls.append(request)
        if self.complete_error is not None:
            raise self.complete_error
        return {
            "id": "chatcmpl-test",
            "object": "chat.completion",
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": self.reply},
                    "finish_reason": "stop",
                }
            ],
        }

    async def open_stream(self, request: CompletionRequest) -> ScriptedStream:
        self.calls.append(request)
        if self.open_error is not None:
            raise self.open_error
        stream = ScriptedStream(
            self.deltas,
            first_delay_s=self.first_delay_s,
            delay_s=self.delay_s,
            fail_after=self.fail_after,
        )
        self.streams.append(stream)
        return stream


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def make_client(
    monkeypatch: pytest.MonkeyPatch, provider: ScriptedProvider
) -> Callable[..., TestClient]:
    def _make(**env: str) -> TestClient:
        values = {
            "RELAY_OPENAI_API_KEY": "test-key",
            "RELAY_ALLOWED_ORIGINS": EMBED_ORIGIN,
            "RELAY_REQUEST_MODE": "messages",
            "RELAY_LOG_LEVEL": "WARNING",
        }
        values.update(env)
        for name, value in values.items():
            monkeypatch.setenv(name, value)
        clear_settings_cache()
        metrics.reset_metrics()
        return TestClient(create_app(provider=provider))

    return _make


@pytest.fixture
def client(make_client: Callable[..., TestClient]) -> TestClient:
    return make_client()


@pytest.fixture
def prompt_client(make_client: Callable[..., TestClient]) -> TestClient:
    return make_client(RELAY_REQUEST_MODE="prompt")


def sse_frames(body: str) -> list[str]:
    return [f"{chunk}\n\n" for chunk in body.split("\n\n") if chunk]
