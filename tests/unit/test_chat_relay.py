import asyncio

import pytest
from conftest import ScriptedProvider

from relay_gateway.core.errors import UpstreamError
from relay_gateway.models.chat import CompletionRequest, Message
from relay_gateway.providers.base import ProviderError
from relay_gateway.services.chat_relay import (
    EMPTY_REPLY_PLACEHOLDER,
    UPSTREAM_FALLBACK_MESSAGE,
    ChatRelay,
    prepare_for_upstream,
    supports_temperature,
)


def _request(model: str = "gpt-4o-mini", temperature: float | None = 0.5) -> CompletionRequest:
    return CompletionRequest(
        messages=(Message(role="user", content="hello"),),
        model=model,
        temperature=temperature,
        max_tokens=64,
    )


def test_complete_returns_trimmed_first_choice() -> None:
    provider = ScriptedProvider()
    provider.reply = "  Hi there \n"
    reply = asyncio.run(ChatRelay(provider).complete(_request()))
    assert reply == "Hi there"
    assert provider.calls[0].temperature == 0.5
    assert provider.calls[0].max_tokens == 64


@pytest.mark.parametrize("content", ["", "   ", None])
def test_complete_substitutes_placeholder_for_empty_reply(content: object) -> None:
    provider = ScriptedProvider()
    provider.reply = content
    reply = asyncio.run(ChatRelay(provider).complete(_request()))
    assert reply == EMPTY_REPLY_PLACEHOLDER


def test_complete_surfaces_upstream_message() -> None:
    provider = ScriptedProvider()
    provider.complete_error = ProviderError(429, "provider_rate_limited", "You exceeded your quota")
    with pytest.raises(UpstreamError) as exc_info:
        asyncio.run(ChatRelay(provider).complete(_request()))
    assert exc_info.value.message == "You exceeded your quota"
    assert exc_info.value.status_code == 502


def test_complete_uses_fallback_message_when_upstream_is_silent() -> None:
    provider = ScriptedProvider()
    provider.complete_error = ProviderError(500, "provider_error", "")
    with pytest.raises(UpstreamError, match=UPSTREAM_FALLBACK_MESSAGE):
        asyncio.run(ChatRelay(provider).complete(_request()))


def test_timeout_maps_to_gateway_timeout() -> None:
    provider = ScriptedProvider()
    provider.complete_error = ProviderError(504, "provider_timeout", "timed out")
    with pytest.raises(UpstreamError) as exc_info:
        asyncio.run(ChatRelay(provider).complete(_request()))
    assert exc_info.value.status_code == 504
    assert exc_info.value.code == "upstream_timeout"


def test_temperature_is_omitted_for_fixed_temperature_models() -> None:
    provider = ScriptedProvider()
    relay = ChatRelay(provider, fixed_temperature_prefixes=("gpt-5", "o1"))
    asyncio.run(relay.complete(_request(model="gpt-5-mini")))
    asyncio.run(relay.complete(_request(model="gpt-4o-mini")))
    assert provider.calls[0].temperature is None
    assert provider.calls[1].temperature == 0.5


def test_prepare_for_upstream_keeps_request_without_temperature() -> None:
    request = _request(model="gpt-5", temperature=None)
    assert prepare_for_upstream(request, ("gpt-5",)) is request
    assert supports_temperature("gpt-4o", ("gpt-5",))
    assert not supports_temperature("o1-preview", ("gpt-5", "o1"))
