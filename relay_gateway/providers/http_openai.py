"""HTTP provider for OpenAI-compatible chat completion endpoints."""

import json

import httpx

from relay_gateway.models.chat import CompletionRequest
from relay_gateway.providers.base import ProviderError

CHAT_COMPLETIONS_PATH = "/v1/chat/completions"


def _error_message(payload: object) -> str | None:
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message:
            return message
    if isinstance(error, str) and error:
        return error
    return None


def _delta_content(chunk: dict[str, object]) -> str:
    choices = chunk.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first_choice = choices[0]
    if not isinstance(first_choice, dict):
        return ""
    delta = first_choice.get("delta")
    if not isinstance(delta, dict):
        return ""
    content = delta.get("content")
    return content if isinstance(content, str) else ""


class SSEDeltaStream:
    """Delta stream over an open ``text/event-stream`` upstream response."""

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response):
        self._client = client
        self._response = response
        self._lines = response.aiter_lines()
        self._closed = False

    def __aiter__(self) -> "SSEDeltaStream":
        return self

    async def __anext__(self) -> str:
        while True:
            try:
                line = await anext(self._lines)
            except httpx.TimeoutException as exc:
                raise ProviderError(
                    status_code=504,
                    code="provider_timeout",
                    message=f"Provider stream timed out: {exc}",
                ) from exc
            except httpx.HTTPError as exc:
                raise ProviderError(
                    status_code=502,
                    code="provider_stream_error",
                    message=f"Provider stream interrupted: {exc}",
                ) from exc

            if not line.startswith("data:"):
                continue
            data = line.removeprefix("data:").strip()
            if data == "[DONE]":
                raise StopAsyncIteration
            try:
                parsed = json.loads(data)
            except json.JSONDecodeError:
                continue
            if not isinstance(parsed, dict):
                continue
            message = _error_message(parsed)
            if message is not None:
                raise ProviderError(status_code=502, code="provider_error", message=message)
            content = _delta_content(parsed)
            if content:
                return content

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._response.aclose()
        finally:
            await self._client.aclose()


class HTTPOpenAIProvider:
    """Provider that calls any OpenAI-compatible chat completions endpoint."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_s: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout_s
        self._transport = transport

    async def complete(self, request: CompletionRequest) -> dict[str, object]:
        return await self._post(CHAT_COMPLETIONS_PATH, self._body(request, stream=False))

    async def open_stream(self, request: CompletionRequest) -> SSEDeltaStream:
        return await self._stream_post(CHAT_COMPLETIONS_PATH, self._body(request, stream=True))

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    @staticmethod
    def _body(request: CompletionRequest, stream: bool) -> dict[str, object]:
        body: dict[str, object] = {
            "model": request.model,
            "messages": request.message_dicts(),
        }
        if request.temperature is not None:
            body["temperature"] = request.temperature
        if request.max_tokens is not None:
            body["max_tokens"] = request.max_tokens
        if stream:
            body["stream"] = True
        return body

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def _stream_post(self, path: str, body: dict[str, object]) -> SSEDeltaStream:
        url = f"{self._base_url}{path}"
        client = self._client()
        try:
            upstream_request = client.build_request("POST", url, json=body, headers=self._headers)
            resp = await client.send(upstream_request, stream=True)
        except httpx.TimeoutException as exc:
            await client.aclose()
            raise ProviderError(
                status_code=504,
                code="provider_timeout",
                message=f"Provider request timed out: {exc}",
            ) from exc
        except httpx.HTTPError as exc:
            await client.aclose()
            raise ProviderError(
                status_code=502,
                code="provider_connection_error",
                message=f"Cannot connect to provider: {exc}",
            ) from exc

        if resp.status_code >= 400:
            try:
                await resp.aread()
                self._raise_for_status(resp)
            finally:
                await resp.aclose()
                await client.aclose()

        return SSEDeltaStream(client, resp)

    async def _post(self, path: str, body: dict[str, object]) -> dict[str, object]:
        url = f"{self._base_url}{path}"

        try:
            async with self._client() as client:
                resp = await client.post(url, json=body, headers=self._headers)
        except httpx.TimeoutException as exc:
            raise ProviderError(
                status_code=504,
                code="provider_timeout",
                message=f"Provider request timed out: {exc}",
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(
                status_code=502,
                code="provider_connection_error",
                message=f"Cannot connect to provider: {exc}",
            ) from exc

        self._raise_for_status(resp)

        try:
            result = resp.json()
        except ValueError as exc:
            raise ProviderError(
                status_code=502,
                code="provider_invalid_response",
                message="Provider returned a non-JSON response",
            ) from exc
        if not isinstance(result, dict):
            raise ProviderError(
                status_code=502,
                code="provider_invalid_response",
                message="Provider returned an unexpected payload",
            )
        return result

    @staticmethod
    def _raise_for_status(resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return
        try:
            message = _error_message(resp.json())
        except ValueError:
            message = None
        if resp.status_code == 429:
            raise ProviderError(
                status_code=429,
                code="provider_rate_limited",
                message=message or "Provider rate limit exceeded",
            )
        if resp.status_code in {401, 403}:
            raise ProviderError(
                status_code=resp.status_code,
                code="provider_auth_error",
                message=message or f"Provider rejected credentials ({resp.status_code})",
            )
        raise ProviderError(
            status_code=resp.status_code,
            code="provider_error",
            message=message or f"Provider returned {resp.status_code}",
        )

