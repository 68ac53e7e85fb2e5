"""Normalization of inbound request bodies into a ``CompletionRequest``.

Two body shapes exist and a deployment serves exactly one of them:

* ``messages`` mode: ``{"messages": [...], "model"?, "temperature"?, "max_tokens"?}``
* ``prompt`` mode: ``{"prompt": "..."}``, wrapped with a fixed system preamble.

Validation is a pure transformation; it never reaches the upstream provider.
"""

import json
from collections.abc import Mapping
from urllib.parse import parse_qsl

from pydantic import ValidationError as PydanticValidationError

from relay_gateway.config.settings import SUPPORTED_REQUEST_MODES, Settings
from relay_gateway.core.errors import ValidationError
from relay_gateway.models.chat import CompletionRequest, Message, MessagesBody

MESSAGES_REQUIRED = "messages array is required"
PROMPT_REQUIRED = "Missing 'prompt' string in body"
INVALID_JSON = "Request body must be valid JSON"
OPTIONAL_FIELDS = ("model", "temperature", "max_tokens")


def decode_body(raw: bytes, content_type: str | None) -> object:
    """Decode a JSON or urlencoded body; an empty body decodes to ``{}``."""
    media_type = (content_type or "").split(";", 1)[0].strip().lower()
    if media_type == "application/x-www-form-urlencoded":
        return dict(parse_qsl(raw.decode("utf-8", errors="replace"), keep_blank_values=True))
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError(INVALID_JSON) from exc


class RequestValidator:
    def __init__(
        self,
        mode: str,
        system_prompt: str,
        default_model: str,
        default_temperature: float | None = None,
        default_max_tokens: int | None = None,
    ):
        if mode not in SUPPORTED_REQUEST_MODES:
            raise ValueError(f"Unsupported request mode: {mode}")
        self.mode = mode
        self._system_prompt = system_prompt
        self._default_model = default_model
        self._default_temperature = default_temperature
        self._default_max_tokens = default_max_tokens

    @classmethod
    def from_settings(cls, settings: Settings) -> "RequestValidator":
        return cls(
            mode=settings.request_mode_normalized,
            system_prompt=settings.system_prompt,
            default_model=settings.default_model,
            default_temperature=settings.default_temperature,
            default_max_tokens=settings.default_max_tokens,
        )

    def validate(self, body: object) -> CompletionRequest:
        if self.mode == "prompt":
            return self._validate_prompt(body)
        return self._validate_messages(body)

    def _validate_prompt(self, body: object) -> CompletionRequest:
        prompt = body.get("prompt") if isinstance(body, Mapping) else None
        if not isinstance(prompt, str) or not prompt:
            raise ValidationError(PROMPT_REQUIRED)
        return CompletionRequest(
            messages=(
                Message(role="system", content=self._system_prompt),
                Message(role="user", content=prompt),
            ),
            model=self._default_model,
            temperature=self._default_temperature,
            max_tokens=self._default_max_tokens,
        )

    def _validate_messages(self, body: object) -> CompletionRequest:
        if not isinstance(body, Mapping) or not isinstance(body.get("messages"), list):
            raise ValidationError(MESSAGES_REQUIRED)
        try:
            parsed = MessagesBody.model_validate(body)
        except PydanticValidationError as exc:
            raise ValidationError(self._describe(exc)) from exc

        return CompletionRequest(
            messages=tuple(
                Message(role=item.role, content=item.content) for item in parsed.messages
            ),
            model=parsed.model or self._default_model,
            temperature=(
                parsed.temperature
                if parsed.temperature is not None
                else self._default_temperature
            ),
            max_tokens=(
                parsed.max_tokens if parsed.max_tokens is not None else self._default_max_tokens
            ),
        )

    @staticmethod
    def _describe(exc: PydanticValidationError) -> str:
        fields = [error["loc"][0] for error in exc.errors() if error.get("loc")]
        if "messages" in fields:
            return MESSAGES_REQUIRED
        for name in fields:
            if name in OPTIONAL_FIELDS:
                return f"Invalid '{name}' in body"
        return MESSAGES_REQUIRED
