from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from fastapi import Request
from fastapi.responses import JSONResponse


@dataclass
class ErrorEnvelope:
    code: str
    message: str

    def as_dict(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code}


class AppError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class ConfigError(AppError):
    """The gateway is missing configuration it needs to reach the upstream."""

    def __init__(self, message: str):
        super().__init__(500, "config_error", message)


class ValidationError(AppError):
    """The request body is malformed; the upstream is never contacted."""

    def __init__(self, message: str):
        super().__init__(400, "invalid_request", message)


class PayloadTooLargeError(AppError):
    def __init__(self, message: str = "Request body too large"):
        super().__init__(413, "payload_too_large", message)


class UpstreamError(AppError):
    """The upstream call failed before any output was produced."""

    def __init__(self, message: str, status_code: int = 502, code: str = "upstream_error"):
        super().__init__(status_code, code, message)


class StreamError(AppError):
    """The upstream failed after the event stream was committed.

    Never rendered as a status code. The stream session records it as the
    session error and emits its message as the in-band error frame.
    """

    def __init__(self, message: str):
        super().__init__(502, "stream_error", message)


def request_id_from_request(request: Request) -> str:
    state_id = getattr(request.state, "request_id", None)
    header_id = request.headers.get("x-request-id")
    return state_id or header_id or str(uuid4())


def app_error_response(
    status_code: int, code: str, message: str, request_id: str
) -> JSONResponse:
    envelope = ErrorEnvelope(code=code, message=message)
    response = JSONResponse(status_code=status_code, content=envelope.as_dict())
    response.headers["x-request-id"] = request_id
    return response
