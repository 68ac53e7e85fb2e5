from collections.abc import AsyncIterator
from typing import Protocol

from relay_gateway.models.chat import CompletionRequest


class ProviderError(Exception):
    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class DeltaStream(Protocol):
    """Cancellable producer of text deltas.

    Iteration yields the next delta, ends at end-of-sequence, or raises
    ``ProviderError`` on failure. ``aclose`` releases the upstream connection
    and is safe to call more than once.
    """

    def __aiter__(self) -> AsyncIterator[str]: ...

    async def __anext__(self) -> str: ...

    async def aclose(self) -> None: ...


class CompletionProvider(Protocol):
    async def complete(self, request: CompletionRequest) -> dict[str, object]:
        """Return the upstream chat completion payload."""

    async def open_stream(self, request: CompletionRequest) -> DeltaStream:
        """Connect to the upstream and return its delta stream.

        Raises ``ProviderError`` when the upstream refuses the request before
        producing any output.
        """
