"""Lifecycle of one ``/chat-stream`` connection.

A session owns the upstream delta stream and the heartbeat timer. Both
activities run as tasks that feed a single frame queue, and both are torn down
by the same scope exit: whichever of completion, failure or client disconnect
happens first ends the scope, which cancels the other activity and releases the
upstream stream.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from enum import Enum
from types import TracebackType

from relay_gateway.core.errors import StreamError
from relay_gateway.providers.base import DeltaStream, ProviderError
from relay_gateway.streaming.frames import (
    DataFrame,
    DoneFrame,
    ErrorFrame,
    KeepAliveFrame,
    StreamFrame,
    is_terminal,
)

logger = logging.getLogger("relay_gateway.stream")

DEFAULT_HEARTBEAT_INTERVAL_S = 15.0
STREAM_FAILED_MESSAGE = "Upstream stream failed"


class StreamState(str, Enum):
    IDLE = "idle"
    HEADERS_SENT = "headers_sent"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


class StreamSession:
    def __init__(
        self,
        deltas: DeltaStream,
        heartbeat_interval_s: float = DEFAULT_HEARTBEAT_INTERVAL_S,
    ):
        self._deltas = deltas
        self._heartbeat_interval_s = heartbeat_interval_s
        self._queue: asyncio.Queue[StreamFrame] = asyncio.Queue()
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._pump_task: asyncio.Task[None] | None = None
        self._closing: asyncio.Future[None] | None = None
        self._released = False
        self.state = StreamState.IDLE
        self.error: StreamError | None = None

    @property
    def heartbeat_active(self) -> bool:
        return self._heartbeat_task is not None and not self._heartbeat_task.done()

    @property
    def released(self) -> bool:
        return self._released

    async def __aenter__(self) -> "StreamSession":
        if self.state is not StreamState.IDLE:
            raise RuntimeError("stream session can only be entered once")
        self.state = StreamState.HEADERS_SENT
        self._heartbeat_task = asyncio.create_task(self._heartbeat())
        self._pump_task = asyncio.create_task(self._pump())
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self.state not in {StreamState.COMPLETED, StreamState.FAILED}:
            self.state = StreamState.FAILED
        await self.aclose()

    async def aclose(self) -> None:
        """Cancel both activities and release the upstream stream; idempotent.

        The release runs in its own task so that it completes even when the
        caller is cancelled while awaiting it.
        """
        for task in self._tasks():
            task.cancel()
        if self._closing is None:
            self._closing = asyncio.ensure_future(self._release())
        await asyncio.shield(self._closing)

    async def _release(self) -> None:
        tasks = self._tasks()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        try:
            await self._deltas.aclose()
        except Exception:
            logger.warning("upstream_release_failed", exc_info=True)
        finally:
            self._released = True

    async def frames(self) -> AsyncIterator[StreamFrame]:
        """Yield frames in order until a terminal frame has been yielded."""
        async with self:
            while True:
                frame = await self._queue.get()
                if isinstance(frame, DataFrame):
                    self.state = StreamState.STREAMING
                elif isinstance(frame, DoneFrame):
                    self.state = StreamState.COMPLETED
                elif isinstance(frame, ErrorFrame):
                    self.state = StreamState.FAILED
                yield frame
                if is_terminal(frame):
                    return

    def _tasks(self) -> list[asyncio.Task[None]]:
        return [task for task in (self._heartbeat_task, self._pump_task) if task is not None]

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval_s)
            await self._queue.put(KeepAliveFrame())

    async def _pump(self) -> None:
        try:
            async for delta in self._deltas:
                await self._queue.put(DataFrame(delta))
        except ProviderError as exc:
            await self._fail(StreamError(exc.message or STREAM_FAILED_MESSAGE), exc)
        except Exception as exc:
            logger.error("upstream_stream_crashed", exc_info=True)
            await self._fail(StreamError(STREAM_FAILED_MESSAGE), exc)
        else:
            await self._queue.put(DoneFrame())

    async def _fail(self, error: StreamError, cause: Exception) -> None:
        error.__cause__ = cause
        self.error = error
        await self._queue.put(ErrorFrame(error.message))
