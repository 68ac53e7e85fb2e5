import json
from dataclasses import dataclass


@dataclass(frozen=True)
class DataFrame:
    text: str

    def encode(self) -> str:
        return f"data: {json.dumps({'delta': self.text})}\n\n"


@dataclass(frozen=True)
class ErrorFrame:
    message: str

    def encode(self) -> str:
        return f"event: error\ndata: {json.dumps({'message': self.message})}\n\n"


@dataclass(frozen=True)
class DoneFrame:
    def encode(self) -> str:
        return "data: [DONE]\n\n"


@dataclass(frozen=True)
class KeepAliveFrame:
    def encode(self) -> str:
        return ": keep-alive\n\n"


StreamFrame = DataFrame | ErrorFrame | DoneFrame | KeepAliveFrame

TERMINAL_FRAMES = (ErrorFrame, DoneFrame)


def is_terminal(frame: StreamFrame) -> bool:
    return isinstance(frame, TERMINAL_FRAMES)
