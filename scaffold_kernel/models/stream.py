"""Stream Events — the closed set of signals sent to the child-facing consumer."""

import json
from enum import Enum
from typing import Optional

from pydantic import BaseModel

GENERIC_ERROR_MESSAGE = "unavailable"


class StreamEventKind(str, Enum):
    START = "start"
    WORD = "word"
    END = "end"
    SILENT = "silent"
    ERROR = "error"
    CANCELLED = "cancelled"


TERMINAL_KINDS = frozenset({
    StreamEventKind.END,
    StreamEventKind.SILENT,
    StreamEventKind.ERROR,
    StreamEventKind.CANCELLED,
})


class StreamEvent(BaseModel):
    """One increment or signal. Carries no internal reasoning."""

    kind: StreamEventKind
    content: Optional[str] = None
    index: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS

    @classmethod
    def start(cls) -> "StreamEvent":
        return cls(kind=StreamEventKind.START)

    @classmethod
    def word(cls, content: str, index: int) -> "StreamEvent":
        return cls(kind=StreamEventKind.WORD, content=content, index=index)

    @classmethod
    def end(cls) -> "StreamEvent":
        return cls(kind=StreamEventKind.END)

    @classmethod
    def silent(cls) -> "StreamEvent":
        return cls(kind=StreamEventKind.SILENT)

    @classmethod
    def error(cls) -> "StreamEvent":
        return cls(kind=StreamEventKind.ERROR, content=GENERIC_ERROR_MESSAGE)

    @classmethod
    def cancelled(cls) -> "StreamEvent":
        return cls(kind=StreamEventKind.CANCELLED)

    def to_sse(self) -> str:
        """Encode as a Server-Sent Events frame."""
        payload = {"type": self.kind.value}
        if self.content is not None:
            payload["content"] = self.content
        if self.index is not None:
            payload["index"] = self.index
        return f"data: {json.dumps(payload)}\n\n"
