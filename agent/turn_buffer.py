"""
Accumulates the streamed text of one model turn.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from bedrock_service import StreamChunk
from sessions import ToolCall

from .events import AgentEvent, EventCallback, DELTA, WARNING, discard_event

logger = logging.getLogger(__name__)


@dataclass
class TurnResult:
    """A finished model turn."""
    text: str = ""
    truncated: bool = False
    size_capped: bool = False
    tool_calls: List[ToolCall] = field(default_factory=list)
    finish_reason: Optional[str] = None


class TurnBuffer:
    """Collects chunk text up to ``max_chars`` and classifies the turn.

    Once the cap is hit the remaining text of the turn is dropped, but tool
    calls and the finish marker are still observed. A turn is truncated if
    it was capped or never saw the finish marker.
    """

    def __init__(self, max_chars: int, on_event: EventCallback = discard_event,
                 stream_deltas: bool = True):
        self.max_chars = max_chars
        self._on_event = on_event
        self._stream_deltas = stream_deltas
        self._parts: List[str] = []
        self._length = 0
        self._size_capped = False
        self._saw_finish = False
        self._finish_reason: Optional[str] = None
        self._tool_calls: List[ToolCall] = []

    async def consume(self, chunk: StreamChunk) -> None:
        if chunk.text and not self._size_capped:
            accepted = chunk.text
            allowance = self.max_chars - self._length
            if len(accepted) > allowance:
                accepted = accepted[:max(allowance, 0)]
                self._size_capped = True
            if accepted:
                self._parts.append(accepted)
                self._length += len(accepted)
                if self._stream_deltas:
                    await self._on_event(AgentEvent(type=DELTA, data={"text": accepted}))
            if self._size_capped:
                logger.warning(f"Model turn hit the {self.max_chars} char cap; dropping the rest")
                await self._on_event(AgentEvent(
                    type=WARNING,
                    data={"reason": "size_cap", "maxChars": self.max_chars},
                ))

        if chunk.tool_calls:
            self._tool_calls.extend(chunk.tool_calls)
        if chunk.finish_reason:
            self._finish_reason = chunk.finish_reason
        if chunk.finished:
            self._saw_finish = True

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def finalize(self) -> TurnResult:
        return TurnResult(
            text=self.text,
            truncated=self._size_capped or not self._saw_finish,
            size_capped=self._size_capped,
            tool_calls=list(self._tool_calls),
            finish_reason=self._finish_reason,
        )
