"""
Agent event data types and the outward event kinds.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict

# Outward event kinds
SESSION_ID = "session_id"
DELTA = "delta"
HEARTBEAT = "heartbeat"
KEEPALIVE = "keepalive"
TOOL_CALL = "tool_call"
TOOL_RETRY = "tool_retry"
TOOL_ERROR = "tool_error"
TOOL_RESPONSE = "tool_response"
WARNING = "warning"
FINAL_RESPONSE = "final_response"
WORKFLOW_COMPLETE = "workflow_complete"
WORKFLOW_HALT = "workflow_halt"
ERROR = "error"

# Timer-driven liveness pings; they do not count as activity for the idle watchdog
LIVENESS_TYPES = frozenset({HEARTBEAT, KEEPALIVE})


@dataclass
class AgentEvent:
    """Event pushed to the client during an exchange"""
    type: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> Dict[str, Any]:
        msg: Dict[str, Any] = {"type": self.type}
        msg.update(self.data)
        return msg


EventCallback = Callable[[AgentEvent], Awaitable[None]]


async def discard_event(event: AgentEvent) -> None:
    return None
