"""
Agent package - the per-connection orchestration core.

- events: AgentEvent and the outward event kinds
- retry: transience classification and retry/backoff helpers
- turn_buffer: assembles one streamed model turn
- continuation: bounded automatic resumption of truncated turns
- prompts: system prompt composition and synthetic prompts
- supervisor: ConnectionSupervisor step loop, timers and auto-publish

The supervisor is imported from ``agent.supervisor`` directly; it depends on
the tools package, which itself uses the event and retry modules here.
"""

from .events import AgentEvent, LIVENESS_TYPES  # noqa: F401
from .retry import is_transient_network_error, is_transient_tool_error, retry_async  # noqa: F401
from .turn_buffer import TurnBuffer, TurnResult  # noqa: F401
from .continuation import ContinuationController, ContinuationDecision  # noqa: F401
