"""
Decides whether a truncated or empty model turn is silently resumed.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .prompts import CONTINUE_PROMPT, FIRST_STEP_TOOL_HINT
from .turn_buffer import TurnResult

logger = logging.getLogger(__name__)


@dataclass
class ContinuationDecision:
    should_continue: bool = False
    synthetic_prompt: Optional[str] = None


class ContinuationController:
    """Bounded automatic "please continue" turns.

    The budget covers a whole connection, not a single turn, so a
    persistently broken upstream cannot loop forever.
    """

    def __init__(self, limit: int = 1):
        self.limit = limit
        self.retries_used = 0

    @property
    def exhausted(self) -> bool:
        return self.retries_used >= self.limit

    def should_continue(self, turn: TurnResult, tool_calls_present: bool,
                        is_first_step: bool) -> ContinuationDecision:
        if tool_calls_present:
            return ContinuationDecision()

        if turn.truncated and not self.exhausted:
            self.retries_used += 1
            logger.warning(
                f"Model turn truncated (size_capped={turn.size_capped}, "
                f"finish={turn.finish_reason}); continuing {self.retries_used}/{self.limit}"
            )
            return ContinuationDecision(True, CONTINUE_PROMPT)

        if is_first_step and not turn.text and not self.exhausted:
            self.retries_used += 1
            logger.warning(f"Empty first turn; nudging model toward a tool call {self.retries_used}/{self.limit}")
            return ContinuationDecision(True, FIRST_STEP_TOOL_HINT)

        return ContinuationDecision()
