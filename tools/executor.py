"""
Tool executor: runs one tool call with bounded retry, emits the tool events,
keeps the audit trail and the session's last non-retryable failure.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional

from agent.events import (
    TOOL_CALL, TOOL_ERROR, TOOL_RESPONSE, TOOL_RETRY,
    AgentEvent, EventCallback, discard_event,
)
from agent.retry import is_transient_tool_error, retry_async
from bedrock_service import new_tool_call_id
from sessions import LastFailedTool, SessionStore, ToolCall, Turn
from tools._common import ToolContext, ToolResult
from tools.audit import log_tool_call
from tools.dispatch import execute_tool

logger = logging.getLogger(__name__)


def suggest_remediation(name: str, message: str) -> List[str]:
    """Heuristic hints for the model derived from the error text."""
    text = (message or "").lower()
    hints: List[str] = []
    if "no such file" in text or "not found" in text or "enoent" in text:
        if name == "read_file":
            hints.append("Check the file path; call get_allowed_files to list readable files.")
        elif name == "run_tests":
            hints.append("Create the test file with create_test_file before running tests.")
        else:
            hints.append("Check that the file exists and the path is correct.")
    if "source file missing" in text:
        hints.append("Create the animation with create_animation_file before publishing.")
    if "permission denied" in text or "eacces" in text or "eperm" in text or "busy" in text:
        hints.append("The file is locked or not writable; wait and retry.")
    if "timeout" in text or "timed out" in text:
        hints.append("The operation timed out; retry, and keep the test run small.")
    if "invalid classname" in text:
        hints.append("Use a PascalCase identifier such as 'SpinAnimation' for className.")
    if "missing required argument" in text:
        hints.append("Provide every required argument listed in the tool schema.")
    return hints


def result_turn(call: ToolCall, result: ToolResult) -> Turn:
    """History turn carrying a tool's outcome back to the model."""
    if result.success:
        return Turn.tool_result(call.name, output=result.output, call_id=call.id)
    return Turn.tool_result(call.name, error=result.error, call_id=call.id)


class ToolExecutor:
    """Executes model tool calls for one session workspace."""

    def __init__(self, ctx: ToolContext, store: SessionStore,
                 on_event: EventCallback = discard_event,
                 max_retries: int = 2, base_delay: float = 0.5, max_delay: float = 4.0,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.ctx = ctx
        self.store = store
        self.on_event = on_event
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    async def execute(self, session_id: str, call: ToolCall) -> ToolResult:
        await self.on_event(AgentEvent(TOOL_CALL, {"name": call.name, "args": call.args}))

        attempts = 0

        async def _attempt() -> str:
            nonlocal attempts
            attempts += 1
            return await execute_tool(call.name, call.args, self.ctx)

        async def _on_retry(attempt: int, exc: BaseException, delay: float) -> None:
            logger.warning(
                f"[{session_id}] Tool {call.name} failed (attempt {attempt}/{self.max_attempts}), "
                f"retrying in {delay:.1f}s: {exc}"
            )
            await self.on_event(AgentEvent(TOOL_RETRY, {
                "name": call.name,
                "attempt": attempt,
                "max": self.max_attempts,
                "message": str(exc),
            }))

        try:
            output = await retry_async(
                _attempt,
                max_retries=self.max_retries,
                base_delay=self.base_delay,
                max_delay=self.max_delay,
                is_retryable=is_transient_tool_error,
                on_retry=_on_retry,
                sleep=self._sleep,
            )
        except Exception as exc:
            return await self._fail(session_id, call, exc, attempts)

        log_tool_call(self.ctx.workspace, call.name, call.args, {"output": output, "attempts": attempts})
        await self.on_event(AgentEvent(TOOL_RESPONSE, {"name": call.name, "response": output}))
        return ToolResult(success=True, output=output, attempts=attempts)

    async def _fail(self, session_id: str, call: ToolCall, exc: Exception, attempts: int) -> ToolResult:
        message = str(exc) or type(exc).__name__
        transient = is_transient_tool_error(exc)
        suggestions = suggest_remediation(call.name, message)

        if transient:
            logger.warning(f"[{session_id}] Tool {call.name} gave up after {attempts} attempts: {message}")
        else:
            logger.error(f"[{session_id}] Tool {call.name} failed: {message}")
            self.store.record_failure(session_id, LastFailedTool(call.name, dict(call.args), message))

        log_tool_call(self.ctx.workspace, call.name, call.args, {
            "error": message, "attempts": attempts, "transient": transient,
        })
        event = {
            "name": call.name,
            "attempt": attempts,
            "max": self.max_attempts,
            "transient": transient,
            "message": message,
        }
        if suggestions:
            event["suggestions"] = suggestions
        await self.on_event(AgentEvent(TOOL_ERROR, event))
        return ToolResult(success=False, output="", error=message, attempts=attempts,
                          transient=transient, suggestions=suggestions)

    async def replay_last_failed(self, session_id: str) -> Optional[ToolResult]:
        """Re-run the session's recorded failure and append the exchange to history.

        Returns None when nothing is recorded.
        """
        failure = self.store.last_failure(session_id)
        if failure is None:
            return None
        logger.info(f"[{session_id}] Replaying failed tool {failure.tool_name}")
        call = ToolCall(failure.tool_name, dict(failure.arguments), new_tool_call_id())
        self.store.append(session_id, Turn.model_tool_call(call))
        result = await self.execute(session_id, call)
        self.store.append(session_id, result_turn(call, result))
        if result.success:
            self.store.clear_failure(session_id)
        return result
