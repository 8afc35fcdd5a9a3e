"""
Connection supervisor: drives one prompt exchange end to end.

State flow per exchange::

    AwaitingStream -> Streaming -> (ContinuingStream | ExecutingTool) -> Streaming -> ...
                   -> Completed | Halted | Failed

Every outward event goes through ``_emit``, which resets the idle watchdog
(liveness pings excepted) and becomes a no-op once the client is gone or the
exchange has ended terminally.
"""

import asyncio
import contextlib
import dataclasses
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from bedrock_service import ModelService, StreamChunk, new_tool_call_id
from config import app_config
from sessions import SessionStore, ToolCall, Turn
from tools._common import ToolContext
from tools.audit import log_workflow
from tools.dispatch import publish_message
from tools.executor import ToolExecutor, result_turn
from tools.external_ops import tests_passed
from tools.publish import PublishResult, publish_files
from tools.schemas import TOOL_DEFINITIONS

from .continuation import ContinuationController
from .events import (
    ERROR, FINAL_RESPONSE, HEARTBEAT, KEEPALIVE, LIVENESS_TYPES, SESSION_ID,
    TOOL_CALL, TOOL_RESPONSE, WORKFLOW_COMPLETE, WORKFLOW_HALT,
    AgentEvent, EventCallback, discard_event,
)
from .prompts import compose_system_prompt
from .retry import is_transient_network_error, retry_async
from .turn_buffer import TurnBuffer, TurnResult

logger = logging.getLogger(__name__)

STATE_COMPLETED = "completed"
STATE_HALTED = "halted"
STATE_FAILED = "failed"
STATE_DISCONNECTED = "disconnected"

_PREVIEW_CHARS = 200


@dataclass
class SupervisorSettings:
    """Step-loop bounds, retry budgets and timer periods (seconds)."""
    max_steps: int = 10
    incomplete_retry_limit: int = 1
    max_response_chars: int = 60000
    stream_deltas: bool = True
    max_tool_retries: int = 2
    tool_retry_base: float = 0.5
    tool_retry_max: float = 4.0
    stream_max_retries: int = 2
    stream_retry_backoff: float = 1.0
    stream_retry_max_backoff: float = 5.0
    idle_timeout: float = 120.0
    keepalive_interval: float = 15.0
    heartbeat_interval: float = 5.0

    @classmethod
    def from_config(cls) -> "SupervisorSettings":
        return cls(
            max_steps=app_config.max_steps,
            incomplete_retry_limit=app_config.incomplete_retry_limit,
            max_response_chars=app_config.max_response_chars,
            stream_deltas=app_config.stream_deltas,
            max_tool_retries=app_config.max_tool_retries,
            tool_retry_base=app_config.tool_retry_base_ms / 1000.0,
            tool_retry_max=app_config.tool_retry_max_ms / 1000.0,
            stream_max_retries=app_config.stream_max_retries,
            stream_retry_backoff=app_config.stream_retry_backoff,
            stream_retry_max_backoff=app_config.stream_retry_max_backoff,
            idle_timeout=app_config.idle_timeout,
            keepalive_interval=app_config.keepalive_interval,
            heartbeat_interval=app_config.heartbeat_interval,
        )


@dataclass
class SupervisorOutcome:
    """How an exchange ended."""
    state: str
    session_id: Optional[str] = None
    final_text: Optional[str] = None
    error: Optional[str] = None
    steps: int = 0


class EventSink(ABC):
    """Where a supervisor pushes its events (a WebSocket in production)."""

    @property
    @abstractmethod
    def connected(self) -> bool:
        """False once the client has gone away."""

    @abstractmethod
    async def send_json(self, data: Dict[str, Any]) -> None:
        """Deliver one event; must not raise after a disconnect."""

    @abstractmethod
    async def close(self, code: int = 1000) -> None:
        """Close the underlying connection."""


def make_tool_executor(ctx: ToolContext, store: SessionStore, settings: SupervisorSettings,
                       on_event: EventCallback = discard_event) -> ToolExecutor:
    return ToolExecutor(
        ctx, store, on_event=on_event,
        max_retries=settings.max_tool_retries,
        base_delay=settings.tool_retry_base,
        max_delay=settings.tool_retry_max,
    )


class ConnectionSupervisor:
    """Runs the step loop for one exchange on one connection."""

    def __init__(
        self,
        store: SessionStore,
        model: ModelService,
        sink: EventSink,
        settings: Optional[SupervisorSettings] = None,
        tool_context_factory: Callable[[str], ToolContext] = ToolContext.for_session,
        system_prompt: Optional[str] = None,
    ):
        self.store = store
        self.model = model
        self.sink = sink
        self.settings = settings or SupervisorSettings.from_config()
        self.tool_context_factory = tool_context_factory
        self.system_prompt = system_prompt or compose_system_prompt()

        self._ctx: Optional[ToolContext] = None
        self._closed = False
        self._timed_out = False
        self._last_activity = 0.0
        self._timer_tasks: List[asyncio.Task] = []

    # ------------------------------------------------------------------
    # Emission and liveness
    # ------------------------------------------------------------------

    @property
    def stopped(self) -> bool:
        """True once nothing more may be written for this exchange."""
        return self._closed or not self.sink.connected

    def _touch(self) -> None:
        self._last_activity = asyncio.get_running_loop().time()

    async def _emit(self, event: AgentEvent) -> None:
        if self.stopped:
            return
        if event.type not in LIVENESS_TYPES:
            self._touch()
        await self.sink.send_json(event.to_message())

    def _audit(self, event: str, **payload: Any) -> None:
        if self._ctx is not None:
            log_workflow(self._ctx.workspace, event, **payload)

    async def _watchdog_loop(self) -> None:
        loop = asyncio.get_running_loop()
        timeout = self.settings.idle_timeout
        while not self.stopped:
            remaining = self._last_activity + timeout - loop.time()
            if remaining <= 0:
                await self._idle_timeout()
                return
            await asyncio.sleep(remaining)

    async def _idle_timeout(self) -> None:
        timeout = self.settings.idle_timeout
        message = f"Idle timeout: no activity for {timeout:g}s"
        logger.error(f"[{self._ctx.session_id if self._ctx else '-'}] {message}")
        await self._emit(AgentEvent(ERROR, {"message": message, "terminal": True}))
        self._audit("error", message=message, terminal=True)
        self._timed_out = True
        await self._close()

    async def _keepalive_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.keepalive_interval)
            if self.stopped:
                return
            await self._emit(AgentEvent(KEEPALIVE, {"timestamp": int(time.time() * 1000)}))

    async def _heartbeat_loop(self, phase: str) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        while True:
            await asyncio.sleep(self.settings.heartbeat_interval)
            if self.stopped:
                return
            await self._emit(AgentEvent(HEARTBEAT, {
                "phase": phase,
                "elapsedMs": int((loop.time() - started) * 1000),
            }))

    @contextlib.asynccontextmanager
    async def _heartbeat(self, phase: str) -> AsyncIterator[None]:
        task = asyncio.create_task(self._heartbeat_loop(phase))
        try:
            yield
        finally:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def _start_timers(self) -> None:
        self._touch()
        self._timer_tasks = [
            asyncio.create_task(self._watchdog_loop()),
            asyncio.create_task(self._keepalive_loop()),
        ]

    async def _stop_timers(self) -> None:
        current = asyncio.current_task()
        tasks, self._timer_tasks = self._timer_tasks, []
        for task in tasks:
            if task is not current:
                task.cancel()
        for task in tasks:
            if task is not current:
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    async def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.sink.close()

    # ------------------------------------------------------------------
    # Exchange
    # ------------------------------------------------------------------

    async def run(self, prompt: str, session_id: Optional[str] = None) -> SupervisorOutcome:
        """Run one prompt through the step loop until it completes, halts or fails."""
        self._start_timers()
        try:
            return await self._run(prompt, session_id)
        except Exception as e:
            logger.exception(f"Supervisor crashed: {e}")
            return await self._fail(self._ctx.session_id if self._ctx else session_id,
                                    f"Internal error: {e}")
        finally:
            await self._stop_timers()

    async def _run(self, prompt: str, session_id: Optional[str]) -> SupervisorOutcome:
        try:
            session, created = self.store.get_or_create(session_id)
        except ValueError as e:
            return await self._fail(session_id, str(e))
        sid = session.session_id
        if created:
            await self._emit(AgentEvent(SESSION_ID, {"sessionId": sid}))

        self._ctx = self.tool_context_factory(sid)
        executor = make_tool_executor(self._ctx, self.store, self.settings, on_event=self._emit)
        controller = ContinuationController(self.settings.incomplete_retry_limit)
        loop = asyncio.get_running_loop()

        self.store.append(sid, Turn.user(prompt))
        logger.info(f"[{sid}] Exchange started ({len(prompt)} chars)")

        collected: List[str] = []
        after_tool = False

        for step in range(self.settings.max_steps):
            if self.stopped:
                return self._stopped_outcome(sid, step)

            started = loop.time()
            if after_tool:
                timeout_ms = int(self.settings.idle_timeout * 1000)
                await self._emit(AgentEvent(HEARTBEAT, {"phase": "model_continue_start", "timeoutMs": timeout_ms}))
                self._audit("model_continue_start", step=step, timeoutMs=timeout_ms)

            try:
                stream = await self._open_stream(sid)
            except Exception as e:
                return await self._fail(sid, f"Failed to open model stream: {e}", steps=step)
            try:
                turn = await self._read_turn(sid, stream)
            except Exception as e:
                return await self._fail(sid, f"Model stream failed: {e}", steps=step)

            if after_tool:
                duration_ms = int((loop.time() - started) * 1000)
                preview = turn.text[:_PREVIEW_CHARS]
                await self._emit(AgentEvent(HEARTBEAT, {
                    "phase": "model_continue_end",
                    "durationMs": duration_ms,
                    "responsePreview": preview,
                }))
                self._audit("model_continue_end", step=step, durationMs=duration_ms, responsePreview=preview)

            if self.stopped:
                return self._stopped_outcome(sid, step + 1)

            if turn.text:
                self.store.append(sid, Turn.model_text(turn.text))
                collected.append(turn.text)

            if turn.tool_calls:
                await self._handle_tool_call(sid, executor, turn.tool_calls)
                if self.stopped:
                    return self._stopped_outcome(sid, step + 1)
                collected = []
                after_tool = True
                continue

            decision = controller.should_continue(turn, tool_calls_present=False, is_first_step=step == 0)
            if decision.should_continue:
                self._audit("continuation", step=step, truncated=turn.truncated,
                            sizeCapped=turn.size_capped, retriesUsed=controller.retries_used)
                self.store.append(sid, Turn.user(decision.synthetic_prompt))
                after_tool = False
                continue

            return await self._complete(sid, turn, "".join(collected), step + 1)

        max_steps = self.settings.max_steps
        logger.warning(f"[{sid}] Step ceiling reached ({max_steps}); halting")
        await self._emit(AgentEvent(WORKFLOW_HALT, {"reason": "max_steps", "maxSteps": max_steps}))
        self._audit("workflow_halt", reason="max_steps", maxSteps=max_steps)
        return SupervisorOutcome(STATE_HALTED, sid, steps=max_steps)

    async def _complete(self, sid: str, turn: TurnResult, text: str, steps: int) -> SupervisorOutcome:
        payload: Dict[str, Any] = {"text": text}
        if turn.truncated:
            payload["truncated"] = True
        if turn.size_capped:
            payload["sizeCapped"] = True
        await self._emit(AgentEvent(FINAL_RESPONSE, payload))
        self._audit("final_response", chars=len(text), truncated=turn.truncated, sizeCapped=turn.size_capped)
        logger.info(f"[{sid}] Exchange completed in {steps} step(s)")
        return SupervisorOutcome(STATE_COMPLETED, sid, final_text=text, steps=steps)

    async def _fail(self, sid: Optional[str], message: str, steps: int = 0) -> SupervisorOutcome:
        logger.error(f"[{sid or '-'}] {message}")
        await self._emit(AgentEvent(ERROR, {"message": message, "terminal": True}))
        self._audit("error", message=message, terminal=True)
        await self._close()
        return SupervisorOutcome(STATE_FAILED, sid, error=message, steps=steps)

    def _stopped_outcome(self, sid: str, steps: int) -> SupervisorOutcome:
        if self._timed_out:
            return SupervisorOutcome(STATE_FAILED, sid, error="idle timeout", steps=steps)
        logger.info(f"[{sid}] Client disconnected; stopping")
        return SupervisorOutcome(STATE_DISCONNECTED, sid, steps=steps)

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def _open_stream(self, sid: str) -> AsyncIterator[StreamChunk]:
        history = self.store.history(sid)
        settings = self.settings

        async def _open() -> AsyncIterator[StreamChunk]:
            return await self.model.open_stream(history, self.system_prompt, TOOL_DEFINITIONS)

        async def _on_retry(attempt: int, exc: BaseException, delay: float) -> None:
            logger.warning(
                f"[{sid}] Opening model stream failed (attempt {attempt}/{settings.stream_max_retries + 1}), "
                f"retrying in {delay:.1f}s: {exc}"
            )

        return await retry_async(
            _open,
            max_retries=settings.stream_max_retries,
            base_delay=settings.stream_retry_backoff,
            max_delay=settings.stream_retry_max_backoff,
            is_retryable=is_transient_network_error,
            on_retry=_on_retry,
        )

    async def _read_turn(self, sid: str, stream: AsyncIterator[StreamChunk]) -> TurnResult:
        buffer = TurnBuffer(self.settings.max_response_chars, on_event=self._emit,
                            stream_deltas=self.settings.stream_deltas)
        async with self._heartbeat("streaming"):
            try:
                async for chunk in stream:
                    await buffer.consume(chunk)
                    if self.stopped:
                        break
            except Exception as e:
                if not is_transient_network_error(e):
                    raise
                logger.warning(f"[{sid}] Model stream dropped mid-turn, treating turn as truncated: {e}")
            finally:
                aclose = getattr(stream, "aclose", None)
                if aclose is not None:
                    await aclose()
        return buffer.finalize()

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    async def _handle_tool_call(self, sid: str, executor: ToolExecutor, calls: List[ToolCall]) -> None:
        call = calls[0]
        if len(calls) > 1:
            ignored = ", ".join(c.name for c in calls[1:])
            logger.warning(f"[{sid}] Model requested {len(calls)} tool calls; acting on {call.name}, ignoring {ignored}")
        if not call.id:
            call = dataclasses.replace(call, id=new_tool_call_id())

        self.store.append(sid, Turn.model_tool_call(call))
        async with self._heartbeat("tool"):
            result = await executor.execute(sid, call)
        self.store.append(sid, result_turn(call, result))

        if self.stopped:
            return
        if call.name == "run_tests" and result.success and tests_passed(result.output):
            await self._auto_publish(sid, call.args.get("className"))

    async def _auto_publish(self, sid: str, class_name: Any) -> None:
        """Publish right after a passing test run, outside the model's history."""
        await self._emit(AgentEvent(TOOL_CALL, {"name": "publish_files", "args": {"className": class_name}}))
        try:
            result = await asyncio.to_thread(publish_files, self._ctx.workspace, class_name)
        except Exception as e:
            logger.error(f"[{sid}] Auto-publish of {class_name} raised: {e}")
            result = PublishResult(success=False, error=str(e))

        await self._emit(AgentEvent(TOOL_RESPONSE, {
            "name": "publish_files",
            "response": publish_message(class_name, result),
        }))
        if result.success:
            await self._emit(AgentEvent(WORKFLOW_COMPLETE, {
                "className": class_name,
                "filePath": result.final_path,
                "mode": result.mode,
            }))
            self._audit("workflow_complete", className=class_name, filePath=result.final_path, mode=result.mode)
        else:
            message = f"Auto-publish failed for {class_name}: {result.error}"
            await self._emit(AgentEvent(ERROR, {"message": message, "terminal": False}))
            self._audit("error", message=message, terminal=False)
