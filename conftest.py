"""Shared test doubles: a scripted model service, a recording event sink, fast settings."""

import asyncio
import shlex
import sys
from typing import Any, Dict, List, Optional, Sequence, Union

import pytest

from agent.supervisor import EventSink, SupervisorSettings
from bedrock_service import ModelService, StreamChunk
from sessions import SessionStore, ToolCall, Turn
from tools._common import ToolContext


def text_turn(*parts: str, finish: Optional[str] = "end_turn") -> List[StreamChunk]:
    """Chunks for a plain text turn; ``finish=None`` leaves it without a finish marker."""
    chunks = [StreamChunk(text=p) for p in parts]
    chunks.append(StreamChunk(finish_reason=finish) if finish else StreamChunk())
    return chunks


def tool_turn(name: str, args: Dict[str, Any], text: str = "", call_id: str = "toolu_test") -> List[StreamChunk]:
    chunks = [StreamChunk(text=text)] if text else []
    chunks.append(StreamChunk(tool_calls=[ToolCall(name, args, call_id)]))
    chunks.append(StreamChunk(finish_reason="tool_use"))
    return chunks


class ScriptedModelService(ModelService):
    """
    Replays one scripted turn per ``open_stream`` call.

    A script entry is a list of StreamChunks (optionally containing an
    Exception, raised mid-stream at that position), or an Exception raised
    when opening the stream.
    """

    def __init__(self, script: Sequence[Union[List[Any], BaseException]], chunk_delay: float = 0.0):
        self.script = list(script)
        self.chunk_delay = chunk_delay
        self.calls: List[Sequence[Turn]] = []

    async def open_stream(self, history, system_prompt=None, tools=None):
        self.calls.append(tuple(history))
        if not self.script:
            raise AssertionError("model opened more streams than scripted")
        entry = self.script.pop(0)
        if isinstance(entry, BaseException):
            raise entry
        return self._iterate(entry)

    async def _iterate(self, chunks):
        for chunk in chunks:
            if self.chunk_delay:
                await asyncio.sleep(self.chunk_delay)
            if isinstance(chunk, BaseException):
                raise chunk
            yield chunk


class RecordingSink(EventSink):
    """Collects every event; can simulate the client going away."""

    def __init__(self, disconnect_after: Optional[int] = None):
        self.events: List[Dict[str, Any]] = []
        self.closed = False
        self._connected = True
        self._disconnect_after = disconnect_after

    @property
    def connected(self) -> bool:
        return self._connected

    async def send_json(self, data: Dict[str, Any]) -> None:
        if not self._connected:
            return
        self.events.append(data)
        if self._disconnect_after is not None and len(self.events) >= self._disconnect_after:
            self._connected = False

    async def close(self, code: int = 1000) -> None:
        self.closed = True
        self._connected = False

    def types(self) -> List[str]:
        return [e["type"] for e in self.events]

    def of_type(self, kind: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e["type"] == kind]


def python_command(code: str) -> str:
    """A TEST_COMMAND that runs a Python one-liner instead of the real test runner."""
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"


PASSING_COMMAND = python_command("print('1 passed')")
FAILING_COMMAND = python_command("import sys; print('1 failed'); sys.exit(1)")


@pytest.fixture
def fast_settings() -> SupervisorSettings:
    return SupervisorSettings(
        max_steps=6,
        incomplete_retry_limit=1,
        max_response_chars=1000,
        stream_deltas=True,
        max_tool_retries=2,
        tool_retry_base=0.001,
        tool_retry_max=0.004,
        stream_max_retries=2,
        stream_retry_backoff=0.001,
        stream_retry_max_backoff=0.004,
        idle_timeout=5.0,
        keepalive_interval=5.0,
        heartbeat_interval=5.0,
    )


@pytest.fixture
def store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def project_root(tmp_path):
    root = tmp_path / "project"
    (root / "src" / "animations").mkdir(parents=True)
    (root / "tests" / "animations").mkdir(parents=True)
    (root / "src" / "animations" / "FadeAnimation.ts").write_text("export class FadeAnimation {}\n")
    (root / "tests" / "animations" / "FadeAnimation.test.ts").write_text("describe('FadeAnimation', () => {});\n")
    (root / "secrets.env").write_text("TOKEN=abc\n")
    return root


@pytest.fixture
def context_factory(tmp_path, project_root):
    """Build ToolContexts rooted in tmp_path; ``command`` defaults to a passing run."""
    def _factory(session_id: str, command: str = PASSING_COMMAND) -> ToolContext:
        return ToolContext.for_session(
            session_id,
            sessions_dir=str(tmp_path / ".sessions"),
            project_root=str(project_root),
            allowed_patterns=["src/animations/*.ts", "tests/animations/*.test.ts"],
            test_command=command,
        )
    return _factory
