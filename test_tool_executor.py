import errno

import pytest

import tools.executor as executor_mod
from sessions import ToolCall
from tools.audit import TOOL_CALLS_LOG, read_log
from tools.executor import ToolExecutor, suggest_remediation


class _Events:
    def __init__(self):
        self.events = []

    async def __call__(self, event):
        self.events.append(event.to_message())

    def of_type(self, kind):
        return [e for e in self.events if e["type"] == kind]


async def _no_sleep(delay):
    return None


def _executor(ctx, store, events, **kw):
    return ToolExecutor(ctx, store, on_event=events, sleep=_no_sleep, **kw)


@pytest.fixture
def session(store):
    return store.create("exec-session")


@pytest.mark.asyncio
async def test_transient_failures_then_success_emit_no_tool_error(monkeypatch, store, session, context_factory):
    calls = []

    async def flaky(name, args, ctx):
        calls.append(name)
        if len(calls) <= 2:
            raise OSError(errno.EBUSY, "EBUSY: resource busy or locked")
        return "File Spin.ts saved successfully."

    monkeypatch.setattr(executor_mod, "execute_tool", flaky)
    events = _Events()
    ex = _executor(context_factory(session.session_id), store, events, max_retries=2)

    result = await ex.execute(session.session_id, ToolCall("create_animation_file", {"className": "Spin", "code": "x"}))

    assert result.success is True
    assert result.attempts == 3
    assert events.of_type("tool_error") == []
    assert [e["attempt"] for e in events.of_type("tool_retry")] == [1, 2]
    assert events.of_type("tool_retry")[0]["max"] == 3
    assert events.of_type("tool_response") == [
        {"type": "tool_response", "name": "create_animation_file", "response": "File Spin.ts saved successfully."}
    ]
    assert store.last_failure(session.session_id) is None


@pytest.mark.asyncio
async def test_non_transient_failure_is_not_retried_and_recorded(monkeypatch, store, session, context_factory):
    calls = []

    async def broken(name, args, ctx):
        calls.append(name)
        raise ValueError("Unexpected token in JSON")

    monkeypatch.setattr(executor_mod, "execute_tool", broken)
    events = _Events()
    ex = _executor(context_factory(session.session_id), store, events)

    result = await ex.execute(session.session_id, ToolCall("read_file", {"filepath": "x.ts"}))

    assert result.success is False
    assert len(calls) == 1
    errors = events.of_type("tool_error")
    assert len(errors) == 1
    assert errors[0]["transient"] is False
    assert errors[0]["attempt"] == 1
    assert errors[0]["message"] == "Unexpected token in JSON"
    assert events.of_type("tool_retry") == []
    failure = store.last_failure(session.session_id)
    assert failure.tool_name == "read_file"
    assert failure.arguments == {"filepath": "x.ts"}


@pytest.mark.asyncio
async def test_transient_exhaustion_is_surfaced_but_not_recorded(monkeypatch, store, session, context_factory):
    async def always_busy(name, args, ctx):
        raise TimeoutError("operation timed out")

    monkeypatch.setattr(executor_mod, "execute_tool", always_busy)
    events = _Events()
    ex = _executor(context_factory(session.session_id), store, events, max_retries=2)

    result = await ex.execute(session.session_id, ToolCall("run_tests", {"className": "Spin"}))

    assert result.success is False
    assert result.transient is True
    assert result.attempts == 3
    (error,) = events.of_type("tool_error")
    assert error["transient"] is True
    assert error["attempt"] == 3
    assert error["suggestions"]
    assert store.last_failure(session.session_id) is None


@pytest.mark.asyncio
async def test_every_call_is_audit_logged(store, session, context_factory):
    ctx = context_factory(session.session_id)
    ex = _executor(ctx, store, _Events())

    await ex.execute(session.session_id, ToolCall("create_animation_file", {"className": "Spin", "code": "a"}))
    await ex.execute(session.session_id, ToolCall("create_test_file", {"className": "Spin"}))

    entries = read_log(ctx.workspace, TOOL_CALLS_LOG)
    assert [e["tool"] for e in entries] == ["create_animation_file", "create_test_file"]
    assert entries[0]["output"]["output"] == "File Spin.ts saved successfully."
    assert "Missing required argument: code" in entries[1]["output"]["error"]


@pytest.mark.asyncio
async def test_unknown_tool_is_a_successful_string(store, session, context_factory):
    events = _Events()
    ex = _executor(context_factory(session.session_id), store, events)
    result = await ex.execute(session.session_id, ToolCall("rm_rf", {}))
    assert result.success is True
    assert result.output == "Unknown tool: rm_rf"


@pytest.mark.asyncio
async def test_replay_last_failed_appends_history_and_clears(store, session, context_factory):
    ctx = context_factory(session.session_id)
    ex = _executor(ctx, store, _Events())

    # publish before anything exists: non-transient PublishError
    first = await ex.execute(session.session_id, ToolCall("publish_files", {"className": "Spin"}))
    assert first.success is False
    assert store.last_failure(session.session_id).tool_name == "publish_files"

    ctx.workspace.backend.write_file(ctx.workspace.staged_path("animation", "Spin"), "export class Spin {}")
    result = await ex.replay_last_failed(session.session_id)

    assert result.success is True
    assert store.last_failure(session.session_id) is None
    history = store.history(session.session_id)
    assert history[-2].tool_call.name == "publish_files"
    assert history[-1].tool_name == "publish_files"
    assert history[-1].call_id == history[-2].tool_call.id


@pytest.mark.asyncio
async def test_replay_without_record_returns_none(store, session, context_factory):
    ex = _executor(context_factory(session.session_id), store, _Events())
    assert await ex.replay_last_failed(session.session_id) is None


def test_suggestions_for_missing_file():
    hints = suggest_remediation("read_file", "[Errno 2] No such file or directory: 'x.ts'")
    assert any("get_allowed_files" in h for h in hints)
    assert suggest_remediation("read_file", "something odd") == []
