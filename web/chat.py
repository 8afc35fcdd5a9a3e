"""
WebSocket chat endpoint: one supervisor exchange per prompt message.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from agent.events import AgentEvent
from agent.supervisor import ConnectionSupervisor, make_tool_executor
from bedrock_service import BedrockError
from tools._common import ToolResult
import web.state as _state
from web.state import _WSRef

logger = logging.getLogger(__name__)

router = APIRouter()

# Exchanges still running after their client went away
_background_runs: Set[asyncio.Task] = set()


NO_FAILED_TOOL = "No failed tool recorded for this session"


def _error(message: str, terminal: bool = False) -> Dict[str, Any]:
    return {"type": "error", "message": message, "terminal": terminal}


def replay_payload(session_id: str, name: str, result: ToolResult) -> Dict[str, Any]:
    """Shape a replay outcome for the client (shared with the REST route)."""
    payload: Dict[str, Any] = {
        "sessionId": session_id,
        "name": name,
        "success": result.success,
        "attempts": result.attempts,
    }
    if result.success:
        payload["output"] = result.output
    else:
        payload["error"] = result.error
        payload["transient"] = result.transient
    return payload


@router.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await ws.accept()
    wsr = _WSRef(ws)
    store = _state.get_store()
    current_sid: Optional[str] = ws.query_params.get("session_id") or None
    run_task: Optional[asyncio.Task] = None

    def _busy() -> bool:
        return run_task is not None and not run_task.done()

    async def _forward(event: AgentEvent) -> None:
        await wsr.send_json(event.to_message())

    async def _run_prompt(prompt: str, session_id: Optional[str]) -> None:
        nonlocal current_sid
        try:
            model = _state.get_model_service()
        except BedrockError as e:
            logger.error(f"Model service unavailable: {e}")
            await wsr.send_json(_error(str(e), terminal=True))
            await wsr.close()
            return
        supervisor = ConnectionSupervisor(
            store, model, wsr,
            settings=_state.get_settings(),
            tool_context_factory=_state.tool_context,
        )
        outcome = await supervisor.run(prompt, session_id)
        if outcome.session_id:
            current_sid = outcome.session_id
        logger.info(f"[{outcome.session_id}] Exchange ended: {outcome.state}")

    async def _replay(session_id: str) -> None:
        failure = store.last_failure(session_id)
        result = None
        if failure is not None:
            executor = make_tool_executor(_state.tool_context(session_id), store,
                                          _state.get_settings(), on_event=_forward)
            # None when another caller replayed the record in the meantime
            result = await executor.replay_last_failed(session_id)
        if result is None:
            await wsr.send_json({
                "type": "replay_result", "sessionId": session_id, "success": False,
                "error": NO_FAILED_TOOL,
            })
            return
        await wsr.send_json({"type": "replay_result", **replay_payload(session_id, failure.tool_name, result)})

    try:
        while wsr.connected:
            raw = await ws.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await wsr.send_json(_error("Invalid JSON"))
                continue
            if not isinstance(data, dict):
                await wsr.send_json(_error("Expected a JSON object"))
                continue

            msg_type = data.get("type", "")
            session_id = data.get("session_id") or data.get("sessionId") or current_sid

            # ── Prompt ─────────────────────────────────────────────
            if msg_type == "prompt":
                prompt = (data.get("prompt") or "").strip()
                if not prompt:
                    await wsr.send_json(_error("Empty prompt"))
                    continue
                if _busy():
                    await wsr.send_json(_error("busy: an exchange is already running on this connection"))
                    continue
                run_task = asyncio.create_task(_run_prompt(prompt, session_id))
                continue

            # ── Reset ──────────────────────────────────────────────
            if msg_type == "reset":
                if _busy():
                    await wsr.send_json(_error("busy: cannot reset while an exchange is running"))
                    continue
                ok = bool(session_id) and store.reset(session_id)
                await wsr.send_json({"type": "reset_done", "sessionId": session_id, "success": ok})
                continue

            # ── Replay last failed tool ────────────────────────────
            if msg_type == "replay_failed_tool":
                if _busy():
                    await wsr.send_json(_error("busy: cannot replay while an exchange is running"))
                    continue
                if not session_id or store.get(session_id) is None:
                    await wsr.send_json(_error(f"Unknown session: {session_id}"))
                    continue
                run_task = asyncio.create_task(_replay(session_id))
                continue

            await wsr.send_json(_error(f"Unknown message type: {msg_type!r}"))

    except WebSocketDisconnect:
        wsr.ws = None  # sends become silent no-ops; the supervisor stops at its next check
        logger.info("WebSocket disconnected")
    finally:
        if run_task is not None and not run_task.done():
            _background_runs.add(run_task)
            run_task.add_done_callback(_background_runs.discard)
