"""
Session REST API endpoints: reset, replay of the last failed tool, inspection.
"""

import logging
import os
from typing import Any, Dict, List

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from agent.events import AgentEvent
from agent.supervisor import make_tool_executor
from sessions import validate_session_id
from tools._common import ARTIFACT_SOURCE, ARTIFACT_TEST
import web.state as _state
from web.chat import NO_FAILED_TOOL, replay_payload

logger = logging.getLogger(__name__)

router = APIRouter()


async def _session_id_from_body(request: Request) -> str:
    try:
        body = await request.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        return ""
    return str(body.get("sessionId") or body.get("session_id") or "")


@router.get("/api/sessions")
async def list_sessions():
    """List live sessions, newest activity first."""
    return {
        "sessions": [
            {
                "sessionId": s.session_id,
                "updatedAt": s.updated_at,
                "messageCount": s.message_count,
            }
            for s in _state.get_store().list_sessions()
        ]
    }


@router.get("/api/sessions/{session_id}")
async def get_session(session_id: str):
    """History summary and last failed tool for one session."""
    session = _state.get_store().get(session_id)
    if session is None:
        return JSONResponse({"ok": False, "error": f"Unknown session: {session_id}"}, status_code=404)
    failure = session.last_failed_tool
    return {
        "sessionId": session.session_id,
        "createdAt": session.created_at,
        "updatedAt": session.updated_at,
        "messageCount": session.message_count,
        "history": [t.to_dict() for t in session.history],
        "lastFailedTool": failure.to_dict() if failure else None,
    }


@router.post("/api/clear_session")
async def clear_session(request: Request):
    """Empty a session's history. The staged and published files stay."""
    session_id = await _session_id_from_body(request)
    if not session_id:
        return JSONResponse({"success": False, "error": "sessionId required"}, status_code=400)
    cleared = _state.get_store().reset(session_id)
    return {"success": cleared}


@router.post("/api/replay_failed_tool")
async def replay_failed_tool(request: Request):
    """Re-run the session's recorded non-retryable tool failure."""
    session_id = await _session_id_from_body(request)
    if not session_id:
        return JSONResponse({"success": False, "error": "sessionId required"}, status_code=400)
    store = _state.get_store()
    failure = store.last_failure(session_id)
    if failure is None:
        return JSONResponse(
            {"success": False, "error": NO_FAILED_TOOL},
            status_code=404,
        )

    events: List[Dict[str, Any]] = []

    async def _collect(event: AgentEvent) -> None:
        events.append(event.to_message())

    executor = make_tool_executor(_state.tool_context(session_id), store,
                                  _state.get_settings(), on_event=_collect)
    result = await executor.replay_last_failed(session_id)
    if result is None:
        return JSONResponse(
            {"success": False, "error": NO_FAILED_TOOL},
            status_code=404,
        )
    payload = replay_payload(session_id, failure.tool_name, result)
    payload["events"] = events
    return payload


@router.get("/api/artifacts/{session_id}")
async def list_artifacts(session_id: str):
    """Published artifacts of a session with their source and test paths."""
    try:
        validate_session_id(session_id)
    except ValueError as e:
        return JSONResponse({"ok": False, "error": str(e)}, status_code=400)
    workspace = _state.tool_context(session_id).workspace
    artifacts = []
    for name in workspace.published_names():
        test_path = workspace.absolute(workspace.final_path(ARTIFACT_TEST, name))
        artifacts.append({
            "className": name,
            "sourcePath": workspace.absolute(workspace.final_path(ARTIFACT_SOURCE, name)),
            "testPath": test_path if os.path.exists(test_path) else None,
        })
    return {"sessionId": session_id, "artifacts": artifacts}
