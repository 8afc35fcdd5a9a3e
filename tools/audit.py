"""Append-only JSONL audit logs kept per session."""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List

from tools._common import SessionWorkspace

logger = logging.getLogger(__name__)

TOOL_CALLS_LOG = "tool_calls.log"
WORKFLOW_LOG = "workflow.log"


def _append(workspace: SessionWorkspace, filename: str, entry: Dict[str, Any]) -> None:
    path = workspace.absolute(workspace.log_path(filename))
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
    except OSError as e:
        # The audit trail must never break the exchange it describes
        logger.error(f"[{workspace.session_id}] Failed to write {filename}: {e}")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_tool_call(workspace: SessionWorkspace, tool: str, inputs: Dict[str, Any],
                  outputs: Dict[str, Any]) -> None:
    """Record one tool invocation with its inputs and output or error."""
    _append(workspace, TOOL_CALLS_LOG, {
        "timestamp": _now_iso(),
        "tool": tool,
        "input": inputs,
        "output": outputs,
    })


def log_workflow(workspace: SessionWorkspace, event: str, **payload: Any) -> None:
    """Record a step-loop milestone."""
    entry: Dict[str, Any] = {"timestamp": _now_iso(), "event": event}
    entry.update(payload)
    _append(workspace, WORKFLOW_LOG, entry)


def read_log(workspace: SessionWorkspace, filename: str) -> List[Dict[str, Any]]:
    """Parse a JSONL log; a missing log reads as empty."""
    path = workspace.absolute(workspace.log_path(filename))
    if not os.path.exists(path):
        return []
    with open(path, "r", encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]
