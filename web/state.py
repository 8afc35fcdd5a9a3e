"""
Shared mutable state for the web server.

Process-wide singletons that more than one route module needs live here.
Import from web.state to read/write them.
"""

import logging
import os
from typing import Any, Dict, Optional

from fastapi import WebSocket

from agent.supervisor import EventSink, SupervisorSettings
from bedrock_service import BedrockService, ModelService
from config import app_config
from sessions import SessionStore
from tools._common import ToolContext

logger = logging.getLogger(__name__)

# ============================================================
# Globals
# ============================================================

_project_root: Optional[str] = None  # Set by the CLI --dir flag; else PROJECT_ROOT
_store: SessionStore = SessionStore()
_model_service: Optional[ModelService] = None  # Created lazily so importing the app needs no AWS credentials
_settings: Optional[SupervisorSettings] = None  # Override for tests


def get_store() -> SessionStore:
    return _store


def get_model_service() -> ModelService:
    global _model_service
    if _model_service is None:
        _model_service = BedrockService()
    return _model_service


def set_model_service(service: Optional[ModelService]) -> None:
    global _model_service
    _model_service = service


def get_settings() -> SupervisorSettings:
    return _settings or SupervisorSettings.from_config()


def set_settings(settings: Optional[SupervisorSettings]) -> None:
    global _settings
    _settings = settings


def sessions_dir() -> str:
    """Where session workspaces live.

    An explicit SESSIONS_DIR wins; otherwise workspaces sit under the served
    project root so the test runner (rooted there) can find staged tests.
    """
    if _project_root is None or os.getenv("SESSIONS_DIR"):
        return app_config.sessions_dir
    return os.path.join(_project_root, ".sessions")


def tool_context(session_id: str) -> ToolContext:
    """Tool context for a session rooted at the served project."""
    return ToolContext.for_session(session_id, sessions_dir=sessions_dir(),
                                   project_root=_project_root)


# ============================================================
# WebSocket reference wrapper (for disconnect-safe sends)
# ============================================================

class _WSRef(EventSink):
    """Mutable WebSocket reference that silently drops sends when disconnected.

    The supervisor and the receive loop both write through ``wsr.send_json()``
    instead of ``ws.send_json()`` directly. When the WebSocket disconnects we
    set ``wsr.ws = None``; all in-flight sends become silent no-ops and the
    supervisor sees ``connected`` turn false at its next check.
    """
    __slots__ = ("ws",)

    def __init__(self, ws: Optional[WebSocket]):
        self.ws: Optional[WebSocket] = ws

    @property
    def connected(self) -> bool:
        return self.ws is not None

    async def send_json(self, data: Dict[str, Any]) -> None:
        _ws = self.ws
        if _ws is None:
            return
        try:
            await _ws.send_json(data)
        except Exception:
            self.ws = None          # mark disconnected on first failure

    async def close(self, code: int = 1000) -> None:
        _ws, self.ws = self.ws, None
        if _ws is None:
            return
        try:
            await _ws.close(code=code)
        except Exception as e:
            logger.debug(f"WebSocket close after disconnect: {e}")
