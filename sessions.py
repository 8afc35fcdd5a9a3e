"""
In-memory session store for Anim Codex.
Holds conversation histories and last-failed-tool records keyed by session id.
Nothing here survives a process restart.
"""

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional, Tuple

logger = logging.getLogger(__name__)

# Session ids become directory names under SESSIONS_DIR
_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

ROLE_USER = "user"
ROLE_MODEL = "model"
ROLE_TOOL = "tool"


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model."""
    name: str
    args: Dict[str, Any] = field(default_factory=dict)
    id: str = ""


@dataclass(frozen=True)
class Turn:
    """One immutable entry in a session's history.

    Exactly one payload is set: ``text`` for user/model text, ``tool_call``
    for a model tool request, or ``tool_name`` plus ``output``/``error`` for
    a tool result.
    """
    role: str
    text: Optional[str] = None
    tool_call: Optional[ToolCall] = None
    tool_name: Optional[str] = None
    output: Optional[str] = None
    error: Optional[str] = None
    # Pairs a tool result with the ToolCall.id it answers
    call_id: str = ""

    @classmethod
    def user(cls, text: str) -> "Turn":
        return cls(role=ROLE_USER, text=text)

    @classmethod
    def model_text(cls, text: str) -> "Turn":
        return cls(role=ROLE_MODEL, text=text)

    @classmethod
    def model_tool_call(cls, call: ToolCall) -> "Turn":
        return cls(role=ROLE_MODEL, tool_call=call)

    @classmethod
    def tool_result(cls, name: str, output: Optional[str] = None,
                    error: Optional[str] = None, call_id: str = "") -> "Turn":
        return cls(role=ROLE_TOOL, tool_name=name, output=output, error=error, call_id=call_id)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"role": self.role}
        if self.text is not None:
            d["text"] = self.text
        if self.tool_call is not None:
            d["tool_call"] = {"name": self.tool_call.name, "args": self.tool_call.args}
        if self.role == ROLE_TOOL:
            d["name"] = self.tool_name
            if self.error is not None:
                d["error"] = self.error
            else:
                d["output"] = self.output
        return d


@dataclass
class LastFailedTool:
    """The most recent non-retryable tool failure, kept for manual replay."""
    tool_name: str
    arguments: Dict[str, Any]
    error_message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "toolName": self.tool_name,
            "arguments": dict(self.arguments),
            "errorMessage": self.error_message,
        }


@dataclass
class Session:
    """A live conversation."""
    session_id: str
    created_at: str = ""
    updated_at: str = ""
    history: List[Turn] = field(default_factory=list)
    last_failed_tool: Optional[LastFailedTool] = None

    @property
    def message_count(self) -> int:
        """Count user prompts in history."""
        return sum(1 for t in self.history if t.role == ROLE_USER and t.text is not None)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def validate_session_id(session_id: str) -> str:
    if not _SESSION_ID_RE.match(session_id or ""):
        raise ValueError(f"Invalid session id: {session_id!r}")
    return session_id


class SessionStore:
    """
    Table of sessions keyed by id.

    One store is created per server process and handed to every
    ConnectionSupervisor. Each session is expected to be driven by at most
    one connection at a time; concurrent writers are not guarded.
    """

    def __init__(self):
        self._sessions: Dict[str, Session] = {}

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def create(self, session_id: Optional[str] = None) -> Session:
        sid = validate_session_id(session_id) if session_id else uuid.uuid4().hex
        now = _now_iso()
        session = Session(session_id=sid, created_at=now, updated_at=now)
        self._sessions[sid] = session
        logger.info(f"Session created: {sid}")
        return session

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: Optional[str] = None) -> Tuple[Session, bool]:
        """Look up a session, creating it when unknown. Returns (session, created)."""
        if session_id:
            existing = self._sessions.get(session_id)
            if existing is not None:
                return existing, False
        return self.create(session_id), True

    def append(self, session_id: str, turn: Turn) -> None:
        session = self._require(session_id)
        session.history.append(turn)
        session.updated_at = _now_iso()

    def history(self, session_id: str) -> Tuple[Turn, ...]:
        """Snapshot of the history; callers cannot mutate the stored list."""
        return tuple(self._require(session_id).history)

    def reset(self, session_id: str) -> bool:
        """Empty a session's history. Returns False if the session is unknown."""
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.history = []
        session.updated_at = _now_iso()
        logger.info(f"Cleared session {session_id}")
        return True

    def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def list_sessions(self) -> List[Session]:
        """All sessions, newest activity first."""
        return sorted(self._sessions.values(), key=lambda s: s.updated_at, reverse=True)

    # ------------------------------------------------------------------
    # Last failed tool
    # ------------------------------------------------------------------

    def record_failure(self, session_id: str, failure: LastFailedTool) -> None:
        self._require(session_id).last_failed_tool = failure

    def last_failure(self, session_id: str) -> Optional[LastFailedTool]:
        session = self._sessions.get(session_id)
        return session.last_failed_tool if session else None

    def clear_failure(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            session.last_failed_tool = None

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(f"Unknown session: {session_id}")
        return session
