"""Shared types for the tools package: results, errors, and the per-session workspace layout."""

import os
import re
from dataclasses import dataclass, field
from typing import List, Optional

import pathspec

from backend import LocalBackend
from config import app_config

_ARTIFACT_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,127}$")

ARTIFACT_SOURCE = "animation"
ARTIFACT_TEST = "test"


@dataclass
class ToolResult:
    """Result from executing a tool"""
    success: bool
    output: str
    error: Optional[str] = None
    attempts: int = 1
    transient: bool = False
    suggestions: List[str] = field(default_factory=list)


class ToolArgumentError(ValueError):
    """Missing or malformed tool arguments. Never retried."""
    transient = False


class PublishError(RuntimeError):
    """Nothing to publish for an artifact. Never retried."""
    transient = False


def validate_artifact_name(name: object) -> str:
    if not isinstance(name, str) or not _ARTIFACT_NAME_RE.match(name):
        raise ToolArgumentError(f"Invalid className {name!r}: expected an identifier such as 'SpinAnimation'")
    return name


@dataclass
class ArtifactLayout:
    """Where sources and tests live inside a staging or final area."""
    source_dir: str = "src/animations"
    test_dir: str = "tests/animations"
    source_suffix: str = ".ts"
    test_suffix: str = ".test.ts"

    @classmethod
    def from_config(cls) -> "ArtifactLayout":
        return cls(
            source_dir=app_config.source_dir,
            test_dir=app_config.test_dir,
            source_suffix=app_config.source_suffix,
            test_suffix=app_config.test_suffix,
        )


class SessionWorkspace:
    """
    On-disk area for one session.

    Layout under ``{sessions_dir}/{session_id}``::

        staging/{source_dir}/{Name}{source_suffix}   not yet published
        staging/{test_dir}/{Name}{test_suffix}
        {source_dir}/{Name}{source_suffix}           published
        {test_dir}/{Name}{test_suffix}
        logs/                                         audit trail
    """

    STAGING = "staging"
    LOGS = "logs"

    def __init__(self, sessions_dir: str, session_id: str, layout: Optional[ArtifactLayout] = None):
        self.session_id = session_id
        self.root = os.path.join(os.path.abspath(sessions_dir), session_id)
        self.layout = layout or ArtifactLayout()
        self.backend = LocalBackend(self.root)

    def _source(self, name: str) -> str:
        return f"{self.layout.source_dir}/{validate_artifact_name(name)}{self.layout.source_suffix}"

    def _test(self, name: str) -> str:
        return f"{self.layout.test_dir}/{validate_artifact_name(name)}{self.layout.test_suffix}"

    def staged_path(self, kind: str, name: str) -> str:
        rel = self._source(name) if kind == ARTIFACT_SOURCE else self._test(name)
        return f"{self.STAGING}/{rel}"

    def final_path(self, kind: str, name: str) -> str:
        return self._source(name) if kind == ARTIFACT_SOURCE else self._test(name)

    def log_path(self, filename: str) -> str:
        return f"{self.LOGS}/{filename}"

    def absolute(self, rel_path: str) -> str:
        return self.backend.resolve_path(rel_path)

    def published_names(self) -> List[str]:
        """Artifact names that have a published source."""
        src_dir = os.path.join(self.root, self.layout.source_dir)
        if not os.path.isdir(src_dir):
            return []
        suffix = self.layout.source_suffix
        test_suffix = self.layout.test_suffix
        return sorted(
            f[: -len(suffix)] for f in os.listdir(src_dir)
            if f.endswith(suffix) and not f.endswith(test_suffix)
        )


@dataclass
class ToolContext:
    """Everything a tool implementation may touch for one session."""
    workspace: SessionWorkspace
    project: LocalBackend
    allowed_reads: pathspec.PathSpec
    test_command: str = ""

    @property
    def session_id(self) -> str:
        return self.workspace.session_id

    @classmethod
    def for_session(cls, session_id: str, sessions_dir: Optional[str] = None,
                    project_root: Optional[str] = None,
                    allowed_patterns: Optional[List[str]] = None,
                    test_command: Optional[str] = None,
                    layout: Optional[ArtifactLayout] = None) -> "ToolContext":
        patterns = allowed_patterns if allowed_patterns is not None else app_config.allowed_read_patterns
        return cls(
            workspace=SessionWorkspace(sessions_dir or app_config.sessions_dir, session_id,
                                       layout or ArtifactLayout.from_config()),
            project=LocalBackend(project_root or app_config.project_root),
            allowed_reads=pathspec.PathSpec.from_lines("gitwildmatch", patterns),
            test_command=test_command if test_command is not None else app_config.test_command,
        )
