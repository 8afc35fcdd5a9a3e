"""File operation tools: list and read allow-listed project files, write staged artifacts."""

import logging
import posixpath
from typing import Any

from tools._common import ARTIFACT_SOURCE, ToolArgumentError, ToolContext

logger = logging.getLogger(__name__)

ACCESS_DENIED = "Error: Access denied. You can only read allow-listed project files."


def get_allowed_files(ctx: ToolContext) -> str:
    """List the project files the model may read for reference."""
    files = ctx.project.match_files(ctx.allowed_reads)
    return "Allowed files:\n" + "\n".join(files)


def _normalize_rel(filepath: str) -> str:
    rel = posixpath.normpath((filepath or "").replace("\\", "/").strip())
    return rel[2:] if rel.startswith("./") else rel


def read_file(ctx: ToolContext, filepath: Any) -> str:
    """Read an allow-listed project file.

    Policy violations return an error string for the model; I/O failures
    raise so the executor can decide whether to retry.
    """
    if not isinstance(filepath, str) or not filepath.strip():
        raise ToolArgumentError("filepath is required")
    rel = _normalize_rel(filepath)
    if rel.startswith("../") or rel == ".." or posixpath.isabs(rel):
        return ACCESS_DENIED
    if not ctx.allowed_reads.match_file(rel):
        return ACCESS_DENIED
    try:
        return ctx.project.read_file(rel)
    except ValueError:
        # symlink pointing outside the project
        return ACCESS_DENIED


def write_staged_file(ctx: ToolContext, kind: str, class_name: Any, code: Any) -> str:
    """Write (or replace) a staged source or test file for an artifact."""
    if not isinstance(code, str):
        raise ToolArgumentError("code must be a string")
    rel = ctx.workspace.staged_path(kind, class_name)
    backend = ctx.workspace.backend
    # Remove first so watchers never see a half-old file
    try:
        backend.remove_file(rel)
    except FileNotFoundError:
        pass
    backend.write_file(rel, code)
    label = "animation" if kind == ARTIFACT_SOURCE else "test"
    logger.info(f"[{ctx.session_id}] Staged {label} file {rel}")
    return f"File {posixpath.basename(rel)} saved successfully."
