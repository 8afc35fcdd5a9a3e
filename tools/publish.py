"""Promote staged artifacts into the session's final area, skipping byte-identical republishes."""

import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from tools._common import ARTIFACT_SOURCE, ARTIFACT_TEST, SessionWorkspace, validate_artifact_name
from tools.audit import log_tool_call

logger = logging.getLogger(__name__)

MODE_PUBLISHED = "published"
MODE_OVERWRITTEN = "overwritten"
MODE_KEPT = "kept"
MODE_SKIPPED_DUPLICATE = "skipped_duplicate"

DUPLICATE_HASH_MATCH = "duplicate_hash_match"
NO_TEST_WARNING = "Test file not found in staging or final; published animation only."

_SEPARATOR = b"\n\x00\n"


@dataclass
class PublishResult:
    success: bool
    mode: Optional[str] = None
    final_path: Optional[str] = None
    warning: Optional[str] = None
    skipped_reason: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"success": self.success}
        for key, value in (("mode", self.mode), ("finalPath", self.final_path),
                           ("warning", self.warning), ("skippedReason", self.skipped_reason),
                           ("error", self.error)):
            if value is not None:
                d[key] = value
        return d


def _pair_digest(workspace: SessionWorkspace, src_rel: str, test_rel: str) -> str:
    backend = workspace.backend
    h = hashlib.sha256()
    h.update(backend.read_bytes(src_rel))
    h.update(_SEPARATOR)
    if backend.file_exists(test_rel):
        h.update(backend.read_bytes(test_rel))
    return h.hexdigest()


def publish_files(workspace: SessionWorkspace, class_name: str) -> PublishResult:
    """
    Publish the staged source (and test, when present) for ``class_name``.

    Modes:
      published          staged source copied, no previous final source
      overwritten        staged source replaced an existing final source
      kept               nothing staged, the existing final source stays
      skipped_duplicate  staged pair hashes equal to the final pair, no writes
    """
    validate_artifact_name(class_name)
    backend = workspace.backend
    staged_src = workspace.staged_path(ARTIFACT_SOURCE, class_name)
    staged_test = workspace.staged_path(ARTIFACT_TEST, class_name)
    final_src = workspace.final_path(ARTIFACT_SOURCE, class_name)
    final_test = workspace.final_path(ARTIFACT_TEST, class_name)

    have_staged_src = backend.file_exists(staged_src)
    have_staged_test = backend.file_exists(staged_test)
    have_final_src = backend.file_exists(final_src)
    have_final_test = backend.file_exists(final_test)

    inputs = {"className": class_name}

    if not have_staged_src and not have_final_src:
        msg = f"Source file missing for {class_name} (no staged or published copy)"
        logger.error(f"[{workspace.session_id}] {msg}")
        result = PublishResult(success=False, error=msg)
        log_tool_call(workspace, "publish_files", inputs, result.to_dict())
        return result

    final_abs = workspace.absolute(final_src)
    warning = None if (have_staged_test or have_final_test) else NO_TEST_WARNING

    if have_staged_src and have_final_src:
        staged_digest = _pair_digest(workspace, staged_src, staged_test)
        final_digest = _pair_digest(workspace, final_src, final_test)
        if staged_digest == final_digest:
            logger.info(f"[{workspace.session_id}] {class_name} unchanged since last publish, skipping")
            result = PublishResult(success=True, mode=MODE_SKIPPED_DUPLICATE, final_path=final_abs,
                                   warning=warning, skipped_reason=DUPLICATE_HASH_MATCH)
            log_tool_call(workspace, "publish_files", inputs, result.to_dict())
            return result

    if have_staged_src:
        backend.copy_file(staged_src, final_src)
        backend.remove_file(staged_src)
    if have_staged_test:
        backend.copy_file(staged_test, final_test)
        backend.remove_file(staged_test)

    if have_staged_src:
        mode = MODE_OVERWRITTEN if have_final_src else MODE_PUBLISHED
    else:
        mode = MODE_KEPT

    logger.warning(
        f"[{workspace.session_id}] Published files for {class_name} (src {mode})"
        f"{' (animation only, no test updated)' if warning else ''}"
    )
    result = PublishResult(success=True, mode=mode, final_path=final_abs, warning=warning)
    log_tool_call(workspace, "publish_files", inputs, result.to_dict())
    return result
