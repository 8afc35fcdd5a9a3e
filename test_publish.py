import os

import pytest

from tools._common import ARTIFACT_SOURCE, ARTIFACT_TEST, SessionWorkspace, ToolArgumentError
from tools.audit import TOOL_CALLS_LOG, read_log
from tools.publish import (
    DUPLICATE_HASH_MATCH, MODE_KEPT, MODE_OVERWRITTEN, MODE_PUBLISHED, MODE_SKIPPED_DUPLICATE,
    NO_TEST_WARNING, publish_files,
)

SRC = "export class HashDuplicateAnim {}\n"
TEST = "describe('HashDuplicateAnim', () => it('exists', () => expect(1).toBe(1)));\n"


@pytest.fixture
def workspace(tmp_path):
    return SessionWorkspace(str(tmp_path / ".sessions"), "sess_publish")


def _stage(ws, name, src=SRC, test=TEST):
    ws.backend.write_file(ws.staged_path(ARTIFACT_SOURCE, name), src)
    if test is not None:
        ws.backend.write_file(ws.staged_path(ARTIFACT_TEST, name), test)


def test_first_publish_moves_staged_files(workspace):
    _stage(workspace, "HashDuplicateAnim")
    result = publish_files(workspace, "HashDuplicateAnim")

    assert result.success is True
    assert result.mode == MODE_PUBLISHED
    assert result.final_path == workspace.absolute(workspace.final_path(ARTIFACT_SOURCE, "HashDuplicateAnim"))
    assert workspace.backend.read_file(workspace.final_path(ARTIFACT_TEST, "HashDuplicateAnim")) == TEST
    assert not workspace.backend.file_exists(workspace.staged_path(ARTIFACT_SOURCE, "HashDuplicateAnim"))
    assert not workspace.backend.file_exists(workspace.staged_path(ARTIFACT_TEST, "HashDuplicateAnim"))
    assert workspace.published_names() == ["HashDuplicateAnim"]


def test_identical_republish_is_skipped_without_writes(workspace):
    name = "HashDuplicateAnim"
    _stage(workspace, name)
    publish_files(workspace, name)

    final_src = workspace.absolute(workspace.final_path(ARTIFACT_SOURCE, name))
    final_test = workspace.absolute(workspace.final_path(ARTIFACT_TEST, name))
    os.utime(final_src, (1_000_000, 1_000_000))
    os.utime(final_test, (1_000_000, 1_000_000))

    _stage(workspace, name)
    result = publish_files(workspace, name)

    assert result.success is True
    assert result.mode == MODE_SKIPPED_DUPLICATE
    assert result.skipped_reason == DUPLICATE_HASH_MATCH
    assert os.stat(final_src).st_mtime == 1_000_000
    assert os.stat(final_test).st_mtime == 1_000_000
    # staged copies are left untouched
    assert workspace.backend.file_exists(workspace.staged_path(ARTIFACT_SOURCE, name))


def test_changed_source_overwrites_and_clears_staging(workspace):
    name = "HashDuplicateAnim"
    _stage(workspace, name)
    publish_files(workspace, name)

    _stage(workspace, name, src=SRC + "// tweak\n")
    result = publish_files(workspace, name)

    assert result.mode == MODE_OVERWRITTEN
    assert workspace.backend.read_file(workspace.final_path(ARTIFACT_SOURCE, name)).endswith("// tweak\n")
    assert not workspace.backend.file_exists(workspace.staged_path(ARTIFACT_SOURCE, name))


def test_changed_test_alone_is_not_a_duplicate(workspace):
    name = "HashDuplicateAnim"
    _stage(workspace, name)
    publish_files(workspace, name)

    _stage(workspace, name, test=TEST + "// more\n")
    assert publish_files(workspace, name).mode == MODE_OVERWRITTEN


def test_nothing_staged_keeps_final(workspace):
    name = "HashDuplicateAnim"
    _stage(workspace, name)
    publish_files(workspace, name)

    result = publish_files(workspace, name)
    assert result.success is True
    assert result.mode == MODE_KEPT


def test_missing_test_is_a_warning(workspace):
    _stage(workspace, "NoTestAnim", test=None)
    result = publish_files(workspace, "NoTestAnim")
    assert result.success is True
    assert result.warning == NO_TEST_WARNING


def test_missing_source_fails_and_is_logged(workspace):
    result = publish_files(workspace, "GhostAnim")
    assert result.success is False
    assert result.mode is None
    entries = read_log(workspace, TOOL_CALLS_LOG)
    assert entries[-1]["tool"] == "publish_files"
    assert entries[-1]["output"]["success"] is False


def test_invalid_name_is_rejected(workspace):
    with pytest.raises(ToolArgumentError):
        publish_files(workspace, "../escape")
