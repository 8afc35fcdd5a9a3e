"""
Tool definitions and implementations for the animation agent.
Each tool has an Anthropic-compatible schema and an implementation function.
Tools touch the filesystem through a Backend rooted at the project or at the
session workspace, never through raw model-supplied paths.
"""

from tools._common import (  # noqa: F401
    ToolResult,
    ToolArgumentError,
    PublishError,
    ToolContext,
    SessionWorkspace,
    ArtifactLayout,
    ARTIFACT_SOURCE,
    ARTIFACT_TEST,
    validate_artifact_name,
)
from tools.file_ops import get_allowed_files, read_file, write_staged_file  # noqa: F401
from tools.external_ops import run_tests, tests_passed  # noqa: F401
from tools.publish import PublishResult, publish_files  # noqa: F401
from tools.schemas import TOOL_DEFINITIONS, TOOL_NAMES  # noqa: F401
from tools.dispatch import execute_tool, publish_message  # noqa: F401
