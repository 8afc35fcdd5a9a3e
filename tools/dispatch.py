"""Tool execution dispatch over the closed tool set."""

import asyncio
import logging
from typing import Any, Dict

from tools._common import ARTIFACT_SOURCE, ARTIFACT_TEST, PublishError, ToolArgumentError, ToolContext
from tools.external_ops import run_tests
from tools.file_ops import get_allowed_files, read_file, write_staged_file
from tools.publish import MODE_SKIPPED_DUPLICATE, PublishResult, publish_files

logger = logging.getLogger(__name__)

_WRITE_TOOLS = {
    "create_animation_file": ARTIFACT_SOURCE,
    "update_animation_file": ARTIFACT_SOURCE,
    "create_test_file": ARTIFACT_TEST,
    "update_test_file": ARTIFACT_TEST,
}


def _require(args: Dict[str, Any], key: str) -> Any:
    if key not in args:
        raise ToolArgumentError(f"Missing required argument: {key}")
    return args[key]


def publish_message(class_name: str, result: PublishResult) -> str:
    if not result.success:
        return f"Failed to publish {class_name}."
    if result.mode == MODE_SKIPPED_DUPLICATE:
        return f"{class_name} is already published with identical content; nothing changed."
    msg = f"Published {class_name} successfully."
    if result.warning:
        msg += f" Warning: {result.warning}"
    return msg


async def execute_tool(name: str, args: Dict[str, Any], ctx: ToolContext) -> str:
    """
    Run one tool call and return its output string.

    Unknown tool names return a message instead of raising. Failures raise;
    the executor decides whether they are retried.
    """
    args = args or {}
    if not isinstance(args, dict):
        raise ToolArgumentError(f"Arguments for {name} must be an object")

    if name == "get_allowed_files":
        return await asyncio.to_thread(get_allowed_files, ctx)

    if name == "read_file":
        return await asyncio.to_thread(read_file, ctx, _require(args, "filepath"))

    if name in _WRITE_TOOLS:
        return await asyncio.to_thread(
            write_staged_file, ctx, _WRITE_TOOLS[name],
            _require(args, "className"), _require(args, "code"),
        )

    if name == "run_tests":
        return await run_tests(ctx, _require(args, "className"))

    if name == "publish_files":
        class_name = _require(args, "className")
        result = await asyncio.to_thread(publish_files, ctx.workspace, class_name)
        if not result.success:
            raise PublishError(result.error or f"Failed to publish {class_name}")
        return publish_message(class_name, result)

    logger.warning(f"[{ctx.session_id}] Model requested unknown tool {name!r}")
    return f"Unknown tool: {name}"
