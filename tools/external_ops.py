"""External tools: run the project's test runner against one staged test file."""

import asyncio
import logging
import os
import shlex
from typing import List

from tools._common import ARTIFACT_TEST, ToolContext, validate_artifact_name

logger = logging.getLogger(__name__)

# Runner output that means the environment is broken, not the generated code
SYSTEM_ERROR_PATTERNS = (
    "No test files found",
    "Failed to resolve import",
    "Cannot convert a Symbol value to a string",
    "Cannot convert a Symbol value to string",
)

SYSTEM_ERROR_PREFIX = "SYSTEM_ERROR:"
PASSED_PREFIX = "Tests passed successfully for "
WARNINGS_MARKER = "(with warnings):"


def tests_passed(output: str) -> bool:
    """True for a clean pass or a pass that only wrote to stderr."""
    if not output:
        return False
    if output.startswith(PASSED_PREFIX):
        return True
    return output.startswith("Tests completed for ") and WARNINGS_MARKER in output.split("\n", 1)[0]


def build_test_command(template: str, test_file: str, root: str) -> List[str]:
    """Split the command template and substitute {test_file} / {root} per argument."""
    return [
        arg.replace("{test_file}", test_file).replace("{root}", root)
        for arg in shlex.split(template)
    ]


def classify_test_output(class_name: str, returncode: int, stdout: str, stderr: str) -> str:
    combined = stdout + stderr
    if any(p in combined for p in SYSTEM_ERROR_PATTERNS):
        return (
            f"{SYSTEM_ERROR_PREFIX} Test runner failed due to an environment issue "
            "(missing test file, bad import path or incompatible module build). "
            "Do not attempt to fix this by modifying code. Stop and report the issue. "
            f"Original error:\n\n{combined}"
        )
    if returncode != 0:
        return f"Tests failed for {class_name}:\n\nSTDOUT:\n{stdout}\n\nSTDERR:\n{stderr}"
    if stderr:
        return f"Tests completed for {class_name} {WARNINGS_MARKER}\n\nSTDOUT:\n{stdout}\n\nSTDERR:\n{stderr}"
    return f"{PASSED_PREFIX}{class_name}!\n\n{stdout}"


async def run_tests(ctx: ToolContext, class_name: str) -> str:
    """Run the configured test command for one staged test file.

    The full runner output is written to ``logs/<Name>_run_tests.log`` in the
    session workspace. A missing staged test raises FileNotFoundError.
    """
    validate_artifact_name(class_name)
    workspace = ctx.workspace
    staged_test = workspace.absolute(workspace.staged_path(ARTIFACT_TEST, class_name))
    if not os.path.isfile(staged_test):
        raise FileNotFoundError(f"No such file: staged test for {class_name} ({staged_test})")

    root = ctx.project.working_directory
    argv = build_test_command(ctx.test_command, staged_test, root)
    if not argv:
        raise ValueError("TEST_COMMAND is empty")
    logger.warning(f"[{ctx.session_id}] Running tests for {class_name}: {' '.join(argv)}")

    env = dict(os.environ)
    env["SESSION_TESTS"] = "1"
    proc = await asyncio.create_subprocess_exec(
        *argv,
        cwd=root,
        env=env,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    out_b, err_b = await proc.communicate()
    stdout = out_b.decode("utf-8", errors="replace")
    stderr = err_b.decode("utf-8", errors="replace")

    result = classify_test_output(class_name, proc.returncode, stdout, stderr)

    log_rel = workspace.log_path(f"{class_name}_run_tests.log")
    try:
        workspace.backend.write_file(log_rel, stdout + stderr)
    except OSError as e:
        logger.error(f"[{ctx.session_id}] Failed to write test run log: {e}")

    return result
