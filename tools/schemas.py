"""Tool schema definitions (Bedrock/Anthropic Messages API)."""

from typing import Any, Dict, List


def _class_name_prop(what: str) -> Dict[str, Any]:
    return {"type": "string", "description": f"PascalCase class name of the {what}, e.g. 'SpinAnimation'"}


_CODE_PROP: Dict[str, Any] = {"type": "string", "description": "Complete file contents"}


TOOL_DEFINITIONS: List[Dict[str, Any]] = [
    {
        "type": "custom",
        "name": "get_allowed_files",
        "description": "List the project files you are allowed to read for reference (existing animations, their tests and core library sources).",
        "input_schema": {"type": "object", "properties": {}},
    },
    {
        "type": "custom",
        "name": "read_file",
        "description": "Read one file returned by get_allowed_files. Any other path is refused.",
        "input_schema": {
            "type": "object",
            "properties": {
                "filepath": {"type": "string", "description": "Path relative to the project root"},
            },
            "required": ["filepath"],
        },
    },
    {
        "type": "custom",
        "name": "create_animation_file",
        "description": "Create the staged source file for a new animation class.",
        "input_schema": {
            "type": "object",
            "properties": {"className": _class_name_prop("animation"), "code": _CODE_PROP},
            "required": ["className", "code"],
        },
    },
    {
        "type": "custom",
        "name": "update_animation_file",
        "description": "Replace the staged source file of an animation class with new contents.",
        "input_schema": {
            "type": "object",
            "properties": {"className": _class_name_prop("animation"), "code": _CODE_PROP},
            "required": ["className", "code"],
        },
    },
    {
        "type": "custom",
        "name": "create_test_file",
        "description": "Create the staged Vitest test file for an animation class.",
        "input_schema": {
            "type": "object",
            "properties": {"className": _class_name_prop("animation under test"), "code": _CODE_PROP},
            "required": ["className", "code"],
        },
    },
    {
        "type": "custom",
        "name": "update_test_file",
        "description": "Replace the staged Vitest test file of an animation class with new contents.",
        "input_schema": {
            "type": "object",
            "properties": {"className": _class_name_prop("animation under test"), "code": _CODE_PROP},
            "required": ["className", "code"],
        },
    },
    {
        "type": "custom",
        "name": "run_tests",
        "description": "Run the staged test file for an animation class. Returns the runner output. A result starting with SYSTEM_ERROR: means the test environment is broken.",
        "input_schema": {
            "type": "object",
            "properties": {"className": _class_name_prop("animation")},
            "required": ["className"],
        },
    },
    {
        "type": "custom",
        "name": "publish_files",
        "description": "Publish the staged animation and test so the editor can load them. Call only after run_tests passed.",
        "input_schema": {
            "type": "object",
            "properties": {"className": _class_name_prop("animation")},
            "required": ["className"],
        },
    },
]

TOOL_NAMES = frozenset(t["name"] for t in TOOL_DEFINITIONS)
