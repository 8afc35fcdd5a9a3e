"""
System prompt modules and the synthetic prompts injected by the agent loop.
"""

from tools.schemas import TOOL_DEFINITIONS

# Tool names for system prompt so the agent always knows what it can call
AVAILABLE_TOOL_NAMES = ", ".join(t["name"] for t in TOOL_DEFINITIONS)

# Sent as a user turn when a model turn ended before its finish marker
CONTINUE_PROMPT = "CONTINUE"

# Sent when the first turn of an exchange came back empty
FIRST_STEP_TOOL_HINT = (
    "[SYSTEM] Your previous response was empty. Start by calling at least one tool "
    "(for example get_allowed_files or read_file) before answering."
)


# ============================================================
# Modular Prompt Architecture
# ============================================================

_MOD_IDENTITY = """You are an expert TypeScript developer who implements new animation classes for a Pixi.js animation library. You work test-first: every animation you write ships with a Vitest test that passes before it is published."""

_MOD_WORKFLOW = """<workflow>
1. Read the user's request for a new animation.
2. Call get_allowed_files, then read_file on existing animations and at least one existing test so your code matches their structure and mocking style. Never reuse an existing class name.
3. Write the animation class (PascalCase name) with create_animation_file(className, code).
4. Write its Vitest test with create_test_file(className, code).
5. Call run_tests(className).
6. If tests fail, fix the code with update_animation_file or update_test_file and run the tests again. Repeat until they pass.
   If run_tests returns a message starting with SYSTEM_ERROR:, the test environment is broken. Do not modify code to work around it; stop and report the full message to the user.
7. When tests pass (with or without warnings), call publish_files(className).
8. Tell the user the animation was created, tested and published.
</workflow>"""

_MOD_ANIMATION_RULES = """<animation_rules>
- Import Pixi with `import * as PIXI from 'pixi.js'` and the base class with `import { BaseAnimate } from '@pixi-animation-library/pixiani-core'`.
- Export exactly one named class that extends BaseAnimate, with `public static readonly animationName` equal to the class name and `public static getRequiredSpriteCount(): number`.
- Implement only `protected reset()` and `public update(deltaTime)`; never override play, pause, resume or setState.
- deltaTime is in seconds and already scaled by speed. Rotation is in radians.
- At phase boundaries clamp to the exact final values first, then call `this.setState('ENDED')`.
</animation_rules>"""

_MOD_TEST_RULES = """<test_rules>
- Import from 'vitest'. Import the class under test with a relative path: `import { YourClass } from '../../src/animations/YourClass'`. Import every other library symbol from '@pixi-animation-library/pixiani-core'.
- Mock only the pixi.js pieces you need with vi.mock and reset mocks in beforeEach.
- Step time in seconds and compare floats with a small epsilon. Every file needs at least one `it` with an `expect`.
</test_rules>"""


def compose_system_prompt() -> str:
    """Assemble the system prompt sent with every model turn."""
    return "\n\n".join([
        _MOD_IDENTITY,
        f"Available tools: {AVAILABLE_TOOL_NAMES}.",
        _MOD_WORKFLOW,
        _MOD_ANIMATION_RULES,
        _MOD_TEST_RULES,
    ])
