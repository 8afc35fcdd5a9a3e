"""
Configuration module for Anim Codex.
Handles environment variables, model settings, and agent loop limits.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [p.strip() for p in raw.split(",") if p.strip()]


@dataclass
class AWSConfig:
    """AWS-specific configuration"""
    region: str = os.getenv("AWS_REGION", "us-east-1")
    access_key_id: str = os.getenv("AWS_ACCESS_KEY_ID", "")
    secret_access_key: str = os.getenv("AWS_SECRET_ACCESS_KEY", "")
    session_token: str = os.getenv("AWS_SESSION_TOKEN", "")
    profile_name: str = os.getenv("AWS_PROFILE", "")

    def has_explicit_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)

    def has_session_token(self) -> bool:
        return bool(self.session_token)

    def has_profile(self) -> bool:
        return bool(self.profile_name)


@dataclass
class ModelConfig:
    """Model-specific configuration"""
    model_id: str = os.getenv("BEDROCK_MODEL_ID", "us.anthropic.claude-sonnet-4-5-20250929-v1:0")
    max_tokens: int = int(os.getenv("MAX_TOKENS", "8192"))
    temperature: Optional[float] = float(os.getenv("TEMPERATURE", "")) if os.getenv("TEMPERATURE") else None
    top_p: Optional[float] = float(os.getenv("TOP_P", "")) if os.getenv("TOP_P") else None
    top_k: Optional[int] = int(os.getenv("TOP_K", "")) if os.getenv("TOP_K") else None


@dataclass
class AppConfig:
    """Application-specific configuration"""
    title: str = "Anim Codex"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    debug_mode: bool = os.getenv("DEBUG_MODE", "false").lower() == "true"
    project_root: str = os.path.abspath(os.getenv("PROJECT_ROOT", "."))
    # Per-session staging/final/log directories live here
    sessions_dir: str = os.path.abspath(
        os.getenv("SESSIONS_DIR", os.path.join(os.getenv("PROJECT_ROOT", "."), ".sessions"))
    )
    # gitwildmatch patterns (relative to project_root) the model may read
    allowed_read_patterns: List[str] = field(default_factory=lambda: _env_list(
        "ALLOWED_READ_PATTERNS",
        "src/animations/*.ts,tests/animations/*.test.ts,src/core/*.ts",
    ))
    # Artifact layout inside a session's staging and final areas
    source_dir: str = os.getenv("SOURCE_DIR", "src/animations")
    test_dir: str = os.getenv("TEST_DIR", "tests/animations")
    source_suffix: str = os.getenv("SOURCE_SUFFIX", ".ts")
    test_suffix: str = os.getenv("TEST_SUFFIX", ".test.ts")
    # Placeholders: {test_file}, {root}
    test_command: str = os.getenv("TEST_COMMAND", "pnpm -w vitest run {test_file} --root {root}")
    # Step loop
    max_steps: int = int(os.getenv("MAX_STEPS", "10"))
    incomplete_retry_limit: int = int(os.getenv("INCOMPLETE_RETRY_LIMIT", "1"))
    max_response_chars: int = int(os.getenv("MAX_RESPONSE_CHARS", "60000"))
    stream_deltas: bool = os.getenv("STREAM_DELTAS", "true").lower() == "true"
    # Tool retry/backoff
    max_tool_retries: int = int(os.getenv("MAX_TOOL_RETRIES", "2"))
    tool_retry_base_ms: int = int(os.getenv("TOOL_RETRY_BASE_MS", "500"))
    tool_retry_max_ms: int = int(os.getenv("TOOL_RETRY_MAX_MS", "4000"))
    # Stream recovery settings
    stream_max_retries: int = int(os.getenv("STREAM_MAX_RETRIES", "2"))
    stream_retry_backoff: float = float(os.getenv("STREAM_RETRY_BACKOFF", "1"))
    stream_retry_max_backoff: float = float(os.getenv("STREAM_RETRY_MAX_BACKOFF", "5"))
    # Connection timers (seconds)
    idle_timeout: float = float(os.getenv("IDLE_TIMEOUT", "120"))
    keepalive_interval: float = float(os.getenv("KEEPALIVE_INTERVAL", "15"))
    heartbeat_interval: float = float(os.getenv("HEARTBEAT_INTERVAL", "5"))


# Create global config instances
aws_config = AWSConfig()
model_config = ModelConfig()
app_config = AppConfig()


def get_credentials_info() -> str:
    if aws_config.has_profile():
        return f"Using AWS profile: {aws_config.profile_name}"
    elif aws_config.has_explicit_credentials():
        if aws_config.has_session_token():
            return "Using temporary credentials (with session token)"
        return "Using explicit credentials"
    return "Using default AWS credential chain"
