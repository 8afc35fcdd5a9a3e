import errno
import socket

import pytest
from botocore.exceptions import EndpointConnectionError

from agent.retry import backoff_delay, is_transient_network_error, is_transient_tool_error, retry_async
from bedrock_service import BedrockError
from tools._common import PublishError, ToolArgumentError


def test_backoff_doubles_and_caps():
    assert [backoff_delay(i, 0.5, 4.0) for i in range(5)] == [0.5, 1.0, 2.0, 4.0, 4.0]


@pytest.mark.parametrize("exc", [
    ConnectionResetError("reset"),
    TimeoutError(),
    socket.gaierror(-3, "Temporary failure in name resolution"),
    EndpointConnectionError(endpoint_url="https://bedrock-runtime.us-east-1.amazonaws.com"),
    BedrockError("Bedrock API error (ThrottlingException): slow down", retryable=True),
    RuntimeError("TypeError: fetch failed"),
    RuntimeError("getaddrinfo ENOTFOUND example.com"),
])
def test_network_transient(exc):
    assert is_transient_network_error(exc)


@pytest.mark.parametrize("exc", [
    BedrockError("Bedrock API error (ValidationException): bad request"),
    ValueError("malformed"),
    KeyError("x"),
])
def test_network_fatal(exc):
    assert not is_transient_network_error(exc)


def test_tool_classifier_adds_filesystem_races():
    assert is_transient_tool_error(FileNotFoundError(errno.ENOENT, "No such file or directory", "a.ts"))
    assert is_transient_tool_error(OSError("EBUSY: resource busy or locked"))
    assert is_transient_tool_error(PermissionError("permission denied"))
    assert not is_transient_network_error(OSError("EBUSY: resource busy or locked"))


def test_tool_classifier_respects_non_transient_errors():
    assert not is_transient_tool_error(ToolArgumentError("Missing required argument: className"))
    assert not is_transient_tool_error(PublishError("Source file missing for X (no staged or published copy)"))
    assert not is_transient_tool_error(ValueError("unexpected token"))


@pytest.mark.asyncio
async def test_retry_async_retries_transient_then_succeeds():
    attempts = []
    delays = []

    async def op():
        attempts.append(1)
        if len(attempts) < 3:
            raise ConnectionResetError("connection reset by peer")
        return "ok"

    async def fake_sleep(d):
        delays.append(d)

    result = await retry_async(op, max_retries=2, base_delay=0.5, max_delay=4.0,
                               is_retryable=is_transient_network_error, sleep=fake_sleep)
    assert result == "ok"
    assert len(attempts) == 3
    assert delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_retry_async_does_not_retry_fatal():
    attempts = []

    async def op():
        attempts.append(1)
        raise ValueError("bad")

    async def fake_sleep(d):
        raise AssertionError("should not sleep")

    with pytest.raises(ValueError):
        await retry_async(op, max_retries=3, base_delay=0.1, max_delay=1.0,
                          is_retryable=is_transient_network_error, sleep=fake_sleep)
    assert len(attempts) == 1


@pytest.mark.asyncio
async def test_retry_async_gives_up_after_budget():
    seen = []

    async def op():
        raise TimeoutError("timed out")

    async def on_retry(attempt, exc, delay):
        seen.append(attempt)

    async def fake_sleep(d):
        pass

    with pytest.raises(TimeoutError):
        await retry_async(op, max_retries=2, base_delay=0.1, max_delay=1.0,
                          is_retryable=is_transient_network_error, on_retry=on_retry, sleep=fake_sleep)
    assert seen == [1, 2]
