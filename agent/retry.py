"""
Error transience classification and retry helpers.

Two classifiers share one vocabulary: the network classifier decides whether
opening a model stream is worth another attempt, and the broader tool
classifier adds the filesystem races a tool can hit (busy, missing or
locked files).
"""

import asyncio
import logging
import re
import socket
from typing import Any, Awaitable, Callable, Optional, TypeVar

from botocore.exceptions import (
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NETWORK_PATTERN = re.compile(
    r"timeout|timed out|etimedout|econnreset|econnrefused|connection reset|reset by peer"
    r"|connection aborted|broken pipe|enotfound|eai_again|getaddrinfo"
    r"|name or service not known|temporary failure in name resolution|name resolution"
    r"|fetch failed|throttl|too many requests|service ?unavailable|serviceunav",
    re.IGNORECASE,
)

_FILESYSTEM_PATTERN = re.compile(
    r"ebusy|resource busy|enoent|no such file|not found|eacces|eperm|permission denied",
    re.IGNORECASE,
)

_NETWORK_ERROR_TYPES = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    socket.gaierror,
    EndpointConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
    ConnectionClosedError,
)

_FILESYSTEM_ERROR_TYPES = (
    FileNotFoundError,
    PermissionError,
    BlockingIOError,
)


def is_transient_network_error(exc: BaseException) -> bool:
    """True for connection resets, DNS failures, timeouts and throttling."""
    if getattr(exc, "retryable", False):
        return True
    if isinstance(exc, _NETWORK_ERROR_TYPES):
        return True
    return bool(_NETWORK_PATTERN.search(str(exc)))


def is_transient_tool_error(exc: BaseException) -> bool:
    """Network transience plus file busy/not-found/permission races."""
    if getattr(exc, "transient", None) is False:
        return False
    if is_transient_network_error(exc):
        return True
    if isinstance(exc, _FILESYSTEM_ERROR_TYPES):
        return True
    return bool(_FILESYSTEM_PATTERN.search(str(exc)))


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Exponential backoff: base * 2**attempt, capped. ``attempt`` is 0-based."""
    return min(base * (2 ** attempt), cap)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int,
    base_delay: float,
    max_delay: float,
    is_retryable: Callable[[BaseException], bool],
    on_retry: Optional[Callable[[int, BaseException, float], Awaitable[Any]]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run ``operation`` with up to ``max_retries`` extra attempts.

    Only errors accepted by ``is_retryable`` are retried; anything else, or
    the last retryable error once the budget is spent, propagates.
    ``on_retry(attempt, exc, delay)`` is awaited before each backoff sleep,
    with ``attempt`` the 1-based number of the attempt that failed.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if attempt >= max_retries or not is_retryable(exc):
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            attempt += 1
            if on_retry is not None:
                await on_retry(attempt, exc, delay)
            await sleep(delay)
