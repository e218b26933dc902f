#!/usr/bin/env python3
"""Resilience Patterns for the deCONZ REST client.

This module provides the flow-control mechanisms the gateway needs:
    - Retry with a fixed delay for transient gateway failures
    - A write throttle that spaces PUT requests so the Zigbee radio is
      not flooded
    - Pending writes that merge changes to one resource while the
      throttle is closed

The gateway forwards every PUT as one or more Zigbee messages. Sending
them back to back makes the coordinator drop frames, so each write holds
a gate for ``messages * delay`` before the next write may go out.

Example:
    throttle = WriteThrottle()
    await throttle.acquire(count_radio_messages(body) * 0.05)
    response = await client.request("PUT", path, body)

    result = await retry_fixed(
        send, max_retries=5, delay=0.3,
        on_retry=lambda error, attempt: logger.warning(error),
    )

Author: deCONZ Sync Team
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from .exceptions import (
    ConnectionError,
    GatewayOverloadError,
    ServiceUnavailableError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================
# Radio Message Estimate
# ============================================

# Attribute groups that the gateway sends as one Zigbee command each
_MESSAGE_GROUPS = (
    frozenset({"on"}),
    frozenset({"bri", "bri_inc"}),
    frozenset({"xy", "ct", "hue", "sat", "effect"}),
)


def count_radio_messages(body: Optional[dict[str, Any]]) -> int:
    """Estimate how many radio messages a PUT body turns into.

    Each attribute group present in the body counts once. Bodies with no
    recognised attribute still cost one message.
    """
    if not body:
        return 1
    keys = set(body)
    count = sum(1 for group in _MESSAGE_GROUPS if keys & group)
    return max(count, 1)


# ============================================
# Write Throttle
# ============================================

class WriteThrottle:
    """Gate that spaces writes in arrival order.

    ``acquire(hold)`` waits until the gate is open, then keeps it closed
    for ``hold`` seconds. Waiters are served first-in, first-out because
    asyncio.Lock wakes them in the order they blocked.

    One throttle is shared by every write of a client, so writes to
    different resources are serialized too.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._open_at = 0.0
        self._writes = 0

    @property
    def writes(self) -> int:
        """Number of writes that passed the gate."""
        return self._writes

    @property
    def is_open(self) -> bool:
        return asyncio.get_running_loop().time() >= self._open_at and not self._lock.locked()

    async def acquire(self, hold: Union[float, Callable[[], float]]) -> None:
        """Wait for the gate, then close it for ``hold`` seconds.

        ``hold`` may be a callable; it is evaluated once the gate opens,
        for writes whose size is only known at that point.
        """
        async with self._lock:
            loop = asyncio.get_running_loop()
            wait = self._open_at - loop.time()
            if wait > 0:
                logger.debug(f"Write throttle closed, waiting {wait:.3f}s")
                await asyncio.sleep(wait)
            if callable(hold):
                hold = hold()
            self._open_at = loop.time() + max(hold, 0.0)
            self._writes += 1


# ============================================
# Pending Write
# ============================================

class PendingWrite:
    """Attribute changes for one resource, merged while the throttle is closed.

    The first caller owns the write and sends the merged body once the
    gate opens; later callers merge into it and wait for the same response.
    """

    def __init__(self, path: str, body: dict[str, Any]):
        self.path = path
        self.body = dict(body)
        self.merged = 1
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()

    def merge(self, body: dict[str, Any]) -> None:
        self.body.update(body)
        self.merged += 1

    async def wait(self) -> Any:
        return await asyncio.shield(self._future)

    def resolve(self, result: Any) -> None:
        if not self._future.done():
            self._future.set_result(result)

    def fail(self, error: BaseException) -> None:
        if not self._future.done():
            self._future.set_exception(error)
            # The owner re-raises the error itself; merged callers may not exist
            self._future.exception()


# ============================================
# Retry with Fixed Delay
# ============================================

def is_retryable(error: Exception) -> bool:
    """Connection resets, HTTP 503 and gateway error 901 are transient."""
    if isinstance(error, ConnectionError):
        return error.reset
    return isinstance(error, (ServiceUnavailableError, GatewayOverloadError))


async def retry_fixed(
    func: Callable[..., Awaitable[T]],
    *args,
    max_retries: int = 5,
    delay: float = 0.3,
    should_retry: Callable[[Exception], bool] = is_retryable,
    on_retry: Optional[Callable[[Exception, int], Awaitable[None]]] = None,
    **kwargs,
) -> T:
    """Retry an async call with a fixed delay between attempts.

    Args:
        func: Async function to call
        *args: Arguments to pass to func
        max_retries: Retries after the first attempt
        delay: Seconds between attempts; 0 disables retrying
        should_retry: Predicate deciding whether an error is transient
        on_retry: Awaited with (error, retry number) before each retry
        **kwargs: Keyword arguments to pass to func

    Returns:
        Result from func
    """
    retries = 0
    while True:
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if delay <= 0 or retries >= max_retries or not should_retry(e):
                raise
            retries += 1
            logger.warning(
                f"Retry {retries}/{max_retries}: {e}. Waiting {delay:.3f}s"
            )
            if on_retry is not None:
                await on_retry(e, retries)
            await asyncio.sleep(delay)


__all__ = [
    "PendingWrite",
    "WriteThrottle",
    "count_radio_messages",
    "is_retryable",
    "retry_fixed",
]
