#!/usr/bin/env python3
"""Tests for the gateway flow-control patterns.

Tests cover:
    - Radio message estimate for PUT bodies
    - Write throttle ordering and hold times
    - Pending writes merged while the throttle is closed
    - Fixed-delay retry of transient gateway failures
"""
import asyncio
import sys
from unittest.mock import AsyncMock, patch

import pytest

sys.path.insert(0, str(__file__).rsplit("/tests", 1)[0])
from src.deconz.api.exceptions import (
    ConnectionError,
    GatewayApiError,
    GatewayLockedError,
    GatewayOverloadError,
    NotFoundError,
    ServiceUnavailableError,
)
from src.deconz.api.resilience import (
    PendingWrite,
    WriteThrottle,
    count_radio_messages,
    is_retryable,
    retry_fixed,
)


# ============================================
# Radio Message Estimate
# ============================================

class TestCountRadioMessages:
    """Test the number of radio messages per PUT body."""

    @pytest.mark.parametrize(
        "body,expected",
        [
            (None, 1),
            ({}, 1),
            ({"on": True}, 1),
            ({"on": True, "bri": 10}, 2),
            ({"bri": 10, "bri_inc": 5}, 1),
            ({"on": True, "bri": 10, "ct": 300}, 3),
            ({"xy": [0.1, 0.2], "hue": 100, "sat": 20}, 1),
            ({"alert": "select", "transitiontime": 4}, 1),
        ],
    )
    def test_count(self, body, expected):
        assert count_radio_messages(body) == expected


# ============================================
# Write Throttle
# ============================================

class TestWriteThrottle:
    """Test spacing of writes."""

    @pytest.mark.asyncio
    async def test_first_write_passes_immediately(self):
        throttle = WriteThrottle()
        loop = asyncio.get_running_loop()

        start = loop.time()
        await throttle.acquire(0.05)

        assert loop.time() - start < 0.05
        assert throttle.writes == 1
        assert not throttle.is_open

    @pytest.mark.asyncio
    async def test_second_write_waits_for_hold(self):
        throttle = WriteThrottle()
        loop = asyncio.get_running_loop()

        start = loop.time()
        await throttle.acquire(0.1)
        await throttle.acquire(0)

        assert loop.time() - start >= 0.09
        assert throttle.writes == 2
        assert throttle.is_open

    @pytest.mark.asyncio
    async def test_writes_pass_in_arrival_order(self):
        throttle = WriteThrottle()
        order = []

        async def write(name):
            await throttle.acquire(0.02)
            order.append(name)

        tasks = [asyncio.create_task(write(name)) for name in ("a", "b", "c", "d")]
        await asyncio.gather(*tasks)

        assert order == ["a", "b", "c", "d"]
        assert throttle.writes == 4

    @pytest.mark.asyncio
    async def test_negative_hold_is_ignored(self):
        throttle = WriteThrottle()

        await throttle.acquire(-5)

        assert throttle.is_open

    @pytest.mark.asyncio
    async def test_callable_hold_is_evaluated_when_gate_opens(self):
        throttle = WriteThrottle()
        body = {"on": True}
        await throttle.acquire(0.02)

        waiter = asyncio.create_task(throttle.acquire(lambda: count_radio_messages(body) * 0.05))
        await asyncio.sleep(0)
        body["bri"] = 10
        await waiter

        loop = asyncio.get_running_loop()
        assert throttle._open_at - loop.time() > 0.05


class TestPendingWrite:
    """Test merging of attribute changes for one resource."""

    @pytest.mark.asyncio
    async def test_merge_and_resolve(self):
        pending = PendingWrite("/lights/1/state", {"on": True})
        pending.merge({"bri": 100, "on": False})

        waiter = asyncio.create_task(pending.wait())
        pending.resolve("response")

        assert await waiter == "response"
        assert pending.body == {"on": False, "bri": 100}
        assert pending.merged == 2

    @pytest.mark.asyncio
    async def test_fail(self):
        pending = PendingWrite("/lights/1/state", {"on": True})
        pending.fail(NotFoundError("gone"))

        with pytest.raises(NotFoundError):
            await pending.wait()

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_write(self):
        pending = PendingWrite("/lights/1/state", {"on": True})
        waiter = asyncio.create_task(pending.wait())
        await asyncio.sleep(0)

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        pending.resolve("response")

        assert await pending.wait() == "response"


# ============================================
# Retry with Fixed Delay
# ============================================

class TestIsRetryable:
    """Test which errors are transient."""

    def test_connection_reset(self):
        assert is_retryable(ConnectionError("reset", reset=True))

    def test_connection_refused(self):
        assert not is_retryable(ConnectionError("refused"))

    def test_service_unavailable(self):
        assert is_retryable(ServiceUnavailableError())

    def test_gateway_overload(self):
        assert is_retryable(GatewayOverloadError())

    @pytest.mark.parametrize(
        "error",
        [NotFoundError(), GatewayLockedError(), GatewayApiError(3), ValueError("x")],
    )
    def test_permanent_errors(self, error):
        assert not is_retryable(error)


class TestRetryFixed:
    """Test the retry loop."""

    @pytest.mark.asyncio
    async def test_success_first_try(self):
        func = AsyncMock(return_value="ok")

        with patch("asyncio.sleep", new=AsyncMock()) as mock_sleep:
            result = await retry_fixed(func, "a", key="b")

        assert result == "ok"
        func.assert_awaited_once_with("a", key="b")
        mock_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self):
        func = AsyncMock(side_effect=[ServiceUnavailableError(), GatewayOverloadError(), "ok"])
        on_retry = AsyncMock()

        with patch("asyncio.sleep", new=AsyncMock()) as mock_sleep:
            result = await retry_fixed(func, delay=0.3, on_retry=on_retry)

        assert result == "ok"
        assert func.await_count == 3
        assert mock_sleep.await_count == 2
        mock_sleep.assert_awaited_with(0.3)
        assert [call.args[1] for call in on_retry.await_args_list] == [1, 2]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        func = AsyncMock(side_effect=ServiceUnavailableError())

        with patch("asyncio.sleep", new=AsyncMock()):
            with pytest.raises(ServiceUnavailableError):
                await retry_fixed(func, max_retries=3)

        assert func.await_count == 4

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self):
        func = AsyncMock(side_effect=NotFoundError())

        with pytest.raises(NotFoundError):
            await retry_fixed(func)

        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_zero_delay_disables_retry(self):
        func = AsyncMock(side_effect=ServiceUnavailableError())

        with pytest.raises(ServiceUnavailableError):
            await retry_fixed(func, delay=0)

        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_custom_predicate(self):
        func = AsyncMock(side_effect=[ValueError("flaky"), "ok"])

        with patch("asyncio.sleep", new=AsyncMock()):
            result = await retry_fixed(
                func, should_retry=lambda e: isinstance(e, ValueError)
            )

        assert result == "ok"
