"""Tests for cooperative cancellation."""

import asyncio

import pytest

from utils.cancellation import CancellationToken, CancelledRun, run_cancellable


class TestCancellationToken:

    def test_cancel_once(self):
        token = CancellationToken()
        assert token.cancelled is False
        assert token.cancel("first") is True
        assert token.cancel("second") is False
        assert token.reason == "first"

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel("stop now")
        with pytest.raises(CancelledRun) as exc_info:
            token.raise_if_cancelled()
        assert exc_info.value.reason == "stop now"


class TestRunCancellable:

    @pytest.mark.asyncio
    async def test_returns_result(self):
        async def work():
            return 42

        assert await run_cancellable(work(), CancellationToken()) == 42
        assert await run_cancellable(work(), None) == 42

    @pytest.mark.asyncio
    async def test_token_interrupts_wait(self):
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.05, token.cancel, "halted")

        with pytest.raises(CancelledRun, match="halted"):
            await run_cancellable(asyncio.sleep(30), token)

    @pytest.mark.asyncio
    async def test_already_cancelled_token(self):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(CancelledRun):
            await run_cancellable(asyncio.sleep(30), token)
