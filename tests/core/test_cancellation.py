import asyncio

import pytest

from llm_service.core.cancellation import CancellationToken
from llm_service.core.errors import RequestCancelledError


def test_callbacks_run_once() -> None:
    token = CancellationToken()
    calls: list[str] = []
    token.add_callback(lambda: calls.append("a"))

    token.cancel("first")
    token.cancel("second")

    assert calls == ["a"]
    assert token.reason == "first"


def test_late_callback_runs_immediately() -> None:
    token = CancellationToken()
    token.cancel()
    calls: list[int] = []
    token.add_callback(lambda: calls.append(1))
    assert calls == [1]


def test_removed_callback_does_not_run() -> None:
    token = CancellationToken()
    calls: list[int] = []
    remove = token.add_callback(lambda: calls.append(1))
    remove()
    token.cancel()
    assert calls == []


def test_raise_if_cancelled() -> None:
    token = CancellationToken()
    token.raise_if_cancelled()
    token.cancel("user stopped")
    with pytest.raises(RequestCancelledError, match="user stopped"):
        token.raise_if_cancelled()


def test_sleep_is_interrupted() -> None:
    async def run() -> None:
        token = CancellationToken()
        loop = asyncio.get_running_loop()
        loop.call_later(0.01, token.cancel)
        started = loop.time()
        with pytest.raises(RequestCancelledError):
            await token.sleep(5)
        assert loop.time() - started < 1

    asyncio.run(run())


def test_sleep_completes_when_not_cancelled() -> None:
    async def run() -> None:
        token = CancellationToken()
        await token.sleep(0.01)
        assert not token.cancelled

    asyncio.run(run())
