import asyncio

import pytest

from vod_squirrel.core.cancellation import CancellationBroadcaster
from vod_squirrel.exceptions import OperationCancelled


def test_cancel_is_idempotent_and_permanent():
    cancellation = CancellationBroadcaster()
    assert not cancellation.is_cancelled()

    cancellation.cancel()
    cancellation.cancel()

    assert cancellation.is_cancelled()


def test_guard_returns_the_result_when_not_cancelled():
    cancellation = CancellationBroadcaster()

    async def work():
        await asyncio.sleep(0.01)
        return "done"

    assert asyncio.run(cancellation.guard(work())) == "done"


def test_guard_raises_and_cancels_work_when_cancelled():
    cancellation = CancellationBroadcaster()
    state = {"finished": False, "cancelled": False}

    async def work():
        try:
            await asyncio.sleep(10)
            state["finished"] = True
        except asyncio.CancelledError:
            state["cancelled"] = True
            raise

    async def run():
        asyncio.get_running_loop().call_later(0.02, cancellation.cancel)
        await cancellation.guard(work())

    with pytest.raises(OperationCancelled):
        asyncio.run(run())

    assert state == {"finished": False, "cancelled": True}


def test_guard_on_already_cancelled_broadcaster_never_runs_work():
    cancellation = CancellationBroadcaster()
    cancellation.cancel()
    calls = []

    async def work():
        calls.append(1)

    with pytest.raises(OperationCancelled):
        asyncio.run(cancellation.guard(work()))

    assert calls == []


def test_wait_wakes_every_waiter():
    cancellation = CancellationBroadcaster()

    async def run():
        waiters = [asyncio.create_task(cancellation.wait()) for _ in range(3)]
        await asyncio.sleep(0)
        cancellation.cancel()
        await asyncio.wait_for(asyncio.gather(*waiters), 1)
        return all(w.done() for w in waiters)

    assert asyncio.run(run())


def test_sleep_is_interrupted_by_cancellation():
    cancellation = CancellationBroadcaster()

    async def run():
        asyncio.get_running_loop().call_later(0.02, cancellation.cancel)
        start = asyncio.get_running_loop().time()
        with pytest.raises(OperationCancelled):
            await cancellation.sleep(5)
        return asyncio.get_running_loop().time() - start

    assert asyncio.run(run()) < 1
