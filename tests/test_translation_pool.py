import asyncio

import pytest

from feedai.exceptions import RequestCancelled
from feedai.services.cancellation import CancellationScope
from feedai.services.translation_pool import RequestGate, get_request_gate


@pytest.mark.asyncio
async def test_active_never_exceeds_limit():
    gate = RequestGate(2)
    peak = 0

    async def request():
        nonlocal peak
        async with gate.slot():
            peak = max(peak, gate.active)
            await asyncio.sleep(0.01)

    await asyncio.gather(*(request() for _ in range(6)))

    assert peak == 2
    assert gate.active == 0
    assert gate.waiting == 0


@pytest.mark.asyncio
async def test_waiters_are_admitted_in_fifo_order():
    gate = RequestGate(1)
    order = []

    async def request(name):
        async with gate.slot():
            order.append(name)
            await asyncio.sleep(0)

    await gate.acquire()
    tasks = []
    for name in "ABC":
        tasks.append(asyncio.create_task(request(name)))
        await asyncio.sleep(0)
    assert gate.waiting == 3

    gate.release()
    await asyncio.gather(*tasks)

    assert order == ["A", "B", "C"]
    assert gate.active == 0


@pytest.mark.asyncio
async def test_release_hands_slot_to_waiter_without_decrementing():
    gate = RequestGate(1)
    await gate.acquire()
    waiter = asyncio.create_task(gate.acquire())
    await asyncio.sleep(0)

    gate.release()

    assert gate.active == 1
    await waiter
    assert gate.active == 1
    gate.release()
    assert gate.active == 0


@pytest.mark.asyncio
async def test_scope_cancel_while_queued_charges_no_slot():
    gate = RequestGate(1)
    await gate.acquire()
    scope = CancellationScope()
    waiter = asyncio.create_task(gate.acquire(scope))
    await asyncio.sleep(0)
    assert gate.waiting == 1

    scope.cancel("navigated away")

    with pytest.raises(RequestCancelled):
        await waiter
    assert gate.waiting == 0
    gate.release()
    assert gate.active == 0


@pytest.mark.asyncio
async def test_task_cancel_while_queued_charges_no_slot():
    gate = RequestGate(1)
    await gate.acquire()
    waiter = asyncio.create_task(gate.acquire())
    await asyncio.sleep(0)

    waiter.cancel()

    with pytest.raises(asyncio.CancelledError):
        await waiter
    gate.release()
    assert gate.active == 0
    assert gate.waiting == 0


@pytest.mark.asyncio
async def test_cancelled_scope_is_rejected_before_queueing():
    gate = RequestGate(1)
    scope = CancellationScope()
    scope.cancel()

    with pytest.raises(RequestCancelled):
        await gate.acquire(scope)
    assert gate.active == 0


@pytest.mark.asyncio
async def test_cancelled_in_flight_request_frees_slot_for_next_waiter():
    gate = RequestGate(2)
    started = []
    finish = {name: asyncio.Event() for name in "ABC"}
    scopes = {name: CancellationScope() for name in "ABC"}

    async def request(name):
        scope = scopes[name]
        async with gate.slot(scope):
            started.append(name)
            await scope.guard(finish[name].wait())

    a = asyncio.create_task(request("A"))
    b = asyncio.create_task(request("B"))
    c = asyncio.create_task(request("C"))
    await asyncio.sleep(0)
    assert started == ["A", "B"]
    assert gate.active == 2
    assert gate.waiting == 1

    scopes["A"].cancel("navigated away")
    with pytest.raises(RequestCancelled):
        await a
    await asyncio.sleep(0)
    assert started == ["A", "B", "C"]
    assert gate.active == 2

    finish["B"].set()
    await b
    assert gate.active == 1
    finish["C"].set()
    await c
    assert gate.active == 0


@pytest.mark.asyncio
async def test_release_without_acquire_raises():
    gate = RequestGate(1)

    with pytest.raises(RuntimeError):
        gate.release()


def test_limit_must_be_positive():
    with pytest.raises(ValueError):
        RequestGate(0)


def test_shared_gate_is_sized_from_settings():
    gate = get_request_gate()

    assert gate is get_request_gate()
    assert gate.limit == 5
