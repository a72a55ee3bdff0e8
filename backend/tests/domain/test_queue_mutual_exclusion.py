"""Test single-slot mutual exclusion under concurrent pollers."""

import asyncio

import pytest

from remix_queue.queue.controller import AdmissionController
from remix_queue.queue.store import JobStore

pytestmark = pytest.mark.unit


@pytest.mark.asyncio
async def test_concurrent_polls_admit_exactly_one(controller, clock, count_running):
    """Many simultaneous polls on an idle queue admit only the head."""
    ids = [(await controller.enqueue("s", "t", now=clock(i))).queue_id for i in range(8)]

    results = await asyncio.gather(*(controller.poll_status(q, now=clock(20)) for q in ids))

    admitted = [q for q, r in zip(ids, results) if r.can_start]
    assert admitted == [ids[0]]
    assert await count_running() == 1


@pytest.mark.asyncio
async def test_concurrent_polls_from_separate_controllers(session_factory, clock, count_running):
    """Independent controllers sharing one store never admit two jobs."""
    seed = AdmissionController(session_factory)
    ids = [(await seed.enqueue("s", "t", now=clock(i))).queue_id for i in range(6)]
    controllers = [AdmissionController(session_factory, store=JobStore()) for _ in ids]

    for round_no in range(3):
        results = await asyncio.gather(
            *(c.poll_status(q, now=clock(30 + round_no)) for c, q in zip(controllers, ids))
        )
        assert sum(r.can_start for r in results) <= 1
        assert await count_running() <= 1


@pytest.mark.asyncio
async def test_slot_handoff_under_contention(controller, clock, count_running):
    """Each finish hands the slot to exactly the next job in FIFO order."""
    ids = [(await controller.enqueue("s", "t", now=clock(i))).queue_id for i in range(5)]
    admitted = []

    for step in range(len(ids)):
        now = clock(100 + step)
        results = await asyncio.gather(*(controller.poll_status(q, now=now) for q in ids))
        holders = [q for q, r in zip(ids, results) if r.can_start]
        assert len(holders) == 1
        assert await count_running() == 1
        admitted.append(holders[0])
        await controller.mark_done(holders[0], now=now)

    assert admitted == ids


@pytest.mark.asyncio
async def test_running_count_never_exceeds_one_while_polling(controller, clock, count_running):
    """A concurrent sampler never observes two running jobs during handoffs."""
    ids = [(await controller.enqueue("s", "t", now=clock(i))).queue_id for i in range(6)]
    observed = []
    stop = asyncio.Event()

    async def sample():
        while not stop.is_set():
            observed.append(await count_running())
            await asyncio.sleep(0)

    sampler = asyncio.create_task(sample())
    try:
        for step in range(len(ids)):
            now = clock(200 + step)
            results = await asyncio.gather(*(controller.poll_status(q, now=now) for q in ids))
            for queue_id, result in zip(ids, results):
                if result.can_start:
                    await controller.mark_done(queue_id, now=now)
    finally:
        stop.set()
        await sampler

    assert observed
    assert max(observed) <= 1
