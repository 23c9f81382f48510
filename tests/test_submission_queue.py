"""Tests for per-identity submission serialization."""

import asyncio

from blockvault.services.submission_queue import SubmissionQueue


async def _submit(queue, identity, log, name, delay=0.01):
    async with queue.slot(identity):
        log.append(f"{name}:start")
        await asyncio.sleep(delay)
        log.append(f"{name}:end")


def test_same_identity_runs_one_at_a_time():
    queue = SubmissionQueue()
    log = []

    async def scenario():
        await asyncio.gather(
            _submit(queue, "0xabc", log, "a"),
            _submit(queue, "0xABC", log, "b"),
            _submit(queue, "0xabc", log, "c"),
        )

    asyncio.run(scenario())

    assert log == ["a:start", "a:end", "b:start", "b:end", "c:start", "c:end"]


def test_different_identities_overlap():
    queue = SubmissionQueue()
    log = []

    async def scenario():
        await asyncio.gather(
            _submit(queue, "0xaaa", log, "a"),
            _submit(queue, "0xbbb", log, "b"),
        )

    asyncio.run(scenario())

    assert log[:2] == ["a:start", "b:start"]


def test_slot_released_after_failure():
    queue = SubmissionQueue()

    async def failing():
        async with queue.slot("0xabc"):
            raise RuntimeError("boom")

    async def scenario():
        try:
            await failing()
        except RuntimeError:
            pass
        assert queue.queued("0xabc") == 0
        async with queue.slot("0xabc"):
            assert queue.queued("0xabc") == 1

    asyncio.run(scenario())
