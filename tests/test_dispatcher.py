import asyncio
import random
from unittest.mock import MagicMock

import pytest

from hyperdrive.dispatcher import Dispatcher, is_sequence_conflict
from hyperdrive.endpoint_pool import EndpointPool
from hyperdrive.models import SubmissionStatus
from hyperdrive.sequence import SequenceAllocator
from hyperdrive.sizing import SizeGenerator
from hyperdrive.target_store import TargetStore
from conftest import FakeHandle, make_profile

TEST_KEY = "0x" + "11" * 32
TEST_EXECUTOR = "0x" + "ab" * 20


async def build(logger, handles, start=10, profile=None, audit=None, **kwargs):
    profile = profile or make_profile(rpcs=tuple(h.url for h in handles) or ("http://none",))
    store = TargetStore()
    dispatcher = Dispatcher(store, SizeGenerator(random.Random(7)), logger, audit_log=audit, **kwargs)
    for h in handles:
        h.sequence = start
    pool = EndpointPool(profile.name, list(handles))
    allocator = SequenceAllocator(profile.name, logger)
    await allocator.bootstrap(pool)
    rt = dispatcher.register(profile, pool, allocator)
    return dispatcher, rt, store


@pytest.mark.asyncio
async def test_round_robin_with_sequential_nonces(logger):
    handles = [FakeHandle(f"http://rpc-{i}") for i in range(3)]
    dispatcher, rt, _ = await build(logger, handles, start=10)

    for _ in range(4):
        assert await dispatcher.fire("BASE") is True
    await dispatcher.drain()

    assert [c["nonce"] for c in handles[0].calls] == [10, 13]
    assert [c["nonce"] for c in handles[1].calls] == [11]
    assert [c["nonce"] for c in handles[2].calls] == [12]
    assert rt.stats.fired == 4
    assert rt.stats.sent == 4
    assert rt.allocator.next_sequence == 14
    await dispatcher.shutdown()


@pytest.mark.asyncio
async def test_submission_parameters(logger):
    handle = FakeHandle("http://rpc-0")
    dispatcher, rt, store = await build(logger, [handle], start=0)
    store.update("pepe", 0.9)

    await dispatcher.fire("BASE")
    await dispatcher.drain()

    call = handle.calls[0]
    assert call["path"] == ("ETH", "PEPE", "ETH")
    assert call["gas"] == 500000
    assert call["max_fee_wei"] == 300 * 10**9
    assert call["priority_fee_wei"] == 10**7
    assert call["value"] == 0
    assert 4000 * 10**13 <= call["amount"] <= 80000 * 10**13
    await dispatcher.shutdown()


@pytest.mark.asyncio
async def test_fire_returns_before_completion(logger):
    handle = FakeHandle("http://rpc-0")
    handle.gate = asyncio.Event()
    dispatcher, rt, _ = await build(logger, [handle], start=0)

    assert await dispatcher.fire("BASE") is True
    assert await dispatcher.fire("BASE") is True
    await asyncio.sleep(0)
    assert dispatcher.in_flight("BASE") == 2
    assert rt.stats.sent == 0

    handle.gate.set()
    await dispatcher.drain()
    assert rt.stats.sent == 2
    assert dispatcher.in_flight("BASE") == 0
    await dispatcher.shutdown()


@pytest.mark.asyncio
async def test_empty_pool_is_a_noop(logger, fake_factory):
    profile = make_profile(rpcs=("http://broken-0", "http://broken-1"))
    pool = EndpointPool.initialize(profile, TEST_KEY, TEST_EXECUTOR, logger, factory=fake_factory)
    allocator = SequenceAllocator(profile.name, logger)
    await allocator.bootstrap(pool)
    dispatcher = Dispatcher(TargetStore(), SizeGenerator(), logger)
    rt = dispatcher.register(profile, pool, allocator)

    assert await dispatcher.fire("BASE") is False
    assert pool.cursor == 0
    assert allocator.next_sequence is None
    assert rt.stats.fired == 0
    assert dispatcher.active_networks() == []


@pytest.mark.asyncio
async def test_unknown_network_is_a_noop(logger):
    dispatcher = Dispatcher(TargetStore(), SizeGenerator(), logger)
    assert await dispatcher.fire("NOPE") is False


@pytest.mark.asyncio
async def test_conflict_triggers_background_resync(logger):
    handle = FakeHandle("http://rpc-0", error=ValueError("nonce too low: next nonce 42, tx nonce 10"))
    handle.gate = asyncio.Event()
    dispatcher, rt, _ = await build(logger, [handle], start=10)

    for _ in range(3):
        await dispatcher.fire("BASE")
    assert rt.allocator.next_sequence == 13

    handle.sequence = 42
    handle.gate.set()
    await dispatcher.drain()
    await rt.allocator.join()

    assert rt.stats.failed == 3
    assert rt.stats.conflicts == 3
    assert rt.stats.resyncs == 1
    assert rt.allocator.next_sequence == 42

    handle.error = None
    await dispatcher.fire("BASE")
    await dispatcher.drain()
    assert handle.calls[-1]["nonce"] == 42
    await dispatcher.shutdown()


@pytest.mark.asyncio
async def test_replacement_error_is_a_conflict(logger):
    handle = FakeHandle("http://rpc-0", error=RuntimeError("replacement transaction underpriced"))
    dispatcher, rt, _ = await build(logger, [handle], start=5)

    await dispatcher.fire("BASE")
    handle.sequence = 9
    await dispatcher.drain()
    await rt.allocator.join()
    assert rt.allocator.next_sequence == 9
    await dispatcher.shutdown()


@pytest.mark.asyncio
async def test_other_errors_never_roll_back(logger):
    handle = FakeHandle("http://rpc-0", error=ConnectionError("429 Too Many Requests"))
    dispatcher, rt, _ = await build(logger, [handle], start=10)

    await dispatcher.fire("BASE")
    await dispatcher.fire("BASE")
    handle.sequence = 0
    await dispatcher.drain()
    await rt.allocator.join()

    assert rt.stats.failed == 2
    assert rt.stats.conflicts == 0
    assert rt.allocator.next_sequence == 12
    assert handle.sequence_queries == 1
    assert "429" in rt.stats.last_error
    await dispatcher.shutdown()


@pytest.mark.asyncio
async def test_in_flight_cap_skips_without_consuming_nonce(logger):
    handles = [FakeHandle(f"http://rpc-{i}") for i in range(2)]
    for h in handles:
        h.gate = asyncio.Event()
    dispatcher, rt, _ = await build(logger, handles, start=10, max_in_flight=2)

    assert await dispatcher.fire("BASE") is True
    assert await dispatcher.fire("BASE") is True
    assert await dispatcher.fire("BASE") is False
    assert rt.stats.skipped == 1
    assert rt.pool.cursor == 2
    assert rt.allocator.next_sequence == 12

    for h in handles:
        h.gate.set()
    await dispatcher.drain()
    assert await dispatcher.fire("BASE") is True
    await dispatcher.drain()
    await dispatcher.shutdown()


@pytest.mark.asyncio
async def test_outcomes_reach_the_audit_log(logger):
    ok = FakeHandle("http://rpc-0")
    bad = FakeHandle("http://rpc-1", error=ValueError("execution reverted"))
    audit = MagicMock()
    dispatcher, rt, _ = await build(logger, [ok, bad], start=0, audit=audit)

    await dispatcher.fire("BASE")
    await dispatcher.fire("BASE")
    await dispatcher.drain()

    records = [c.args[0] for c in audit.log_submission.call_args_list]
    by_nonce = {r.sequence: r for r in records}
    assert by_nonce[0].status == SubmissionStatus.SENT
    assert by_nonce[0].detail == f"0x{0:064x}"
    assert by_nonce[1].status == SubmissionStatus.FAILED
    assert by_nonce[1].endpoint == "http://rpc-1"
    await dispatcher.shutdown()


@pytest.mark.asyncio
async def test_shutdown_cancels_in_flight(logger):
    handle = FakeHandle("http://rpc-0")
    handle.gate = asyncio.Event()
    dispatcher, rt, _ = await build(logger, [handle], start=0)

    await dispatcher.fire("BASE")
    await asyncio.sleep(0)
    await dispatcher.shutdown()
    assert dispatcher.in_flight("BASE") == 0
    assert rt.stats.sent == 0


def test_conflict_classification():
    assert is_sequence_conflict(ValueError("Nonce too low"))
    assert is_sequence_conflict(ValueError("replacement transaction underpriced"))
    assert is_sequence_conflict(RuntimeError({"code": -32000, "message": "nonce too high"}))
    assert not is_sequence_conflict(ValueError("insufficient funds for gas"))
    assert not is_sequence_conflict(TimeoutError())
