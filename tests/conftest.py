"""
Shared fixtures: fake RPC handles standing in for web3 connections.
"""

import asyncio
import logging
from decimal import Decimal

import pytest

from hyperdrive.models import NetworkProfile, SizeRange


class FakeHandle:
    """Records submissions instead of talking to a node."""

    def __init__(self, url, sequence=0, error=None):
        self.url = url
        self.sequence = sequence
        self.error = error
        self.calls = []
        self.sequence_queries = 0
        self.gate = None
        self.sequence_gate = None

    async def get_sequence(self):
        self.sequence_queries += 1
        if self.sequence_gate is not None:
            await self.sequence_gate.wait()
        if isinstance(self.sequence, Exception):
            raise self.sequence
        return self.sequence

    async def submit(self, path, amount, *, nonce, gas, max_fee_wei, priority_fee_wei, value=0):
        self.calls.append({
            "path": tuple(path),
            "amount": amount,
            "nonce": nonce,
            "gas": gas,
            "max_fee_wei": max_fee_wei,
            "priority_fee_wei": priority_fee_wei,
            "value": value,
        })
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return f"0x{nonce:064x}"


def make_profile(name="BASE", rpcs=None, max_in_flight=None, max_rate=None):
    return NetworkProfile(
        name=name,
        chain_id=8453,
        rpcs=tuple(rpcs or ("http://rpc-0", "http://rpc-1", "http://rpc-2")),
        symbol="ETH",
        priority_fee_gwei=Decimal("0.01"),
        size=SizeRange(min_units=4000, max_units=80000, unit_scale=10**13),
        max_in_flight=max_in_flight,
        max_rate=max_rate,
    )


@pytest.fixture
def logger():
    log = logging.getLogger("hyperdrive-tests")
    log.setLevel(logging.DEBUG)
    return log


@pytest.fixture
def profile():
    return make_profile()


@pytest.fixture
def fake_factory():
    """Factory for EndpointPool.initialize that builds FakeHandles and remembers them."""
    built = []

    def factory(url, profile, private_key, executor_address):
        if "broken" in url:
            raise ValueError(f"cannot connect to {url}")
        handle = FakeHandle(url)
        built.append(handle)
        return handle

    factory.built = built
    return factory
