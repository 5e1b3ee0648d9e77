# hyperdrive/dispatcher.py
import asyncio
from decimal import Decimal
from typing import Dict, List, Optional, Set

from web3 import AsyncWeb3

from .endpoint_pool import EndpointHandle, EndpointPool, gwei_to_wei
from .logger import AsyncAuditLogger
from .models import NetworkProfile, NetworkStats, SubmissionRecord, SubmissionStatus
from .sequence import SequenceAllocator
from .sizing import SizeGenerator
from .target_store import TargetStore

CONFLICT_MARKERS = ("nonce", "replacement")

def is_sequence_conflict(err: BaseException) -> bool:
    """'nonce too low', 'replacement transaction underpriced' and friends."""
    message = str(err).lower()
    return any(marker in message for marker in CONFLICT_MARKERS)

class NetworkRuntime:
    """Everything the dispatcher tracks for one network."""
    def __init__(self, profile: NetworkProfile, pool: EndpointPool, allocator: SequenceAllocator,
                 max_in_flight: Optional[int] = None):
        self.profile = profile
        self.pool = pool
        self.allocator = allocator
        self.max_in_flight = max_in_flight
        self.priority_fee_wei = gwei_to_wei(profile.priority_fee_gwei)
        self.stats = NetworkStats()
        self.in_flight: Set[asyncio.Task] = set()

    @property
    def is_active(self) -> bool:
        return self.allocator.is_active and not self.pool.is_empty

class Dispatcher:
    """
    Fire-and-forget execution layer.

    fire() picks the next RPC, takes an optimistic nonce, and hands the
    submission to a background task. It returns as soon as the task is
    scheduled; the outcome is handled later and only ever logged, counted,
    or (for nonce conflicts) turned into a background resync.
    """
    def __init__(self, target_store: TargetStore, sizer: SizeGenerator, logger,
                 audit_log: Optional[AsyncAuditLogger] = None, gas_limit: int = 500000,
                 max_fee_gwei: Decimal = Decimal("300"), max_in_flight: Optional[int] = None):
        self.target_store = target_store
        self.sizer = sizer
        self.logger = logger
        self.audit_log = audit_log
        self.gas_limit = gas_limit
        self.max_fee_wei = gwei_to_wei(max_fee_gwei)
        self.default_max_in_flight = max_in_flight
        self.networks: Dict[str, NetworkRuntime] = {}

    def register(self, profile: NetworkProfile, pool: EndpointPool,
                 allocator: SequenceAllocator) -> NetworkRuntime:
        cap = profile.max_in_flight if profile.max_in_flight is not None else self.default_max_in_flight
        runtime = NetworkRuntime(profile, pool, allocator, cap)
        self.networks[profile.name] = runtime
        return runtime

    def active_networks(self) -> List[str]:
        return [name for name, rt in self.networks.items() if rt.is_active]

    async def fire(self, network: str) -> bool:
        """
        Issues one submission on the network. Returns True if a submission was
        launched, False if the network is down or saturated.
        """
        rt = self.networks.get(network)
        if rt is None or not rt.is_active:
            return False

        if rt.max_in_flight is not None and len(rt.in_flight) >= rt.max_in_flight:
            rt.stats.skipped += 1
            return False

        # Nonce is being re-read from the chain; sit this pass out
        if rt.allocator.resync_pending:
            rt.stats.skipped += 1
            return False

        # 1. ROTATE RPC (0 -> 1 -> 2 -> 0 ...)
        handle = rt.pool.next()

        # 2. OPTIMISTIC NONCE
        seq, ok = rt.allocator.try_allocate()
        if not ok:
            return False

        # 3. PREPARE DATA
        target = self.target_store.get()
        amount = self.sizer.size(rt.profile)

        # 4. SHOOT (fire & forget)
        rt.stats.fired += 1
        task = asyncio.create_task(self._submit(rt, handle, seq, amount, target.path, target.ticker))
        rt.in_flight.add(task)
        task.add_done_callback(rt.in_flight.discard)
        return True

    async def _submit(self, rt: NetworkRuntime, handle: EndpointHandle, seq: int, amount: int,
                      path, ticker: str):
        name = rt.profile.name
        try:
            tx_hash = await handle.submit(
                path,
                amount,
                nonce=seq,
                gas=self.gas_limit,
                max_fee_wei=self.max_fee_wei,
                priority_fee_wei=rt.priority_fee_wei,
                value=0,
            )
        except Exception as err:
            self._on_failure(rt, handle, seq, amount, ticker, err)
            return

        rt.stats.sent += 1
        val = AsyncWeb3.from_wei(amount, 'ether')
        self.logger.info(f"[{name}] 🚀 {val} {rt.profile.symbol} -> {ticker} | Nonce {seq}")
        self._audit(SubmissionRecord(name, handle.url, seq, amount, ticker, SubmissionStatus.SENT, str(tx_hash)))

    def _on_failure(self, rt: NetworkRuntime, handle: EndpointHandle, seq: int, amount: int,
                    ticker: str, err: Exception):
        # Silent fail mode: RPC hiccups and reverts are expected, just count them
        rt.stats.failed += 1
        rt.stats.last_error = str(err)[:120]
        self.logger.debug(f"[{rt.profile.name}] . nonce {seq} via {handle.url}: {err}")
        self._audit(SubmissionRecord(rt.profile.name, handle.url, seq, amount, ticker,
                                     SubmissionStatus.FAILED, str(err)))

        # Self-healing: out of sync with the chain, re-read the nonce in the background
        if is_sequence_conflict(err):
            rt.stats.conflicts += 1
            if rt.allocator.request_resync():
                rt.stats.resyncs += 1

    def _audit(self, record: SubmissionRecord):
        if self.audit_log is not None:
            self.audit_log.log_submission(record)

    def in_flight(self, network: str) -> int:
        rt = self.networks.get(network)
        return len(rt.in_flight) if rt else 0

    async def drain(self):
        """Waits for every in-flight submission to settle."""
        tasks = [t for rt in self.networks.values() for t in rt.in_flight]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self):
        """Cancels in-flight submissions and stops the nonce owners."""
        tasks = [t for rt in self.networks.values() for t in rt.in_flight]
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for rt in self.networks.values():
            await rt.allocator.shutdown()
