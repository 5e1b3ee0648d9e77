# hyperdrive/sequence.py
import asyncio
from typing import Optional, Tuple

from .endpoint_pool import EndpointPool

_ALLOCATE = "allocate"
_RESYNC = "resync"

class SequenceAllocator:
    """
    Owns the next nonce for one network.

    Allocation is optimistic: the counter advances the moment a nonce is handed
    out, long before the chain has seen the transaction. That is what lets the
    dispatcher fire the next trade a millisecond later.

    All mutation happens inside a single owner task that drains a message queue.
    Allocations and resyncs are therefore strictly ordered: while a resync query
    is in flight, allocations wait for it and then continue from the fresh value.
    """
    def __init__(self, network: str, logger):
        self.network = network
        self.logger = logger
        self._next: Optional[int] = None
        self._pool: Optional[EndpointPool] = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._resync_pending = False
        self.resyncs = 0

    @property
    def next_sequence(self) -> Optional[int]:
        return self._next

    @property
    def is_active(self) -> bool:
        return self._next is not None

    async def bootstrap(self, pool: EndpointPool) -> Optional[int]:
        """
        Seeds the counter from the first handle in the pool.
        If the pool is empty or the query fails, the network stays inactive.
        """
        self._pool = pool
        if pool.is_empty:
            self._next = None
            return None

        try:
            self._next = int(await pool.first().get_sequence())
            self.logger.info(f"[{self.network}] ✅ READY | Starting Nonce: {self._next}")
        except Exception as e:
            self.logger.error(f"[{self.network}] ❌ Failed to fetch nonce: {e}")
            self._next = None
        return self._next

    async def allocate(self) -> Tuple[Optional[int], bool]:
        """
        Returns (nonce, True) and advances the counter, or (None, False) when
        the network is inactive.
        """
        if self._next is None:
            return None, False
        if not self._resync_pending:
            return self._take()
        fut = asyncio.get_running_loop().create_future()
        self._submit(_ALLOCATE, fut)
        return await fut

    def try_allocate(self) -> Tuple[Optional[int], bool]:
        """
        Never waits. Returns (None, False) while the network is inactive or a
        resync is queued or running, so one network's resync cannot stall a
        caller that serves other networks.
        """
        if self._next is None or self._resync_pending:
            return None, False
        return self._take()

    @property
    def resync_pending(self) -> bool:
        return self._resync_pending

    def request_resync(self) -> bool:
        """
        Fire-and-forget resync. Requests arriving while one is already queued or
        running are folded into it. Returns True if a new resync was queued.
        """
        if self._resync_pending or self._pool is None or self._pool.is_empty:
            return False
        self._resync_pending = True
        self._submit(_RESYNC, None)
        return True

    async def resync(self) -> Optional[int]:
        """Queues a resync and waits for it. Returns the counter afterwards."""
        fut = asyncio.get_running_loop().create_future()
        self._resync_pending = True
        self._submit(_RESYNC, fut)
        return await fut

    def _submit(self, kind: str, fut: Optional[asyncio.Future]):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        self._queue.put_nowait((kind, fut))

    def _take(self) -> Tuple[Optional[int], bool]:
        if self._next is None:
            return None, False
        seq = self._next
        self._next += 1
        return seq, True

    async def _query(self):
        if self._next is None or self._pool is None or self._pool.is_empty:
            return
        try:
            fresh = int(await self._pool.first().get_sequence())
        except Exception as e:
            self.logger.warning(f"[{self.network}] Resync failed, keeping nonce {self._next}: {e}")
            return
        if fresh != self._next:
            self.logger.info(f"[{self.network}] 🔄 Nonce resync {self._next} -> {fresh}")
        self._next = fresh
        self.resyncs += 1

    async def run(self):
        """Owner loop. Started lazily by the first request."""
        while True:
            kind, fut = await self._queue.get()
            try:
                if kind == _ALLOCATE:
                    if fut is not None and not fut.done():
                        fut.set_result(self._take())
                else:
                    try:
                        await self._query()
                    finally:
                        self._resync_pending = False
                    if fut is not None and not fut.done():
                        fut.set_result(self._next)
            finally:
                self._queue.task_done()

    async def join(self):
        """Waits until every queued allocate/resync has been processed."""
        await self._queue.join()

    async def shutdown(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        while not self._queue.empty():
            _, fut = self._queue.get_nowait()
            if fut is not None and not fut.done():
                fut.cancel()
