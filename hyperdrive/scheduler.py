# hyperdrive/scheduler.py
import asyncio
from typing import Dict, List, Optional

from .dispatcher import Dispatcher

class SchedulerLoop:
    """
    The infinite loop: fire once on every active network, yield to the event
    loop, repeat. With no rate cap this runs as fast as fire() can be issued.
    A per-network max_rate (fires/second) turns the policy into an explicit knob.
    """
    def __init__(self, dispatcher: Dispatcher, networks: List[str], logger,
                 max_rate: Optional[float] = None, idle_sleep: float = 1.0):
        self.dispatcher = dispatcher
        self.networks = list(networks)
        self.logger = logger
        self.idle_sleep = idle_sleep
        self.rates: Dict[str, Optional[float]] = {}
        for name in self.networks:
            rt = dispatcher.networks.get(name)
            per_net = rt.profile.max_rate if rt is not None else None
            self.rates[name] = per_net if per_net is not None else max_rate
        self._next_slot: Dict[str, float] = {name: 0.0 for name in self.networks}
        self.iterations = 0
        self.running = False

    def stop(self):
        self.running = False

    async def tick(self) -> Optional[float]:
        """
        One pass over all networks in configured order.
        Returns how long to wait before the next pass (None means immediately).
        """
        loop = asyncio.get_running_loop()
        active = 0
        waits = []
        for name in self.networks:
            rt = self.dispatcher.networks.get(name)
            if rt is None or not rt.is_active:
                continue
            active += 1

            rate = self.rates.get(name)
            if rate:
                now = loop.time()
                slot = self._next_slot[name]
                if now < slot:
                    waits.append(slot - now)
                    continue
                self._next_slot[name] = max(slot, now) + 1.0 / rate

            await self.dispatcher.fire(name)

        self.iterations += 1
        if active == 0:
            return self.idle_sleep
        if waits and len(waits) == active:
            return min(waits)
        return None

    async def run(self, max_iterations: Optional[int] = None):
        self.running = True
        self.logger.info("🔥 HYPERDRIVE ENGAGED | MAX VOLUME MODE 🔥")
        while self.running:
            delay = await self.tick()
            if max_iterations is not None and self.iterations >= max_iterations:
                break
            # Zero-delay recursion: just give other tasks (completions, signal poll) a turn
            await asyncio.sleep(delay or 0)
        self.running = False
