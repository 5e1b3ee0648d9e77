# hyperdrive/signal_engine.py
import asyncio
import random
import aiohttp
from typing import Optional

from .models import Target
from .target_store import TargetStore

DEFAULT_SIGNAL_URL = "https://api.crypto-ai-signals.com/v1/latest"

class SignalEngine:
    """
    Polls the external AI signal source and publishes the result to the TargetStore.
    Runs independently of the dispatch loop. A failed poll keeps the last good
    target and simply tries again on the next interval, forever.
    """
    def __init__(self, store: TargetStore, logger, url: str = DEFAULT_SIGNAL_URL,
                 interval: float = 1.5, timeout: float = 1.5, base_asset: str = "ETH",
                 rng: Optional[random.Random] = None):
        self.store = store
        self.logger = logger
        self.url = url
        self.interval = interval
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.base_asset = base_asset
        self.rng = rng or random.Random()
        self.failures = 0
        self.running = False
        self._session: Optional[aiohttp.ClientSession] = None

    async def poll_once(self) -> Optional[Target]:
        """
        One fetch-and-publish cycle. Returns the published Target, or None if
        the source was unreachable or returned nothing usable.
        """
        if self._session is None:
            self._session = aiohttp.ClientSession()

        try:
            async with self._session.get(self.url, timeout=self.timeout) as resp:
                if resp.status != 200:
                    self.failures += 1
                    self.logger.debug(f"Signal source HTTP {resp.status}")
                    return None
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.failures += 1
            self.logger.debug(f"Signal fetch failed: {e!r}")
            return None

        if not isinstance(data, dict) or not data.get('ticker'):
            return None

        score = data.get('score')
        if not isinstance(score, (int, float)) or isinstance(score, bool):
            score = self.rng.random()

        target = self.store.update(str(data['ticker']), float(score), base=self.base_asset)
        self.logger.info(f"🧠 TARGET: {target.ticker} ({target.confidence * 100:.0f}%) | STRATEGY: HYPER-SWAP")
        return target

    async def run_loop(self):
        self.running = True
        self.logger.info(f"🧠 NEURAL LINK ESTABLISHED | SCANNING {self.url}")
        try:
            while self.running:
                try:
                    await self.poll_once()
                except Exception as e:
                    self.failures += 1
                    self.logger.error(f"Signal poll error: {e}")
                await asyncio.sleep(self.interval)
        finally:
            await self.shutdown()

    async def shutdown(self):
        self.running = False
        if self._session:
            await self._session.close()
            self._session = None
