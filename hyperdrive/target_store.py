# hyperdrive/target_store.py
from .models import Target

DEFAULT_TARGET = Target(ticker="WETH", path=("ETH", "USDC", "ETH"), confidence=0.0)

class TargetStore:
    """
    Process-wide holder of the current trade target.
    One writer (SignalEngine), many readers (Dispatcher). Writers publish a new
    immutable Target; readers take whatever reference is current. No locking needed.
    """
    def __init__(self, initial: Target = DEFAULT_TARGET):
        self._current = initial
        self.updates = 0

    def get(self) -> Target:
        return self._current

    def publish(self, target: Target):
        self._current = target
        self.updates += 1

    def update(self, ticker: str, confidence: float, base: str = "ETH") -> Target:
        """
        Builds the round-trip path [base, ticker, base] and publishes it as one snapshot.
        """
        ticker = ticker.upper()
        target = Target(ticker=ticker, path=(base, ticker, base), confidence=confidence)
        self.publish(target)
        return target
