# hyperdrive/sizing.py
import random
from typing import Optional

from .models import NetworkProfile, SizeRange

STEPS = 1000

class SizeGenerator:
    """
    Micro-sizing: picks a magnitude uniformly between min and max in 1/1000 steps,
    then scales it to base units (wei). Randomness quality is not a concern here.
    """
    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def size(self, profile: NetworkProfile) -> int:
        return self.scale(profile.size, self.rng.randrange(STEPS))

    @staticmethod
    def scale(bounds: SizeRange, step: int) -> int:
        """Magnitude for a given step in [0, STEPS)."""
        base = bounds.min_units + (step * (bounds.max_units - bounds.min_units)) // STEPS
        return base * bounds.unit_scale
