# hyperdrive/models.py
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple
import time

class SubmissionStatus(Enum):
    """
    Enum representing the outcome of a fire-and-forget submission.
    """
    SENT = "SENT"
    FAILED = "FAILED"

@dataclass(frozen=True, slots=True)
class SizeRange:
    """
    Bounds for the randomized request magnitude, in scaled integer units.
    The final magnitude is (min..max) * unit_scale base units (wei).
    """
    min_units: int
    max_units: int
    unit_scale: int

@dataclass(frozen=True, slots=True)
class NetworkProfile:
    """
    Static description of one network: where to send and how to price it.
    """
    name: str
    chain_id: int
    rpcs: Tuple[str, ...]
    symbol: str
    priority_fee_gwei: Decimal
    size: SizeRange
    max_in_flight: Optional[int] = None
    max_rate: Optional[float] = None

@dataclass(frozen=True, slots=True)
class Target:
    """
    Immutable snapshot of the current trade target.
    Published by reference, so readers never see a half-updated group.
    """
    ticker: str
    path: Tuple[str, ...]
    confidence: float
    timestamp: float = field(default_factory=time.time)

    @property
    def age(self) -> float:
        """Returns the age of the target in seconds."""
        return time.time() - self.timestamp

@dataclass(slots=True)
class SubmissionRecord:
    """
    One row of the audit trail, produced by the completion handler.
    """
    network: str
    endpoint: str
    sequence: int
    amount: int
    ticker: str
    status: SubmissionStatus
    detail: str
    timestamp: float = field(default_factory=time.time)

    def as_row(self) -> list:
        return [
            self.timestamp,
            self.network,
            self.endpoint,
            self.sequence,
            self.amount,
            self.ticker,
            self.status.value,
            self.detail,
        ]

@dataclass(slots=True)
class NetworkStats:
    """Mutable per-network counters shown on the dashboard."""
    fired: int = 0
    sent: int = 0
    failed: int = 0
    conflicts: int = 0
    skipped: int = 0
    resyncs: int = 0
    last_error: str = ""
