"""
Deal Models
===========

Dataclasses for trade events from the big-deal feed.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import List


class Side(Enum):
    """Taker side of a deal."""
    BUY = "Buy"
    SELL = "Sell"


@dataclass(frozen=True)
class Deal:
    """A single large trade from the feed."""
    symbol: str
    side: Side
    timestamp: int  # Unix seconds
    value: Decimal  # Notional USD

    @property
    def whole_value(self) -> int:
        """Integer part of the value (truncated, as displayed)."""
        return int(self.value)


# One fetch worth of deals, newest first
Batch = List[Deal]
