"""
Poll Cycle

One fetch -> dedup -> filter -> format pass for a single subscription.

Dedup works on a watermark: the timestamp of the newest deal seen by the
previous cycle. Batches arrive newest first, so a cycle walks the batch
until it reaches the watermark and treats everything before that point as
new.
"""

import logging
from dataclasses import dataclass, field
from datetime import tzinfo
from typing import List, Optional

from ..api.bybit import BybitFeedClient, EmptyFeedError
from ..models import Batch, Deal
from .formatter import format_deal

logger = logging.getLogger(__name__)


@dataclass
class Watermark:
    """Timestamp of the newest deal already seen (0 = nothing seen yet)."""
    value: int = 0

    def unseen(self, batch: Batch) -> Batch:
        """
        Return the deals newer than the watermark, in batch order.

        Scanning stops at the first deal whose timestamp is at or below the
        watermark; that deal and everything after it were already seen.
        """
        if not self.value:
            return list(batch)

        fresh = []
        for deal in batch:
            if deal.timestamp <= self.value:
                break
            fresh.append(deal)
        return fresh

    def advance(self, batch: Batch):
        """Move to the batch's newest timestamp, whether or not it passed the filter."""
        if batch:
            self.value = batch[0].timestamp


def passes_threshold(deal: Deal, threshold: int) -> bool:
    """True iff the deal's value is strictly above the threshold."""
    return deal.value > threshold


class ThresholdFilter:
    """Minimum notifiable deal value, changeable at runtime."""

    def __init__(self, value: int):
        self._value = self._validate(value)

    @staticmethod
    def _validate(value: int) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"Threshold must be an int, got {type(value).__name__}")
        if value < 0:
            raise ValueError(f"Threshold must be >= 0, got {value}")
        return value

    @property
    def value(self) -> int:
        return self._value

    def set(self, value: int):
        self._value = self._validate(value)

    def passes(self, deal: Deal) -> bool:
        return passes_threshold(deal, self._value)

    def __repr__(self):
        return f"ThresholdFilter({self._value})"


@dataclass
class CycleResult:
    """Output of one poll cycle."""
    notifications: List[str] = field(default_factory=list)
    watermark: int = 0


class PollCycle:
    """
    Runs a single poll cycle against the feed.

    Holds no per-subscription state: the caller passes its watermark in and
    stores the returned one, so many subscriptions can share one PollCycle.
    """

    def __init__(self, client: BybitFeedClient, tz: Optional[tzinfo] = None):
        self.client = client
        self.tz = tz

    async def run(self, watermark: int, threshold: int) -> CycleResult:
        """
        Fetch, dedup, filter and format.

        Args:
            watermark: Timestamp of the newest deal seen so far (0 = none)
            threshold: Deals must be worth strictly more than this

        Returns:
            CycleResult with notifications (newest first) and the new watermark

        Raises:
            TransportError, DecodeError: The cycle is aborted; retry next tick
        """
        try:
            batch = await self.client.fetch()
        except EmptyFeedError:
            logger.debug("Feed empty, nothing to report")
            return CycleResult(notifications=[], watermark=watermark)

        mark = Watermark(watermark)
        fresh = mark.unseen(batch)
        notifications = [
            format_deal(deal, self.tz)
            for deal in fresh
            if passes_threshold(deal, threshold)
        ]
        mark.advance(batch)

        logger.debug(
            f"Cycle: {len(batch)} deals, {len(fresh)} new, "
            f"{len(notifications)} above ${threshold:,}, watermark {watermark} -> {mark.value}"
        )
        return CycleResult(notifications=notifications, watermark=mark.value)
