"""
Subscription Manager

Owns one polling loop per subscribed recipient:
1. On subscribe, runs an immediate cycle and delivers its output
2. Then runs a cycle every poll interval until unsubscribed
3. Each loop keeps its own watermark; thresholds are read fresh every cycle

Delivery goes through a transport exposing send_text(recipient, text).
Sends run in the default executor so a slow transport never blocks other
subscriptions.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, List, Optional

from ..api.bybit import FeedError
from ..config import config
from .poll_cycle import PollCycle, ThresholdFilter, Watermark

logger = logging.getLogger(__name__)


@dataclass
class Subscription:
    """A recipient's active polling loop and its dedup state."""
    recipient: Hashable
    watermark: Watermark = field(default_factory=Watermark)
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    task: Optional[asyncio.Task] = None
    cycles: int = 0
    delivered: int = 0


class SubscriptionManager:
    """
    Per-recipient polling lifecycle: Unsubscribed -> Active -> Unsubscribed.

    Thresholds: one shared default plus optional per-recipient overrides.
    set_threshold(value) changes the default for every subscription without
    an override; set_threshold(value, recipient) only affects that recipient.
    """

    def __init__(
        self,
        cycle: PollCycle,
        transport: Any,
        poll_interval_sec: float = None,
        default_threshold: int = None,
    ):
        """
        Args:
            cycle: PollCycle shared by all subscriptions
            transport: Object with send_text(recipient, text)
            poll_interval_sec: Seconds between cycles (default from config)
            default_threshold: Initial shared threshold (default from config)
        """
        self.cycle = cycle
        self.transport = transport
        self.poll_interval = poll_interval_sec or config.poll_interval_sec
        if default_threshold is None:
            default_threshold = config.default_threshold
        self.threshold = ThresholdFilter(default_threshold)

        self._subscriptions: Dict[Hashable, Subscription] = {}
        self._overrides: Dict[Hashable, ThresholdFilter] = {}
        self._retired: List[asyncio.Task] = []

    # -------------------------------------------------------------------------
    # Public Methods
    # -------------------------------------------------------------------------

    async def subscribe(self, recipient: Hashable) -> Subscription:
        """
        Start polling for a recipient, replacing any existing loop.

        The first cycle runs before this returns, with watermark 0, so every
        deal in the current batch above the threshold is delivered.
        """
        if recipient in self._subscriptions:
            logger.info(f"Replacing existing subscription for {recipient}")
            self.unsubscribe(recipient)

        sub = Subscription(recipient=recipient)
        self._subscriptions[recipient] = sub
        logger.info(f"Subscribed {recipient} (threshold ${self.get_threshold(recipient):,})")

        try:
            await self._run_cycle(sub)
        except Exception as e:
            # Don't crash on a failed first cycle, the loop retries
            logger.exception(f"Initial poll failed for {recipient}: {e}")

        if not sub.cancelled.is_set():
            sub.task = asyncio.create_task(self._run_loop(sub), name=f"poll-{recipient}")
        return sub

    def unsubscribe(self, recipient: Hashable) -> bool:
        """
        Stop polling for a recipient. Returns immediately.

        The loop sees the signal within one poll interval and exits without
        starting another cycle.

        Returns:
            True if a subscription was stopped, False if none was active
        """
        sub = self._subscriptions.pop(recipient, None)
        if sub is None:
            logger.debug(f"Unsubscribe for {recipient}: not subscribed")
            return False

        sub.cancelled.set()
        if sub.task is not None:
            self._retired.append(sub.task)
            sub.task.add_done_callback(self._forget_task)
        logger.info(
            f"Unsubscribed {recipient} after {sub.cycles} cycles, {sub.delivered} messages"
        )
        return True

    def set_threshold(self, value: int, recipient: Hashable = None):
        """
        Update a threshold. Takes effect on the next cycle.

        Args:
            value: New minimum deal value
            recipient: Recipient to override for, or None for the shared default
        """
        if recipient is None:
            self.threshold.set(value)
            logger.info(f"Default threshold set to ${value:,}")
            return

        override = self._overrides.get(recipient)
        if override is None:
            self._overrides[recipient] = ThresholdFilter(value)
        else:
            override.set(value)
        logger.info(f"Threshold for {recipient} set to ${value:,}")

    def get_threshold(self, recipient: Hashable = None) -> int:
        """Threshold in effect for a recipient (or the shared default)."""
        return self._threshold_for(recipient).value

    async def poll_now(self, recipient: Hashable) -> bool:
        """
        Run an extra cycle for an active subscription right away.

        Returns:
            False if the recipient is not subscribed
        """
        sub = self._subscriptions.get(recipient)
        if sub is None:
            return False
        await self._run_cycle(sub)
        return True

    def is_active(self, recipient: Hashable) -> bool:
        return recipient in self._subscriptions

    def active_recipients(self) -> List[Hashable]:
        return list(self._subscriptions)

    async def close(self):
        """Stop every subscription and wait for the loops to finish."""
        for recipient in list(self._subscriptions):
            self.unsubscribe(recipient)

        pending = [t for t in self._retired if not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._retired.clear()

    # -------------------------------------------------------------------------
    # Private Helpers
    # -------------------------------------------------------------------------

    def _threshold_for(self, recipient: Hashable) -> ThresholdFilter:
        if recipient is not None and recipient in self._overrides:
            return self._overrides[recipient]
        return self.threshold

    def _forget_task(self, task: asyncio.Task):
        if task in self._retired:
            self._retired.remove(task)

    async def _run_loop(self, sub: Subscription):
        """Run a cycle every poll interval until cancelled."""
        while not sub.cancelled.is_set():
            try:
                await asyncio.wait_for(sub.cancelled.wait(), timeout=self.poll_interval)
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self._run_cycle(sub)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Error in poll loop for {sub.recipient}: {e}")

        logger.debug(f"Poll loop for {sub.recipient} stopped")

    async def _run_cycle(self, sub: Subscription):
        """
        Run one cycle and deliver its output.

        Feed errors are logged and leave the watermark unchanged; the next
        tick retries.
        """
        async with sub.lock:
            if sub.cancelled.is_set():
                return

            threshold = self._threshold_for(sub.recipient).value
            try:
                result = await self.cycle.run(sub.watermark.value, threshold)
            except FeedError as e:
                logger.warning(f"Poll cycle failed for {sub.recipient}: {e}")
                return
            finally:
                sub.cycles += 1

            # Dropped if the subscription was replaced or stopped mid-cycle
            if sub.cancelled.is_set():
                logger.debug(f"Discarding output for cancelled subscription {sub.recipient}")
                return

            sub.watermark.value = result.watermark
            await self._deliver(sub, result.notifications)

    async def _deliver(self, sub: Subscription, notifications: List[str]):
        """Send one message per non-empty notification."""
        loop = asyncio.get_running_loop()
        for text in notifications:
            if not text:
                continue
            await loop.run_in_executor(None, self.transport.send_text, sub.recipient, text)
            sub.delivered += 1
