# Core business logic
from .formatter import format_deal, format_timestamp, group_thousands, side_marker
from .poll_cycle import CycleResult, PollCycle, ThresholdFilter, Watermark, passes_threshold
from .subscriptions import Subscription, SubscriptionManager

__all__ = [
    "format_deal",
    "format_timestamp",
    "group_thousands",
    "side_marker",
    "CycleResult",
    "PollCycle",
    "ThresholdFilter",
    "Watermark",
    "passes_threshold",
    "Subscription",
    "SubscriptionManager",
]
