"""
Deal Formatter

Turns a Deal into the notification text sent to subscribers:

    ✅ Buy	 $ 1,200,000
    2024-05-01 12:30:00
"""

from datetime import datetime, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from ..models import Deal, Side

SIDE_MARKERS = {
    Side.BUY: "✅",  # Green checkmark for Buy
    Side.SELL: "❌",  # Red "X" for Sell
}

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def side_marker(side: Side) -> str:
    return SIDE_MARKERS.get(side, "")


def group_thousands(value: int) -> str:
    """
    Insert "," between groups of three digits, e.g. 1234567 -> "1,234,567".

    Values with three or fewer digits are returned unchanged.
    """
    return f"{value:,}"


def resolve_timezone(name: Optional[str]) -> Optional[tzinfo]:
    """Map a configured zone name to a tzinfo (None = process local time)."""
    return ZoneInfo(name) if name else None


def format_timestamp(timestamp: int, tz: Optional[tzinfo] = None) -> str:
    """Render Unix seconds as a local calendar time string."""
    return datetime.fromtimestamp(timestamp, tz).strftime(TIMESTAMP_FORMAT)


def format_deal(deal: Deal, tz: Optional[tzinfo] = None) -> str:
    """
    Format a deal for display.

    Args:
        deal: Deal to format
        tz: Display timezone (None = process local time)

    Returns:
        "<marker> <side>\\t $ <grouped value>\\n<timestamp>"
    """
    return (
        f"{side_marker(deal.side)} {deal.side.value}\t $ {group_thousands(deal.whole_value)}\n"
        f"{format_timestamp(deal.timestamp, tz)}"
    )
