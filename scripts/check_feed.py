#!/usr/bin/env python3
"""
Quick check of the big-deal feed.

Fetches one batch and prints every deal plus those above the threshold.

Run with: python scripts/check_feed.py [--threshold 500000]
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dealwatch.api.bybit import BybitFeedClient, FeedError
from dealwatch.config import config
from dealwatch.core.formatter import format_deal, resolve_timezone
from dealwatch.core.poll_cycle import passes_threshold

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)


async def check_feed(threshold: int) -> bool:
    """Fetch one batch and print it."""
    print("\n" + "=" * 60)
    print(f"FETCHING {config.feed_symbol} BIG DEALS")
    print("=" * 60)

    tz = resolve_timezone(config.display_timezone)

    async with BybitFeedClient() as client:
        try:
            batch = await client.fetch()
        except FeedError as e:
            print(f"   FAIL: {type(e).__name__}: {e}")
            return False

    print(f"\n   Got {len(batch)} deals (newest first)")
    for deal in batch:
        flag = "*" if passes_threshold(deal, threshold) else " "
        print(f" {flag} " + format_deal(deal, tz).replace("\n", "  "))

    print(f"\n   * = above ${threshold:,}")
    return True


def main():
    parser = argparse.ArgumentParser(description="Fetch one batch from the big-deal feed")
    parser.add_argument("--threshold", type=int, default=config.default_threshold)
    args = parser.parse_args()

    ok = asyncio.run(check_feed(args.threshold))
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
