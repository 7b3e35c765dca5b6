#!/usr/bin/env python3
"""
Big-Deal Watcher - CLI Entry Point
==================================

Runs the Telegram bot that pushes large BTCUSDT trades to subscribed chats.

Architecture:
    - Telegram getUpdates loop receives chat commands
    - Each subscribed chat gets its own polling loop (default: every 1s)
    - Deals at or below the chat's minimum value are skipped
    - Deals already seen by the chat are skipped (timestamp watermark)

Usage:
    # Start bot
    python scripts/run_bot.py

    # Dry run (log messages instead of sending)
    python scripts/run_bot.py --dry-run

    # Custom poll interval and default threshold
    python scripts/run_bot.py --poll-ms 2000 --threshold 1000000
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dealwatch.bot import run_bot
from dealwatch.config import config


def setup_logging(log_level: str = config.log_level, log_file: str = config.log_file):
    """Configure logging for the bot."""
    log_path = Path(log_file)
    if not log_path.is_absolute():
        log_path = project_root / log_path
    log_path.parent.mkdir(parents=True, exist_ok=True)

    # Create date-stamped log file (e.g., logs/dealwatch_2026-01-18.log)
    date_str = datetime.now().strftime("%Y-%m-%d")
    dated_log_file = log_path.parent / f"{log_path.stem}_{date_str}{log_path.suffix}"

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    # File handler (date-stamped)
    file_handler = logging.FileHandler(dated_log_file)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Reduce noise from HTTP libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)

    root_logger.info(f"Logging to: {dated_log_file}")


def main():
    parser = argparse.ArgumentParser(
        description='Big-Deal Watcher Telegram Bot',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Chat commands:
  Subscribe                          Start notifications
  Unsubscribe                        Stop notifications
  Set minimum displayed value $<n>   Only notify deals above $n
  Show minimum displayed value $     Show current minimum

Examples:
  python scripts/run_bot.py                  # Start bot
  python scripts/run_bot.py --dry-run        # Log messages only
  python scripts/run_bot.py --poll-ms 2000   # Poll every 2 seconds
        """
    )

    parser.add_argument(
        '--poll-ms',
        type=int,
        default=config.poll_interval_ms,
        help=f'Feed poll interval in milliseconds (default: {config.poll_interval_ms})'
    )

    parser.add_argument(
        '--threshold',
        type=int,
        default=config.default_threshold,
        help=f'Default minimum deal value in USD (default: {config.default_threshold})'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Log messages instead of sending them to Telegram'
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default=config.log_level.upper(),
        help=f'Log level (default: {config.log_level})'
    )

    args = parser.parse_args()

    if args.poll_ms <= 0:
        parser.error("--poll-ms must be positive")
    if args.threshold < 0:
        parser.error("--threshold must be >= 0")

    setup_logging(args.log_level)
    logger = logging.getLogger(__name__)

    print("\n" + "=" * 60)
    print("BIG-DEAL WATCHER")
    print("=" * 60)
    print(f"Feed:           {config.feed_url}")
    print(f"Symbol:         {config.feed_symbol}")
    print(f"Poll interval:  {args.poll_ms} ms")
    print(f"Threshold:      ${args.threshold:,}")
    print(f"Dry run:        {args.dry_run}")
    print(f"Log level:      {args.log_level}")
    print("=" * 60)

    if not args.dry_run and not config.telegram_bot_token:
        print("\nWARNING: TELEGRAM_BOT_TOKEN not set!")
        print("Set environment variable or use --dry-run for console output.")
        print("To set: export TELEGRAM_BOT_TOKEN=your_token")
        sys.exit(1)

    try:
        print("\nStarting bot...")
        print("Press Ctrl+C to stop\n")

        asyncio.run(run_bot(
            dry_run=args.dry_run,
            poll_interval_sec=args.poll_ms / 1000,
            default_threshold=args.threshold,
        ))

    except KeyboardInterrupt:
        print("\n\nBot stopped by user")
        sys.exit(0)
    except Exception as e:
        logger.exception(f"Bot service error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
