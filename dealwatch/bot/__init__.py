"""
Bot Package
===========

Chat-facing layer: command recognition and the Telegram update loop.

Components:
- commands.py: CommandRouter (chat text -> SubscriptionManager operations)
- runner.py: BotService (getUpdates loop, wiring)
"""

from .commands import CommandRouter, parse_threshold
from .runner import BotService, run_bot

__all__ = [
    "CommandRouter",
    "parse_threshold",
    "BotService",
    "run_bot",
]
