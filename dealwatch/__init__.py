"""
Big-Deal Watcher
================

Polls the Bybit big-deal feed and pushes large trades to subscribed
Telegram chats.
"""

__version__ = "0.1.0"
