"""
API Package
===========

External API clients.

Components:
- bybit.py: BybitFeedClient, feed error taxonomy, envelope parsing
"""

from .bybit import (
    BybitFeedClient,
    FeedError,
    TransportError,
    DecodeError,
    EmptyFeedError,
    parse_batch,
)

__all__ = [
    "BybitFeedClient",
    "FeedError",
    "TransportError",
    "DecodeError",
    "EmptyFeedError",
    "parse_batch",
]
