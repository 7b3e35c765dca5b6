"""
Bybit Big-Deal Feed Client

Single responsibility: fetch the latest batch of large trades from the
Bybit public big-deal endpoint.
"""

import asyncio
import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import aiohttp

from ..config import config
from ..models import Batch, Deal, Side

logger = logging.getLogger(__name__)

# 9999-12-30 00:00 UTC, a day short of datetime's limit so any display zone fits
MAX_TIMESTAMP = 253402128000
# Integer digits allowed in a deal value
MAX_VALUE_DIGITS = 30


class FeedError(Exception):
    """Base class for feed failures. A failed fetch is retried next tick."""


class TransportError(FeedError):
    """Network failure or non-200 response."""


class DecodeError(FeedError):
    """Malformed envelope or unparsable field."""


class EmptyFeedError(FeedError):
    """Feed returned no deal list. Means 'nothing to report', not a failure."""


class BybitFeedClient:
    """
    Async client for the big-deal feed.

    Stateless apart from the HTTP session: every fetch() returns the
    feed's current batch, newest first.
    """

    def __init__(
        self,
        url: str = None,
        symbol: str = None,
        limit: int = None,
        timeout_sec: float = None,
    ):
        self.url = url or config.feed_url
        self.symbol = symbol or config.feed_symbol
        self.limit = limit or config.feed_limit
        self.timeout_sec = timeout_sec or config.request_timeout_sec
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self):
        """Create session if needed."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_sec)
            )

    async def close(self):
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def fetch(self) -> Batch:
        """
        Fetch the current batch of deals.

        Returns:
            List of Deal objects, newest first

        Raises:
            TransportError: Network failure or non-200 status
            DecodeError: Malformed JSON or fields
            EmptyFeedError: Feed has no deal list
        """
        await self._ensure_session()
        params = {"symbol": self.symbol, "limit": str(self.limit)}

        try:
            async with self._session.get(self.url, params=params) as response:
                if response.status != 200:
                    raise TransportError(f"Feed returned HTTP {response.status}")
                body = await response.text()
        except aiohttp.ClientError as e:
            raise TransportError(f"Feed request failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise TransportError("Feed request timed out") from e

        try:
            payload = json.loads(body)
        except ValueError as e:
            raise DecodeError(f"Feed returned malformed JSON: {e}") from e

        return parse_batch(payload)


# =============================================================================
# Parsing
# =============================================================================

def parse_batch(payload: Any) -> Batch:
    """
    Parse a decoded feed envelope into a Batch.

    Envelope shape: {"retCode": 0, "retMsg": "...", "result": {"list": [...]}}
    (older responses use ret_code / ret_msg).

    Raises:
        DecodeError: Envelope or an item is malformed
        EmptyFeedError: result.list is absent or empty
    """
    if not isinstance(payload, dict):
        raise DecodeError(f"Expected JSON object, got {type(payload).__name__}")

    ret_code = payload.get("retCode", payload.get("ret_code"))
    if ret_code not in (None, 0, "0"):
        ret_msg = payload.get("retMsg", payload.get("ret_msg", ""))
        raise DecodeError(f"Feed rejected request: retCode={ret_code} {ret_msg}")

    result = payload.get("result")
    items = result.get("list") if isinstance(result, dict) else None
    if not items:
        raise EmptyFeedError("Feed returned no deals")
    if not isinstance(items, list):
        raise DecodeError("result.list is not an array")

    return [_parse_deal(item) for item in items]


def _parse_deal(item: Any) -> Deal:
    """Parse one list item into a Deal."""
    if not isinstance(item, dict):
        raise DecodeError(f"Deal entry is not an object: {item!r}")

    try:
        side = Side(item["side"])
    except KeyError:
        raise DecodeError("Deal entry missing 'side'")
    except ValueError:
        raise DecodeError(f"Unknown side: {item['side']!r}")

    return Deal(
        symbol=str(item.get("symbol", "")),
        side=side,
        timestamp=parse_timestamp(item.get("timestamp")),
        value=parse_value(item.get("value")),
    )


def parse_timestamp(raw: Any) -> int:
    """
    Parse a string-encoded integer of Unix seconds.

    Values outside 1970..9999 can't be displayed as a date (millisecond
    epochs land here) and are rejected.
    """
    try:
        timestamp = int(str(raw).strip())
    except ValueError:
        raise DecodeError(f"Invalid timestamp: {raw!r}")
    if not 0 <= timestamp <= MAX_TIMESTAMP:
        raise DecodeError(f"Timestamp out of range: {raw!r}")
    return timestamp


def parse_value(raw: Any) -> Decimal:
    """Parse a string-encoded decimal, stripping grouping separators first."""
    if raw is None:
        raise DecodeError("Deal entry missing 'value'")
    try:
        value = Decimal(str(raw).replace(",", "").strip())
    except InvalidOperation:
        raise DecodeError(f"Invalid value: {raw!r}")
    if not value.is_finite():
        raise DecodeError(f"Invalid value: {raw!r}")
    if value.adjusted() >= MAX_VALUE_DIGITS:
        raise DecodeError(f"Value out of range: {raw!r}")
    return value
