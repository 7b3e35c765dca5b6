"""
Shared fixtures and fakes for the test suite. No test touches the network.
"""

import sys
import threading
from decimal import Decimal
from pathlib import Path

import pytest

# Make `import dealwatch` work without installing the package
ROOT = Path(__file__).parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dealwatch.models import Deal, Side


def make_deal(timestamp: int, value="600000", side: Side = Side.BUY, symbol: str = "BTCUSDT") -> Deal:
    return Deal(symbol=symbol, side=side, timestamp=timestamp, value=Decimal(value))


class RecordingTransport:
    """Collects everything sent through send_text."""

    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)
        self._lock = threading.Lock()

    def send_text(self, chat_id, text, reply_markup=None):
        if chat_id in self.fail_for:
            raise RuntimeError(f"transport down for {chat_id}")
        with self._lock:
            self.sent.append((chat_id, text, reply_markup))
        return 1

    def texts_for(self, chat_id):
        return [text for cid, text, _ in self.sent if cid == chat_id]


class TickingFeed:
    """Feed that produces one brand-new deal on every fetch."""

    def __init__(self, value="600000", start: int = 1000):
        self.value = value
        self.timestamp = start
        self.calls = 0

    async def fetch(self):
        self.calls += 1
        self.timestamp += 1
        return [make_deal(self.timestamp, self.value)]


@pytest.fixture
def transport():
    return RecordingTransport()
