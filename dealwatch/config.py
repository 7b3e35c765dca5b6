"""
Configuration for the Big-Deal Watcher

All settings in one place for easy tuning. Values come from the environment
(optionally a project-root .env file) with the defaults below.
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

# Load .env file from project root
from dotenv import load_dotenv

_project_root = Path(__file__).parent.parent
_env_path = _project_root / ".env"
if _env_path.exists():
    load_dotenv(_env_path)


# Environment variable for each Config field
ENV_VARS = {
    "feed_url": "DEALWATCH_FEED_URL",
    "feed_symbol": "DEALWATCH_FEED_SYMBOL",
    "feed_limit": "DEALWATCH_FEED_LIMIT",
    "request_timeout_sec": "DEALWATCH_REQUEST_TIMEOUT_SEC",
    "poll_interval_ms": "DEALWATCH_POLL_INTERVAL_MS",
    "default_threshold": "DEALWATCH_DEFAULT_THRESHOLD",
    "display_timezone": "DEALWATCH_DISPLAY_TZ",
    "log_level": "DEALWATCH_LOG_LEVEL",
    "log_file": "DEALWATCH_LOG_FILE",
}


@dataclass
class Config:
    """All configuration settings."""

    # -------------------------------------------------------------------------
    # Upstream feed
    # -------------------------------------------------------------------------
    feed_url: str = "https://api2.bybit.com/contract/v5/public/support/big-deal"
    feed_symbol: str = "BTCUSDT"
    feed_limit: int = 10

    # Transport-level timeout for a single fetch (seconds)
    request_timeout_sec: float = 30.0

    # -------------------------------------------------------------------------
    # Polling
    # -------------------------------------------------------------------------
    poll_interval_ms: int = 1000

    # Minimum deal value (USD) to notify about
    default_threshold: int = 500_000

    # -------------------------------------------------------------------------
    # Display
    # -------------------------------------------------------------------------
    # IANA zone name for deal timestamps, None = process local time
    display_timezone: Optional[str] = None

    # -------------------------------------------------------------------------
    # Telegram
    # -------------------------------------------------------------------------
    max_message_length: int = 4000  # Telegram limit is 4096
    min_message_interval_sec: float = 0.05  # Telegram limit: 30 msg/sec
    updates_timeout_sec: int = 60  # long-poll timeout for getUpdates

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------
    log_level: str = "INFO"
    log_file: str = "logs/dealwatch.log"

    def __post_init__(self):
        if self.poll_interval_ms <= 0:
            raise ValueError(f"poll_interval_ms must be positive, got {self.poll_interval_ms}")
        if self.default_threshold < 0:
            raise ValueError(f"default_threshold must be >= 0, got {self.default_threshold}")
        if self.feed_limit <= 0:
            raise ValueError(f"feed_limit must be positive, got {self.feed_limit}")

    @property
    def poll_interval_sec(self) -> float:
        return self.poll_interval_ms / 1000

    @property
    def telegram_bot_token(self) -> Optional[str]:
        return os.environ.get("TELEGRAM_BOT_TOKEN")

    @classmethod
    def from_env(cls, environ=None) -> "Config":
        """
        Build a Config from environment variables.

        Args:
            environ: Mapping to read from (default: os.environ)

        Returns:
            Config with every set variable applied over the defaults

        Raises:
            ValueError: If a variable cannot be converted to its field type
        """
        environ = os.environ if environ is None else environ
        overrides = {}

        for f in fields(cls):
            raw = environ.get(ENV_VARS.get(f.name, ""))
            if raw is None or raw == "":
                continue
            default = f.default
            try:
                if isinstance(default, int):
                    overrides[f.name] = int(raw.replace("_", ""))
                elif isinstance(default, float):
                    overrides[f.name] = float(raw)
                else:
                    overrides[f.name] = raw
            except ValueError:
                raise ValueError(f"Invalid value for {ENV_VARS[f.name]}: {raw!r}")

        return cls(**overrides)


# Global config instance
config = Config.from_env()
