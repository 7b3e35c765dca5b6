"""
Telegram Transport
==================

Telegram Bot API client for the big-deal watcher.

Responsibilities:
- Sending text messages (deal notifications and command replies) to a chat
- Long-polling getUpdates for incoming commands
- Reply keyboard markup for the command buttons
"""

import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from ..config import config

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.telegram.org"

# Rate limiting constants
MAX_MESSAGES_PER_MINUTE = 600  # Global rate limit (Telegram allows ~30/sec)


@dataclass
class BotConfig:
    """Configuration for the Telegram bot."""
    bot_token: str
    dry_run: bool = False
    max_message_length: int = 4000
    min_message_interval: float = 0.05
    updates_timeout: int = 60


class TelegramBot:
    """
    Telegram Bot API client.

    Sends plain-text messages to any chat and receives updates via long
    polling. Includes rate limiting to prevent Telegram API abuse.
    """

    def __init__(self, bot_config: BotConfig):
        """
        Initialize the bot client.

        Args:
            bot_config: BotConfig with token and settings
        """
        self.config = bot_config
        self._validate()

        # Rate limiting state, shared by executor threads
        self._lock = threading.Lock()
        self._last_message_time: float = 0
        self._messages_this_minute: List[float] = []

        self._session = requests.Session()

    @classmethod
    def from_env(cls, dry_run: bool = False) -> Optional["TelegramBot"]:
        """
        Create TelegramBot from environment variables.

        Returns:
            TelegramBot instance if configured (or dry run), None otherwise
        """
        bot_token = os.environ.get("TELEGRAM_BOT_TOKEN", "")

        if not bot_token and not dry_run:
            logger.warning("Telegram not configured (set TELEGRAM_BOT_TOKEN)")
            return None

        bot_config = BotConfig(
            bot_token=bot_token,
            dry_run=dry_run,
            max_message_length=config.max_message_length,
            min_message_interval=config.min_message_interval_sec,
            updates_timeout=config.updates_timeout_sec,
        )
        return cls(bot_config)

    def _validate(self):
        """Validate configuration."""
        if not self.config.dry_run and not self.config.bot_token:
            raise ValueError("TELEGRAM_BOT_TOKEN is required (or use --dry-run)")

    def _url(self, method: str) -> str:
        return f"{API_BASE_URL}/bot{self.config.bot_token}/{method}"

    def _check_rate_limit(self) -> bool:
        """
        Check if we're within rate limits.

        Returns:
            True if we can send, False if rate limited
        """
        now = time.time()

        # Clean up old timestamps (older than 1 minute)
        self._messages_this_minute = [t for t in self._messages_this_minute if now - t < 60]

        if len(self._messages_this_minute) >= MAX_MESSAGES_PER_MINUTE:
            logger.warning(f"Rate limited: {len(self._messages_this_minute)} messages in last minute")
            return False

        return True

    def _enforce_message_interval(self):
        """Enforce minimum interval between messages."""
        elapsed = time.time() - self._last_message_time

        if elapsed < self.config.min_message_interval:
            time.sleep(self.config.min_message_interval - elapsed)

    def _truncate_message(self, text: str) -> str:
        """Truncate message to Telegram's character limit."""
        if len(text) > self.config.max_message_length:
            return text[:self.config.max_message_length - 20] + "\n... (truncated)"
        return text

    def send_text(
        self,
        chat_id: Any,
        text: str,
        reply_markup: Optional[Dict[str, Any]] = None,
    ) -> Optional[int]:
        """
        Send a plain-text message.

        Args:
            chat_id: Target chat
            text: Message text
            reply_markup: Optional keyboard markup

        Returns:
            message_id if successful, None otherwise
        """
        if not text:
            return None
        text = self._truncate_message(text)

        if self.config.dry_run:
            logger.info(f"[DRY RUN] Would send to {chat_id}:\n{text}")
            return 999999

        with self._lock:
            if not self._check_rate_limit():
                logger.warning("Message dropped due to rate limiting")
                return None

            self._enforce_message_interval()

            payload = {"chat_id": chat_id, "text": text}
            if reply_markup is not None:
                payload["reply_markup"] = reply_markup

            try:
                response = self._session.post(self._url("sendMessage"), json=payload, timeout=10)
                response.raise_for_status()

                # Record successful send for rate limiting
                now = time.time()
                self._last_message_time = now
                self._messages_this_minute.append(now)

                message_id = response.json().get("result", {}).get("message_id")
                logger.debug(f"Telegram message sent to {chat_id} (message_id: {message_id})")
                return message_id

            except requests.exceptions.Timeout:
                logger.error("Telegram request timed out")
                return None
            except requests.exceptions.HTTPError as e:
                # Log status code without exposing token in URL
                status_code = e.response.status_code if e.response is not None else "unknown"
                logger.error(f"Telegram HTTP error: {status_code}")
                if status_code == 429:
                    logger.warning("Telegram rate limit hit (429) - backing off")
                return None
            except requests.exceptions.ConnectionError:
                logger.error("Telegram connection error - network issue")
                return None
            except requests.exceptions.RequestException:
                # Generic request error - don't log exception details which may contain URL/token
                logger.error("Telegram request failed")
                return None
            except ValueError:
                logger.error("Telegram returned a malformed response")
                return None

    def get_updates(self, offset: Optional[int] = None, timeout: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Long-poll for new updates.

        Args:
            offset: Identifier of the first update to return
            timeout: Long-poll timeout in seconds (default from config)

        Returns:
            List of update objects (empty on error or in dry run)
        """
        if self.config.dry_run and not self.config.bot_token:
            return []

        timeout = self.config.updates_timeout if timeout is None else timeout
        params: Dict[str, Any] = {"timeout": timeout, "allowed_updates": '["message"]'}
        if offset is not None:
            params["offset"] = offset

        try:
            response = self._session.get(self._url("getUpdates"), params=params, timeout=timeout + 10)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.Timeout:
            logger.debug("getUpdates timed out")
            return []
        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else "unknown"
            logger.error(f"Telegram getUpdates HTTP error: {status_code}")
            return []
        except requests.exceptions.RequestException:
            logger.error("Telegram getUpdates failed")
            return []
        except ValueError:
            logger.error("Telegram getUpdates returned malformed JSON")
            return []

        if not data.get("ok"):
            logger.error(f"Telegram getUpdates not ok: {data.get('description', '')}")
            return []
        return data.get("result", [])

    def close(self):
        self._session.close()


# =============================================================================
# Keyboard markup
# =============================================================================

def reply_keyboard(rows: List[List[str]]) -> Dict[str, Any]:
    """Build a persistent reply keyboard from rows of button labels."""
    return {
        "keyboard": [[{"text": label} for label in row] for row in rows],
        "resize_keyboard": True,
    }


def remove_keyboard() -> Dict[str, Any]:
    return {"remove_keyboard": True}
