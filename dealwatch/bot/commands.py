"""
Command Router

Maps chat text to SubscriptionManager operations and sends the replies.
The commands match the reply keyboard buttons:

    Subscribe                          start notifications for this chat
    Unsubscribe                        stop notifications for this chat
    Show minimum displayed value $     show this chat's threshold
    Set minimum displayed value $      prompt for a new threshold
    Set minimum displayed value $<n>   set this chat's threshold to n
"""

import asyncio
import logging
from typing import Any, Dict, Hashable, Optional, Set

from ..alerts.telegram import remove_keyboard, reply_keyboard
from ..core.subscriptions import SubscriptionManager

logger = logging.getLogger(__name__)

CMD_SUBSCRIBE = "Subscribe"
CMD_UNSUBSCRIBE = "Unsubscribe"
CMD_SET_THRESHOLD = "Set minimum displayed value $"
CMD_SHOW_THRESHOLD = "Show minimum displayed value $"

COMMAND_KEYBOARD = [
    [CMD_SUBSCRIBE, CMD_UNSUBSCRIBE],
    [CMD_SET_THRESHOLD, CMD_SHOW_THRESHOLD],
]

MSG_STARTED = "Bot started."
MSG_STOPPED = "Bot stopped."
MSG_PROMPT_VALUE = "Enter the new minimum value:"
MSG_INVALID_VALUE = "Invalid input. Please enter a valid number."


def parse_threshold(text: str) -> Optional[int]:
    """
    Parse a user-supplied threshold.

    Accepts plain integers with optional "," or "_" grouping. Returns None
    for anything else, including negative numbers.
    """
    cleaned = text.strip().replace(",", "").replace("_", "")
    if not cleaned.isdecimal():
        return None
    return int(cleaned)


class CommandRouter:
    """Handles one incoming chat message at a time."""

    def __init__(self, manager: SubscriptionManager, transport: Any):
        """
        Args:
            manager: SubscriptionManager that owns the polling loops
            transport: Object with send_text(chat_id, text, reply_markup=None)
        """
        self.manager = manager
        self.transport = transport
        self._awaiting_value: Set[Hashable] = set()

    async def handle(self, chat_id: Hashable, text: str) -> bool:
        """
        Dispatch a message.

        Returns:
            True if the text was a recognised command
        """
        text = (text or "").strip()

        if text == CMD_SUBSCRIBE:
            self._awaiting_value.discard(chat_id)
            await self._reply(chat_id, MSG_STARTED, reply_keyboard(COMMAND_KEYBOARD))
            await self.manager.subscribe(chat_id)
            return True

        if text == CMD_UNSUBSCRIBE:
            self._awaiting_value.discard(chat_id)
            self.manager.unsubscribe(chat_id)
            await self._reply(chat_id, MSG_STOPPED, remove_keyboard())
            return True

        if text.startswith(CMD_SHOW_THRESHOLD):
            value = self.manager.get_threshold(chat_id)
            await self._reply(chat_id, f"Current minimum value: $ {value}")
            return True

        if text == CMD_SET_THRESHOLD:
            self._awaiting_value.add(chat_id)
            await self._reply(chat_id, MSG_PROMPT_VALUE)
            return True

        if text.startswith(CMD_SET_THRESHOLD):
            await self._set_threshold(chat_id, text[len(CMD_SET_THRESHOLD):])
            return True

        if chat_id in self._awaiting_value:
            await self._set_threshold(chat_id, text)
            return True

        logger.debug(f"Ignoring unrecognised message from {chat_id}: {text[:50]!r}")
        return False

    async def _set_threshold(self, chat_id: Hashable, raw: str):
        # The prompt gets one answer, valid or not
        self._awaiting_value.discard(chat_id)
        value = parse_threshold(raw)
        if value is None:
            await self._reply(chat_id, MSG_INVALID_VALUE)
            return

        self.manager.set_threshold(value, recipient=chat_id)
        await self._reply(chat_id, f"Minimum value set to: $ {value}")

        # Show what the new threshold lets through right away
        await self.manager.poll_now(chat_id)

    async def _reply(self, chat_id: Hashable, text: str, reply_markup: Optional[Dict[str, Any]] = None):
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None, lambda: self.transport.send_text(chat_id, text, reply_markup=reply_markup)
        )
