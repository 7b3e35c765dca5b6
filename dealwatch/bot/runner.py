"""
Bot Service

Main loop that:
1. Long-polls Telegram for incoming messages
2. Routes each message through the CommandRouter in its own task, in order
   per chat, so one chat waiting on the feed never holds up another
3. Leaves deal polling to the SubscriptionManager's per-chat loops
"""

import asyncio
import logging
from typing import Any, Dict, Hashable, Optional, Set

from ..alerts.telegram import TelegramBot
from ..api.bybit import BybitFeedClient
from ..config import config
from ..core.formatter import resolve_timezone
from ..core.poll_cycle import PollCycle
from ..core.subscriptions import SubscriptionManager
from .commands import CommandRouter

logger = logging.getLogger(__name__)


class BotService:
    """
    Wires the feed client, subscription manager and Telegram transport
    together and runs the update loop until stopped.
    """

    # Seconds stop() waits for in-flight message handlers before cancelling them
    drain_timeout = 5.0

    def __init__(
        self,
        bot: TelegramBot,
        client: BybitFeedClient = None,
        poll_interval_sec: float = None,
        default_threshold: int = None,
    ):
        """
        Initialize the service.

        Args:
            bot: Telegram transport
            client: Feed client (default: BybitFeedClient from config)
            poll_interval_sec: Seconds between deal polls per chat
            default_threshold: Initial minimum deal value
        """
        self.bot = bot
        self.client = client or BybitFeedClient()
        cycle = PollCycle(self.client, tz=resolve_timezone(config.display_timezone))
        self.manager = SubscriptionManager(
            cycle,
            transport=bot,
            poll_interval_sec=poll_interval_sec,
            default_threshold=default_threshold,
        )
        self.router = CommandRouter(self.manager, bot)

        self._running = False
        self._offset: Optional[int] = None
        # Newest pending handler per chat; each handler waits for the one before it
        self._chat_tasks: Dict[Hashable, asyncio.Task] = {}
        self._handlers: Set[asyncio.Task] = set()

    async def start(self):
        """Start the service and run until stop() is called."""
        logger.info("Starting bot service...")
        self._running = True

        try:
            await self._main_loop()
        finally:
            await self.stop()

    async def stop(self):
        """Stop all subscriptions and release resources."""
        logger.info("Stopping bot service...")
        self._running = False

        if self._handlers:
            # Let in-flight commands finish, but don't wait out a stuck fetch
            _, pending = await asyncio.wait(set(self._handlers), timeout=self.drain_timeout)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(f"Cancelled {len(pending)} unfinished message handlers")
                await asyncio.gather(*pending, return_exceptions=True)

        await self.manager.close()
        await self.client.close()

    async def _main_loop(self):
        """Fetch updates and dispatch them."""
        loop = asyncio.get_running_loop()

        while self._running:
            try:
                updates = await loop.run_in_executor(None, self.bot.get_updates, self._offset)
                for update in updates:
                    self._offset = update.get("update_id", 0) + 1
                    self._dispatch(update)

                if not updates and self.bot.config.dry_run:
                    # No real long poll to wait on
                    await asyncio.sleep(1)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Error in update loop: {e}")
                await asyncio.sleep(5)  # Back off on error

    def _dispatch(self, update: Dict[str, Any]):
        message = update.get("message")
        if not message:
            return

        chat_id = message.get("chat", {}).get("id")
        text = message.get("text")
        if chat_id is None or not text:
            return

        logger.info(f"Message from {chat_id}: {text[:50]!r}")
        previous = self._chat_tasks.get(chat_id)
        task = asyncio.create_task(self._handle(chat_id, text, previous), name=f"chat-{chat_id}")
        self._chat_tasks[chat_id] = task
        self._handlers.add(task)
        task.add_done_callback(lambda t: self._handler_done(chat_id, t))

    async def _handle(self, chat_id: Hashable, text: str, previous: Optional[asyncio.Task]):
        """Handle one message once the chat's previous message is done."""
        if previous is not None and not previous.done():
            await asyncio.wait([previous])
        try:
            await self.router.handle(chat_id, text)
        except Exception as e:
            logger.exception(f"Failed to handle message from {chat_id}: {e}")

    def _handler_done(self, chat_id: Hashable, task: asyncio.Task):
        self._handlers.discard(task)
        if self._chat_tasks.get(chat_id) is task:
            del self._chat_tasks[chat_id]


# =============================================================================
# Entry point for running the bot
# =============================================================================

async def run_bot(
    dry_run: bool = False,
    poll_interval_sec: float = None,
    default_threshold: int = None,
):
    """Run the bot service."""
    bot = TelegramBot.from_env(dry_run=dry_run)
    if bot is None:
        raise ValueError("TELEGRAM_BOT_TOKEN is required (or use --dry-run)")

    service = BotService(
        bot,
        poll_interval_sec=poll_interval_sec,
        default_threshold=default_threshold,
    )

    try:
        await service.start()
    finally:
        bot.close()
