from .telegram import BotConfig, TelegramBot, remove_keyboard, reply_keyboard

__all__ = [
    "BotConfig",
    "TelegramBot",
    "remove_keyboard",
    "reply_keyboard",
]
