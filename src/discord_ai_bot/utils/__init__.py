"""Utility modules for the Discord AI Bot."""

from discord_ai_bot.utils.exceptions import (
    DiscordAIBotError,
    ConfigurationError,
    DatabaseError,
    ProviderError,
    NoProviderAvailableError,
)
from discord_ai_bot.utils.logging import setup_logging

__all__ = [
    "DiscordAIBotError",
    "ConfigurationError",
    "DatabaseError",
    "ProviderError",
    "NoProviderAvailableError",
    "setup_logging",
]
