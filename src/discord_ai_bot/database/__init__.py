"""Database layer for the Discord AI Bot."""

from discord_ai_bot.database.models import AdminAction, Base, UserPrompt
from discord_ai_bot.database.repositories import DatabaseManager

__all__ = [
    "AdminAction",
    "Base",
    "UserPrompt",
    "DatabaseManager",
]
