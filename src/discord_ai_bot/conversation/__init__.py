"""Conversation memory, token estimation and response orchestration."""

from discord_ai_bot.conversation.store import ConversationState, ConversationStore
from discord_ai_bot.conversation.tokens import TokenEstimator

__all__ = ["ConversationState", "ConversationStore", "TokenEstimator"]
