"""Provider clients and wire models for the hosted LLM APIs."""

from discord_ai_bot.llm.models import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    MessageRole,
    ProviderResponse,
    TextGenerationRequest,
)

__all__ = [
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "MessageRole",
    "ProviderResponse",
    "TextGenerationRequest",
]
