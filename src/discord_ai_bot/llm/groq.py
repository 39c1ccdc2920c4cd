"""
Primary provider client: Groq's OpenAI-compatible chat completions API.
"""

from typing import Any, Dict, List, Optional

import aiohttp
from pydantic import ValidationError

from discord_ai_bot.config import GroqConfig
from discord_ai_bot.conversation.tokens import TokenEstimator
from discord_ai_bot.llm.base import ProviderClient
from discord_ai_bot.llm.models import ChatMessage, ChatRequest, ChatResponse, ProviderResponse
from discord_ai_bot.utils.exceptions import UnknownProviderError
from discord_ai_bot.utils.logging import log_llm_interaction


class GroqClient(ProviderClient):
    """
    Chat-completion client for the primary provider.

    Context is trimmed by estimated tokens, since the API bills and limits
    by tokens.
    """

    name = "groq"
    label = "Groq"

    def __init__(
        self,
        config: GroqConfig,
        session: Optional[aiohttp.ClientSession] = None,
        estimator: Optional[TokenEstimator] = None,
    ) -> None:
        super().__init__(config, session=session)
        self.estimator = estimator or TokenEstimator()

    @property
    def endpoint(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/chat/completions"

    @property
    def context_budget(self) -> int:
        return int(self.config.max_context_tokens * self.config.context_budget_ratio)

    def message_cost(self, message: ChatMessage) -> int:
        return self.estimator.count_message_tokens(message)

    def build_payload(self, messages: List[ChatMessage]) -> Dict[str, Any]:
        request = ChatRequest(
            model=self.config.model_name,
            messages=messages,
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
            top_p=self.config.top_p,
            stream=False,
        )
        return request.model_dump(exclude_none=True)

    def parse_response(self, data: Any, latency_ms: float) -> ProviderResponse:
        try:
            chat_response = ChatResponse.model_validate(data)
        except ValidationError as e:
            raise UnknownProviderError(
                "Invalid response format from Groq API",
                provider=self.name,
                original_error=e,
            )

        content = chat_response.content.strip()
        if not content:
            raise UnknownProviderError(
                "Groq API returned an empty completion",
                provider=self.name,
                context={"choices": len(chat_response.choices)},
            )

        usage = chat_response.usage
        finish_reason = chat_response.choices[0].finish_reason
        log_llm_interaction(
            provider=self.name,
            model=self.config.model_name,
            prompt_tokens=usage.prompt_tokens if usage else None,
            completion_tokens=usage.completion_tokens if usage else None,
            total_tokens=usage.total_tokens if usage else None,
            response_time_ms=latency_ms,
            finish_reason=finish_reason,
        )

        return ProviderResponse(
            content=content,
            provider=self.name,
            model=chat_response.model or self.config.model_name,
            usage=usage,
            finish_reason=finish_reason,
            latency_ms=latency_ms,
        )

    def get_model_info(self) -> Dict[str, Any]:
        return {
            "name": "Groq LLaMA 3.1",
            "provider": "Groq",
            "model": self.config.model_name,
            "features": ["Ultra-fast inference", "Low latency", "128K context"],
            "limits": "Daily request quota",
        }
