"""
Fallback provider client: Hugging Face text generation.

The text-generation API takes a single prompt string rather than a list
of turns, so the conversation is flattened into the LLaMA 3 chat template
before sending, and any template markers the model echoes back are
stripped from the reply.
"""

import re
from typing import Any, Dict, List, Optional

import aiohttp

from discord_ai_bot.config import HuggingFaceConfig
from discord_ai_bot.conversation.tokens import (
    BEGIN_OF_TEXT,
    END_HEADER,
    END_OF_TURN,
    START_HEADER,
)
from discord_ai_bot.llm.base import ProviderClient
from discord_ai_bot.llm.models import (
    ChatMessage,
    GenerationOptions,
    GenerationParameters,
    ProviderResponse,
    TextGenerationRequest,
)
from discord_ai_bot.utils.exceptions import ModelLoadingError, ProviderError, UnknownProviderError
from discord_ai_bot.utils.logging import log_llm_interaction


MARKER_PATTERN = re.compile(r"<\|.*?\|>")
HEADER_PATTERN = re.compile(r"<\|start_header_id\|>.*?<\|end_header_id\|>\s*")


def messages_to_prompt(messages: List[ChatMessage]) -> str:
    """
    Flatten turns into a LLaMA 3 prompt ending with an open assistant header.

    Example:
        ```python
        messages_to_prompt([ChatMessage(role="user", content="Hi")])
        # '<|begin_of_text|><|start_header_id|>user<|end_header_id|>\\nHi<|eot_id|>'
        # '<|start_header_id|>assistant<|end_header_id|>\\n'
        ```
    """
    parts = [BEGIN_OF_TEXT]
    for message in messages:
        parts.append(f"{START_HEADER}{message.role}{END_HEADER}\n{message.content}{END_OF_TURN}")
    parts.append(f"{START_HEADER}assistant{END_HEADER}\n")
    return "".join(parts)


def clean_response(text: str) -> str:
    """Strip echoed role headers, other template markers and surrounding whitespace."""
    cleaned = HEADER_PATTERN.sub("", text)
    cleaned = MARKER_PATTERN.sub("", cleaned)
    return cleaned.strip()


class HuggingFaceClient(ProviderClient):
    """
    Text-generation client for the fallback provider.

    Context is trimmed by character count, which is what the inference API
    limits on for flattened prompts.
    """

    name = "huggingface"
    label = "HuggingFace"

    def __init__(
        self,
        config: HuggingFaceConfig,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__(config, session=session)

    @property
    def endpoint(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/models/{self.config.model_name}"

    @property
    def context_budget(self) -> int:
        return int(self.config.max_context_chars * self.config.context_budget_ratio)

    def message_cost(self, message: ChatMessage) -> int:
        return len(message.content)

    def build_payload(self, messages: List[ChatMessage]) -> Dict[str, Any]:
        request = TextGenerationRequest(
            inputs=messages_to_prompt(messages),
            parameters=GenerationParameters(
                max_new_tokens=self.config.max_new_tokens,
                temperature=self.config.temperature,
                top_p=self.config.top_p,
            ),
            options=GenerationOptions(wait_for_model=self.config.wait_for_model),
            provider=self.config.inference_provider,
        )
        return request.model_dump(exclude_none=True)

    def parse_response(self, data: Any, latency_ms: float) -> ProviderResponse:
        if isinstance(data, list) and data:
            data = data[0]

        generated_text = data.get("generated_text") if isinstance(data, dict) else None
        if not isinstance(generated_text, str):
            raise UnknownProviderError(
                "Invalid response format from HuggingFace API",
                provider=self.name,
                context={"response_type": type(data).__name__},
            )

        content = clean_response(generated_text)
        if not content:
            raise UnknownProviderError(
                "HuggingFace API returned an empty generation",
                provider=self.name,
            )

        log_llm_interaction(
            provider=self.name,
            model=self.config.model_name,
            response_time_ms=latency_ms,
            inference_provider=self.config.inference_provider,
            response_length=len(content),
        )

        return ProviderResponse(
            content=content,
            provider=self.name,
            model=self.config.model_name,
            latency_ms=latency_ms,
            metadata={"inference_provider": self.config.inference_provider},
        )

    def _error_for_status(self, status_code: int, error_body: str) -> ProviderError:
        if status_code == 503:
            return ModelLoadingError(
                "HuggingFace model is loading",
                provider=self.name,
                status_code=status_code,
                context={"error_body": error_body},
            )
        return super()._error_for_status(status_code, error_body)

    def get_model_info(self) -> Dict[str, Any]:
        routed = self.config.inference_provider
        return {
            "name": "HuggingFace LLaMA 3.1",
            "provider": f"{routed.title()} via HuggingFace" if routed else "HuggingFace",
            "model": self.config.model_name,
            "features": ["Multiple model access", "Reliable fallback", "Open source"],
            "limits": "Variable based on usage",
        }
