"""
Data models for provider API interactions.

This module defines Pydantic models for structured data exchange
with the two upstream APIs: the chat-completion style primary provider
and the text-generation style fallback provider. It also defines the
unified response every provider client returns.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class MessageRole(str, Enum):
    """Enum for message roles in chat conversations."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """
    A single turn in a conversation.

    Turns are immutable once created; conversation history is an ordered
    list of them, oldest first.

    Attributes:
        role: The role of the message sender
        content: The text content of the message
    """

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    role: MessageRole = Field(
        description="The role of the message sender"
    )
    content: str = Field(
        description="The text content of the message"
    )

    @property
    def is_system(self) -> bool:
        return self.role == MessageRole.SYSTEM


class ChatRequest(BaseModel):
    """
    Request body for the primary provider's chat completion endpoint.

    Attributes:
        model: The name of the model to use
        messages: List of messages in the conversation
        max_tokens: Maximum tokens to generate
        temperature: Sampling temperature (0.0 to 2.0)
        top_p: Nucleus sampling parameter
        stream: Whether to stream the response
    """

    model: str = Field(
        description="The name of the model to use"
    )
    messages: List[ChatMessage] = Field(
        description="List of messages in the conversation",
        min_length=1,
    )
    max_tokens: Optional[int] = Field(
        default=None,
        description="Maximum tokens to generate",
        gt=0,
    )
    temperature: Optional[float] = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
    )
    top_p: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
    )
    stream: bool = Field(
        default=False,
        description="Whether to stream the response"
    )


class ChatChoice(BaseModel):
    """A single choice from a chat completion response."""

    index: int = 0
    message: ChatMessage
    finish_reason: Optional[str] = None


class ChatUsage(BaseModel):
    """
    Token usage information from a chat completion.

    Attributes:
        prompt_tokens: Number of tokens in the prompt
        completion_tokens: Number of tokens in the completion
        total_tokens: Total number of tokens used
    """

    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)


class ChatResponse(BaseModel):
    """
    Response body of the primary provider's chat completion endpoint.

    Only the fields the bot uses are declared; anything else the provider
    sends is ignored.
    """

    id: Optional[str] = None
    object: Optional[str] = None
    created: Optional[int] = None
    model: Optional[str] = None
    choices: List[ChatChoice] = Field(default_factory=list)
    usage: Optional[ChatUsage] = None

    @property
    def content(self) -> str:
        """Get the content of the first choice."""
        if not self.choices:
            return ""
        return self.choices[0].message.content


class GenerationParameters(BaseModel):
    """Sampling parameters for the fallback text-generation endpoint."""

    max_new_tokens: int = Field(gt=0)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    top_p: float = Field(default=0.9, ge=0.0, le=1.0)
    do_sample: bool = True
    return_full_text: bool = False


class GenerationOptions(BaseModel):
    """Request options for the fallback text-generation endpoint."""

    wait_for_model: bool = True
    use_cache: bool = False


class TextGenerationRequest(BaseModel):
    """
    Request body for the fallback provider.

    Attributes:
        inputs: The flattened prompt, with role-boundary markers
        parameters: Sampling parameters
        options: Request options
        provider: Optional inference provider to route through
    """

    inputs: str
    parameters: GenerationParameters
    options: GenerationOptions = Field(default_factory=GenerationOptions)
    provider: Optional[str] = None


class ProviderResponse(BaseModel):
    """
    Unified result of a successful provider call.

    Attributes:
        content: The generated reply text
        provider: Provider name ("groq" or "huggingface")
        model: Model that produced the reply
        usage: Token usage, when the provider reports it
        finish_reason: Why generation stopped, when reported
        latency_ms: Round-trip time of the HTTP call
        created_at: When the response was received
    """

    content: str
    provider: str
    model: str
    usage: Optional[ChatUsage] = None
    finish_reason: Optional[str] = None
    latency_ms: float = 0.0
    created_at: datetime = Field(default_factory=datetime.now)
    metadata: Dict[str, Any] = Field(default_factory=dict)
