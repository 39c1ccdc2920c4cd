"""
Response orchestration: from one inbound message to one reply.

For every message the orchestrator

1. counts it against the user's rate limit,
2. loads the user's recent conversation,
3. resolves the system prompt (the user's custom prompt, or the default),
4. asks the primary provider, if it is selected and has daily quota left,
5. falls back to the secondary provider if the primary was skipped or failed,
6. stores the user message and the reply, but only when a reply was produced.

Provider failures never reach the user as exceptions. They are logged and
turned into either the next step or a generic apology.
"""

import asyncio
import time
import weakref
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Union

from discord_ai_bot.config import ConversationConfig
from discord_ai_bot.conversation.store import ConversationStore
from discord_ai_bot.limits.rate_limiter import RateLimiter
from discord_ai_bot.llm.base import ProviderClient
from discord_ai_bot.llm.models import ChatMessage, MessageRole, ProviderResponse
from discord_ai_bot.utils.exceptions import NoProviderAvailableError, ProviderError
from discord_ai_bot.utils.logging import generate_correlation_id, get_logger


RATE_LIMITED_MESSAGE = (
    "⏰ You're sending messages too quickly. "
    "Please wait a moment before trying again."
)
UNAVAILABLE_MESSAGE = (
    "❌ Sorry, I'm having trouble connecting to the AI services right now. "
    "Please try again later."
)


class PromptStorage(Protocol):
    """Where users' custom system prompts live."""

    async def get_user_prompt(self, user_id: str) -> Optional[str]:
        ...


class ProviderSelection(str, Enum):
    """Which provider the orchestrator tries first."""
    AUTO = "auto"
    PRIMARY = "primary"
    FALLBACK = "fallback"


class ResultStatus(str, Enum):
    OK = "ok"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"


@dataclass
class ChatResult:
    """
    Outcome of handling one message, ready to show to the user.

    Attributes:
        status: Whether a reply was produced, and if not, why
        content: Reply text, or the user-facing failure notice
        provider: Name of the provider that answered, on success
        provider_label: Display name of that provider
    """

    status: ResultStatus
    content: str
    provider: Optional[str] = None
    provider_label: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == ResultStatus.OK


@dataclass
class BotStats:
    """Process-lifetime message counters."""

    start_time: float = field(default_factory=time.time)
    total_messages: int = 0
    groq_requests: int = 0
    huggingface_requests: int = 0
    errors: int = 0
    rate_limited: int = 0

    def uptime(self, now: float) -> float:
        return max(0.0, now - self.start_time)

    def to_dict(self, now: float) -> Dict[str, Any]:
        return {
            "totalMessages": self.total_messages,
            "groqRequests": self.groq_requests,
            "huggingfaceRequests": self.huggingface_requests,
            "errors": self.errors,
            "rateLimited": self.rate_limited,
            "startTime": self.start_time,
            "uptime": self.uptime(now),
        }


class ResponseOrchestrator:
    """
    Decides which provider answers each message.

    Components are passed in rather than created here so tests can swap
    any of them out.

    Attributes:
        primary: Provider tried first while daily quota lasts
        fallback: Provider used when the primary is skipped or fails
        rate_limiter: Per-user and global quotas
        conversation_store: Per-user conversation history
        prompt_storage: Lookup for custom system prompts (optional)
        config: Conversation settings (default prompt, lookup timeout, ...)
        selection: Current provider selection
        stats: Message counters
    """

    def __init__(
        self,
        primary: ProviderClient,
        fallback: ProviderClient,
        rate_limiter: RateLimiter,
        conversation_store: ConversationStore,
        config: ConversationConfig,
        prompt_storage: Optional[PromptStorage] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.primary = primary
        self.fallback = fallback
        self.rate_limiter = rate_limiter
        self.conversation_store = conversation_store
        self.prompt_storage = prompt_storage
        self.config = config
        self.logger = get_logger(__name__)
        self._clock = clock

        self.selection = ProviderSelection.AUTO
        self.stats = BotStats(start_time=clock())
        self._fallback_sticky = False
        self._default_prompt = config.get_system_prompt()
        self._user_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

        self.rate_limiter.add_reset_listener(self._on_quota_reset)

    def _user_lock(self, user_id: str) -> asyncio.Lock:
        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._user_locks[user_id] = lock
        return lock

    async def handle_message(self, user_id: str, text: str) -> ChatResult:
        """
        Produce the reply to one message from ``user_id``.

        Messages from the same user are handled one at a time so that their
        context reads and writes do not interleave.

        Returns:
            The reply, or the notice to show when no reply was produced
        """
        async with self._user_lock(user_id):
            return await self._handle_message(user_id, text)

    async def clear_context(self, user_id: str) -> bool:
        """Drop the history of ``user_id`` once any message in flight for them has finished."""
        async with self._user_lock(user_id):
            return self.conversation_store.clear_context(user_id)

    async def _handle_message(self, user_id: str, text: str) -> ChatResult:
        self.stats.total_messages += 1

        if not self.rate_limiter.admit_user(user_id):
            self.stats.rate_limited += 1
            return ChatResult(status=ResultStatus.RATE_LIMITED, content=RATE_LIMITED_MESSAGE)

        context = self.conversation_store.get_context(user_id)
        system_prompt = await self.resolve_system_prompt(user_id)

        messages = [
            ChatMessage(role=MessageRole.SYSTEM, content=system_prompt),
            *context,
            ChatMessage(role=MessageRole.USER, content=text),
        ]

        try:
            response = await self.generate_response(messages, user_id=user_id)
        except NoProviderAvailableError as e:
            self.stats.errors += 1
            self.logger.error("No provider available", user_id=user_id, error=str(e))
            return ChatResult(status=ResultStatus.UNAVAILABLE, content=UNAVAILABLE_MESSAGE)

        self.conversation_store.add_message(user_id, MessageRole.USER, text)
        self.conversation_store.add_message(user_id, MessageRole.ASSISTANT, response.content)

        client = self.primary if response.provider == self.primary.name else self.fallback
        return ChatResult(
            status=ResultStatus.OK,
            content=response.content,
            provider=response.provider,
            provider_label=client.label,
        )

    async def resolve_system_prompt(self, user_id: str) -> str:
        """
        The user's custom system prompt, or the default one.

        A failed or slow lookup is logged and the default is used.
        """
        if self.prompt_storage is None:
            return self._default_prompt

        try:
            custom_prompt = await asyncio.wait_for(
                self.prompt_storage.get_user_prompt(user_id),
                timeout=self.config.prompt_lookup_timeout,
            )
        except Exception as e:
            self.logger.warning(
                "Custom prompt lookup failed, using default",
                user_id=user_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return self._default_prompt

        if custom_prompt and custom_prompt.strip():
            return custom_prompt
        return self._default_prompt

    def _should_try_primary(self) -> bool:
        if self.selection == ProviderSelection.FALLBACK:
            return False
        if self.selection == ProviderSelection.AUTO and self._fallback_sticky:
            return False
        return self.rate_limiter.has_global_capacity()

    async def generate_response(
        self,
        messages: List[ChatMessage],
        user_id: Optional[str] = None,
    ) -> ProviderResponse:
        """
        Get one reply for ``messages``, failing over from primary to fallback.

        The primary is never retried. Daily quota is consumed only when the
        primary answers.

        Raises:
            NoProviderAvailableError: If the fallback failed too
        """
        correlation_id = generate_correlation_id()
        log = self.logger.bind(user_id=user_id, correlation_id=correlation_id)

        primary_attempted = self._should_try_primary()
        if primary_attempted:
            try:
                response = await self.primary.generate(messages)
            except ProviderError as e:
                log.warning(
                    "Primary provider failed, falling back",
                    provider=e.provider,
                    error_type=type(e).__name__,
                    status_code=e.status_code,
                    fatal=e.fatal,
                    error=str(e),
                )
            else:
                self.rate_limiter.consume_global()
                self.stats.groq_requests += 1
                return response
        else:
            log.info(
                "Skipping primary provider",
                selection=self.selection.value,
                sticky_fallback=self._fallback_sticky,
            )

        try:
            response = await self.fallback.generate(messages)
        except ProviderError as e:
            log.error(
                "Fallback provider failed",
                provider=e.provider,
                error_type=type(e).__name__,
                status_code=e.status_code,
                error=str(e),
            )
            raise NoProviderAvailableError(
                "All providers failed",
                context={
                    "primary_attempted": primary_attempted,
                    "correlation_id": correlation_id,
                },
                original_error=e,
            )

        self.stats.huggingface_requests += 1
        if self.config.sticky_fallback and self.selection == ProviderSelection.AUTO:
            if not self._fallback_sticky:
                log.info("Switching to fallback provider until the next quota reset")
            self._fallback_sticky = True
        return response

    def force_provider(
        self, selection: Union[ProviderSelection, str]
    ) -> ProviderSelection:
        """
        Set the provider selection. Returns the previous one.

        Raises:
            ValueError: If ``selection`` is not a known selection
        """
        new_selection = ProviderSelection(selection)
        previous = self.selection
        self.selection = new_selection
        self._fallback_sticky = False
        self.logger.info(
            "Provider selection changed",
            previous=previous.value,
            selection=new_selection.value,
        )
        return previous

    def _on_quota_reset(self) -> None:
        if self._fallback_sticky:
            self.logger.info("Quota reset, preferring primary provider again")
        self._fallback_sticky = False

    @property
    def current_provider(self) -> ProviderClient:
        """The provider the next message will be sent to first."""
        return self.primary if self._should_try_primary() else self.fallback

    def get_stats(self) -> Dict[str, Any]:
        """Combined snapshot of counters, quotas and conversations."""
        return {
            "bot": self.stats.to_dict(self._clock()),
            "rateLimits": self.rate_limiter.get_all_stats(),
            "conversations": self.conversation_store.get_all_stats(),
            "provider": {
                "selection": self.selection.value,
                "current": self.current_provider.name,
                "stickyFallback": self._fallback_sticky,
            },
        }
