"""
Shared plumbing for upstream AI provider clients.

A provider client turns a list of conversation turns into one reply. It
owns a single aiohttp session, shapes the request for its API, and maps
every failure onto the ProviderError taxonomy. Clients never retry: one
call to :meth:`ProviderClient.generate` is exactly one HTTP request, and
deciding what to do after a failure is the orchestrator's job.
"""

import asyncio
import json
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import aiohttp

from discord_ai_bot import __version__
from discord_ai_bot.llm.models import ChatMessage, MessageRole, ProviderResponse
from discord_ai_bot.utils.exceptions import (
    ApiError,
    AuthenticationError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitedError,
    ServerError,
    UnknownProviderError,
)
from discord_ai_bot.utils.logging import (
    generate_correlation_id,
    get_logger,
    log_http_request,
    log_http_response,
)


ERROR_BODY_LIMIT = 500

CONNECTION_TEST_PROMPT = "Hello, are you working?"


def trim_context(
    messages: Sequence[ChatMessage],
    budget: int,
    cost: Callable[[ChatMessage], int],
) -> List[ChatMessage]:
    """
    Fit a conversation into ``budget`` by dropping the oldest turns.

    System turns are always kept and count against the budget first. The
    remaining turns are taken newest first until the next one would not
    fit; everything older than that is dropped. The result lists system
    turns first, followed by the kept turns in chronological order.

    Args:
        messages: Full conversation, oldest first
        budget: Maximum total cost of the returned turns
        cost: Cost of a single turn (estimated tokens, characters, ...)

    Returns:
        The trimmed conversation
    """
    system_turns = [m for m in messages if m.is_system]
    other_turns = [m for m in messages if not m.is_system]

    total = sum(cost(m) for m in system_turns)
    kept: List[ChatMessage] = []
    for message in reversed(other_turns):
        message_cost = cost(message)
        if total + message_cost > budget:
            break
        kept.append(message)
        total += message_cost

    kept.reverse()
    return system_turns + kept


class ProviderClient(ABC):
    """
    Base class for the primary and fallback provider clients.

    Subclasses describe their API (endpoint, payload, response parsing and
    the per-turn cost used for trimming); the HTTP call, logging and error
    classification live here.

    Attributes:
        name: Short provider identifier used in logs and stats
        label: Human-readable provider name shown to users
        config: Provider settings (credentials, model, limits, timeout)
    """

    name: str = "provider"
    label: str = "Provider"

    def __init__(self, config: Any, session: Optional[aiohttp.ClientSession] = None) -> None:
        self.config = config
        self.logger = get_logger(__name__).bind(provider=self.name)
        self.session = session
        self._closed = False

    # Request shaping, provided by each provider

    @property
    @abstractmethod
    def endpoint(self) -> str:
        """Full URL the generation request is posted to."""

    @property
    @abstractmethod
    def context_budget(self) -> int:
        """Trimming budget, in the unit of :meth:`message_cost`."""

    @abstractmethod
    def message_cost(self, message: ChatMessage) -> int:
        """Cost of one turn against :attr:`context_budget`."""

    @abstractmethod
    def build_payload(self, messages: List[ChatMessage]) -> Dict[str, Any]:
        """JSON body for an already-trimmed conversation."""

    @abstractmethod
    def parse_response(self, data: Any, latency_ms: float) -> ProviderResponse:
        """
        Extract the reply from a decoded 2xx body.

        Raises:
            UnknownProviderError: If the body has no usable reply
        """

    @abstractmethod
    def get_model_info(self) -> Dict[str, Any]:
        """Descriptive metadata for status displays."""

    # Shared behaviour

    def trim_context(self, messages: Sequence[ChatMessage]) -> List[ChatMessage]:
        return trim_context(messages, self.context_budget, self.message_cost)

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """
        Return the HTTP session, creating it on first use.

        Raises:
            ProviderError: If the client has been closed
        """
        if self._closed:
            raise ProviderError(f"{self.label} client has been closed", provider=self.name)

        if self.session is None or self.session.closed:
            headers = {
                "Content-Type": "application/json",
                "User-Agent": f"Discord-AI-Bot/{__version__}",
            }
            if self.config.api_key:
                headers["Authorization"] = f"Bearer {self.config.api_key}"

            self.session = aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
                raise_for_status=False,
            )
            self.logger.debug("Created new HTTP session")

        return self.session

    async def generate(self, messages: Sequence[ChatMessage]) -> ProviderResponse:
        """
        Generate a reply to ``messages``.

        The conversation is trimmed to this provider's budget before it is
        sent.

        Args:
            messages: Conversation turns, oldest first, usually starting with
                the system prompt

        Returns:
            The provider's reply

        Raises:
            ProviderError: One of its subclasses, describing what went wrong
        """
        trimmed = self.trim_context(messages)
        payload = self.build_payload(trimmed)

        self.logger.debug(
            "Sending generation request",
            model=self.config.model_name,
            message_count=len(trimmed),
            dropped_messages=len(messages) - len(trimmed),
        )

        data, latency_ms = await self._post(payload)
        return self.parse_response(data, latency_ms)

    async def _post(self, payload: Dict[str, Any]) -> Tuple[Any, float]:
        """
        Send one request and decode the JSON body of a 2xx response.

        Returns:
            The decoded body and the round-trip time in milliseconds
        """
        correlation_id = generate_correlation_id()
        log_http_request(
            method="POST",
            url=self.endpoint,
            body=payload,
            service=self.name,
            correlation_id=correlation_id,
        )

        start_time = time.time()
        try:
            session = await self._ensure_session()
            async with session.post(self.endpoint, json=payload) as response:
                response_text = await response.text(errors="replace")
                latency_ms = (time.time() - start_time) * 1000

                if not 200 <= response.status < 300:
                    raise self._handle_error_response(
                        response.status, response_text, latency_ms, correlation_id
                    )

                log_http_response(
                    status_code=response.status,
                    response_time_ms=latency_ms,
                    response_size=len(response_text.encode("utf-8")),
                    service=self.name,
                    correlation_id=correlation_id,
                )

                try:
                    return json.loads(response_text), latency_ms
                except ValueError as e:
                    raise UnknownProviderError(
                        f"{self.label} returned a body that is not JSON",
                        provider=self.name,
                        status_code=response.status,
                        context={"response_text": response_text[:ERROR_BODY_LIMIT]},
                        original_error=e,
                    )

        except ProviderError:
            raise
        except asyncio.TimeoutError as e:
            latency_ms = (time.time() - start_time) * 1000
            log_http_response(
                status_code=0,
                response_time_ms=latency_ms,
                error="Request timed out",
                service=self.name,
                correlation_id=correlation_id,
            )
            raise ProviderTimeoutError(
                f"{self.label} request timed out",
                provider=self.name,
                context={"timeout": self.config.timeout, "correlation_id": correlation_id},
                original_error=e,
            )
        except aiohttp.ClientError as e:
            latency_ms = (time.time() - start_time) * 1000
            log_http_response(
                status_code=0,
                response_time_ms=latency_ms,
                error=f"{type(e).__name__}: {e}",
                service=self.name,
                correlation_id=correlation_id,
            )
            raise UnknownProviderError(
                f"Failed to communicate with {self.label}",
                provider=self.name,
                context={"error_type": type(e).__name__, "correlation_id": correlation_id},
                original_error=e,
            )
        except Exception as e:
            self.logger.error(
                "Unexpected error during provider request",
                error_type=type(e).__name__,
                error=str(e),
                correlation_id=correlation_id,
            )
            raise UnknownProviderError(
                f"Unexpected error from {self.label}",
                provider=self.name,
                context={"error_type": type(e).__name__, "correlation_id": correlation_id},
                original_error=e,
            )

    def _handle_error_response(
        self,
        status_code: int,
        response_text: str,
        response_time_ms: float,
        correlation_id: str,
    ) -> ProviderError:
        """Log a non-2xx response and build the matching error."""
        error_body = response_text[:ERROR_BODY_LIMIT] if response_text else ""
        log_http_response(
            status_code=status_code,
            response_time_ms=response_time_ms,
            error=f"HTTP {status_code} error",
            service=self.name,
            correlation_id=correlation_id,
        )

        error = self._error_for_status(status_code, error_body)
        if error.fatal:
            self.logger.error(
                "Provider rejected credentials",
                status_code=status_code,
                error_body=error_body,
            )
        else:
            self.logger.warning(
                "Provider returned an error",
                error_type=type(error).__name__,
                status_code=status_code,
                error_body=error_body,
            )
        return error

    def _error_for_status(self, status_code: int, error_body: str) -> ProviderError:
        """Map an HTTP status onto the provider error taxonomy."""
        context = {"error_body": error_body}
        if status_code == 401:
            return AuthenticationError(
                f"{self.label} authentication failed",
                provider=self.name, status_code=status_code, context=context,
            )
        if status_code == 429:
            return RateLimitedError(
                f"{self.label} rate limit exceeded",
                provider=self.name, status_code=status_code, context=context,
            )
        if status_code >= 500:
            return ServerError(
                f"{self.label} server error",
                provider=self.name, status_code=status_code, context=context,
            )
        return ApiError(
            f"{self.label} API error: {status_code}",
            provider=self.name, status_code=status_code, context=context,
        )

    async def test_connection(self) -> bool:
        """
        Send a one-line request and report whether a reply came back.

        Only used for health checks; never raises.
        """
        try:
            await self.generate([
                ChatMessage(role=MessageRole.USER, content=CONNECTION_TEST_PROMPT)
            ])
        except ProviderError as e:
            self.logger.error("Connection test failed", error=str(e))
            return False

        self.logger.debug("Connection test passed")
        return True

    async def close(self) -> None:
        """Close the HTTP session. The client cannot be used afterwards."""
        if not self._closed:
            if self.session and not self.session.closed:
                await self.session.close()
            self._closed = True
            self.logger.debug("Provider client closed")

    async def __aenter__(self) -> "ProviderClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
