"""Test configuration and utilities."""

import asyncio
import json
from typing import Any, Dict, List, Optional, Union
from unittest.mock import AsyncMock

import pytest

from discord_ai_bot.config import (
    ConversationConfig,
    DatabaseConfig,
    GroqConfig,
    HuggingFaceConfig,
    MonitoringConfig,
    RateLimitConfig,
)
from discord_ai_bot.conversation.orchestrator import ResponseOrchestrator
from discord_ai_bot.conversation.store import ConversationStore
from discord_ai_bot.limits.rate_limiter import RateLimiter
from discord_ai_bot.llm.models import ProviderResponse

# 2024-01-15 12:00:00 UTC
START_TIME = 1705320000.0


class FakeClock:
    """Manually advanced clock, injected wherever components read the time."""

    def __init__(self, now: float = START_TIME) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeResponse:
    """Stand-in for an aiohttp response used as ``async with session.post(...)``."""

    def __init__(
        self,
        status: int = 200,
        body: Union[bytes, str, Dict, List, None] = None,
        text_error: Optional[BaseException] = None,
    ) -> None:
        self.status = status
        if isinstance(body, bytes):
            self._body = body
        elif isinstance(body, str):
            self._body = body.encode("utf-8")
        else:
            self._body = json.dumps(body).encode("utf-8")
        self.text_error = text_error

    async def text(self, encoding: Optional[str] = None, errors: str = "strict") -> str:
        if self.text_error is not None:
            raise self.text_error
        return self._body.decode(encoding or "utf-8", errors=errors)

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        return None


class _RaisingContext:
    def __init__(self, error: BaseException) -> None:
        self.error = error

    async def __aenter__(self):
        raise self.error

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        return None


class FakeSession:
    """
    Minimal aiohttp.ClientSession replacement.

    Each ``post`` consumes the next queued outcome: a FakeResponse, or an
    exception to raise when the request is entered.
    """

    def __init__(self, *outcomes: Union[FakeResponse, BaseException]) -> None:
        self.outcomes = list(outcomes)
        self.requests: List[Dict[str, Any]] = []
        self.closed = False

    def post(self, url: str, json: Optional[Dict[str, Any]] = None, **kwargs: Any):
        self.requests.append({"url": url, "json": json})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            return _RaisingContext(outcome)
        return outcome

    async def close(self) -> None:
        self.closed = True


class FakeProvider:
    """Provider double with the attributes the orchestrator and admin use."""

    def __init__(self, name: str, label: str) -> None:
        self.name = name
        self.label = label
        self.generate = AsyncMock(side_effect=self._reply)
        self.test_connection = AsyncMock(return_value=True)

    async def _reply(self, messages):
        return ProviderResponse(
            content=f"reply from {self.name}",
            provider=self.name,
            model=f"{self.name}-model",
        )

    def get_model_info(self) -> Dict[str, Any]:
        return {
            "name": self.label,
            "provider": self.label,
            "model": f"{self.name}-model",
            "features": [],
            "limits": "none",
        }


def chat_completion_body(content: str = "Hello there!") -> Dict[str, Any]:
    return {
        "id": "chatcmpl-123",
        "object": "chat.completion",
        "created": 1705320000,
        "model": "llama-3.1-8b-instant",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 12, "completion_tokens": 4, "total_tokens": 16},
    }


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rate_limit_config() -> RateLimitConfig:
    return RateLimitConfig(
        user_max_messages=5,
        user_window_seconds=60,
        global_daily_limit=3,
        cleanup_interval_seconds=3600,
        user_state_ttl_seconds=86400,
    )


@pytest.fixture
def conversation_config() -> ConversationConfig:
    return ConversationConfig(
        max_context_messages=10,
        timeout_seconds=3600,
        cleanup_interval_seconds=600,
        system_prompt="You are a test assistant.",
        system_prompt_file=None,
        prompt_lookup_timeout=0.05,
        sticky_fallback=False,
    )


@pytest.fixture
def groq_config() -> GroqConfig:
    return GroqConfig(
        api_key="test-groq-key",
        base_url="https://groq.test/openai/v1",
        model_name="llama-3.1-8b-instant",
        max_tokens=256,
        timeout=5,
        max_context_tokens=4096,
        context_budget_ratio=0.7,
    )


@pytest.fixture
def huggingface_config() -> HuggingFaceConfig:
    return HuggingFaceConfig(
        api_key="test-hf-key",
        base_url="https://hf.test",
        model_name="meta-llama/Llama-3.1-8B-Instruct",
        inference_provider="groq",
        max_new_tokens=256,
        timeout=5,
        max_context_chars=16384,
        context_budget_ratio=0.7,
    )


@pytest.fixture
def database_config(tmp_path) -> DatabaseConfig:
    return DatabaseConfig(url=f"sqlite:///{tmp_path / 'test.db'}", echo=False)


@pytest.fixture
def monitoring_config() -> MonitoringConfig:
    return MonitoringConfig(enabled=True, host="127.0.0.1", port=5000, api_key="test-admin-key")


@pytest.fixture
def rate_limiter(rate_limit_config, clock) -> RateLimiter:
    return RateLimiter(rate_limit_config, clock=clock)


@pytest.fixture
def conversation_store(conversation_config, clock) -> ConversationStore:
    return ConversationStore(conversation_config, clock=clock)


@pytest.fixture
def primary() -> FakeProvider:
    return FakeProvider("groq", "Groq")


@pytest.fixture
def fallback() -> FakeProvider:
    return FakeProvider("huggingface", "HuggingFace")


@pytest.fixture
def orchestrator(primary, fallback, rate_limiter, conversation_store, conversation_config, clock):
    return ResponseOrchestrator(
        primary=primary,
        fallback=fallback,
        rate_limiter=rate_limiter,
        conversation_store=conversation_store,
        config=conversation_config,
        clock=clock,
    )


async def yield_to_loop(times: int = 5) -> None:
    """Let freshly created background tasks run up to their next await."""
    for _ in range(times):
        await asyncio.sleep(0)
