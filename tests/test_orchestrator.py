"""
Tests for the response orchestrator.

Covers:
- Primary replies and quota consumption
- Failover to the fallback without retrying the primary
- Quota exhaustion skipping the primary
- Rate-limited and unavailable outcomes leaving history untouched
- Custom system prompt resolution with failure and timeout fallbacks
- Forced provider selection and the optional sticky fallback
- Per-user serialization of concurrent messages and context resets
- Stats snapshot shape
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from discord_ai_bot.conversation.orchestrator import (
    RATE_LIMITED_MESSAGE,
    UNAVAILABLE_MESSAGE,
    ProviderSelection,
    ResponseOrchestrator,
    ResultStatus,
)
from discord_ai_bot.llm.groq import GroqClient
from discord_ai_bot.llm.huggingface import HuggingFaceClient
from discord_ai_bot.llm.models import ProviderResponse
from discord_ai_bot.utils.exceptions import (
    AuthenticationError,
    DatabaseError,
    ModelLoadingError,
    ServerError,
)

from conftest import FakeResponse, FakeSession


def sent_messages(provider, call=0):
    """Messages passed to ``provider.generate`` on the given call."""
    return provider.generate.await_args_list[call].args[0]


class TestPrimaryPath:

    @pytest.mark.asyncio
    async def test_primary_reply_is_stored(self, orchestrator, primary, fallback, conversation_store):
        result = await orchestrator.handle_message("u1", "hello")

        assert result.ok
        assert result.content == "reply from groq"
        assert result.provider == "groq"
        assert result.provider_label == "Groq"
        fallback.generate.assert_not_awaited()

        context = conversation_store.get_context("u1")
        assert [(m.role, m.content) for m in context] == [
            ("user", "hello"),
            ("assistant", "reply from groq"),
        ]

    @pytest.mark.asyncio
    async def test_primary_success_consumes_quota(self, orchestrator, rate_limiter):
        await orchestrator.handle_message("u1", "hello")
        assert rate_limiter.request_count == 1
        assert orchestrator.stats.groq_requests == 1

    @pytest.mark.asyncio
    async def test_request_carries_system_prompt_history_and_message(self, orchestrator, primary):
        await orchestrator.handle_message("u1", "first")
        await orchestrator.handle_message("u1", "second")

        messages = sent_messages(primary, call=1)
        assert [(m.role, m.content) for m in messages] == [
            ("system", "You are a test assistant."),
            ("user", "first"),
            ("assistant", "reply from groq"),
            ("user", "second"),
        ]


class TestFailover:

    @pytest.mark.asyncio
    async def test_authentication_failure_falls_back_without_retry(
        self, orchestrator, primary, fallback, rate_limiter
    ):
        primary.generate.side_effect = AuthenticationError("bad key", provider="groq", status_code=401)

        result = await orchestrator.handle_message("u1", "hello")

        assert result.ok
        assert result.provider == "huggingface"
        assert result.provider_label == "HuggingFace"
        assert primary.generate.await_count == 1
        assert fallback.generate.await_count == 1
        assert rate_limiter.request_count == 0
        assert orchestrator.stats.huggingface_requests == 1

    @pytest.mark.asyncio
    async def test_fallback_gets_same_messages(self, orchestrator, primary, fallback):
        primary.generate.side_effect = ServerError("down", provider="groq", status_code=500)
        await orchestrator.handle_message("u1", "hello")
        assert sent_messages(fallback) == sent_messages(primary)

    @pytest.mark.asyncio
    async def test_exhausted_quota_skips_primary(self, orchestrator, primary, fallback, rate_limiter):
        rate_limiter.consume_global()
        rate_limiter.consume_global()

        first = await orchestrator.handle_message("u1", "one")
        assert first.provider == "groq"
        assert rate_limiter.request_count == 3

        second = await orchestrator.handle_message("u1", "two")
        assert second.provider == "huggingface"
        assert primary.generate.await_count == 1
        assert rate_limiter.request_count == 3

    @pytest.mark.asyncio
    async def test_user_window_consumed_once_per_message(self, orchestrator, primary, rate_limiter):
        primary.generate.side_effect = ServerError("down", provider="groq", status_code=500)
        await orchestrator.handle_message("u1", "hello")
        assert rate_limiter.get_user_limit_info("u1")["requests"] == 1

    @pytest.mark.asyncio
    async def test_all_providers_failing(self, orchestrator, primary, fallback, conversation_store):
        primary.generate.side_effect = ServerError("down", provider="groq", status_code=500)
        fallback.generate.side_effect = ModelLoadingError("loading", provider="huggingface", status_code=503)

        result = await orchestrator.handle_message("u1", "hello")

        assert result.status == ResultStatus.UNAVAILABLE
        assert result.content == UNAVAILABLE_MESSAGE
        assert result.provider is None
        assert conversation_store.get_context("u1") == []
        assert orchestrator.stats.errors == 1

    @pytest.mark.asyncio
    async def test_automatic_mode_retries_primary_next_message(self, orchestrator, primary):
        primary.generate.side_effect = [
            ServerError("down", provider="groq", status_code=500),
            ProviderResponse(content="back", provider="groq", model="m"),
        ]

        await orchestrator.handle_message("u1", "one")
        result = await orchestrator.handle_message("u1", "two")

        assert result.provider == "groq"
        assert primary.generate.await_count == 2

    @pytest.mark.asyncio
    async def test_undecodable_bodies_from_both_providers(
        self, rate_limiter, conversation_store, conversation_config,
        groq_config, huggingface_config, clock,
    ):
        garbage = FakeResponse(502, b"\xff\xfe\xfa garbage")
        orchestrator = ResponseOrchestrator(
            primary=GroqClient(groq_config, session=FakeSession(garbage)),
            fallback=HuggingFaceClient(
                huggingface_config,
                session=FakeSession(FakeResponse(200, b"\xff\xfe\xfa garbage")),
            ),
            rate_limiter=rate_limiter,
            conversation_store=conversation_store,
            config=conversation_config,
            clock=clock,
        )

        result = await orchestrator.handle_message("u1", "hello")

        assert result.status == ResultStatus.UNAVAILABLE
        assert orchestrator.stats.errors == 1
        assert rate_limiter.request_count == 0
        assert conversation_store.get_context("u1") == []


class TestRateLimiting:

    @pytest.mark.asyncio
    async def test_rate_limited_message_is_not_processed(
        self, orchestrator, primary, fallback, conversation_store
    ):
        for i in range(5):
            await orchestrator.handle_message("u1", f"m{i}")
        primary.generate.reset_mock()
        context_before = conversation_store.get_context("u1")

        result = await orchestrator.handle_message("u1", "too many")

        assert result.status == ResultStatus.RATE_LIMITED
        assert result.content == RATE_LIMITED_MESSAGE
        primary.generate.assert_not_awaited()
        fallback.generate.assert_not_awaited()
        assert conversation_store.get_context("u1") == context_before
        assert orchestrator.stats.rate_limited == 1
        assert orchestrator.stats.total_messages == 6


class TestSystemPrompt:

    def _with_storage(self, orchestrator, storage):
        orchestrator.prompt_storage = storage
        return orchestrator

    @pytest.mark.asyncio
    async def test_custom_prompt_used(self, orchestrator, primary):
        storage = AsyncMock()
        storage.get_user_prompt.return_value = "Talk like a pirate."
        self._with_storage(orchestrator, storage)

        await orchestrator.handle_message("u1", "hello")

        assert sent_messages(primary)[0].content == "Talk like a pirate."
        storage.get_user_prompt.assert_awaited_once_with("u1")

    @pytest.mark.asyncio
    async def test_missing_prompt_uses_default(self, orchestrator):
        storage = AsyncMock()
        storage.get_user_prompt.return_value = None
        self._with_storage(orchestrator, storage)
        assert await orchestrator.resolve_system_prompt("u1") == "You are a test assistant."

    @pytest.mark.asyncio
    async def test_blank_prompt_uses_default(self, orchestrator):
        storage = AsyncMock()
        storage.get_user_prompt.return_value = "   "
        self._with_storage(orchestrator, storage)
        assert await orchestrator.resolve_system_prompt("u1") == "You are a test assistant."

    @pytest.mark.asyncio
    async def test_lookup_failure_uses_default(self, orchestrator, primary):
        storage = AsyncMock()
        storage.get_user_prompt.side_effect = DatabaseError("db down")
        self._with_storage(orchestrator, storage)

        result = await orchestrator.handle_message("u1", "hello")

        assert result.ok
        assert sent_messages(primary)[0].content == "You are a test assistant."

    @pytest.mark.asyncio
    async def test_slow_lookup_uses_default(self, orchestrator):
        class SlowStorage:
            async def get_user_prompt(self, user_id):
                await asyncio.sleep(1)
                return "too late"

        self._with_storage(orchestrator, SlowStorage())
        assert await orchestrator.resolve_system_prompt("u1") == "You are a test assistant."


class TestProviderSelection:

    @pytest.mark.asyncio
    async def test_forced_fallback(self, orchestrator, primary, fallback):
        previous = orchestrator.force_provider("fallback")
        assert previous == ProviderSelection.AUTO

        result = await orchestrator.handle_message("u1", "hello")
        assert result.provider == "huggingface"
        primary.generate.assert_not_awaited()
        assert orchestrator.current_provider is fallback

    @pytest.mark.asyncio
    async def test_forced_primary_still_respects_quota(self, orchestrator, primary, rate_limiter):
        orchestrator.force_provider(ProviderSelection.PRIMARY)
        for _ in range(3):
            rate_limiter.consume_global()

        result = await orchestrator.handle_message("u1", "hello")
        assert result.provider == "huggingface"
        primary.generate.assert_not_awaited()

    def test_invalid_selection(self, orchestrator):
        with pytest.raises(ValueError):
            orchestrator.force_provider("gpt")
        assert orchestrator.selection == ProviderSelection.AUTO

    @pytest.mark.asyncio
    async def test_sticky_fallback_until_quota_reset(
        self, primary, fallback, rate_limiter, conversation_store, conversation_config, clock
    ):
        config = conversation_config.model_copy(update={"sticky_fallback": True})
        orchestrator = ResponseOrchestrator(
            primary=primary,
            fallback=fallback,
            rate_limiter=rate_limiter,
            conversation_store=conversation_store,
            config=config,
            clock=clock,
        )
        primary.generate.side_effect = [
            ServerError("down", provider="groq", status_code=500),
            ProviderResponse(content="back", provider="groq", model="m"),
        ]

        await orchestrator.handle_message("u1", "one")
        await orchestrator.handle_message("u1", "two")
        assert primary.generate.await_count == 1
        assert orchestrator.get_stats()["provider"]["stickyFallback"] is True

        rate_limiter.reset_global()
        result = await orchestrator.handle_message("u1", "three")
        assert result.provider == "groq"
        assert primary.generate.await_count == 2

    @pytest.mark.asyncio
    async def test_force_provider_clears_sticky(
        self, primary, fallback, rate_limiter, conversation_store, conversation_config, clock
    ):
        config = conversation_config.model_copy(update={"sticky_fallback": True})
        orchestrator = ResponseOrchestrator(
            primary, fallback, rate_limiter, conversation_store, config, clock=clock
        )
        primary.generate.side_effect = ServerError("down", provider="groq", status_code=500)
        await orchestrator.handle_message("u1", "one")
        assert orchestrator.current_provider is fallback

        orchestrator.force_provider("auto")
        assert orchestrator.current_provider is primary


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_same_user_messages_are_serialized(self, orchestrator, primary, conversation_store):
        seen_lengths = []

        async def slow_reply(messages):
            seen_lengths.append(len(messages))
            await asyncio.sleep(0.01)
            return ProviderResponse(content="ok", provider="groq", model="m")

        primary.generate.side_effect = slow_reply

        await asyncio.gather(
            orchestrator.handle_message("u1", "one"),
            orchestrator.handle_message("u1", "two"),
        )

        assert seen_lengths == [2, 4]
        assert [m.content for m in conversation_store.get_context("u1")] == ["one", "ok", "two", "ok"]

    @pytest.mark.asyncio
    async def test_different_users_run_concurrently(self, orchestrator, primary):
        in_flight = []
        peak = []

        async def slow_reply(messages):
            in_flight.append(1)
            peak.append(len(in_flight))
            await asyncio.sleep(0.01)
            in_flight.pop()
            return ProviderResponse(content="ok", provider="groq", model="m")

        primary.generate.side_effect = slow_reply

        await asyncio.gather(
            orchestrator.handle_message("u1", "hi"),
            orchestrator.handle_message("u2", "hi"),
        )
        assert max(peak) == 2

    @pytest.mark.asyncio
    async def test_clear_waits_for_message_in_flight(self, orchestrator, primary, conversation_store):
        async def slow_reply(messages):
            await asyncio.sleep(0.01)
            return ProviderResponse(content="ok", provider="groq", model="m")

        primary.generate.side_effect = slow_reply

        result, cleared = await asyncio.gather(
            orchestrator.handle_message("u1", "one"),
            orchestrator.clear_context("u1"),
        )

        assert result.ok
        assert cleared is True
        assert conversation_store.get_context("u1") == []

    @pytest.mark.asyncio
    async def test_clear_without_history(self, orchestrator):
        assert await orchestrator.clear_context("u1") is False


class TestStats:

    @pytest.mark.asyncio
    async def test_stats_shape(self, orchestrator, clock):
        await orchestrator.handle_message("u1", "hello")
        clock.advance(90)

        stats = orchestrator.get_stats()
        assert set(stats) == {"bot", "rateLimits", "conversations", "provider"}
        assert stats["bot"] == {
            "totalMessages": 1,
            "groqRequests": 1,
            "huggingfaceRequests": 0,
            "errors": 0,
            "rateLimited": 0,
            "startTime": clock.now - 90,
            "uptime": 90,
        }
        assert stats["provider"] == {
            "selection": "auto",
            "current": "groq",
            "stickyFallback": False,
        }
        assert stats["rateLimits"]["groq"]["requests"] == 1
        assert stats["conversations"]["totalConversations"] == 1
