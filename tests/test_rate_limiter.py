"""
Tests for the per-user window and the global daily quota.

Covers:
- Admission up to the per-user maximum and rejection past it
- Window expiry and boundary behaviour
- Read-only capacity checks and quota consumption
- Lazy and scheduled UTC-midnight resets, and reset listeners
- Stale user sweep
- Admin resets returning the counts they cleared
- Snapshot shapes
"""

import asyncio

import pytest

from discord_ai_bot.limits.rate_limiter import RateLimiter, next_utc_midnight

from conftest import START_TIME, yield_to_loop

# 2024-01-16 00:00:00 UTC
NEXT_MIDNIGHT = 1705363200.0
DAY = 86400


class TestNextUtcMidnight:

    def test_midday_rolls_to_following_midnight(self):
        assert next_utc_midnight(START_TIME) == NEXT_MIDNIGHT

    def test_exact_midnight_rolls_a_full_day(self):
        assert next_utc_midnight(NEXT_MIDNIGHT) == NEXT_MIDNIGHT + DAY

    def test_limiter_schedules_first_reset(self, rate_limiter):
        assert rate_limiter.reset_at == NEXT_MIDNIGHT


class TestUserWindow:

    def test_admits_up_to_limit_then_rejects(self, rate_limiter):
        results = [rate_limiter.admit_user("u1") for _ in range(6)]
        assert results == [True] * 5 + [False]

    def test_new_window_after_expiry(self, rate_limiter, clock):
        for _ in range(6):
            rate_limiter.admit_user("u1")

        clock.advance(61)
        assert rate_limiter.admit_user("u1") is True
        assert rate_limiter.get_user_limit_info("u1")["requests"] == 1

    def test_window_still_closed_at_exact_boundary(self, rate_limiter, clock):
        for _ in range(5):
            rate_limiter.admit_user("u1")

        clock.advance(60)
        assert rate_limiter.admit_user("u1") is False

    def test_rejections_do_not_grow_count(self, rate_limiter):
        for _ in range(20):
            rate_limiter.admit_user("u1")
        assert rate_limiter.get_user_limit_info("u1")["requests"] == 5

    def test_users_are_independent(self, rate_limiter):
        for _ in range(5):
            rate_limiter.admit_user("u1")
        assert rate_limiter.admit_user("u1") is False
        assert rate_limiter.admit_user("u2") is True

    def test_limit_info_for_unknown_user(self, rate_limiter):
        info = rate_limiter.get_user_limit_info("nobody")
        assert info == {"requests": 0, "limit": 5, "resetTime": None, "timeUntilReset": 0}

    def test_limit_info_for_active_user(self, rate_limiter, clock):
        rate_limiter.admit_user("u1")
        clock.advance(20)
        info = rate_limiter.get_user_limit_info("u1")
        assert info["requests"] == 1
        assert info["limit"] == 5
        assert info["timeUntilReset"] == pytest.approx(40)
        assert info["resetTime"].startswith("2024-01-15T12:01:00")

    def test_cleanup_drops_stale_users(self, rate_limiter, clock):
        rate_limiter.admit_user("old")
        clock.advance(DAY + 1)
        rate_limiter.admit_user("new")

        assert rate_limiter.cleanup_user_limits() == 1
        assert rate_limiter.get_all_stats()["activeUserLimits"] == 1
        assert rate_limiter.get_user_limit_info("new")["requests"] == 1


class TestGlobalQuota:

    def test_capacity_check_does_not_consume(self, rate_limiter):
        for _ in range(10):
            assert rate_limiter.has_global_capacity() is True
        assert rate_limiter.request_count == 0

    def test_exhausted_after_limit(self, rate_limiter):
        for _ in range(3):
            assert rate_limiter.has_global_capacity() is True
            rate_limiter.consume_global()
        assert rate_limiter.has_global_capacity() is False

    def test_lazy_reset_at_midnight(self, rate_limiter, clock):
        for _ in range(3):
            rate_limiter.consume_global()

        clock.now = NEXT_MIDNIGHT
        assert rate_limiter.has_global_capacity() is True
        assert rate_limiter.request_count == 0
        assert rate_limiter.reset_at == NEXT_MIDNIGHT + DAY

    def test_reset_is_idempotent(self, rate_limiter, clock):
        rate_limiter.consume_global()
        clock.now = NEXT_MIDNIGHT + 5

        assert rate_limiter.reset_global_if_due() is True
        rate_limiter.consume_global()
        assert rate_limiter.reset_global_if_due() is False
        assert rate_limiter.request_count == 1

    def test_no_reset_before_midnight(self, rate_limiter, clock):
        rate_limiter.consume_global()
        clock.now = NEXT_MIDNIGHT - 1
        assert rate_limiter.reset_global_if_due() is False
        assert rate_limiter.request_count == 1

    def test_reset_notifies_listeners(self, rate_limiter, clock):
        calls = []
        rate_limiter.add_reset_listener(lambda: calls.append("reset"))

        clock.now = NEXT_MIDNIGHT
        rate_limiter.has_global_capacity()
        rate_limiter.has_global_capacity()
        assert calls == ["reset"]

    def test_failing_listener_does_not_block_others(self, rate_limiter):
        calls = []

        def broken():
            raise RuntimeError("boom")

        rate_limiter.add_reset_listener(broken)
        rate_limiter.add_reset_listener(lambda: calls.append("ok"))
        rate_limiter.reset_global()
        assert calls == ["ok"]

    def test_global_limit_info(self, rate_limiter):
        rate_limiter.consume_global()
        info = rate_limiter.get_global_limit_info()
        assert info["requests"] == 1
        assert info["limit"] == 3
        assert info["percentage"] == 33
        assert info["timeUntilReset"] == pytest.approx(12 * 3600)
        assert info["resetTime"].startswith("2024-01-16T00:00:00")


class TestAdminResets:

    def test_reset_user_returns_prior_count(self, rate_limiter):
        for _ in range(3):
            rate_limiter.admit_user("u1")
        assert rate_limiter.reset_user("u1") == 3
        assert rate_limiter.reset_user("u1") == 0
        assert rate_limiter.admit_user("u1") is True

    def test_reset_users_returns_user_count(self, rate_limiter):
        rate_limiter.admit_user("u1")
        rate_limiter.admit_user("u2")
        assert rate_limiter.reset_users() == 2
        assert rate_limiter.get_all_stats()["activeUserLimits"] == 0

    def test_reset_global_keeps_reset_time(self, rate_limiter):
        rate_limiter.consume_global()
        rate_limiter.consume_global()
        assert rate_limiter.reset_global() == 2
        assert rate_limiter.request_count == 0
        assert rate_limiter.reset_at == NEXT_MIDNIGHT

    def test_reset_all(self, rate_limiter):
        rate_limiter.admit_user("u1")
        rate_limiter.consume_global()
        assert rate_limiter.reset_all() == {"userCount": 1, "groqCount": 1}


class TestStats:

    def test_all_stats_shape(self, rate_limiter):
        rate_limiter.admit_user("u1")
        rate_limiter.admit_user("u1")
        rate_limiter.admit_user("u2")
        rate_limiter.consume_global()

        stats = rate_limiter.get_all_stats()
        assert set(stats) == {"groq", "activeUserLimits", "totalUserRequests"}
        assert set(stats["groq"]) == {"requests", "limit", "resetTime", "percentage"}
        assert stats["groq"]["requests"] == 1
        assert stats["activeUserLimits"] == 2
        assert stats["totalUserRequests"] == 3


class TestBackgroundTasks:

    @pytest.mark.asyncio
    async def test_scheduled_reset_runs_at_midnight(self, rate_limiter, clock):
        rate_limiter.consume_global()
        rate_limiter.consume_global()
        clock.now = NEXT_MIDNIGHT

        await rate_limiter.start()
        try:
            await yield_to_loop()
            assert rate_limiter.request_count == 0
            assert rate_limiter.reset_at == NEXT_MIDNIGHT + DAY
        finally:
            await rate_limiter.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_tasks(self, rate_limit_config, clock):
        limiter = RateLimiter(rate_limit_config, clock=clock)
        await limiter.start()
        reset_task = limiter._reset_task
        cleanup_task = limiter._cleanup_task

        await limiter.stop()
        assert reset_task.done()
        assert cleanup_task.done()
        assert limiter._reset_task is None

    @pytest.mark.asyncio
    async def test_start_twice_keeps_one_task(self, rate_limiter):
        await rate_limiter.start()
        first = rate_limiter._reset_task
        await rate_limiter.start()
        assert rate_limiter._reset_task is first
        await rate_limiter.stop()
        await asyncio.sleep(0)
