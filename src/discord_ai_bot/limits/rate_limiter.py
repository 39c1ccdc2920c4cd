"""
Per-user and global request quotas.

Two independent limits are enforced here:

* a fixed window per user (``user_max_messages`` per ``user_window_seconds``),
  consumed once for every inbound message;
* a process-wide daily quota for the primary provider that resets at UTC
  midnight, consumed only when a primary call succeeds.

The daily reset happens lazily (on the next capacity check after midnight)
and proactively (a background task that wakes up at midnight). Both paths
go through :meth:`RateLimiter.reset_global_if_due`, so whichever runs
second finds nothing to do.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from discord_ai_bot.config import RateLimitConfig
from discord_ai_bot.utils.logging import get_logger


ResetListener = Callable[[], None]

MILESTONE_INTERVAL = 100


def next_utc_midnight(now: float) -> float:
    """Return the POSIX timestamp of the first UTC midnight after ``now``."""
    current = datetime.fromtimestamp(now, tz=timezone.utc)
    tomorrow = (current + timedelta(days=1)).replace(
        hour=0, minute=0, second=0, microsecond=0
    )
    return tomorrow.timestamp()


def _isoformat(timestamp: Optional[float]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


@dataclass
class UserRateState:
    """Window bookkeeping for one user."""

    window_count: int
    window_reset_at: float
    first_request_at: float


class RateLimiter:
    """
    Owns the per-user windows and the global daily quota.

    All mutations happen synchronously, so callers on the event loop never
    observe a half-applied update.

    Attributes:
        config: Rate limit settings
        request_count: Primary provider requests consumed since the last reset
        reset_at: Timestamp of the next scheduled global reset
    """

    def __init__(
        self,
        config: RateLimitConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.logger = get_logger(__name__)
        self._clock = clock

        self._users: Dict[str, UserRateState] = {}
        self.request_count = 0
        self.reset_at = next_utc_midnight(clock())

        self._reset_listeners: List[ResetListener] = []
        self._running = False
        self._reset_task: Optional[asyncio.Task] = None
        self._cleanup_task: Optional[asyncio.Task] = None

    # Per-user window

    def admit_user(self, user_id: str) -> bool:
        """
        Count one message against ``user_id``'s window.

        Returns:
            True if the message is admitted, False if the user is over the limit.
            A rejected message does not increment the window.
        """
        now = self._clock()
        state = self._users.get(user_id)

        if state is None or now > state.window_reset_at:
            self._users[user_id] = UserRateState(
                window_count=1,
                window_reset_at=now + self.config.user_window_seconds,
                first_request_at=now,
            )
            return True

        if state.window_count < self.config.user_max_messages:
            state.window_count += 1
            return True

        self.logger.warning(
            "User rate limited",
            user_id=user_id,
            count=state.window_count,
            seconds_remaining=max(0, round(state.window_reset_at - now)),
        )
        return False

    def get_user_limit_info(self, user_id: str) -> Dict[str, Any]:
        """Describe ``user_id``'s current window, or an empty one if expired."""
        now = self._clock()
        state = self._users.get(user_id)

        if state is None or now > state.window_reset_at:
            return {
                "requests": 0,
                "limit": self.config.user_max_messages,
                "resetTime": None,
                "timeUntilReset": 0,
            }

        return {
            "requests": state.window_count,
            "limit": self.config.user_max_messages,
            "resetTime": _isoformat(state.window_reset_at),
            "timeUntilReset": max(0.0, state.window_reset_at - now),
        }

    def cleanup_user_limits(self) -> int:
        """Drop user states first seen longer ago than the configured TTL."""
        now = self._clock()
        ttl = self.config.user_state_ttl_seconds
        stale = [
            user_id for user_id, state in self._users.items()
            if now - state.first_request_at > ttl
        ]
        for user_id in stale:
            del self._users[user_id]

        if stale:
            self.logger.debug("Cleaned up old user rate limits", count=len(stale))
        return len(stale)

    # Global quota

    def reset_global_if_due(self) -> bool:
        """
        Reset the global quota if the reset time has been reached.

        Safe to call any number of times: once reset, ``reset_at`` moves to
        the next midnight and further calls are no-ops until then.

        Returns:
            True if a reset happened.
        """
        now = self._clock()
        if now < self.reset_at:
            return False

        previous = self.request_count
        self.request_count = 0
        self.reset_at = next_utc_midnight(now)
        self.logger.info(
            "Global daily limit reset",
            previous_requests=previous,
            next_reset=_isoformat(self.reset_at),
        )
        self._notify_reset()
        return True

    def has_global_capacity(self) -> bool:
        """Whether the primary provider may be called. Does not consume quota."""
        self.reset_global_if_due()

        has_capacity = self.request_count < self.config.global_daily_limit
        if not has_capacity:
            self.logger.warning(
                "Global daily limit reached",
                requests=self.request_count,
                limit=self.config.global_daily_limit,
                reset_time=_isoformat(self.reset_at),
            )
        return has_capacity

    def consume_global(self) -> None:
        """Record one successful primary provider call."""
        self.request_count += 1

        if self.request_count % MILESTONE_INTERVAL == 0:
            self.logger.info(
                "Global request milestone",
                requests=self.request_count,
                limit=self.config.global_daily_limit,
            )

    def get_global_limit_info(self) -> Dict[str, Any]:
        now = self._clock()
        limit = self.config.global_daily_limit
        return {
            "requests": self.request_count,
            "limit": limit,
            "resetTime": _isoformat(self.reset_at),
            "timeUntilReset": max(0.0, self.reset_at - now),
            "percentage": round(self.request_count / limit * 100),
        }

    def get_all_stats(self) -> Dict[str, Any]:
        """Snapshot for the dashboard and the status commands."""
        global_info = self.get_global_limit_info()
        return {
            "groq": {
                "requests": global_info["requests"],
                "limit": global_info["limit"],
                "resetTime": global_info["resetTime"],
                "percentage": global_info["percentage"],
            },
            "activeUserLimits": len(self._users),
            "totalUserRequests": sum(s.window_count for s in self._users.values()),
        }

    def add_reset_listener(self, listener: ResetListener) -> None:
        """Register a callback invoked after every global quota reset."""
        self._reset_listeners.append(listener)

    def _notify_reset(self) -> None:
        for listener in self._reset_listeners:
            try:
                listener()
            except Exception as e:
                self.logger.error(
                    "Reset listener failed",
                    error_type=type(e).__name__,
                    error=str(e),
                )

    # Admin operations

    def reset_user(self, user_id: str) -> int:
        """Forget ``user_id``'s window. Returns the count it had."""
        state = self._users.pop(user_id, None)
        previous = state.window_count if state else 0
        self.logger.info("Admin reset user limit", user_id=user_id, previous_count=previous)
        return previous

    def reset_users(self) -> int:
        """Forget every user window. Returns how many users were tracked."""
        count = len(self._users)
        self._users.clear()
        self.logger.info("Admin reset all user limits", user_count=count)
        return count

    def reset_global(self) -> int:
        """Zero the global quota without moving the reset time."""
        previous = self.request_count
        self.request_count = 0
        self.logger.info("Admin reset global limit", previous_requests=previous)
        self._notify_reset()
        return previous

    def reset_all(self) -> Dict[str, int]:
        user_count = self.reset_users()
        global_count = self.reset_global()
        return {"userCount": user_count, "groqCount": global_count}

    # Background tasks

    async def start(self) -> None:
        """Start the midnight reset task and the periodic user sweep."""
        if self._running:
            return
        self._running = True
        self._reset_task = asyncio.create_task(self._daily_reset_loop())
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        self.logger.info(
            "Rate limiter started",
            next_reset=_isoformat(self.reset_at),
            cleanup_interval=self.config.cleanup_interval_seconds,
        )

    async def stop(self) -> None:
        """Cancel the background tasks and wait for them to finish."""
        self._running = False
        for task in (self._reset_task, self._cleanup_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._reset_task = None
        self._cleanup_task = None
        self.logger.info("Rate limiter stopped")

    async def _daily_reset_loop(self) -> None:
        while self._running:
            delay = max(0.0, self.reset_at - self._clock())
            await asyncio.sleep(delay)
            self.reset_global_if_due()

    async def _cleanup_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.config.cleanup_interval_seconds)
            self.cleanup_user_limits()
