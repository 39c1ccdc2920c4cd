"""Request quota enforcement."""

from discord_ai_bot.limits.rate_limiter import RateLimiter, UserRateState, next_utc_midnight

__all__ = ["RateLimiter", "UserRateState", "next_utc_midnight"]
