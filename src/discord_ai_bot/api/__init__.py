"""
Monitoring and admin HTTP API.

Serves health, statistics and quota information, plus token-protected
admin and custom prompt endpoints.
"""

from discord_ai_bot.api.server import MonitoringServer

__all__ = ["MonitoringServer"]
