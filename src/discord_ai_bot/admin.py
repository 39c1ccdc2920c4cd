"""
Admin operations shared by the /admin slash command and the HTTP API.

Every mutation is applied to the in-memory components first and then
written to the audit log. A failed audit write is logged but does not undo
or fail the operation.
"""

import asyncio
from typing import Any, Dict, Optional

from discord_ai_bot.conversation.orchestrator import ProviderSelection, ResponseOrchestrator
from discord_ai_bot.database.repositories import DatabaseManager
from discord_ai_bot.utils.exceptions import DatabaseError
from discord_ai_bot.utils.logging import get_logger


class AdminController:
    """
    Admin actions over the orchestrator and its components.

    Attributes:
        orchestrator: The response orchestrator being administered
        database: Audit log storage (optional)
    """

    def __init__(
        self,
        orchestrator: ResponseOrchestrator,
        database: Optional[DatabaseManager] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.database = database
        self.logger = get_logger(__name__)

    @property
    def rate_limiter(self):
        return self.orchestrator.rate_limiter

    @property
    def conversation_store(self):
        return self.orchestrator.conversation_store

    async def _audit(
        self,
        action: str,
        admin_id: str,
        target: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.logger.info("Admin action", action=action, admin_id=admin_id, target=target, **(details or {}))
        if self.database is None:
            return
        try:
            await self.database.record_admin_action(action, admin_id, target=target, details=details)
        except DatabaseError as e:
            self.logger.warning("Failed to record admin action", action=action, error=str(e))

    async def reset_user(self, user_id: str, admin_id: str) -> int:
        """Clear one user's rate window. Returns the count it had."""
        previous = self.rate_limiter.reset_user(user_id)
        await self._audit("reset-user", admin_id, target=user_id, details={"previousCount": previous})
        return previous

    async def reset_users(self, admin_id: str) -> int:
        cleared = self.rate_limiter.reset_users()
        await self._audit("reset-users", admin_id, details={"userCount": cleared})
        return cleared

    async def reset_global(self, admin_id: str) -> int:
        """Zero the primary provider's daily quota. Returns the previous count."""
        previous = self.rate_limiter.reset_global()
        await self._audit("reset-global", admin_id, details={"previousCount": previous})
        return previous

    async def clear_conversations(self, admin_id: str) -> int:
        """Drop every stored conversation. Returns how many there were."""
        cleared = self.conversation_store.force_cleanup()
        await self._audit("clear-conversations", admin_id, details={"conversationCount": cleared})
        return cleared

    async def reset_all(self, admin_id: str) -> Dict[str, int]:
        result = self.rate_limiter.reset_all()
        result["conversationCount"] = self.conversation_store.force_cleanup()
        await self._audit("reset-all", admin_id, details=result)
        return result

    async def force_provider(self, selection: str, admin_id: str) -> Dict[str, str]:
        """
        Force the provider selection ("primary", "fallback") or return to "auto".

        Raises:
            ValueError: If ``selection`` is not a known selection
        """
        previous = self.orchestrator.force_provider(ProviderSelection(selection.lower()))
        result = {
            "previous": previous.value,
            "selection": self.orchestrator.selection.value,
        }
        await self._audit("force-provider", admin_id, target=result["selection"], details=result)
        return result

    async def test_services(self) -> Dict[str, bool]:
        """Run a connection test against both providers concurrently."""
        primary = self.orchestrator.primary
        fallback = self.orchestrator.fallback
        primary_ok, fallback_ok = await asyncio.gather(
            primary.test_connection(),
            fallback.test_connection(),
        )
        return {primary.name: primary_ok, fallback.name: fallback_ok}

    def get_stats(self) -> Dict[str, Any]:
        return self.orchestrator.get_stats()
