"""
Monitoring and admin HTTP server.

Read-only endpoints expose health, statistics and quota information for
dashboards. Admin and prompt endpoints change state and require a bearer
token. The token is read from configuration, or generated at startup
when none is configured.
"""

import json
import secrets
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from aiohttp import web
from aiohttp.web import Request, Response

from discord_ai_bot import __version__
from discord_ai_bot.admin import AdminController
from discord_ai_bot.config import MonitoringConfig
from discord_ai_bot.database.repositories import DatabaseManager
from discord_ai_bot.utils.exceptions import DatabaseError
from discord_ai_bot.utils.logging import get_logger

if TYPE_CHECKING:
    from discord_ai_bot.bot.client import DiscordAIBot


API_ADMIN_ID = "api"
MAX_PROMPT_LENGTH = 2000


def _json(data: Any, status: int = 200) -> Response:
    return Response(
        text=json.dumps(data, indent=2, default=str),
        status=status,
        content_type="application/json",
    )


def _error(message: str, status: int) -> Response:
    return _json({"error": message}, status=status)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class MonitoringServer:
    """
    aiohttp server for monitoring and administration.

    Attributes:
        admin: Admin operations (and through it, the orchestrator)
        config: Bind address and credentials
        database: Prompt storage and audit log (optional)
        bot: Discord client, for connection details (optional)
        api_key: Bearer token required by protected endpoints
    """

    def __init__(
        self,
        admin: AdminController,
        config: MonitoringConfig,
        database: Optional[DatabaseManager] = None,
        bot: Optional["DiscordAIBot"] = None,
    ) -> None:
        self.admin = admin
        self.config = config
        self.database = database
        self.bot = bot
        self.logger = get_logger(__name__)
        self.started_at = time.time()

        if config.api_key:
            self.api_key = config.api_key
        else:
            self.api_key = secrets.token_urlsafe(32)
            self.logger.info(
                "Generated API key for monitoring server",
                key_preview=self.api_key[:8] + "...",
            )

        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

    @property
    def orchestrator(self):
        return self.admin.orchestrator

    def create_app(self) -> web.Application:
        """Build the application with every route registered."""
        app = web.Application()

        app.router.add_get("/health", self._health_check)
        app.router.add_get("/api/stats", self._stats)
        app.router.add_get("/api/info", self._info)
        app.router.add_get("/api/services/status", self._services_status)
        app.router.add_get("/api/limits", self._limits)
        app.router.add_get("/api/conversations/active", self._active_conversations)

        app.router.add_post("/api/admin/reset-user/{user_id}", self._reset_user)
        app.router.add_post("/api/admin/reset-global", self._reset_global)
        app.router.add_post("/api/admin/reset-users", self._reset_users)
        app.router.add_post("/api/admin/clear-conversations", self._clear_conversations)
        app.router.add_post("/api/admin/reset-all", self._reset_all)
        app.router.add_post("/api/admin/provider", self._force_provider)
        app.router.add_get("/api/admin/actions", self._admin_actions)

        app.router.add_get("/api/users/{user_id}/prompt", self._get_prompt)
        app.router.add_put("/api/users/{user_id}/prompt", self._set_prompt)
        app.router.add_delete("/api/users/{user_id}/prompt", self._delete_prompt)

        return app

    async def start(self) -> None:
        """Start serving on the configured host and port."""
        self.app = self.create_app()
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, self.config.host, self.config.port)
        await self.site.start()

        self.logger.info("Monitoring server started", host=self.config.host, port=self.config.port)

    async def stop(self) -> None:
        if self.site:
            await self.site.stop()
        if self.runner:
            await self.runner.cleanup()
        self.logger.info("Monitoring server stopped")

    def _check_auth(self, request: Request) -> bool:
        """Check if the request carries the bearer token."""
        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return False
        return secrets.compare_digest(auth_header[7:], self.api_key)

    # Public endpoints

    async def _health_check(self, request: Request) -> Response:
        bot_ready = self.bot is not None and self.bot.is_ready()
        return _json({
            "status": "ok",
            "timestamp": _now_iso(),
            "uptime": time.time() - self.started_at,
            "version": __version__,
            "bot": {
                "connected": bot_ready,
                "guilds": len(self.bot.guilds) if bot_ready else 0,
            },
        })

    async def _stats(self, request: Request) -> Response:
        stats = self.orchestrator.get_stats()
        stats["timestamp"] = _now_iso()
        return _json(stats)

    async def _info(self, request: Request) -> Response:
        orchestrator = self.orchestrator
        bot_user = self.bot.user if self.bot is not None else None
        bot_stats = orchestrator.stats
        return _json({
            "bot": {
                "username": bot_user.name if bot_user else None,
                "id": str(bot_user.id) if bot_user else None,
                "guilds": len(self.bot.guilds) if self.bot is not None else 0,
            },
            "services": {
                orchestrator.primary.name: orchestrator.primary.get_model_info(),
                orchestrator.fallback.name: orchestrator.fallback.get_model_info(),
            },
            "currentModel": orchestrator.current_provider.name,
            "uptime": {
                "process": time.time() - self.started_at,
                "bot": bot_stats.uptime(time.time()),
            },
        })

    async def _services_status(self, request: Request) -> Response:
        results = await self.admin.test_services()
        return _json({
            name: {"status": "online" if ok else "offline"}
            for name, ok in results.items()
        })

    async def _limits(self, request: Request) -> Response:
        rate_limiter = self.orchestrator.rate_limiter
        stats = rate_limiter.get_all_stats()
        return _json({
            "groq": rate_limiter.get_global_limit_info(),
            "activeUsers": stats["activeUserLimits"],
            "totalUserRequests": stats["totalUserRequests"],
        })

    async def _active_conversations(self, request: Request) -> Response:
        store = self.orchestrator.conversation_store
        return _json({
            "users": store.get_active_users(),
            "stats": store.get_all_stats(),
        })

    # Admin endpoints

    async def _reset_user(self, request: Request) -> Response:
        if not self._check_auth(request):
            return _error("Unauthorized", 401)
        user_id = request.match_info["user_id"]
        previous = await self.admin.reset_user(user_id, API_ADMIN_ID)
        return _json({"success": True, "userId": user_id, "previousCount": previous})

    async def _reset_global(self, request: Request) -> Response:
        if not self._check_auth(request):
            return _error("Unauthorized", 401)
        previous = await self.admin.reset_global(API_ADMIN_ID)
        return _json({"success": True, "previousCount": previous})

    async def _reset_users(self, request: Request) -> Response:
        if not self._check_auth(request):
            return _error("Unauthorized", 401)
        cleared = await self.admin.reset_users(API_ADMIN_ID)
        return _json({"success": True, "userCount": cleared})

    async def _clear_conversations(self, request: Request) -> Response:
        if not self._check_auth(request):
            return _error("Unauthorized", 401)
        cleared = await self.admin.clear_conversations(API_ADMIN_ID)
        return _json({"success": True, "conversationCount": cleared})

    async def _reset_all(self, request: Request) -> Response:
        if not self._check_auth(request):
            return _error("Unauthorized", 401)
        result = await self.admin.reset_all(API_ADMIN_ID)
        return _json({"success": True, **result})

    async def _force_provider(self, request: Request) -> Response:
        if not self._check_auth(request):
            return _error("Unauthorized", 401)
        try:
            body = await request.json()
        except json.JSONDecodeError:
            return _error("Invalid JSON", 400)

        selection = body.get("provider") if isinstance(body, dict) else None
        if not isinstance(selection, str):
            return _error("Missing provider", 400)

        try:
            result = await self.admin.force_provider(selection, API_ADMIN_ID)
        except ValueError:
            return _error("Provider must be one of: auto, primary, fallback", 400)
        return _json({"success": True, **result})

    async def _admin_actions(self, request: Request) -> Response:
        if not self._check_auth(request):
            return _error("Unauthorized", 401)
        if self.database is None:
            return _error("Database not configured", 503)

        try:
            limit = min(int(request.query.get("limit", "50")), 500)
        except ValueError:
            return _error("limit must be an integer", 400)

        try:
            actions = await self.database.get_admin_actions(limit=limit)
        except DatabaseError as e:
            self.logger.error("Failed to load admin actions", error=str(e))
            return _error("Database error", 500)
        return _json({"actions": [action.to_dict() for action in actions]})

    # Custom prompts

    async def _get_prompt(self, request: Request) -> Response:
        if not self._check_auth(request):
            return _error("Unauthorized", 401)
        if self.database is None:
            return _error("Database not configured", 503)

        user_id = request.match_info["user_id"]
        try:
            record = await self.database.get_user_prompt_record(user_id)
        except DatabaseError as e:
            self.logger.error("Failed to load prompt", user_id=user_id, error=str(e))
            return _error("Database error", 500)

        if record is None:
            return _error("No custom prompt", 404)
        return _json(record.to_dict())

    async def _set_prompt(self, request: Request) -> Response:
        if not self._check_auth(request):
            return _error("Unauthorized", 401)
        if self.database is None:
            return _error("Database not configured", 503)

        try:
            body = await request.json()
        except json.JSONDecodeError:
            return _error("Invalid JSON", 400)

        prompt = body.get("prompt") if isinstance(body, dict) else None
        if not isinstance(prompt, str) or not prompt.strip():
            return _error("Missing prompt", 400)
        if len(prompt) > MAX_PROMPT_LENGTH:
            return _error(f"Prompt must be at most {MAX_PROMPT_LENGTH} characters", 400)

        user_id = request.match_info["user_id"]
        try:
            record = await self.database.set_user_prompt(user_id, prompt.strip())
        except DatabaseError as e:
            self.logger.error("Failed to save prompt", user_id=user_id, error=str(e))
            return _error("Database error", 500)
        return _json(record.to_dict())

    async def _delete_prompt(self, request: Request) -> Response:
        if not self._check_auth(request):
            return _error("Unauthorized", 401)
        if self.database is None:
            return _error("Database not configured", 503)

        user_id = request.match_info["user_id"]
        try:
            deleted = await self.database.delete_user_prompt(user_id)
        except DatabaseError as e:
            self.logger.error("Failed to delete prompt", user_id=user_id, error=str(e))
            return _error("Database error", 500)
        return _json({"deleted": deleted})
