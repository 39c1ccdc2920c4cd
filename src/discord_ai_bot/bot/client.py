"""
Discord bot client implementation.

This module contains the Discord client that wires the response pipeline
to the gateway: it answers direct messages and mentions, registers slash
commands, and owns the lifecycle of every background component (rate
limiter, conversation store, monitoring server, provider sessions).
"""

import re
from typing import List, Optional

import discord
from discord.ext import commands, tasks

from discord_ai_bot.admin import AdminController
from discord_ai_bot.api.server import MonitoringServer
from discord_ai_bot.config import AppConfig
from discord_ai_bot.conversation.orchestrator import ChatResult, ResponseOrchestrator
from discord_ai_bot.conversation.store import ConversationStore
from discord_ai_bot.database.repositories import DatabaseManager
from discord_ai_bot.limits.rate_limiter import RateLimiter
from discord_ai_bot.llm.groq import GroqClient
from discord_ai_bot.llm.huggingface import HuggingFaceClient
from discord_ai_bot.utils.exceptions import DiscordAPIError
from discord_ai_bot.utils.logging import (
    generate_correlation_id,
    get_logger,
    log_discord_event,
    log_error,
    log_operation_timing,
)


DISCORD_MESSAGE_LIMIT = 2000
EMPTY_MESSAGE_GREETING = "Hello!"
PROVIDER_EMOJI = {"groq": "⚡", "huggingface": "🤗"}
ERROR_REPLY = "❌ An error occurred while processing your message. Please try again."


def strip_mentions(content: str, user_id: Optional[int]) -> str:
    """Remove mentions of ``user_id`` from ``content``."""
    if user_id is None:
        return content.strip()
    return re.sub(rf"<@!?{user_id}>", "", content).strip()


def format_reply(result: ChatResult) -> str:
    """Prefix a successful reply with its provider's emoji."""
    if not result.ok:
        return result.content
    emoji = PROVIDER_EMOJI.get(result.provider or "")
    return f"{emoji} {result.content}" if emoji else result.content


def split_message(content: str, max_length: int = DISCORD_MESSAGE_LIMIT) -> List[str]:
    """
    Split a message into chunks that fit Discord's character limit.

    Lines are kept together where possible; a single line longer than
    ``max_length`` is cut into fixed-size pieces.
    """
    if len(content) <= max_length:
        return [content]

    chunks = []
    current_chunk = ""

    for line in content.split("\n"):
        if len(line) > max_length:
            if current_chunk:
                chunks.append(current_chunk.strip())
                current_chunk = ""

            while len(line) > max_length:
                chunks.append(line[:max_length])
                line = line[max_length:]

            current_chunk = line
        elif len(current_chunk) + len(line) + 1 > max_length:
            if current_chunk:
                chunks.append(current_chunk.strip())
            current_chunk = line
        else:
            current_chunk = f"{current_chunk}\n{line}" if current_chunk else line

    if current_chunk.strip():
        chunks.append(current_chunk.strip())

    return chunks


class DiscordAIBot(commands.Bot):
    """
    Discord client backed by the provider failover pipeline.

    Attributes:
        config: Application configuration
        db_manager: Prompt storage and audit log
        rate_limiter: Per-user and global quotas
        conversation_store: Per-user conversation history
        orchestrator: Chooses the provider and produces replies
        admin: Admin operations shared with the HTTP API
        monitoring_server: Monitoring and admin HTTP API
    """

    def __init__(self, config: AppConfig) -> None:
        intents = discord.Intents.default()
        intents.message_content = True
        intents.guilds = True
        intents.guild_messages = True
        intents.dm_messages = True

        super().__init__(
            command_prefix=config.discord.command_prefix,
            intents=intents,
            help_command=None,
        )

        self.config = config
        self.logger = get_logger(__name__)

        # These will be initialized in setup()
        self.db_manager: Optional[DatabaseManager] = None
        self.groq_client: Optional[GroqClient] = None
        self.huggingface_client: Optional[HuggingFaceClient] = None
        self.rate_limiter: Optional[RateLimiter] = None
        self.conversation_store: Optional[ConversationStore] = None
        self.orchestrator: Optional[ResponseOrchestrator] = None
        self.admin: Optional[AdminController] = None
        self.monitoring_server: Optional[MonitoringServer] = None

        self._setup_complete = False

    async def setup(self) -> None:
        """
        Create and start every component. Must be called before starting the bot.

        Raises:
            DatabaseError: If the database cannot be initialized
        """
        if self._setup_complete:
            return

        self.logger.info("Setting up Discord AI Bot components")

        self.db_manager = DatabaseManager(self.config.database)
        await self.db_manager.initialize()

        self.groq_client = GroqClient(self.config.groq)
        self.huggingface_client = HuggingFaceClient(self.config.huggingface)

        self.rate_limiter = RateLimiter(self.config.rate_limits)
        self.conversation_store = ConversationStore(self.config.conversation)
        await self.rate_limiter.start()
        await self.conversation_store.start()

        self.orchestrator = ResponseOrchestrator(
            primary=self.groq_client,
            fallback=self.huggingface_client,
            rate_limiter=self.rate_limiter,
            conversation_store=self.conversation_store,
            config=self.config.conversation,
            prompt_storage=self.db_manager,
        )
        self.admin = AdminController(self.orchestrator, database=self.db_manager)

        await self._load_commands()
        await self._load_events()

        if self.config.monitoring.enabled:
            self.monitoring_server = MonitoringServer(
                self.admin,
                self.config.monitoring,
                database=self.db_manager,
                bot=self,
            )
            await self.monitoring_server.start()

        self._setup_complete = True
        self.logger.info("Bot setup completed successfully")

    async def _load_commands(self) -> None:
        from discord_ai_bot.bot.commands import setup_commands
        await setup_commands(self)

    async def _load_events(self) -> None:
        from discord_ai_bot.bot.events import setup_events
        await setup_events(self)

    async def on_ready(self) -> None:
        """Called when the bot is ready and connected to Discord."""
        log_discord_event(
            "bot_ready",
            bot_user=str(self.user),
            bot_id=self.user.id if self.user else None,
            guild_count=len(self.guilds),
        )

        try:
            synced = await self.tree.sync()
            log_discord_event("commands_synced_global", command_count=len(synced))
        except discord.HTTPException as e:
            self.logger.error("Failed to sync commands globally", error=str(e))

        if not self.refresh_presence.is_running():
            self.refresh_presence.change_interval(
                minutes=self.config.discord.status_refresh_minutes
            )
            self.refresh_presence.start()

    @tasks.loop(minutes=5)
    async def refresh_presence(self) -> None:
        """Show the current provider and message count in the bot's status."""
        if self.orchestrator is None:
            return

        provider = self.orchestrator.current_provider
        status_text = (
            f"{PROVIDER_EMOJI.get(provider.name, '')} {provider.label} | "
            f"{self.orchestrator.stats.total_messages} msgs"
        )
        try:
            await self.change_presence(
                activity=discord.Activity(type=discord.ActivityType.listening, name=status_text)
            )
        except discord.HTTPException as e:
            self.logger.warning("Failed to update presence", error=str(e))

    async def on_message(self, message: discord.Message) -> None:
        """Answer direct messages and mentions."""
        if message.author.bot:
            return

        is_dm = isinstance(message.channel, discord.DMChannel)
        is_mentioned = self.user is not None and self.user.mentioned_in(message)
        if not (is_dm or is_mentioned):
            await self.process_commands(message)
            return

        log_discord_event(
            "message_received",
            user_id=message.author.id,
            channel_id=message.channel.id,
            guild_id=message.guild.id if message.guild else None,
            message_length=len(message.content),
            is_dm=is_dm,
        )

        content = strip_mentions(message.content, self.user.id if self.user else None)
        if not content:
            content = EMPTY_MESSAGE_GREETING

        correlation_id = generate_correlation_id()
        try:
            async with message.channel.typing():
                with log_operation_timing(
                    "handle_message",
                    user_id=message.author.id,
                    correlation_id=correlation_id,
                ):
                    result = await self.orchestrator.handle_message(str(message.author.id), content)
            await self._send_response(message, format_reply(result))
        except Exception as e:
            log_error(e, {
                "message_id": message.id,
                "user_id": message.author.id,
                "correlation_id": correlation_id,
            })
            await self._send_error_response(message, ERROR_REPLY)

    async def _send_response(self, original_message: discord.Message, content: str) -> Optional[discord.Message]:
        """
        Reply to a message, splitting it into several if it is too long.

        Raises:
            DiscordAPIError: If Discord rejects the message
        """
        try:
            sent_message = None
            for i, chunk in enumerate(split_message(content)):
                if i == 0:
                    sent_message = await original_message.reply(chunk)
                else:
                    await original_message.channel.send(chunk)
            return sent_message

        except discord.HTTPException as e:
            raise DiscordAPIError(
                "Failed to send response message",
                context={
                    "channel_id": original_message.channel.id,
                    "content_length": len(content),
                },
                original_error=e,
            )

    async def _send_error_response(self, message: discord.Message, error_text: str) -> None:
        try:
            await message.reply(error_text)
        except discord.HTTPException:
            try:
                await message.channel.send(error_text)
            except discord.HTTPException:
                self.logger.error("Failed to send error response", message_id=message.id)

    def is_admin(self, user: discord.abc.User) -> bool:
        """Configured admins, and members with the Administrator permission."""
        if str(user.id) in self.config.discord.admin_user_ids:
            return True
        permissions = getattr(user, "guild_permissions", None)
        return bool(permissions and permissions.administrator)

    async def close(self) -> None:
        """Stop background work, close connections, then disconnect."""
        self.logger.info("Shutting down Discord AI Bot")

        try:
            if self.refresh_presence.is_running():
                self.refresh_presence.cancel()
            if self.monitoring_server:
                await self.monitoring_server.stop()
            if self.rate_limiter:
                await self.rate_limiter.stop()
            if self.conversation_store:
                await self.conversation_store.stop()
            if self.groq_client:
                await self.groq_client.close()
            if self.huggingface_client:
                await self.huggingface_client.close()
            if self.db_manager:
                await self.db_manager.close()

            await super().close()

        except Exception as e:
            self.logger.error("Error during bot shutdown", error=str(e))
            raise
        finally:
            self.logger.info("Bot shutdown complete")
