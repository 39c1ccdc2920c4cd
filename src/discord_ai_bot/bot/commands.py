"""
Discord slash commands for the AI bot.

Chat commands go through the same response pipeline as mentions and DMs.
Admin commands are thin wrappers around AdminController, which is shared
with the HTTP API.
"""

import time
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from discord_ai_bot.bot.client import format_reply, split_message
from discord_ai_bot.utils.exceptions import DatabaseError
from discord_ai_bot.utils.logging import get_logger, log_function_call


MAX_CUSTOM_PROMPT_LENGTH = 2000

# Aliases accepted by /admin force-model
PROVIDER_ALIASES = {
    "auto": "auto",
    "primary": "primary",
    "groq": "primary",
    "fallback": "fallback",
    "huggingface": "fallback",
    "hf": "fallback",
}


def format_uptime(seconds: float) -> str:
    """Render a duration as ``"1d 2h 3m"``, omitting a zero day count."""
    minutes = int(seconds // 60)
    days, minutes = divmod(minutes, 60 * 24)
    hours, minutes = divmod(minutes, 60)
    if days:
        return f"{days}d {hours}h {minutes}m"
    return f"{hours}h {minutes}m"


def provider_display(name: str) -> str:
    return "⚡ Groq (LLaMA 3.1)" if name == "groq" else "🤗 Hugging Face"


class ChatCommands(commands.Cog):
    """Chat-related commands."""

    def __init__(self, bot) -> None:
        self.bot = bot
        self.logger = get_logger(__name__)

    @app_commands.command(name="chat", description="Chat with the AI bot")
    @app_commands.describe(message="Your message to the AI")
    async def chat(self, interaction: discord.Interaction, message: str) -> None:
        """Send ``message`` through the response pipeline and post the reply."""
        log_function_call("chat_command", user_id=interaction.user.id, message_length=len(message))

        await interaction.response.defer(thinking=True)

        try:
            result = await self.bot.orchestrator.handle_message(str(interaction.user.id), message)
            for chunk in split_message(format_reply(result)):
                await interaction.followup.send(chunk)
        except Exception as e:
            self.logger.error("Error in chat command", error=str(e), user_id=interaction.user.id)
            await interaction.followup.send(
                "❌ An error occurred while processing your message. Please try again."
            )

    @app_commands.command(name="reset", description="Reset conversation context")
    async def reset_conversation(self, interaction: discord.Interaction) -> None:
        await self.bot.orchestrator.clear_context(str(interaction.user.id))
        await interaction.response.send_message("🔄 Your conversation context has been reset.")

    @app_commands.command(name="configure", description="Set a custom system prompt for your interactions")
    @app_commands.describe(prompt="Your custom system prompt (leave empty to reset to default)")
    async def configure(self, interaction: discord.Interaction, prompt: Optional[str] = None) -> None:
        """
        Set, or with no prompt clear, the caller's custom system prompt.
        """
        user_id = str(interaction.user.id)

        if not prompt or not prompt.strip():
            try:
                deleted = await self.bot.db_manager.delete_user_prompt(user_id)
            except DatabaseError as e:
                self.logger.error("Error deleting user prompt", error=str(e), user_id=user_id)
                await interaction.response.send_message(
                    "❌ An error occurred while resetting your prompt. Please try again.",
                    ephemeral=True,
                )
                return

            if deleted:
                message = "✅ Your custom prompt has been reset to the default system prompt."
            else:
                message = "ℹ️ You don't have a custom prompt set. Using the default system prompt."
            await interaction.response.send_message(message, ephemeral=True)
            return

        prompt = prompt.strip()
        if len(prompt) > MAX_CUSTOM_PROMPT_LENGTH:
            await interaction.response.send_message(
                f"❌ Custom prompts are limited to {MAX_CUSTOM_PROMPT_LENGTH} characters.",
                ephemeral=True,
            )
            return

        try:
            await self.bot.db_manager.set_user_prompt(user_id, prompt)
        except DatabaseError as e:
            self.logger.error("Error setting user prompt", error=str(e), user_id=user_id)
            await interaction.response.send_message(
                "❌ An error occurred while saving your prompt. Please try again.",
                ephemeral=True,
            )
            return

        embed = discord.Embed(
            title="✅ Custom Prompt Set",
            color=discord.Color.green(),
            description="Your custom system prompt has been saved and will be used for all future interactions.",
        )
        embed.add_field(
            name="🎯 Your Custom Prompt",
            value=prompt if len(prompt) <= 1000 else prompt[:1000] + "...",
            inline=False,
        )
        embed.add_field(
            name="ℹ️ Note",
            value="Use `/configure` without a prompt to reset to default.",
            inline=False,
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)


class UtilityCommands(commands.Cog):
    """Status and help commands."""

    def __init__(self, bot) -> None:
        self.bot = bot
        self.logger = get_logger(__name__)

    @app_commands.command(name="status", description="Get bot status and statistics")
    async def status(self, interaction: discord.Interaction) -> None:
        orchestrator = self.bot.orchestrator
        stats = orchestrator.stats
        quota = self.bot.rate_limiter.get_global_limit_info()

        embed = discord.Embed(title="🤖 Bot Status", color=discord.Color.green())
        embed.add_field(
            name="🧠 Current Model",
            value=provider_display(orchestrator.current_provider.name),
            inline=True,
        )
        embed.add_field(name="⏱️ Uptime", value=format_uptime(stats.uptime(time.time())), inline=True)
        embed.add_field(name="📊 Total Messages", value=str(stats.total_messages), inline=True)
        embed.add_field(
            name="⚡ Groq Requests",
            value=f"{quota['requests']}/{quota['limit']} (daily)",
            inline=True,
        )
        embed.add_field(name="🤗 HF Requests", value=str(stats.huggingface_requests), inline=True)
        embed.add_field(name="❌ Errors", value=str(stats.errors), inline=True)

        await interaction.response.send_message(embed=embed)

    @app_commands.command(name="model", description="Get current AI model information")
    async def model(self, interaction: discord.Interaction) -> None:
        provider = self.bot.orchestrator.current_provider
        info = provider.get_model_info()
        is_primary = provider is self.bot.orchestrator.primary

        features = "\n".join(f"- {feature}" for feature in info["features"])
        embed = discord.Embed(
            title="🧠 Current AI Model",
            description=(
                f"{provider_display(provider.name)} ({'Primary' if is_primary else 'Fallback'})\n"
                f"**Model:** `{info['model']}`\n{features}\n- Limits: {info['limits']}"
            ),
            color=discord.Color.green() if is_primary else discord.Color.orange(),
        )
        await interaction.response.send_message(embed=embed)

    @app_commands.command(name="help", description="Show help information")
    async def help_command(self, interaction: discord.Interaction) -> None:
        embed = discord.Embed(
            title="🤖 Discord AI Bot Help",
            color=discord.Color.green(),
            description="I'm an AI assistant powered by LLaMA 3.1. Here's how to use me:",
        )
        embed.add_field(
            name="💬 Chatting",
            value="• @mention me anywhere to chat\n"
                  "• Send me a DM for private conversations\n"
                  "• Use `/chat <message>` from any channel",
            inline=False,
        )
        embed.add_field(
            name="🎛️ Commands",
            value="• `/chat <message>` - Chat with the AI\n"
                  "• `/reset` - Reset your conversation context\n"
                  "• `/configure [prompt]` - Set or clear your custom system prompt\n"
                  "• `/status` - Show bot statistics\n"
                  "• `/model` - Show the current AI model\n"
                  "• `/help` - Show this help message",
            inline=False,
        )
        embed.add_field(
            name="🧠 Memory",
            value="• I remember your last few messages for an hour\n"
                  "• Use `/reset` to start fresh anytime",
            inline=False,
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)


class AdminCommands(commands.Cog):
    """The /admin command."""

    def __init__(self, bot) -> None:
        self.bot = bot
        self.logger = get_logger(__name__)

    @app_commands.command(name="admin", description="Admin commands (requires admin permissions)")
    @app_commands.describe(action="Admin action to perform", value="Value for the action")
    @app_commands.choices(action=[
        app_commands.Choice(name="stats", value="stats"),
        app_commands.Choice(name="reset-limits", value="reset-limits"),
        app_commands.Choice(name="force-model", value="force-model"),
        app_commands.Choice(name="test-services", value="test-services"),
    ])
    async def admin(
        self,
        interaction: discord.Interaction,
        action: app_commands.Choice[str],
        value: Optional[str] = None,
    ) -> None:
        if not self.bot.is_admin(interaction.user):
            await interaction.response.send_message(
                "❌ You need administrator permissions to use this command.",
                ephemeral=True,
            )
            return

        admin_id = str(interaction.user.id)
        log_function_call("admin_command", admin_id=admin_id, action=action.value, value=value)

        if action.value == "stats":
            await self._stats(interaction)
        elif action.value == "reset-limits":
            await self._reset_limits(interaction, value, admin_id)
        elif action.value == "force-model":
            await self._force_model(interaction, value, admin_id)
        elif action.value == "test-services":
            await self._test_services(interaction)
        else:
            await interaction.response.send_message("❌ Unknown admin action.", ephemeral=True)

    async def _stats(self, interaction: discord.Interaction) -> None:
        admin = self.bot.admin
        stats = admin.get_stats()
        bot_stats = stats["bot"]
        quota = stats["rateLimits"]["groq"]
        conversations = stats["conversations"]

        embed = discord.Embed(title="🔧 Admin Statistics", color=discord.Color.red())
        embed.add_field(name="⏱️ Uptime", value=format_uptime(bot_stats["uptime"]), inline=True)
        embed.add_field(
            name="🧠 Current Model",
            value=f"{provider_display(stats['provider']['current'])} ({stats['provider']['selection']})",
            inline=True,
        )
        embed.add_field(name="📊 Messages Processed", value=str(bot_stats["totalMessages"]), inline=True)
        embed.add_field(
            name="⚡ Groq Requests",
            value=f"{quota['requests']}/{quota['limit']} ({quota['percentage']}%)",
            inline=True,
        )
        embed.add_field(name="🤗 HF Requests", value=str(bot_stats["huggingfaceRequests"]), inline=True)
        embed.add_field(name="❌ Errors", value=str(bot_stats["errors"]), inline=True)
        embed.add_field(
            name="💬 Active Conversations",
            value=f"{conversations['activeConversations']}/{conversations['totalConversations']}",
            inline=True,
        )
        embed.add_field(name="📝 Total Context Messages", value=str(conversations["totalMessages"]), inline=True)
        embed.add_field(
            name="👥 Tracked Users",
            value=str(stats["rateLimits"]["activeUserLimits"]),
            inline=True,
        )

        active_users = admin.conversation_store.get_active_users()[:5]
        if active_users:
            embed.add_field(
                name="🏆 Most Recently Active",
                value="\n".join(
                    f"{i}. {user['userId']} ({user['messageCount']} msgs)"
                    for i, user in enumerate(active_users, start=1)
                ),
                inline=False,
            )

        embed.add_field(name="🔄 Groq Limit Reset", value=quota["resetTime"], inline=False)
        await interaction.response.send_message(embed=embed, ephemeral=True)

    async def _reset_limits(self, interaction: discord.Interaction, value: Optional[str], admin_id: str) -> None:
        admin = self.bot.admin
        target = (value or "").strip().lower()

        if target == "groq":
            previous = await admin.reset_global(admin_id)
            message = f"✅ Reset Groq limits. Previous count: {previous}"
        elif target == "users":
            cleared = await admin.reset_users(admin_id)
            message = f"✅ Reset all user rate limits. Cleared: {cleared} users"
        elif target == "conversations":
            cleared = await admin.clear_conversations(admin_id)
            message = f"✅ Cleared all conversations. Removed: {cleared} conversations"
        elif target == "all":
            result = await admin.reset_all(admin_id)
            message = (
                f"✅ Reset everything. Users: {result['userCount']}, "
                f"Groq requests: {result['groqCount']}, "
                f"Conversations: {result['conversationCount']}"
            )
        elif target.isdigit():
            previous = await admin.reset_user(target, admin_id)
            message = f"✅ Reset rate limit for user {target}. Previous count: {previous}"
        else:
            message = "❌ Value must be one of: groq, users, conversations, all, or a user ID."

        await interaction.response.send_message(message, ephemeral=True)

    async def _force_model(self, interaction: discord.Interaction, value: Optional[str], admin_id: str) -> None:
        selection = PROVIDER_ALIASES.get((value or "").strip().lower())
        if selection is None:
            await interaction.response.send_message(
                "❌ Value must be one of: auto, groq, huggingface.",
                ephemeral=True,
            )
            return

        result = await self.bot.admin.force_provider(selection, admin_id)
        await interaction.response.send_message(
            f"✅ Provider selection changed from `{result['previous']}` to `{result['selection']}`.",
            ephemeral=True,
        )

    async def _test_services(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        results = await self.bot.admin.test_services()
        lines = [
            f"{provider_display(name)}: {'✅ Online' if ok else '❌ Offline'}"
            for name, ok in results.items()
        ]
        await interaction.followup.send("\n".join(lines), ephemeral=True)


async def setup_commands(bot) -> None:
    """Register every command cog on ``bot``."""
    logger = get_logger(__name__)
    logger.debug("Setting up command cogs")

    await bot.add_cog(ChatCommands(bot))
    await bot.add_cog(UtilityCommands(bot))
    await bot.add_cog(AdminCommands(bot))

    logger.info("Command cogs loaded", cogs=["ChatCommands", "UtilityCommands", "AdminCommands"])
