"""
Discord event handlers for the AI bot.

Error events are logged and answered with a short notice; nothing raised
from a handler is shown to users verbatim.
"""

import sys
from typing import Any

import discord
from discord.ext import commands

from discord_ai_bot.utils.logging import get_logger, log_discord_event, log_error


UNEXPECTED_ERROR_MESSAGE = "❌ An unexpected error occurred while processing your command."


async def setup_events(bot) -> None:
    """
    Register event handlers on ``bot``.

    Args:
        bot: The Discord bot instance
    """
    logger = get_logger(__name__)
    logger.debug("Setting up event handlers")

    @bot.event
    async def on_command_error(ctx: commands.Context, error: commands.CommandError) -> None:
        if isinstance(error, commands.CommandNotFound):
            return

        if isinstance(error, commands.MissingPermissions):
            await ctx.send("❌ You don't have permission to use this command.")
            return

        log_error(error, {
            "command": ctx.command.name if ctx.command else "unknown",
            "user_id": ctx.author.id,
            "channel_id": ctx.channel.id,
        })
        await ctx.send(UNEXPECTED_ERROR_MESSAGE)

    @bot.tree.error
    async def on_app_command_error(
        interaction: discord.Interaction,
        error: discord.app_commands.AppCommandError,
    ) -> None:
        if isinstance(error, discord.app_commands.CommandOnCooldown):
            message = f"⏰ This command is on cooldown. Try again in {error.retry_after:.1f} seconds."
        elif isinstance(error, discord.app_commands.MissingPermissions):
            message = "❌ You don't have permission to use this command."
        elif isinstance(error, discord.app_commands.TransformerError):
            message = f"❌ Invalid argument provided: {error}"
        else:
            log_error(error, {
                "command": interaction.command.name if interaction.command else "unknown",
                "user_id": interaction.user.id,
                "channel_id": interaction.channel_id,
                "guild_id": interaction.guild_id,
            })
            message = UNEXPECTED_ERROR_MESSAGE

        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)

    @bot.event
    async def on_error(event: str, *args: Any, **kwargs: Any) -> None:
        exc_value = sys.exc_info()[1]
        if exc_value:
            log_error(exc_value, {
                "event": event,
                "args": str(args)[:500],
                "kwargs": str(kwargs)[:500],
            })
        else:
            logger.error("Unknown error in event", event=event)

    @bot.event
    async def on_guild_join(guild: discord.Guild) -> None:
        log_discord_event(
            "guild_join",
            guild_id=guild.id,
            guild_name=guild.name,
            member_count=guild.member_count,
        )

        channel = guild.system_channel
        if channel is None or not channel.permissions_for(guild.me).send_messages:
            return

        embed = discord.Embed(
            title="👋 Hello! Thanks for adding me!",
            color=discord.Color.green(),
            description="I'm an AI assistant powered by LLaMA 3.1.",
        )
        embed.add_field(
            name="🚀 Getting Started",
            value="• @mention me anywhere to chat\n"
                  "• Use `/chat <message>` to start a conversation\n"
                  "• Use `/help` to see all available commands",
            inline=False,
        )
        try:
            await channel.send(embed=embed)
        except discord.HTTPException:
            logger.warning("Failed to send welcome message", guild_id=guild.id)

    @bot.event
    async def on_guild_remove(guild: discord.Guild) -> None:
        log_discord_event("guild_remove", guild_id=guild.id, guild_name=guild.name)

    logger.info("Event handlers setup complete")
