"""
Main entry point for the Discord AI Bot.

Loads configuration, sets up logging, runs the bot until it stops or a
shutdown signal arrives, and then closes every component.
"""

import asyncio
import signal
import sys
from typing import Optional

from discord_ai_bot import __version__
from discord_ai_bot.bot.client import DiscordAIBot
from discord_ai_bot.config import AppConfig, load_config
from discord_ai_bot.utils.exceptions import ConfigurationError
from discord_ai_bot.utils.logging import get_logger, setup_logging


async def create_bot(config: AppConfig) -> DiscordAIBot:
    """
    Create the bot and set up its components.

    Raises:
        ConfigurationError: If the bot cannot be configured
    """
    logger = get_logger(__name__)

    if not config.discord.token:
        raise ConfigurationError("DISCORD_TOKEN is not set")

    try:
        logger.info(
            "Creating Discord bot instance",
            primary_model=config.groq.model_name,
            fallback_model=config.huggingface.model_name,
            database_url=config.database.url,
        )

        bot = DiscordAIBot(config)
        await bot.setup()

        logger.info("Bot instance created successfully")
        return bot

    except Exception as e:
        logger.error("Failed to create bot instance", error=str(e))
        raise ConfigurationError(
            "Failed to create bot instance",
            original_error=e,
        )


async def run_bot(config: AppConfig) -> None:
    """Run the bot until it disconnects or SIGINT/SIGTERM is received."""
    logger = get_logger(__name__)
    bot: Optional[DiscordAIBot] = None

    shutdown_event = asyncio.Event()

    try:
        bot = await create_bot(config)

        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, shutdown_event.set)
            except NotImplementedError:
                # Windows event loops have no signal handler support
                signal.signal(signum, lambda s, f: shutdown_event.set())

        logger.info("Starting Discord bot")

        bot_task = asyncio.create_task(bot.start(config.discord.token))
        shutdown_task = asyncio.create_task(shutdown_event.wait())

        done, pending = await asyncio.wait(
            [bot_task, shutdown_task],
            return_when=asyncio.FIRST_COMPLETED,
        )

        if shutdown_task in done:
            logger.info("Received shutdown signal")

        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if bot_task in done and bot_task.exception():
            raise bot_task.exception()

    finally:
        if bot:
            logger.info("Cleaning up bot resources")
            try:
                await asyncio.wait_for(bot.close(), timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("Bot shutdown timed out after 5 seconds, forcing close")
            except Exception as e:
                logger.error("Error during bot shutdown", error=str(e))


async def main_async() -> None:
    config = load_config()
    setup_logging(config.logging)
    logger = get_logger(__name__)

    logger.info("Discord AI Bot starting up", version=__version__, debug_mode=config.debug)

    try:
        await run_bot(config)
    finally:
        logger.info("Discord AI Bot shutdown complete")


def main() -> None:
    """
    Console entry point.

    Example:
        ```bash
        discord-ai-bot
        ```
    """
    try:
        asyncio.run(main_async())
    except KeyboardInterrupt:
        print("\nBot shutdown requested", file=sys.stderr)
        sys.exit(0)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
