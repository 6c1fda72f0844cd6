"""
ClanHall - Discord bot that sets up and maintains Clash of Clans clan servers.

This is the main entrypoint for the bot.
"""

import asyncio
import logging
import os
import re
import sys
from dataclasses import replace
from pathlib import Path

import discord
from discord.ext import commands, tasks
from dotenv import load_dotenv

from clanhall_core import Database, ProvisioningContext, load_config
from clanhall_core.constants import SESSION_SWEEP_INTERVAL_SECONDS
from clanhall_core.logger import setup_logger

# Load environment variables from .env file
load_dotenv()

logger = setup_logger(level=logging.INFO)


def _validate_token_format(token: str) -> bool:
    """
    Validates that the token matches the expected Discord token format.

    Expected format: three base64-like segments separated by dots.
    """
    if not token or not isinstance(token, str):
        return False

    parts = token.split('.')
    if len(parts) != 3:
        return False

    token_part_pattern = r'^[A-Za-z0-9_-]+$'
    if not all(re.match(token_part_pattern, part) for part in parts):
        return False

    if len(parts[0]) < 10 or len(parts[1]) < 3 or len(parts[2]) < 10:
        return False

    return True


class ClanHallBot(commands.Bot):
    """Bot carrying the config, the clan store and the provisioning context."""

    def __init__(self, *args, **kwargs):
        self.config = kwargs.pop("config")
        self.config_path = kwargs.pop("config_path", "config.json")
        self.db = Database(self.config.database_path)
        self.provisioning = ProvisioningContext.from_config(self.config, clan_store=self.db)
        super().__init__(*args, **kwargs)

    async def setup_hook(self):
        await self.db.connect()
        logger.info("Database connected and schema initialized.")

        channels = self.config.logging_channels
        if channels.audit or channels.errors:
            setup_logger(
                level=logging.INFO,
                enable_discord=True,
                bot=self,
                audit_channel_id=channels.audit,
                error_channel_id=channels.errors,
            )
            logger.info("Discord channel logging enabled.")

        await self._load_cogs()

        for guild_id in self.config.guild_ids:
            guild = discord.Object(id=guild_id)
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
            logger.info(f"Command tree synced for guild {guild_id}")

    async def _load_cogs(self):
        cogs_dir = Path("cogs")
        if not cogs_dir.exists():
            logger.warning("No cogs directory found. Skipping cog loading.")
            return

        for cog_file in cogs_dir.glob("*.py"):
            if cog_file.stem.startswith("_"):
                continue

            extension = f"cogs.{cog_file.stem}"
            try:
                await self.load_extension(extension)
                logger.info(f"Loaded extension: {extension}")
            except Exception as e:
                logger.error(f"Failed to load extension {extension}: {e}", exc_info=True)

    async def on_ready(self):
        logger.info(f"Logged in as {self.user} (ID: {self.user.id})")
        logger.info("ClanHall is ready!")

    async def close(self):
        if sweep_wizard_sessions_task.is_running():
            sweep_wizard_sessions_task.cancel()
            logger.info("Session sweep task cancelled.")

        await self.db.close()
        logger.info("Database connection closed.")
        await super().close()


@tasks.loop(seconds=SESSION_SWEEP_INTERVAL_SECONDS)
async def sweep_wizard_sessions_task():
    """Drop idle and finished setup wizard sessions."""
    try:
        bot = sweep_wizard_sessions_task.bot
        count = bot.provisioning.registry.sweep()
        if count > 0:
            logger.info(f"Cleaned up {count} expired setup wizard session(s)")
    except Exception as error:
        logger.error(f"Failed to sweep wizard sessions: {error}", exc_info=True)


@sweep_wizard_sessions_task.before_loop
async def before_sweep_task():
    """Wait for bot to be ready before starting the sweep."""
    bot = sweep_wizard_sessions_task.bot
    await bot.wait_until_ready()


async def main():
    config_path = os.environ.get("CONFIG_PATH", "config.json")
    token = os.environ.get("DISCORD_TOKEN")

    try:
        config = load_config(config_path)
    except FileNotFoundError as e:
        logger.error(str(e))
        sys.exit(1)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    if token:
        if not _validate_token_format(token):
            logger.error("Invalid DISCORD_TOKEN format in environment variables.")
            sys.exit(1)

        config = replace(config, token=token)
        logger.info("Using token from environment variable")

    intents = discord.Intents.default()
    intents.members = True
    intents.guilds = True

    bot = ClanHallBot(
        command_prefix=config.bot_prefix,
        intents=intents,
        config=config,
        config_path=config_path,
    )

    sweep_wizard_sessions_task.bot = bot
    sweep_wizard_sessions_task.start()
    logger.info("Started wizard session sweep task")

    async with bot:
        await bot.start(config.token)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot shut down by user.")
