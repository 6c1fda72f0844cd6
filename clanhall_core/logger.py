"""
Logging for the ClanHall provisioning bot.

Everything the core does is logged under the ``clanhall_core`` logger.
Provisioning decisions that a server admin should see later (who started
the wizard, which template was applied, which snapshot was restored) go to
the ``clanhall_core.audit`` child and can be mirrored into an audit channel;
errors from the core and from the cogs can be mirrored into an error channel.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Iterable, Optional

LOGGER_NAME = "clanhall_core"
AUDIT_LOGGER_NAME = f"{LOGGER_NAME}.audit"
COG_LOGGER_NAME = "cogs"
DISCORD_MESSAGE_LIMIT = 2000
TRACEBACK_LIMIT = 1500

CONSOLE_FORMAT = "[%(asctime)s] %(levelname)s:%(name)s: %(message)s"
CONSOLE_DATEFMT = "%Y-%m-%d %H:%M:%S"

LEVEL_EMOJI = {
    logging.DEBUG: "🔍",
    logging.INFO: "📋",
    logging.WARNING: "⚠️",
    logging.ERROR: "❌",
    logging.CRITICAL: "🚨",
}

# Global logger instance
logger: Optional[logging.Logger] = None


class AuditFilter(logging.Filter):
    """Pass only records from the audit logger and its children."""

    def __init__(self) -> None:
        super().__init__(AUDIT_LOGGER_NAME)


class DiscordHandler(logging.Handler):
    """Mirror log records into one Discord channel.

    Records are formatted as a single chat message no longer than Discord's
    limit; a traceback is attached in a code block. Delivery is scheduled on
    the bot's event loop and never raises into the logging call.
    """

    def __init__(self, bot=None, channel_id: Optional[int] = None, label: str = ""):
        super().__init__()
        self.bot = bot
        self.channel_id = channel_id
        self.label = label

    def render(self, record: logging.LogRecord) -> str:
        emoji = LEVEL_EMOJI.get(record.levelno, "📋")
        header = f"{emoji} **{self.label or record.levelname}**"
        message = f"{header}: {record.getMessage()}"

        if record.exc_info:
            trace = logging.Formatter().formatException(record.exc_info)
            if len(trace) > TRACEBACK_LIMIT:
                trace = "..." + trace[-TRACEBACK_LIMIT:]
            message = f"{message}\n```py\n{trace}\n```"

        if len(message) > DISCORD_MESSAGE_LIMIT:
            message = message[: DISCORD_MESSAGE_LIMIT - 3] + "..."
        return message

    def emit(self, record: logging.LogRecord) -> None:
        if not (self.bot and self.channel_id):
            return

        channel = self.bot.get_channel(self.channel_id)
        if channel is None:
            return

        try:
            message = self.render(record)
        except Exception:
            self.handleError(record)
            return
        self._schedule_send(channel, message)

    def _event_loop(self) -> Optional[asyncio.AbstractEventLoop]:
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            loop = getattr(self.bot, "loop", None)
            return loop if loop is not None and loop.is_running() else None

    def _schedule_send(self, channel, message: str) -> None:
        loop = self._event_loop()
        if loop is None:
            return
        try:
            asyncio.run_coroutine_threadsafe(self._send(channel, message), loop)
        except RuntimeError as e:
            # stderr only, logging here would recurse
            print(f"DiscordHandler: could not schedule message: {e}", file=sys.stderr)

    async def _send(self, channel, message: str) -> None:
        try:
            await channel.send(message)
        except Exception as e:
            print(f"DiscordHandler: could not deliver message to {self.channel_id}: {e}", file=sys.stderr)


def _console_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=CONSOLE_DATEFMT))
    return handler


def _configure(target: logging.Logger, level: int, handlers: Iterable[logging.Handler]) -> None:
    target.setLevel(level)
    target.handlers.clear()
    for handler in handlers:
        target.addHandler(handler)
    target.propagate = False


def setup_logger(
    level: int = logging.INFO,
    enable_discord: bool = False,
    bot=None,
    audit_channel_id: Optional[int] = None,
    error_channel_id: Optional[int] = None,
) -> logging.Logger:
    """
    Configure the core and cog loggers.

    Args:
        level: Logging level (default: INFO)
        enable_discord: Whether to mirror records into Discord channels
        bot: Discord bot instance used to resolve channels
        audit_channel_id: Channel receiving ``clanhall_core.audit`` records
        error_channel_id: Channel receiving ERROR and above from core and cogs

    Returns:
        The configured ``clanhall_core`` logger
    """
    global logger

    core_handlers: list[logging.Handler] = [_console_handler()]
    cog_handlers: list[logging.Handler] = [_console_handler()]

    if enable_discord and bot:
        if audit_channel_id:
            audit_handler = DiscordHandler(bot, audit_channel_id, label="Audit")
            audit_handler.setLevel(logging.INFO)
            audit_handler.addFilter(AuditFilter())
            core_handlers.append(audit_handler)

        if error_channel_id:
            error_handler = DiscordHandler(bot, error_channel_id)
            error_handler.setLevel(logging.ERROR)
            core_handlers.append(error_handler)
            cog_handlers.append(error_handler)

    logger = logging.getLogger(LOGGER_NAME)
    _configure(logger, level, core_handlers)
    _configure(logging.getLogger(COG_LOGGER_NAME), level, cog_handlers)
    return logger


def get_logger() -> logging.Logger:
    """Return the shared logger, creating a console-only one if needed."""
    global logger
    if logger is None:
        logger = logging.getLogger(LOGGER_NAME)
        if not logger.handlers:
            _configure(logger, logging.INFO, [_console_handler()])
    return logger


def get_audit_logger() -> logging.Logger:
    """Logger for admin-visible provisioning decisions."""
    get_logger()
    return logging.getLogger(AUDIT_LOGGER_NAME)
