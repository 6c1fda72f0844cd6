"""Embed factory utilities."""

from typing import Optional

import discord

from ..constants import EMBED_DESCRIPTION_MAX_LENGTH, EMBED_FIELD_VALUE_MAX_LENGTH, EMBED_MAX_FIELDS


def create_embed(
    title: Optional[str] = None,
    description: Optional[str] = None,
    color: discord.Color = discord.Color.blue(),
    footer: Optional[str] = None,
    timestamp: bool = False
) -> discord.Embed:
    """
    Create a standardized Discord embed.

    Args:
        title: Embed title
        description: Embed description, truncated to the Discord limit
        color: Embed color (default: blue)
        footer: Footer text
        timestamp: Whether to add current timestamp

    Returns:
        Configured Discord Embed
    """
    if description and len(description) > EMBED_DESCRIPTION_MAX_LENGTH:
        description = description[: EMBED_DESCRIPTION_MAX_LENGTH - 1] + "…"

    embed = discord.Embed(
        title=title,
        description=description,
        color=color
    )

    if footer:
        embed.set_footer(text=footer)

    if timestamp:
        embed.timestamp = discord.utils.utcnow()

    return embed


def add_fields(embed: discord.Embed, fields, inline: bool = False) -> discord.Embed:
    """Add ``(name, value)`` pairs, clipping values and dropping fields past the limit."""
    for name, value in list(fields)[:EMBED_MAX_FIELDS]:
        if len(value) > EMBED_FIELD_VALUE_MAX_LENGTH:
            value = value[: EMBED_FIELD_VALUE_MAX_LENGTH - 1] + "…"
        embed.add_field(name=name, value=value or "\u200b", inline=inline)
    return embed
