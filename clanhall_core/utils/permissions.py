"""Permission checking utilities for the admin-only setup commands."""

from __future__ import annotations

from typing import Optional

import discord

from ..config import Config


def is_admin(
    user: discord.abc.User,
    guild: Optional[discord.Guild],
    config: Config,
) -> bool:
    """
    Check if a user may run setup commands.

    Members with the guild Administrator permission always qualify; the
    configured admin role grants access as well.

    Args:
        user: Discord user to check
        guild: Guild context (None if in DMs)
        config: Bot configuration containing role IDs

    Returns:
        True if user has admin privileges, False otherwise
    """
    if guild is None:
        return False

    member = guild.get_member(user.id)
    if not member:
        return False

    if member.guild_permissions.administrator:
        return True

    admin_role_id = getattr(config.role_ids, "admin", None)
    if not admin_role_id:
        return False

    return any(role.id == admin_role_id for role in getattr(member, "roles", []))
