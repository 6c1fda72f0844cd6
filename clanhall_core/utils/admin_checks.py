"""Admin check utilities for hiding commands from non-admins."""

from __future__ import annotations

import discord
from discord import app_commands

from .permissions import is_admin


def admin_command_check(interaction: discord.Interaction) -> bool:
    """Check if user is admin for app_commands."""
    if not interaction.guild:
        return False
    if not hasattr(interaction.client, "config"):
        return False
    return is_admin(interaction.user, interaction.guild, interaction.client.config)


def admin_only():
    """Decorator restricting an app command to administrators."""
    return app_commands.check(admin_command_check)
