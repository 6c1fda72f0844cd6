from __future__ import annotations

import logging

import discord
from discord import app_commands
from discord.ext import commands

from clanhall_core.errors import ClanHallError, summarize_errors
from clanhall_core.platform import DiscordPlatform
from clanhall_core.utils import add_fields, admin_command_check, create_embed

logger = logging.getLogger(__name__)

LIST_LIMIT = 10


class ConfirmRestoreView(discord.ui.View):
    """Confirmation buttons shown before a snapshot is restored."""

    def __init__(self, cog: "SnapshotsCog", user_id: int, snapshot_id: str) -> None:
        super().__init__(timeout=120)
        self.cog = cog
        self.user_id = user_id
        self.snapshot_id = snapshot_id

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id != self.user_id:
            await interaction.response.send_message("You can't use this button.", ephemeral=True)
            return False
        return True

    @discord.ui.button(label="Restore", style=discord.ButtonStyle.danger, emoji="♻️")
    async def confirm_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        self.stop()
        await interaction.response.edit_message(
            content=f"⏳ Restoring snapshot `{self.snapshot_id}`...", embed=None, view=None
        )
        await self.cog.run_restore(interaction, self.snapshot_id)

    @discord.ui.button(label="Cancel", style=discord.ButtonStyle.secondary, emoji="❌")
    async def cancel_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        self.stop()
        await interaction.response.edit_message(content="Restore cancelled.", embed=None, view=None)


class SnapshotsCog(commands.Cog):
    """Create, list and restore server structure snapshots."""

    snapshot = app_commands.Group(
        name="snapshot",
        description="Back up and restore your server structure",
        guild_only=True,
    )

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    @property
    def provisioning(self):
        return self.bot.provisioning

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        return admin_command_check(interaction)

    @snapshot.command(name="create", description="Save the current categories, channels and roles")
    async def snapshot_create(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            snapshot = await self.provisioning.create_snapshot(DiscordPlatform(interaction.guild))
        except ClanHallError as e:
            await interaction.followup.send(e.format_for_user(), ephemeral=True)
            return

        embed = create_embed(
            title="📦 Snapshot Created",
            description=f"Snapshot ID: `{snapshot.snapshot_id}`",
            color=discord.Color.green(),
            timestamp=True,
        )
        add_fields(
            embed,
            [
                ("Categories", str(len(snapshot.categories))),
                ("Channels", str(len(snapshot.channels))),
                ("Roles", str(len(snapshot.roles))),
            ],
            inline=True,
        )
        await interaction.followup.send(embed=embed, ephemeral=True)

    @snapshot.command(name="list", description="Show stored snapshots for this server")
    async def snapshot_list(self, interaction: discord.Interaction) -> None:
        infos = await self.provisioning.list_snapshots(interaction.guild.id)
        if not infos:
            await interaction.response.send_message(
                "No snapshots yet. Create one with `/snapshot create`.", ephemeral=True
            )
            return

        lines = [
            f"`{info.snapshot_id}` • {discord.utils.format_dt(info.created_at, 'R')} • "
            f"{info.channel_count} channels, {info.role_count} roles"
            for info in infos[:LIST_LIMIT]
        ]
        if len(infos) > LIST_LIMIT:
            lines.append(f"…and {len(infos) - LIST_LIMIT} more")
        embed = create_embed(
            title="📦 Server Snapshots",
            description="\n".join(lines),
            color=discord.Color.blurple(),
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @snapshot.command(name="restore", description="Recreate missing channels and roles from a snapshot")
    @app_commands.describe(snapshot_id="ID shown by /snapshot list")
    async def snapshot_restore(self, interaction: discord.Interaction, snapshot_id: str) -> None:
        try:
            snapshot = await self.provisioning.snapshot_store.get(interaction.guild.id, snapshot_id)
        except ClanHallError as e:
            await interaction.response.send_message(e.format_for_user(), ephemeral=True)
            return

        embed = create_embed(
            title="♻️ Restore Snapshot?",
            description=(
                f"Snapshot `{snapshot.snapshot_id}` from {discord.utils.format_dt(snapshot.created_at)}.\n\n"
                "Missing roles, categories and channels will be recreated. "
                "Nothing that exists now will be deleted."
            ),
            color=discord.Color.orange(),
        )
        await interaction.response.send_message(
            embed=embed,
            view=ConfirmRestoreView(self, interaction.user.id, snapshot.snapshot_id),
            ephemeral=True,
        )

    async def run_restore(self, interaction: discord.Interaction, snapshot_id: str) -> None:
        try:
            result = await self.provisioning.restore_snapshot(DiscordPlatform(interaction.guild), snapshot_id)
        except ClanHallError as e:
            await interaction.edit_original_response(content=e.format_for_user())
            return

        embed = create_embed(
            title="♻️ Restore Finished",
            description=(
                f"**Roles restored:** {result.roles_restored}\n"
                f"**Channels restored:** {result.channels_restored}"
            ),
            color=discord.Color.orange() if result.errors else discord.Color.green(),
        )
        limit = self.bot.config.provisioning.summary_error_limit
        fields = []
        if result.errors:
            fields.append(("Errors", summarize_errors(result.errors, limit)))
        if result.unresolved:
            fields.append(("Not Restored", summarize_errors(result.unresolved, limit)))
        add_fields(embed, fields)
        await interaction.edit_original_response(content=None, embed=embed)

    async def cog_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        if isinstance(error, app_commands.CheckFailure):
            message = "Only administrators can manage snapshots."
        else:
            logger.error(f"Snapshot command failed for user {interaction.user.id}: {error}", exc_info=error)
            message = "❌ An unexpected error occurred while handling snapshots."
        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)


async def setup(bot: commands.Bot) -> None:
    await bot.add_cog(SnapshotsCog(bot))
