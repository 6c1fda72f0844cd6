from __future__ import annotations

import logging
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from clanhall_core.errors import ClanHallError, summarize_errors
from clanhall_core.platform import DiscordPlatform
from clanhall_core.templates import SERVER_TEMPLATES
from clanhall_core.utils import add_fields, admin_only, create_embed
from clanhall_core.wizard import (
    CANCEL,
    CHOOSE_PREFIX,
    CONFIRM,
    ENTER_CLAN,
    NEXT,
    PREV,
    SKIP_CLAN,
    STATUS_EMOJI,
    TOGGLE_PREFIX,
    USE_LINKED_CLAN,
    StageProgress,
    StepView,
)

logger = logging.getLogger(__name__)

BUTTON_STYLES = {
    "primary": discord.ButtonStyle.primary,
    "secondary": discord.ButtonStyle.secondary,
    "success": discord.ButtonStyle.success,
    "danger": discord.ButtonStyle.danger,
}
BUTTONS_PER_ROW = 5


def progress_line(update: StageProgress) -> str:
    label = f"**Step {update.index}/{update.total}:** {update.stage.title()}"
    if update.report is None:
        return f"{label}: ⏳ In progress..."
    return f"{label}: {STATUS_EMOJI.get(update.report.status, '')} {update.report.status}"


def render_embed(step: StepView) -> discord.Embed:
    """Turn a wizard step into an embed."""
    embed = create_embed(
        title=step.title,
        description=step.description,
        color=discord.Color(step.color),
        footer=step.footer,
    )
    return add_fields(embed, step.fields)


class WizardButton(discord.ui.Button["WizardView"]):
    """Button bound to one wizard control id."""

    def __init__(self, control_id: str, label: str, style: str, emoji: Optional[str], disabled: bool, row: int) -> None:
        super().__init__(
            label=label,
            style=BUTTON_STYLES.get(style, discord.ButtonStyle.secondary),
            emoji=emoji,
            disabled=disabled,
            row=row,
        )
        self.control_id = control_id

    async def callback(self, interaction: discord.Interaction) -> None:
        cog: SetupWizardCog = interaction.client.get_cog("SetupWizardCog")  # type: ignore
        if not cog:
            await interaction.response.send_message("Setup cog not loaded.", ephemeral=True)
            return
        await cog.handle_control(interaction, self.control_id)


class WizardView(discord.ui.View):
    """Buttons for the controls of one wizard step."""

    def __init__(self, step: StepView, timeout_seconds: float) -> None:
        super().__init__(timeout=timeout_seconds)
        for index, control in enumerate(step.controls[: BUTTONS_PER_ROW * 5]):
            self.add_item(
                WizardButton(
                    control.id,
                    control.label,
                    control.style,
                    control.emoji,
                    control.disabled,
                    row=index // BUTTONS_PER_ROW,
                )
            )


class ClanTagModal(discord.ui.Modal, title="Link Your Clan"):
    """Modal asking for the clan tag to link during setup."""

    clan_tag = discord.ui.TextInput(
        label="Clan tag",
        placeholder="e.g., #2PP",
        required=True,
        max_length=12,
    )
    clan_name = discord.ui.TextInput(
        label="Clan name (optional)",
        placeholder="Shown in the setup summary",
        required=False,
        max_length=50,
    )

    async def on_submit(self, interaction: discord.Interaction) -> None:
        cog: SetupWizardCog = interaction.client.get_cog("SetupWizardCog")  # type: ignore
        if not cog:
            await interaction.response.send_message("Setup cog not loaded.", ephemeral=True)
            return
        await cog.handle_clan_tag(interaction, self.clan_tag.value, self.clan_name.value)


class SetupWizardCog(commands.Cog):
    """Slash commands and components for the guided server setup."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    @property
    def provisioning(self):
        return self.bot.provisioning

    @property
    def view_timeout(self) -> float:
        return self.bot.config.setup_settings.session_timeout_minutes * 60

    def _view_for(self, step: StepView) -> Optional[WizardView]:
        return WizardView(step, self.view_timeout) if step.controls else None

    async def _reject(self, interaction: discord.Interaction, error: ClanHallError) -> None:
        message = error.format_for_user()
        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)

    @app_commands.command(name="setupwizard", description="Set up categories, channels, roles and permissions for your clan")
    @app_commands.guild_only()
    @admin_only()
    async def setupwizard(self, interaction: discord.Interaction) -> None:
        """Start the setup wizard for this server."""
        if interaction.guild is None:
            await interaction.response.send_message(
                "This command can only be used in a server.", ephemeral=True
            )
            return

        try:
            step = await self.provisioning.wizard.start(interaction.guild.id, interaction.user.id)
        except ClanHallError as e:
            await self._reject(interaction, e)
            return

        await interaction.response.send_message(embed=render_embed(step), view=self._view_for(step))

    async def handle_control(self, interaction: discord.Interaction, control_id: str) -> None:
        guild = interaction.guild
        if guild is None:
            return

        wizard = self.provisioning.wizard
        guild_id, user_id = guild.id, interaction.user.id
        try:
            if control_id == ENTER_CLAN:
                wizard.registry.require_owner(guild_id, user_id)
                await interaction.response.send_modal(ClanTagModal())
                return
            if control_id == CONFIRM:
                await self._confirm(interaction)
                return

            if control_id == NEXT:
                await interaction.response.defer()
                step = await wizard.next(guild_id, user_id, DiscordPlatform(guild))
            elif control_id == PREV:
                step = wizard.prev(guild_id, user_id)
            elif control_id == CANCEL:
                step = wizard.cancel(guild_id, user_id)
            elif control_id == USE_LINKED_CLAN:
                step = wizard.use_linked_clan(guild_id, user_id)
            elif control_id == SKIP_CLAN:
                step = wizard.skip_clan(guild_id, user_id)
            elif control_id.startswith(TOGGLE_PREFIX):
                step = wizard.toggle(guild_id, user_id, control_id[len(TOGGLE_PREFIX):])
            elif control_id.startswith(CHOOSE_PREFIX):
                step = wizard.choose(guild_id, user_id, control_id[len(CHOOSE_PREFIX):])
            else:
                logger.warning(f"Unknown setup wizard control: {control_id}")
                return
        except ClanHallError as e:
            await self._reject(interaction, e)
            return

        if interaction.response.is_done():
            await interaction.edit_original_response(embed=render_embed(step), view=self._view_for(step))
        else:
            await interaction.response.edit_message(embed=render_embed(step), view=self._view_for(step))

    async def handle_clan_tag(self, interaction: discord.Interaction, tag: str, name: str) -> None:
        if interaction.guild is None:
            return
        try:
            step = self.provisioning.wizard.select_clan(interaction.guild.id, interaction.user.id, tag, name)
        except ClanHallError as e:
            await self._reject(interaction, e)
            return

        # modal submissions from a component can edit the message they came from
        await interaction.response.edit_message(embed=render_embed(step), view=self._view_for(step))

    async def _confirm(self, interaction: discord.Interaction) -> None:
        guild = interaction.guild
        wizard = self.provisioning.wizard
        wizard.registry.require_owner(guild.id, interaction.user.id)
        await interaction.response.defer()

        lines: dict[str, str] = {}

        async def report_progress(update: StageProgress) -> None:
            # skipped stages report once, without a start update
            lines[update.stage] = progress_line(update)
            embed = create_embed(
                title="🏗️ Applying Server Setup",
                description="\n".join(lines.values()),
                color=discord.Color.blue(),
            )
            await interaction.edit_original_response(embed=embed, view=None)

        try:
            step = await wizard.confirm(
                guild.id, interaction.user.id, DiscordPlatform(guild), progress=report_progress
            )
        except ClanHallError as e:
            await self._reject(interaction, e)
            return

        await interaction.edit_original_response(embed=render_embed(step), view=None)

    @app_commands.command(name="applytemplate", description="Create the missing channels of a server template")
    @app_commands.guild_only()
    @admin_only()
    @app_commands.choices(
        template=[app_commands.Choice(name=t.name, value=key) for key, t in SERVER_TEMPLATES.items()]
    )
    async def applytemplate(self, interaction: discord.Interaction, template: app_commands.Choice[str]) -> None:
        """Reconcile a structure template without running the wizard."""
        if interaction.guild is None:
            await interaction.response.send_message(
                "This command can only be used in a server.", ephemeral=True
            )
            return

        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            result = await self.provisioning.apply_template(DiscordPlatform(interaction.guild), template.value)
        except ClanHallError as e:
            await self._reject(interaction, e)
            return

        structure = result.structure
        embed = create_embed(
            title=f"📋 {template.name}",
            description=(
                f"**Created:** {structure.created_count}\n"
                f"**Already present:** {structure.skipped_count}"
            ),
            color=discord.Color.orange() if result.errors else discord.Color.green(),
        )
        if result.errors:
            add_fields(
                embed,
                [("Errors", summarize_errors(result.errors, self.bot.config.provisioning.summary_error_limit))],
            )
        await interaction.followup.send(embed=embed, ephemeral=True)

    async def cog_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        if isinstance(error, app_commands.CheckFailure):
            message = "Only administrators can use this command."
        else:
            logger.error(f"Setup command failed for user {interaction.user.id}: {error}", exc_info=error)
            message = (
                "❌ An unexpected error occurred.\n\n"
                "💡 **Suggestion:** Try again or contact an administrator."
            )
        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)


async def setup(bot: commands.Bot) -> None:
    await bot.add_cog(SetupWizardCog(bot))
