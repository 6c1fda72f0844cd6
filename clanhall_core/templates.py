"""Template catalog for ClanHall.

Static, data-only bundles describing the categories, channels and role
families the setup wizard can provision. Nothing here talks to Discord; the
reconcilers compare these definitions against the live guild.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Literal, Optional

import discord

from .errors import UnknownTemplateError

RoleFamily = Literal["clan-position", "tier", "purpose"]


@dataclass(frozen=True)
class ChannelTemplate:
    """Desired text or voice channel inside a category."""
    name: str
    kind: Literal["text", "voice"] = "text"
    topic: Optional[str] = None
    aliases: tuple[str, ...] = ()


@dataclass(frozen=True)
class CategoryTemplate:
    """Desired category with its child channels."""
    name: str
    channels: tuple[ChannelTemplate, ...] = ()
    aliases: tuple[str, ...] = ()


@dataclass(frozen=True)
class ServerTemplate:
    """Complete structure template."""
    key: str
    name: str
    description: str
    categories: tuple[CategoryTemplate, ...] = ()

    @property
    def channel_count(self) -> int:
        return sum(len(category.channels) for category in self.categories)

    @property
    def entity_count(self) -> int:
        return len(self.categories) + self.channel_count


@dataclass(frozen=True)
class RoleSpec:
    """Blueprint for a role.

    ``key`` is the stable handle used by permission policies; ``level`` is
    only set for tier roles.
    """
    key: str
    name: str
    color: str
    permissions: int = 0
    family: RoleFamily = "purpose"
    level: Optional[int] = None
    aliases: tuple[str, ...] = ()
    hoist: bool = False
    mentionable: bool = False

    @property
    def color_value(self) -> int:
        return int(self.color.lstrip("#"), 16)


@dataclass(frozen=True)
class RoleSet:
    """A selectable group of roles shown as one wizard option."""
    key: str
    name: str
    description: str
    roles: tuple[RoleSpec, ...] = field(default_factory=tuple)
    default_selected: bool = False


def _text(name: str, topic: str) -> ChannelTemplate:
    return ChannelTemplate(name=name, kind="text", topic=topic)


def _voice(name: str) -> ChannelTemplate:
    return ChannelTemplate(name=name, kind="voice")


# ============================================================================
# Structure templates
# ============================================================================

STANDARD_TEMPLATE = ServerTemplate(
    key="standard",
    name="Standard Clan",
    description="Basic structure with general, announcement, and war channels",
    categories=(
        CategoryTemplate(
            name="📢 CLAN HALL",
            channels=(
                _text("welcome", "Welcome new members"),
                _text("rules", "Clan rules and guidelines"),
                _text("announcements", "Important clan announcements"),
                _text("introductions", "Introduce yourself to the clan"),
            ),
        ),
        CategoryTemplate(
            name="💬 GENERAL",
            channels=(
                _text("general", "General chat for clan members"),
                _text("base-sharing", "Share your base designs"),
                _text("attack-strategy", "Discuss attack strategies"),
                _text("bot-commands", "Use bot commands here"),
                _voice("general-voice"),
            ),
        ),
        CategoryTemplate(
            name="⚔️ WAR ROOM",
            channels=(
                _text("war-announcements", "War start/end announcements"),
                _text("war-planning", "Plan war attacks here"),
                _text("war-results", "War results and stats"),
                _text("cwl-discussion", "Clan War League discussions"),
                _voice("war-meeting"),
            ),
        ),
    ),
)

COMPETITIVE_TEMPLATE = ServerTemplate(
    key="competitive",
    name="Competitive Clan",
    description="Focus on war strategy, CWL, and tournament organization",
    categories=(
        CategoryTemplate(
            name="📢 CLAN INFO",
            channels=(
                _text("welcome", "Welcome new members"),
                _text("rules", "Clan rules and guidelines"),
                _text("announcements", "Important clan announcements"),
                _text("clan-stats", "Clan statistics and tracking"),
            ),
        ),
        CategoryTemplate(
            name="💬 GENERAL",
            channels=(
                _text("general", "General chat for clan members"),
                _text("bot-commands", "Use bot commands here"),
                _voice("general-voice"),
                _voice("music-bot"),
            ),
        ),
        CategoryTemplate(
            name="⚔️ WAR PLANNING",
            channels=(
                _text("war-announcements", "War start/end announcements"),
                _text("attack-assignments", "War attack assignments"),
                _text("war-planning", "Plan war attacks here"),
                _text("base-analysis", "Analyze enemy bases"),
                _voice("war-meeting"),
            ),
        ),
        CategoryTemplate(
            name="🏆 CWL & TOURNAMENTS",
            channels=(
                _text("cwl-planning", "CWL planning and strategy"),
                _text("cwl-results", "CWL results and standings"),
                _text("tournaments", "Tournament information"),
                _text("competitive-team", "Competitive team chat"),
                _voice("strategy-meeting"),
            ),
        ),
        CategoryTemplate(
            name="📊 STATS & ANALYTICS",
            channels=(
                _text("performance-tracking", "Track player performance"),
                _text("attack-analysis", "Analyze attack replays"),
                _text("strategies-library", "Share battle strategies"),
            ),
        ),
    ),
)

COMMUNITY_TEMPLATE = ServerTemplate(
    key="community",
    name="Community Clan",
    description="More social channels and discussion areas",
    categories=(
        CategoryTemplate(
            name="📢 WELCOME",
            channels=(
                _text("welcome", "Welcome new members"),
                _text("rules", "Community rules and guidelines"),
                _text("announcements", "Important announcements"),
                _text("introductions", "Introduce yourself to the community"),
            ),
        ),
        CategoryTemplate(
            name="💬 CHAT",
            channels=(
                _text("general", "General chat for everyone"),
                _text("memes", "Share your memes"),
                _text("off-topic", "Off-topic discussions"),
                _text("bot-commands", "Use bot commands here"),
                _voice("general-voice"),
                _voice("chill-lounge"),
            ),
        ),
        CategoryTemplate(
            name="⚔️ CLASH OF CLANS",
            channels=(
                _text("clash-general", "General CoC discussion"),
                _text("base-sharing", "Share your base designs"),
                _text("attack-strategy", "Discuss attack strategies"),
                _text("clan-war", "War discussions"),
                _voice("war-planning"),
            ),
        ),
        CategoryTemplate(
            name="🎮 GAMING",
            channels=(
                _text("games-discussion", "Discuss other games"),
                _text("supercell-games", "Other Supercell games"),
                _voice("gaming-voice"),
            ),
        ),
        CategoryTemplate(
            name="🎉 EVENTS",
            channels=(
                _text("events", "Community events and activities"),
                _text("giveaways", "Giveaways and contests"),
                _voice("event-voice"),
            ),
        ),
    ),
)

FAMILY_TEMPLATE = ServerTemplate(
    key="family",
    name="Clan Family",
    description="For clans with multiple sub-clans or feeder clans",
    categories=(
        CategoryTemplate(
            name="📢 FAMILY INFO",
            channels=(
                _text("welcome", "Welcome to our clan family"),
                _text("rules", "Family rules and guidelines"),
                _text("announcements", "Important family announcements"),
                _text("introductions", "Introduce yourself"),
            ),
        ),
        CategoryTemplate(
            name="💬 GENERAL",
            channels=(
                _text("general", "General chat for everyone"),
                _text("bot-commands", "Use bot commands here"),
                _voice("general-voice"),
            ),
        ),
        CategoryTemplate(
            name="🔴 MAIN CLAN",
            channels=(
                _text("main-chat", "Main clan chat"),
                _text("main-war", "Main clan war planning"),
                _voice("main-voice"),
            ),
        ),
        CategoryTemplate(
            name="🔵 FEEDER CLAN",
            channels=(
                _text("feeder-chat", "Feeder clan chat"),
                _text("feeder-war", "Feeder clan war planning"),
                _voice("feeder-voice"),
            ),
        ),
        CategoryTemplate(
            name="🟢 DEVELOPMENT CLAN",
            channels=(
                _text("dev-chat", "Development clan chat"),
                _text("dev-war", "Development clan war planning"),
                _voice("dev-voice"),
            ),
        ),
        CategoryTemplate(
            name="🌟 LEADERSHIP",
            channels=(
                _text("leadership-chat", "Leadership discussions"),
                _text("recruitment", "Recruitment planning"),
                _voice("leadership-voice"),
            ),
        ),
    ),
)

SERVER_TEMPLATES: dict[str, ServerTemplate] = {
    template.key: template
    for template in (STANDARD_TEMPLATE, COMPETITIVE_TEMPLATE, COMMUNITY_TEMPLATE, FAMILY_TEMPLATE)
}
DEFAULT_TEMPLATE_KEY = "standard"


def get_template(key: str) -> ServerTemplate:
    """Look up a structure template, raising ``UnknownTemplateError``."""
    try:
        return SERVER_TEMPLATES[key]
    except KeyError:
        raise UnknownTemplateError(key, SERVER_TEMPLATES) from None


# ============================================================================
# Role families
# ============================================================================

TOWN_HALL_LEVELS = range(7, 16)

# Colors get more vibrant with level
TOWN_HALL_COLORS = {
    7: "#95a5a6",
    8: "#7f8c8d",
    9: "#16a085",
    10: "#2980b9",
    11: "#8e44ad",
    12: "#c0392b",
    13: "#000000",
    14: "#f39c12",
    15: "#f1c40f",
}


def _clan_position(key: str, name: str, color: str, permissions: discord.Permissions) -> RoleSpec:
    return RoleSpec(
        key=key,
        name=name,
        color=color,
        permissions=permissions.value,
        family="clan-position",
        aliases=(f"CoC {name}",),
        hoist=True,
    )


def town_hall_role(level: int) -> RoleSpec:
    """Tier role for one town-hall level."""
    if level not in TOWN_HALL_COLORS:
        raise ValueError(f"Unsupported town hall level: {level}")
    return RoleSpec(
        key=f"th{level}",
        name=f"TH{level}",
        color=TOWN_HALL_COLORS[level],
        family="tier",
        level=level,
    )


CLAN_POSITION_ROLES = (
    _clan_position("leader", "Leader", "#e74c3c", discord.Permissions(administrator=True)),
    _clan_position(
        "co_leader",
        "Co-Leader",
        "#e67e22",
        discord.Permissions(manage_channels=True, manage_roles=True, kick_members=True),
    ),
    _clan_position("elder", "Elder", "#f1c40f", discord.Permissions(manage_messages=True)),
    _clan_position("member", "Member", "#3498db", discord.Permissions.none()),
)

WAR_ROLES = (
    RoleSpec(key="war_general", name="War General", color="#c0392b"),
    RoleSpec(key="war_team", name="War Team", color="#e67e22"),
    RoleSpec(key="cwl_player", name="CWL Player", color="#9b59b6"),
)

SPECIAL_ROLES = (
    RoleSpec(key="bot_admin", name="Bot Admin", color="#1abc9c"),
    RoleSpec(key="event_manager", name="Event Manager", color="#3498db"),
    RoleSpec(key="recruiter", name="Recruiter", color="#2ecc71"),
)

ROLE_SETS: dict[str, RoleSet] = {
    role_set.key: role_set
    for role_set in (
        RoleSet(
            key="clan_roles",
            name="Clan Roles",
            description="Leader, Co-Leader, Elder, Member roles from Clash of Clans",
            roles=CLAN_POSITION_ROLES,
            default_selected=True,
        ),
        RoleSet(
            key="th_roles",
            name="Town Hall Roles",
            description="Roles for each Town Hall level (TH7-TH15)",
            roles=tuple(town_hall_role(level) for level in TOWN_HALL_LEVELS),
            default_selected=True,
        ),
        RoleSet(
            key="war_roles",
            name="War Roles",
            description="Roles for war participants, CWL, and war planning",
            roles=WAR_ROLES,
        ),
        RoleSet(
            key="special_roles",
            name="Special Roles",
            description="Bot Admin, Event Manager, and other utility roles",
            roles=SPECIAL_ROLES,
        ),
    )
}


def get_role_set(key: str) -> RoleSet:
    try:
        return ROLE_SETS[key]
    except KeyError:
        raise UnknownTemplateError(key, ROLE_SETS) from None


def roles_for_sets(keys: Iterable[str]) -> list[RoleSpec]:
    """Role specs for the selected sets, in catalog order, without duplicates."""
    selected = set(keys)
    for key in selected:
        get_role_set(key)

    specs: list[RoleSpec] = []
    seen: set[str] = set()
    for role_set in ROLE_SETS.values():
        if role_set.key not in selected:
            continue
        for spec in role_set.roles:
            if spec.key not in seen:
                seen.add(spec.key)
                specs.append(spec)
    return specs
