"""Feature stage of the setup wizard.

Binds provisioned channels into the linked clan's settings and posts the
welcome message. Features that need a clan are skipped when none is linked.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

from .database import ClanLink, Database
from .errors import EntityError, describe_exception
from .logger import get_logger
from .platform import LiveChannel, PlatformClient

logger = get_logger()


@dataclass(frozen=True)
class FeatureOption:
    key: str
    name: str
    description: str
    default_selected: bool = True
    requires_clan: bool = True


FEATURES: dict[str, FeatureOption] = {
    option.key: option
    for option in (
        FeatureOption(
            "war_announcements",
            "War Announcements",
            "Automatic announcements for war start, end, and results",
        ),
        FeatureOption(
            "member_tracking",
            "Member Tracking",
            "Track member activity, donations, and war participation",
        ),
        FeatureOption(
            "auto_roles",
            "Auto Role Assignment",
            "Automatically assign roles based on clan position and Town Hall level",
        ),
        FeatureOption(
            "welcome_messages",
            "Welcome Messages",
            "Post a welcome message with server information",
            requires_clan=False,
        ),
        FeatureOption(
            "base_sharing",
            "Base Sharing",
            "Dedicated channel for sharing and rating bases",
            default_selected=False,
        ),
    )
}

DEFAULT_FEATURES = tuple(key for key, option in FEATURES.items() if option.default_selected)

WAR_CHANNEL_KEYWORDS = ("war-announcements", "war-log", "war-results")
WELCOME_CHANNEL_KEYWORDS = ("welcome", "join", "intro")
BASE_CHANNEL_KEYWORDS = ("base-sharing", "bases")

WELCOME_TITLE = "Welcome to our Clash of Clans Server!"
WELCOME_BODY = (
    "Thank you for joining our clan's Discord server! Here you can interact with fellow "
    "clan members, get war updates, and more.\n\n"
    "**Getting Started**\n"
    "1. Check out our rules in the rules channel\n"
    "2. Introduce yourself in the introductions channel\n"
    "3. Link your Clash of Clans account with `/link`"
)


@dataclass(frozen=True)
class ClanChoice:
    """A clan picked during the wizard's clan selection step."""
    tag: str
    name: str


@dataclass
class FeatureResult:
    configured: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[EntityError] = field(default_factory=list)
    clan: Optional[ClanLink] = None


def find_channel(channels: Sequence[LiveChannel], keywords: Iterable[str]) -> Optional[LiveChannel]:
    """First text channel (by position) whose name contains one of ``keywords``."""
    words = tuple(keywords)
    for channel in sorted(channels, key=lambda c: (c.position, c.id)):
        if channel.kind == "text" and any(word in channel.name.lower() for word in words):
            return channel
    return None


async def _resolve_clan(
    platform: PlatformClient, store: Optional[Database], clan: Optional[ClanChoice], result: FeatureResult
) -> Optional[ClanLink]:
    if store is None:
        return None
    linked = await store.get_linked_clan(platform.workspace_id)
    if linked is None and clan is not None:
        linked = await store.link_clan(platform.workspace_id, clan.tag, clan.name)
    elif linked is not None and clan is not None and clan.tag != linked.clan_tag:
        # relinking resets the stored settings, so an existing link is kept
        result.skipped.append(
            f"clan: {clan.tag} was not linked, this server is already linked to "
            f"{linked.clan_name} ({linked.clan_tag})"
        )
    return linked


def _clan_updates(features: set[str], channels: Sequence[LiveChannel], result: FeatureResult) -> dict[str, Any]:
    updates: dict[str, Any] = {"channels": {}, "notifications": {}}

    if "war_announcements" in features:
        war_channel = find_channel(channels, WAR_CHANNEL_KEYWORDS)
        if war_channel is None:
            result.skipped.append("war_announcements: no war announcement channel")
        else:
            updates["channels"]["warAnnouncements"] = war_channel.id
            updates["notifications"].update(warStart=True, warEnd=True)
            result.configured.append("war_announcements")

    if "member_tracking" in features:
        updates["notifications"].update(memberJoin=True, memberLeave=True)
        result.configured.append("member_tracking")

    if "auto_roles" in features:
        updates["autoRoles"] = True
        result.configured.append("auto_roles")

    if "base_sharing" in features:
        base_channel = find_channel(channels, BASE_CHANNEL_KEYWORDS)
        if base_channel is None:
            result.skipped.append("base_sharing: no base sharing channel")
        else:
            updates["channels"]["baseSharing"] = base_channel.id
            result.configured.append("base_sharing")

    return updates


async def _post_welcome(platform: PlatformClient, channels: Sequence[LiveChannel], result: FeatureResult) -> None:
    channel = find_channel(channels, WELCOME_CHANNEL_KEYWORDS)
    if channel is None:
        result.skipped.append("welcome_messages: no welcome channel")
        return

    try:
        if not await platform.channel_is_empty(channel.id):
            result.skipped.append("welcome_messages: welcome channel already has messages")
            return
        await platform.post_message(channel.id, title=WELCOME_TITLE, body=WELCOME_BODY)
    except Exception as e:
        logger.error(f"Failed to post welcome message in {channel.name}: {e}")
        result.errors.append(EntityError("message", channel.name, "post", describe_exception(e)))
        return

    result.configured.append("welcome_messages")
    logger.info(f"Posted welcome message in #{channel.name}")


async def configure_features(
    features: Iterable[str],
    platform: PlatformClient,
    store: Optional[Database],
    clan: Optional[ClanChoice] = None,
) -> FeatureResult:
    """Apply the selected features to the guild behind ``platform``."""
    selected = set(features)
    unknown = selected - FEATURES.keys()
    if unknown:
        raise ValueError(f"Unknown features: {', '.join(sorted(unknown))}")

    result = FeatureResult()
    channels = await platform.list_channels()

    clan_bound = {key for key in selected if FEATURES[key].requires_clan}
    if clan_bound:
        try:
            result.clan = await _resolve_clan(platform, store, clan, result)
        except Exception as e:
            logger.error(f"Failed to load clan link for {platform.workspace_id}: {e}")
            result.errors.append(EntityError("clan", str(platform.workspace_id), "load", describe_exception(e)))

        if result.clan is None:
            result.skipped.extend(f"{key}: no linked clan" for key in sorted(clan_bound))
        else:
            updates = _clan_updates(clan_bound, channels, result)
            try:
                result.clan = await store.update_clan_settings(platform.workspace_id, updates)
            except Exception as e:
                logger.error(f"Failed to save clan settings for {platform.workspace_id}: {e}")
                result.configured = [key for key in result.configured if key not in clan_bound]
                result.errors.append(
                    EntityError("clan", result.clan.clan_tag, "update", describe_exception(e))
                )

    if "welcome_messages" in selected:
        await _post_welcome(platform, channels, result)

    return result
