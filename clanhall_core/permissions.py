"""Permission overwrite reconciliation.

A channel's overwrites start from the selected policy's grant table and are
refined by an ordered list of channel-name classifiers. Patches merge at bit
level: a later patch wins on the bits it touches and leaves the rest alone.
Categories receive the base policy only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, Sequence

import discord

from .constants import REASON_SETUP
from .errors import EntityError, UnknownPolicyError, describe_exception
from .logger import get_logger
from .platform import LiveChannel, PlatformClient
from .rate_limiter import MutationPacer

logger = get_logger()

EVERYONE = "everyone"
SUBJECT_KEYS = (
    EVERYONE,
    "leader",
    "co_leader",
    "elder",
    "member",
    "war_general",
    "war_team",
    "bot_admin",
)

CUSTOM_POLICY = "custom"


@dataclass(frozen=True)
class Patch:
    """Allow/deny bits to lay over an existing overwrite."""
    allow: int = 0
    deny: int = 0

    @classmethod
    def of(cls, **flags: bool) -> "Patch":
        """``Patch.of(view_channel=True, send_messages=False)``."""
        allow = discord.Permissions(**{k: True for k, v in flags.items() if v})
        deny = discord.Permissions(**{k: True for k, v in flags.items() if not v})
        return cls(allow=allow.value, deny=deny.value)

    def over(self, base: "Patch") -> "Patch":
        """Merge this patch on top of ``base``; this patch wins on conflicts."""
        return Patch(
            allow=(base.allow & ~self.deny) | self.allow,
            deny=(base.deny & ~self.allow) | self.deny,
        )


Grants = Mapping[str, Patch]

_STAFF = Patch.of(
    view_channel=True,
    send_messages=True,
    send_messages_in_threads=True,
    manage_messages=True,
    manage_threads=True,
    attach_files=True,
    external_emojis=True,
    add_reactions=True,
    connect=True,
    speak=True,
)
_STAFF_NO_THREADS = Patch.of(
    view_channel=True,
    send_messages=True,
    send_messages_in_threads=True,
    manage_messages=True,
    attach_files=True,
    external_emojis=True,
    add_reactions=True,
    connect=True,
    speak=True,
)
_PARTICIPANT = Patch.of(
    view_channel=True,
    send_messages=True,
    send_messages_in_threads=True,
    attach_files=True,
    external_emojis=True,
    add_reactions=True,
    connect=True,
    speak=True,
)
_PARTICIPANT_NO_EMOJI = Patch.of(
    view_channel=True,
    send_messages=True,
    send_messages_in_threads=True,
    attach_files=True,
    add_reactions=True,
    connect=True,
    speak=True,
)
_HIDDEN = Patch.of(view_channel=False)

POLICIES: dict[str, Grants] = {
    # permissive-hierarchical
    "standard": {
        EVERYONE: _HIDDEN,
        "leader": _STAFF,
        "co_leader": _STAFF,
        "elder": _PARTICIPANT,
        "member": _PARTICIPANT,
    },
    # restrictive-hierarchical
    "strict": {
        EVERYONE: _HIDDEN,
        "leader": _STAFF,
        "co_leader": _STAFF_NO_THREADS,
        "elder": _PARTICIPANT,
        "member": _PARTICIPANT_NO_EMOJI,
    },
    # open-access
    "open": {
        EVERYONE: _PARTICIPANT_NO_EMOJI,
        "leader": Patch.of(manage_messages=True, manage_threads=True, manage_channels=True),
        "co_leader": Patch.of(manage_messages=True, manage_threads=True),
    },
}

POLICY_DESCRIPTIONS = {
    "standard": "Balanced permissions: leaders moderate, members chat everywhere",
    "strict": "Tighter control: fewer moderation rights below leader",
    "open": "Everyone can see and talk in most channels",
    CUSTOM_POLICY: "Leave channel permissions untouched and configure them yourself",
}


@dataclass(frozen=True)
class Classifier:
    """A channel-name predicate and the patches it applies when it matches."""
    name: str
    matches: Callable[[str], bool]
    patches: Grants


def _has_any(*words: str) -> Callable[[str], bool]:
    return lambda channel_name: any(word in channel_name for word in words)


def _war_and(*words: str) -> Callable[[str], bool]:
    return lambda channel_name: "war" in channel_name and any(w in channel_name for w in words)


# Evaluated top to bottom; later entries win on conflicting bits.
CLASSIFIERS: tuple[Classifier, ...] = (
    Classifier(
        "bot-commands",
        _has_any("bot", "command"),
        {
            "member": Patch.of(view_channel=True, send_messages=True, send_messages_in_threads=True),
            "bot_admin": Patch.of(view_channel=True, send_messages=True, manage_messages=True),
            EVERYONE: Patch.of(view_channel=True),
        },
    ),
    Classifier(
        "announcement",
        _has_any("announce", "news"),
        {
            "member": Patch.of(view_channel=True, send_messages=False, add_reactions=True),
            "elder": Patch.of(view_channel=True, send_messages=False, add_reactions=True),
            "co_leader": Patch.of(view_channel=True, send_messages=True, manage_messages=True),
            EVERYONE: Patch.of(view_channel=True, send_messages=False),
        },
    ),
    Classifier(
        "rules",
        _has_any("rule", "info"),
        {
            "member": Patch.of(view_channel=True, send_messages=False, add_reactions=False),
            EVERYONE: Patch.of(view_channel=True, send_messages=False),
        },
    ),
    Classifier(
        "war-log",
        _war_and("log", "result"),
        {
            "member": Patch.of(view_channel=True, send_messages=False, add_reactions=True),
            "co_leader": Patch.of(view_channel=True, send_messages=True, manage_messages=True),
            "war_general": Patch.of(view_channel=True, send_messages=True, manage_messages=True),
        },
    ),
    Classifier(
        "war-planning",
        _war_and("plan", "strategy"),
        {
            "member": _HIDDEN,
            "elder": Patch.of(view_channel=True, send_messages=True, add_reactions=True),
            "war_team": Patch.of(view_channel=True, send_messages=True, add_reactions=True),
        },
    ),
    Classifier(
        "admin",
        _has_any("admin", "staff", "leader"),
        {
            "member": _HIDDEN,
            "elder": _HIDDEN,
            "co_leader": Patch.of(
                view_channel=True,
                send_messages=True,
                send_messages_in_threads=True,
                attach_files=True,
                add_reactions=True,
            ),
        },
    ),
)


def desired_overwrites(policy: str, channel_name: str, is_category: bool) -> dict[str, Patch]:
    """Compute the merged subject-key -> patch map for one channel."""
    try:
        grants = dict(POLICIES[policy])
    except KeyError:
        raise UnknownPolicyError(policy, POLICIES) from None

    if is_category:
        return grants

    name = channel_name.lower()
    for classifier in CLASSIFIERS:
        if not classifier.matches(name):
            continue
        for subject, patch in classifier.patches.items():
            grants[subject] = patch.over(grants.get(subject, Patch()))
    return grants


@dataclass
class PermissionResult:
    edited: int = 0
    skipped: list[str] = field(default_factory=list)
    errors: list[EntityError] = field(default_factory=list)


def _subject_id(subject: str, roles: Mapping[str, int], everyone_id: int) -> Optional[int]:
    if subject == EVERYONE:
        return everyone_id
    return roles.get(subject)


async def apply(
    policy: str,
    channels: Sequence[LiveChannel],
    roles: Mapping[str, int],
    platform: PlatformClient,
    pacer: MutationPacer,
    *,
    reason: str = REASON_SETUP,
) -> PermissionResult:
    """Edit overwrites on ``channels`` for ``policy``.

    ``roles`` maps subject keys to live role ids; a subject with no entry is
    skipped for that channel only.
    """
    result = PermissionResult()
    if policy == CUSTOM_POLICY:
        logger.info("Custom permission policy selected, leaving overwrites untouched")
        return result

    for channel in channels:
        overwrites = desired_overwrites(policy, channel.name, channel.is_category)
        for subject, patch in overwrites.items():
            subject_id = _subject_id(subject, roles, platform.everyone_id)
            if subject_id is None:
                result.skipped.append(f"{channel.name}:{subject}")
                continue

            try:
                await platform.edit_overwrite(
                    channel.id, subject_id, patch.allow, patch.deny, reason=reason
                )
            except Exception as e:
                logger.error(f"Error setting permissions for {channel.name} ({subject}): {e}")
                result.errors.append(
                    EntityError("overwrite", f"{channel.name}:{subject}", "edit", describe_exception(e))
                )
            else:
                result.edited += 1
            await pacer.after_overwrite()

    logger.info(
        f"Applied '{policy}' permissions: {result.edited} edited, "
        f"{len(result.skipped)} skipped, {len(result.errors)} errors"
    )
    return result
