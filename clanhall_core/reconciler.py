"""Structure and role reconciliation.

Compares a template (or a list of role specs) with the live guild and creates
only what is missing. Existing entities are never renamed or deleted.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from .constants import REASON_SETUP
from .errors import EntityError, describe_exception
from .logger import get_logger
from .platform import LiveChannel, LiveRole, PlatformClient
from .rate_limiter import MutationPacer
from .templates import CategoryTemplate, ChannelTemplate, RoleSpec, ServerTemplate

logger = get_logger()

_NON_WORD = re.compile(r"[^\w\s]+")
_WHITESPACE = re.compile(r"[\s_]+")


def normalize_name(name: str) -> str:
    """Case-fold a name and strip decoration.

    ``"📢 CLAN HALL"`` and ``"clan-hall"`` both become ``"clan hall"``.
    """
    text = unicodedata.normalize("NFKC", name).casefold()
    text = "".join(ch for ch in text if unicodedata.category(ch)[0] != "S")
    text = _NON_WORD.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def _names_of(name: str, aliases: Iterable[str]) -> set[str]:
    return {normalize_name(name), *(normalize_name(alias) for alias in aliases)}


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation run.

    ``ids`` maps desired names (role keys for roles) to live ids, for both
    matched and freshly created entities.
    """
    created: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[EntityError] = field(default_factory=list)
    unresolved: list[str] = field(default_factory=list)
    ids: dict[str, int] = field(default_factory=dict)

    @property
    def created_count(self) -> int:
        return len(self.created)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


@dataclass(frozen=True)
class PlanSummary:
    """Dry-run counts: how many entities would be created vs already exist."""
    create: int = 0
    existing: int = 0

    def __add__(self, other: "PlanSummary") -> "PlanSummary":
        return PlanSummary(self.create + other.create, self.existing + other.existing)


def _find(candidates: Sequence, names: set[str]):
    for entity in sorted(candidates, key=lambda e: (e.position, e.id)):
        if normalize_name(entity.name) in names:
            return entity
    return None


def _find_category(live: Sequence[LiveChannel], desired: CategoryTemplate) -> Optional[LiveChannel]:
    return _find(live, _names_of(desired.name, desired.aliases))


def _find_channel(
    live: Sequence[LiveChannel], parent_id: Optional[int], desired: ChannelTemplate
) -> Optional[LiveChannel]:
    siblings = [c for c in live if c.parent_id == parent_id]
    return _find(siblings, _names_of(desired.name, desired.aliases))


def _find_role(live: Sequence[LiveRole], spec: RoleSpec) -> Optional[LiveRole]:
    return _find(live, _names_of(spec.name, spec.aliases))


def channel_key(category: str, channel: str) -> str:
    """Key under which a channel id is reported in ``ReconcileResult.ids``."""
    return f"{category}/{channel}"


async def reconcile_structure(
    template: ServerTemplate,
    platform: PlatformClient,
    pacer: MutationPacer,
    *,
    reason: str = REASON_SETUP,
) -> ReconcileResult:
    """Create the template's missing categories and channels.

    Categories precede their channels; a channel whose category could not be
    matched or created is reported as unresolved.
    """
    result = ReconcileResult()
    live_categories = list(await platform.list_categories())
    live_channels = list(await platform.list_channels())

    for category in template.categories:
        existing = _find_category(live_categories, category)
        if existing is not None:
            parent_id: Optional[int] = existing.id
            result.skipped.append(category.name)
            logger.debug(f"Category '{category.name}' already exists as {existing.id}")
        else:
            try:
                created = await platform.create_category(category.name, reason=reason)
            except Exception as e:
                logger.error(f"Failed to create category '{category.name}': {e}")
                result.errors.append(
                    EntityError("category", category.name, "create", describe_exception(e))
                )
                parent_id = None
            else:
                parent_id = created.id
                live_categories.append(created)
                result.created.append(category.name)
                logger.info(f"Created category '{category.name}' (ID: {created.id})")
            await pacer.after_create()

        if parent_id is None:
            for channel in category.channels:
                result.unresolved.append(channel_key(category.name, channel.name))
            continue

        result.ids[category.name] = parent_id

        for channel in category.channels:
            key = channel_key(category.name, channel.name)
            existing_channel = _find_channel(live_channels, parent_id, channel)
            if existing_channel is not None:
                result.skipped.append(key)
                result.ids[key] = existing_channel.id
                continue

            try:
                created_channel = await platform.create_channel(
                    channel.name,
                    channel.kind,
                    parent_id=parent_id,
                    topic=channel.topic,
                    reason=reason,
                )
            except Exception as e:
                logger.error(f"Failed to create channel '{channel.name}' in '{category.name}': {e}")
                result.errors.append(EntityError("channel", key, "create", describe_exception(e)))
            else:
                live_channels.append(created_channel)
                result.created.append(key)
                result.ids[key] = created_channel.id
                logger.info(
                    f"Created channel '{channel.name}' (ID: {created_channel.id}) in '{category.name}'"
                )
            await pacer.after_create()

    return result


async def reconcile_roles(
    role_specs: Sequence[RoleSpec],
    platform: PlatformClient,
    pacer: MutationPacer,
    *,
    reason: str = REASON_SETUP,
) -> ReconcileResult:
    """Create the missing roles; ``ids`` is keyed by role key."""
    result = ReconcileResult()
    live_roles = list(await platform.list_roles())

    for spec in role_specs:
        existing = _find_role(live_roles, spec)
        if existing is not None:
            result.skipped.append(spec.name)
            result.ids[spec.key] = existing.id
            continue

        try:
            role = await platform.create_role(
                spec.name,
                permissions=spec.permissions,
                color=spec.color_value,
                hoist=spec.hoist,
                mentionable=spec.mentionable,
                reason=reason,
            )
        except Exception as e:
            logger.error(f"Failed to create role '{spec.name}': {e}")
            result.errors.append(EntityError("role", spec.name, "create", describe_exception(e)))
        else:
            live_roles.append(role)
            result.created.append(spec.name)
            result.ids[spec.key] = role.id
            logger.info(f"Created role '{spec.name}' (ID: {role.id})")
        await pacer.after_create()

    return result


async def plan_structure(template: ServerTemplate, platform: PlatformClient) -> PlanSummary:
    """Count what ``reconcile_structure`` would create, without mutating."""
    live_categories = await platform.list_categories()
    live_channels = await platform.list_channels()

    create = existing = 0
    for category in template.categories:
        match = _find_category(live_categories, category)
        if match is None:
            create += 1 + len(category.channels)
            continue
        existing += 1
        for channel in category.channels:
            if _find_channel(live_channels, match.id, channel) is None:
                create += 1
            else:
                existing += 1
    return PlanSummary(create=create, existing=existing)


async def plan_roles(role_specs: Sequence[RoleSpec], platform: PlatformClient) -> PlanSummary:
    live_roles = await platform.list_roles()
    existing = sum(1 for spec in role_specs if _find_role(live_roles, spec) is not None)
    return PlanSummary(create=len(role_specs) - existing, existing=existing)


async def resolve_role_ids(role_specs: Sequence[RoleSpec], platform: PlatformClient) -> dict[str, int]:
    """Map role keys to the ids of matching live roles, without creating any."""
    live_roles = await platform.list_roles()
    ids = {}
    for spec in role_specs:
        match = _find_role(live_roles, spec)
        if match is not None:
            ids[spec.key] = match.id
    return ids
