"""Replay a snapshot against a live guild.

Restore only creates what is missing and never deletes anything. Every
cross-reference in the snapshot (channel parents, overwrite subjects) is
rewritten through the old -> new id map built along the way.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .constants import REASON_RESTORE
from .errors import EntityError, SnapshotMismatchError, describe_exception
from .logger import get_logger
from .platform import LiveChannel, LiveRole, Overwrite, PlatformClient, sort_by_position
from .rate_limiter import MutationPacer
from .snapshots import Snapshot

logger = get_logger()


@dataclass
class RestoreResult:
    roles_restored: int = 0
    channels_restored: int = 0
    errors: list[EntityError] = field(default_factory=list)
    unresolved: list[str] = field(default_factory=list)
    id_map: dict[int, int] = field(default_factory=dict)


class RestoreEngine:
    """Restores snapshots for the workspace behind ``platform``."""

    def __init__(self, platform: PlatformClient, pacer: MutationPacer, *, reason: str = REASON_RESTORE):
        self.platform = platform
        self.pacer = pacer
        self.reason = reason

    async def restore(self, workspace_id: int, snapshot: Snapshot) -> RestoreResult:
        if snapshot.workspace_id != workspace_id or self.platform.workspace_id != workspace_id:
            raise SnapshotMismatchError(workspace_id, snapshot.workspace_id)

        result = RestoreResult()
        # the everyone role's id is the guild id on both sides
        result.id_map[snapshot.workspace_id] = self.platform.everyone_id

        logger.info(f"Restoring snapshot {snapshot.snapshot_id} into server {workspace_id}")
        await self._restore_roles(snapshot, result)
        await self._restore_categories(snapshot, result)
        await self._restore_channels(snapshot, result)
        logger.info(
            f"Restore of {snapshot.snapshot_id} finished: {result.roles_restored} roles, "
            f"{result.channels_restored} channels, {len(result.errors)} errors, "
            f"{len(result.unresolved)} unresolved"
        )
        return result

    async def _restore_roles(self, snapshot: Snapshot, result: RestoreResult) -> None:
        live = await self.platform.list_roles()
        live_ids = {r.id for r in live}
        by_name = {r.name: r.id for r in live}

        for role in sort_by_position(snapshot.roles, descending=True):
            if role.id in live_ids:
                result.id_map[role.id] = role.id
                continue
            if role.name in by_name:
                result.id_map[role.id] = by_name[role.name]
                continue
            if role.managed:
                # integration roles are owned by their integration
                result.unresolved.append(f"role:{role.name}")
                continue

            created = await self._create_role(role, result)
            if created is not None:
                result.id_map[role.id] = created.id
                by_name[created.name] = created.id
                result.roles_restored += 1

    async def _create_role(self, role: LiveRole, result: RestoreResult) -> Optional[LiveRole]:
        try:
            created = await self.platform.create_role(
                role.name,
                permissions=role.permissions,
                color=role.color,
                hoist=role.hoist,
                mentionable=role.mentionable,
                reason=self.reason,
            )
        except Exception as e:
            logger.error(f"Failed to restore role '{role.name}': {e}")
            result.errors.append(EntityError("role", role.name, "restore", describe_exception(e)))
            created = None
        else:
            logger.info(f"Restored role '{role.name}' ({role.id} -> {created.id})")
        await self.pacer.after_create()
        return created

    async def _restore_categories(self, snapshot: Snapshot, result: RestoreResult) -> None:
        live = await self.platform.list_categories()
        live_ids = {c.id for c in live}
        by_name = {c.name: c.id for c in live}

        for category in sort_by_position(snapshot.categories):
            if category.id in live_ids:
                result.id_map[category.id] = category.id
                continue
            if category.name in by_name:
                result.id_map[category.id] = by_name[category.name]
                continue

            try:
                created = await self.platform.create_category(category.name, reason=self.reason)
            except Exception as e:
                logger.error(f"Failed to restore category '{category.name}': {e}")
                result.errors.append(
                    EntityError("category", category.name, "restore", describe_exception(e))
                )
                await self.pacer.after_create()
                continue

            await self.pacer.after_create()
            result.id_map[category.id] = created.id
            by_name[created.name] = created.id
            result.channels_restored += 1
            logger.info(f"Restored category '{category.name}' ({category.id} -> {created.id})")
            await self._apply_overwrites(category, created.id, result)

    async def _restore_channels(self, snapshot: Snapshot, result: RestoreResult) -> None:
        live = await self.platform.list_channels()
        live_ids = {c.id for c in live}
        by_parent_and_name = {(c.parent_id, c.name): c.id for c in live}

        for channel in sort_by_position(snapshot.channels):
            if channel.id in live_ids:
                result.id_map[channel.id] = channel.id
                continue

            parent_id = result.id_map.get(channel.parent_id) if channel.parent_id else None
            if channel.parent_id and parent_id is None:
                logger.warning(
                    f"Parent of channel '{channel.name}' was not restored, creating it at top level"
                )

            existing = by_parent_and_name.get((parent_id, channel.name))
            if existing is not None:
                result.id_map[channel.id] = existing
                continue

            try:
                created = await self.platform.create_channel(
                    channel.name,
                    "voice" if channel.kind == "voice" else "text",
                    parent_id=parent_id,
                    topic=channel.topic,
                    reason=self.reason,
                )
            except Exception as e:
                logger.error(f"Failed to restore channel '{channel.name}': {e}")
                result.errors.append(
                    EntityError("channel", channel.name, "restore", describe_exception(e))
                )
                await self.pacer.after_create()
                continue

            await self.pacer.after_create()
            result.id_map[channel.id] = created.id
            by_parent_and_name[(parent_id, created.name)] = created.id
            result.channels_restored += 1
            logger.info(f"Restored channel '{channel.name}' ({channel.id} -> {created.id})")
            await self._apply_overwrites(channel, created.id, result)

    def _rewrite_subject(self, overwrite: Overwrite, result: RestoreResult) -> Optional[int]:
        """Map a stored overwrite subject to a live id, or ``None`` to drop it."""
        if overwrite.subject_type == "member":
            return overwrite.subject_id
        return result.id_map.get(overwrite.subject_id)

    async def _apply_overwrites(self, stored: LiveChannel, live_id: int, result: RestoreResult) -> None:
        for overwrite in stored.overwrites:
            subject_id = self._rewrite_subject(overwrite, result)
            if subject_id is None:
                result.unresolved.append(f"overwrite:{stored.name}:{overwrite.subject_id}")
                logger.warning(
                    f"Dropping overwrite on '{stored.name}' for unmapped role {overwrite.subject_id}"
                )
                continue

            try:
                await self.platform.edit_overwrite(
                    live_id,
                    subject_id,
                    overwrite.allow,
                    overwrite.deny,
                    subject_type=overwrite.subject_type,
                    reason=self.reason,
                )
            except Exception as e:
                logger.error(f"Failed to restore permission overwrite for {stored.name}: {e}")
                result.errors.append(
                    EntityError(
                        "overwrite",
                        f"{stored.name}:{overwrite.subject_id}",
                        "restore",
                        describe_exception(e),
                    )
                )
            await self.pacer.after_overwrite()
