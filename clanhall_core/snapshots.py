"""Guild structure snapshots and their on-disk store."""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from .constants import DEFAULT_MAX_SNAPSHOTS_PER_GUILD, SNAPSHOT_SCHEMA_VERSION
from .errors import SnapshotFormatError, SnapshotNotFoundError
from .logger import get_logger
from .platform import LiveChannel, LiveRole, Overwrite, PlatformClient, fetch_graph

logger = get_logger()

_SNAPSHOT_ID = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass(frozen=True)
class Snapshot:
    """Immutable point-in-time copy of a guild's categories, channels and roles."""
    snapshot_id: str
    workspace_id: int
    workspace_name: str
    created_at: datetime
    categories: tuple[LiveChannel, ...] = ()
    channels: tuple[LiveChannel, ...] = ()
    roles: tuple[LiveRole, ...] = ()
    schema_version: int = SNAPSHOT_SCHEMA_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "snapshot_id": self.snapshot_id,
            "workspace_id": self.workspace_id,
            "workspace_name": self.workspace_name,
            "created_at": self.created_at.isoformat(),
            "categories": [_channel_to_dict(c) for c in self.categories],
            "channels": [_channel_to_dict(c) for c in self.channels],
            "roles": [asdict(r) for r in self.roles],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Snapshot":
        """Parse a stored blob. Untagged blobs are read as version 1."""
        version = data.get("schema_version", 1)
        if not isinstance(version, int) or version < 1:
            raise SnapshotFormatError(f"Invalid snapshot schema version: {version!r}")
        if version > SNAPSHOT_SCHEMA_VERSION:
            raise SnapshotFormatError(
                f"Snapshot schema version {version} is newer than supported version {SNAPSHOT_SCHEMA_VERSION}",
                actionable_suggestion="Upgrade the bot before restoring this snapshot.",
            )

        try:
            return cls(
                snapshot_id=str(data["snapshot_id"]),
                workspace_id=int(data["workspace_id"]),
                workspace_name=str(data.get("workspace_name", "")),
                created_at=datetime.fromisoformat(data["created_at"]),
                categories=tuple(_channel_from_dict(c) for c in data.get("categories", [])),
                channels=tuple(_channel_from_dict(c) for c in data.get("channels", [])),
                roles=tuple(_role_from_dict(r) for r in data.get("roles", [])),
                schema_version=SNAPSHOT_SCHEMA_VERSION,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise SnapshotFormatError(f"Malformed snapshot: {e}") from e


@dataclass(frozen=True)
class SnapshotInfo:
    """Listing metadata for one stored snapshot."""
    snapshot_id: str
    workspace_id: int
    workspace_name: str
    created_at: datetime
    role_count: int = 0
    channel_count: int = 0


def _channel_to_dict(channel: LiveChannel) -> dict[str, Any]:
    data = asdict(channel)
    data["overwrites"] = [asdict(o) for o in channel.overwrites]
    return data


def _channel_from_dict(data: dict[str, Any]) -> LiveChannel:
    return LiveChannel(
        id=int(data["id"]),
        name=str(data["name"]),
        kind=data["kind"],
        position=int(data.get("position", 0)),
        parent_id=int(data["parent_id"]) if data.get("parent_id") is not None else None,
        topic=data.get("topic"),
        overwrites=tuple(
            Overwrite(
                subject_id=int(o["subject_id"]),
                allow=int(o["allow"]),
                deny=int(o["deny"]),
                subject_type=o.get("subject_type", "role"),
            )
            for o in data.get("overwrites", [])
        ),
    )


def _role_from_dict(data: dict[str, Any]) -> LiveRole:
    return LiveRole(
        id=int(data["id"]),
        name=str(data["name"]),
        position=int(data.get("position", 0)),
        permissions=int(data.get("permissions", 0)),
        color=int(data.get("color", 0)),
        hoist=bool(data.get("hoist", False)),
        mentionable=bool(data.get("mentionable", False)),
        managed=bool(data.get("managed", False)),
    )


def new_snapshot_id(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"{now:%Y%m%d-%H%M%S}-{uuid.uuid4().hex[:8]}"


async def capture_snapshot(platform: PlatformClient) -> Snapshot:
    """Copy the live graph in one walk. The everyone role is never included."""
    graph = await fetch_graph(platform)
    roles = [r for r in graph.roles if r.id != platform.everyone_id]

    created_at = datetime.now(timezone.utc)
    snapshot = Snapshot(
        snapshot_id=new_snapshot_id(created_at),
        workspace_id=graph.workspace_id,
        workspace_name=platform.workspace_name,
        created_at=created_at,
        categories=tuple(graph.categories),
        channels=tuple(graph.channels),
        roles=tuple(roles),
    )
    logger.info(
        f"Captured snapshot {snapshot.snapshot_id} for {platform.workspace_name} "
        f"({len(graph.categories)} categories, {len(graph.channels)} channels, {len(roles)} roles)"
    )
    return snapshot


class SnapshotStore:
    """JSON files under ``<root>/<workspace_id>/<snapshot_id>.json``.

    Snapshots are written once through a temp file and an atomic rename; an
    existing snapshot is never overwritten. The oldest files beyond
    ``max_per_guild`` are pruned after each write.
    """

    def __init__(self, root: str | Path, max_per_guild: int = DEFAULT_MAX_SNAPSHOTS_PER_GUILD):
        self.root = Path(root)
        self.max_per_guild = max_per_guild

    def _workspace_dir(self, workspace_id: int) -> Path:
        return self.root / str(int(workspace_id))

    def _path(self, workspace_id: int, snapshot_id: str) -> Path:
        return self._workspace_dir(workspace_id) / f"{snapshot_id}.json"

    async def put(self, snapshot: Snapshot) -> Path:
        if not _SNAPSHOT_ID.match(snapshot.snapshot_id):
            raise SnapshotFormatError(f"Invalid snapshot id: {snapshot.snapshot_id!r}")

        directory = self._workspace_dir(snapshot.workspace_id)
        directory.mkdir(parents=True, exist_ok=True)
        path = self._path(snapshot.workspace_id, snapshot.snapshot_id)
        if path.exists():
            raise FileExistsError(f"Snapshot already exists: {path}")

        temp_path = path.with_suffix(".json.tmp")
        try:
            with temp_path.open("w", encoding="utf-8") as f:
                json.dump(snapshot.to_dict(), f, indent=2)
            temp_path.replace(path)
        except Exception as e:
            if temp_path.exists():
                temp_path.unlink()
            logger.error(f"Failed to write snapshot {snapshot.snapshot_id}: {e}")
            raise

        logger.info(f"Stored snapshot {snapshot.snapshot_id} at {path}")
        self._prune(snapshot.workspace_id, keep=snapshot.snapshot_id)
        return path

    def _snapshot_files(self, workspace_id: int) -> list[Path]:
        directory = self._workspace_dir(workspace_id)
        if not directory.is_dir():
            return []
        # ids start with a UTC timestamp, so name order is age order
        return sorted(directory.glob("*.json"), key=lambda p: p.stem, reverse=True)

    def _prune(self, workspace_id: int, keep: str) -> None:
        # same-second ids order by their random suffix, so the fresh one is exempt
        others = [p for p in self._snapshot_files(workspace_id) if p.stem != keep]
        for stale in others[max(self.max_per_guild - 1, 0):]:
            stale.unlink()
            logger.info(f"Pruned old snapshot {stale.stem} for server {workspace_id}")

    def _read(self, path: Path) -> Snapshot:
        try:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise SnapshotFormatError(f"Snapshot {path.stem} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise SnapshotFormatError(f"Snapshot {path.stem} is not an object")
        return Snapshot.from_dict(data)

    async def list(self, workspace_id: int) -> list[SnapshotInfo]:
        """Metadata for every readable snapshot, newest first."""
        infos = []
        for path in self._snapshot_files(workspace_id):
            try:
                snapshot = self._read(path)
            except SnapshotFormatError as e:
                logger.warning(f"Skipping unreadable snapshot {path}: {e}")
                continue
            infos.append(
                SnapshotInfo(
                    snapshot_id=snapshot.snapshot_id,
                    workspace_id=snapshot.workspace_id,
                    workspace_name=snapshot.workspace_name,
                    created_at=snapshot.created_at,
                    role_count=len(snapshot.roles),
                    channel_count=len(snapshot.categories) + len(snapshot.channels),
                )
            )
        infos.sort(key=lambda info: info.created_at, reverse=True)
        return infos

    async def get(self, workspace_id: int, snapshot_id: str) -> Snapshot:
        if not _SNAPSHOT_ID.match(snapshot_id):
            raise SnapshotNotFoundError(workspace_id, snapshot_id)
        path = self._path(workspace_id, snapshot_id)
        if not path.is_file():
            raise SnapshotNotFoundError(workspace_id, snapshot_id)
        return self._read(path)
