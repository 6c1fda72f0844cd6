from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
import pytest_asyncio

from clanhall_core.config import (
    Config,
    LoggingChannels,
    ProvisioningSettings,
    RoleIDs,
    SetupSettings,
    SnapshotSettings,
)
from clanhall_core.database import Database
from clanhall_core.platform import LiveChannel, LiveRole, Overwrite
from clanhall_core.rate_limiter import immediate_pacer
from clanhall_core.snapshots import SnapshotStore

GUILD_ID = 987654321


class FakePlatform:
    """In-memory guild implementing the platform client protocol.

    Mutations are appended to ``calls``; names listed in ``fail_on`` make the
    matching create call raise.
    """

    def __init__(self, workspace_id: int = GUILD_ID, workspace_name: str = "Test Clan") -> None:
        self.workspace_id = workspace_id
        self.workspace_name = workspace_name
        self.everyone_id = workspace_id
        self.categories: dict[int, LiveChannel] = {}
        self.channels: dict[int, LiveChannel] = {}
        self.roles: dict[int, LiveRole] = {}
        self.calls: list[tuple] = []
        self.messages: list[dict] = []
        self.fail_on: set[str] = set()
        self.busy_channels: set[int] = set()
        self._next_id = workspace_id + 1

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def _check(self, operation: str, name: str) -> None:
        if name in self.fail_on or f"{operation}:{name}" in self.fail_on:
            raise RuntimeError(f"{operation} rejected for {name}")

    # seeding helpers

    def add_category(self, name: str, *, position: Optional[int] = None, entity_id: Optional[int] = None) -> LiveChannel:
        category = LiveChannel(
            id=entity_id or self._new_id(),
            name=name,
            kind="category",
            position=len(self.categories) if position is None else position,
        )
        self.categories[category.id] = category
        return category

    def add_channel(
        self,
        name: str,
        parent_id: Optional[int] = None,
        *,
        kind: str = "text",
        position: Optional[int] = None,
        entity_id: Optional[int] = None,
        overwrites: tuple = (),
    ) -> LiveChannel:
        channel = LiveChannel(
            id=entity_id or self._new_id(),
            name=name,
            kind=kind,
            position=len(self.channels) if position is None else position,
            parent_id=parent_id,
            overwrites=overwrites,
        )
        self.channels[channel.id] = channel
        return channel

    def add_role(self, name: str, *, position: int = 1, entity_id: Optional[int] = None, managed: bool = False) -> LiveRole:
        role = LiveRole(id=entity_id or self._new_id(), name=name, position=position, managed=managed)
        self.roles[role.id] = role
        return role

    def mutations(self, operation: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == operation]

    def overwrites_for(self, channel_id: int) -> dict[int, Overwrite]:
        channel = self.categories.get(channel_id) or self.channels[channel_id]
        return {o.subject_id: o for o in channel.overwrites}

    # PlatformClient

    async def list_categories(self) -> list[LiveChannel]:
        return sorted(self.categories.values(), key=lambda c: (c.position, c.id))

    async def list_channels(self) -> list[LiveChannel]:
        return sorted(self.channels.values(), key=lambda c: (c.position, c.id))

    async def list_roles(self) -> list[LiveRole]:
        return sorted(self.roles.values(), key=lambda r: (r.position, r.id))

    async def create_category(self, name: str, *, reason: str) -> LiveChannel:
        self.calls.append(("create_category", name))
        self._check("create_category", name)
        return self.add_category(name)

    async def create_channel(self, name, kind, *, parent_id, topic, reason) -> LiveChannel:
        self.calls.append(("create_channel", name, parent_id))
        self._check("create_channel", name)
        if parent_id is not None and parent_id not in self.categories:
            raise LookupError(f"Category {parent_id} does not exist")
        channel = self.add_channel(name, parent_id, kind=kind)
        if topic:
            channel = replace(channel, topic=topic)
            self.channels[channel.id] = channel
        return channel

    async def create_role(self, name, *, permissions, color, hoist, mentionable, reason) -> LiveRole:
        self.calls.append(("create_role", name))
        self._check("create_role", name)
        role = LiveRole(
            id=self._new_id(),
            name=name,
            position=len(self.roles) + 1,
            permissions=permissions,
            color=color,
            hoist=hoist,
            mentionable=mentionable,
        )
        self.roles[role.id] = role
        return role

    async def edit_overwrite(self, channel_id, subject_id, allow, deny, *, subject_type="role", reason) -> None:
        self.calls.append(("edit_overwrite", channel_id, subject_id, allow, deny))
        store = self.categories if channel_id in self.categories else self.channels
        if channel_id not in store:
            raise LookupError(f"Channel {channel_id} does not exist")
        if subject_type == "role" and subject_id != self.everyone_id and subject_id not in self.roles:
            raise LookupError(f"Role {subject_id} does not exist")
        channel = store[channel_id]
        kept = tuple(o for o in channel.overwrites if o.subject_id != subject_id)
        new = Overwrite(subject_id=subject_id, allow=allow, deny=deny, subject_type=subject_type)
        store[channel_id] = replace(channel, overwrites=(*kept, new))

    async def channel_is_empty(self, channel_id: int) -> bool:
        return channel_id not in self.busy_channels

    async def post_message(self, channel_id: int, *, title: str, body: str) -> None:
        self.calls.append(("post_message", channel_id))
        self.messages.append({"channel": channel_id, "title": title, "body": body})
        self.busy_channels.add(channel_id)


class FakeClock:
    """Settable clock for session expiry tests."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def make_platform():
    return FakePlatform


@pytest.fixture
def pacer():
    return immediate_pacer()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def snapshot_store(tmp_path) -> SnapshotStore:
    return SnapshotStore(tmp_path / "snapshots", max_per_guild=5)


@pytest.fixture
def sample_config(tmp_path) -> Config:
    return Config(
        token="TEST",
        guild_ids=[GUILD_ID],
        role_ids=RoleIDs(admin=42),
        logging_channels=LoggingChannels(audit=555001, errors=555004),
        database_path=":memory:",
        provisioning=ProvisioningSettings(
            mutation_delay_seconds=0.0,
            overwrite_delay_seconds=0.0,
            summary_error_limit=3,
        ),
        setup_settings=SetupSettings(session_timeout_minutes=30, completed_retention_minutes=5),
        snapshot_settings=SnapshotSettings(directory=str(tmp_path / "snapshots"), max_per_guild=5),
    )


@pytest_asyncio.fixture
async def db():
    database = Database(":memory:")
    await database.connect()
    yield database
    await database.close()
