"""Live guild graph model and the discord.py-backed platform client.

Reconcilers, snapshots and restore only talk to the ``PlatformClient``
protocol, so the live graph can be swapped for an in-memory fake in tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional, Protocol, Sequence, Union

import discord

ChannelKind = Literal["category", "text", "voice"]
SubjectType = Literal["role", "member"]


@dataclass(frozen=True)
class Overwrite:
    """Per-channel allow/deny pair for one subject (role or member)."""
    subject_id: int
    allow: int
    deny: int
    subject_type: SubjectType = "role"


@dataclass(frozen=True)
class LiveChannel:
    id: int
    name: str
    kind: ChannelKind
    position: int = 0
    parent_id: Optional[int] = None
    topic: Optional[str] = None
    overwrites: tuple[Overwrite, ...] = ()

    @property
    def is_category(self) -> bool:
        return self.kind == "category"


@dataclass(frozen=True)
class LiveRole:
    id: int
    name: str
    position: int = 0
    permissions: int = 0
    color: int = 0
    hoist: bool = False
    mentionable: bool = False
    managed: bool = False


LiveEntity = Union[LiveChannel, LiveRole]


@dataclass
class LiveGraph:
    """One listing of a workspace: categories, channels and roles."""
    workspace_id: int
    categories: list[LiveChannel] = field(default_factory=list)
    channels: list[LiveChannel] = field(default_factory=list)
    roles: list[LiveRole] = field(default_factory=list)

    def channel_ids(self) -> set[int]:
        return {c.id for c in self.categories} | {c.id for c in self.channels}

    def role_ids(self) -> set[int]:
        return {r.id for r in self.roles}


class PlatformClient(Protocol):
    """Remote operations consumed by reconcilers, snapshots and restore.

    ``everyone_id`` is the reserved subject id of the implicit everyone role.
    Every call may raise; callers record failures per entity.
    """

    workspace_id: int
    workspace_name: str
    everyone_id: int

    async def list_categories(self) -> list[LiveChannel]: ...

    async def list_channels(self) -> list[LiveChannel]: ...

    async def list_roles(self) -> list[LiveRole]: ...

    async def create_category(self, name: str, *, reason: str) -> LiveChannel: ...

    async def create_channel(
        self,
        name: str,
        kind: ChannelKind,
        *,
        parent_id: Optional[int],
        topic: Optional[str],
        reason: str,
    ) -> LiveChannel: ...

    async def create_role(
        self,
        name: str,
        *,
        permissions: int,
        color: int,
        hoist: bool,
        mentionable: bool,
        reason: str,
    ) -> LiveRole: ...

    async def edit_overwrite(
        self,
        channel_id: int,
        subject_id: int,
        allow: int,
        deny: int,
        *,
        subject_type: SubjectType = "role",
        reason: str,
    ) -> None: ...

    async def channel_is_empty(self, channel_id: int) -> bool: ...

    async def post_message(self, channel_id: int, *, title: str, body: str) -> None: ...


async def fetch_graph(platform: PlatformClient) -> LiveGraph:
    """List the full live graph in one walk."""
    return LiveGraph(
        workspace_id=platform.workspace_id,
        categories=await platform.list_categories(),
        channels=await platform.list_channels(),
        roles=await platform.list_roles(),
    )


def _overwrites_of(channel: discord.abc.GuildChannel) -> tuple[Overwrite, ...]:
    result = []
    for target, overwrite in channel.overwrites.items():
        allow, deny = overwrite.pair()
        result.append(
            Overwrite(
                subject_id=target.id,
                allow=allow.value,
                deny=deny.value,
                subject_type="role" if isinstance(target, discord.Role) else "member",
            )
        )
    return tuple(result)


def _live_channel(channel: discord.abc.GuildChannel) -> LiveChannel:
    if isinstance(channel, discord.CategoryChannel):
        kind: ChannelKind = "category"
    elif isinstance(channel, discord.VoiceChannel):
        kind = "voice"
    else:
        kind = "text"
    return LiveChannel(
        id=channel.id,
        name=channel.name,
        kind=kind,
        position=channel.position,
        parent_id=None if kind == "category" else getattr(channel, "category_id", None),
        topic=getattr(channel, "topic", None),
        overwrites=_overwrites_of(channel),
    )


def _live_role(role: discord.Role) -> LiveRole:
    return LiveRole(
        id=role.id,
        name=role.name,
        position=role.position,
        permissions=role.permissions.value,
        color=role.colour.value,
        hoist=role.hoist,
        mentionable=role.mentionable,
        managed=role.managed,
    )


class DiscordPlatform:
    """``PlatformClient`` backed by a discord.py guild.

    HTTP rate limits and request timeouts are handled by discord.py itself;
    callers add their own fixed delay between mutations. Entities created
    through this adapter are tracked until the gateway cache catches up, and
    uncached overwrite subjects are fetched over HTTP.
    """

    def __init__(self, guild: discord.Guild) -> None:
        self.guild = guild
        self.workspace_id = guild.id
        self.workspace_name = guild.name
        self.everyone_id = guild.default_role.id
        self._created_channels: dict[int, discord.abc.GuildChannel] = {}
        self._created_roles: dict[int, discord.Role] = {}

    def _uncached(self, created: dict, cached_ids: set[int]) -> list:
        return [entity for entity_id, entity in created.items() if entity_id not in cached_ids]

    def _get_channel(self, channel_id: int) -> Optional[discord.abc.GuildChannel]:
        return self.guild.get_channel(channel_id) or self._created_channels.get(channel_id)

    async def list_categories(self) -> list[LiveChannel]:
        categories = list(self.guild.categories)
        pending = self._uncached(self._created_channels, {c.id for c in self.guild.channels})
        categories.extend(c for c in pending if isinstance(c, discord.CategoryChannel))
        return [_live_channel(c) for c in categories]

    async def list_channels(self) -> list[LiveChannel]:
        channels = list(self.guild.channels)
        channels.extend(self._uncached(self._created_channels, {c.id for c in channels}))
        return [
            _live_channel(c)
            for c in channels
            if isinstance(c, (discord.TextChannel, discord.VoiceChannel))
        ]

    async def list_roles(self) -> list[LiveRole]:
        roles = list(self.guild.roles)
        roles.extend(self._uncached(self._created_roles, {r.id for r in roles}))
        return [_live_role(r) for r in roles if not r.is_default()]

    def _require_category(self, parent_id: Optional[int]) -> Optional[discord.CategoryChannel]:
        if parent_id is None:
            return None
        category = self._get_channel(parent_id)
        if not isinstance(category, discord.CategoryChannel):
            raise LookupError(f"Category {parent_id} does not exist")
        return category

    async def create_category(self, name: str, *, reason: str) -> LiveChannel:
        category = await self.guild.create_category(name=name, reason=reason)
        self._created_channels[category.id] = category
        return _live_channel(category)

    async def create_channel(
        self,
        name: str,
        kind: ChannelKind,
        *,
        parent_id: Optional[int],
        topic: Optional[str],
        reason: str,
    ) -> LiveChannel:
        category = self._require_category(parent_id)
        if kind == "voice":
            channel = await self.guild.create_voice_channel(name=name, category=category, reason=reason)
        elif kind == "text":
            kwargs = {"topic": topic} if topic else {}
            channel = await self.guild.create_text_channel(
                name=name, category=category, reason=reason, **kwargs
            )
        else:
            raise ValueError(f"Unsupported channel kind: {kind}")
        self._created_channels[channel.id] = channel
        return _live_channel(channel)

    async def create_role(
        self,
        name: str,
        *,
        permissions: int,
        color: int,
        hoist: bool,
        mentionable: bool,
        reason: str,
    ) -> LiveRole:
        role = await self.guild.create_role(
            name=name,
            permissions=discord.Permissions(permissions),
            colour=discord.Colour(color),
            hoist=hoist,
            mentionable=mentionable,
            reason=reason,
        )
        self._created_roles[role.id] = role
        return _live_role(role)

    async def _resolve_subject(
        self, subject_id: int, subject_type: str
    ) -> Union[discord.Role, discord.Member]:
        # set_permissions only accepts real Role/Member objects
        if subject_type == "member":
            member = self.guild.get_member(subject_id)
            if member is not None:
                return member
            try:
                return await self.guild.fetch_member(subject_id)
            except discord.NotFound:
                raise LookupError(f"Member {subject_id} does not exist") from None

        role = self.guild.get_role(subject_id) or self._created_roles.get(subject_id)
        if role is None:
            role = discord.utils.get(await self.guild.fetch_roles(), id=subject_id)
        if role is None:
            raise LookupError(f"Role {subject_id} does not exist")
        return role

    async def edit_overwrite(
        self,
        channel_id: int,
        subject_id: int,
        allow: int,
        deny: int,
        *,
        subject_type: SubjectType = "role",
        reason: str,
    ) -> None:
        channel = self._get_channel(channel_id)
        if channel is None:
            raise LookupError(f"Channel {channel_id} does not exist")
        target = await self._resolve_subject(subject_id, subject_type)
        overwrite = discord.PermissionOverwrite.from_pair(
            discord.Permissions(allow), discord.Permissions(deny)
        )
        await channel.set_permissions(target, overwrite=overwrite, reason=reason)

    async def channel_is_empty(self, channel_id: int) -> bool:
        channel = self._get_channel(channel_id)
        if not isinstance(channel, discord.TextChannel):
            return False
        async for _ in channel.history(limit=5):
            return False
        return True

    async def post_message(self, channel_id: int, *, title: str, body: str) -> None:
        channel = self._get_channel(channel_id)
        if not isinstance(channel, discord.TextChannel):
            raise LookupError(f"Text channel {channel_id} does not exist")
        embed = discord.Embed(title=title, description=body, color=discord.Color.green())
        await channel.send(embed=embed)


def sort_by_position(entities: Sequence[LiveEntity], *, descending: bool = False) -> list:
    return sorted(entities, key=lambda e: (e.position, e.id), reverse=descending)
