"""Core modules for the ClanHall Discord bot."""

from .config import Config, load_config
from .database import ClanLink, Database
from .platform import DiscordPlatform, PlatformClient
from .provisioning import ProvisioningContext
from .snapshots import Snapshot, SnapshotStore
from .templates import SERVER_TEMPLATES, get_template

__all__ = [
    "Config",
    "load_config",
    "ClanLink",
    "Database",
    "DiscordPlatform",
    "PlatformClient",
    "ProvisioningContext",
    "Snapshot",
    "SnapshotStore",
    "SERVER_TEMPLATES",
    "get_template",
]
