"""Shared utilities for ClanHall."""

from .admin_checks import admin_command_check, admin_only
from .clan_tags import normalize_clan_tag
from .embeds import add_fields, create_embed
from .permissions import is_admin

__all__ = [
    "add_fields",
    "admin_command_check",
    "admin_only",
    "create_embed",
    "is_admin",
    "normalize_clan_tag",
]
