"""Clash of Clans tag validation."""

from __future__ import annotations

import re

_TAG_CHARS = re.compile(r"^[0289PYLQGRJCUV]+$")


def normalize_clan_tag(tag: str) -> str:
    """Return ``#TAG`` in upper case, raising ``ValueError`` for invalid tags.

    Tags only use the characters 0289PYLQGRJCUV and are 3 to 9 characters
    long without the leading ``#``.
    """
    if not tag or not tag.strip():
        raise ValueError("Tag is required")

    raw = tag.strip().lstrip("#").upper()
    if not _TAG_CHARS.match(raw):
        raise ValueError(
            "Invalid tag format. Clash of Clans tags only use certain letters and numbers (0-9, PYLQGRJCUV)."
        )
    if not 3 <= len(raw) <= 9:
        raise ValueError("Tag length is invalid. Clash of Clans tags are between 3 and 9 characters.")
    return f"#{raw}"
