"""Async SQLite store for guild <-> clan associations."""

from __future__ import annotations

import asyncio
import copy
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import aiosqlite

from .logger import get_logger

logger = get_logger()


def default_clan_settings() -> dict[str, Any]:
    return {
        "channels": {},
        "notifications": {
            "warStart": False,
            "warEnd": False,
            "memberJoin": False,
            "memberLeave": False,
        },
        "autoRoles": False,
    }


def merge_settings(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    """Deep-merge ``updates`` into a copy of ``base``; nested dicts merge key by key."""
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_settings(merged[key], value)
        else:
            merged[key] = value
    return merged


@dataclass
class ClanLink:
    """The clan linked to one guild, with its channel bindings and toggles."""
    guild_id: int
    clan_tag: str
    clan_name: str
    settings: dict[str, Any] = field(default_factory=default_clan_settings)

    @property
    def channels(self) -> dict[str, int]:
        return self.settings.get("channels", {})

    @property
    def notifications(self) -> dict[str, bool]:
        return self.settings.get("notifications", {})


class Database:
    """Async database handler using SQLite."""

    def __init__(self, db_path: str | Path = "clanhall.db", connect_timeout: float | None = None) -> None:
        self.db_path = Path(db_path)
        self._connection: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()
        self.target_schema_version = 2

        if connect_timeout is None:
            connect_timeout = float(os.getenv("DB_CONNECT_TIMEOUT", "5.0"))
        self.connect_timeout = connect_timeout

    async def connect(self) -> None:
        """Connect to the database with timeout protection."""
        if self._connection is not None:
            return

        try:
            self._connection = await asyncio.wait_for(
                aiosqlite.connect(str(self.db_path)),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError:
            self._connection = None
            raise TimeoutError(
                f"Database connection timed out after {self.connect_timeout}s. "
                f"Database path: {self.db_path}"
            ) from None

        try:
            self._connection.row_factory = aiosqlite.Row
            await self._initialize_schema()
        except Exception as init_error:
            await self._connection.close()
            self._connection = None
            logger.error(
                f"Failed to initialize database after connection: {init_error}. "
                f"Database path: {self.db_path}"
            )
            raise

    async def close(self) -> None:
        if self._connection:
            await self._connection.close()
            self._connection = None

    def _require_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError("Database connection not initialized.")
        return self._connection

    async def _initialize_schema(self) -> None:
        """Initialize the database schema with versioning support."""
        connection = self._require_connection()
        await connection.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL UNIQUE,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        await connection.commit()

        current_version = await self._get_current_schema_version()
        await self._apply_pending_migrations(current_version)
        logger.info(f"Database schema at version {await self._get_current_schema_version()}")

    async def _get_current_schema_version(self) -> int:
        cursor = await self._require_connection().execute(
            "SELECT MAX(version) as version FROM schema_migrations"
        )
        row = await cursor.fetchone()
        return row["version"] if row and row["version"] else 0

    async def _apply_pending_migrations(self, current_version: int) -> None:
        migrations = {
            1: ("clan_links_table", self._migration_v1),
            2: ("setup_runs_table", self._migration_v2),
        }

        for version in sorted(migrations.keys()):
            if version <= current_version:
                continue
            name, migration_fn = migrations[version]
            logger.info(f"Applying migration v{version}: {name}")
            try:
                await migration_fn()
                await self._record_migration(version, name)
            except Exception as e:
                logger.exception(f"Failed to apply migration v{version} ({name}): {e}")
                raise RuntimeError(f"Migration v{version} ({name}) failed: {e}") from e

    async def _record_migration(self, version: int, name: str) -> None:
        connection = self._require_connection()
        await connection.execute(
            "INSERT INTO schema_migrations (version, name) VALUES (?, ?)",
            (version, name),
        )
        await connection.commit()

    async def _migration_v1(self) -> None:
        """Migration v1: one linked clan per guild."""
        connection = self._require_connection()
        await connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS clan_links (
                guild_id INTEGER PRIMARY KEY,
                clan_tag TEXT NOT NULL,
                clan_name TEXT NOT NULL,
                settings TEXT NOT NULL DEFAULT '{}',
                linked_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            CREATE INDEX IF NOT EXISTS idx_clan_links_tag ON clan_links(clan_tag);
            """
        )
        await connection.commit()

    async def _migration_v2(self) -> None:
        """Migration v2: history of confirmed setup wizard runs."""
        connection = self._require_connection()
        await connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS setup_runs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                guild_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                template_key TEXT NOT NULL,
                summary TEXT NOT NULL DEFAULT '{}',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            CREATE INDEX IF NOT EXISTS idx_setup_runs_guild ON setup_runs(guild_id, created_at);
            """
        )
        await connection.commit()

    # ------------------------------------------------------------------
    # Clan links
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_link(row: aiosqlite.Row) -> ClanLink:
        stored = json.loads(row["settings"] or "{}")
        return ClanLink(
            guild_id=row["guild_id"],
            clan_tag=row["clan_tag"],
            clan_name=row["clan_name"],
            settings=merge_settings(default_clan_settings(), stored),
        )

    async def get_linked_clan(self, guild_id: int) -> Optional[ClanLink]:
        cursor = await self._require_connection().execute(
            "SELECT guild_id, clan_tag, clan_name, settings FROM clan_links WHERE guild_id = ?",
            (guild_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_link(row) if row else None

    async def link_clan(self, guild_id: int, clan_tag: str, clan_name: str) -> ClanLink:
        """Link ``clan_tag`` to the guild, keeping settings if the same clan is relinked."""
        connection = self._require_connection()
        async with self._write_lock:
            existing = await self.get_linked_clan(guild_id)
            settings = (
                existing.settings
                if existing and existing.clan_tag == clan_tag
                else default_clan_settings()
            )
            await connection.execute(
                """
                INSERT INTO clan_links (guild_id, clan_tag, clan_name, settings)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(guild_id) DO UPDATE SET
                    clan_tag = excluded.clan_tag,
                    clan_name = excluded.clan_name,
                    settings = excluded.settings,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (guild_id, clan_tag, clan_name, json.dumps(settings)),
            )
            await connection.commit()

        logger.info(f"Linked clan {clan_tag} ({clan_name}) to guild {guild_id}")
        return ClanLink(guild_id=guild_id, clan_tag=clan_tag, clan_name=clan_name, settings=settings)

    async def update_clan_settings(self, guild_id: int, updates: dict[str, Any]) -> Optional[ClanLink]:
        """Deep-merge ``updates`` into the linked clan's settings.

        Returns ``None`` when no clan is linked to the guild.
        """
        connection = self._require_connection()
        async with self._write_lock:
            link = await self.get_linked_clan(guild_id)
            if link is None:
                return None
            link.settings = merge_settings(link.settings, updates)
            await connection.execute(
                "UPDATE clan_links SET settings = ?, updated_at = CURRENT_TIMESTAMP WHERE guild_id = ?",
                (json.dumps(link.settings), guild_id),
            )
            await connection.commit()
        return link

    async def unlink_clan(self, guild_id: int) -> bool:
        connection = self._require_connection()
        cursor = await connection.execute("DELETE FROM clan_links WHERE guild_id = ?", (guild_id,))
        await connection.commit()
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Setup runs
    # ------------------------------------------------------------------

    async def record_setup_run(
        self, guild_id: int, user_id: int, template_key: str, summary: dict[str, Any]
    ) -> int:
        connection = self._require_connection()
        cursor = await connection.execute(
            "INSERT INTO setup_runs (guild_id, user_id, template_key, summary) VALUES (?, ?, ?, ?)",
            (guild_id, user_id, template_key, json.dumps(summary)),
        )
        await connection.commit()
        return cursor.lastrowid

    async def get_setup_runs(self, guild_id: int, limit: int = 10) -> list[dict[str, Any]]:
        cursor = await self._require_connection().execute(
            """
            SELECT id, guild_id, user_id, template_key, summary, created_at
            FROM setup_runs WHERE guild_id = ?
            ORDER BY id DESC LIMIT ?
            """,
            (guild_id, limit),
        )
        rows = await cursor.fetchall()
        return [
            {
                "id": row["id"],
                "guild_id": row["guild_id"],
                "user_id": row["user_id"],
                "template_key": row["template_key"],
                "summary": json.loads(row["summary"] or "{}"),
                "created_at": row["created_at"],
            }
            for row in rows
        ]
