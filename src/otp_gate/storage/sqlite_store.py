"""SQLite-backed persistence for principal attributes."""
from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Mapping, Optional

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
SCHEMA_VERSION = 1

VALID_JOURNAL_MODES = frozenset({"delete", "truncate", "persist", "memory", "wal", "off"})

logger = logging.getLogger(__name__)


def _utc_now() -> str:
    return datetime.now(timezone.utc).strftime(ISO_FORMAT)


class SqliteAttributeStore:
    """Thin async wrapper over sqlite3 storing attributes durably (account scope)."""

    def __init__(
        self,
        db_path: Path,
        *,
        busy_timeout_ms: int = 2000,
        journal_mode: str | None = "wal",
    ) -> None:
        self._path = db_path
        self._busy_timeout_ms = busy_timeout_ms
        self._journal_mode = self._normalize_journal_mode(journal_mode)
        self._connection: sqlite3.Connection | None = None
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # lifecycle

    async def initialize(self) -> None:
        if self._connection is not None:
            return
        async with self._lock:
            if self._connection is None:
                conn = await asyncio.to_thread(self._open_connection)
                self._connection = conn

    async def close(self) -> None:
        if self._connection is None:
            return
        conn = self._connection
        self._connection = None
        await asyncio.to_thread(conn.close)

    def _open_connection(self) -> sqlite3.Connection:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.execute(f"PRAGMA busy_timeout = {int(max(self._busy_timeout_ms, 0))};")
        if self._journal_mode:
            conn.execute(f"PRAGMA journal_mode = {self._journal_mode.upper()};")
        try:
            self._apply_migrations(conn)
        except sqlite3.OperationalError as exc:
            conn.close()
            logger.error(
                "SQLite migration failed (path=%s, timeout_ms=%s): %s",
                self._path,
                self._busy_timeout_ms,
                exc,
            )
            raise
        return conn

    @staticmethod
    def _normalize_journal_mode(value: str | None) -> str | None:
        if value is None:
            return None
        mode = value.strip().lower()
        if not mode:
            return None
        if mode not in VALID_JOURNAL_MODES:
            raise ValueError(
                f"Unsupported SQLite journal_mode '{value}'. Expected one of: {sorted(VALID_JOURNAL_MODES)}"
            )
        return mode

    def _apply_migrations(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );
            """
        )
        current = self._get_schema_version(conn)
        if current >= SCHEMA_VERSION:
            return
        for version in range(current + 1, SCHEMA_VERSION + 1):
            script = MIGRATIONS.get(version)
            if not script:
                raise RuntimeError(f"Missing migration script for version {version}")
            conn.executescript(script)
            conn.execute(
                "INSERT INTO meta(key, value) VALUES('schema_version', ?)\n"
                "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                (str(version),),
            )
        conn.commit()

    def _get_schema_version(self, conn: sqlite3.Connection) -> int:
        cursor = conn.execute("SELECT value FROM meta WHERE key='schema_version'")
        row = cursor.fetchone()
        if not row:
            return 0
        try:
            return int(row[0])
        except (TypeError, ValueError):
            return 0

    def _require_connection(self) -> sqlite3.Connection:
        if not self._connection:
            raise RuntimeError("SQLite store has not been initialised")
        return self._connection

    # ------------------------------------------------------------------
    # attributes

    async def get_attribute(self, principal_id: str, key: str) -> Optional[str]:
        def _op() -> Optional[str]:
            conn = self._require_connection()
            cursor = conn.execute(
                "SELECT value FROM principal_attributes WHERE principal_id=? AND key=?",
                (principal_id, key),
            )
            row = cursor.fetchone()
            return row[0] if row else None

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def get_attributes(self, principal_id: str, keys: Iterable[str]) -> dict[str, str]:
        wanted = list(dict.fromkeys(keys))
        if not wanted:
            return {}

        def _op() -> dict[str, str]:
            conn = self._require_connection()
            placeholders = ", ".join("?" for _ in wanted)
            cursor = conn.execute(
                "SELECT key, value FROM principal_attributes "
                f"WHERE principal_id=? AND key IN ({placeholders})",
                (principal_id, *wanted),
            )
            return {row[0]: row[1] for row in cursor.fetchall()}

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def set_attribute(self, principal_id: str, key: str, value: str) -> None:
        await self.set_attributes(principal_id, {key: value})

    async def remove_attribute(self, principal_id: str, key: str) -> None:
        await self.remove_attributes(principal_id, (key,))

    async def set_attributes(self, principal_id: str, values: Mapping[str, str]) -> None:
        items = [(principal_id, key, value, _utc_now()) for key, value in values.items()]
        if not items:
            return

        def _op() -> None:
            conn = self._require_connection()
            with conn:
                conn.executemany(
                    """
                    INSERT INTO principal_attributes(principal_id, key, value, updated_at)
                    VALUES(?, ?, ?, ?)
                    ON CONFLICT(principal_id, key) DO UPDATE SET
                        value=excluded.value,
                        updated_at=excluded.updated_at
                    """,
                    items,
                )

        async with self._lock:
            await asyncio.to_thread(_op)

    async def remove_attributes(self, principal_id: str, keys: Iterable[str]) -> None:
        params = [(principal_id, key) for key in keys]
        if not params:
            return

        def _op() -> None:
            conn = self._require_connection()
            with conn:
                conn.executemany(
                    "DELETE FROM principal_attributes WHERE principal_id=? AND key=?",
                    params,
                )

        async with self._lock:
            await asyncio.to_thread(_op)

    async def remove_attributes_if(self, principal_id: str, expected: Mapping[str, str]) -> bool:
        items = list(expected.items())
        if not items:
            return True

        def _op() -> bool:
            conn = self._require_connection()
            placeholders = ", ".join("?" for _ in items)
            keys = [key for key, _ in items]
            with conn:
                # Write lock held across the check and the delete.
                conn.execute("BEGIN IMMEDIATE")
                cursor = conn.execute(
                    "SELECT key, value FROM principal_attributes "
                    f"WHERE principal_id=? AND key IN ({placeholders})",
                    (principal_id, *keys),
                )
                if {row[0]: row[1] for row in cursor.fetchall()} != dict(items):
                    return False
                conn.executemany(
                    "DELETE FROM principal_attributes WHERE principal_id=? AND key=?",
                    [(principal_id, key) for key in keys],
                )
            return True

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def fetch_attributes(self, principal_id: str) -> dict[str, str]:
        """Return every stored attribute for ``principal_id``."""

        def _op() -> dict[str, str]:
            conn = self._require_connection()
            cursor = conn.execute(
                "SELECT key, value FROM principal_attributes WHERE principal_id=? ORDER BY key",
                (principal_id,),
            )
            return {row[0]: row[1] for row in cursor.fetchall()}

        async with self._lock:
            return await asyncio.to_thread(_op)


MIGRATIONS: dict[int, str] = {
    1: """
        CREATE TABLE IF NOT EXISTS principal_attributes (
            principal_id TEXT NOT NULL,
            key TEXT NOT NULL,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (principal_id, key)
        );
    """,
}
