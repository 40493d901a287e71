# =============================================================================
# Checkpoint Store
# =============================================================================
# A tiny key-value store in SQLite that remembers how far each poller got.
#
# The poller reads one key before a poll cycle ("billing:INBOX:last_seq")
# and writes it once afterwards, so the next cycle only fetches messages
# that arrived in between.
#
# Tables:
#   - schema_version: one row holding the layout version of this file
#   - checkpoints: key -> value, with the time of the last update
#
# aiosqlite keeps the event loop free while SQLite works. WAL journaling
# lets a one-off `kestrel --reset` run next to a `kestrel --watch`.
# =============================================================================

import logging
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)

# Bump together with a migration in _migrate()
SCHEMA_VERSION = 1

CHECKPOINT_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS checkpoints (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
"""


class CheckpointStore:
    """
    Poll checkpoints in a SQLite file.

    Usage:
        >>> async with CheckpointStore(path) as store:
        ...     await store.put("billing:INBOX:last_seq", "42")
        ...     await store.get("billing:INBOX:last_seq")
        '42'

    Attributes:
        db_path: Location of the database file (created on first connect).
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Open the database, creating the file and tables on first use."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self.db_path)
        await self._connection.execute("PRAGMA journal_mode = WAL")
        await self._migrate()

    async def close(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            await connection.close()

    async def __aenter__(self) -> "CheckpointStore":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def conn(self) -> aiosqlite.Connection:
        """
        The open connection.

        Raises:
            RuntimeError: Before connect() or after close().
        """
        if self._connection is None:
            raise RuntimeError("Checkpoint store not connected. Call connect() first.")
        return self._connection

    async def _schema_version(self) -> int:
        try:
            async with self.conn.execute("SELECT MAX(version) FROM schema_version") as cursor:
                row = await cursor.fetchone()
        except aiosqlite.OperationalError:
            # No schema_version table: a new database
            return 0
        return row[0] or 0

    async def _migrate(self) -> None:
        version = await self._schema_version()
        if version >= SCHEMA_VERSION:
            return

        await self.conn.executescript(CHECKPOINT_TABLES)
        await self.conn.execute(
            "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
        await self.conn.commit()
        logger.debug(f"Checkpoint schema v{SCHEMA_VERSION} ready in {self.db_path}")

    # =========================================================================
    # Key-Value Operations
    # =========================================================================

    async def get(self, key: str) -> str | None:
        """The stored value, or None if the key was never written."""
        async with self.conn.execute(
            "SELECT value FROM checkpoints WHERE key = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else None

    async def put(self, key: str, value: str) -> None:
        """Write a checkpoint, replacing any previous value."""
        await self.conn.execute(
            """
            INSERT INTO checkpoints (key, value, updated_at)
            VALUES (?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
            """,
            (key, value),
        )
        await self.conn.commit()
        logger.debug(f"Checkpoint {key} = {value}")

    async def delete(self, key: str) -> bool:
        """
        Forget a checkpoint so the next poll starts from the first message.

        Returns:
            True if there was a checkpoint to forget.
        """
        cursor = await self.conn.execute("DELETE FROM checkpoints WHERE key = ?", (key,))
        await self.conn.commit()
        return cursor.rowcount > 0
