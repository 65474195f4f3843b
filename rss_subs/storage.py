"""
SQLite key/value storage for durable documents.

Provides async read/write of named binary documents so the bot state
survives restarts.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from rss_subs.errors import PersistenceError

logger = logging.getLogger(__name__)


class BlobStore:
    """
    Async SQLite store of binary documents keyed by name.

    A missing key reads as None; every database failure surfaces as a
    PersistenceError.
    """

    def __init__(self, database_path: str | Path):
        """
        Initialize storage with database path.

        Parameters
        ----------
        database_path : str | Path
            Path to the SQLite database file, or ``:memory:``.
        """
        self.database_path = Path(database_path)
        self._connection: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """
        Initialize the database connection and create tables.

        Creates the database file and parent directories if they don't exist.

        Raises
        ------
        PersistenceError
            If the database cannot be opened.
        """
        logger.info("Initializing database at %s", self.database_path)

        try:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = await aiosqlite.connect(self.database_path)
            await self._create_tables()
        except (OSError, aiosqlite.Error) as e:
            raise PersistenceError(f"cannot open {self.database_path}: {e}") from e

    async def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        connection = self._require_connection()

        await connection.execute("""
            CREATE TABLE IF NOT EXISTS blobs (
                key TEXT PRIMARY KEY,
                data BLOB NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        await connection.commit()
        logger.debug("Database tables created/verified")

    def _require_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise PersistenceError("Database not initialized")
        return self._connection

    async def read(self, key: str) -> bytes | None:
        """
        Read a document.

        Parameters
        ----------
        key : str
            Document name.

        Returns
        -------
        bytes | None
            Document content, or None if the key does not exist.

        Raises
        ------
        PersistenceError
            If the database query fails.
        """
        connection = self._require_connection()

        try:
            cursor = await connection.execute(
                "SELECT data FROM blobs WHERE key = ?",
                (key,),
            )
            result = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise PersistenceError(f"cannot read {key}: {e}") from e

        if result is None:
            return None
        return bytes(result[0])

    async def write(self, key: str, data: bytes) -> None:
        """
        Create or replace a document.

        Parameters
        ----------
        key : str
            Document name.
        data : bytes
            Document content.

        Raises
        ------
        PersistenceError
            If the database write fails.
        """
        connection = self._require_connection()
        now = datetime.now(timezone.utc).isoformat()

        try:
            await connection.execute(
                """
                INSERT INTO blobs (key, data, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
                """,
                (key, data, now),
            )
            await connection.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"cannot write {key}: {e}") from e

        logger.debug("Wrote %d bytes to %s", len(data), key)

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.debug("Database connection closed")

    async def __aenter__(self) -> "BlobStore":
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
