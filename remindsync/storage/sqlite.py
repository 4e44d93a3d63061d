"""SQLite-backed local store for remindsync.

``SQLiteStore`` owns the database file and hands out short-lived connections.
Components above it (record store, sync queue, identity resolver) never open
sqlite3 connections themselves.
"""

import contextlib
import logging
import sqlite3
from pathlib import Path
from typing import Iterator, Optional, Union

from remindsync.protocols import StorageError
from remindsync.storage.schema import get_schema_version, init_db
from remindsync.types import utc_now

logger = logging.getLogger(__name__)


class SQLiteStore:
    """Durable local storage.

    Features:
    - Zero-config, one file per device
    - Connection per operation, committed or rolled back as a unit
    - Versioned schema migrated on open
    - Small key/value table for sync metadata
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path).expanduser()
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create database directory: {e}") from e

        with self.connect() as conn:
            init_db(conn, self.db_path)

        logger.debug(f"SQLite store ready at {self.db_path}")

    def _get_conn(self) -> sqlite3.Connection:
        """Open a new connection. Prefer ``connect()``, which also closes it."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    @contextlib.contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Context manager that handles the transaction AND closes the connection.

        - Commit on success
        - Rollback on exception
        - sqlite3 errors re-raised as StorageError
        - Close in all cases
        """
        try:
            conn = self._get_conn()
        except sqlite3.Error as e:
            logger.error(f"Could not open database {self.db_path}: {e}", exc_info=True)
            raise StorageError(f"Could not open database: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise StorageError(str(e)) from e
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextlib.contextmanager
    def using(self, conn: Optional[sqlite3.Connection] = None) -> Iterator[sqlite3.Connection]:
        """Join the caller's transaction when ``conn`` is given, else open one."""
        if conn is not None:
            yield conn
            return
        with self.connect() as new_conn:
            yield new_conn

    def close(self) -> None:
        """Connections are per-operation; nothing persistent to close."""
        pass

    def schema_version(self) -> int:
        with self.connect() as conn:
            return get_schema_version(conn)

    # === Sync metadata ===

    def get_meta(self, key: str) -> Optional[str]:
        with self.connect() as conn:
            row = conn.execute("SELECT value FROM sync_meta WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_meta(self, key: str, value: str) -> None:
        with self.connect() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO sync_meta (key, value, updated_at)
                   VALUES (?, ?, ?)""",
                (key, value, utc_now()),
            )
