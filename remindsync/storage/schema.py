"""Database schema and migration logic for remindsync SQLite storage.

Contains:
- Schema version tracking (SCHEMA_VERSION)
- Table allowlist (ALLOWED_TABLES, validate_table_name)
- Ordered migrations (MIGRATIONS)
- Database initialization (init_db)
- Schema migration (migrate_schema)
"""

import logging
import sqlite3
from typing import List, Tuple

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 4  # v4: reminders.next_trigger_at

# Allowed table names for SQL queries (security: prevents SQL injection via table names)
ALLOWED_TABLES = frozenset(
    {
        "users",
        "reminders",
        "categories",
        "saved_places",
        "sync_queue",
        "sync_meta",
        "schema_version",
    }
)

RECORD_TABLES = ("reminders", "categories", "saved_places")


def validate_table_name(table: str) -> str:
    """Validate table name against allowlist to prevent SQL injection.

    Raises:
        ValueError: If table name is not in allowlist
    """
    if table not in ALLOWED_TABLES:
        raise ValueError(f"Invalid table name: {table}")
    return table


SCHEMA_V1 = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Local identities (registered accounts and the device guest)
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT,
    display_name TEXT,
    is_premium INTEGER DEFAULT 0,
    premium_expires_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS reminders (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    title TEXT NOT NULL,
    notes TEXT,
    type TEXT NOT NULL DEFAULT 'time',
    trigger_at TEXT,
    recurrence_rule TEXT,
    latitude REAL,
    longitude REAL,
    radius INTEGER,
    location_name TEXT,
    trigger_on TEXT,
    is_recurring_location INTEGER DEFAULT 0,
    delivery_method TEXT DEFAULT 'notification',
    alarm_sound TEXT,
    share_contact_name TEXT,
    share_contact_phone TEXT,
    share_message_template TEXT,
    category_id TEXT,
    priority TEXT DEFAULT 'medium',
    is_completed INTEGER DEFAULT 0,
    is_active INTEGER DEFAULT 1,
    completed_at TEXT,
    notification_id TEXT,
    geofence_id TEXT,
    synced_at TEXT,
    is_deleted INTEGER DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    name TEXT NOT NULL,
    color TEXT DEFAULT '#0ea5e9',
    icon TEXT DEFAULT 'tag',
    sort_order INTEGER DEFAULT 0,
    is_deleted INTEGER DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS saved_places (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    name TEXT NOT NULL,
    address TEXT,
    latitude REAL NOT NULL,
    longitude REAL NOT NULL,
    icon TEXT DEFAULT 'map-pin',
    is_deleted INTEGER DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Outbound mutations waiting for the remote store
CREATE TABLE IF NOT EXISTS sync_queue (
    id TEXT PRIMARY KEY,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    operation TEXT NOT NULL,
    payload TEXT NOT NULL,
    attempts INTEGER DEFAULT 0,
    last_attempt_at TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_sync_queue_created ON sync_queue(created_at);
"""

# Each migration is (version, statements). Applied in order, once.
MIGRATIONS: List[Tuple[int, List[str]]] = [
    (1, [SCHEMA_V1]),
    (
        2,
        [
            "ALTER TABLE users ADD COLUMN is_guest INTEGER DEFAULT 0",
            "ALTER TABLE sync_queue ADD COLUMN owner_id TEXT",
            "CREATE INDEX IF NOT EXISTS idx_sync_queue_owner ON sync_queue(owner_id)",
        ],
    ),
    (
        3,
        [
            "ALTER TABLE sync_queue ADD COLUMN last_error TEXT",
            """CREATE TABLE IF NOT EXISTS sync_meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )""",
            "CREATE INDEX IF NOT EXISTS idx_reminders_owner ON reminders(owner_id, is_deleted)",
            "CREATE INDEX IF NOT EXISTS idx_categories_owner ON categories(owner_id, is_deleted)",
            "CREATE INDEX IF NOT EXISTS idx_saved_places_owner ON saved_places(owner_id, is_deleted)",
        ],
    ),
    (
        4,
        [
            "ALTER TABLE reminders ADD COLUMN next_trigger_at TEXT",
            "UPDATE reminders SET next_trigger_at = trigger_at "
            "WHERE next_trigger_at IS NULL AND type = 'time'",
        ],
    ),
]


def get_columns(conn: sqlite3.Connection, table: str) -> set:
    """Return the column names of ``table`` (empty if it does not exist)."""
    try:
        validate_table_name(table)  # Security: defense-in-depth
        cols = conn.execute(f"PRAGMA table_info({table})").fetchall()
        return {c[1] for c in cols}
    except (TypeError, ValueError):
        return set()


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Return the applied schema version, 0 for a fresh database."""
    tables = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    if "schema_version" not in {t[0] for t in tables}:
        return 0
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] or 0


def _apply_statement(conn: sqlite3.Connection, statement: str) -> None:
    # ALTER TABLE ADD COLUMN is not idempotent in SQLite; guard it by column set
    parts = statement.split()
    if len(parts) >= 6 and parts[0].upper() == "ALTER" and parts[3].upper() == "ADD":
        table = parts[2]
        column = parts[5] if parts[4].upper() == "COLUMN" else parts[4]
        if column in get_columns(conn, table):
            logger.debug(f"Column {table}.{column} already present, skipping")
            return
        conn.execute(statement)
    else:
        conn.executescript(statement)


def migrate_schema(conn: sqlite3.Connection) -> int:
    """Apply every migration newer than the recorded schema version.

    Migrations are ordered and additive. Each applied version is recorded in
    ``schema_version``; already-applied versions are skipped.

    Returns:
        Number of migrations applied
    """
    current = get_schema_version(conn)
    applied = 0
    for version, statements in MIGRATIONS:
        if version <= current:
            continue
        for statement in statements:
            _apply_statement(conn, statement)
        conn.execute("DELETE FROM schema_version")
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
        logger.info(f"Applied schema migration v{version}")
        applied += 1
    return applied


def init_db(conn: sqlite3.Connection, db_path=None) -> None:
    """Initialize the database schema.

    Args:
        conn: Database connection.
        db_path: Path to the database file (for permissions).
    """
    migrate_schema(conn)
    conn.commit()

    # Set secure file permissions (owner read/write only)
    if db_path is not None:
        import os

        try:
            os.chmod(db_path, 0o600)
        except OSError as e:
            logger.warning(f"Could not set secure permissions: {e}")
