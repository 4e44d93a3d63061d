"""remindsync storage.

Local-first storage using SQLite.
"""

from .records import LocalRecordStore, normalize_record, normalize_reminder
from .schema import SCHEMA_VERSION, init_db, migrate_schema
from .sqlite import SQLiteStore

__all__ = [
    "LocalRecordStore",
    "SQLiteStore",
    "SCHEMA_VERSION",
    "init_db",
    "migrate_schema",
    "normalize_record",
    "normalize_reminder",
]
