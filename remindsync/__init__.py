"""
remindsync - offline-first local-to-cloud sync for reminders.
"""

from .service import RemindSync
from .types import Category, EntityType, Identity, ListFilter, Reminder, SavedPlace

try:
    from importlib.metadata import version

    __version__ = version("remindsync")
except Exception:
    __version__ = "0.0.0"

__all__ = [
    "RemindSync",
    "Category",
    "EntityType",
    "Identity",
    "ListFilter",
    "Reminder",
    "SavedPlace",
]
