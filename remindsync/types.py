"""
Shared record types for remindsync.

All record dataclasses live here. These are the shared vocabulary between the
local store, the sync queue and the reconciliation engine. The field mapping
tables in ``remindsync.mapping`` are written against these definitions.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

# === Constants ===

GUEST_ID_PREFIX = "guest_"

# Queue entries with this many failed attempts are dead-lettered
MAX_SYNC_ATTEMPTS = 3

MIN_RADIUS = 100
MAX_RADIUS = 5000
DEFAULT_RADIUS = 200

MAX_TITLE_LENGTH = 200
MAX_NOTES_LENGTH = 1000


# === Shared Utility Functions ===


def utc_now() -> str:
    """Get current timestamp as ISO string in UTC."""
    return format_datetime(datetime.now(timezone.utc))


def format_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Format a datetime as a fixed-width UTC ISO string.

    Naive datetimes are taken to be UTC. Fixed microsecond precision keeps
    stored timestamps lexically ordered, which the SQL range filters rely on.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse ISO datetime string."""
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def is_guest_id(owner_id: Optional[str]) -> bool:
    """Guest identifiers live in a reserved namespace."""
    return bool(owner_id) and owner_id.startswith(GUEST_ID_PREFIX)


# === Enums ===


class EntityType(str, Enum):
    """Kinds of records that sync."""

    REMINDER = "reminder"
    CATEGORY = "category"
    SAVED_PLACE = "saved_place"


class Operation(str, Enum):
    """Queued mutation kinds."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ReminderType(str, Enum):
    TIME = "time"
    LOCATION = "location"


class TriggerOn(str, Enum):
    ENTER = "enter"
    EXIT = "exit"
    BOTH = "both"


class DeliveryMethod(str, Enum):
    NOTIFICATION = "notification"
    ALARM = "alarm"
    SHARE = "share"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ListFilter(str, Enum):
    """Views supported by ``LocalRecordStore.list_by_owner``."""

    ALL = "all"
    ACTIVE = "active"
    COMPLETED = "completed"
    TODAY = "today"
    DATE_RANGE = "date_range"


class SkipReason(str, Enum):
    """Why a sync operation did no work."""

    GUEST = "guest"
    OFFLINE = "offline"
    IN_FLIGHT = "in_flight"


# === Records ===


@dataclass
class Reminder:
    """A time- or location-triggered reminder."""

    id: str
    owner_id: str
    title: str
    type: str = ReminderType.TIME.value
    notes: Optional[str] = None
    # Time trigger
    trigger_at: Optional[datetime] = None
    recurrence_rule: Optional[str] = None
    # Next fire time for the notification scheduler (device-only)
    next_trigger_at: Optional[datetime] = None
    # Location trigger
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    radius: Optional[int] = None
    location_name: Optional[str] = None
    trigger_on: Optional[str] = None
    is_recurring_location: bool = False
    # Delivery
    delivery_method: str = DeliveryMethod.NOTIFICATION.value
    alarm_sound: Optional[str] = None
    share_contact_name: Optional[str] = None
    share_contact_phone: Optional[str] = None
    share_message_template: Optional[str] = None
    # Organization
    category_id: Optional[str] = None
    priority: str = Priority.MEDIUM.value
    # Status
    is_completed: bool = False
    is_active: bool = True
    completed_at: Optional[datetime] = None
    # Handles owned by the notification / geofence collaborators (device-only)
    notification_id: Optional[str] = None
    geofence_id: Optional[str] = None
    # Sync metadata
    synced_at: Optional[datetime] = None
    is_deleted: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Category:
    """A user-defined reminder category."""

    id: str
    owner_id: str
    name: str
    color: str = "#0ea5e9"
    icon: str = "tag"
    sort_order: int = 0
    is_deleted: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class SavedPlace:
    """A named location the user can attach to reminders."""

    id: str
    owner_id: str
    name: str
    latitude: float = 0.0
    longitude: float = 0.0
    address: Optional[str] = None
    icon: str = "map-pin"
    is_deleted: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Identity:
    """A local identity: a device guest or a registered account."""

    id: str
    is_guest: bool = False
    email: Optional[str] = None
    display_name: Optional[str] = None
    is_premium: bool = False
    premium_expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# === Sync ===


@dataclass
class SyncQueueEntry:
    """A pending outbound mutation."""

    id: str
    entity_type: str
    entity_id: str
    operation: str
    payload: Dict[str, Any] = field(default_factory=dict)
    owner_id: Optional[str] = None
    attempts: int = 0
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None
    # Limit of the queue the entry was read from
    max_attempts: int = field(default=MAX_SYNC_ATTEMPTS, repr=False, compare=False)

    @property
    def is_dead_lettered(self) -> bool:
        return self.attempts >= self.max_attempts


@dataclass
class QueueResult:
    """Outcome of draining one owner's queue."""

    success: int = 0
    failed: int = 0
    skipped: Optional[SkipReason] = None


@dataclass
class SyncCounts:
    """Per-entity counts for bulk push/pull."""

    reminders: int = 0
    categories: int = 0
    saved_places: int = 0
    failed: int = 0
    skipped: Optional[SkipReason] = None

    @property
    def total(self) -> int:
        return self.reminders + self.categories + self.saved_places

    def add(self, entity_type: str, n: int = 1) -> None:
        attr = COUNT_ATTRS[EntityType(entity_type)]
        setattr(self, attr, getattr(self, attr) + n)


COUNT_ATTRS: Dict[EntityType, str] = {
    EntityType.REMINDER: "reminders",
    EntityType.CATEGORY: "categories",
    EntityType.SAVED_PLACE: "saved_places",
}


@dataclass
class FullSyncResult:
    """Outcome of drain → push → pull."""

    queue: QueueResult = field(default_factory=QueueResult)
    pushed: SyncCounts = field(default_factory=SyncCounts)
    pulled: SyncCounts = field(default_factory=SyncCounts)
    skipped: Optional[SkipReason] = None
    completed: bool = False
