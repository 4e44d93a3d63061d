"""Declarative field mapping between record types, local rows, queue payloads
and remote rows.

Each entity has exactly one ``FieldMap`` table. Every dataclass field must
appear in it; converting in any direction goes through the table so a field
cannot be added on one side and silently dropped on the other.

Naming per tier:
- dataclass attribute / local SQLite column: ``trigger_at``
- queue payload key (application naming):    ``triggerAt``
- remote column:                             ``trigger_at`` (owner is ``user_id``)

Fields with ``remote=None`` are device-only and never leave the device.
"""

import dataclasses
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple, Type, Union

from remindsync.types import (
    Category,
    EntityType,
    Reminder,
    SavedPlace,
    format_datetime,
    parse_datetime,
)

Record = Union[Reminder, Category, SavedPlace]

STR = "str"
INT = "int"
FLOAT = "float"
BOOL = "bool"
DATETIME = "datetime"


@dataclass(frozen=True)
class FieldMap:
    """One row of a mapping table."""

    attr: str
    local_key: str
    remote: Optional[str]
    kind: str = STR

    @property
    def syncs(self) -> bool:
        return self.remote is not None


REMINDER_FIELDS: Tuple[FieldMap, ...] = (
    FieldMap("id", "id", "id"),
    FieldMap("owner_id", "ownerId", "user_id"),
    FieldMap("title", "title", "title"),
    FieldMap("type", "type", "type"),
    FieldMap("notes", "notes", "notes"),
    FieldMap("trigger_at", "triggerAt", "trigger_at", DATETIME),
    FieldMap("recurrence_rule", "recurrenceRule", "recurrence_rule"),
    FieldMap("next_trigger_at", "nextTriggerAt", None, DATETIME),
    FieldMap("latitude", "latitude", "latitude", FLOAT),
    FieldMap("longitude", "longitude", "longitude", FLOAT),
    FieldMap("radius", "radius", "radius", INT),
    FieldMap("location_name", "locationName", "location_name"),
    FieldMap("trigger_on", "triggerOn", "trigger_on"),
    FieldMap("is_recurring_location", "isRecurringLocation", "is_recurring_location", BOOL),
    FieldMap("delivery_method", "deliveryMethod", "delivery_method"),
    FieldMap("alarm_sound", "alarmSound", "alarm_sound"),
    FieldMap("share_contact_name", "shareContactName", "share_contact_name"),
    FieldMap("share_contact_phone", "shareContactPhone", "share_contact_phone"),
    FieldMap("share_message_template", "shareMessageTemplate", "share_message_template"),
    FieldMap("category_id", "categoryId", "category_id"),
    FieldMap("priority", "priority", "priority"),
    FieldMap("is_completed", "isCompleted", "is_completed", BOOL),
    FieldMap("is_active", "isActive", "is_active", BOOL),
    FieldMap("completed_at", "completedAt", "completed_at", DATETIME),
    FieldMap("notification_id", "notificationId", None),
    FieldMap("geofence_id", "geofenceId", None),
    FieldMap("synced_at", "syncedAt", None, DATETIME),
    FieldMap("is_deleted", "isDeleted", "is_deleted", BOOL),
    FieldMap("created_at", "createdAt", "created_at", DATETIME),
    FieldMap("updated_at", "updatedAt", "updated_at", DATETIME),
)

CATEGORY_FIELDS: Tuple[FieldMap, ...] = (
    FieldMap("id", "id", "id"),
    FieldMap("owner_id", "ownerId", "user_id"),
    FieldMap("name", "name", "name"),
    FieldMap("color", "color", "color"),
    FieldMap("icon", "icon", "icon"),
    FieldMap("sort_order", "sortOrder", "sort_order", INT),
    FieldMap("is_deleted", "isDeleted", "is_deleted", BOOL),
    FieldMap("created_at", "createdAt", "created_at", DATETIME),
    FieldMap("updated_at", "updatedAt", "updated_at", DATETIME),
)

SAVED_PLACE_FIELDS: Tuple[FieldMap, ...] = (
    FieldMap("id", "id", "id"),
    FieldMap("owner_id", "ownerId", "user_id"),
    FieldMap("name", "name", "name"),
    FieldMap("latitude", "latitude", "latitude", FLOAT),
    FieldMap("longitude", "longitude", "longitude", FLOAT),
    FieldMap("address", "address", "address"),
    FieldMap("icon", "icon", "icon"),
    FieldMap("is_deleted", "isDeleted", "is_deleted", BOOL),
    FieldMap("created_at", "createdAt", "created_at", DATETIME),
    FieldMap("updated_at", "updatedAt", "updated_at", DATETIME),
)

FIELD_MAPS: Dict[EntityType, Tuple[FieldMap, ...]] = {
    EntityType.REMINDER: REMINDER_FIELDS,
    EntityType.CATEGORY: CATEGORY_FIELDS,
    EntityType.SAVED_PLACE: SAVED_PLACE_FIELDS,
}

RECORD_CLASSES: Dict[EntityType, Type[Any]] = {
    EntityType.REMINDER: Reminder,
    EntityType.CATEGORY: Category,
    EntityType.SAVED_PLACE: SavedPlace,
}

# Local and remote table names are the same
TABLES: Dict[EntityType, str] = {
    EntityType.REMINDER: "reminders",
    EntityType.CATEGORY: "categories",
    EntityType.SAVED_PLACE: "saved_places",
}

# Identity columns carried on the queue entry rather than in the payload
_ENTRY_KEYS = frozenset({"id", "owner_id"})


def field_map(entity_type: Union[str, EntityType]) -> Tuple[FieldMap, ...]:
    return FIELD_MAPS[EntityType(entity_type)]


def table_for(entity_type: Union[str, EntityType]) -> str:
    return TABLES[EntityType(entity_type)]


def entity_type_of(record: Record) -> EntityType:
    for entity_type, cls in RECORD_CLASSES.items():
        if isinstance(record, cls):
            return entity_type
    raise TypeError(f"Not a syncable record: {type(record).__name__}")


# === Value conversion ===


def _to_wire(kind: str, value: Any) -> Any:
    """Convert an attribute value to a JSON-safe value (payload / remote)."""
    if value is None:
        return None
    if kind == DATETIME:
        return format_datetime(value)
    if kind == BOOL:
        return bool(value)
    return value


def _to_column(kind: str, value: Any) -> Any:
    """Convert an attribute value to a SQLite column value."""
    if value is None:
        return None
    if kind == DATETIME:
        return format_datetime(value)
    if kind == BOOL:
        return 1 if value else 0
    return value


def _to_attr(kind: str, value: Any) -> Any:
    """Convert a stored / wire value back to the attribute type."""
    if value is None:
        return None
    if kind == DATETIME:
        return parse_datetime(value) if isinstance(value, str) else value
    if kind == BOOL:
        return bool(value)
    if kind == INT:
        return int(value)
    if kind == FLOAT:
        return float(value)
    return value


def _build(entity_type: EntityType, values: Dict[str, Any]) -> Record:
    cls = RECORD_CLASSES[entity_type]
    # Drop explicit None for non-optional defaults (e.g. a NULL bool column)
    defaults = {
        f.name: f.default
        for f in dataclasses.fields(cls)
        if f.default is not dataclasses.MISSING and f.default is not None
    }
    for key, default in defaults.items():
        if key in values and values[key] is None:
            values[key] = default
    return cls(**values)


# === Local rows ===


def record_to_row(record: Record) -> Dict[str, Any]:
    """Record → local SQLite column values."""
    entity_type = entity_type_of(record)
    return {fm.attr: _to_column(fm.kind, getattr(record, fm.attr)) for fm in field_map(entity_type)}


def row_to_record(entity_type: Union[str, EntityType], row: Mapping[str, Any]) -> Record:
    """Local SQLite row → record. Columns missing from the row keep defaults."""
    entity_type = EntityType(entity_type)
    keys = set(row.keys())
    values = {
        fm.attr: _to_attr(fm.kind, row[fm.attr]) for fm in field_map(entity_type) if fm.attr in keys
    }
    return _build(entity_type, values)


# === Queue payloads ===


def record_to_payload(record: Record) -> Dict[str, Any]:
    """Record → full-snapshot queue payload (application naming).

    Contains every synced field except the id and owner, which the queue
    entry carries itself.
    """
    entity_type = entity_type_of(record)
    return {
        fm.local_key: _to_wire(fm.kind, getattr(record, fm.attr))
        for fm in field_map(entity_type)
        if fm.syncs and fm.attr not in _ENTRY_KEYS
    }


def payload_to_record(
    entity_type: Union[str, EntityType],
    entity_id: str,
    owner_id: str,
    payload: Mapping[str, Any],
) -> Record:
    """Queue payload → record.

    Raises:
        TypeError: if a required field is missing from the payload
        ValueError: if a value cannot be converted
    """
    entity_type = EntityType(entity_type)
    values: Dict[str, Any] = {"id": entity_id, "owner_id": owner_id}
    for fm in field_map(entity_type):
        if fm.attr in _ENTRY_KEYS or not fm.syncs:
            continue
        if fm.local_key in payload:
            values[fm.attr] = _to_attr(fm.kind, payload[fm.local_key])
    return _build(entity_type, values)


# === Remote rows ===


def record_to_remote(record: Record) -> Dict[str, Any]:
    """Record → remote row."""
    entity_type = entity_type_of(record)
    return {
        fm.remote: _to_wire(fm.kind, getattr(record, fm.attr))
        for fm in field_map(entity_type)
        if fm.syncs
    }


def remote_to_record(entity_type: Union[str, EntityType], row: Mapping[str, Any]) -> Record:
    """Remote row → record. Device-only fields take their defaults."""
    entity_type = EntityType(entity_type)
    values = {
        fm.attr: _to_attr(fm.kind, row[fm.remote])
        for fm in field_map(entity_type)
        if fm.syncs and fm.remote in row
    }
    return _build(entity_type, values)


def payload_to_remote(
    entity_type: Union[str, EntityType],
    entity_id: str,
    owner_id: str,
    payload: Mapping[str, Any],
) -> Dict[str, Any]:
    """Queue payload → remote row, via the record type."""
    return record_to_remote(payload_to_record(entity_type, entity_id, owner_id, payload))
