"""Local record store: CRUD, views and identity persistence.

Every write lands in SQLite before the call returns. Nothing here touches the
network; callers decide whether a mutation is queued for sync.
"""

import logging
import sqlite3
import uuid
from dataclasses import fields as dataclass_fields
from dataclasses import replace
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional, Union

from remindsync.mapping import (
    RECORD_CLASSES,
    Record,
    entity_type_of,
    field_map,
    record_to_row,
    row_to_record,
    table_for,
)
from remindsync.protocols import NotFoundError
from remindsync.storage.schema import RECORD_TABLES, validate_table_name
from remindsync.storage.sqlite import SQLiteStore
from remindsync.types import (
    DEFAULT_RADIUS,
    MAX_NOTES_LENGTH,
    MAX_RADIUS,
    MAX_TITLE_LENGTH,
    MIN_RADIUS,
    Category,
    DeliveryMethod,
    EntityType,
    Identity,
    ListFilter,
    Priority,
    Reminder,
    ReminderType,
    SavedPlace,
    TriggerOn,
    format_datetime,
    parse_datetime,
    utc_now,
)

logger = logging.getLogger(__name__)

# Fields callers may never set directly
PROTECTED_FIELDS = frozenset({"id", "owner_id", "created_at", "updated_at", "is_deleted"})

# Fields that survive a remote overwrite (no remote column)
DEVICE_ONLY_FIELDS = {
    entity_type: tuple(fm.attr for fm in field_map(entity_type) if not fm.syncs)
    for entity_type in EntityType
}

TIME_FIELDS = ("trigger_at", "recurrence_rule", "next_trigger_at")
LOCATION_FIELDS = ("latitude", "longitude", "radius", "location_name", "trigger_on")


def _enum_value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


def _coerce_datetime(name: str, value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    parsed = parse_datetime(value) if isinstance(value, str) else None
    if parsed is None:
        raise ValueError(f"{name} must be a datetime or ISO string, got {value!r}")
    return parsed


def _coerce_fields(entity_type: EntityType, values: Dict[str, Any]) -> Dict[str, Any]:
    """Reject unknown names and normalize enums / timestamps."""
    known = {fm.attr: fm.kind for fm in field_map(entity_type)}
    coerced = {}
    for name, value in values.items():
        if name not in known:
            raise ValueError(f"Unknown {entity_type.value} field: {name}")
        if known[name] == "datetime":
            value = _coerce_datetime(name, value)
        coerced[name] = _enum_value(value)
    return coerced


def _require_choice(name: str, value: Any, choices) -> None:
    allowed = {c.value for c in choices}
    if value not in allowed:
        raise ValueError(f"{name} must be one of {sorted(allowed)}, got {value!r}")


def _check_name(name: str, value: Optional[str], max_length: int) -> str:
    if value is None or not str(value).strip():
        raise ValueError(f"{name} is required")
    if len(value) > max_length:
        raise ValueError(f"{name} must be at most {max_length} characters")
    return value


def _check_coordinates(latitude: Optional[float], longitude: Optional[float]) -> None:
    if latitude is None or longitude is None:
        raise ValueError("latitude and longitude are required")
    if not -90 <= latitude <= 90:
        raise ValueError(f"latitude out of range: {latitude}")
    if not -180 <= longitude <= 180:
        raise ValueError(f"longitude out of range: {longitude}")


def normalize_reminder(reminder: Reminder) -> Reminder:
    """Validate a reminder and enforce its structural invariants.

    - The trigger group not matching ``type`` is cleared
    - Location reminders get the default radius and ``enter`` trigger
    - Time reminders without ``next_trigger_at`` start from ``trigger_at``
    - Completion implies inactive and a completion timestamp

    Raises:
        ValueError: on any violation
    """
    _check_name("title", reminder.title, MAX_TITLE_LENGTH)
    if reminder.notes is not None and len(reminder.notes) > MAX_NOTES_LENGTH:
        raise ValueError(f"notes must be at most {MAX_NOTES_LENGTH} characters")
    _require_choice("type", reminder.type, ReminderType)
    _require_choice("delivery_method", reminder.delivery_method, DeliveryMethod)
    _require_choice("priority", reminder.priority, Priority)

    if reminder.type == ReminderType.TIME.value:
        if reminder.trigger_at is None:
            raise ValueError("trigger_at is required for time reminders")
        reminder = replace(
            reminder,
            **{name: None for name in LOCATION_FIELDS},
            is_recurring_location=False,
            next_trigger_at=reminder.next_trigger_at or reminder.trigger_at,
        )
    else:
        _check_coordinates(reminder.latitude, reminder.longitude)
        radius = DEFAULT_RADIUS if reminder.radius is None else int(reminder.radius)
        if not MIN_RADIUS <= radius <= MAX_RADIUS:
            raise ValueError(f"radius must be between {MIN_RADIUS} and {MAX_RADIUS}, got {radius}")
        trigger_on = reminder.trigger_on or TriggerOn.ENTER.value
        _require_choice("trigger_on", trigger_on, TriggerOn)
        reminder = replace(
            reminder,
            radius=radius,
            trigger_on=trigger_on,
            **{name: None for name in TIME_FIELDS},
        )

    if reminder.is_completed:
        reminder = replace(
            reminder,
            is_active=False,
            completed_at=reminder.completed_at or parse_datetime(utc_now()),
        )
    elif reminder.completed_at is not None:
        reminder = replace(reminder, completed_at=None)
    return reminder


def normalize_record(record: Record) -> Record:
    if isinstance(record, Reminder):
        return normalize_reminder(record)
    if isinstance(record, Category):
        _check_name("name", record.name, MAX_TITLE_LENGTH)
    elif isinstance(record, SavedPlace):
        _check_name("name", record.name, MAX_TITLE_LENGTH)
        _check_coordinates(record.latitude, record.longitude)
    return record


def _day_bounds(day: Optional[date] = None):
    """UTC bounds of a local calendar day."""
    day = day or datetime.now().astimezone().date()
    start = datetime.combine(day, time.min).astimezone()
    # Separate conversion: the offset can differ at the end of a DST-change day
    end = datetime.combine(day + timedelta(days=1), time.min).astimezone()
    return format_datetime(start), format_datetime(end)


class LocalRecordStore:
    """Reminders, categories, saved places and local identities.

    Every method accepts an optional ``conn`` so several calls can share one
    transaction (see ``IdentityResolver.migrate_guest_to_account``).
    """

    def __init__(self, store: SQLiteStore):
        self.store = store

    # === Writes ===

    def create(
        self,
        owner_id: str,
        entity_type: Union[str, EntityType],
        values: Optional[Dict[str, Any]] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Record:
        """Create a record for ``owner_id`` with a fresh id and timestamps.

        Raises:
            ValueError: on unknown fields or invalid values
        """
        if not owner_id:
            raise ValueError("owner_id is required")
        entity_type = EntityType(entity_type)
        values = dict(values or {})
        protected = PROTECTED_FIELDS.intersection(values)
        if protected:
            raise ValueError(f"Cannot set {sorted(protected)} on create")

        now = parse_datetime(utc_now())
        values = _coerce_fields(entity_type, values)
        cls = RECORD_CLASSES[entity_type]
        try:
            record = cls(
                id=str(uuid.uuid4()),
                owner_id=owner_id,
                created_at=now,
                updated_at=now,
                **values,
            )
        except TypeError as e:
            raise ValueError(f"Invalid {entity_type.value}: {e}") from e
        record = normalize_record(record)

        self._insert(record, conn=conn)
        logger.debug(f"Created {entity_type.value} {record.id} for {owner_id}")
        return record

    def create_reminder(self, owner_id: str, **values) -> Reminder:
        return self.create(owner_id, EntityType.REMINDER, values)

    def create_category(self, owner_id: str, **values) -> Category:
        return self.create(owner_id, EntityType.CATEGORY, values)

    def create_saved_place(self, owner_id: str, **values) -> SavedPlace:
        return self.create(owner_id, EntityType.SAVED_PLACE, values)

    def update(
        self,
        entity_type: Union[str, EntityType],
        record_id: str,
        values: Dict[str, Any],
        conn: Optional[sqlite3.Connection] = None,
    ) -> Record:
        """Merge ``values`` into an existing record and persist the result.

        Raises:
            NotFoundError: if the record is absent or soft-deleted
            ValueError: on invalid fields or if the merged record is invalid
        """
        entity_type = EntityType(entity_type)
        protected = PROTECTED_FIELDS.intersection(values)
        if protected:
            raise ValueError(f"Cannot update {sorted(protected)}")

        with self.store.using(conn) as c:
            existing = self.get_by_id(entity_type, record_id, conn=c)
            if existing is None:
                raise NotFoundError(entity_type.value, record_id)

            changes = _coerce_fields(entity_type, values)
            if "trigger_at" in changes and "next_trigger_at" not in changes:
                # Rescheduling restarts the next fire time
                changes["next_trigger_at"] = None
            merged = replace(existing, **changes, updated_at=parse_datetime(utc_now()))
            merged = normalize_record(merged)
            self._write(merged, conn=c)

        logger.debug(f"Updated {entity_type.value} {record_id}: {sorted(values)}")
        return merged

    def complete_reminder(self, reminder_id: str) -> Reminder:
        """Mark a reminder completed (inactive, completion time stamped)."""
        return self.update(EntityType.REMINDER, reminder_id, {"is_completed": True})

    def soft_delete(
        self,
        entity_type: Union[str, EntityType],
        record_id: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        """Tombstone a record. Deleting an already-deleted record is a no-op.

        Raises:
            NotFoundError: if no record with this id exists at all
        """
        entity_type = EntityType(entity_type)
        table = validate_table_name(table_for(entity_type))
        with self.store.using(conn) as c:
            row = c.execute(f"SELECT is_deleted FROM {table} WHERE id = ?", (record_id,)).fetchone()
            if row is None:
                raise NotFoundError(entity_type.value, record_id)
            if row["is_deleted"]:
                logger.debug(f"{entity_type.value} {record_id} already deleted")
                return
            c.execute(
                f"UPDATE {table} SET is_deleted = 1, updated_at = ? WHERE id = ?",
                (utc_now(), record_id),
            )
        logger.debug(f"Soft-deleted {entity_type.value} {record_id}")

    def set_device_handles(
        self,
        reminder_id: str,
        notification_id: Optional[str] = None,
        geofence_id: Optional[str] = None,
    ) -> None:
        """Store the notification / geofence handles for a reminder.

        Handles are device-local, so ``updated_at`` is left alone.
        """
        with self.store.connect() as conn:
            cur = conn.execute(
                "UPDATE reminders SET notification_id = ?, geofence_id = ? WHERE id = ?",
                (notification_id, geofence_id, reminder_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError(EntityType.REMINDER.value, reminder_id)

    def reassign_owner(
        self, from_owner: str, to_owner: str, conn: Optional[sqlite3.Connection] = None
    ) -> int:
        """Move every record and queue entry of ``from_owner`` to ``to_owner``.

        Runs as one transaction. Returns the number of records moved.
        """
        moved = 0
        with self.store.using(conn) as c:
            for table in RECORD_TABLES:
                validate_table_name(table)
                cur = c.execute(
                    f"UPDATE {table} SET owner_id = ? WHERE owner_id = ?", (to_owner, from_owner)
                )
                moved += cur.rowcount
            c.execute("UPDATE sync_queue SET owner_id = ? WHERE owner_id = ?", (to_owner, from_owner))
        logger.info(f"Reassigned {moved} records from {from_owner} to {to_owner}")
        return moved

    # === Reconciliation hooks ===

    def upsert_from_remote(self, record: Record, conn: Optional[sqlite3.Connection] = None) -> None:
        """Insert or replace by id with a remote copy (remote wins).

        Device-only fields of an existing local row are kept, and the row is
        stamped as synced.
        """
        entity_type = entity_type_of(record)
        table = validate_table_name(table_for(entity_type))
        device_only = DEVICE_ONLY_FIELDS[entity_type]
        with self.store.using(conn) as c:
            if device_only:
                existing = c.execute(
                    f"SELECT {', '.join(device_only)} FROM {table} WHERE id = ?", (record.id,)
                ).fetchone()
                if existing is not None:
                    kept = {name: existing[name] for name in device_only}
                    record = replace(record, **_coerce_fields(entity_type, kept))
            if isinstance(record, Reminder):
                record = self._reschedule_pulled(record, c)
            now = parse_datetime(utc_now())
            record = replace(
                record,
                created_at=record.created_at or now,
                updated_at=record.updated_at or record.created_at or now,
            )
            if hasattr(record, "synced_at"):
                record = replace(record, synced_at=now)
            self._write(record, conn=c)

    @staticmethod
    def _reschedule_pulled(reminder: Reminder, conn: sqlite3.Connection) -> Reminder:
        """Restart ``next_trigger_at`` when the pulled ``trigger_at`` is new here."""
        if reminder.type != ReminderType.TIME.value:
            return replace(reminder, next_trigger_at=None)
        row = conn.execute("SELECT trigger_at FROM reminders WHERE id = ?", (reminder.id,)).fetchone()
        local_trigger = parse_datetime(row["trigger_at"]) if row is not None else None
        if reminder.next_trigger_at is None or local_trigger != reminder.trigger_at:
            return replace(reminder, next_trigger_at=reminder.trigger_at)
        return reminder

    def mark_synced(
        self,
        entity_type: Union[str, EntityType],
        record_id: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        """Stamp ``synced_at`` on entities that carry it."""
        entity_type = EntityType(entity_type)
        if "synced_at" not in {f.name for f in dataclass_fields(RECORD_CLASSES[entity_type])}:
            return
        table = validate_table_name(table_for(entity_type))
        with self.store.using(conn) as c:
            c.execute(f"UPDATE {table} SET synced_at = ? WHERE id = ?", (utc_now(), record_id))

    # === Reads ===

    def get_by_id(
        self,
        entity_type: Union[str, EntityType],
        record_id: str,
        include_deleted: bool = False,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[Record]:
        entity_type = EntityType(entity_type)
        table = validate_table_name(table_for(entity_type))
        query = f"SELECT * FROM {table} WHERE id = ?"
        if not include_deleted:
            query += " AND is_deleted = 0"
        with self.store.using(conn) as c:
            row = c.execute(query, (record_id,)).fetchone()
        return row_to_record(entity_type, row) if row else None

    def list_by_owner(
        self,
        owner_id: str,
        entity_type: Union[str, EntityType] = EntityType.REMINDER,
        filter: Union[str, ListFilter] = ListFilter.ALL,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        day: Optional[date] = None,
    ) -> List[Record]:
        """List non-deleted records of one owner.

        Args:
            owner_id: Owner whose records to list
            entity_type: Which table
            filter: ``all`` | ``active`` | ``completed`` | ``today`` | ``date_range``.
                Everything but ``all`` applies to reminders only.
            start, end: Half-open ``trigger_at`` range for ``date_range``
            day: Local calendar day for ``today`` (defaults to the current day)
        """
        entity_type = EntityType(entity_type)
        filter = ListFilter(filter)
        table = validate_table_name(table_for(entity_type))
        where = "owner_id = ? AND is_deleted = 0"
        params: List[Any] = [owner_id]

        if filter == ListFilter.ALL:
            if entity_type == EntityType.CATEGORY:
                order = "sort_order ASC, name ASC"
            else:
                order = "created_at DESC"
        elif entity_type != EntityType.REMINDER:
            raise ValueError(f"Filter {filter.value} only applies to reminders")
        elif filter == ListFilter.ACTIVE:
            where += " AND is_active = 1 AND is_completed = 0"
            order = "CASE WHEN type = 'time' THEN trigger_at ELSE created_at END ASC"
        elif filter == ListFilter.COMPLETED:
            where += " AND is_completed = 1"
            order = "completed_at DESC"
        elif filter == ListFilter.TODAY:
            day_start, day_end = _day_bounds(day)
            where += (
                " AND type = 'time' AND ((trigger_at >= ? AND trigger_at < ?)"
                " OR (completed_at >= ? AND completed_at < ?))"
            )
            params += [day_start, day_end, day_start, day_end]
            order = (
                "is_completed ASC, "
                "CASE WHEN is_completed = 0 THEN trigger_at ELSE completed_at END ASC"
            )
        else:
            if start is None or end is None:
                raise ValueError("date_range requires start and end")
            where += " AND trigger_at >= ? AND trigger_at < ?"
            params += [format_datetime(start), format_datetime(end)]
            order = "trigger_at ASC"

        with self.store.connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM {table} WHERE {where} ORDER BY {order}", params
            ).fetchall()
        return [row_to_record(entity_type, row) for row in rows]

    def count_active(self, owner_id: str) -> int:
        """Number of active, incomplete reminders."""
        with self.store.connect() as conn:
            row = conn.execute(
                """SELECT COUNT(*) FROM reminders
                   WHERE owner_id = ? AND is_deleted = 0 AND is_active = 1 AND is_completed = 0""",
                (owner_id,),
            ).fetchone()
        return row[0]

    # === Identity persistence ===

    def save_identity(self, identity: Identity, conn: Optional[sqlite3.Connection] = None) -> Identity:
        """Insert or replace a local identity."""
        now = utc_now()
        created = format_datetime(identity.created_at) or now
        with self.store.using(conn) as c:
            c.execute(
                """INSERT OR REPLACE INTO users
                   (id, email, display_name, is_guest, is_premium, premium_expires_at,
                    created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    identity.id,
                    identity.email,
                    identity.display_name,
                    1 if identity.is_guest else 0,
                    1 if identity.is_premium else 0,
                    format_datetime(identity.premium_expires_at),
                    created,
                    now,
                ),
            )
        return replace(identity, created_at=parse_datetime(created), updated_at=parse_datetime(now))

    def get_identity(
        self, identity_id: str, conn: Optional[sqlite3.Connection] = None
    ) -> Optional[Identity]:
        with self.store.using(conn) as c:
            row = c.execute("SELECT * FROM users WHERE id = ?", (identity_id,)).fetchone()
        return self._row_to_identity(row) if row else None

    def find_guest(self) -> Optional[Identity]:
        with self.store.connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE is_guest = 1 ORDER BY created_at LIMIT 1"
            ).fetchone()
        return self._row_to_identity(row) if row else None

    def find_registered(self) -> Optional[Identity]:
        """Most recently updated cached account (not a guest, has an email)."""
        with self.store.connect() as conn:
            row = conn.execute(
                """SELECT * FROM users WHERE is_guest = 0 AND email IS NOT NULL
                   ORDER BY updated_at DESC LIMIT 1"""
            ).fetchone()
        return self._row_to_identity(row) if row else None

    def delete_identity(self, identity_id: str, conn: Optional[sqlite3.Connection] = None) -> None:
        with self.store.using(conn) as c:
            c.execute("DELETE FROM users WHERE id = ?", (identity_id,))

    # === Internals ===

    def _insert(self, record: Record, conn: Optional[sqlite3.Connection] = None) -> None:
        table = validate_table_name(table_for(entity_type_of(record)))
        row = record_to_row(record)
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        with self.store.using(conn) as c:
            c.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", list(row.values()))

    def _write(self, record: Record, conn: Optional[sqlite3.Connection] = None) -> None:
        """Full-row overwrite by id (last write wins)."""
        table = validate_table_name(table_for(entity_type_of(record)))
        row = record_to_row(record)
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        with self.store.using(conn) as c:
            c.execute(
                f"INSERT OR REPLACE INTO {table} ({columns}) VALUES ({placeholders})",
                list(row.values()),
            )

    @staticmethod
    def _row_to_identity(row: sqlite3.Row) -> Identity:
        return Identity(
            id=row["id"],
            is_guest=bool(row["is_guest"]),
            email=row["email"],
            display_name=row["display_name"],
            is_premium=bool(row["is_premium"]),
            premium_expires_at=parse_datetime(row["premium_expires_at"]),
            created_at=parse_datetime(row["created_at"]),
            updated_at=parse_datetime(row["updated_at"]),
        )
