"""Outbound sync queue.

Durable, per-owner, at-least-once. Entries are removed only after the remote
store confirmed them; failures bump ``attempts`` until the entry is
dead-lettered, where it stays until purged or requeued.
"""

import json
import logging
import threading
import time
from typing import Any, Dict, List, Optional, Set, Tuple

from remindsync.storage.sqlite import SQLiteStore
from remindsync.types import (
    MAX_SYNC_ATTEMPTS,
    EntityType,
    Operation,
    SyncQueueEntry,
    format_datetime,
    is_guest_id,
    parse_datetime,
    utc_now,
)

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 500

_stamp_lock = threading.Lock()
_last_stamp = 0


def _next_stamp() -> int:
    """Strictly increasing nanosecond timestamp (unique within the process)."""
    global _last_stamp
    with _stamp_lock:
        stamp = max(time.time_ns(), _last_stamp + 1)
        _last_stamp = stamp
        return stamp


def make_entry(
    entity_type: str,
    entity_id: str,
    operation: str,
    payload: Dict[str, Any],
    owner_id: Optional[str],
) -> SyncQueueEntry:
    """Build a new queue entry with an id of the form ``{type}-{id}-{stamp}``.

    Several pending operations for the same entity get distinct ids.
    """
    entity_type = EntityType(entity_type).value
    return SyncQueueEntry(
        id=f"{entity_type}-{entity_id}-{_next_stamp()}",
        entity_type=entity_type,
        entity_id=entity_id,
        operation=Operation(operation).value,
        payload=dict(payload),
        owner_id=owner_id,
        created_at=parse_datetime(utc_now()),
    )


class SyncQueue:
    """Pending outbound mutations stored in the ``sync_queue`` table."""

    def __init__(self, store: SQLiteStore, max_attempts: int = MAX_SYNC_ATTEMPTS):
        self.store = store
        self.max_attempts = max_attempts

    def enqueue(self, entry: SyncQueueEntry) -> bool:
        """Durably append an entry. Committed before returning.

        Guest-owned entries are never stored.

        Returns:
            True if stored, False for guest owners
        """
        if is_guest_id(entry.owner_id):
            logger.debug(
                f"Not queueing {entry.operation} {entry.entity_type}:{entry.entity_id} "
                f"for guest {entry.owner_id}"
            )
            return False

        EntityType(entry.entity_type)
        Operation(entry.operation)
        created_at = format_datetime(entry.created_at) or utc_now()

        with self.store.connect() as conn:
            conn.execute(
                """INSERT INTO sync_queue
                   (id, entity_type, entity_id, operation, payload, owner_id,
                    attempts, last_attempt_at, last_error, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    entry.id,
                    entry.entity_type,
                    entry.entity_id,
                    entry.operation,
                    json.dumps(entry.payload),
                    entry.owner_id,
                    entry.attempts,
                    format_datetime(entry.last_attempt_at),
                    entry.last_error,
                    created_at,
                ),
            )
        logger.debug(f"Queued {entry.operation} {entry.entity_type}:{entry.entity_id}")
        return True

    def pending_for(self, owner_id: str) -> List[SyncQueueEntry]:
        """Live entries for ``owner_id`` (and legacy ownerless rows), oldest first."""
        with self.store.connect() as conn:
            rows = conn.execute(
                """SELECT * FROM sync_queue
                   WHERE attempts < ? AND (owner_id = ? OR owner_id IS NULL)
                   ORDER BY created_at ASC, rowid ASC""",
                (self.max_attempts, owner_id),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def pending_deletes(self, owner_id: str) -> Set[Tuple[str, str]]:
        """(entity_type, entity_id) pairs with a live queued delete."""
        with self.store.connect() as conn:
            rows = conn.execute(
                """SELECT entity_type, entity_id FROM sync_queue
                   WHERE operation = ? AND attempts < ?
                     AND (owner_id = ? OR owner_id IS NULL)""",
                (Operation.DELETE.value, self.max_attempts, owner_id),
            ).fetchall()
        return {(row["entity_type"], row["entity_id"]) for row in rows}

    def record_success(self, entry_id: str) -> None:
        """Remove a confirmed entry."""
        with self.store.connect() as conn:
            conn.execute("DELETE FROM sync_queue WHERE id = ?", (entry_id,))

    def record_failure(self, entry_id: str, error: Optional[str] = None) -> int:
        """Count a failed attempt.

        Returns:
            The new attempt count (0 if the entry no longer exists)
        """
        with self.store.connect() as conn:
            conn.execute(
                """UPDATE sync_queue
                   SET attempts = COALESCE(attempts, 0) + 1,
                       last_attempt_at = ?,
                       last_error = ?
                   WHERE id = ?""",
                (utc_now(), error[:MAX_ERROR_LENGTH] if error else None, entry_id),
            )
            row = conn.execute("SELECT attempts FROM sync_queue WHERE id = ?", (entry_id,)).fetchone()

        attempts = row["attempts"] if row else 0
        if attempts >= self.max_attempts:
            logger.warning(
                f"Queue entry {entry_id} failed {attempts} times, moving to dead letter"
            )
        return attempts

    def purge_dead_lettered(self) -> int:
        """Delete every dead-lettered entry. Returns the number removed."""
        with self.store.connect() as conn:
            cur = conn.execute("DELETE FROM sync_queue WHERE attempts >= ?", (self.max_attempts,))
            count = cur.rowcount
        if count:
            logger.info(f"Purged {count} dead-lettered queue entries")
        return count

    def pending_count(self, owner_id: Optional[str] = None) -> int:
        """Number of live (not dead-lettered) entries, optionally for one owner."""
        query = "SELECT COUNT(*) FROM sync_queue WHERE attempts < ?"
        params: List[Any] = [self.max_attempts]
        if owner_id is not None:
            query += " AND (owner_id = ? OR owner_id IS NULL)"
            params.append(owner_id)
        with self.store.connect() as conn:
            return conn.execute(query, params).fetchone()[0]

    def dead_lettered(self, owner_id: Optional[str] = None) -> List[SyncQueueEntry]:
        query = "SELECT * FROM sync_queue WHERE attempts >= ?"
        params: List[Any] = [self.max_attempts]
        if owner_id is not None:
            query += " AND owner_id = ?"
            params.append(owner_id)
        query += " ORDER BY last_attempt_at DESC"
        with self.store.connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def requeue_dead_letters(self, entry_ids: Optional[List[str]] = None) -> int:
        """Reset dead-lettered entries so they are retried.

        Args:
            entry_ids: Specific ids to requeue, or None for all.
        Returns:
            Number of entries requeued.
        """
        with self.store.connect() as conn:
            if entry_ids:
                placeholders = ",".join("?" for _ in entry_ids)
                cur = conn.execute(
                    f"UPDATE sync_queue SET attempts = 0, last_error = NULL "
                    f"WHERE attempts >= ? AND id IN ({placeholders})",
                    [self.max_attempts, *entry_ids],
                )
            else:
                cur = conn.execute(
                    "UPDATE sync_queue SET attempts = 0, last_error = NULL WHERE attempts >= ?",
                    (self.max_attempts,),
                )
            return cur.rowcount

    def status(self) -> Dict[str, Any]:
        """Queue status with counts."""
        with self.store.connect() as conn:
            pending = conn.execute(
                "SELECT COUNT(*) FROM sync_queue WHERE attempts < ?", (self.max_attempts,)
            ).fetchone()[0]
            dead_letter = conn.execute(
                "SELECT COUNT(*) FROM sync_queue WHERE attempts >= ?", (self.max_attempts,)
            ).fetchone()[0]
            type_rows = conn.execute(
                """SELECT entity_type, COUNT(*) as count
                   FROM sync_queue WHERE attempts < ?
                   GROUP BY entity_type""",
                (self.max_attempts,),
            ).fetchall()
            op_rows = conn.execute(
                """SELECT operation, COUNT(*) as count
                   FROM sync_queue WHERE attempts < ?
                   GROUP BY operation""",
                (self.max_attempts,),
            ).fetchall()

        return {
            "pending": pending,
            "dead_letter": dead_letter,
            "total": pending + dead_letter,
            "by_entity_type": {row["entity_type"]: row["count"] for row in type_rows},
            "by_operation": {row["operation"]: row["count"] for row in op_rows},
        }

    def _row_to_entry(self, row) -> SyncQueueEntry:
        return SyncQueueEntry(
            id=row["id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            operation=row["operation"],
            payload=_load_payload(row["payload"]),
            owner_id=row["owner_id"],
            attempts=row["attempts"] or 0,
            last_attempt_at=parse_datetime(row["last_attempt_at"]),
            last_error=row["last_error"],
            created_at=parse_datetime(row["created_at"]),
            max_attempts=self.max_attempts,
        )


def _load_payload(raw: Optional[str]) -> Dict[str, Any]:
    # A corrupt payload is surfaced to the engine as an empty snapshot, which
    # then fails mapping and is counted against the entry.
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning(f"Unreadable queue payload: {raw[:80]!r}")
        return {}
    return value if isinstance(value, dict) else {}
