"""Reconciliation engine.

Moves records between the local store and the remote store:

- ``process_queue``: drain one owner's outbound queue (create/update → upsert,
  delete → remote tombstone)
- ``push_all``: upsert every live local record of an owner
- ``pull_all``: overwrite local rows with the owner's remote rows (remote wins)
- ``full_sync``: drain → push → pull

Guest owners and offline devices never reach the remote store. Remote
failures are counted, logged and left in the queue; they never escape.
"""

import logging
import threading
from typing import Set

from remindsync.logging_config import log_sync
from remindsync.mapping import (
    payload_to_remote,
    record_to_remote,
    remote_to_record,
    table_for,
)
from remindsync.protocols import RemoteError, RemoteStore, SyncSkipped
from remindsync.storage.records import LocalRecordStore
from remindsync.sync.connectivity import ConnectivityGate
from remindsync.sync.queue import SyncQueue
from remindsync.types import (
    EntityType,
    FullSyncResult,
    ListFilter,
    Operation,
    QueueResult,
    SkipReason,
    SyncCounts,
    SyncQueueEntry,
    is_guest_id,
    utc_now,
)

logger = logging.getLogger(__name__)

LAST_SYNC_META_KEY = "last_sync_time"

# Errors that count against a queue entry instead of aborting the drain
ENTRY_ERRORS = (RemoteError, ValueError, KeyError, TypeError)


class ReconciliationEngine:
    """Drives queue drain, bulk push and bulk pull for one device."""

    def __init__(
        self,
        records: LocalRecordStore,
        queue: SyncQueue,
        remote: RemoteStore,
        gate: ConnectivityGate,
    ):
        self.records = records
        self.queue = queue
        self.remote = remote
        self.gate = gate
        self._in_flight: Set[str] = set()
        self._in_flight_lock = threading.Lock()

    def _check_eligible(self, owner_id: str) -> None:
        """Raise SyncSkipped unless ``owner_id`` may sync right now."""
        if is_guest_id(owner_id):
            raise SyncSkipped(SkipReason.GUEST, owner_id)
        if not self.gate.is_connected():
            raise SyncSkipped(SkipReason.OFFLINE, owner_id)

    # === Queue drain ===

    def process_queue(self, owner_id: str) -> QueueResult:
        """Drain the owner's live queue entries in order.

        Eligibility is checked once at entry. Every entry is attempted; a
        failure is recorded against that entry and the drain continues.
        """
        result = QueueResult()
        try:
            self._check_eligible(owner_id)
        except SyncSkipped as e:
            logger.debug(f"Queue drain skipped: {e}")
            result.skipped = e.reason
            return result

        entries = self.queue.pending_for(owner_id)
        if not entries:
            return result
        logger.debug(f"Draining {len(entries)} queued changes for {owner_id}")

        for entry in entries:
            try:
                self._dispatch(entry, owner_id)
            except ENTRY_ERRORS as e:
                attempts = self.queue.record_failure(entry.id, str(e))
                logger.error(
                    f"Error pushing {entry.entity_type}:{entry.entity_id}: {e} "
                    f"(attempt {attempts}/{self.queue.max_attempts})",
                    exc_info=True,
                )
                result.failed += 1
                continue

            self.queue.record_success(entry.id)
            if entry.operation != Operation.DELETE.value:
                self.records.mark_synced(entry.entity_type, entry.entity_id)
            result.success += 1

        log_sync(owner_id, "queue", result.success, result.failed)
        logger.info(f"Queue drain for {owner_id}: success={result.success}, failed={result.failed}")
        return result

    def _dispatch(self, entry: SyncQueueEntry, owner_id: str) -> None:
        table = table_for(entry.entity_type)
        if entry.operation == Operation.DELETE.value:
            self.remote.delete(table, entry.entity_id)
            return
        if entry.operation not in (Operation.CREATE.value, Operation.UPDATE.value):
            raise ValueError(f"Unknown queue operation: {entry.operation}")
        # Legacy ownerless rows are pushed as the draining owner
        row = payload_to_remote(
            entry.entity_type, entry.entity_id, entry.owner_id or owner_id, entry.payload
        )
        self.remote.upsert(table, row)

    # === Bulk push / pull ===

    def push_all(self, owner_id: str) -> SyncCounts:
        """Upsert every non-deleted local record of the owner."""
        counts = SyncCounts()
        try:
            self._check_eligible(owner_id)
        except SyncSkipped as e:
            logger.debug(f"Push skipped: {e}")
            counts.skipped = e.reason
            return counts

        for entity_type in EntityType:
            table = table_for(entity_type)
            for record in self.records.list_by_owner(owner_id, entity_type, ListFilter.ALL):
                try:
                    self.remote.upsert(table, record_to_remote(record))
                except ENTRY_ERRORS as e:
                    logger.error(f"Failed to push {table}:{record.id}: {e}", exc_info=True)
                    counts.failed += 1
                    continue
                self.records.mark_synced(entity_type, record.id)
                counts.add(entity_type)

        log_sync(owner_id, "push", counts.total, counts.failed)
        logger.info(f"Pushed {counts.total} records for {owner_id} (failed={counts.failed})")
        return counts

    def pull_all(self, owner_id: str) -> SyncCounts:
        """Overwrite local rows with the owner's non-deleted remote rows."""
        counts = SyncCounts()
        try:
            self._check_eligible(owner_id)
        except SyncSkipped as e:
            logger.debug(f"Pull skipped: {e}")
            counts.skipped = e.reason
            return counts

        pending_deletes = self.queue.pending_deletes(owner_id)
        for entity_type in EntityType:
            table = table_for(entity_type)
            try:
                rows = self.remote.fetch_rows(table, owner_id)
            except RemoteError as e:
                logger.error(f"Failed to fetch {table} for {owner_id}: {e}", exc_info=True)
                counts.failed += 1
                continue

            for row in rows:
                if row.get("user_id") != owner_id:
                    logger.warning(f"Ignoring {table} row {row.get('id')} owned by another user")
                    continue
                try:
                    record = remote_to_record(entity_type, row)
                except (ValueError, KeyError, TypeError) as e:
                    logger.error(f"Unreadable {table} row {row.get('id')}: {e}")
                    counts.failed += 1
                    continue
                if record.is_deleted:
                    continue
                if (entity_type.value, record.id) in pending_deletes:
                    logger.debug(f"Delete of {table}:{record.id} still queued, not overwriting")
                    continue
                self.records.upsert_from_remote(record)
                counts.add(entity_type)

        log_sync(owner_id, "pull", counts.total, counts.failed)
        logger.info(f"Pulled {counts.total} records for {owner_id} (failed={counts.failed})")
        return counts

    # === Full sync ===

    def full_sync(self, owner_id: str) -> FullSyncResult:
        """Drain the queue, push everything, then pull everything.

        Each stage checks connectivity at its own start; going offline or
        being a guest stops the sequence. Only one full sync per owner runs
        at a time; a concurrent call returns at once with ``in_flight``.
        """
        result = FullSyncResult()
        with self._in_flight_lock:
            if owner_id in self._in_flight:
                logger.info(f"Full sync already running for {owner_id}")
                result.skipped = SkipReason.IN_FLIGHT
                return result
            self._in_flight.add(owner_id)

        try:
            result.queue = self.process_queue(owner_id)
            if result.queue.skipped:
                result.skipped = result.queue.skipped
                return result

            result.pushed = self.push_all(owner_id)
            if result.pushed.skipped:
                result.skipped = result.pushed.skipped
                return result

            result.pulled = self.pull_all(owner_id)
            if result.pulled.skipped:
                result.skipped = result.pulled.skipped
                return result

            result.completed = True
            self.records.store.set_meta(LAST_SYNC_META_KEY, utc_now())
            logger.info(
                f"Sync complete for {owner_id}: queue={result.queue.success}, "
                f"pushed={result.pushed.total}, pulled={result.pulled.total}"
            )
            return result
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(owner_id)
