"""RemindSync: the application-facing entry point.

Wires the local store, the outbound queue, the connectivity gate, the
reconciliation engine and the identity resolver together.

Mutations follow the same three steps:
1. Apply to the local store (errors surface to the caller)
2. Queue a full snapshot for registered owners (durable before returning)
3. Optionally drain the queue right away (errors are logged, never raised)
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from remindsync.config import Settings, get_settings
from remindsync.identity import IdentityResolver
from remindsync.mapping import Record, entity_type_of, record_to_payload
from remindsync.protocols import (
    AuthProvider,
    NetworkStatus,
    NotFoundError,
    RemindSyncError,
    RemoteStore,
)
from remindsync.storage.records import LocalRecordStore
from remindsync.storage.sqlite import SQLiteStore
from remindsync.sync.connectivity import ConnectivityGate, HttpHealthProbe
from remindsync.sync.engine import LAST_SYNC_META_KEY, ReconciliationEngine
from remindsync.sync.queue import SyncQueue, make_entry
from remindsync.types import (
    MAX_SYNC_ATTEMPTS,
    EntityType,
    FullSyncResult,
    Identity,
    Operation,
    QueueResult,
    Reminder,
    SkipReason,
    is_guest_id,
    parse_datetime,
)

logger = logging.getLogger(__name__)


class RemindSync:
    """Offline-first record store with background cloud sync."""

    def __init__(
        self,
        db_path: Union[str, Path],
        remote: RemoteStore,
        network: NetworkStatus,
        auth: Optional[AuthProvider] = None,
        max_sync_attempts: int = MAX_SYNC_ATTEMPTS,
    ):
        self.store = SQLiteStore(db_path)
        self.records = LocalRecordStore(self.store)
        self.queue = SyncQueue(self.store, max_attempts=max_sync_attempts)
        self.gate = ConnectivityGate(network)
        self.engine = ReconciliationEngine(self.records, self.queue, remote, self.gate)
        self.resolver = IdentityResolver(self.records, self.gate, auth)
        self._unsubscribe_reconnect: Optional[Callable[[], None]] = None

    @classmethod
    def from_settings(
        cls, settings: Optional[Settings] = None, network: Optional[NetworkStatus] = None
    ) -> "RemindSync":
        """Build an instance backed by Supabase.

        Reachability comes from an HTTP health probe unless ``network`` is given.
        """
        from remindsync.sync.supabase_remote import (
            SupabaseAuthProvider,
            SupabaseRemoteStore,
            create_supabase_client,
        )

        settings = settings or get_settings()
        if network is None:
            health_url = settings.resolved_health_url
            if not health_url:
                raise ValueError("REMINDSYNC_HEALTH_URL or REMINDSYNC_SUPABASE_URL must be set")
            network = HttpHealthProbe(health_url, timeout=settings.connectivity_timeout)
        client = create_supabase_client(settings)
        return cls(
            db_path=settings.db_path,
            remote=SupabaseRemoteStore(client),
            network=network,
            auth=SupabaseAuthProvider(client),
            max_sync_attempts=settings.max_sync_attempts,
        )

    # === Identity ===

    def current_identity(self) -> Identity:
        """The active identity; a guest is created on first use."""
        return self.resolver.resolve_active_identity() or self.resolver.create_guest()

    def link_guest_to_account(self, email: str, password: str, display_name: str) -> Identity:
        guest = self.resolver.create_guest()
        return self.resolver.link_guest_to_account(guest, email, password, display_name)

    def update_premium_status(
        self, is_premium: bool, expires_at: Optional[datetime] = None
    ) -> Identity:
        return self.resolver.update_premium_status(
            self.current_identity(), is_premium, expires_at
        )

    # === Mutations ===

    def create(
        self,
        owner_id: str,
        entity_type: Union[str, EntityType],
        values: Optional[Dict[str, Any]] = None,
        drain: bool = False,
    ) -> Record:
        record = self.records.create(owner_id, entity_type, values)
        self._enqueue(record, Operation.CREATE, drain)
        return record

    def update(
        self,
        entity_type: Union[str, EntityType],
        record_id: str,
        values: Dict[str, Any],
        drain: bool = False,
    ) -> Record:
        record = self.records.update(entity_type, record_id, values)
        self._enqueue(record, Operation.UPDATE, drain)
        return record

    def complete_reminder(self, reminder_id: str, drain: bool = False) -> Reminder:
        reminder = self.records.complete_reminder(reminder_id)
        self._enqueue(reminder, Operation.UPDATE, drain)
        return reminder

    def delete(self, entity_type: Union[str, EntityType], record_id: str, drain: bool = False) -> None:
        """Soft-delete a record. Deleting twice queues a single delete."""
        entity_type = EntityType(entity_type)
        existing = self.records.get_by_id(entity_type, record_id, include_deleted=True)
        if existing is None:
            raise NotFoundError(entity_type.value, record_id)
        self.records.soft_delete(entity_type, record_id)
        if existing.is_deleted:
            return
        deleted = self.records.get_by_id(entity_type, record_id, include_deleted=True)
        self._enqueue(deleted, Operation.DELETE, drain)

    def _enqueue(self, record: Record, operation: Operation, drain: bool) -> None:
        if is_guest_id(record.owner_id):
            return
        entry = make_entry(
            entity_type_of(record).value,
            record.id,
            operation.value,
            record_to_payload(record),
            record.owner_id,
        )
        self.queue.enqueue(entry)
        if drain:
            self.drain(record.owner_id)

    # === Sync ===

    def drain(self, owner_id: str) -> QueueResult:
        """Best-effort queue drain. Never raises."""
        try:
            return self.engine.process_queue(owner_id)
        except RemindSyncError as e:
            logger.warning(f"Queue drain for {owner_id} failed: {e}", exc_info=True)
            return QueueResult()

    def full_sync(self, owner_id: Optional[str] = None) -> FullSyncResult:
        """Drain → push → pull for ``owner_id`` (default: the active identity)."""
        if owner_id is None:
            owner_id = self.current_identity().id
        return self.engine.full_sync(owner_id)

    def get_pending_sync_count(self, owner_id: Optional[str] = None) -> int:
        return self.queue.pending_count(owner_id)

    def get_last_sync_time(self) -> Optional[datetime]:
        """Timestamp of the last completed full sync."""
        return parse_datetime(self.store.get_meta(LAST_SYNC_META_KEY))

    def purge_dead_lettered(self) -> int:
        return self.queue.purge_dead_lettered()

    def enable_sync_on_reconnect(self) -> Callable[[], None]:
        """Run a full sync whenever connectivity comes back.

        Returns:
            Function that removes the hook
        """
        if self._unsubscribe_reconnect is None:
            self._unsubscribe_reconnect = self.gate.on_change(self._on_connectivity_change)
        return self.disable_sync_on_reconnect

    def disable_sync_on_reconnect(self) -> None:
        if self._unsubscribe_reconnect is not None:
            self._unsubscribe_reconnect()
            self._unsubscribe_reconnect = None

    def _on_connectivity_change(self, reachable: bool) -> None:
        if not reachable:
            return
        identity = self.resolver.resolve_active_identity()
        if identity is None or identity.is_guest:
            return
        try:
            result = self.engine.full_sync(identity.id)
        except RemindSyncError as e:
            logger.warning(f"Reconnect sync failed: {e}", exc_info=True)
            return
        if result.skipped == SkipReason.IN_FLIGHT:
            logger.debug("Reconnect sync already running")
