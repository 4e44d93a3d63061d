"""Identity resolution: who owns the data on this device right now.

Order of precedence:
1. A live auth session
2. A cached registered account
3. The device guest

A guest never syncs. Linking a guest to a new account moves every local
record and queued change to the account in one transaction.
"""

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Optional

from remindsync.logging_config import log_migration
from remindsync.protocols import AuthProvider, MigrationError, RemindSyncError, RemoteError
from remindsync.storage.records import LocalRecordStore
from remindsync.sync.connectivity import ConnectivityGate
from remindsync.types import GUEST_ID_PREFIX, Identity, is_guest_id

logger = logging.getLogger(__name__)

# Expiry used when premium is granted without one
DEFAULT_PREMIUM_TERM = timedelta(days=30)


class IdentityResolver:
    def __init__(
        self,
        records: LocalRecordStore,
        gate: ConnectivityGate,
        auth: Optional[AuthProvider] = None,
    ):
        self.records = records
        self.gate = gate
        self.auth = auth

    def resolve_active_identity(self) -> Optional[Identity]:
        """Return the identity that owns local data right now, if any.

        A session identity is cached locally. A stale cached account wins over
        the guest; the guest row is left in place.
        """
        if self.auth is not None:
            try:
                session_identity = self.auth.get_session_identity()
            except Exception as e:
                logger.warning(f"Session lookup failed, using cached identity: {e}")
                session_identity = None
            if session_identity is not None and not is_guest_id(session_identity.id):
                return self.records.save_identity(session_identity)

        registered = self.records.find_registered()
        if registered is not None:
            return registered
        return self.records.find_guest()

    def create_guest(self) -> Identity:
        """Return the device guest, creating it on first use."""
        existing = self.records.find_guest()
        if existing is not None:
            return existing
        guest = Identity(id=f"{GUEST_ID_PREFIX}{uuid.uuid4()}", is_guest=True)
        guest = self.records.save_identity(guest)
        logger.info(f"Created guest identity {guest.id}")
        return guest

    def is_sync_eligible(self, identity: Optional[Identity]) -> bool:
        if identity is None or identity.is_guest or is_guest_id(identity.id):
            return False
        return self.gate.is_connected()

    def migrate_guest_to_account(self, guest: Identity, new_identity: Identity) -> None:
        """Move all guest data to ``new_identity`` in one local transaction.

        Records and queue entries are reassigned, the guest row removed and
        the account cached. On failure nothing changes.

        Raises:
            MigrationError: if the arguments are invalid or the transaction fails
        """
        if not is_guest_id(guest.id):
            raise MigrationError(f"Not a guest identity: {guest.id}")
        if is_guest_id(new_identity.id) or new_identity.is_guest:
            raise MigrationError(f"Cannot migrate into a guest identity: {new_identity.id}")

        try:
            with self.records.store.connect() as conn:
                moved = self.records.reassign_owner(guest.id, new_identity.id, conn=conn)
                self.records.delete_identity(guest.id, conn=conn)
                self.records.save_identity(new_identity, conn=conn)
        except RemindSyncError as e:
            logger.error(f"Guest migration {guest.id} -> {new_identity.id} failed: {e}", exc_info=True)
            raise MigrationError(f"Guest migration failed: {e}") from e

        log_migration(guest.id, new_identity.id, moved)
        logger.info(f"Migrated guest {guest.id} to {new_identity.id} ({moved} records)")

    def link_guest_to_account(
        self, guest: Identity, email: str, password: str, display_name: str
    ) -> Identity:
        """Create an account for the guest and migrate its data.

        The account is created first; if that fails, local data is untouched.

        Raises:
            MigrationError: if account creation or the migration fails
        """
        if self.auth is None:
            raise MigrationError("No auth provider configured")
        try:
            account = self.auth.create_account(email, password, display_name)
        except Exception as e:
            logger.error(f"Account creation for guest {guest.id} failed: {e}")
            raise MigrationError(f"Account creation failed: {e}") from e

        self.migrate_guest_to_account(guest, account)
        return self.records.get_identity(account.id) or account

    def sign_in_cached(self, identity: Identity) -> Identity:
        """Cache a registered identity after a successful sign-in."""
        if identity.is_guest or is_guest_id(identity.id):
            raise ValueError("Guest identities are created with create_guest()")
        return self.records.save_identity(identity)

    def sign_out(self, identity: Identity) -> None:
        """Forget a registered identity. The device guest is kept."""
        if identity.is_guest or is_guest_id(identity.id):
            logger.debug("Sign-out for guest is a no-op")
            return
        self.records.delete_identity(identity.id)
        logger.info(f"Signed out {identity.id}")

    def update_premium_status(
        self,
        identity: Identity,
        is_premium: bool,
        expires_at: Optional[datetime] = None,
    ) -> Identity:
        """Record the premium flag locally, then on the account profile.

        Granting premium without an expiry sets one ``DEFAULT_PREMIUM_TERM``
        from now. The remote write happens only for a sync-eligible identity;
        its failure is logged and the local change stands.
        """
        if is_premium and expires_at is None:
            expires_at = datetime.now(timezone.utc) + DEFAULT_PREMIUM_TERM
        updated = self.records.save_identity(
            replace(identity, is_premium=is_premium, premium_expires_at=expires_at)
        )
        logger.info(f"Premium status for {identity.id} set to {is_premium}")

        if self.auth is None or not self.is_sync_eligible(updated):
            logger.debug(f"Premium status for {identity.id} kept local only")
            return updated
        try:
            self.auth.update_premium_status(updated.id, is_premium, expires_at)
        except RemoteError as e:
            logger.warning(f"Premium status for {identity.id} not saved remotely: {e}")
        return updated
