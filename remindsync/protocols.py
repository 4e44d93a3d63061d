"""
remindsync Protocol Definitions
===============================

Interface contracts for the collaborators the sync core talks to, plus the
error taxonomy shared by every component.

Collaborators:
- RemoteStore:   row-oriented cloud tables keyed by the same ids used locally
- AuthProvider:  session lookup, account creation and profile updates
- NetworkStatus: point-in-time reachability

Error handling philosophy:
- Local storage failures raise StorageError and always reach the caller
- Missing records raise NotFoundError
- Guest owners and offline devices raise SyncSkipped inside the sync layer,
  which converts it into an empty result. It never escapes a public call.
- Remote failures raise RemoteError; the reconciliation loop turns them into
  queue failure counts. A mutation never fails because sync failed.
- Guest-to-account linking failures raise MigrationError with local state
  left untouched
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from remindsync.types import Identity, SkipReason

# =============================================================================
# ERRORS
# =============================================================================


class RemindSyncError(Exception):
    """Base for all remindsync errors."""

    pass


class StorageError(RemindSyncError):
    """Raised on local storage I/O failures. Fatal to the calling operation."""

    pass


class NotFoundError(RemindSyncError):
    """Raised when a referenced record or owner does not exist."""

    def __init__(self, kind: str, record_id: str):
        super().__init__(f"{kind} not found: {record_id}")
        self.kind = kind
        self.record_id = record_id


class SyncSkipped(RemindSyncError):
    """Signals that a sync operation has nothing it is allowed to do."""

    def __init__(self, reason: SkipReason, owner_id: Optional[str] = None):
        super().__init__(f"Sync skipped ({reason.value}) for {owner_id}")
        self.reason = reason
        self.owner_id = owner_id


class RemoteError(RemindSyncError):
    """Raised by remote adapters on network or service failures."""

    def __init__(self, message: str, *, table: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message)
        self.table = table
        self.code = code


class MigrationError(RemindSyncError):
    """Raised when linking a guest to an account fails. Local state is unchanged."""

    pass


# =============================================================================
# COLLABORATORS
# =============================================================================


@runtime_checkable
class RemoteStore(Protocol):
    """Cloud row store.

    ``table`` is one of ``reminders``, ``categories``, ``saved_places``.
    Rows use the remote column naming (see ``remindsync.mapping``).
    """

    def upsert(self, table: str, row: Dict[str, Any]) -> None:
        """Insert or fully replace the row with ``row["id"]``."""
        ...

    def delete(self, table: str, record_id: str) -> None:
        """Delete (tombstone) the row. Deleting a missing row is not an error."""
        ...

    def fetch_rows(self, table: str, owner_id: str) -> List[Dict[str, Any]]:
        """Return every non-deleted row owned by ``owner_id``."""
        ...


@runtime_checkable
class AuthProvider(Protocol):
    """Session and account collaborator."""

    def get_session_identity(self) -> Optional[Identity]:
        """Return the registered identity of the live session, if any."""
        ...

    def create_account(self, email: str, password: str, display_name: str) -> Identity:
        """Create a registered account. Raises on failure."""
        ...

    def update_premium_status(
        self, user_id: str, is_premium: bool, expires_at: Optional[datetime]
    ) -> None:
        """Write the premium flag and expiry to the account profile. Raises on failure."""
        ...


@runtime_checkable
class NetworkStatus(Protocol):
    """Platform reachability collaborator."""

    def is_reachable(self) -> bool:
        ...
