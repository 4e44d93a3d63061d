"""
Pytest fixtures and test configuration for remindsync tests.
"""

import copy
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from remindsync.protocols import RemoteError
from remindsync.service import RemindSync
from remindsync.storage.records import LocalRecordStore
from remindsync.storage.sqlite import SQLiteStore
from remindsync.sync.connectivity import ConnectivityGate
from remindsync.sync.engine import ReconciliationEngine
from remindsync.sync.queue import SyncQueue
from remindsync.types import Identity

ACCOUNT_ID = "user-1"


class InMemoryRemote:
    """Remote store double keeping rows per table in dicts."""

    def __init__(self):
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {
            "reminders": {},
            "categories": {},
            "saved_places": {},
        }
        self.calls: List[tuple] = []
        self.fail = False
        self.fail_ids: set = set()
        self.fail_fetch_tables: set = set()

    def _check(self, table: str, record_id: Optional[str] = None):
        if self.fail or (record_id is not None and record_id in self.fail_ids):
            raise RemoteError("remote unavailable", table=table)

    def upsert(self, table: str, row: Dict[str, Any]) -> None:
        self.calls.append(("upsert", table, row["id"]))
        self._check(table, row["id"])
        self.tables[table][row["id"]] = copy.deepcopy(row)

    def delete(self, table: str, record_id: str) -> None:
        self.calls.append(("delete", table, record_id))
        self._check(table, record_id)
        if record_id in self.tables[table]:
            self.tables[table][record_id]["is_deleted"] = True

    def fetch_rows(self, table: str, owner_id: str) -> List[Dict[str, Any]]:
        self.calls.append(("fetch", table, owner_id))
        self._check(table)
        if table in self.fail_fetch_tables:
            raise RemoteError("fetch failed", table=table)
        return [
            copy.deepcopy(row)
            for row in self.tables[table].values()
            if row.get("user_id") == owner_id and not row.get("is_deleted")
        ]

    def row(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        return self.tables[table].get(record_id)


class ToggleNetwork:
    """Network-status double whose answer tests flip."""

    def __init__(self, reachable: bool = True):
        self.reachable = reachable
        self.checks = 0

    def is_reachable(self) -> bool:
        self.checks += 1
        return self.reachable


class FakeAuth:
    """Auth double with an optional live session."""

    def __init__(self):
        self.session: Optional[Identity] = None
        self.fail_create = False
        self.created: List[Identity] = []
        self.fail_update = False
        self.premium_updates: List[tuple] = []

    def get_session_identity(self) -> Optional[Identity]:
        return self.session

    def create_account(self, email: str, password: str, display_name: str) -> Identity:
        if self.fail_create:
            raise RemoteError("email already registered", table="auth")
        identity = Identity(id=str(uuid.uuid4()), email=email, display_name=display_name)
        self.created.append(identity)
        return identity

    def update_premium_status(
        self, user_id: str, is_premium: bool, expires_at: Optional[datetime]
    ) -> None:
        if self.fail_update:
            raise RemoteError("profile update rejected", table="profiles")
        self.premium_updates.append((user_id, is_premium, expires_at))


@pytest.fixture(autouse=True)
def data_dir(tmp_path, monkeypatch):
    """Keep logs and default data under the test's temp directory."""
    path = tmp_path / "data"
    monkeypatch.setenv("REMINDSYNC_DATA_DIR", str(path))
    return path


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary database path."""
    return tmp_path / "test.db"


@pytest.fixture
def store(temp_db):
    return SQLiteStore(temp_db)


@pytest.fixture
def records(store):
    return LocalRecordStore(store)


@pytest.fixture
def queue(store):
    return SyncQueue(store)


@pytest.fixture
def remote():
    return InMemoryRemote()


@pytest.fixture
def network():
    return ToggleNetwork(reachable=True)


@pytest.fixture
def gate(network):
    return ConnectivityGate(network)


@pytest.fixture
def auth():
    return FakeAuth()


@pytest.fixture
def engine(records, queue, remote, gate):
    return ReconciliationEngine(records, queue, remote, gate)


@pytest.fixture
def app(temp_db, remote, network, auth):
    """A fully wired RemindSync instance over test doubles."""
    return RemindSync(temp_db, remote=remote, network=network, auth=auth)


@pytest.fixture
def account(records):
    """A cached registered identity."""
    return records.save_identity(Identity(id=ACCOUNT_ID, email="user@example.com"))


def tomorrow() -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=1)


@pytest.fixture
def time_reminder_values():
    """Factory for valid time-reminder field dicts."""

    def make(**overrides):
        values = {"title": "Call mom", "type": "time", "trigger_at": tomorrow()}
        values.update(overrides)
        return values

    return make


@pytest.fixture
def location_reminder_values():
    """Factory for valid location-reminder field dicts."""

    def make(**overrides):
        values = {
            "title": "Buy milk",
            "type": "location",
            "latitude": 37.7749,
            "longitude": -122.4194,
            "location_name": "Grocery",
        }
        values.update(overrides)
        return values

    return make
