"""Tests for the Supabase remote-store and auth adapters (mocked client)."""

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest
from postgrest.exceptions import APIError

from remindsync.config import Settings
from remindsync.protocols import AuthProvider, RemoteError, RemoteStore
from remindsync.sync.supabase_remote import (
    SupabaseAuthProvider,
    SupabaseRemoteStore,
    create_supabase_client,
)


@pytest.fixture
def client():
    return MagicMock()


class TestSupabaseRemoteStore:
    def test_satisfies_protocol(self, client):
        assert isinstance(SupabaseRemoteStore(client), RemoteStore)

    def test_upsert(self, client):
        row = {"id": "r1", "user_id": "u", "title": "x"}
        SupabaseRemoteStore(client).upsert("reminders", row)
        client.table.assert_called_with("reminders")
        client.table.return_value.upsert.assert_called_once_with(row)

    def test_delete_is_a_tombstone(self, client):
        SupabaseRemoteStore(client).delete("categories", "c1")
        update = client.table.return_value.update
        payload = update.call_args[0][0]
        assert payload["is_deleted"] is True
        assert "updated_at" in payload
        update.return_value.eq.assert_called_once_with("id", "c1")

    def test_fetch_rows_filters_owner_and_deleted(self, client):
        query = client.table.return_value.select.return_value
        query.eq.return_value.eq.return_value.execute.return_value = SimpleNamespace(
            data=[{"id": "r1"}]
        )

        rows = SupabaseRemoteStore(client).fetch_rows("reminders", "u")

        assert rows == [{"id": "r1"}]
        query.eq.assert_called_once_with("user_id", "u")
        query.eq.return_value.eq.assert_called_once_with("is_deleted", False)

    def test_api_error_wrapped(self, client):
        client.table.return_value.upsert.return_value.execute.side_effect = APIError(
            {"message": "permission denied", "code": "42501"}
        )
        with pytest.raises(RemoteError) as exc_info:
            SupabaseRemoteStore(client).upsert("reminders", {"id": "r1"})
        assert exc_info.value.code == "42501"
        assert exc_info.value.table == "reminders"

    def test_transport_error_wrapped(self, client):
        client.table.return_value.select.side_effect = httpx.ReadTimeout("timed out")
        with pytest.raises(RemoteError):
            SupabaseRemoteStore(client).fetch_rows("reminders", "u")


class TestSupabaseAuthProvider:
    def test_satisfies_protocol(self, client):
        assert isinstance(SupabaseAuthProvider(client), AuthProvider)

    def test_no_session(self, client):
        client.auth.get_session.return_value = None
        assert SupabaseAuthProvider(client).get_session_identity() is None

    def test_session_identity_with_profile(self, client):
        user = SimpleNamespace(id="u1", email="a@example.com", user_metadata={})
        client.auth.get_session.return_value = SimpleNamespace(user=user)
        client.table.return_value.select.return_value.eq.return_value.execute.return_value = (
            SimpleNamespace(data=[{"display_name": "Ann", "is_premium": True}])
        )

        identity = SupabaseAuthProvider(client).get_session_identity()

        assert identity.id == "u1"
        assert identity.display_name == "Ann"
        assert identity.is_premium is True
        assert identity.is_guest is False

    def test_create_account(self, client):
        client.auth.sign_up.return_value = SimpleNamespace(user=SimpleNamespace(id="u2"))

        identity = SupabaseAuthProvider(client).create_account("b@example.com", "pw", "Bea")

        assert identity.id == "u2"
        assert identity.email == "b@example.com"
        credentials = client.auth.sign_up.call_args[0][0]
        assert credentials["options"]["data"]["display_name"] == "Bea"
        client.table.return_value.insert.assert_called_once()

    def test_duplicate_profile_is_ignored(self, client):
        client.auth.sign_up.return_value = SimpleNamespace(user=SimpleNamespace(id="u2"))
        client.table.return_value.insert.return_value.execute.side_effect = APIError(
            {"message": "duplicate key", "code": "23505"}
        )
        assert SupabaseAuthProvider(client).create_account("b@x.com", "pw", "B").id == "u2"

    def test_other_profile_errors_raise(self, client):
        client.auth.sign_up.return_value = SimpleNamespace(user=SimpleNamespace(id="u2"))
        client.table.return_value.insert.return_value.execute.side_effect = APIError(
            {"message": "boom", "code": "500"}
        )
        with pytest.raises(RemoteError):
            SupabaseAuthProvider(client).create_account("b@x.com", "pw", "B")

    def test_sign_up_failure(self, client):
        client.auth.sign_up.side_effect = RuntimeError("User already registered")
        with pytest.raises(RemoteError):
            SupabaseAuthProvider(client).create_account("b@x.com", "pw", "B")

    def test_sign_up_without_user(self, client):
        client.auth.sign_up.return_value = SimpleNamespace(user=None)
        with pytest.raises(RemoteError):
            SupabaseAuthProvider(client).create_account("b@x.com", "pw", "B")

    def test_update_premium_status(self, client):
        expires = datetime(2031, 1, 1, tzinfo=timezone.utc)

        SupabaseAuthProvider(client).update_premium_status("u1", True, expires)

        client.table.assert_called_with("profiles")
        update = client.table.return_value.update
        assert update.call_args[0][0] == {
            "is_premium": True,
            "premium_expires_at": "2031-01-01T00:00:00.000000+00:00",
        }
        update.return_value.eq.assert_called_once_with("id", "u1")

    def test_update_premium_status_error_wrapped(self, client):
        client.table.return_value.update.return_value.eq.return_value.execute.side_effect = (
            APIError({"message": "permission denied", "code": "42501"})
        )
        with pytest.raises(RemoteError) as exc_info:
            SupabaseAuthProvider(client).update_premium_status("u1", False, None)
        assert exc_info.value.table == "profiles"


class TestCreateClient:
    def test_requires_credentials(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        with pytest.raises(ValueError):
            create_supabase_client(Settings())

    def test_uses_settings(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        created = MagicMock()
        monkeypatch.setattr("remindsync.sync.supabase_remote.create_client", created)
        settings = Settings(supabase_url="https://proj.supabase.co", supabase_key="anon")

        create_supabase_client(settings)

        created.assert_called_once_with("https://proj.supabase.co", "anon")
