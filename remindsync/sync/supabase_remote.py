"""Supabase adapters for the remote store and auth collaborators."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from postgrest.exceptions import APIError

from supabase import Client, create_client

from remindsync.config import Settings, get_settings
from remindsync.protocols import RemoteError
from remindsync.types import Identity, format_datetime, parse_datetime, utc_now

logger = logging.getLogger(__name__)

PROFILES_TABLE = "profiles"

# Postgres unique_violation
DUPLICATE_KEY_CODE = "23505"


def create_supabase_client(settings: Optional[Settings] = None) -> Client:
    """Build a Supabase client from settings."""
    if settings is None:
        settings = get_settings()
    if not settings.supabase_url or not settings.supabase_key:
        raise ValueError("REMINDSYNC_SUPABASE_URL and REMINDSYNC_SUPABASE_KEY must be set")
    return create_client(settings.supabase_url, settings.supabase_key)


def _remote_error(action: str, table: str, e: Exception) -> RemoteError:
    code = getattr(e, "code", None)
    message = getattr(e, "message", None) or str(e)
    return RemoteError(f"{action} on {table} failed: {message}", table=table, code=code)


class SupabaseRemoteStore:
    """Row store backed by Supabase tables.

    Deletes are tombstones (``is_deleted = true``) so other devices see them.
    """

    def __init__(self, client: Client):
        self.client = client

    def upsert(self, table: str, row: Dict[str, Any]) -> None:
        try:
            self.client.table(table).upsert(row).execute()
        except (APIError, httpx.HTTPError) as e:
            raise _remote_error("upsert", table, e) from e

    def delete(self, table: str, record_id: str) -> None:
        try:
            self.client.table(table).update({"is_deleted": True, "updated_at": utc_now()}).eq(
                "id", record_id
            ).execute()
        except (APIError, httpx.HTTPError) as e:
            raise _remote_error("delete", table, e) from e

    def fetch_rows(self, table: str, owner_id: str) -> List[Dict[str, Any]]:
        try:
            result = (
                self.client.table(table)
                .select("*")
                .eq("user_id", owner_id)
                .eq("is_deleted", False)
                .execute()
            )
        except (APIError, httpx.HTTPError) as e:
            raise _remote_error("fetch", table, e) from e
        return result.data or []


class SupabaseAuthProvider:
    """Session lookup and sign-up through Supabase auth."""

    def __init__(self, client: Client):
        self.client = client

    def get_session_identity(self) -> Optional[Identity]:
        try:
            session = self.client.auth.get_session()
        except httpx.HTTPError as e:
            logger.debug(f"Session lookup failed: {e}")
            return None
        if session is None or session.user is None:
            return None

        user = session.user
        profile = self._get_profile(user.id) or {}
        metadata = user.user_metadata or {}
        return Identity(
            id=user.id,
            is_guest=False,
            email=user.email,
            display_name=profile.get("display_name") or metadata.get("display_name"),
            is_premium=bool(profile.get("is_premium")),
            premium_expires_at=parse_datetime(profile.get("premium_expires_at")),
        )

    def create_account(self, email: str, password: str, display_name: str) -> Identity:
        """Sign up and create the profile row.

        Raises:
            RemoteError: if sign-up fails
        """
        try:
            response = self.client.auth.sign_up(
                {
                    "email": email,
                    "password": password,
                    "options": {"data": {"display_name": display_name}},
                }
            )
        except Exception as e:
            raise RemoteError(f"Sign-up failed: {e}", table="auth") from e

        user = response.user
        if user is None:
            raise RemoteError("Sign-up returned no user", table="auth")

        try:
            self.client.table(PROFILES_TABLE).insert(
                {"id": user.id, "email": email, "display_name": display_name}
            ).execute()
        except APIError as e:
            if e.code != DUPLICATE_KEY_CODE:
                raise _remote_error("insert", PROFILES_TABLE, e) from e
            logger.debug(f"Profile for {user.id} already exists")

        logger.info(f"Created account {user.id}")
        return Identity(id=user.id, is_guest=False, email=email, display_name=display_name)

    def update_premium_status(
        self, user_id: str, is_premium: bool, expires_at: Optional[datetime]
    ) -> None:
        """Write ``is_premium`` and ``premium_expires_at`` to the profile row.

        Raises:
            RemoteError: if the update fails
        """
        values = {"is_premium": is_premium, "premium_expires_at": format_datetime(expires_at)}
        try:
            self.client.table(PROFILES_TABLE).update(values).eq("id", user_id).execute()
        except (APIError, httpx.HTTPError) as e:
            raise _remote_error("update", PROFILES_TABLE, e) from e
        logger.debug(f"Premium status for {user_id} set to {is_premium}")

    def _get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            result = self.client.table(PROFILES_TABLE).select("*").eq("id", user_id).execute()
        except (APIError, httpx.HTTPError) as e:
            logger.debug(f"Profile lookup failed for {user_id}: {e}")
            return None
        return result.data[0] if result.data else None
