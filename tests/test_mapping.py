"""Tests for remindsync.mapping: table totality and conversions."""

import dataclasses
import re
from datetime import datetime, timezone

import pytest

from remindsync.mapping import (
    FIELD_MAPS,
    RECORD_CLASSES,
    payload_to_record,
    payload_to_remote,
    record_to_payload,
    record_to_remote,
    record_to_row,
    remote_to_record,
    row_to_record,
)
from remindsync.types import Category, EntityType, Reminder, SavedPlace


def camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


@pytest.fixture
def reminder():
    return Reminder(
        id="r1",
        owner_id="user-1",
        title="Stand-up",
        trigger_at=datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc),
        recurrence_rule="FREQ=DAILY",
        priority="high",
        notification_id="notif-7",
        created_at=datetime(2024, 4, 30, tzinfo=timezone.utc),
        updated_at=datetime(2024, 4, 30, tzinfo=timezone.utc),
    )


class TestTotality:
    """Every dataclass field is mapped exactly once on every side."""

    @pytest.mark.parametrize("entity_type", list(EntityType))
    def test_every_field_is_mapped(self, entity_type):
        cls = RECORD_CLASSES[entity_type]
        attrs = [fm.attr for fm in FIELD_MAPS[entity_type]]
        assert sorted(attrs) == sorted(f.name for f in dataclasses.fields(cls))
        assert len(attrs) == len(set(attrs))

    @pytest.mark.parametrize("entity_type", list(EntityType))
    def test_keys_and_columns_unique(self, entity_type):
        table = FIELD_MAPS[entity_type]
        local_keys = [fm.local_key for fm in table]
        remote_cols = [fm.remote for fm in table if fm.remote]
        assert len(local_keys) == len(set(local_keys))
        assert len(remote_cols) == len(set(remote_cols))

    @pytest.mark.parametrize("entity_type", list(EntityType))
    def test_naming_conventions(self, entity_type):
        for fm in FIELD_MAPS[entity_type]:
            assert fm.local_key == camel(fm.attr)
            if fm.remote and fm.attr != "owner_id":
                assert fm.remote == fm.attr
                assert re.fullmatch(r"[a-z_]+", fm.remote)

    def test_owner_maps_to_user_id(self):
        for table in FIELD_MAPS.values():
            owner = next(fm for fm in table if fm.attr == "owner_id")
            assert owner.remote == "user_id"

    def test_device_only_fields(self):
        device_only = {fm.attr for fm in FIELD_MAPS[EntityType.REMINDER] if not fm.syncs}
        assert device_only == {"next_trigger_at", "notification_id", "geofence_id", "synced_at"}


class TestConversions:
    def test_payload_uses_application_naming(self, reminder):
        payload = record_to_payload(reminder)
        assert payload["triggerAt"] == "2024-05-01T09:00:00.000000+00:00"
        assert payload["recurrenceRule"] == "FREQ=DAILY"
        assert payload["isCompleted"] is False
        assert "id" not in payload and "ownerId" not in payload
        assert "notificationId" not in payload

    def test_remote_row_uses_column_naming(self, reminder):
        row = record_to_remote(reminder)
        assert row["id"] == "r1"
        assert row["user_id"] == "user-1"
        assert row["trigger_at"] == "2024-05-01T09:00:00.000000+00:00"
        assert "notification_id" not in row
        assert "owner_id" not in row

    def test_payload_to_remote_matches_direct_mapping(self, reminder):
        via_payload = payload_to_remote("reminder", "r1", "user-1", record_to_payload(reminder))
        assert via_payload == record_to_remote(reminder)

    def test_payload_missing_required_field(self):
        with pytest.raises(TypeError):
            payload_to_record("category", "c1", "user-1", {"color": "#fff"})

    def test_local_row_keeps_device_fields(self, reminder):
        row = record_to_row(reminder)
        assert row["notification_id"] == "notif-7"
        assert row["is_completed"] == 0
        back = row_to_record("reminder", row)
        assert back == reminder

    def test_remote_row_without_optional_columns(self):
        place = remote_to_record(
            EntityType.SAVED_PLACE,
            {"id": "p1", "user_id": "user-1", "name": "Home", "latitude": 1, "longitude": 2},
        )
        assert place == SavedPlace(id="p1", owner_id="user-1", name="Home", latitude=1.0, longitude=2.0)

    def test_null_bool_column_takes_default(self):
        category = remote_to_record(
            "category", {"id": "c1", "user_id": "u", "name": "Work", "is_deleted": None}
        )
        assert category == Category(id="c1", owner_id="u", name="Work")
