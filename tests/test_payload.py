"""Tests for outgoing payload normalization."""

from datetime import datetime, timezone

from pylistsync.models import EntityKind
from pylistsync.sync.payload import clean_payload_for_remote


class TestCleanPayloadForRemote:
    """Tests for clean_payload_for_remote."""

    def test_camel_case_keys_are_mapped(self):
        """Test that app attribute names become column names."""
        cleaned = clean_payload_for_remote(
            EntityKind.LISTS,
            {"id": "L1", "storeName": "Corner shop", "isArchived": True},
        )
        assert cleaned == {"id": "L1", "store_name": "Corner shop", "is_archived": True}

    def test_column_names_pass_through(self):
        """Test that payloads already keyed by column are unchanged."""
        payload = {"list_id": "L1", "name": "Eggs", "is_checked": False}
        assert clean_payload_for_remote(EntityKind.ITEMS, payload) == payload

    def test_local_only_field_is_removed(self):
        """Test that the sync flag never reaches the backend."""
        cleaned = clean_payload_for_remote(
            EntityKind.ITEMS, {"name": "Eggs", "is_synced": False, "isSynced": True}
        )
        assert cleaned == {"name": "Eggs"}

    def test_sync_version_is_kept(self):
        """Test that the server-side version counter is transmitted."""
        cleaned = clean_payload_for_remote(EntityKind.LISTS, {"sync_version": 3})
        assert cleaned == {"sync_version": 3}

    def test_unknown_fields_are_dropped(self, caplog):
        """Test that fields missing from the field table are dropped."""
        cleaned = clean_payload_for_remote(
            EntityKind.LISTS, {"name": "Weekly", "list_id": "L9", "emoji": "x"}
        )
        assert cleaned == {"name": "Weekly"}
        assert "emoji" in caplog.text

    def test_datetimes_are_formatted(self):
        """Test that datetime values are sent as ISO strings."""
        cleaned = clean_payload_for_remote(
            EntityKind.ITEMS,
            {"updatedAt": datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)},
        )
        assert cleaned == {"updated_at": "2025-03-01T08:00:00+00:00"}

    def test_input_is_not_modified(self):
        """Test that the queued snapshot is left untouched."""
        payload = {"listId": "L1", "is_synced": True}
        clean_payload_for_remote(EntityKind.ITEMS, payload)
        assert payload == {"listId": "L1", "is_synced": True}
