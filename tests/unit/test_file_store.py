"""
Unit tests for FileStore and date helpers.
"""

from datetime import date, datetime, timezone

import pytest

from tunerbridge.utils.dates import (
    days_from_today,
    device_date,
    parse_timestamp,
    xmltv_date,
    xmltv_timestamp,
)
from tunerbridge.utils.file_store import FileStore


@pytest.mark.unit
class TestFileStore:
    """Tests for FileStore."""

    def test_write_read_roundtrip(self, temp_dir):
        store = FileStore(temp_dir)

        store.write("nested/file.bin", b"\x00\x01")

        assert store.exists("nested/file.bin")
        assert store.read("nested/file.bin") == b"\x00\x01"
        assert store.size("nested/file.bin") == 2

    def test_write_leaves_no_temp_files(self, temp_dir):
        store = FileStore(temp_dir)

        store.write("guide.xml", "<tv/>")
        store.write("guide.xml", "<tv></tv>")

        assert [p.name for p in temp_dir.iterdir()] == ["guide.xml"]
        assert store.read("guide.xml") == b"<tv></tv>"

    def test_json_helpers(self, temp_dir):
        store = FileStore(temp_dir)

        store.write_json("lineup.json", [{"identifier": "S1"}], indent=4)

        assert store.read_json("lineup.json") == [{"identifier": "S1"}]

    def test_delete(self, temp_dir):
        store = FileStore(temp_dir)
        store.write("creds.bin", b"x")

        assert store.delete("creds.bin") is True
        assert store.delete("creds.bin") is False
        assert not store.exists("creds.bin")

    def test_delete_unlisted(self, temp_dir):
        store = FileStore(temp_dir)
        for name in ("keep_a.json", "keep_b.json", "stale.json"):
            store.write(f"cache/{name}", b"[]")

        removed = store.delete_unlisted("cache", ["keep_a.json", "keep_b.json"])

        assert removed == ["stale.json"]
        assert store.exists("cache/keep_a.json")
        assert not store.exists("cache/stale.json")

    def test_delete_unlisted_missing_dir(self, temp_dir):
        assert FileStore(temp_dir).delete_unlisted("nope", []) == []


@pytest.mark.unit
class TestDates:
    """Tests for date helpers."""

    def test_days_from_today(self):
        assert days_from_today(3, date(2026, 12, 31)) == ["2026-12-31", "2027-01-01", "2027-01-02"]

    def test_parse_timestamp_with_z(self):
        parsed = parse_timestamp("2026-10-19T20:00Z")

        assert parsed == datetime(2026, 10, 19, 20, 0, tzinfo=timezone.utc)

    def test_xmltv_timestamp(self):
        moment = datetime(2026, 10, 19, 20, 30, 5, tzinfo=timezone.utc)

        assert xmltv_timestamp(moment) == "20261019203005 +0000"
        assert xmltv_date(moment) == "20261019"

    def test_device_date_is_rfc1123(self):
        moment = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

        assert device_date(moment) == "Mon, 19 Oct 2026 12:00:00 GMT"
