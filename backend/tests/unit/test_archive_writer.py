"""Unit tests for ArchiveWriter file layout and atomic writes."""

import gzip
import json
from datetime import datetime, timezone

import pytest

from audit_retention.retention.archive import (
    CSV_HEADER,
    ArchiveWriter,
    sanitize_action_type,
)
from audit_retention.retention.errors import ArchiveWriteError
from audit_retention.retention.schemas import ArchivedAuditRecord, ArchiveFormat

FIXED_NOW = datetime(2024, 3, 15, 2, 30, 45, tzinfo=timezone.utc)
CUTOFF = datetime(2024, 2, 14, 2, 30, 45, tzinfo=timezone.utc)


def make_record(record_id, action="BOOK_VIEWED", user_id="user-1", message="viewed", day=1):
    return ArchivedAuditRecord(
        id=record_id,
        user_id=user_id,
        action=action,
        message=message,
        created_at=datetime(2024, 1, day, 8, 0, 0, tzinfo=timezone.utc),
        ip_address="10.0.0.1",
    )


@pytest.fixture
def writer(tmp_path):
    return ArchiveWriter(tmp_path / "archives", clock=lambda: FIXED_NOW)


class TestSanitizeActionType:
    """Test file-name sanitization of action types."""

    def test_keeps_safe_characters(self):
        assert sanitize_action_type("BOOK_VIEWED") == "BOOK_VIEWED"
        assert sanitize_action_type("login-2fa") == "login-2fa"

    def test_replaces_path_characters(self):
        assert sanitize_action_type("../BOOK/VIEWED") == "___BOOK_VIEWED"

    def test_empty_becomes_unknown(self):
        assert sanitize_action_type("") == "UNKNOWN"


class TestJsonArchive:
    """Test JSON archive content."""

    def test_file_name_pattern(self, writer):
        path = writer.write_archive("BOOK_VIEWED", [make_record(1)], CUTOFF)

        assert path.name == "audit_archive_BOOK_VIEWED_20240315_023045.json"
        assert path.parent == writer.archive_dir

    def test_manifest_precedes_logs_with_camel_case_keys(self, writer):
        records = [
            make_record(2, user_id="user-2", day=3),
            make_record(1, day=1),
            make_record(3, action="BOOK_DOWNLOADED", day=2),
        ]

        path = writer.write_archive("BOOK_VIEWED", records, CUTOFF)
        text = path.read_text(encoding="utf-8")
        document = json.loads(text)

        assert list(document.keys()) == ["manifest", "logs"]
        assert text.index('"manifest"') < text.index('"logs"')

        manifest = document["manifest"]
        assert manifest["actionType"] == "BOOK_VIEWED"
        assert manifest["logCount"] == 3
        assert manifest["statistics"]["totalLogs"] == 3
        assert manifest["statistics"]["uniqueUsers"] == 2
        assert manifest["statistics"]["uniqueActions"] == 2
        assert manifest["statistics"]["topActions"] == {"BOOK_VIEWED": 2, "BOOK_DOWNLOADED": 1}
        assert manifest["dateRange"]["startDate"].startswith("2024-01-01")
        assert manifest["dateRange"]["endDate"].startswith("2024-01-03")

        first = document["logs"][0]
        assert set(first.keys()) == {"id", "userId", "action", "message", "createdAt", "ipAddress"}

    def test_records_sorted_oldest_first(self, writer):
        records = [make_record(2, day=5), make_record(1, day=2)]

        path = writer.write_archive("BOOK_VIEWED", records, CUTOFF)
        contents = ArchiveWriter.read_archive(path)

        assert [r.id for r in contents.records] == [1, 2]
        assert contents.manifest.log_count == 2

    def test_gzip_archive_round_trips(self, writer):
        path = writer.write_archive(
            "BOOK_VIEWED", [make_record(1), make_record(2)], CUTOFF, compress=True
        )

        assert path.name.endswith(".json.gz")
        json.loads(gzip.decompress(path.read_bytes()))
        contents = ArchiveWriter.read_archive(path)
        assert [r.id for r in contents.records] == [1, 2]


class TestCsvArchive:
    """Test CSV archive content."""

    def test_two_records_give_header_plus_two_lines(self, writer):
        records = [make_record(1), make_record(2, message="second")]

        path = writer.write_archive(
            "BOOK_VIEWED", records, CUTOFF, archive_format=ArchiveFormat.CSV
        )
        lines = path.read_text(encoding="utf-8").splitlines()

        assert path.suffix == ".csv"
        assert len(lines) == 3
        assert lines[0] == CSV_HEADER
        assert lines[1] == '"1","user-1","BOOK_VIEWED","viewed","2024-01-01 08:00:00","10.0.0.1"'

    def test_fields_with_commas_quotes_and_newlines_are_escaped(self, writer):
        message = 'said "hi", then\nleft'
        records = [make_record(1, message=message)]

        path = writer.write_archive(
            "BOOK_VIEWED", records, CUTOFF, archive_format=ArchiveFormat.CSV
        )
        contents = ArchiveWriter.read_archive(path)

        assert contents.manifest is None
        assert len(contents.records) == 1
        assert contents.records[0].message == message
        assert contents.records[0].created_at == records[0].created_at

    def test_null_user_written_as_empty(self, writer):
        path = writer.write_archive(
            "BOOK_VIEWED", [make_record(1, user_id=None)], CUTOFF, archive_format=ArchiveFormat.CSV
        )

        assert '"1","","BOOK_VIEWED"' in path.read_text(encoding="utf-8")
        assert ArchiveWriter.read_archive(path).records[0].user_id is None

    def test_rejects_foreign_csv(self, tmp_path):
        path = tmp_path / "audit_archive_X_20240101_000000.csv"
        path.write_text("a,b,c\n1,2,3\n", encoding="utf-8")

        with pytest.raises(ValueError):
            ArchiveWriter.read_archive(path)


class TestAtomicWrite:
    """Test naming collisions, temporary files and write failures."""

    def test_same_second_gets_counter_suffix(self, writer):
        first = writer.write_archive("BOOK_VIEWED", [make_record(1)], CUTOFF)
        second = writer.write_archive("BOOK_VIEWED", [make_record(2)], CUTOFF)
        third = writer.write_archive("BOOK_VIEWED", [make_record(3)], CUTOFF)

        assert first.name == "audit_archive_BOOK_VIEWED_20240315_023045.json"
        assert second.name == "audit_archive_BOOK_VIEWED_20240315_023045_1.json"
        assert third.name == "audit_archive_BOOK_VIEWED_20240315_023045_2.json"
        assert ArchiveWriter.read_archive(first).records[0].id == 1

    def test_no_temporary_files_left_behind(self, writer):
        writer.write_archive("BOOK_VIEWED", [make_record(1)], CUTOFF)

        names = [p.name for p in writer.archive_dir.iterdir()]
        assert names == ["audit_archive_BOOK_VIEWED_20240315_023045.json"]

    def test_creates_missing_directory(self, tmp_path):
        writer = ArchiveWriter(tmp_path / "a" / "b" / "c", clock=lambda: FIXED_NOW)

        path = writer.write_archive("LOGOUT", [make_record(1, action="LOGOUT")], CUTOFF)

        assert path.is_file()

    def test_unwritable_directory_raises_archive_write_error(self, tmp_path):
        blocker = tmp_path / "not-a-directory"
        blocker.write_text("occupied", encoding="utf-8")
        writer = ArchiveWriter(blocker / "archives", clock=lambda: FIXED_NOW)

        with pytest.raises(ArchiveWriteError) as exc:
            writer.write_archive("BOOK_VIEWED", [make_record(1)], CUTOFF)

        assert exc.value.error_type == "ArchiveWriteError"
        assert "BOOK_VIEWED" in str(exc.value)

    def test_unsafe_action_type_stays_inside_directory(self, writer):
        path = writer.write_archive("../../etc/passwd", [make_record(1)], CUTOFF)

        assert path.parent == writer.archive_dir
        assert path.name.startswith("audit_archive_" + sanitize_action_type("../../etc/passwd") + "_")
        assert "/" not in path.name

    def test_empty_record_set_still_writes_manifest(self, writer):
        path = writer.write_archive("BOOK_VIEWED", [], CUTOFF)
        contents = ArchiveWriter.read_archive(path)

        assert contents.records == []
        assert contents.manifest.log_count == 0
        assert contents.manifest.date_range is None
