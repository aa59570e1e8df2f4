"""Unit tests for archive listing, download resolution and purging."""

import os
import time
from datetime import datetime, timezone

import pytest

from audit_retention.retention.archive import ArchiveWriter
from audit_retention.retention.errors import ArchiveNotFoundError, ArchiveValidationError
from audit_retention.retention.lifecycle import SAFE_ARCHIVE_NAME, ArchiveLifecycleManager
from audit_retention.retention.schemas import ArchivedAuditRecord, ArchiveFormat, RetentionSettings

DAY = 86400


def make_record(record_id):
    return ArchivedAuditRecord(
        id=record_id,
        user_id="user-1",
        action="BOOK_VIEWED",
        message="viewed",
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def write_archive(directory, action_type, count=1, when=None, **kwargs):
    when = when or datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
    writer = ArchiveWriter(directory, clock=lambda: when)
    records = [make_record(i) for i in range(1, count + 1)]
    return writer.write_archive(action_type, records, when, **kwargs)


def age_file(path, days):
    stamp = time.time() - days * DAY
    os.utime(path, (stamp, stamp))


@pytest.fixture
def lifecycle(archive_dir):
    archive_dir.mkdir(parents=True, exist_ok=True)
    return ArchiveLifecycleManager(archive_dir)


class TestArchiveNamePattern:
    """Test the strict archive file name pattern."""

    @pytest.mark.parametrize("name", [
        "audit_archive_BOOK_VIEWED_20240301_120000.json",
        "audit_archive_DEFAULT_20240301_120000_3.csv.gz",
        "audit_archive_login-2fa_20240301_120000.csv",
    ])
    def test_valid_names(self, name):
        assert SAFE_ARCHIVE_NAME.match(name)

    @pytest.mark.parametrize("name", [
        "../etc/passwd",
        "..%2F..%2Fetc%2Fpasswd",
        "audit_archive_../../secret_20240301_120000.json",
        "audit_archive_BOOK_VIEWED_20240301_120000.json/../../x",
        "audit_archive_BOOK_VIEWED_20240301_120000.exe",
        "audit_archive_BOOK_VIEWED_2024_120000.json",
        "other_BOOK_VIEWED_20240301_120000.json",
        "",
    ])
    def test_invalid_names(self, name):
        assert not SAFE_ARCHIVE_NAME.match(name)


class TestResolveDownload:
    """Test download path resolution."""

    @pytest.mark.parametrize("name", [
        "../etc/passwd",
        "/etc/passwd",
        "audit_archive_../../etc_20240301_120000.json",
        "..\\..\\windows\\win.ini",
    ])
    def test_traversal_rejected(self, lifecycle, name):
        with pytest.raises(ArchiveValidationError):
            lifecycle.resolve_download(name)

    def test_missing_archive(self, lifecycle):
        with pytest.raises(ArchiveNotFoundError):
            lifecycle.resolve_download("audit_archive_BOOK_VIEWED_20240301_120000.json")

    def test_existing_archive(self, lifecycle, archive_dir):
        path = write_archive(archive_dir, "BOOK_VIEWED")

        resolved = lifecycle.resolve_download(path.name)

        assert resolved == path.resolve()


class TestListArchives:
    """Test archive listing."""

    def test_empty_or_missing_directory(self, tmp_path):
        manager = ArchiveLifecycleManager(tmp_path / "missing")

        assert manager.list_archives() == []
        assert manager.total_size_bytes() == 0

    def test_newest_first_with_metadata(self, lifecycle, archive_dir):
        older = write_archive(archive_dir, "BOOK_VIEWED", count=3)
        newer = write_archive(
            archive_dir, "LOGOUT", count=1, archive_format=ArchiveFormat.CSV, compress=True
        )
        age_file(older, 2)
        age_file(newer, 1)

        archives = lifecycle.list_archives()

        assert [a.file_name for a in archives] == [newer.name, older.name]

        csv_info, json_info = archives
        assert csv_info.format == ArchiveFormat.CSV
        assert csv_info.is_compressed is True
        assert csv_info.action_type == "LOGOUT"
        assert csv_info.log_count is None

        assert json_info.format == ArchiveFormat.JSON
        assert json_info.action_type == "BOOK_VIEWED"
        assert json_info.log_count == 3
        assert json_info.archive_timestamp == datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
        assert json_info.size_bytes == older.stat().st_size

    def test_ignores_unrelated_files(self, lifecycle, archive_dir):
        write_archive(archive_dir, "BOOK_VIEWED")
        (archive_dir / "notes.txt").write_text("hello", encoding="utf-8")
        (archive_dir / ".tmp_audit_archive_x.part").write_bytes(b"partial")

        assert len(lifecycle.list_archives()) == 1

    def test_corrupted_json_still_listed(self, lifecycle, archive_dir):
        path = archive_dir / "audit_archive_BOOK_VIEWED_20240301_120000.json"
        path.write_text("{not json", encoding="utf-8")

        archives = lifecycle.list_archives()

        assert len(archives) == 1
        assert archives[0].log_count is None
        assert archives[0].action_type == "BOOK_VIEWED"

    def test_size_formatted(self, lifecycle, archive_dir):
        path = archive_dir / "audit_archive_BOOK_VIEWED_20240301_120000.csv"
        path.write_bytes(b"x" * 2048)

        assert lifecycle.list_archives()[0].size_formatted == "2 KB"


class TestPurge:
    """Test purging by age."""

    def test_purge_by_modification_time(self, lifecycle, archive_dir):
        old = write_archive(archive_dir, "BOOK_VIEWED")
        recent = write_archive(archive_dir, "LOGOUT")
        age_file(old, 400)
        age_file(recent, 10)

        deleted = lifecycle.purge_older_than(365)

        assert deleted == 1
        assert not old.exists()
        assert recent.exists()

    def test_purge_ignores_non_archive_files(self, lifecycle, archive_dir):
        other = archive_dir / "keep-me.json"
        other.write_text("{}", encoding="utf-8")
        age_file(other, 1000)

        assert lifecycle.purge_older_than(1) == 0
        assert other.exists()

    def test_purge_rejects_non_positive_age(self, lifecycle):
        with pytest.raises(ValueError):
            lifecycle.purge_older_than(0)

    def test_purge_expired_uses_archive_retention_days(self, lifecycle, archive_dir):
        old = write_archive(archive_dir, "BOOK_VIEWED")
        recent = write_archive(archive_dir, "LOGOUT")
        age_file(old, 40)
        age_file(recent, 5)
        settings = RetentionSettings(auto_cleanup_archives=True, archive_retention_days=30)

        assert lifecycle.purge_expired(settings) == 1
        assert not old.exists()
        assert recent.exists()

    def test_purge_expired_ignores_directory_size(self, lifecycle, archive_dir):
        names = []
        for index, days in enumerate([3, 2, 1]):
            path = archive_dir / f"audit_archive_BOOK_VIEWED_20240301_12000{index}.csv"
            path.write_bytes(b"x" * 600 * 1024)
            age_file(path, days)
            names.append(path)
        settings = RetentionSettings(
            auto_cleanup_archives=True,
            archive_retention_days=365,
            max_archive_size_mb=1,
        )

        assert lifecycle.purge_expired(settings) == 0
        assert all(p.exists() for p in names)

    def test_purge_expired_noop_when_disabled(self, lifecycle, archive_dir):
        old = write_archive(archive_dir, "BOOK_VIEWED")
        age_file(old, 1000)

        assert lifecycle.purge_expired(RetentionSettings(auto_cleanup_archives=False)) == 0
        assert old.exists()
