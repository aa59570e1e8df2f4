"""Archive writer for expiring audit records.

Serializes one action type's expiring records, together with a manifest,
into a single JSON or CSV file (optionally gzip compressed).

Files are written to a temporary name inside the archive directory,
fsynced and renamed into place, so a crash never leaves a half-written
archive under a final name.

File naming:
    audit_archive_{actionType}_{yyyyMMdd}_{HHmmss}[_N].{json|csv}[.gz]

The _N counter is only added when another archive for the same action type
was written within the same second.
"""

import csv
import gzip
import io
import json
import logging
import os
import re
import tempfile
import threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from ..models.audit_log import AuditLog
from ..models.base import utcnow
from ..observability.metrics import retention_archive_bytes, retention_archives_written_total
from .errors import ArchiveWriteError
from .schemas import (
    ArchiveDateRange,
    ArchiveDocument,
    ArchivedAuditRecord,
    ArchiveFormat,
    ArchiveManifest,
    ArchiveStatistics,
    RetentionSettings,
)

logger = logging.getLogger(__name__)

ARCHIVE_PREFIX = "audit_archive_"
CSV_HEADER = "Id,UserId,Action,Message,CreatedAt,IpAddress"
CSV_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
TOP_ACTIONS_LIMIT = 5

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")

RecordLike = Union[AuditLog, ArchivedAuditRecord]


def sanitize_action_type(action_type: str) -> str:
    """Make an action type safe for use in a file name.

    Example:
        sanitize_action_type("BOOK/VIEWED")  # "BOOK_VIEWED"
    """
    cleaned = _UNSAFE_CHARS.sub("_", action_type or "")
    return cleaned or "UNKNOWN"


def to_archived_record(record: RecordLike) -> ArchivedAuditRecord:
    if isinstance(record, ArchivedAuditRecord):
        return record
    return ArchivedAuditRecord(
        id=record.id,
        user_id=record.user_id,
        action=record.action,
        message=record.message or "",
        created_at=record.created_at,
        ip_address=record.ip_address,
    )


@dataclass
class ArchiveContents:
    """Parsed archive file. CSV archives carry no manifest."""
    records: List[ArchivedAuditRecord] = field(default_factory=list)
    manifest: Optional[ArchiveManifest] = None


class ArchiveWriter:
    """Writes audit archives to a local directory.

    Thread-safe: file name selection and the final rename are serialized
    so two runs archiving the same action type in the same second get
    distinct files.
    """

    def __init__(
        self,
        archive_dir: Union[str, Path],
        archive_format: ArchiveFormat = ArchiveFormat.JSON,
        compress: bool = False,
        max_archive_size_mb: int = 100,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize archive writer.

        Args:
            archive_dir: Directory for archive files (created on first write)
            archive_format: JSON or CSV
            compress: Gzip the output
            max_archive_size_mb: Size above which a written archive is logged as a warning
            clock: Source of "now" for manifests and file names
        """
        self.archive_dir = Path(archive_dir)
        self.archive_format = archive_format
        self.compress = compress
        self.max_archive_size_mb = max_archive_size_mb
        self.clock = clock
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: RetentionSettings) -> "ArchiveWriter":
        return cls(
            archive_dir=settings.archive_path,
            archive_format=settings.archive_format,
            compress=settings.compress_archives,
            max_archive_size_mb=settings.max_archive_size_mb,
        )

    def write_archive(
        self,
        action_type: str,
        records: Sequence[RecordLike],
        cutoff_date: datetime,
        archive_format: Optional[ArchiveFormat] = None,
        compress: Optional[bool] = None,
    ) -> Path:
        """Write one archive file for an action type.

        Args:
            action_type: Action type the records were selected for (may be DEFAULT)
            records: Records to archive
            cutoff_date: Cutoff used to select the records
            archive_format: Override the configured format
            compress: Override the configured compression

        Returns:
            Path of the written archive

        Raises:
            ArchiveWriteError: Directory not writable, disk full, or any other I/O failure
        """
        archive_format = archive_format or self.archive_format
        compress = self.compress if compress is None else compress
        archive_date = self.clock()

        archived = sorted(
            (to_archived_record(r) for r in records),
            key=lambda r: (r.created_at, r.id)
        )
        manifest = self.build_manifest(action_type, archived, cutoff_date, archive_date)

        if archive_format == ArchiveFormat.CSV:
            payload = self.render_csv(archived)
        else:
            payload = self.render_json(manifest, archived)

        if compress:
            payload = gzip.compress(payload)

        path = self._write_atomically(action_type, archive_date, archive_format, compress, payload)

        size_bytes = len(payload)
        retention_archives_written_total.labels(
            format=archive_format.value, compressed=str(compress).lower()
        ).inc()
        retention_archive_bytes.observe(size_bytes)

        if size_bytes > self.max_archive_size_mb * 1024 * 1024:
            logger.warning(
                f"Archive {path.name} is larger than {self.max_archive_size_mb} MB",
                extra={"archive_path": str(path), "action_type": action_type}
            )

        logger.info(
            f"Archived {len(archived)} {action_type} records to {path.name} ({size_bytes // 1024} KB)",
            extra={
                "action_type": action_type,
                "archive_path": str(path),
                "matched_count": len(archived),
            }
        )

        return path

    def build_manifest(
        self,
        action_type: str,
        records: Sequence[ArchivedAuditRecord],
        cutoff_date: datetime,
        archive_date: datetime,
    ) -> ArchiveManifest:
        """Build the archive header with aggregate statistics."""
        action_counts = Counter(r.action for r in records)
        unique_users = {r.user_id for r in records if r.user_id}

        date_range = None
        if records:
            timestamps = [r.created_at for r in records]
            date_range = ArchiveDateRange(start_date=min(timestamps), end_date=max(timestamps))

        return ArchiveManifest(
            action_type=action_type,
            cutoff_date=cutoff_date,
            archive_date=archive_date,
            log_count=len(records),
            date_range=date_range,
            statistics=ArchiveStatistics(
                total_logs=len(records),
                unique_users=len(unique_users),
                unique_actions=len(action_counts),
                top_actions=dict(action_counts.most_common(TOP_ACTIONS_LIMIT)),
            ),
        )

    def render_json(
        self,
        manifest: ArchiveManifest,
        records: Sequence[ArchivedAuditRecord],
    ) -> bytes:
        document = ArchiveDocument(manifest=manifest, logs=list(records))
        return document.model_dump_json(by_alias=True, indent=2).encode("utf-8")

    def render_csv(self, records: Sequence[ArchivedAuditRecord]) -> bytes:
        buffer = io.StringIO()
        buffer.write(CSV_HEADER + "\n")
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        for r in records:
            writer.writerow([
                r.id,
                r.user_id or "",
                r.action,
                r.message or "",
                r.created_at.astimezone(timezone.utc).strftime(CSV_TIMESTAMP_FORMAT),
                r.ip_address or "",
            ])
        return buffer.getvalue().encode("utf-8")

    def _file_name(
        self,
        action_type: str,
        archive_date: datetime,
        archive_format: ArchiveFormat,
        compress: bool,
        counter: int = 0,
    ) -> str:
        stamp = archive_date.astimezone(timezone.utc).strftime("%Y%m%d_%H%M%S")
        name = f"{ARCHIVE_PREFIX}{sanitize_action_type(action_type)}_{stamp}"
        if counter:
            name += f"_{counter}"
        name += f".{archive_format.extension}"
        if compress:
            name += ".gz"
        return name

    def _write_atomically(
        self,
        action_type: str,
        archive_date: datetime,
        archive_format: ArchiveFormat,
        compress: bool,
        payload: bytes,
    ) -> Path:
        tmp_path = None
        try:
            self.archive_dir.mkdir(parents=True, exist_ok=True)

            fd, tmp_path = tempfile.mkstemp(
                dir=self.archive_dir, prefix=".tmp_audit_archive_", suffix=".part"
            )
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())

            with self._lock:
                counter = 0
                final_path = self.archive_dir / self._file_name(
                    action_type, archive_date, archive_format, compress
                )
                while final_path.exists():
                    counter += 1
                    final_path = self.archive_dir / self._file_name(
                        action_type, archive_date, archive_format, compress, counter
                    )
                os.replace(tmp_path, final_path)
            tmp_path = None

            return final_path

        except OSError as e:
            logger.error(
                f"Failed to write {action_type} archive to {self.archive_dir}: {e}",
                extra={"action_type": action_type, "error_type": type(e).__name__}
            )
            raise ArchiveWriteError(
                f"Could not write archive for {action_type}: {e}",
                path=str(self.archive_dir)
            ) from e

        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)

    @staticmethod
    def read_archive(path: Union[str, Path]) -> ArchiveContents:
        """Parse an archive file back into records (and manifest for JSON).

        Args:
            path: Archive file (.json, .csv, optionally .gz)

        Returns:
            ArchiveContents with records in file order

        Raises:
            ValueError: Unknown extension or malformed content
        """
        path = Path(path)
        name = path.name
        raw = path.read_bytes()
        if name.endswith(".gz"):
            raw = gzip.decompress(raw)
            name = name[:-3]

        text = raw.decode("utf-8")

        if name.endswith(".json"):
            document = ArchiveDocument.model_validate(json.loads(text))
            return ArchiveContents(records=document.logs, manifest=document.manifest)

        if name.endswith(".csv"):
            reader = csv.reader(io.StringIO(text, newline=""))
            header = next(reader, None)
            if header is None or ",".join(header) != CSV_HEADER:
                raise ValueError(f"{path.name} does not start with the archive CSV header")
            records = []
            for row in reader:
                created_at = datetime.strptime(row[4], CSV_TIMESTAMP_FORMAT).replace(
                    tzinfo=timezone.utc
                )
                records.append(ArchivedAuditRecord(
                    id=int(row[0]),
                    user_id=row[1] or None,
                    action=row[2],
                    message=row[3],
                    created_at=created_at,
                    ip_address=row[5] or None,
                ))
            return ArchiveContents(records=records)

        raise ValueError(f"Unknown archive format: {path.name}")
