"""Archive lifecycle management.

Lists, resolves for download, and purges archive files in the archive
directory. Purging is driven by file modification time, never by
manifest content, so a corrupted archive can still be purged.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional, Union

from ..models.base import utcnow
from ..observability.metrics import retention_archives_purged_total
from .archive import ARCHIVE_PREFIX, ArchiveWriter
from .errors import ArchiveNotFoundError, ArchiveValidationError
from .schemas import ArchiveFileInfo, ArchiveFormat, RetentionSettings

logger = logging.getLogger(__name__)

SAFE_ARCHIVE_NAME = re.compile(
    r"^audit_archive_[A-Za-z0-9_-]+_\d{8}_\d{6}(_\d+)?\.(json|csv)(\.gz)?$"
)

_NAME_PARTS = re.compile(
    r"^audit_archive_(?P<action>[A-Za-z0-9_-]+?)_(?P<stamp>\d{8}_\d{6})(?:_\d+)?"
    r"\.(?P<ext>json|csv)(?P<gz>\.gz)?$"
)


class ArchiveLifecycleManager:
    """Manages archive files written by ArchiveWriter."""

    def __init__(
        self,
        archive_dir: Union[str, Path],
        clock: Callable[[], datetime] = utcnow,
    ):
        self.archive_dir = Path(archive_dir)
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: RetentionSettings) -> "ArchiveLifecycleManager":
        return cls(settings.archive_path)

    def _archive_files(self) -> List[Path]:
        if not self.archive_dir.is_dir():
            return []
        return [
            p for p in self.archive_dir.glob(f"{ARCHIVE_PREFIX}*")
            if p.is_file() and SAFE_ARCHIVE_NAME.match(p.name)
        ]

    def list_archives(self) -> List[ArchiveFileInfo]:
        """All archive files, newest first.

        Action type, format and timestamp come from the file name; the log
        count comes from the JSON manifest when it can be parsed.
        """
        archives = []
        for path in self._archive_files():
            archives.append(self._describe(path))

        archives.sort(key=lambda a: a.modified_at, reverse=True)
        return archives

    def _describe(self, path: Path) -> ArchiveFileInfo:
        stat = path.stat()
        info = ArchiveFileInfo(
            file_name=path.name,
            size_bytes=stat.st_size,
            modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            is_compressed=path.name.endswith(".gz"),
        )

        match = _NAME_PARTS.match(path.name)
        if match:
            info.action_type = match.group("action")
            info.format = ArchiveFormat(match.group("ext").upper())
            info.archive_timestamp = datetime.strptime(
                match.group("stamp"), "%Y%m%d_%H%M%S"
            ).replace(tzinfo=timezone.utc)

        if info.format == ArchiveFormat.JSON:
            try:
                contents = ArchiveWriter.read_archive(path)
                if contents.manifest is not None:
                    info.action_type = contents.manifest.action_type
                    info.log_count = contents.manifest.log_count
            except (OSError, ValueError, EOFError) as e:
                logger.debug(f"Could not parse manifest of {path.name}: {e}")

        return info

    def resolve_download(self, file_name: str) -> Path:
        """Validate an archive name and return its path.

        The name is checked against the strict archive pattern before the
        filesystem is touched.

        Raises:
            ArchiveValidationError: Malformed name or path outside the archive directory
            ArchiveNotFoundError: No such archive
        """
        if not file_name or not SAFE_ARCHIVE_NAME.match(file_name):
            logger.warning(
                "Rejected archive download with invalid file name",
                extra={"file_name": file_name[:200] if file_name else ""}
            )
            raise ArchiveValidationError(f"Invalid archive file name: {file_name!r}")

        base = self.archive_dir.resolve()
        path = (base / file_name).resolve()
        if path.parent != base:
            raise ArchiveValidationError(f"Invalid archive file name: {file_name!r}")

        if not path.is_file():
            raise ArchiveNotFoundError(f"Archive not found: {file_name}")

        return path

    def purge_older_than(self, max_age_days: int) -> int:
        """Delete archives whose modification time is older than max_age_days.

        Returns:
            Number of files deleted
        """
        if max_age_days < 1:
            raise ValueError("max_age_days must be at least 1")

        cutoff = (self.clock() - timedelta(days=max_age_days)).timestamp()
        deleted = 0

        for path in self._archive_files():
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    deleted += 1
                    logger.info(f"Deleted archive {path.name} (older than {max_age_days} days)")
            except OSError as e:
                logger.warning(f"Could not delete archive {path.name}: {e}")

        if deleted:
            retention_archives_purged_total.labels(reason="age").inc(deleted)
            logger.info(
                f"Purged {deleted} archive(s) older than {max_age_days} days",
                extra={"deleted_count": deleted}
            )
        return deleted

    def purge_expired(self, settings: RetentionSettings) -> int:
        """Post-run purge shared by the scheduler thread and the Celery task.

        Only archives past archive_retention_days are removed. Size never
        causes an archive to be deleted.

        Returns:
            Number of files deleted (0 when auto_cleanup_archives is off)
        """
        if not settings.auto_cleanup_archives:
            return 0
        return self.purge_older_than(settings.archive_retention_days)

    def total_size_bytes(self, archives: Optional[List[ArchiveFileInfo]] = None) -> int:
        archives = archives if archives is not None else self.list_archives()
        return sum(a.size_bytes for a in archives)
