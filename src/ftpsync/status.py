"""Status records and observer hooks emitted during scan, sync and purge."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .database.models import FileFingerprint
from .utils.logging import get_logger


class FileErrorKind(str, Enum):
    """Why a file was skipped."""
    LOCKED = "LOCKED"
    REMOVED = "REMOVED"
    PERMISSION = "PERMISSION"
    ACCESS = "ACCESS"
    STAT = "STAT"
    ERROR = "ERROR"


@dataclass
class FileError:
    """A file that could not be scanned or transferred."""

    path: str
    kind: FileErrorKind
    message: str = ""


@dataclass
class FileStatus:
    """The file currently handled by the sync engine."""

    index: int
    full_path: str
    name: str
    dir_local: str
    dir_remote: str
    stats: FileFingerprint


@dataclass
class SyncStatus:
    """Progress snapshot, rebuilt on every status tick."""

    current: Optional[FileStatus]
    base_path: str
    username: str
    total_size: int
    total_size_uploaded: int
    total_files: int
    dir_files: int
    dir_size: int
    skipped_size: int = 0
    bytes_overall: int = 0
    upload_speed: float = 0.0


@dataclass
class SyncStartInfo:
    """Summary emitted once the change list is known."""

    force_check: bool
    total_size: int
    total_files: int
    dir_files: int
    dir_size: int


@dataclass
class PurgeStatus:
    """Purge progress counters."""

    count: int = 0
    scanned: int = 0
    local_scanned: int = 0
    total: int = 0


@dataclass
class PurgeResult:
    """Outcome of a purge pass."""

    candidates: list = field(default_factory=list)
    removed_files: list = field(default_factory=list)
    removed_dirs: list = field(default_factory=list)
    failed_roots: dict = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failed_roots


class SyncObserver:
    """Receives events from the index, engine and reconciler.

    Every hook is a no-op; subclasses override what they need.
    """

    def on_scan_progress(self, files: int) -> None:
        pass

    def on_sync_start(self, info: SyncStartInfo) -> None:
        pass

    def on_progress(self, status: SyncStatus) -> None:
        pass

    def on_file_done(self, status: SyncStatus) -> None:
        pass

    def on_file_error(self, kind: FileErrorKind, path: str) -> None:
        pass

    def on_access_error(self, path: str) -> None:
        pass

    def on_purge_progress(self, status: PurgeStatus) -> None:
        pass


class LoggingObserver(SyncObserver):
    """Forwards every event to the structured logger."""

    def __init__(self):
        self.logger = get_logger("ftpsync.events")

    def on_scan_progress(self, files: int) -> None:
        self.logger.info("Scanning", files=files)

    def on_sync_start(self, info: SyncStartInfo) -> None:
        self.logger.info(
            "Sync started",
            force_check=info.force_check,
            total_files=info.total_files,
            total_size=info.total_size,
            dir_files=info.dir_files,
            dir_size=info.dir_size
        )

    def on_progress(self, status: SyncStatus) -> None:
        self.logger.debug(
            "Transfer progress",
            file=status.current.full_path if status.current else None,
            bytes_overall=status.bytes_overall,
            upload_speed=round(status.upload_speed)
        )

    def on_file_done(self, status: SyncStatus) -> None:
        self.logger.info(
            "File synced",
            file=status.current.full_path if status.current else None,
            index=status.current.index if status.current else None,
            total_files=status.total_files,
            uploaded=status.total_size_uploaded,
            total_size=status.total_size
        )

    def on_file_error(self, kind: FileErrorKind, path: str) -> None:
        self.logger.warning("File skipped", kind=kind.value, file=path)

    def on_access_error(self, path: str) -> None:
        self.logger.warning("File not accessible", file=path)

    def on_purge_progress(self, status: PurgeStatus) -> None:
        self.logger.info(
            "Purge progress",
            removed=status.count,
            remote_scanned=status.scanned,
            local_scanned=status.local_scanned,
            total=status.total
        )
