"""Change detection over local directory trees."""

import asyncio
import os
import stat
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .exclusion import ExclusionMatcher
from ..database import FileFingerprint, FingerprintStore
from ..status import FileError, FileErrorKind, SyncObserver
from ..utils.logging import get_logger


@dataclass
class ChangeListEntry:
    """A file the sync engine has to consider for transfer."""

    fullpath: str
    stats: FileFingerprint
    base_root: str


@dataclass
class ScanStats:
    """Everything looked at, changed or not."""

    files: int = 0
    size: int = 0


class ChangeIndex:
    """Walks roots and diffs every file against its stored fingerprint.

    Visited statistics count every regular file that is neither blocked nor
    below an excluded directory. Change totals only count files whose
    modification time differs from the stored fingerprint (or that have
    none). Deferred files are kept aside and appended by ``finalize``.
    """

    def __init__(
        self,
        store: FingerprintStore,
        exclusions: Optional[ExclusionMatcher] = None,
        end_files: Optional[Iterable[str]] = None,
        blocked_files: Optional[Iterable[str]] = None,
        observer: Optional[SyncObserver] = None,
        heartbeat_interval: float = 1.0
    ):
        self.store = store
        self.exclusions = exclusions or ExclusionMatcher()
        self.end_files = set(end_files or [])
        self.blocked_files = set(blocked_files or [])
        self.observer = observer or SyncObserver()
        self.heartbeat_interval = heartbeat_interval
        self.logger = get_logger(self.__class__.__name__)

        self.change_list: List[ChangeListEntry] = []
        self.end_list: List[ChangeListEntry] = []
        self.dir_list: List[str] = []
        self.file_errors: List[FileError] = []
        self.total_file_size = 0
        self.stats = ScanStats()
        self._last_heartbeat = 0.0
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    def stop(self) -> None:
        """Abandon the running scan at the next directory entry."""
        self._stopped = True

    def reset(self) -> None:
        """Forget the previous scan and close the store."""
        self.change_list = []
        self.end_list = []
        self.dir_list = []
        self.file_errors = []
        self.total_file_size = 0
        self.stats = ScanStats()
        self._last_heartbeat = 0.0
        self._stopped = False
        self.close_store()

    def open_store(self) -> None:
        self.store.open()

    def close_store(self) -> None:
        self.store.close()

    @staticmethod
    def has_access(path: str) -> bool:
        return os.access(path, os.R_OK)

    async def update_stats(self, path: str, fingerprint: FileFingerprint) -> None:
        """Commit ``path`` as synced."""
        await self.store.put(path, fingerprint)

    def record_error(self, path: str, kind: FileErrorKind, message: str = "") -> None:
        self.file_errors.append(FileError(path=path, kind=kind, message=message))
        self.observer.on_file_error(kind, path)

    def record_access_error(self, path: str) -> None:
        self.file_errors.append(FileError(path=path, kind=FileErrorKind.ACCESS, message="Not readable"))
        self.observer.on_access_error(path)

    async def scan_all(self, roots: Iterable[str]) -> List[ChangeListEntry]:
        """Scan every root in order and return the finalized change list."""
        self.open_store()
        try:
            for root in roots:
                if self._stopped:
                    break
                await self.scan(root)
        finally:
            self.close_store()
        self.finalize()
        self.logger.info(
            "Scan finished",
            changes=len(self.change_list),
            total_size=self.total_file_size,
            files=self.stats.files,
            size=self.stats.size,
            dirs=len(self.dir_list),
            errors=len(self.file_errors)
        )
        return self.change_list

    async def scan(self, root: str) -> None:
        """Walk ``root`` depth-first and collect changed files."""
        root = os.path.normpath(root)
        was_open = self.store.is_open
        self.open_store()
        loop = asyncio.get_running_loop()
        self.logger.debug("Scanning root", root=root)

        try:
            children = await self._list_dir(root)
            if children is None:
                return
            pending = [iter(children)]

            while pending:
                path = next(pending[-1], None)
                if path is None:
                    pending.pop()
                    continue
                self._heartbeat()
                if self._stopped:
                    self.logger.info("Scan stopped", root=root, files=self.stats.files)
                    break

                if not await loop.run_in_executor(None, self.has_access, path):
                    self.record_access_error(path)
                    continue

                try:
                    st = await loop.run_in_executor(None, os.lstat, path)
                except OSError as e:
                    self.record_error(path, FileErrorKind.STAT, str(e))
                    continue

                if stat.S_ISDIR(st.st_mode):
                    if self.exclusions.is_excluded(root, path):
                        self.logger.debug("Skipping excluded directory", directory=path)
                        continue
                    self.dir_list.append(path)
                    children = await self._list_dir(path)
                    if children is not None:
                        pending.append(iter(children))
                elif stat.S_ISREG(st.st_mode):
                    await self._check_file(path, st, root)
        finally:
            if not was_open:
                self.close_store()

    async def _list_dir(self, directory: str) -> Optional[List[str]]:
        loop = asyncio.get_running_loop()
        try:
            names = await loop.run_in_executor(None, os.listdir, directory)
        except OSError as e:
            self.record_error(directory, FileErrorKind.ACCESS, str(e))
            return None
        return [os.path.join(directory, name) for name in sorted(names)]

    def _heartbeat(self) -> None:
        now = time.monotonic()
        if now - self._last_heartbeat >= self.heartbeat_interval:
            self._last_heartbeat = now
            self.observer.on_scan_progress(self.stats.files)

    async def is_changed(self, path: str, fingerprint: FileFingerprint) -> bool:
        stored = await self.store.get(path)
        return stored is None or stored.mtime_ms != fingerprint.mtime_ms

    async def _check_file(self, path: str, st: os.stat_result, root: str) -> None:
        if path in self.blocked_files:
            return

        fingerprint = FileFingerprint.from_stat(st)
        self.stats.files += 1
        self.stats.size += fingerprint.size

        if not await self.is_changed(path, fingerprint):
            return

        self.total_file_size += fingerprint.size
        entry = ChangeListEntry(fullpath=path, stats=fingerprint, base_root=root)
        if path in self.end_files:
            self.end_list.append(entry)
        else:
            self.change_list.append(entry)

    def finalize(self) -> None:
        """Move deferred files to the end of the change list."""
        self.change_list.extend(self.end_list)
        self.end_list = []
