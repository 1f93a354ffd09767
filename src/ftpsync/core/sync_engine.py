"""Sync engine uploading the change list over one transfer session."""

import asyncio
import os
import posixpath
import time
from typing import Iterable, List, Optional, Set, Union

from .errors import (
    ErrorClass,
    FatalTransferError,
    LoopState,
    Resume,
    classify_error,
    fatal_kind,
    to_fatal,
)
from .paths import RootMapper
from ..database import FileFingerprint
from ..index import ChangeIndex, ChangeListEntry
from ..status import FileErrorKind, FileStatus, SyncObserver, SyncStartInfo, SyncStatus
from ..transfer.base import BaseTransferSession, ProgressInfo, ProtocolError, TransferStopped
from ..utils.logging import get_logger, log_async_execution_time


_SKIP_KINDS = {
    ErrorClass.REMOVED: FileErrorKind.REMOVED,
    ErrorClass.LOCKED: FileErrorKind.LOCKED,
    ErrorClass.PERMISSION: FileErrorKind.PERMISSION,
    ErrorClass.ERROR: FileErrorKind.ERROR,
}

LoopOutcome = Union[LoopState, Resume]


class SyncEngine:
    """Uploads changed files in change-list order.

    Each file is committed to the fingerprint store only after its transfer
    and remote modify time update succeeded. Recoverable connection errors
    resume the loop at the failing file, local file problems skip the file,
    and fatal protocol errors abort the run with ``FatalTransferError``.
    """

    def __init__(
        self,
        session: BaseTransferSession,
        index: ChangeIndex,
        mapper: RootMapper,
        observer: Optional[SyncObserver] = None,
        resume_files: Optional[Iterable[str]] = None,
        force_check: bool = False,
        max_retries_per_file: int = 10,
        retry_delay_seconds: float = 1.0
    ):
        self.session = session
        self.index = index
        self.mapper = mapper
        self.observer = observer or SyncObserver()
        self.resume_files: Set[str] = set(resume_files or [])
        self.force_check = force_check
        self._force_check_default = force_check
        self.max_retries_per_file = max_retries_per_file
        self.retry_delay_seconds = retry_delay_seconds
        self.logger = get_logger(self.__class__.__name__)

        self.dir_cache: Set[str] = set()
        self.status = self._new_status([])
        self._stopped = False
        self._closed = True
        self._last_tick = 0.0
        self._last_interval = 0.0
        self._last_bytes = 0
        self._bytes_base = 0
        self._session_bytes = 0

    def _new_status(self, entries: List[ChangeListEntry]) -> SyncStatus:
        return SyncStatus(
            current=None,
            base_path=self.mapper.remote_base,
            username=self.session.username,
            total_size=self.index.total_file_size,
            total_size_uploaded=0,
            total_files=len(entries),
            dir_files=self.index.stats.files,
            dir_size=self.index.stats.size
        )

    @property
    def stopped(self) -> bool:
        return self._stopped

    @log_async_execution_time
    async def sync(self, change_list: Optional[List[ChangeListEntry]] = None) -> LoopState:
        """Upload every entry of ``change_list`` (default: the index's list)."""
        entries = list(self.index.change_list if change_list is None else change_list)
        self._stopped = False

        if entries and len(entries) == self.index.stats.files and not self.force_check:
            self.logger.info("Every visited file changed, enabling remote check", files=len(entries))
            self.force_check = True

        self.status = self._new_status(entries)
        self.observer.on_sync_start(SyncStartInfo(
            force_check=self.force_check,
            total_size=self.status.total_size,
            total_files=self.status.total_files,
            dir_files=self.status.dir_files,
            dir_size=self.status.dir_size
        ))

        if not entries:
            self.logger.info("Nothing to upload")
            return LoopState.DONE

        self._reset_progress()
        self.index.open_store()
        try:
            await self._connect()
            self.session.track_progress(self._on_progress)
            state = await self._run_with_retries(entries)
        finally:
            self.session.track_progress(None)
            self._disconnect()
            self.index.close_store()

        self.logger.info(
            "Sync finished",
            state=state.value,
            files=len(entries),
            uploaded=self.status.total_size_uploaded,
            skipped=self.status.skipped_size,
            errors=len(self.index.file_errors)
        )
        return state

    async def _run_with_retries(self, entries: List[ChangeListEntry]) -> LoopState:
        start = 0
        attempts = 0
        reconnect = False

        while True:
            if reconnect:
                try:
                    await self.reconnect()
                except (ConnectionError, ProtocolError) as e:
                    if classify_error(e) not in (ErrorClass.RETRY, ErrorClass.RETRY_RECONNECT):
                        raise
                    attempts += 1
                    self._check_attempts(start, attempts, e)
                    self.logger.warning("Reconnect failed, retrying", attempt=attempts, error=str(e))
                    await asyncio.sleep(self.retry_delay_seconds)
                    continue
                reconnect = False

            outcome = await self.run_transfer_loop(entries, start)
            if isinstance(outcome, LoopState):
                return outcome

            attempts = attempts + 1 if outcome.index == start else 1
            start = outcome.index
            self._check_attempts(start, attempts)
            self.logger.warning(
                "Transfer interrupted, retrying",
                file=entries[start].fullpath,
                index=start,
                attempt=attempts,
                reconnect=outcome.reconnect
            )
            await asyncio.sleep(self.retry_delay_seconds)
            if self._stopped:
                return self.halt()
            reconnect = outcome.reconnect

    def _check_attempts(self, index: int, attempts: int, cause: Optional[BaseException] = None) -> None:
        if attempts > self.max_retries_per_file:
            self.logger.error("Giving up on file", index=index, attempts=attempts)
            raise FatalTransferError(
                f"Transfer failed {attempts} times at index {index}",
                kind="retries_exhausted"
            ) from cause

    async def run_transfer_loop(self, entries: List[ChangeListEntry], start: int = 0) -> LoopOutcome:
        """Transfer ``entries`` from ``start`` and report how the pass ended."""
        for index in range(start, len(entries)):
            entry = entries[index]
            try:
                if index == 0:
                    await self.ensure_dir(self.mapper.remote_base)
                state = await self.transfer_file(index, entry)
            except Exception as e:
                outcome = self._handle_error(e, index, entry)
                if outcome is None:
                    continue
                return outcome
            if state is LoopState.STOPPED:
                return state
        return LoopState.DONE

    def _handle_error(self, error: Exception, index: int, entry: ChangeListEntry) -> Optional[LoopOutcome]:
        if self._stopped:
            return self.halt()

        kind = classify_error(error)
        if kind is ErrorClass.RETRY_RECONNECT:
            return Resume(index, reconnect=True)
        if kind is ErrorClass.RETRY:
            return Resume(index, reconnect=False)
        if kind is ErrorClass.STOP:
            return self.halt()
        if kind is ErrorClass.FATAL:
            self.logger.error("Fatal transfer error", file=entry.fullpath, error=str(error))
            raise to_fatal(error) from error

        if kind is not ErrorClass.ERROR:
            self.status.skipped_size += entry.stats.size
        self.logger.warning("Skipping file", file=entry.fullpath, reason=kind.value, error=str(error))
        self.index.record_error(entry.fullpath, _SKIP_KINDS[kind], str(error))
        return None

    async def transfer_file(self, index: int, entry: ChangeListEntry) -> Optional[LoopState]:
        path = entry.fullpath
        local_dir, name = os.path.split(path)
        remote_dir = self.mapper.remote_dir_for(local_dir)
        remote_path = posixpath.join(remote_dir, name)
        self.status.current = FileStatus(
            index=index,
            full_path=path,
            name=name,
            dir_local=local_dir,
            dir_remote=remote_dir,
            stats=entry.stats
        )

        await self.ensure_dir(remote_dir)
        if self._stopped:
            return self.halt()

        loop = asyncio.get_running_loop()
        if not await loop.run_in_executor(None, self.index.has_access, path):
            self.index.record_access_error(path)

        changed = True
        if self.force_check:
            changed = await self.remote_differs(remote_path, entry.stats)
            if self._stopped:
                return self.halt()

        if changed:
            resumed = False
            if path in self.resume_files:
                resumed = await self.resume_upload(path, remote_path, entry.stats)
                if self._stopped:
                    return self.halt()
            if not resumed:
                self.logger.debug("Uploading file", file=path, remote=remote_path)
                await self.session.upload_from(path, remote_path)
                if self._stopped:
                    return self.halt()
        else:
            self.logger.debug("Remote file up to date", file=path, remote=remote_path)
            self.status.skipped_size += entry.stats.size
        await self.session.set_modify_time(remote_path, entry.stats.mtime_ms)
        if self._stopped:
            return self.halt()

        await self.index.update_stats(path, entry.stats)
        self.status.total_size_uploaded += entry.stats.size
        self.observer.on_file_done(self.status)
        return None

    async def ensure_dir(self, remote_dir: str) -> None:
        """Create ``remote_dir`` and its parents unless already cached."""
        if remote_dir in self.dir_cache:
            return
        current = "/"
        for part in [p for p in remote_dir.split("/") if p]:
            if self._stopped:
                raise TransferStopped()
            target = posixpath.join(current, part)
            if target not in self.dir_cache:
                await self.session.change_dir(current)
                await self.session.make_dir(part)
                self.dir_cache.add(target)
            current = target
        self.dir_cache.add(remote_dir)

    async def remote_differs(self, remote_path: str, fingerprint: FileFingerprint) -> bool:
        """Compare the remote modify time with the local one, in seconds."""
        try:
            remote_mtime = await self.session.get_modify_time(remote_path)
        except ProtocolError as e:
            if e.is_not_found:
                return True
            raise
        return remote_mtime != fingerprint.mtime_seconds

    async def resume_upload(self, path: str, remote_path: str, fingerprint: FileFingerprint) -> bool:
        """Append the missing tail of a partial upload.

        Returns False when a full upload is needed instead.
        """
        try:
            remote_mtime = await self.session.get_modify_time(remote_path)
            if fingerprint.mtime_seconds > remote_mtime:
                self.logger.debug("Local file newer than partial upload", file=path)
                self.resume_files.discard(path)
                return False
            offset = await self.session.size(remote_path)
        except ProtocolError as e:
            self.logger.debug("Cannot resume upload", file=path, code=e.code)
            self.resume_files.discard(path)
            return False

        if offset > fingerprint.size:
            self.resume_files.discard(path)
            return False

        loop = asyncio.get_running_loop()
        source = await loop.run_in_executor(None, open, path, "rb")
        try:
            await loop.run_in_executor(None, source.seek, offset)
            self.logger.info("Resuming upload", file=path, offset=offset)
            await self.session.append_from(source, remote_path)
        finally:
            source.close()

        self.status.skipped_size += offset
        self.resume_files.discard(path)
        return True

    def _reset_progress(self) -> None:
        self._last_tick = 0.0
        self._last_interval = 0.0
        self._last_bytes = 0
        self._bytes_base = 0
        self._session_bytes = 0

    def _on_progress(self, info: ProgressInfo) -> None:
        # The session counter restarts with every connection
        self._session_bytes = info.bytes_overall
        overall = self._bytes_base + info.bytes_overall
        now = time.monotonic()
        elapsed = now - self._last_tick if self._last_tick else 0.0
        divisor = max(elapsed, self._last_interval)
        if divisor > 0:
            self.status.upload_speed = (overall - self._last_bytes) / divisor
        self._last_interval = elapsed
        self._last_tick = now
        self._last_bytes = overall
        self.status.bytes_overall = overall + self.status.skipped_size
        self.observer.on_progress(self.status)

    async def _connect(self) -> None:
        try:
            await self.session.connect()
        except (ProtocolError, OSError) as e:
            if fatal_kind(e) is not None:
                raise to_fatal(e) from e
            raise
        self._closed = False

    def _disconnect(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.session.disconnect()

    async def reconnect(self) -> None:
        self.logger.info("Reconnecting", host=self.session.host)
        self._disconnect()
        self._bytes_base += self._session_bytes
        self._session_bytes = 0
        self._last_tick = 0.0
        self._last_interval = 0.0
        await self._connect()
        self.session.track_progress(self._on_progress)

    def halt(self) -> LoopState:
        """Close the session once and report the stop."""
        self._disconnect()
        return LoopState.STOPPED

    def stop(self) -> None:
        """Request a stop; an in-flight transfer is aborted."""
        if self._stopped:
            return
        self.logger.info("Stop requested")
        self._stopped = True
        self.halt()

    def reset(self) -> None:
        self.dir_cache.clear()
        self.force_check = self._force_check_default
        self.status = self._new_status([])
        self._stopped = False
        self._disconnect()
