"""Removal of remote files that no longer exist locally."""

import asyncio
import os
import posixpath
import time
from typing import Dict, List, Optional

from .errors import (
    ErrorClass,
    PurgeConsistencyError,
    PurgeError,
    RootMissingError,
    SyncEngineError,
    classify_error,
    fatal_kind,
    to_fatal,
)
from .paths import RootMapper
from ..database import FingerprintStore
from ..index import ExclusionMatcher
from ..status import PurgeResult, PurgeStatus, SyncObserver
from ..transfer.base import BaseTransferSession, ProtocolError, TransferError, TransferStopped
from ..utils.logging import get_logger, log_async_execution_time


class PurgeReconciler:
    """Finds stale remote files and deletes them.

    Two discovery strategies share one deletion routine:

    * ``purge_index`` walks the fingerprint store and queues every indexed
      file that is gone locally or now lives in an excluded directory.
    * ``purge_listing`` walks the remote tree of each root and queues every
      remote file without a local counterpart.

    Remote directories whose local counterpart vanished are removed last,
    deepest first. Nothing is deleted for a root that does not exist.
    """

    def __init__(
        self,
        session: BaseTransferSession,
        store: FingerprintStore,
        mapper: RootMapper,
        exclusions: Optional[ExclusionMatcher] = None,
        observer: Optional[SyncObserver] = None,
        heartbeat_interval: float = 1.0,
        max_remove_attempts: int = 10,
        max_ascent: int = 100
    ):
        self.session = session
        self.store = store
        self.mapper = mapper
        self.exclusions = exclusions or ExclusionMatcher()
        self.observer = observer or SyncObserver()
        self.heartbeat_interval = heartbeat_interval
        self.max_remove_attempts = max_remove_attempts
        self.max_ascent = max_ascent
        self.logger = get_logger(self.__class__.__name__)

        self.status = PurgeStatus()
        self.dir_queue: Dict[str, str] = {}
        self._connected = False
        self._stopped = False
        self._last_heartbeat = 0.0

    def stop(self) -> None:
        self._stopped = True
        self._disconnect()

    @staticmethod
    async def _exists(path: str) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, os.path.exists, path)

    def _heartbeat(self) -> None:
        now = time.monotonic()
        if now - self._last_heartbeat >= self.heartbeat_interval:
            self._last_heartbeat = now
            self.observer.on_purge_progress(self.status)

    async def _connect(self) -> None:
        if self._connected:
            return
        try:
            await self.session.connect()
        except (ProtocolError, OSError) as e:
            if fatal_kind(e) is not None:
                raise to_fatal(e) from e
            raise
        self._connected = True

    def _disconnect(self) -> None:
        if not self._connected:
            return
        self._connected = False
        self.session.disconnect()

    async def _reconnect(self) -> None:
        self.logger.info("Reconnecting", host=self.session.host)
        self._disconnect()
        await self._connect()

    def _start(self, total: int) -> PurgeResult:
        self.status = PurgeStatus(total=total)
        self.dir_queue = {}
        self._stopped = False
        self._last_heartbeat = 0.0
        return PurgeResult()

    @log_async_execution_time
    async def purge_index(self, total: int = 0) -> PurgeResult:
        """Delete remote copies of indexed files that are gone or excluded.

        Raises ``RootMissingError`` (carrying the candidates found so far)
        without deleting anything when the root of an indexed path is missing.
        """
        result = self._start(total)
        self.store.open()
        try:
            candidates: List[tuple] = []
            async for key in self.store.scan_keys():
                if self._stopped:
                    break
                self.status.local_scanned += 1
                self._heartbeat()

                main_dir = self.mapper.get_main_dir(key)
                if main_dir is None:
                    self.logger.debug("Indexed path outside registered roots", path=key)
                    continue
                if not await self._exists(main_dir):
                    result.candidates = [path for path, _ in candidates]
                    self.logger.error("Root missing, purge aborted", root=main_dir, candidates=len(candidates))
                    raise RootMissingError(main_dir, list(result.candidates))

                if not await self._exists(key) or self.exclusions.is_excluded(main_dir, os.path.dirname(key)):
                    candidates.append((key, main_dir))

            result.candidates = [path for path, _ in candidates]
            self.logger.info("Index purge candidates", count=len(candidates), scanned=self.status.local_scanned)

            if candidates and not self._stopped:
                await self._connect()
                for path, root in candidates:
                    if self._stopped:
                        break
                    await self.remove(path, root, result)
                await self.purge_dirs(result)
        except TransferStopped:
            self.logger.info("Purge stopped")
        except (TransferError, OSError) as e:
            raise PurgeError(f"Index purge failed: {e}", result) from e
        finally:
            self._disconnect()
            self.store.close()

        self.observer.on_purge_progress(self.status)
        return result

    @log_async_execution_time
    async def purge_listing(self, total: int = 0) -> PurgeResult:
        """Delete remote files of every root that have no local counterpart.

        A failing root is recorded in ``failed_roots`` and the remaining
        roots still run; ``PurgeError`` is raised at the end in that case.
        """
        result = self._start(total)
        self.store.open()
        try:
            await self._connect()
            for root in self.mapper.roots:
                if self._stopped:
                    break
                try:
                    await self._purge_root_listing(root, result)
                except TransferStopped:
                    self.logger.info("Purge stopped")
                    break
                except (SyncEngineError, TransferError, OSError) as e:
                    self.logger.error("Listing purge failed for root", root=root, error=str(e))
                    result.failed_roots[root] = str(e)
                    self.dir_queue = {}
        finally:
            self._disconnect()
            self.store.close()

        self.observer.on_purge_progress(self.status)
        if result.failed_roots:
            raise PurgeError(f"Listing purge failed for {len(result.failed_roots)} root(s)", result)
        return result

    async def _purge_root_listing(self, root: str, result: PurgeResult) -> None:
        if not await self._exists(root):
            raise RootMissingError(root)

        candidates: List[str] = []
        pending = [self.mapper.remote_dir_for(root)]
        attempts = 0

        while pending:
            if self._stopped:
                raise TransferStopped()
            remote_dir = pending[-1]
            try:
                entries = await self.session.list(remote_dir)
            except Exception as e:
                if isinstance(e, ProtocolError) and e.is_not_found:
                    pending.pop()
                    continue
                kind = classify_error(e)
                if kind in (ErrorClass.RETRY, ErrorClass.RETRY_RECONNECT) and attempts < self.max_remove_attempts:
                    attempts += 1
                    self.logger.warning("Listing failed, retrying", directory=remote_dir, attempt=attempts, error=str(e))
                    await self._reconnect()
                    continue
                if kind is ErrorClass.FATAL:
                    raise to_fatal(e) from e
                raise

            pending.pop()
            attempts = 0
            for entry in entries:
                if entry.name in (".", ".."):
                    continue
                remote_path = posixpath.join(remote_dir, entry.name)
                if entry.is_dir:
                    pending.append(remote_path)
                elif entry.is_file:
                    self.status.scanned += 1
                    self._heartbeat()
                    local_path = self.mapper.local_path_for(root, remote_path)
                    if not await self._exists(local_path):
                        candidates.append(local_path)

        result.candidates.extend(candidates)
        self.logger.info("Listing purge candidates", root=root, count=len(candidates))

        for local_path in candidates:
            if self._stopped:
                raise TransferStopped()
            if not await self._exists(root):
                raise RootMissingError(root, candidates)
            await self.remove(local_path, root, result)
        await self.purge_dirs(result)

    async def remove(self, local_path: str, root: str, result: PurgeResult) -> None:
        """Delete the remote copy of ``local_path`` and its fingerprint."""
        remote_path = self.mapper.remote_path_for(local_path)
        await self._remove_remote(self.session.remove, remote_path)

        await self.store.delete(local_path)
        result.removed_files.append(remote_path)
        self.status.count += 1
        self._heartbeat()
        self.logger.debug("Removed remote file", remote=remote_path)

        local_dir = os.path.dirname(local_path)
        if not await self._exists(local_dir) or self.exclusions.is_excluded(root, local_dir):
            await self.queue_dir(local_dir, root)

    async def _remove_remote(self, action, remote_path: str) -> None:
        """Run ``action(remote_path)``, reconnecting on connection errors.

        A missing remote entry counts as removed. Fatal replies raise
        ``FatalTransferError``; anything else raises ``PurgeError``.
        """
        reconnect = False
        for attempt in range(1, self.max_remove_attempts + 1):
            try:
                if reconnect:
                    await self._reconnect()
                    reconnect = False
                await action(remote_path)
                return
            except SyncEngineError:
                raise
            except Exception as e:
                if self._stopped:
                    raise TransferStopped() from e
                if isinstance(e, ProtocolError) and e.is_not_found:
                    return
                kind = classify_error(e)
                if kind is ErrorClass.STOP:
                    raise
                if kind is ErrorClass.FATAL:
                    raise to_fatal(e) from e
                if kind not in (ErrorClass.RETRY, ErrorClass.RETRY_RECONNECT):
                    raise PurgeError(f"Failed to remove {remote_path}: {e}") from e
                self.logger.warning("Remove failed, reconnecting", remote=remote_path, attempt=attempt, error=str(e))
                reconnect = True
        raise PurgeError(f"Failed to remove {remote_path} after {self.max_remove_attempts} attempts")

    async def queue_dir(self, local_dir: str, root: str) -> None:
        """Queue ``local_dir`` and every vanished ancestor below ``root``."""
        current = local_dir
        hops = 0
        while os.path.normcase(current) != os.path.normcase(root):
            if not self.mapper.is_under(current, root):
                raise PurgeConsistencyError(f"Directory outside root {root}: {current}")
            remote_dir = self.mapper.remote_dir_for(current)
            self.dir_queue.setdefault(remote_dir, current)

            hops += 1
            if hops > self.max_ascent:
                raise PurgeConsistencyError(f"Ancestor walk did not reach root {root}: {local_dir}")
            parent = os.path.dirname(current)
            if parent == current:
                raise PurgeConsistencyError(f"Ancestor walk did not reach root {root}: {local_dir}")
            if await self._exists(parent) and not self.exclusions.is_excluded(root, parent):
                break
            current = parent

    async def purge_dirs(self, result: PurgeResult) -> None:
        """Remove queued remote directories, deepest first."""
        for remote_dir in sorted(self.dir_queue, key=lambda p: (p.count("/"), p), reverse=True):
            if self._stopped:
                raise TransferStopped()
            await self._remove_remote(self.session.remove_dir, remote_dir)
            result.removed_dirs.append(remote_dir)
            self.logger.debug("Removed remote directory", remote=remote_dir)
        self.dir_queue = {}
