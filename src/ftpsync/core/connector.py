"""Main connector orchestrating one scan, sync and purge run."""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from .errors import LoopState
from .paths import RootMapper
from .purge import PurgeReconciler
from .sync_engine import SyncEngine
from ..config.schema import PurgeMode, SyncConfig
from ..config.settings import AppSettings, get_settings
from ..database import FingerprintStore
from ..index import ChangeIndex, ExclusionMatcher
from ..status import FileError, PurgeResult, SyncObserver
from ..transfer.base import BaseTransferSession
from ..utils.logging import get_logger, log_async_execution_time


@dataclass
class RunResult:
    """Result of a connector run."""

    state: LoopState
    changed_files: int = 0
    changed_size: int = 0
    uploaded_size: int = 0
    file_errors: List[FileError] = field(default_factory=list)
    index_purge: Optional[PurgeResult] = None
    listing_purge: Optional[PurgeResult] = None

    @property
    def stopped(self) -> bool:
        return self.state is LoopState.STOPPED


class FileSyncConnector:
    """Runs scan → sync → purge for one sync configuration.

    The fingerprint store is handed from phase to phase; each phase opens it
    and closes it again before the next one starts.
    """

    def __init__(
        self,
        config: SyncConfig,
        session: BaseTransferSession,
        store: FingerprintStore,
        observer: Optional[SyncObserver] = None,
        settings: Optional[AppSettings] = None
    ):
        settings = settings or get_settings()
        self.config = config
        self.session = session
        self.store = store
        self.observer = observer or SyncObserver()
        self.logger = get_logger(self.__class__.__name__)

        self.mapper = RootMapper(config.remote_path, config.roots)
        self.exclusions = ExclusionMatcher(config.exclude_dirs)
        self.index = ChangeIndex(
            store,
            exclusions=self.exclusions,
            end_files=[os.path.normpath(p) for p in config.end_files],
            blocked_files=[os.path.normpath(p) for p in config.blocked_files],
            observer=self.observer
        )
        self.engine = SyncEngine(
            session,
            self.index,
            self.mapper,
            observer=self.observer,
            resume_files=[os.path.normpath(p) for p in config.resume_files],
            force_check=config.force_remote_check,
            max_retries_per_file=settings.retry.max_retries_per_file,
            retry_delay_seconds=settings.retry.delay_seconds
        )
        self.reconciler = PurgeReconciler(
            session,
            store,
            self.mapper,
            exclusions=self.exclusions,
            observer=self.observer
        )
        self._stopped = False

        self.logger.info(
            "File sync connector initialized",
            roots=self.mapper.roots,
            remote_path=self.mapper.remote_base,
            purge=config.purge.value
        )

    def stop(self) -> None:
        """Stop the running phase as soon as possible."""
        self._stopped = True
        self.index.stop()
        self.engine.stop()
        self.reconciler.stop()

    @log_async_execution_time
    async def run(self, purge: Optional[PurgeMode] = None) -> RunResult:
        mode = purge or self.config.purge
        self._stopped = False
        self.index.reset()
        self.engine.reset()
        self.mapper.validate_roots()

        change_list = await self.index.scan_all(self.mapper.roots)
        result = RunResult(
            state=LoopState.DONE,
            changed_files=len(change_list),
            changed_size=self.index.total_file_size
        )
        if self._stopped:
            result.state = LoopState.STOPPED
            return result

        result.state = await self.engine.sync(change_list)
        result.uploaded_size = self.engine.status.total_size_uploaded
        result.file_errors = list(self.index.file_errors)
        if result.stopped or self._stopped:
            result.state = LoopState.STOPPED
            return result

        total = self.index.stats.files
        if mode.includes_index:
            result.index_purge = await self.reconciler.purge_index(total)
        if mode.includes_listing and not self._stopped:
            result.listing_purge = await self.reconciler.purge_listing(total)
        if self._stopped:
            result.state = LoopState.STOPPED
        return result

    def close(self) -> None:
        self.engine.reset()
        self.store.close()
