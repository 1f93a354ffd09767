"""Persistent key-value store of file fingerprints."""

import asyncio
import functools
from typing import AsyncIterator, List, Optional

from pydantic import ValidationError

from .database import DatabaseManager
from .models import FileIndexModel, FileFingerprint
from ..utils.logging import get_logger


class StoreNotOpenError(RuntimeError):
    """Raised when the fingerprint store is used while closed."""
    pass


class FingerprintStore:
    """Ordered key-value store mapping absolute local paths to fingerprints.

    The store is opened and closed explicitly by whichever phase (scan, sync,
    purge) currently owns it. Opening an already open store is a no-op.
    Queries run on the default executor.
    """

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url
        self.logger = get_logger(self.__class__.__name__)
        self._manager: Optional[DatabaseManager] = None

    @property
    def is_open(self) -> bool:
        return self._manager is not None

    def open(self) -> None:
        if self._manager is not None:
            return
        manager = DatabaseManager(self.database_url)
        manager.create_tables()
        self._manager = manager
        self.logger.debug("Fingerprint store opened", database_url=manager.database_url)

    def close(self) -> None:
        if self._manager is None:
            return
        self._manager.close()
        self._manager = None
        self.logger.debug("Fingerprint store closed")

    def _require_open(self) -> DatabaseManager:
        if self._manager is None:
            raise StoreNotOpenError("Database is not open")
        return self._manager

    async def _run(self, func, *args):
        manager = self._require_open()
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, manager, *args))

    @staticmethod
    def _read(manager: DatabaseManager, key: str) -> Optional[str]:
        with manager.session_scope() as session:
            record = session.get(FileIndexModel, key)
            return None if record is None else record.fingerprint

    @staticmethod
    def _write(manager: DatabaseManager, key: str, value: str) -> None:
        with manager.session_scope() as session:
            session.merge(FileIndexModel(path=key, fingerprint=value))

    @staticmethod
    def _remove(manager: DatabaseManager, key: str) -> None:
        with manager.session_scope() as session:
            session.query(FileIndexModel).filter(FileIndexModel.path == key).delete()

    @staticmethod
    def _keys(manager: DatabaseManager) -> List[str]:
        with manager.session_scope() as session:
            return [row[0] for row in session.query(FileIndexModel.path).order_by(FileIndexModel.path)]

    @staticmethod
    def _count(manager: DatabaseManager) -> int:
        with manager.session_scope() as session:
            return session.query(FileIndexModel).count()

    async def get(self, key: str) -> Optional[FileFingerprint]:
        """Return the fingerprint stored for ``key`` or None."""
        value = await self._run(self._read, key)
        if value is None:
            return None
        try:
            return FileFingerprint.model_validate_json(value)
        except ValidationError:
            self.logger.warning("Discarding unreadable fingerprint", path=key)
            return None

    async def put(self, key: str, fingerprint: FileFingerprint) -> None:
        await self._run(self._write, key, fingerprint.model_dump_json())

    async def delete(self, key: str) -> None:
        await self._run(self._remove, key)

    async def scan_keys(self) -> AsyncIterator[str]:
        """Yield every key in ascending order.

        Keys are read into a snapshot first, so deleting entries while
        iterating does not disturb the enumeration.
        """
        keys = await self._run(self._keys)
        for key in keys:
            yield key

    async def count(self) -> int:
        return await self._run(self._count)
