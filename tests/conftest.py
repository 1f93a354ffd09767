"""Shared fixtures: an in-memory transfer session and a file-backed store."""

import os
import posixpath
from collections import defaultdict
from typing import Dict, List, Set

import pytest

from ftpsync.database import FingerprintStore
from ftpsync.status import SyncObserver
from ftpsync.transfer.base import BaseTransferSession, ProtocolError, RemoteEntry


class FakeTransferSession(BaseTransferSession):
    """Remote tree kept in dictionaries; every call is recorded.

    ``fail(op, *errors)`` queues exceptions raised by the next calls of
    ``op`` before the call has any effect.
    """

    def __init__(self):
        super().__init__("ftp.example.com", "tester", "secret", secure=False)
        self.files: Dict[str, bytes] = {}
        self.mtimes: Dict[str, int] = {}
        self.dirs: Set[str] = {"/"}
        self.calls: List[tuple] = []
        self.failures: Dict[str, list] = defaultdict(list)
        self.connected = False
        self.connect_count = 0
        self.cwd = "/"
        self.on_upload = None

    def fail(self, op: str, *errors: BaseException) -> None:
        self.failures[op].extend(errors)

    def ops(self, name: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == name]

    def _call(self, op: str, *args) -> None:
        self.calls.append((op,) + args)
        if self.failures[op]:
            raise self.failures[op].pop(0)
        if op != "connect" and not self.connected:
            raise ConnectionAbortedError("not connected")

    def _require_parent(self, path: str) -> None:
        if posixpath.dirname(path) not in self.dirs:
            raise ProtocolError(553, "Parent directory does not exist")

    async def connect(self) -> None:
        self._call("connect")
        self.connected = True
        self.connect_count += 1

    def disconnect(self) -> None:
        self.calls.append(("disconnect",))
        self.connected = False

    async def change_dir(self, path: str) -> None:
        self._call("change_dir", path)
        if path not in self.dirs:
            raise ProtocolError(550, "No such directory")
        self.cwd = path

    async def make_dir(self, name: str) -> None:
        self._call("make_dir", name)
        self.dirs.add(posixpath.join(self.cwd, name))

    async def list(self, path: str) -> List[RemoteEntry]:
        self._call("list", path)
        if path not in self.dirs:
            raise ProtocolError(550, "No such directory")
        entries = []
        for file_path, data in sorted(self.files.items()):
            if posixpath.dirname(file_path) == path:
                entries.append(RemoteEntry(name=posixpath.basename(file_path), type="file", size=len(data)))
        for dir_path in sorted(self.dirs):
            if dir_path != path and posixpath.dirname(dir_path) == path:
                entries.append(RemoteEntry(name=posixpath.basename(dir_path), type="dir"))
        return entries

    async def upload_from(self, local_path: str, remote_path: str) -> None:
        self._call("upload_from", local_path, remote_path)
        self._require_parent(remote_path)
        with open(local_path, "rb") as source:
            data = source.read()
        if self.on_upload is not None:
            self.on_upload(local_path)
        self.files[remote_path] = data
        self._notify_progress(remote_path, "upload", len(data), len(data))

    async def append_from(self, source, remote_path: str) -> None:
        self._call("append_from", remote_path, source.tell())
        data = source.read()
        self.files[remote_path] = self.files.get(remote_path, b"") + data
        self._notify_progress(remote_path, "append", len(data), len(data))

    async def remove(self, remote_path: str) -> None:
        self._call("remove", remote_path)
        if remote_path not in self.files:
            raise ProtocolError(550, "No such file")
        del self.files[remote_path]
        self.mtimes.pop(remote_path, None)

    async def remove_dir(self, remote_path: str) -> None:
        self._call("remove_dir", remote_path)
        if remote_path not in self.dirs:
            raise ProtocolError(550, "No such directory")
        prefix = remote_path.rstrip("/") + "/"
        if any(p.startswith(prefix) for p in list(self.files) + list(self.dirs)):
            raise ProtocolError(550, "Directory not empty")
        self.dirs.discard(remote_path)

    async def size(self, remote_path: str) -> int:
        self._call("size", remote_path)
        if remote_path not in self.files:
            raise ProtocolError(550, "No such file")
        return len(self.files[remote_path])

    async def get_modify_time(self, remote_path: str) -> int:
        self._call("get_modify_time", remote_path)
        if remote_path not in self.files:
            raise ProtocolError(550, "No such file")
        return self.mtimes.get(remote_path, 0)

    async def set_modify_time(self, remote_path: str, mtime_ms: float) -> None:
        self._call("set_modify_time", remote_path, mtime_ms)
        if remote_path not in self.files:
            raise ProtocolError(550, "No such file")
        self.mtimes[remote_path] = int(mtime_ms // 1000)

    def add_remote_file(self, remote_path: str, data: bytes, mtime: int = 0) -> None:
        parts = [p for p in posixpath.dirname(remote_path).split("/") if p]
        current = "/"
        for part in parts:
            current = posixpath.join(current, part)
            self.dirs.add(current)
        self.files[remote_path] = data
        self.mtimes[remote_path] = mtime


class RecordingObserver(SyncObserver):
    """Collects every event as ``(hook, payload)``."""

    def __init__(self):
        self.events: List[tuple] = []

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def on_scan_progress(self, files):
        self.events.append(("scan_progress", files))

    def on_sync_start(self, info):
        self.events.append(("sync_start", info))

    def on_progress(self, status):
        self.events.append(("progress", status.bytes_overall))

    def on_file_done(self, status):
        self.events.append(("file_done", status.current.full_path))

    def on_file_error(self, kind, path):
        self.events.append(("file_error", (kind, path)))

    def on_access_error(self, path):
        self.events.append(("access_error", path))

    def on_purge_progress(self, status):
        self.events.append(("purge_progress", status.count))


def write_file(path, size: int, mtime: float = None) -> str:
    """Create ``path`` with ``size`` bytes and an optional mtime in seconds."""
    path = str(path)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(b"x" * size)
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


@pytest.fixture
def session():
    return FakeTransferSession()


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def store(tmp_path):
    store = FingerprintStore(f"sqlite:///{tmp_path / 'index' / 'file_index.db'}")
    yield store
    store.close()


@pytest.fixture
def data_root(tmp_path):
    root = tmp_path / "data"
    root.mkdir()
    return str(root)
