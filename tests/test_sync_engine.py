"""Tests for the sync engine transfer loop."""

import errno
import os

import pytest

from conftest import write_file
from ftpsync.core import FatalTransferError, LoopState, Resume, RootMapper, SyncEngine
from ftpsync.index import ChangeIndex
from ftpsync.status import FileErrorKind
from ftpsync.transfer import ProtocolError


MTIME = 1_700_000_000


async def scan(store, root, **kwargs) -> ChangeIndex:
    index = ChangeIndex(store, **kwargs)
    await index.scan_all([root])
    return index


def make_engine(session, index, root, **kwargs) -> SyncEngine:
    kwargs.setdefault("retry_delay_seconds", 0)
    return SyncEngine(session, index, RootMapper("/remote", [root]), **kwargs)


@pytest.fixture
def two_files(data_root):
    a = write_file(os.path.join(data_root, "a.txt"), 100, mtime=MTIME)
    b = write_file(os.path.join(data_root, "sub", "b.txt"), 50, mtime=MTIME + 60)
    return a, b


class TestUpload:
    """Plain uploads."""

    @pytest.mark.asyncio
    async def test_uploads_files_and_commits_fingerprints(self, session, store, data_root, two_files):
        a, b = two_files
        index = await scan(store, data_root)
        engine = make_engine(session, index, data_root)

        state = await engine.sync()

        assert state is LoopState.DONE
        assert session.files["/remote/a.txt"] == b"x" * 100
        assert session.files["/remote/sub/b.txt"] == b"x" * 50
        assert session.mtimes["/remote/a.txt"] == MTIME
        assert session.mtimes["/remote/sub/b.txt"] == MTIME + 60
        assert engine.status.total_size_uploaded == 150
        assert not store.is_open
        assert not session.connected

        store.open()
        assert (await store.get(a)).size == 100
        assert (await store.get(b)).size == 50

    @pytest.mark.asyncio
    async def test_remote_directories_created_once(self, session, store, data_root):
        for name in ("one.txt", "two.txt", "three.txt"):
            write_file(os.path.join(data_root, "sub", name), 1)
        index = await scan(store, data_root)
        engine = make_engine(session, index, data_root)

        await engine.sync()

        assert session.ops("make_dir") == [("make_dir", "remote"), ("make_dir", "sub")]
        assert {"/remote", "/remote/sub"} <= engine.dir_cache

    @pytest.mark.asyncio
    async def test_empty_change_list_does_not_connect(self, session, store, data_root, observer):
        index = await scan(store, data_root)
        engine = make_engine(session, index, data_root, observer=observer)

        assert await engine.sync() is LoopState.DONE
        assert session.connect_count == 0
        assert observer.names() == ["sync_start"]

    @pytest.mark.asyncio
    async def test_progress_and_file_done_events(self, session, store, data_root, two_files, observer):
        index = await scan(store, data_root)
        engine = make_engine(session, index, data_root, observer=observer)

        await engine.sync()

        done = [payload for name, payload in observer.events if name == "file_done"]
        assert done == list(two_files)
        progress = [payload for name, payload in observer.events if name == "progress"]
        assert progress and progress[-1] == 150
        start = observer.events[0][1]
        assert start.total_files == 2
        assert start.total_size == 150

    @pytest.mark.asyncio
    async def test_unreadable_file_is_reported_and_still_attempted(self, session, store, data_root, observer):
        path = write_file(os.path.join(data_root, "a.txt"), 1)
        index = await scan(store, data_root, observer=observer)
        index.has_access = lambda p: False
        engine = make_engine(session, index, data_root, observer=observer)

        await engine.sync()

        assert ("access_error", path) in observer.events
        assert "/remote/a.txt" in session.files


class TestForceCheck:
    """Remote modify time verification."""

    @pytest.mark.asyncio
    async def test_fresh_index_enables_remote_check(self, session, store, data_root, two_files):
        session.add_remote_file("/remote/a.txt", b"x" * 100, mtime=MTIME)
        index = await scan(store, data_root)
        engine = make_engine(session, index, data_root)

        await engine.sync()

        assert engine.force_check
        assert [c[1] for c in session.ops("upload_from")] == [two_files[1]]
        assert engine.status.skipped_size == 100
        store.open()
        assert await store.get(two_files[0]) is not None

    @pytest.mark.asyncio
    async def test_unchanged_file_still_gets_remote_modify_time(self, session, store, data_root, two_files):
        a, _ = two_files
        session.add_remote_file("/remote/a.txt", b"x" * 100, mtime=MTIME)
        index = await scan(store, data_root)
        engine = make_engine(session, index, data_root, force_check=True)

        await engine.sync()

        assert ("set_modify_time", "/remote/a.txt", os.stat(a).st_mtime_ns / 1_000_000) in session.ops("set_modify_time")
        assert "/remote/a.txt" not in [c[2] for c in session.ops("upload_from")]

    @pytest.mark.asyncio
    async def test_existing_index_skips_remote_check(self, session, store, data_root, two_files):
        a, b = two_files
        first = await scan(store, data_root)
        first.open_store()
        await first.update_stats(b, first.change_list[1].stats)
        first.close_store()

        index = await scan(store, data_root)
        engine = make_engine(session, index, data_root)
        await engine.sync()

        assert not engine.force_check
        assert session.ops("get_modify_time") == []
        assert [c[1] for c in session.ops("upload_from")] == [a]

    @pytest.mark.asyncio
    async def test_remote_mtime_mismatch_uploads(self, session, store, data_root, two_files):
        session.add_remote_file("/remote/a.txt", b"old", mtime=MTIME - 1)
        index = await scan(store, data_root)
        engine = make_engine(session, index, data_root, force_check=True)

        await engine.sync()

        assert session.files["/remote/a.txt"] == b"x" * 100


class TestResume:
    """Resumable uploads."""

    @pytest.mark.asyncio
    async def test_appends_when_local_not_newer(self, session, store, data_root):
        path = write_file(os.path.join(data_root, "big.bin"), 100, mtime=MTIME)
        session.add_remote_file("/remote/big.bin", b"x" * 40, mtime=MTIME + 5)
        index = await scan(store, data_root)
        engine = make_engine(session, index, data_root, resume_files=[path])

        await engine.sync()

        assert session.ops("append_from") == [("append_from", "/remote/big.bin", 40)]
        assert session.ops("upload_from") == []
        assert session.files["/remote/big.bin"] == b"x" * 100
        assert session.mtimes["/remote/big.bin"] == MTIME
        assert engine.status.skipped_size == 40
        assert path not in engine.resume_files

    @pytest.mark.asyncio
    async def test_full_upload_when_local_newer(self, session, store, data_root):
        path = write_file(os.path.join(data_root, "big.bin"), 100, mtime=MTIME)
        session.add_remote_file("/remote/big.bin", b"x" * 40, mtime=MTIME - 5)
        index = await scan(store, data_root)
        engine = make_engine(session, index, data_root, resume_files=[path])

        await engine.sync()

        assert session.ops("append_from") == []
        assert [c[1] for c in session.ops("upload_from")] == [path]
        assert session.files["/remote/big.bin"] == b"x" * 100

    @pytest.mark.asyncio
    async def test_missing_remote_falls_back_to_full_upload(self, session, store, data_root):
        path = write_file(os.path.join(data_root, "big.bin"), 100, mtime=MTIME)
        index = await scan(store, data_root)
        engine = make_engine(session, index, data_root, resume_files=[path])

        await engine.sync()

        assert session.ops("append_from") == []
        assert session.files["/remote/big.bin"] == b"x" * 100


class TestErrorHandling:
    """Classified failures in the transfer loop."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error, kind", [
        (FileNotFoundError(errno.ENOENT, "gone"), FileErrorKind.REMOVED),
        (OSError(errno.EBUSY, "busy"), FileErrorKind.LOCKED),
        (PermissionError(errno.EPERM, "denied"), FileErrorKind.PERMISSION),
    ])
    async def test_local_errors_skip_file(self, session, store, data_root, two_files, observer, error, kind):
        a, b = two_files
        session.fail("upload_from", error)
        index = await scan(store, data_root, observer=observer)
        engine = make_engine(session, index, data_root, observer=observer)

        assert await engine.sync() is LoopState.DONE

        assert [(e.path, e.kind) for e in index.file_errors] == [(a, kind)]
        assert ("file_error", (kind, a)) in observer.events
        assert "/remote/sub/b.txt" in session.files
        assert engine.status.skipped_size == 100
        store.open()
        assert await store.get(a) is None

    @pytest.mark.asyncio
    async def test_unknown_error_skips_without_skipped_bytes(self, session, store, data_root, two_files):
        session.fail("upload_from", ProtocolError(553, "Bad file name"))
        index = await scan(store, data_root)
        engine = make_engine(session, index, data_root)

        await engine.sync()

        assert [e.kind for e in index.file_errors] == [FileErrorKind.ERROR]
        assert engine.status.skipped_size == 0

    @pytest.mark.asyncio
    async def test_connection_reset_reconnects_and_retries(self, session, store, data_root, two_files):
        session.fail("upload_from", ConnectionResetError("reset"))
        index = await scan(store, data_root)
        engine = make_engine(session, index, data_root)

        assert await engine.sync() is LoopState.DONE

        assert session.connect_count == 2
        assert session.files["/remote/a.txt"] == b"x" * 100
        assert index.file_errors == []

    @pytest.mark.asyncio
    async def test_progress_total_keeps_growing_across_reconnect(self, session, store, data_root, two_files, observer):
        a, _ = two_files

        def drop_connection_once(path):
            if path == a:
                session.fail("upload_from", ConnectionResetError("reset"))

        session.on_upload = drop_connection_once
        index = await scan(store, data_root)
        engine = make_engine(session, index, data_root, observer=observer)

        assert await engine.sync() is LoopState.DONE

        assert session.connect_count == 2
        progress = [payload for name, payload in observer.events if name == "progress"]
        assert progress == [100, 150]

    @pytest.mark.asyncio
    async def test_service_unavailable_retries_without_reconnect(self, session, store, data_root, two_files):
        session.fail("upload_from", ProtocolError(425, "Can't open data connection"))
        index = await scan(store, data_root)
        engine = make_engine(session, index, data_root)

        assert await engine.sync() is LoopState.DONE

        assert session.connect_count == 1
        assert len(session.ops("upload_from")) == 3

    @pytest.mark.asyncio
    async def test_retries_are_bounded_per_file(self, session, store, data_root, two_files):
        session.fail("upload_from", *[ConnectionResetError("reset") for _ in range(3)])
        index = await scan(store, data_root)
        engine = make_engine(session, index, data_root, max_retries_per_file=2)

        with pytest.raises(FatalTransferError) as exc_info:
            await engine.sync()

        assert exc_info.value.kind == "retries_exhausted"
        assert not store.is_open

    @pytest.mark.asyncio
    async def test_auth_failure_is_fatal(self, session, store, data_root, two_files):
        session.fail("upload_from", ProtocolError(530, "Not logged in"))
        index = await scan(store, data_root)
        engine = make_engine(session, index, data_root)

        with pytest.raises(FatalTransferError) as exc_info:
            await engine.sync()

        assert exc_info.value.kind == "auth"
        store.open()
        assert await store.get(two_files[0]) is None

    @pytest.mark.asyncio
    async def test_login_failure_is_fatal(self, session, store, data_root, two_files):
        session.fail("connect", ProtocolError(530, "Login incorrect"))
        index = await scan(store, data_root)
        engine = make_engine(session, index, data_root)

        with pytest.raises(FatalTransferError):
            await engine.sync()

    @pytest.mark.asyncio
    async def test_transfer_loop_reports_resume_point(self, session, store, data_root, two_files):
        index = await scan(store, data_root)
        engine = make_engine(session, index, data_root)
        await session.connect()
        index.open_store()
        session.fail("upload_from", ConnectionResetError("reset"))

        outcome = await engine.run_transfer_loop(index.change_list, 0)

        assert outcome == Resume(0, reconnect=True)
        index.close_store()


class TestStop:
    """Cancellation."""

    @pytest.mark.asyncio
    async def test_stop_during_upload_returns_stopped(self, session, store, data_root, two_files):
        a, b = two_files
        index = await scan(store, data_root)
        engine = make_engine(session, index, data_root)
        session.on_upload = lambda path: engine.stop()

        assert await engine.sync() is LoopState.STOPPED

        assert len(session.ops("upload_from")) == 1
        assert session.ops("disconnect") == [("disconnect",)]
        store.open()
        assert await store.get(a) is None

    @pytest.mark.asyncio
    async def test_reset_clears_cache_and_flags(self, session, store, data_root, two_files):
        index = await scan(store, data_root)
        engine = make_engine(session, index, data_root)
        await engine.sync()
        engine.stop()

        engine.reset()

        assert engine.dir_cache == set()
        assert not engine.stopped
        assert engine.status.total_size_uploaded == 0
