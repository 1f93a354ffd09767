"""Base transfer session interface and protocol errors."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import BinaryIO, Callable, List, Optional

from ..utils.logging import get_logger


NOT_FOUND_CODE = 550
USER_CLOSED_MESSAGE = "User closed client during task"


@dataclass
class RemoteEntry:
    """One item of a remote directory listing."""

    name: str
    type: str  # "file" or "dir"
    size: Optional[int] = None

    @property
    def is_file(self) -> bool:
        return self.type == "file"

    @property
    def is_dir(self) -> bool:
        return self.type == "dir"


@dataclass
class ProgressInfo:
    """Low-level data movement notification emitted by a session."""

    name: str
    type: str  # "upload", "append" or "list"
    bytes: int
    bytes_overall: int


ProgressHandler = Callable[[ProgressInfo], None]


class BaseTransferSession(ABC):
    """Abstract base class for stateful file-transfer sessions.

    A session wraps exactly one control connection; all calls on it are
    sequential. Implementations translate their library errors into
    ``ProtocolError`` (server replies), ``TransferStopped`` (the session was
    closed while a call was in flight) or the builtin connection errors.
    """

    def __init__(self, host: str, username: str, password: str, secure: bool = True):
        self.host = host
        self.username = username
        self.password = password
        self.secure = secure
        self.logger = get_logger(self.__class__.__name__)
        self._progress_handler: Optional[ProgressHandler] = None
        self._bytes_overall = 0

    def track_progress(self, handler: Optional[ProgressHandler]) -> None:
        """Register (or clear with None) the progress handler."""
        self._progress_handler = handler
        self._bytes_overall = 0

    def _notify_progress(self, name: str, type_: str, transferred: int, delta: int) -> None:
        self._bytes_overall += delta
        if self._progress_handler is not None:
            self._progress_handler(ProgressInfo(
                name=name,
                type=type_,
                bytes=transferred,
                bytes_overall=self._bytes_overall
            ))

    @abstractmethod
    async def connect(self) -> None:
        """Open and authenticate the connection."""
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Close the connection immediately, aborting any call in flight."""
        pass

    @abstractmethod
    async def change_dir(self, path: str) -> None:
        pass

    @abstractmethod
    async def make_dir(self, name: str) -> None:
        """Create a directory, ignoring "already exists" replies."""
        pass

    @abstractmethod
    async def list(self, path: str) -> List[RemoteEntry]:
        pass

    @abstractmethod
    async def upload_from(self, local_path: str, remote_path: str) -> None:
        pass

    @abstractmethod
    async def append_from(self, source: BinaryIO, remote_path: str) -> None:
        """Append everything left in ``source`` to ``remote_path``."""
        pass

    @abstractmethod
    async def remove(self, remote_path: str) -> None:
        pass

    @abstractmethod
    async def remove_dir(self, remote_path: str) -> None:
        pass

    @abstractmethod
    async def size(self, remote_path: str) -> int:
        pass

    @abstractmethod
    async def get_modify_time(self, remote_path: str) -> int:
        """Return the remote modification time in epoch seconds."""
        pass

    @abstractmethod
    async def set_modify_time(self, remote_path: str, mtime_ms: float) -> None:
        pass


class TransferError(Exception):
    """Base class for transfer session errors."""
    pass


class ProtocolError(TransferError):
    """Raised when the server answers with an error reply."""

    def __init__(self, code: int, message: str = ""):
        super().__init__(f"{code} {message}".strip())
        self.code = code
        self.message = message

    @property
    def is_not_found(self) -> bool:
        return self.code == NOT_FOUND_CODE


class TransferStopped(TransferError):
    """Raised by a call that was interrupted because the session was closed."""

    def __init__(self, message: str = USER_CLOSED_MESSAGE):
        super().__init__(message)
