"""Engine errors and classification of transfer failures."""

import errno
import socket
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from ..transfer.base import ProtocolError, TransferStopped


# Reply codes
SERVICE_NOT_AVAILABLE_CODE = 425
CONNECTION_ERROR_CODES = {421, 426, 434}
AUTH_ERROR_CODES = {331, 332, 430, 530, 532}
STORAGE_FULL_CODE = 452

# ERROR_SHARING_VIOLATION / ERROR_LOCK_VIOLATION
_WINDOWS_LOCK_ERRORS = {32, 33}


class SyncEngineError(Exception):
    """Base class for errors that abort a sync or purge phase."""
    pass


class FatalTransferError(SyncEngineError):
    """Raised when a transfer error cannot be recovered by retrying."""

    def __init__(self, message: str, kind: str = "connection", code: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.code = code


class RootMissingError(SyncEngineError):
    """Raised when a registered root directory does not exist."""

    def __init__(self, root: str, candidates: Optional[List[str]] = None):
        super().__init__(f"Path does not exist: {root}")
        self.root = root
        self.candidates = candidates or []


class PurgeError(SyncEngineError):
    """Raised when a purge pass cannot complete."""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class PurgeConsistencyError(PurgeError):
    """Raised when ancestor pruning does not reach a root boundary."""
    pass


class ErrorClass(str, Enum):
    """How a failed transfer step is handled."""
    RETRY_RECONNECT = "retry_reconnect"
    RETRY = "retry"
    REMOVED = "removed"
    LOCKED = "locked"
    PERMISSION = "permission"
    STOP = "stop"
    FATAL = "fatal"
    ERROR = "error"


class LoopState(Enum):
    """Terminal results of a transfer loop pass."""
    DONE = "done"
    STOPPED = "stopped"


@dataclass(frozen=True)
class Resume:
    """Restart the transfer loop at ``index``."""

    index: int
    reconnect: bool = True


def fatal_kind(error: BaseException) -> Optional[str]:
    """Return the fatal category of ``error`` or None if it is not fatal."""
    if isinstance(error, ProtocolError):
        if error.code in AUTH_ERROR_CODES:
            return "auth"
        if error.code == STORAGE_FULL_CODE:
            return "storage_full"
        if error.code in CONNECTION_ERROR_CODES:
            return "connection"
        return None
    if isinstance(error, (socket.gaierror, TimeoutError, ConnectionRefusedError)):
        return "connection"
    return None


def _is_locked(error: OSError) -> bool:
    return error.errno == errno.EBUSY or getattr(error, "winerror", None) in _WINDOWS_LOCK_ERRORS


def classify_error(error: BaseException) -> ErrorClass:
    """Map an exception raised while transferring one file to its handling."""
    if isinstance(error, TransferStopped):
        return ErrorClass.STOP
    if isinstance(error, (ConnectionResetError, ConnectionAbortedError, BrokenPipeError)):
        return ErrorClass.RETRY_RECONNECT
    if isinstance(error, ProtocolError) and error.code == SERVICE_NOT_AVAILABLE_CODE:
        return ErrorClass.RETRY
    if fatal_kind(error) is not None:
        return ErrorClass.FATAL
    if isinstance(error, FileNotFoundError):
        return ErrorClass.REMOVED
    if isinstance(error, PermissionError):
        return ErrorClass.PERMISSION
    if isinstance(error, OSError) and _is_locked(error):
        return ErrorClass.LOCKED
    return ErrorClass.ERROR


def to_fatal(error: BaseException) -> FatalTransferError:
    kind = fatal_kind(error) or "connection"
    code = error.code if isinstance(error, ProtocolError) else None
    return FatalTransferError(f"Fatal {kind} error: {error}", kind=kind, code=code)
