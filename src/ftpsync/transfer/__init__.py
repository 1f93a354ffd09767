"""Transfer session package for remote servers."""

from .base import (
    BaseTransferSession,
    RemoteEntry,
    ProgressInfo,
    TransferError,
    ProtocolError,
    TransferStopped,
    NOT_FOUND_CODE
)

from .timestamps import format_modify_time, parse_modify_time
from .ftp import FTPSession

__all__ = [
    "BaseTransferSession",
    "RemoteEntry",
    "ProgressInfo",
    "TransferError",
    "ProtocolError",
    "TransferStopped",
    "NOT_FOUND_CODE",

    "format_modify_time",
    "parse_modify_time",

    "FTPSession"
]
