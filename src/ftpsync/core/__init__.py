"""Core sync logic package."""

from .errors import (
    SyncEngineError,
    FatalTransferError,
    RootMissingError,
    PurgeError,
    PurgeConsistencyError,
    ErrorClass,
    LoopState,
    Resume,
    classify_error
)
from .paths import RootMapper
from .sync_engine import SyncEngine
from .purge import PurgeReconciler
from .connector import FileSyncConnector, RunResult

__all__ = [
    "SyncEngineError",
    "FatalTransferError",
    "RootMissingError",
    "PurgeError",
    "PurgeConsistencyError",
    "ErrorClass",
    "LoopState",
    "Resume",
    "classify_error",
    "RootMapper",
    "SyncEngine",
    "PurgeReconciler",
    "FileSyncConnector",
    "RunResult"
]
