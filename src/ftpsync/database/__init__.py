"""Database package for the fingerprint index."""

from .database import DatabaseManager

from .models import (
    Base,
    FileIndexModel,
    FileFingerprint
)

from .store import (
    FingerprintStore,
    StoreNotOpenError
)

__all__ = [
    "DatabaseManager",

    "Base",
    "FileIndexModel",
    "FileFingerprint",

    "FingerprintStore",
    "StoreNotOpenError"
]
