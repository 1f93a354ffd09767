"""Database models for the file fingerprint index."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, String, DateTime, Text
from sqlalchemy.orm import declarative_base
from pydantic import BaseModel, Field


Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# SQLAlchemy Models (Database Tables)

class FileIndexModel(Base):
    """One indexed local file, keyed by its absolute path."""
    
    __tablename__ = "file_index"
    
    path = Column(String(4096), primary_key=True)
    fingerprint = Column(Text, nullable=False)  # serialized FileFingerprint
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)
    
    def __repr__(self):
        return f"<FileIndexModel(path='{self.path}')>"


# Pydantic Models (Serialization)

class FileFingerprint(BaseModel):
    """Change-detection record persisted for each synced file."""
    
    mtime_ms: float = Field(..., description="Modification time in milliseconds")
    size: int = Field(..., ge=0, description="File size in bytes")
    atime_ms: Optional[float] = Field(None, description="Access time in milliseconds")
    
    @classmethod
    def from_stat(cls, stat_result) -> "FileFingerprint":
        """Build a fingerprint from an ``os.stat_result``."""
        return cls(
            mtime_ms=stat_result.st_mtime_ns / 1_000_000,
            size=stat_result.st_size,
            atime_ms=stat_result.st_atime_ns / 1_000_000,
        )
    
    @property
    def mtime_seconds(self) -> int:
        """Modification time truncated to whole seconds."""
        return int(self.mtime_ms // 1000)
