"""Configuration schema definitions for sync jobs."""

import re
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class PurgeMode(str, Enum):
    """Which purge strategies run after a sync."""
    NONE = "none"
    INDEX = "index"
    LISTING = "listing"
    BOTH = "both"

    @property
    def includes_index(self) -> bool:
        return self in (PurgeMode.INDEX, PurgeMode.BOTH)

    @property
    def includes_listing(self) -> bool:
        return self in (PurgeMode.LISTING, PurgeMode.BOTH)


class ExclusionRule(BaseModel):
    """A directory exclusion rule.

    Literal rules exclude the directory itself and everything below it.
    Regex rules are matched case-insensitively against the directory path;
    with ``absolute_filter`` the pattern must also match the root path and
    end exactly at the root boundary.
    """

    path: str = Field(..., description="Literal directory path or regular expression")
    is_regex: bool = Field(default=False, description="Treat path as a regular expression")
    absolute_filter: bool = Field(default=False, description="Anchor a regex rule at the root boundary")

    @field_validator('path')
    @classmethod
    def validate_path(cls, v):
        if not v:
            raise ValueError("Exclusion path must not be empty")
        return v

    @field_validator('is_regex')
    @classmethod
    def validate_regex(cls, v, info):
        if v:
            try:
                re.compile(info.data.get('path', ''))
            except re.error as e:
                raise ValueError(f"Invalid exclusion regex: {e}")
        return v


class SyncConfig(BaseModel):
    """Configuration for one sync job."""

    roots: List[str] = Field(..., description="Local directories to upload")
    remote_path: str = Field(default="/", description="Remote base directory")

    exclude_dirs: List[ExclusionRule] = Field(default_factory=list, description="Directory exclusion rules")
    end_files: List[str] = Field(default_factory=list, description="Files uploaded after everything else")
    blocked_files: List[str] = Field(default_factory=list, description="Files never indexed or uploaded")
    resume_files: List[str] = Field(default_factory=list, description="Files whose partial upload may be resumed")

    force_remote_check: bool = Field(default=False, description="Verify remote modify times before uploading")
    purge: PurgeMode = Field(default=PurgeMode.NONE, description="Purge strategy to run after the sync")

    log_level: Optional[str] = Field(default=None, description="Logging level; falls back to LOG_LEVEL")

    @field_validator('roots')
    @classmethod
    def validate_roots(cls, v):
        if not v:
            raise ValueError("At least one root directory is required")
        return v

    @field_validator('remote_path')
    @classmethod
    def validate_remote_path(cls, v):
        if not v.startswith('/'):
            raise ValueError("Remote path must be absolute")
        if len(v) > 1:
            v = v.rstrip('/')
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        if v is None:
            return v
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()
