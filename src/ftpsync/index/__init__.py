"""Local change detection package."""

from .exclusion import ExclusionMatcher
from .change_index import ChangeIndex, ChangeListEntry, ScanStats

__all__ = [
    "ExclusionMatcher",
    "ChangeIndex",
    "ChangeListEntry",
    "ScanStats"
]
