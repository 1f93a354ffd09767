"""Directory exclusion rules."""

import os
import re
from typing import Iterable, List, Optional, Pattern, Tuple

from ..config.schema import ExclusionRule


def _is_drive_root(path: str) -> bool:
    return os.name == "nt" and len(path) == 3


class ExclusionMatcher:
    """Decides whether a directory is excluded from scanning and sync.

    Matching is case-insensitive. A literal rule excludes the directory it
    names and every directory below it, but never the root itself. A regex
    rule excludes every directory it matches anywhere in the path; when the
    rule is an ``absolute_filter`` it only applies if the pattern also
    matches the root path and that match ends exactly at the root boundary.
    """

    def __init__(self, rules: Optional[Iterable[ExclusionRule]] = None):
        self.rules: List[ExclusionRule] = list(rules or [])
        self._compiled: List[Tuple[ExclusionRule, Optional[Pattern[str]], str]] = []
        for rule in self.rules:
            if rule.is_regex:
                self._compiled.append((rule, re.compile(rule.path, re.IGNORECASE), ""))
            else:
                self._compiled.append((rule, None, os.path.normpath(rule.path).lower()))

    def __bool__(self) -> bool:
        return bool(self.rules)

    def is_excluded(self, base_dir: str, directory: str) -> bool:
        """Return True when ``directory`` (under root ``base_dir``) is excluded."""
        lowered = directory.lower()
        for rule, pattern, literal in self._compiled:
            if pattern is not None:
                if not pattern.search(directory):
                    continue
                if not rule.absolute_filter:
                    return True
                root_match = pattern.search(base_dir)
                if (root_match and root_match.end() == len(base_dir)) or _is_drive_root(base_dir):
                    return True
            elif base_dir != directory:
                if lowered == literal or lowered.startswith(literal + os.sep):
                    return True
        return False
