"""Ignore rules for paths that must never be synced.

Patterns use shell-style wildcards (``fnmatch``) with a few gitignore
conventions:

* a pattern without ``/`` matches the name at any depth (``*.tmp``)
* a pattern containing ``/`` matches the whole relative path; a leading
  ``/`` is optional and anchors it to the working copy root (``/build``)
* a trailing ``/`` restricts the pattern to folders (``cache/``)
* lines starting with ``#`` are comments

Everything below an ignored folder is ignored as well.
"""

import fnmatch
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..config import IGNORE_FILE_NAME, METADATA_DIR_NAME, PARTIAL_SUFFIX

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IgnoreRule:
    """A single parsed ignore pattern."""

    pattern: str
    dir_only: bool = False
    anchored: bool = False

    @classmethod
    def parse(cls, line: str) -> Optional["IgnoreRule"]:
        line = line.strip()
        if not line or line.startswith("#"):
            return None
        dir_only = line.endswith("/")
        line = line.rstrip("/")
        anchored = "/" in line
        return cls(pattern=line.lstrip("/"), dir_only=dir_only, anchored=anchored)

    def matches(self, path: str, is_dir: bool) -> bool:
        if self.dir_only and not is_dir:
            return False
        if self.anchored:
            return fnmatch.fnmatchcase(path, self.pattern)
        return fnmatch.fnmatchcase(path.rpartition("/")[2], self.pattern)


class IgnoreRules:
    """Decides whether a relative path is excluded from syncing."""

    def __init__(self, patterns: Optional[list[str]] = None):
        self.rules: list[IgnoreRule] = []
        for pattern in patterns or []:
            self.add(pattern)

    def add(self, pattern: str) -> None:
        rule = IgnoreRule.parse(pattern)
        if rule is not None:
            self.rules.append(rule)

    @classmethod
    def for_working_copy(
        cls, root: Path, patterns: Optional[list[str]] = None
    ) -> "IgnoreRules":
        """Combine CLI patterns with the working copy's ignore file."""
        rules = cls(patterns)
        ignore_file = root / IGNORE_FILE_NAME
        if ignore_file.is_file():
            try:
                for line in ignore_file.read_text(encoding="utf-8").splitlines():
                    rules.add(line)
            except OSError as e:
                logger.warning(f"Cannot read {ignore_file}: {e}")
        return rules

    def is_ignored(self, path: str, is_dir: bool = False) -> bool:
        """Check a relative path (forward slashes) against all rules.

        The tool's own metadata is always ignored.
        """
        first = path.partition("/")[0]
        if first in (METADATA_DIR_NAME, IGNORE_FILE_NAME):
            return True
        if path.endswith(PARTIAL_SUFFIX):
            return True

        # A path is ignored if it or any of its ancestor folders matches
        parts = path.split("/")
        for depth in range(1, len(parts) + 1):
            candidate = "/".join(parts[:depth])
            candidate_is_dir = is_dir if depth == len(parts) else True
            for rule in self.rules:
                if rule.matches(candidate, candidate_is_dir):
                    return True
        return False
