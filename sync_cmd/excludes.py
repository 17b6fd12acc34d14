"""Exclude pattern lists."""

import fnmatch
from pathlib import Path
from typing import List, Optional

from sync_cmd.logging_setup import get_logger

logger = get_logger()


class ExcludeListError(Exception):
    """Raised when no exclude list could be loaded."""

    pass


class ExcludePatternSet:
    """Glob patterns that keep paths out of the sync.

    A pattern ending in '/' only matches directories. A leading ']' marks
    an entry the engine may remove on the remote side; it is not part of
    the pattern itself. Patterns without '/' match any path component,
    patterns with one match the whole relative path.
    """

    def __init__(self, patterns: Optional[List[str]] = None):
        self.patterns: List[str] = []
        self.sources: List[str] = []
        for pattern in patterns or []:
            self.add(pattern)

    def add(self, pattern: str) -> None:
        pattern = pattern.strip()
        if pattern and not pattern.startswith("#"):
            self.patterns.append(pattern)

    def load_file(self, path: str) -> bool:
        """Add the patterns of one exclude file.

        Returns:
            True if the file was read
        """
        try:
            text = Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not load exclude list {path}: {e}")
            return False

        before = len(self.patterns)
        for line in text.splitlines():
            self.add(line)
        self.sources.append(path)
        logger.info(f"Loaded {len(self.patterns) - before} exclude patterns from {path}")
        return True

    def is_excluded(self, relative_path: str, is_dir: bool = False) -> bool:
        """Check a '/'-separated path relative to the sync root."""
        relative_path = relative_path.strip("/")
        parts = relative_path.split("/")

        for raw in self.patterns:
            pattern = raw[1:] if raw.startswith("]") else raw
            dir_only = pattern.endswith("/")
            pattern = pattern.rstrip("/")
            if not pattern:
                continue

            if "/" in pattern:
                if dir_only and not is_dir:
                    continue
                if fnmatch.fnmatchcase(relative_path, pattern.lstrip("/")):
                    return True
                continue

            # Only the last component is subject to the directory restriction
            for index, part in enumerate(parts):
                last = index == len(parts) - 1
                if dir_only and last and not is_dir:
                    continue
                if fnmatch.fnmatchcase(part, pattern):
                    return True
        return False

    def __len__(self) -> int:
        return len(self.patterns)


def load_exclude_lists(system_file: Optional[str], user_file: Optional[str]) -> ExcludePatternSet:
    """Load the system exclude list and the one given with --exclude.

    Raises:
        ExcludeListError: If neither list could be loaded
    """
    patterns = ExcludePatternSet()

    loaded_system = bool(system_file) and patterns.load_file(system_file)
    loaded_user = bool(user_file) and patterns.load_file(user_file)

    if not loaded_system and not loaded_user:
        raise ExcludeListError("Cannot load system exclude list or list supplied via --exclude")

    return patterns
