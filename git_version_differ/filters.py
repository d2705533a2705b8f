"""
Directory-based commit filtering.

A commit passes when it touches the target directory and not every one of its
in-scope files lies under an excluded sub-path. Exclusion only wins when it is
total, so commits with mixed impact are kept.
"""

import logging
from typing import List, Optional, Sequence

from .errors import FileLookupFailed
from .models import FilterCriteria, RawCommit, RepositoryCoordinate

logger = logging.getLogger("git-version-differ.filter")


def _valid_pattern(pattern: str) -> bool:
    # patterns must stay inside the target directory
    return bool(pattern) and not pattern.startswith("/") and "../" not in pattern and pattern != ".."


def should_include(files: Sequence[str], target_dir: Optional[str] = None,
                   exclude_sub_paths: Optional[Sequence[str]] = None) -> bool:
    """
    Decide whether a commit with ``files`` changed is retained.

    Args:
        files: Paths changed by the commit
        target_dir: Directory the commit must touch, if any
        exclude_sub_paths: Sub-paths (relative to target_dir) to exclude

    Returns:
        True if the commit is kept
    """
    patterns = [p.strip() for p in (exclude_sub_paths or ()) if p and p.strip()]
    if not target_dir and not patterns:
        return True

    in_scope = [f for f in files if f.startswith(target_dir)] if target_dir else list(files)
    if target_dir and not in_scope:
        return False
    if not patterns:
        return True
    if not in_scope:
        return False

    valid = [p for p in patterns if _valid_pattern(p)]

    def excluded(path: str) -> bool:
        relative = path[len(target_dir):] if target_dir else path
        relative = relative.lstrip("/")
        return any(relative.startswith(p) for p in valid)

    return not all(excluded(f) for f in in_scope)


class DirectoryFilter:
    """
    Apply ``FilterCriteria`` to commits, fetching file lists on demand.

    Args:
        provider: Object exposing ``get_changed_files(coord, sha)``
        coord: Repository the commits belong to
        criteria: Inclusion/exclusion criteria
        log: Logger to report through
    """

    def __init__(self, provider, coord: RepositoryCoordinate, criteria: FilterCriteria,
                 log: Optional[logging.Logger] = None) -> None:
        self.provider = provider
        self.coord = coord
        self.criteria = criteria
        self.log = log or logger
        self.lookups = 0
        self.lookup_failures = 0

    @property
    def active(self) -> bool:
        return self.criteria.active

    def ensure_files(self, commit: RawCommit) -> Optional[List[str]]:
        """
        Return the commit's changed files, fetching and caching them once.

        On lookup failure the commit is skipped (None) when a target directory
        is required, since inclusion cannot be proven; otherwise it is treated
        as having no files.
        """
        if commit.changed_files is not None:
            return commit.changed_files
        self.lookups += 1
        try:
            commit.changed_files = self.provider.get_changed_files(self.coord, commit.sha)
        except FileLookupFailed as e:
            self.lookup_failures += 1
            self.log.warning("%s", e)
            if self.criteria.target_dir:
                return None
            return []
        return commit.changed_files

    def include(self, commit: RawCommit) -> bool:
        if not self.active:
            return True
        files = self.ensure_files(commit)
        if files is None:
            return False
        return should_include(files, self.criteria.target_dir, self.criteria.exclude_sub_paths)
