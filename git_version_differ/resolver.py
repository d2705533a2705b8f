"""
Reference resolution.

Turns a tag name, branch name or commit identifier into a full commit SHA.
"""

import logging
from typing import Optional

from .errors import FetchFailed, ReferenceNotFound
from .models import RepositoryCoordinate

logger = logging.getLogger("git-version-differ.resolver")

# Annotated tags can point at other tags; bound the chain
MAX_TAG_DEPTH = 5


class ReferenceResolver:
    """
    Resolve references against a provider.

    Attempts, in order: the label as a commit identifier, as a tag (following
    annotated tag objects to their commit), and as a branch head. The first
    attempt that succeeds wins.
    """

    def __init__(self, provider, log: Optional[logging.Logger] = None) -> None:
        self.provider = provider
        self.log = log or logger

    def resolve(self, coord: RepositoryCoordinate, label: str) -> str:
        """
        Resolve ``label`` to a commit SHA.

        Raises:
            ReferenceNotFound: If no strategy resolves the label
        """
        for attempt in (self._as_commit, self._as_tag, self._as_branch):
            try:
                sha = attempt(coord, label)
            except FetchFailed as e:
                self.log.debug("%s did not resolve %r: %s", attempt.__name__, label, e)
                continue
            self.log.debug("Resolved %r via %s -> %s", label, attempt.__name__, sha)
            return sha
        raise ReferenceNotFound(label)

    def _as_commit(self, coord: RepositoryCoordinate, label: str) -> str:
        return self.provider.get_commit(coord, label).sha

    def _as_tag(self, coord: RepositoryCoordinate, label: str) -> str:
        sha, obj_type = self.provider.get_ref(coord, f"tags/{label}")
        depth = 0
        while obj_type == "tag":
            depth += 1
            if depth > MAX_TAG_DEPTH:
                raise FetchFailed(f"Tag {label} nests deeper than {MAX_TAG_DEPTH} levels")
            sha, obj_type = self.provider.get_tag_target(coord, sha)
        return sha

    def _as_branch(self, coord: RepositoryCoordinate, label: str) -> str:
        sha, _ = self.provider.get_ref(coord, f"heads/{label}")
        return sha
