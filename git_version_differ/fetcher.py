"""
GitHub data fetching module.

This module handles all GitHub API interactions needed to resolve references
and enumerate commit history using PyGithub. Every method maps one provider
operation; the algorithms that decide which calls to make live elsewhere.
"""

import datetime
import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

from .errors import FetchFailed, FileLookupFailed
from .models import HistoryPage, RawCommit, RepositoryCoordinate

# External libs
try:
    from github import Auth, Github, GithubException
    from github import Commit, Repository
except Exception as e:
    raise RuntimeError("PyGithub is required. Install with: pip install PyGithub") from e

# Set up logging
logger = logging.getLogger("git-version-differ.fetcher")

_PROVIDER_ERRORS = (GithubException, requests.RequestException)

HISTORY_QUERY = """
query($owner: String!, $name: String!, $oid: GitObjectID!, $first: Int!, $after: String) {
  repository(owner: $owner, name: $name) {
    object(oid: $oid) {
      ... on Commit {
        history(first: $first, after: $after) {
          pageInfo { hasNextPage endCursor }
          nodes {
            oid
            message
            changedFilesIfAvailable
            author { name date }
          }
        }
      }
    }
  }
}
"""


def _parse_iso(value: Optional[str]) -> Optional[datetime.datetime]:
    if not value:
        return None
    try:
        return datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparseable commit date: %r", value)
        return None


def _describe(e: Exception) -> str:
    if isinstance(e, GithubException):
        message = e.data.get("message") if isinstance(e.data, dict) else None
        return f"{e.status} {message or e.data}"
    return str(e)


class GitHubFetcher:
    """
    Read-only access to one GitHub host through PyGithub.

    Args:
        token: Personal access token (or None for unauthenticated, but rate-limited).
        per_page: Page size used by page-number based listings.
        log: Logger to report through; defaults to the module logger.
    """

    def __init__(self, token: Optional[str] = None, per_page: int = 100,
                 log: Optional[logging.Logger] = None) -> None:
        self.log = log or logger
        self.per_page = per_page
        self.request_count = 0
        self._repos: Dict[RepositoryCoordinate, Repository.Repository] = {}
        try:
            if token:
                self._g = Github(auth=Auth.Token(token), per_page=per_page)
            else:
                self._g = Github(per_page=per_page)
            self.log.debug("GitHub client initialized (authenticated=%s)", bool(token))
        except Exception as e:
            self.log.error("Failed to initialize GitHub client: %s", e)
            raise RuntimeError(f"GitHub client initialization failed: {e}") from e

    def _repo(self, coord: RepositoryCoordinate) -> Repository.Repository:
        repo = self._repos.get(coord)
        if repo is None:
            # lazy: no request until an attribute is needed
            repo = self._g.get_repo(coord.full_name, lazy=True)
            self._repos[coord] = repo
        return repo

    @staticmethod
    def _to_raw(c: Commit.Commit) -> RawCommit:
        commit_obj = c.commit
        author = commit_obj.author
        return RawCommit(
            sha=c.sha,
            message=(commit_obj.message or "").strip(),
            author_name=author.name if author and author.name else None,
            author_date=author.date if author else None,
        )

    def get_commit(self, coord: RepositoryCoordinate, ref: str) -> RawCommit:
        """
        Look up a single commit by SHA or any ref the commits endpoint accepts.

        Raises:
            FetchFailed: If the commit cannot be retrieved
        """
        self.request_count += 1
        try:
            return self._to_raw(self._repo(coord).get_commit(ref))
        except _PROVIDER_ERRORS as e:
            raise FetchFailed(f"Commit lookup failed for {ref}: {_describe(e)}") from e

    def get_ref(self, coord: RepositoryCoordinate, ref: str) -> Tuple[str, str]:
        """
        Look up a git reference such as ``tags/v1.0`` or ``heads/main``.

        Returns:
            (object_sha, object_type) where type is ``commit`` or ``tag``
        """
        self.request_count += 1
        try:
            git_ref = self._repo(coord).get_git_ref(ref)
            return git_ref.object.sha, git_ref.object.type
        except _PROVIDER_ERRORS as e:
            raise FetchFailed(f"Reference lookup failed for {ref}: {_describe(e)}") from e

    def get_tag_target(self, coord: RepositoryCoordinate, tag_sha: str) -> Tuple[str, str]:
        """Dereference an annotated tag object to the object it points at."""
        self.request_count += 1
        try:
            tag = self._repo(coord).get_git_tag(tag_sha)
            return tag.object.sha, tag.object.type
        except _PROVIDER_ERRORS as e:
            raise FetchFailed(f"Tag lookup failed for {tag_sha}: {_describe(e)}") from e

    def walk_history(self, coord: RepositoryCoordinate, head_sha: str, cursor: Optional[str],
                     page_size: int, harvest_file_hints: bool = True) -> HistoryPage:
        """
        Fetch one page of the history connection behind ``head_sha`` (GraphQL).

        With ``harvest_file_hints`` a commit reporting zero changed files gets
        an empty file list, which spares a later per-commit lookup.
        """
        self.request_count += 1
        variables = {
            "owner": coord.owner,
            "name": coord.name,
            "oid": head_sha,
            "first": page_size,
            "after": cursor,
        }
        try:
            _, data = self._g.requester.graphql_query(HISTORY_QUERY, variables)
        except _PROVIDER_ERRORS as e:
            raise FetchFailed(f"History query failed at {head_sha}: {_describe(e)}") from e

        payload: Dict[str, Any] = data.get("data", data) if isinstance(data, dict) else {}
        repository = payload.get("repository") or {}
        obj = repository.get("object") or {}
        history = obj.get("history")
        if history is None:
            raise FetchFailed(f"History query returned no commit history for {head_sha}")

        commits = []
        for node in history.get("nodes") or []:
            author = node.get("author") or {}
            files = None
            if harvest_file_hints and node.get("changedFilesIfAvailable") == 0:
                files = []
            commits.append(RawCommit(
                sha=node["oid"],
                message=(node.get("message") or "").strip(),
                author_name=author.get("name"),
                author_date=_parse_iso(author.get("date")),
                changed_files=files,
            ))
        page_info = history.get("pageInfo") or {}
        return HistoryPage(
            commits=commits,
            has_next_page=bool(page_info.get("hasNextPage")),
            end_cursor=page_info.get("endCursor"),
        )

    def list_commits(self, coord: RepositoryCoordinate, head_sha: str,
                     path: Optional[str], page: int) -> List[RawCommit]:
        """
        List one page (1-based) of the linear history behind ``head_sha``,
        restricted to commits touching ``path`` when given.
        """
        self.request_count += 1
        try:
            kwargs = {"sha": head_sha}
            if path:
                kwargs["path"] = path
            listing = self._repo(coord).get_commits(**kwargs)
            return [self._to_raw(c) for c in listing.get_page(page - 1)]
        except _PROVIDER_ERRORS as e:
            raise FetchFailed(f"Commit listing failed at {head_sha} (page {page}): {_describe(e)}") from e

    def compare(self, coord: RepositoryCoordinate, base_sha: str, head_sha: str) -> List[RawCommit]:
        """
        Compare two commits; returns the commits reachable from head but not
        from base, oldest first as the API reports them.
        """
        self.request_count += 1
        try:
            comparison = self._repo(coord).compare(base_sha, head_sha)
            commits = [self._to_raw(c) for c in comparison.commits]
        except _PROVIDER_ERRORS as e:
            raise FetchFailed(f"Comparison {base_sha}...{head_sha} failed: {_describe(e)}") from e
        # comparison commits are paginated behind the first response
        self.request_count += len(commits) // self.per_page
        return commits

    def get_changed_files(self, coord: RepositoryCoordinate, sha: str) -> List[str]:
        """
        Get the paths changed by a commit.

        Raises:
            FileLookupFailed: If the commit's file list cannot be retrieved
        """
        self.request_count += 1
        try:
            c = self._repo(coord).get_commit(sha)
            return [f.filename for f in c.files] if c.files is not None else []
        except _PROVIDER_ERRORS as e:
            raise FileLookupFailed(sha, _describe(e)) from e
