"""
Commit range enumeration.

Produces the commits strictly between two resolved SHAs, newest first, using
one of two strategies:

* GRAPH walks the cursor-paginated history behind the head commit until the
  base commit shows up, the history ends, or the safety cap is reached.
* LINEAR compares the two endpoints directly, or, when a target directory is
  given, walks the path-scoped commit listing. The base commit may never touch
  the directory, so when it is not met the path-scoped history behind the base
  is searched for the first commit already seen from the head; that commit
  bounds the range.

Pages are requested one at a time because each page decides whether to stop.
"""

import logging
from typing import Callable, List, Optional, Set

from .errors import FetchFailed
from .models import FetchStrategy, RangeFetchResult, RawCommit, RepositoryCoordinate

logger = logging.getLogger("git-version-differ.range")

ProgressFn = Callable[[str], None]


def _no_progress(message: str) -> None:
    pass


class CommitRangeFetcher:
    """
    Enumerate commits between two SHAs through a provider.

    The provider must offer ``walk_history``, ``list_commits`` and ``compare``
    with the signatures of :class:`~git_version_differ.fetcher.GitHubFetcher`.

    Args:
        provider: History provider
        coord: Repository to query
        max_commits: Cap on commits examined by a head-side walk
        graph_page_size: Commits per history-walk request
        linear_page_size: Commits per listing page (must match the provider's)
        intersection_max_checks: Commits examined behind the base
        harvest_file_hints: Keep file hints embedded in history pages
        progress: Receives human-readable status messages
        log: Logger to report through
    """

    def __init__(self, provider, coord: RepositoryCoordinate, max_commits: int = 10000,
                 graph_page_size: int = 20, linear_page_size: int = 100,
                 intersection_max_checks: int = 100, harvest_file_hints: bool = True,
                 progress: Optional[ProgressFn] = None,
                 log: Optional[logging.Logger] = None) -> None:
        self.provider = provider
        self.coord = coord
        self.max_commits = max_commits
        self.graph_page_size = graph_page_size
        self.linear_page_size = linear_page_size
        self.intersection_max_checks = intersection_max_checks
        self.harvest_file_hints = harvest_file_hints
        self.progress = progress or _no_progress
        self.log = log or logger
        self._strategies = {
            FetchStrategy.GRAPH: self._fetch_graph,
            FetchStrategy.LINEAR: self._fetch_linear,
        }

    def fetch_range(self, base_sha: str, head_sha: str, target_dir: Optional[str] = None,
                    strategy: FetchStrategy = FetchStrategy.LINEAR,
                    forced: bool = False) -> RangeFetchResult:
        """
        Fetch the commits reachable from ``head_sha`` back to, excluding, ``base_sha``.

        A failing GRAPH fetch falls back to LINEAR unless the strategy was
        forced. A failing LINEAR fetch is terminal.

        Raises:
            FetchFailed: If no strategy could enumerate the range
        """
        if base_sha == head_sha:
            return RangeFetchResult(commits=[], strategy=strategy)
        if strategy not in self._strategies:
            raise ValueError(f"Not a selectable strategy: {strategy}")

        try:
            return self._strategies[strategy](base_sha, head_sha, target_dir)
        except FetchFailed as e:
            if strategy is not FetchStrategy.GRAPH or forced:
                raise
            self.log.warning("History walk failed, falling back to commit listing: %s", e)
            self.progress("History query unavailable, falling back to commit listing...")
            result = self._fetch_linear(base_sha, head_sha, target_dir)
            result.strategy = FetchStrategy.LINEAR_FALLBACK
            result.degraded_reason = str(e)
            return result

    def _fetch_graph(self, base_sha: str, head_sha: str, target_dir: Optional[str]) -> RangeFetchResult:
        # target_dir is left to the directory filter; the walk covers all history
        collected: List[RawCommit] = []
        cursor: Optional[str] = None
        checked = 0
        requests = 0
        found_base = False

        self.log.info("Walking history from %s towards %s (cap %d)",
                      head_sha[:7], base_sha[:7], self.max_commits)
        while True:
            requests += 1
            self.progress(f"Fetching history page {requests}...")
            page = self.provider.walk_history(self.coord, head_sha, cursor,
                                              self.graph_page_size, self.harvest_file_hints)
            self.log.debug("History page %d: %d commits", requests, len(page.commits))
            for commit in page.commits:
                checked += 1
                if commit.sha == base_sha:
                    found_base = True
                    break
                collected.append(commit)
                if checked >= self.max_commits:
                    break
            if found_base:
                break
            if checked >= self.max_commits:
                self.log.warning("Reached commit cap (%d) without finding base %s",
                                 self.max_commits, base_sha[:7])
                break
            if not page.has_next_page or not page.end_cursor:
                self.log.warning("History ended without finding base %s", base_sha[:7])
                break
            cursor = page.end_cursor

        self.log.info("History walk: %d commits in range after checking %d in %d requests",
                      len(collected), checked, requests)
        return RangeFetchResult(
            commits=collected,
            strategy=FetchStrategy.GRAPH,
            boundary_confirmed=found_base,
            checked=checked,
            request_count=requests,
        )

    def _fetch_linear(self, base_sha: str, head_sha: str, target_dir: Optional[str]) -> RangeFetchResult:
        if not target_dir:
            return self._compare(base_sha, head_sha)
        return self._list_path(base_sha, head_sha, target_dir)

    def _compare(self, base_sha: str, head_sha: str) -> RangeFetchResult:
        self.progress("Comparing commit ranges...")
        commits = self.provider.compare(self.coord, base_sha, head_sha)
        # comparison is oldest first; ranges are reported newest first
        commits = list(reversed(commits))
        checked = len(commits)
        confirmed = True
        if len(commits) > self.max_commits:
            self.log.warning("Comparison returned %d commits, keeping the newest %d",
                             len(commits), self.max_commits)
            commits = commits[:self.max_commits]
            confirmed = False
        self.progress(f"Found {len(commits)} commits in range")
        return RangeFetchResult(
            commits=commits,
            strategy=FetchStrategy.LINEAR,
            boundary_confirmed=confirmed,
            checked=checked,
            request_count=1,
        )

    def _list_path(self, base_sha: str, head_sha: str, target_dir: str) -> RangeFetchResult:
        self.progress(f"Fetching commits that modified path: {target_dir}...")
        collected: List[RawCommit] = []
        seen: Set[str] = set()
        page = 1
        checked = 0
        requests = 0
        found_base = False

        while True:
            self.progress(f"Fetching commits page {page}...")
            requests += 1
            commits = self.provider.list_commits(self.coord, head_sha, target_dir, page)
            self.log.debug("Listing page %d for %s: %d commits", page, target_dir, len(commits))
            if not commits:
                break
            for commit in commits:
                checked += 1
                seen.add(commit.sha)
                if commit.sha == base_sha:
                    found_base = True
                    break
                collected.append(commit)
                if checked >= self.max_commits:
                    break
            if found_base:
                break
            if checked >= self.max_commits:
                self.log.warning("Reached commit cap (%d) without finding base %s",
                                 self.max_commits, base_sha[:7])
                break
            if len(commits) < self.linear_page_size:
                break
            page += 1

        confirmed = found_base or not seen
        if not found_base and seen:
            self.log.info("Base %s not in path history of %s, searching for intersection",
                          base_sha[:7], target_dir)
            self.progress("Searching for intersection from base commit...")
            search = self._find_intersection(base_sha, target_dir, collected)
            intersection, base_side, covered, checks, search_requests = search
            requests += search_requests
            checked += checks
            if intersection:
                self.progress(f"Found intersection at commit {intersection[:7]}")
                before = len(collected)
                if not covered:
                    collected = self._truncate_at(collected, intersection)
                collected = [c for c in collected if c.sha not in base_side]
                self.log.info("Intersection %s: kept %d of %d commits",
                              intersection[:7], len(collected), before)
                self.progress(f"Filtered to {len(collected)} commits after intersection")
                confirmed = True
            else:
                self.log.warning("No intersection found within %d commits from base %s; "
                                 "range boundary not confirmed", checks, base_sha[:7])
                self.progress(f"No intersection found within {checks} commits from base")

        self.progress(f"Found {len(collected)} commits that modified the specified path")
        return RangeFetchResult(
            commits=collected,
            strategy=FetchStrategy.LINEAR,
            boundary_confirmed=confirmed,
            checked=checked,
            request_count=requests,
        )

    def _find_intersection(self, base_sha: str, target_dir: str, collected: List[RawCommit]):
        """
        Walk the path-scoped history behind the base looking for a commit
        already collected from the head side.

        The walk goes on past the first shared commit until it is older than
        everything collected, so commits from a side branch merged on the head
        side can be told apart from ancestors of the base.

        Returns:
            (intersection_sha or None, base_side_shas, covered, commits_checked,
            requests_made); ``covered`` means every base ancestor that could
            appear in ``collected`` was visited
        """
        seen = {c.sha for c in collected}
        dates = [c.author_date for c in collected]
        oldest = min(dates) if dates and None not in dates else None
        intersection = None
        base_side: Set[str] = set()
        checks = 0
        requests = 0
        page = 1
        while checks < self.intersection_max_checks:
            requests += 1
            commits = self.provider.list_commits(self.coord, base_sha, target_dir, page)
            if not commits:
                return intersection, base_side, True, checks, requests
            for commit in commits:
                checks += 1
                base_side.add(commit.sha)
                if intersection is None and commit.sha in seen:
                    intersection = commit.sha
                if intersection and oldest and commit.author_date and commit.author_date < oldest:
                    return intersection, base_side, True, checks, requests
                if checks >= self.intersection_max_checks:
                    break
            if len(commits) < self.linear_page_size:
                return intersection, base_side, True, checks, requests
            page += 1
        return intersection, base_side, False, checks, requests

    @staticmethod
    def _truncate_at(commits: List[RawCommit], sha: str) -> List[RawCommit]:
        for index, commit in enumerate(commits):
            if commit.sha == sha:
                return commits[:index]
        return commits
