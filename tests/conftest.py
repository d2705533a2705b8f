"""Shared fixtures: an in-memory provider modelling a small commit history."""

import datetime
from typing import Dict, List, Optional, Set, Tuple

import pytest

from git_version_differ.errors import FetchFailed, FileLookupFailed
from git_version_differ.models import HistoryPage, RawCommit, RepositoryCoordinate

REPO_URL = "https://github.com/acme/widgets"
COORD = RepositoryCoordinate(owner="acme", name="widgets")


def sha(n: int) -> str:
    return f"c{n:039d}"


# Linear history c1 (oldest) .. c12 (HEAD)
FILES: Dict[int, List[str]] = {
    1: ["README.md"],
    2: ["app/src/main.py"],
    3: ["docs/guide.md"],
    4: ["app/tests/test_main.py"],
    5: ["app/src/main.py", "app/tests/test_main.py"],
    6: ["docs/guide.md"],
    7: ["app/src/util.py"],
    8: ["docs/api.md"],
    9: ["app/tests/test_util.py"],
    10: ["app/src/util.py", "docs/api.md"],
    11: [],
    12: ["app/src/main.py"],
}

MESSAGES: Dict[int, str] = {
    7: "feat: [APP-7] add util",
    9: "test: cover util",
    10: "fix: [APP-10] util docs\n\nLonger body text.",
    11: "Merge branch 'release'",
    12: "chore release prep",
}


class FakeProvider:
    """Dict-backed provider implementing the GitHubFetcher operations."""

    def __init__(self, per_page: int = 100) -> None:
        self.per_page = per_page
        self.request_count = 0
        self.calls: List[Tuple] = []
        self.parents: Dict[str, List[str]] = {}
        self.files: Dict[str, List[str]] = {}
        self.messages: Dict[str, str] = {}
        self.dates: Dict[str, datetime.datetime] = {}
        self.refs: Dict[str, Tuple[str, str]] = {}
        self.tag_objects: Dict[str, Tuple[str, str]] = {}
        self.head: Optional[str] = None
        self.fail_graph = False
        self.fail_linear = False
        self.fail_files: Set[str] = set()

    def add_commit(self, commit_sha: str, parents: List[str], files: List[str], message: str) -> None:
        self.parents[commit_sha] = parents
        self.files[commit_sha] = files
        self.messages[commit_sha] = message
        self.dates[commit_sha] = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc) + \
            datetime.timedelta(hours=len(self.dates))
        self.head = commit_sha

    def _raw(self, commit_sha: str) -> RawCommit:
        return RawCommit(
            sha=commit_sha,
            message=self.messages[commit_sha],
            author_name="Dev",
            author_date=self.dates[commit_sha],
        )

    def _ancestors(self, start: str) -> List[str]:
        """All commits reachable from start (inclusive), newest first."""
        seen = set()
        stack = [start]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self.parents[current])
        return sorted(seen, key=lambda s: self.dates[s], reverse=True)

    def _record(self, *call) -> None:
        self.calls.append(call)
        self.request_count += 1

    def call_names(self) -> List[str]:
        return [c[0] for c in self.calls]

    def get_commit(self, coord, ref):
        self._record("get_commit", ref)
        if ref == "HEAD":
            ref = self.head
        elif ref == "HEAD~1":
            ref = self.parents[self.head][0]
        if ref not in self.parents:
            raise FetchFailed(f"Commit lookup failed for {ref}: 422 No commit found")
        return self._raw(ref)

    def get_ref(self, coord, ref):
        self._record("get_ref", ref)
        if ref not in self.refs:
            raise FetchFailed(f"Reference lookup failed for {ref}: 404 Not Found")
        return self.refs[ref]

    def get_tag_target(self, coord, tag_sha):
        self._record("get_tag_target", tag_sha)
        if tag_sha not in self.tag_objects:
            raise FetchFailed(f"Tag lookup failed for {tag_sha}: 404 Not Found")
        return self.tag_objects[tag_sha]

    def walk_history(self, coord, head_sha, cursor, page_size, harvest_file_hints=True):
        self._record("walk_history", head_sha, cursor)
        if self.fail_graph:
            raise FetchFailed("History query failed: 401 Bad credentials")
        history = self._ancestors(head_sha)
        offset = int(cursor) if cursor else 0
        chunk = history[offset:offset + page_size]
        commits = []
        for s in chunk:
            raw = self._raw(s)
            if harvest_file_hints and not self.files[s]:
                raw.changed_files = []
            commits.append(raw)
        end = offset + len(chunk)
        return HistoryPage(commits=commits, has_next_page=end < len(history), end_cursor=str(end))

    def list_commits(self, coord, head_sha, path, page):
        self._record("list_commits", head_sha, path, page)
        if self.fail_linear:
            raise FetchFailed("Commit listing failed: 500 Server Error")
        history = self._ancestors(head_sha)
        if path:
            history = [s for s in history if any(f.startswith(path) for f in self.files[s])]
        start = (page - 1) * self.per_page
        return [self._raw(s) for s in history[start:start + self.per_page]]

    def compare(self, coord, base_sha, head_sha):
        self._record("compare", base_sha, head_sha)
        if self.fail_linear:
            raise FetchFailed("Comparison failed: 500 Server Error")
        excluded = set(self._ancestors(base_sha))
        ahead = [s for s in self._ancestors(head_sha) if s not in excluded]
        return [self._raw(s) for s in reversed(ahead)]

    def get_changed_files(self, coord, commit_sha):
        self._record("get_changed_files", commit_sha)
        if commit_sha in self.fail_files:
            raise FileLookupFailed(commit_sha, "502 Bad Gateway")
        return list(self.files[commit_sha])


def build_linear_provider(per_page: int = 100) -> FakeProvider:
    provider = FakeProvider(per_page=per_page)
    previous: List[str] = []
    for n in range(1, 13):
        provider.add_commit(sha(n), previous, FILES[n], MESSAGES.get(n, f"commit {n}"))
        previous = [sha(n)]
    # v1.0 is an annotated tag object pointing at c6
    provider.refs["tags/v1.0"] = ("tagobj10", "tag")
    provider.tag_objects["tagobj10"] = (sha(6), "commit")
    provider.refs["tags/v2.0"] = (sha(12), "commit")
    provider.refs["tags/v0.9"] = (sha(2), "commit")
    provider.refs["heads/main"] = (sha(12), "commit")
    provider.refs["heads/release"] = (sha(8), "commit")
    return provider


@pytest.fixture
def provider() -> FakeProvider:
    return build_linear_provider()


@pytest.fixture
def small_page_provider() -> FakeProvider:
    return build_linear_provider(per_page=2)


@pytest.fixture(autouse=True)
def no_env_token(monkeypatch):
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
