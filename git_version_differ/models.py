"""
Data models for the version differ.

This module contains the shared data structures used across all modules.
"""

import datetime
import enum
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import InvalidRepositoryUrl

SHORT_SHA_LENGTH = 7

_REPO_URL_PATTERNS = (
    re.compile(r"github\.com/(?P<owner>[^/]+)/(?P<name>[^/]+?)(?:\.git)?(?:/.*)?$"),
    re.compile(r"github\.com:(?P<owner>[^/]+)/(?P<name>[^/]+?)(?:\.git)?$"),
)
_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class FetchStrategy(str, enum.Enum):
    """Which provider API enumerated the commit range."""
    GRAPH = "graph"
    LINEAR = "linear"
    LINEAR_FALLBACK = "linear-fallback"


@dataclass(frozen=True)
class RepositoryCoordinate:
    """Owner and name of a hosted repository."""
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def to_dict(self) -> Dict[str, str]:
        return {"owner": self.owner, "repo": self.name}


def parse_repository_url(url: str) -> RepositoryCoordinate:
    """
    Extract the repository coordinate from a GitHub URL.

    Accepts https URLs (with or without ``.git`` and trailing path segments)
    and SSH-style ``git@github.com:owner/name.git`` forms.

    Raises:
        InvalidRepositoryUrl: If the URL does not name a GitHub repository
    """
    candidate = (url or "").strip()
    for pattern in _REPO_URL_PATTERNS:
        m = pattern.search(candidate)
        if m and _NAME_RE.match(m.group("owner")) and _NAME_RE.match(m.group("name")):
            return RepositoryCoordinate(owner=m.group("owner"), name=m.group("name"))
    raise InvalidRepositoryUrl(
        "Invalid GitHub repository URL. Please provide a valid GitHub repository URL."
    )


@dataclass
class RawCommit:
    """
    A commit as returned by the provider.

    ``changed_files`` stays ``None`` until it is known; once filled it is
    never fetched again within the same run.
    """
    sha: str
    message: str
    author_name: Optional[str]
    author_date: Optional[datetime.datetime]
    changed_files: Optional[List[str]] = None

    @property
    def short_sha(self) -> str:
        return self.sha[:SHORT_SHA_LENGTH]


@dataclass(frozen=True)
class ParsedCommit:
    """A commit enriched with metadata parsed from its message."""
    sha: str
    message: str
    author_name: Optional[str]
    author_date: Optional[datetime.datetime]
    changed_files: Optional[List[str]]
    classifier: Optional[str]
    ticket_id: Optional[str]
    clean_message: str

    @property
    def short_sha(self) -> str:
        return self.sha[:SHORT_SHA_LENGTH]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hash": self.sha,
            "shortHash": self.short_sha,
            "author": self.author_name or "Unknown",
            "date": self.author_date.isoformat() if self.author_date else None,
            "message": self.message.split("\n")[0],
            "cleanMessage": self.clean_message,
            "semverType": self.classifier,
            "jiraTicketId": self.ticket_id,
            "filesChanged": len(self.changed_files) if self.changed_files is not None else None,
        }


@dataclass(frozen=True)
class FilterCriteria:
    """Directory inclusion/exclusion criteria."""
    target_dir: Optional[str] = None
    exclude_sub_paths: Optional[List[str]] = None

    @property
    def active(self) -> bool:
        return bool(self.target_dir) or bool(self.exclude_sub_paths)


@dataclass(frozen=True)
class FetchProgress:
    processed: int
    total: int

    def to_dict(self) -> Dict[str, int]:
        return {"processed": self.processed, "total": self.total}


@dataclass
class HistoryPage:
    """One page of a cursor-based history walk."""
    commits: List[RawCommit]
    has_next_page: bool
    end_cursor: Optional[str]


@dataclass
class RangeFetchResult:
    """Commits between two identifiers, newest first, plus walk statistics."""
    commits: List[RawCommit]
    strategy: FetchStrategy
    boundary_confirmed: bool = True
    checked: int = 0
    request_count: int = 0
    degraded_reason: Optional[str] = None


@dataclass(frozen=True)
class CallbackResult:
    """Outcome of delivering one batch or progress message to a consumer."""
    ok: bool
    error: Optional[BaseException] = None
    disconnected: bool = False

    @classmethod
    def success(cls) -> "CallbackResult":
        return cls(ok=True)


@dataclass
class StreamSummary:
    """Terminal aggregate of one pipeline run. Produced exactly once."""
    total_commits: int = 0
    checked: int = 0
    skipped: int = 0
    request_count: int = 0
    elapsed_millis: int = 0
    fetch_millis: int = 0
    api_strategy_used: Optional[FetchStrategy] = None
    boundary_confirmed: bool = True
    cancelled: bool = False
    repository: Optional[RepositoryCoordinate] = None
    from_ref: Optional[str] = None
    to_ref: Optional[str] = None
    from_sha: Optional[str] = None
    to_sha: Optional[str] = None
    warning: Optional[str] = None
    error: Optional[str] = None
    state: Optional[str] = None
    callback_failures: int = 0

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def elapsed_time(self) -> str:
        return format_elapsed_time(self.elapsed_millis)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "totalCommits": self.total_commits,
            "summary": {
                "total": self.checked,
                "processed": self.total_commits,
                "skipped": self.skipped,
            },
            "fetchStats": {
                "totalChecked": self.checked,
                "requestCount": self.request_count,
                "fetchTime": format_elapsed_time(self.fetch_millis),
            },
            "elapsedTime": self.elapsed_time,
            "apiUsed": self.api_strategy_used.value if self.api_strategy_used else None,
            "boundaryConfirmed": self.boundary_confirmed,
            "cancelled": self.cancelled,
            "repository": self.repository.to_dict() if self.repository else None,
            "fromRef": self.from_ref,
            "toRef": self.to_ref,
            "fromSha": _short(self.from_sha),
            "toSha": _short(self.to_sha),
        }
        if self.warning:
            data["warning"] = self.warning
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class RangeResult:
    """Complete result of a non-streaming request."""
    summary: StreamSummary
    commits: List[ParsedCommit] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.summary.success

    @property
    def total_commits(self) -> int:
        return len(self.commits)

    def to_dict(self) -> Dict[str, Any]:
        s = self.summary
        data: Dict[str, Any] = {"success": s.success, "elapsedTime": s.elapsed_time}
        data["repository"] = s.repository.to_dict() if s.repository else None
        if not s.success:
            data["error"] = s.error
            return data
        data.update({
            "commits": [c.to_dict() for c in self.commits],
            "totalCommits": self.total_commits,
            "apiUsed": s.api_strategy_used.value if s.api_strategy_used else None,
            "boundaryConfirmed": s.boundary_confirmed,
            "fromRef": s.from_ref,
            "toRef": s.to_ref,
            "fromSha": _short(s.from_sha),
            "toSha": _short(s.to_sha),
        })
        if s.warning:
            data["warning"] = s.warning
        return data


def format_elapsed_time(milliseconds: int) -> str:
    """Format elapsed time as ``850ms``, ``2.50s`` or ``1m 5.00s``."""
    seconds = milliseconds / 1000
    if seconds < 1:
        return f"{milliseconds}ms"
    if seconds < 60:
        return f"{seconds:.2f}s"
    minutes = int(seconds // 60)
    return f"{minutes}m {seconds % 60:.2f}s"


def _short(sha: Optional[str]) -> Optional[str]:
    return sha[:SHORT_SHA_LENGTH] if sha else None
