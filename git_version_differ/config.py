"""
Request configuration for the version differ.

``DiffOptions`` enumerates every recognised option with its default. It is
built either directly, from CLI arguments, or from the loose query-parameter
mapping an HTTP surface receives.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Tuple, Union

from .models import FetchStrategy

TOKEN_ENV_VAR = "GITHUB_TOKEN"

DEFAULT_MAX_COMMITS = 10000
DEFAULT_GRAPH_PAGE_SIZE = 20
DEFAULT_LINEAR_PAGE_SIZE = 100
DEFAULT_INTERSECTION_MAX_CHECKS = 100
DEFAULT_BATCH_SIZE = 10
DEFAULT_BATCH_PAUSE = 0.1

_TRUE_VALUES = {"1", "true", "yes", "on"}


def split_sub_paths(value: Union[str, Iterable[str], None]) -> Tuple[str, ...]:
    """Split a comma-separated string (or iterable) into trimmed, non-empty paths."""
    if not value:
        return ()
    items = value.split(",") if isinstance(value, str) else value
    return tuple(p.strip() for p in items if p and p.strip())


@dataclass(frozen=True)
class DiffOptions:
    """
    Options for one resolution request.

    Args:
        repository_url: GitHub repository URL (https or SSH form)
        from_ref: Older tag, branch or commit; None means "latest commit only"
        to_ref: Newer tag, branch or commit; None means HEAD
        token: Bearer token; falls back to $GITHUB_TOKEN
        target_dir: Only keep commits touching this directory
        exclude_sub_paths: Drop commits whose in-scope files all live under these
        strategy: Force GRAPH or LINEAR; None selects automatically
        max_commits: Safety cap on commits walked by history enumeration
        graph_page_size: Commits per history-walk request
        linear_page_size: Commits per listing request
        intersection_max_checks: Commits examined by the boundary-intersection search
        batch_size: Commits per delivered batch
        batch_pause: Seconds slept between batches
        harvest_file_hints: Use file hints embedded in history pages
    """
    repository_url: str
    from_ref: Optional[str] = None
    to_ref: Optional[str] = None
    token: Optional[str] = None
    target_dir: Optional[str] = None
    exclude_sub_paths: Tuple[str, ...] = field(default_factory=tuple)
    strategy: Optional[FetchStrategy] = None
    max_commits: int = DEFAULT_MAX_COMMITS
    graph_page_size: int = DEFAULT_GRAPH_PAGE_SIZE
    linear_page_size: int = DEFAULT_LINEAR_PAGE_SIZE
    intersection_max_checks: int = DEFAULT_INTERSECTION_MAX_CHECKS
    batch_size: int = DEFAULT_BATCH_SIZE
    batch_pause: float = DEFAULT_BATCH_PAUSE
    harvest_file_hints: bool = True

    def __post_init__(self) -> None:
        # Frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, "exclude_sub_paths", split_sub_paths(self.exclude_sub_paths))
        object.__setattr__(self, "from_ref", (self.from_ref or "").strip() or None)
        object.__setattr__(self, "to_ref", (self.to_ref or "").strip() or None)
        object.__setattr__(self, "target_dir", (self.target_dir or "").strip() or None)
        if self.strategy is not None and not isinstance(self.strategy, FetchStrategy):
            object.__setattr__(self, "strategy", parse_strategy(self.strategy))
        if self.strategy is FetchStrategy.LINEAR_FALLBACK:
            raise ValueError("linear-fallback is a reported outcome, not a selectable strategy")
        for name in ("max_commits", "graph_page_size", "linear_page_size",
                     "intersection_max_checks", "batch_size"):
            if int(getattr(self, name)) <= 0:
                raise ValueError(f"{name} must be a positive integer")
        if self.batch_pause < 0:
            raise ValueError("batch_pause must not be negative")

    @property
    def resolved_token(self) -> Optional[str]:
        return self.token or os.environ.get(TOKEN_ENV_VAR) or None

    @classmethod
    def from_mapping(cls, params: Mapping[str, Any]) -> "DiffOptions":
        """
        Build options from a query-parameter style mapping.

        Recognised keys: repo, from, to, token, targetDir, excludeSubPaths,
        restOnly, strategy, maxCommits.
        """
        repo = params.get("repo") or params.get("repoUrl")
        if not repo:
            raise ValueError("Missing required parameter: repo")

        strategy = params.get("strategy")
        rest_only = str(params.get("restOnly") or "").strip().lower() in _TRUE_VALUES
        if rest_only:
            strategy = FetchStrategy.LINEAR

        kwargs = {}
        if params.get("maxCommits"):
            try:
                kwargs["max_commits"] = int(params["maxCommits"])
            except (TypeError, ValueError) as e:
                raise ValueError(f"maxCommits must be an integer: {params['maxCommits']!r}") from e

        return cls(
            repository_url=str(repo),
            from_ref=params.get("from"),
            to_ref=params.get("to"),
            token=params.get("token"),
            target_dir=params.get("targetDir"),
            exclude_sub_paths=split_sub_paths(params.get("excludeSubPaths")),
            strategy=parse_strategy(strategy) if strategy else None,
            **kwargs,
        )


def parse_strategy(value: Union[str, FetchStrategy]) -> FetchStrategy:
    if isinstance(value, FetchStrategy):
        return value
    aliases = {"graphql": "graph", "rest": "linear"}
    key = str(value).strip().lower()
    try:
        return FetchStrategy(aliases.get(key, key))
    except ValueError as e:
        raise ValueError(f"Unknown strategy: {value!r} (use 'graph' or 'linear')") from e


def select_strategy(options: DiffOptions) -> FetchStrategy:
    """
    Pick the enumeration strategy for a request.

    A forced strategy wins. Otherwise the history-walk query API is used when a
    token is available, since it refuses anonymous requests.
    """
    if options.strategy is not None:
        return options.strategy
    return FetchStrategy.GRAPH if options.resolved_token else FetchStrategy.LINEAR
