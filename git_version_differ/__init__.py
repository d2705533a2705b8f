"""
Git Version Differ - list the commits between two references of a GitHub repository.
"""

from .config import DiffOptions, select_strategy
from .errors import (CallbackFailed, ConsumerDisconnected, DifferError, FetchFailed,
                     FileLookupFailed, InvalidRepositoryUrl, ReferenceNotFound)
from .events import EventWriter, read_events, stream_commits
from .fetcher import GitHubFetcher
from .filters import DirectoryFilter, should_include
from .models import (FetchProgress, FetchStrategy, FilterCriteria, ParsedCommit, RangeResult,
                     RawCommit, RepositoryCoordinate, StreamSummary, parse_repository_url)
from .parser import CommitParser
from .pipeline import StreamingPipeline, get_commits_between
from .range_fetcher import CommitRangeFetcher
from .resolver import ReferenceResolver

__all__ = [
    'DiffOptions',
    'select_strategy',
    'DifferError',
    'InvalidRepositoryUrl',
    'ReferenceNotFound',
    'FetchFailed',
    'FileLookupFailed',
    'CallbackFailed',
    'ConsumerDisconnected',
    'EventWriter',
    'read_events',
    'stream_commits',
    'GitHubFetcher',
    'DirectoryFilter',
    'should_include',
    'FetchProgress',
    'FetchStrategy',
    'FilterCriteria',
    'ParsedCommit',
    'RangeResult',
    'RawCommit',
    'RepositoryCoordinate',
    'StreamSummary',
    'parse_repository_url',
    'CommitParser',
    'StreamingPipeline',
    'get_commits_between',
    'CommitRangeFetcher',
    'ReferenceResolver',
]
