"""
Streaming commit pipeline.

Drives reference resolution, range enumeration, directory filtering and
message parsing for one request, and delivers parsed commits in bounded
batches through a callback. Delivery is best effort: a failing callback is
logged and ignored, a disconnected consumer stops further delivery, and the
run always ends with a ``StreamSummary`` instead of an exception.
"""

import dataclasses
import enum
import logging
import time
from typing import Callable, List, Optional, Tuple

from .config import DiffOptions, select_strategy
from .errors import ConsumerDisconnected, DifferError
from .fetcher import GitHubFetcher
from .filters import DirectoryFilter
from .models import (CallbackResult, FetchProgress, FetchStrategy, FilterCriteria,
                     ParsedCommit, RangeResult, StreamSummary, parse_repository_url)
from .parser import CommitParser
from .range_fetcher import CommitRangeFetcher
from .resolver import ReferenceResolver

logger = logging.getLogger("git-version-differ.pipeline")

BatchFn = Callable[[List[ParsedCommit], FetchProgress], None]
ProgressFn = Callable[[str], None]
CancelledFn = Callable[[], bool]

HEAD = "HEAD"
PREVIOUS_HEAD = "HEAD~1"

NO_VERSION_WARNING = "No version specified, returning only the latest commit"
NO_FROM_WARNING = "No starting version specified, returning only the latest commit"
NO_TO_WARNING = "No target version specified, including all commits from the starting version"
SAME_REFERENCE_WARNING = "Starting and ending versions are the same, no changes can be detected"
UNCONFIRMED_BOUNDARY_WARNING = "Range boundary could not be confirmed, results may be incomplete"
FALLBACK_WARNING = "History query failed, commits were listed instead"

_STRATEGY_LABELS = {
    FetchStrategy.GRAPH: "history query",
    FetchStrategy.LINEAR: "commit listing",
    FetchStrategy.LINEAR_FALLBACK: "commit listing (fallback)",
}


class PipelineState(str, enum.Enum):
    IDLE = "idle"
    RESOLVING_REFS = "resolving-refs"
    FETCHING = "fetching"
    FILTERING = "filtering"
    EMITTING = "emitting"
    COMPLETING = "completing"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


def default_range(options: DiffOptions) -> Tuple[str, str, Optional[str], bool]:
    """
    Substitute defaults for missing references.

    Returns:
        (from_ref, to_ref, warning, latest_only)
    """
    if not options.from_ref and not options.to_ref:
        return PREVIOUS_HEAD, HEAD, NO_VERSION_WARNING, True
    if not options.from_ref:
        return PREVIOUS_HEAD, HEAD, NO_FROM_WARNING, True
    if not options.to_ref:
        return options.from_ref, HEAD, NO_TO_WARNING, False
    return options.from_ref, options.to_ref, None, False


def _add_warning(summary: StreamSummary, text: str) -> None:
    summary.warning = f"{summary.warning}; {text}" if summary.warning else text


class _RunContext:
    """Mutable state of one ``run`` call; never shared between runs."""

    def __init__(self, log: logging.Logger, summary: StreamSummary,
                 on_progress: Optional[ProgressFn], is_cancelled: Optional[CancelledFn]) -> None:
        self.log = log
        self.summary = summary
        self.on_progress = on_progress
        self.is_cancelled = is_cancelled
        self.state = PipelineState.IDLE
        self.cancelled = False

    def transition(self, state: PipelineState) -> None:
        self.log.debug("Pipeline %s -> %s", self.state.value, state.value)
        self.state = state

    def cancel_observed(self) -> bool:
        if not self.cancelled and self.is_cancelled is not None and self.is_cancelled():
            self.log.info("Consumer disconnected, stopping delivery")
            self.cancelled = True
        return self.cancelled

    def deliver(self, callback: Optional[Callable], *args) -> CallbackResult:
        """Invoke a consumer callback, reporting failure as a value."""
        if callback is None:
            return CallbackResult.success()
        if self.cancel_observed():
            return CallbackResult(ok=False, disconnected=True)
        try:
            callback(*args)
        except ConsumerDisconnected as e:
            return CallbackResult(ok=False, error=e, disconnected=True)
        except Exception as e:
            return CallbackResult(ok=False, error=e)
        return CallbackResult.success()

    def inspect(self, result: CallbackResult, kind: str) -> None:
        if result.ok:
            return
        if result.disconnected:
            if not self.cancelled:
                self.log.info("Consumer disconnected during %s delivery", kind)
            self.cancelled = True
            return
        self.summary.callback_failures += 1
        self.log.warning("%s callback error ignored: %s", kind.capitalize(), result.error)

    def progress(self, message: str) -> None:
        self.log.debug("Progress: %s", message)
        if not self.cancelled:
            self.inspect(self.deliver(self.on_progress, message), "progress")


class StreamingPipeline:
    """
    Run commit-range requests and stream the results.

    The instance holds only collaborators; each ``run`` keeps its own state,
    so one pipeline may serve overlapping runs.

    Args:
        provider: History provider; a ``GitHubFetcher`` is built per run if omitted
        log: Logger to report through; passed on to every component
        sleep: Used for the pause between batches
    """

    def __init__(self, provider=None, log: Optional[logging.Logger] = None,
                 sleep: Callable[[float], None] = time.sleep) -> None:
        self.provider = provider
        self._injected_log = log
        self.log = log or logger
        self.sleep = sleep

    def run(self, options: DiffOptions, on_batch: Optional[BatchFn],
            on_progress: Optional[ProgressFn] = None,
            is_cancelled: Optional[CancelledFn] = None) -> StreamSummary:
        """
        Resolve, fetch, filter, parse and deliver the commits for ``options``.

        A disconnected consumer only stops delivery; the range is still
        processed to the end and the summary reports ``cancelled``.

        Args:
            options: Request options
            on_batch: Receives each non-empty batch with its progress
            on_progress: Receives status messages
            is_cancelled: Returns True once the consumer has gone away

        Returns:
            StreamSummary; ``error`` is set when the run failed
        """
        start = time.monotonic()
        summary = StreamSummary()
        ctx = _RunContext(self.log, summary, on_progress, is_cancelled)

        try:
            self._execute(options, ctx, on_batch)
        except Exception as e:
            ctx.transition(PipelineState.FAILED)
            self.log.error("%s %s..%s - %s", options.repository_url,
                           options.from_ref, options.to_ref, e,
                           exc_info=not isinstance(e, DifferError))
            summary.error = str(e)
        ctx.cancel_observed()
        summary.cancelled = ctx.cancelled
        if ctx.state is not PipelineState.FAILED:
            ctx.transition(PipelineState.CANCELLED if ctx.cancelled else PipelineState.DONE)
        summary.state = ctx.state.value
        summary.elapsed_millis = int((time.monotonic() - start) * 1000)
        return summary

    def _execute(self, options: DiffOptions, ctx: _RunContext,
                 on_batch: Optional[BatchFn]) -> None:
        summary = ctx.summary
        progress = ctx.progress
        ctx.transition(PipelineState.RESOLVING_REFS)
        progress("Initializing GitHub clients...")
        coord = parse_repository_url(options.repository_url)
        summary.repository = coord
        provider = self.provider or GitHubFetcher(
            token=options.resolved_token, per_page=options.linear_page_size, log=self._injected_log)

        from_ref, to_ref, warning, latest_only = default_range(options)
        summary.from_ref, summary.to_ref = from_ref, to_ref
        if warning:
            _add_warning(summary, warning)
            progress(warning)

        progress("Fetching commit SHAs...")
        resolver = ReferenceResolver(provider, log=self._injected_log)
        from_sha = resolver.resolve(coord, from_ref)
        to_sha = resolver.resolve(coord, to_ref)
        summary.from_sha, summary.to_sha = from_sha, to_sha

        if from_sha == to_sha:
            self.log.info("%s and %s both resolve to %s", from_ref, to_ref, from_sha[:7])
            _add_warning(summary, SAME_REFERENCE_WARNING)
            progress(SAME_REFERENCE_WARNING)
            return

        progress(f"Resolving commits: {from_ref} → {from_sha[:7]}, {to_ref} → {to_sha[:7]}")

        ctx.transition(PipelineState.FETCHING)
        strategy = select_strategy(options)
        progress(f"Fetching commits using {_STRATEGY_LABELS[strategy]}...")
        fetch_start = time.monotonic()
        fetcher = CommitRangeFetcher(
            provider, coord,
            max_commits=options.max_commits,
            graph_page_size=options.graph_page_size,
            linear_page_size=options.linear_page_size,
            intersection_max_checks=options.intersection_max_checks,
            harvest_file_hints=options.harvest_file_hints,
            progress=progress,
            log=self._injected_log,
        )
        fetched = fetcher.fetch_range(from_sha, to_sha, options.target_dir,
                                      strategy=strategy, forced=options.strategy is not None)
        summary.fetch_millis = int((time.monotonic() - fetch_start) * 1000)
        summary.api_strategy_used = fetched.strategy
        summary.boundary_confirmed = fetched.boundary_confirmed
        summary.checked = fetched.checked
        summary.request_count = fetched.request_count
        if fetched.strategy is FetchStrategy.LINEAR_FALLBACK:
            _add_warning(summary, FALLBACK_WARNING)
        if not fetched.boundary_confirmed:
            _add_warning(summary, UNCONFIRMED_BOUNDARY_WARNING)
        progress(f"Fetch with {_STRATEGY_LABELS[fetched.strategy]} completed "
                 f"in {summary.fetch_millis}ms")

        commits = fetched.commits
        if latest_only:
            commits = commits[:1]
            progress(f"Limited to latest commit only ({len(commits)} commit)")
        if not commits:
            progress("No commits found in range")
            return

        total = len(commits)
        progress(f"Found {total} commits. Starting processing...")
        criteria = FilterCriteria(
            target_dir=options.target_dir,
            exclude_sub_paths=list(options.exclude_sub_paths) or None,
        )
        directory_filter = DirectoryFilter(provider, coord, criteria, log=self._injected_log)
        size = options.batch_size
        examined = 0
        delivered = 0

        for offset in range(0, total, size):
            ctx.transition(PipelineState.FILTERING)
            batch = commits[offset:offset + size]
            progress(f"Processing commits {offset + 1}-{min(offset + size, total)} of {total}...")
            parsed = [CommitParser.parse_commit(c) for c in batch if directory_filter.include(c)]
            examined += len(batch)
            delivered += len(parsed)

            ctx.transition(PipelineState.EMITTING)
            if parsed and not ctx.cancel_observed():
                result = ctx.deliver(on_batch, parsed, FetchProgress(processed=delivered, total=total))
                ctx.inspect(result, "batch")
            if offset + size < total and options.batch_pause and not ctx.cancel_observed():
                self.sleep(options.batch_pause)

        summary.total_commits = delivered
        summary.skipped = examined - delivered
        summary.request_count += directory_filter.lookups
        ctx.transition(PipelineState.COMPLETING)
        progress("Processing complete. Generating summary...")


def get_commits_between(options: DiffOptions, provider=None,
                        log: Optional[logging.Logger] = None) -> RangeResult:
    """
    Non-streaming entry point: collect every batch into one ``RangeResult``.

    The commit list equals the concatenation of the batches a streaming run
    would deliver for the same options.
    """
    commits: List[ParsedCommit] = []

    def collect(batch: List[ParsedCommit], _progress: FetchProgress) -> None:
        commits.extend(batch)

    pipeline = StreamingPipeline(provider=provider, log=log)
    summary = pipeline.run(dataclasses.replace(options, batch_pause=0), collect)
    return RangeResult(summary=summary, commits=commits)
