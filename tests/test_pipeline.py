"""StreamingPipeline tests"""

import logging
import threading

import pytest

from git_version_differ.config import DiffOptions
from git_version_differ.errors import ConsumerDisconnected
from git_version_differ.models import FetchStrategy
from git_version_differ.pipeline import (FALLBACK_WARNING, NO_FROM_WARNING, NO_TO_WARNING,
                                         NO_VERSION_WARNING, SAME_REFERENCE_WARNING,
                                         UNCONFIRMED_BOUNDARY_WARNING, PipelineState,
                                         StreamingPipeline, get_commits_between)

from conftest import REPO_URL, sha


class Recorder:
    """Collects callback traffic in order."""

    def __init__(self):
        self.events = []
        self.batches = []
        self.sleeps = []

    def on_batch(self, commits, progress):
        self.events.append(("batch", len(commits)))
        self.batches.append((commits, progress))

    def on_progress(self, message):
        self.events.append(("progress", message))

    def sleep(self, seconds):
        self.sleeps.append(seconds)

    @property
    def messages(self):
        return [e[1] for e in self.events if e[0] == "progress"]

    @property
    def shas(self):
        return [c.sha for commits, _ in self.batches for c in commits]


def run(provider, recorder=None, **kwargs):
    recorder = recorder or Recorder()
    kwargs.setdefault("linear_page_size", provider.per_page)
    options = DiffOptions(repository_url=REPO_URL, **kwargs)
    pipeline = StreamingPipeline(provider=provider, sleep=recorder.sleep)
    summary = pipeline.run(options, recorder.on_batch, recorder.on_progress)
    return pipeline, summary, recorder


class TestStreaming:
    """Batch delivery"""

    def test_batches_and_progress(self, provider):
        pipeline, summary, rec = run(provider, from_ref="v1.0", to_ref="v2.0",
                                     strategy="linear", batch_size=4)
        assert summary.success
        assert summary.state == PipelineState.DONE
        assert [len(c) for c, _ in rec.batches] == [4, 2]
        assert [p.to_dict() for _, p in rec.batches] == [
            {"processed": 4, "total": 6}, {"processed": 6, "total": 6}]
        assert rec.shas == [sha(n) for n in (12, 11, 10, 9, 8, 7)]
        assert summary.total_commits == 6
        assert summary.api_strategy_used is FetchStrategy.LINEAR
        assert summary.from_sha == sha(6) and summary.to_sha == sha(12)
        assert rec.messages[0] == "Initializing GitHub clients..."
        assert "Processing commits 1-4 of 6..." in rec.messages
        assert rec.messages[-1] == "Processing complete. Generating summary..."
        assert rec.sleeps == [0.1]

    def test_commits_are_parsed(self, provider):
        _, _, rec = run(provider, from_ref="v1.0", to_ref="v2.0", strategy="linear")
        by_sha = {c.sha: c for commits, _ in rec.batches for c in commits}
        assert by_sha[sha(7)].classifier == "feat"
        assert by_sha[sha(7)].ticket_id == "APP-7"
        assert by_sha[sha(10)].clean_message == "util docs"
        assert by_sha[sha(12)].classifier == "chore"

    def test_streamed_batches_match_non_streaming_result(self, provider):
        _, _, rec = run(provider, from_ref="v1.0", to_ref="v2.0", token="t",
                        target_dir="app/", batch_size=3)
        result = get_commits_between(DiffOptions(repository_url=REPO_URL, from_ref="v1.0",
                                                 to_ref="v2.0", token="t", target_dir="app/"),
                                     provider=provider)
        assert result.success
        assert [c.sha for c in result.commits] == rec.shas

    def test_directory_filter_applied(self, provider):
        _, summary, rec = run(provider, from_ref="v1.0", to_ref="v2.0", token="t",
                              target_dir="app/", exclude_sub_paths="tests/")
        assert rec.shas == [sha(12), sha(10), sha(7)]
        assert summary.api_strategy_used is FetchStrategy.GRAPH
        assert summary.skipped == 3
        # c11 carried a harvested empty file list
        assert ("get_changed_files", sha(11)) not in provider.calls

    def test_request_count_includes_file_lookups(self, provider):
        _, summary, _ = run(provider, from_ref="v1.0", to_ref="v2.0", token="t", target_dir="app/")
        assert summary.request_count == 1 + 5

    def test_file_lookup_failure_skips_commit(self, provider):
        provider.fail_files.add(sha(12))
        _, summary, rec = run(provider, from_ref="v1.0", to_ref="v2.0", token="t", target_dir="app/")
        assert summary.success
        assert rec.shas == [sha(10), sha(9), sha(7)]


class TestStrategies:
    """Strategy selection and fallback"""

    def test_fallback_yields_linear_result(self, provider):
        _, linear, linear_rec = run(provider, from_ref="v1.0", to_ref="v2.0", strategy="linear",
                                    target_dir="app/", exclude_sub_paths="tests/")
        provider.fail_graph = True
        _, fallback, fallback_rec = run(provider, from_ref="v1.0", to_ref="v2.0", token="t",
                                        target_dir="app/", exclude_sub_paths="tests/")
        assert fallback.success
        assert fallback.api_strategy_used is FetchStrategy.LINEAR_FALLBACK
        assert FALLBACK_WARNING in fallback.warning
        assert fallback_rec.shas == linear_rec.shas == [sha(12), sha(10), sha(7)]

    def test_graph_and_linear_agree(self, provider):
        _, _, graph_rec = run(provider, from_ref="v1.0", to_ref="v2.0", token="t", target_dir="app/")
        _, _, linear_rec = run(provider, from_ref="v1.0", to_ref="v2.0", strategy="linear",
                               target_dir="app/")
        assert set(graph_rec.shas) == set(linear_rec.shas)

    def test_forced_graph_failure_is_reported(self, provider):
        provider.fail_graph = True
        pipeline, summary, rec = run(provider, from_ref="v1.0", to_ref="v2.0", strategy="graph")
        assert not summary.success
        assert "History query failed" in summary.error
        assert summary.state == PipelineState.FAILED
        assert rec.batches == []

    def test_unconfirmed_boundary_is_flagged(self, provider):
        _, summary, rec = run(provider, from_ref="v1.0", to_ref="v2.0", strategy="graph", max_commits=2)
        assert not summary.boundary_confirmed
        assert UNCONFIRMED_BOUNDARY_WARNING in summary.warning
        assert rec.shas == [sha(12), sha(11)]


class TestReferenceDefaults:
    """Missing and identical references"""

    def test_same_reference(self, provider):
        pipeline, summary, rec = run(provider, from_ref="v2.0", to_ref="main", strategy="linear")
        assert summary.success
        assert summary.total_commits == 0
        assert summary.warning == SAME_REFERENCE_WARNING
        assert rec.batches == []
        assert not {"walk_history", "list_commits", "compare"} & set(provider.call_names())
        assert summary.state == PipelineState.DONE

    @pytest.mark.parametrize("from_ref,to_ref,warning", [
        (None, None, NO_VERSION_WARNING),
        (None, "v2.0", NO_FROM_WARNING),
    ])
    def test_latest_commit_only(self, provider, from_ref, to_ref, warning):
        _, summary, rec = run(provider, from_ref=from_ref, to_ref=to_ref, strategy="linear")
        assert summary.success
        assert summary.warning == warning
        assert summary.from_ref == "HEAD~1" and summary.to_ref == "HEAD"
        assert rec.shas == [sha(12)]
        assert warning in rec.messages

    def test_missing_to_reference(self, provider):
        _, summary, rec = run(provider, from_ref="v1.0", strategy="linear")
        assert summary.warning == NO_TO_WARNING
        assert summary.to_ref == "HEAD"
        assert len(rec.shas) == 6


class TestFailures:
    """Errors never escape the pipeline"""

    def test_unknown_reference(self, provider):
        pipeline, summary, _ = run(provider, from_ref="v9.9", to_ref="v2.0")
        assert not summary.success
        assert summary.error == "Could not find tag or commit: v9.9"
        assert summary.repository.full_name == "acme/widgets"
        assert summary.state == PipelineState.FAILED
        assert summary.to_dict()["success"] is False

    def test_invalid_repository_url(self, provider):
        pipeline = StreamingPipeline(provider=provider)
        summary = pipeline.run(DiffOptions(repository_url="https://example.com/x"), None)
        assert not summary.success
        assert summary.repository is None
        assert "Invalid GitHub repository URL" in summary.error

    def test_non_streaming_failure(self, provider):
        result = get_commits_between(DiffOptions(repository_url=REPO_URL, from_ref="nope", to_ref="v2.0"),
                                     provider=provider)
        assert not result.success
        assert result.to_dict()["error"] == "Could not find tag or commit: nope"
        assert result.commits == []


class TestCallbacks:
    """Best-effort delivery and cancellation"""

    def test_batch_callback_errors_are_ignored(self, provider):
        def broken(commits, progress):
            raise RuntimeError("sink exploded")

        pipeline = StreamingPipeline(provider=provider, sleep=lambda s: None)
        summary = pipeline.run(DiffOptions(repository_url=REPO_URL, from_ref="v1.0", to_ref="v2.0",
                                           strategy="linear", batch_size=4), broken)
        assert summary.success
        assert summary.total_commits == 6
        assert summary.callback_failures == 2

    def test_progress_callback_errors_are_ignored(self, provider, caplog):
        def broken(message):
            raise ValueError("closed")

        batches = []
        pipeline = StreamingPipeline(provider=provider, sleep=lambda s: None)
        with caplog.at_level(logging.WARNING, logger="git-version-differ.pipeline"):
            summary = pipeline.run(DiffOptions(repository_url=REPO_URL, from_ref="v1.0", to_ref="v2.0",
                                               strategy="linear"), lambda c, p: batches.append(c), broken)
        assert summary.success
        assert len(batches) == 1
        assert "Progress callback error ignored" in caplog.text

    def test_consumer_disconnect_stops_delivery(self, provider):
        rec = Recorder()

        def disconnecting(commits, progress):
            rec.on_batch(commits, progress)
            raise ConsumerDisconnected("client went away")

        pipeline = StreamingPipeline(provider=provider, sleep=rec.sleep)
        summary = pipeline.run(DiffOptions(repository_url=REPO_URL, from_ref="v1.0", to_ref="v2.0",
                                           strategy="linear", target_dir="app/", batch_size=2),
                               disconnecting, rec.on_progress)
        assert summary.success
        assert summary.cancelled
        assert summary.state == PipelineState.CANCELLED
        assert len(rec.batches) == 1
        assert rec.events[-1][0] == "batch"
        assert rec.sleeps == []
        assert summary.callback_failures == 0
        # filtering carried on after the disconnect
        assert provider.call_names().count("get_changed_files") == 4
        assert summary.total_commits == 4
        assert summary.skipped == 0

    def test_disconnect_keeps_same_totals_as_full_run(self, provider):
        options = DiffOptions(repository_url=REPO_URL, from_ref="v1.0", to_ref="v2.0",
                              strategy="linear", target_dir="app/", exclude_sub_paths="tests",
                              batch_size=2)
        full = StreamingPipeline(provider=provider, sleep=lambda s: None).run(options, None)

        def disconnecting(commits, progress):
            raise ConsumerDisconnected("client went away")

        cut = StreamingPipeline(provider=provider, sleep=lambda s: None).run(options, disconnecting)
        assert cut.cancelled and not full.cancelled
        assert (cut.total_commits, cut.skipped, cut.checked) == \
            (full.total_commits, full.skipped, full.checked)
        assert cut.total_commits == 3
        assert cut.skipped == 1

    def test_external_cancellation_signal(self, provider):
        rec = Recorder()
        cancelled = []

        def on_batch(commits, progress):
            rec.on_batch(commits, progress)
            cancelled.append(True)

        pipeline = StreamingPipeline(provider=provider, sleep=rec.sleep)
        summary = pipeline.run(DiffOptions(repository_url=REPO_URL, from_ref="v1.0", to_ref="v2.0",
                                           strategy="linear", target_dir="app/", batch_size=2),
                               on_batch, rec.on_progress, is_cancelled=lambda: bool(cancelled))
        assert summary.cancelled
        assert summary.state == PipelineState.CANCELLED
        assert len(rec.batches) == 1
        assert rec.events[-1][0] == "batch"
        assert rec.sleeps == []
        assert summary.total_commits == 4
        assert provider.call_names().count("get_changed_files") == 4

    def test_cancelled_run_still_processes_range(self, provider):
        delivered = []
        pipeline = StreamingPipeline(provider=provider, sleep=lambda s: None)
        summary = pipeline.run(DiffOptions(repository_url=REPO_URL, from_ref="v1.0", to_ref="v2.0",
                                           strategy="linear"),
                               lambda c, p: delivered.append(c), is_cancelled=lambda: True)
        assert summary.cancelled
        assert summary.success
        assert delivered == []
        assert "compare" in provider.call_names()
        assert summary.total_commits == 6

    def test_runs_on_one_instance_do_not_share_state(self, provider):
        pipeline = StreamingPipeline(provider=provider, sleep=lambda s: None)
        options = DiffOptions(repository_url=REPO_URL, from_ref="v1.0", to_ref="v2.0",
                              strategy="linear", batch_size=2)
        delivered = []
        cancelled_run = pipeline.run(options, None, is_cancelled=lambda: True)
        clean_run = pipeline.run(options, lambda c, p: delivered.append(len(c)))
        assert cancelled_run.cancelled
        assert cancelled_run.state == PipelineState.CANCELLED
        assert not clean_run.cancelled
        assert clean_run.state == PipelineState.DONE
        assert delivered == [2, 2, 2]

    def test_concurrent_runs_on_one_instance(self, provider):
        pipeline = StreamingPipeline(provider=provider, sleep=lambda s: None)
        options = DiffOptions(repository_url=REPO_URL, from_ref="v1.0", to_ref="v2.0",
                              strategy="linear", batch_size=2)
        gate = threading.Event()
        results = {}
        delivered = []

        def slow_cancel():
            gate.wait(timeout=5)
            return True

        def cancelled_worker():
            results["cancelled"] = pipeline.run(options, None, is_cancelled=slow_cancel)

        def clean_worker():
            results["clean"] = pipeline.run(options, lambda c, p: delivered.append(len(c)))
            gate.set()

        threads = [threading.Thread(target=cancelled_worker), threading.Thread(target=clean_worker)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)
        assert results["cancelled"].cancelled
        assert not results["clean"].cancelled
        assert results["clean"].state == PipelineState.DONE
        assert delivered == [2, 2, 2]

    def test_injected_logger_reaches_components(self, provider, caplog):
        provider.fail_graph = True
        log = logging.getLogger("tests.injected")
        pipeline = StreamingPipeline(provider=provider, log=log, sleep=lambda s: None)
        with caplog.at_level(logging.WARNING, logger="tests.injected"):
            pipeline.run(DiffOptions(repository_url=REPO_URL, from_ref="v1.0", to_ref="v2.0", token="t"), None)
        assert any(r.name == "tests.injected" and "falling back" in r.getMessage() for r in caplog.records)
