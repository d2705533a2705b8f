"""
Newline-delimited JSON event framing for streaming consumers.

A stream is ``start``, any number of ``progress`` and ``commits`` records, then
one terminal ``complete`` or ``error`` record. Each line is a self-contained
JSON object.
"""

import datetime
import json
import logging
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from .config import DiffOptions
from .errors import ConsumerDisconnected
from .models import FetchProgress, ParsedCommit, StreamSummary
from .pipeline import StreamingPipeline

logger = logging.getLogger("git-version-differ.events")

TERMINAL_TYPES = ("complete", "error")


def _timestamp() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


class EventWriter:
    """
    Write pipeline output as NDJSON records through ``write``.

    A failing ``write`` marks the writer closed; later records are dropped and
    the pipeline sees a consumer disconnect.
    """

    def __init__(self, write: Callable[[str], Any], log: Optional[logging.Logger] = None) -> None:
        self._write = write
        self.log = log or logger
        self.closed = False

    def close(self) -> None:
        self.closed = True

    def emit(self, record: Dict[str, Any]) -> bool:
        if self.closed:
            return False
        record.setdefault("timestamp", _timestamp())
        try:
            self._write(json.dumps(record, default=str) + "\n")
        except Exception as e:
            self.log.warning("Failed to write %s event, closing stream: %s", record.get("type"), e)
            self.closed = True
            return False
        return True

    def start(self, options: DiffOptions) -> bool:
        return self.emit({
            "type": "start",
            "repoUrl": options.repository_url,
            "from": options.from_ref,
            "to": options.to_ref,
            "targetDir": options.target_dir,
            "excludeSubPaths": ",".join(options.exclude_sub_paths) or None,
        })

    def on_progress(self, status: str) -> None:
        if not self.emit({"type": "progress", "status": status}):
            raise ConsumerDisconnected("progress stream closed")

    def on_batch(self, commits: List[ParsedCommit], progress: FetchProgress) -> None:
        record = {
            "type": "commits",
            "commits": [c.to_dict() for c in commits],
            "progress": progress.to_dict(),
        }
        if not self.emit(record):
            raise ConsumerDisconnected("commit stream closed")

    def finish(self, summary: StreamSummary) -> bool:
        if summary.success:
            record = {"type": "complete"}
            record.update(summary.to_dict())
            return self.emit(record)
        return self.error(summary.error or "Unknown error", summary)

    def error(self, message: str, summary: Optional[StreamSummary] = None) -> bool:
        record: Dict[str, Any] = {"type": "error", "success": False, "error": message}
        if summary is not None:
            record["elapsedTime"] = summary.elapsed_time
            record["repository"] = summary.repository.to_dict() if summary.repository else None
        return self.emit(record)


def stream_commits(options: DiffOptions, write: Callable[[str], Any], pipeline=None,
                   log: Optional[logging.Logger] = None) -> StreamSummary:
    """Run a pipeline and frame its whole output as NDJSON through ``write``."""
    writer = EventWriter(write, log=log)
    pipeline = pipeline or StreamingPipeline(log=log)
    writer.start(options)
    summary = pipeline.run(options, writer.on_batch, writer.on_progress,
                           is_cancelled=lambda: writer.closed)
    writer.finish(summary)
    return summary


def read_events(lines: Iterable[str], log: Optional[logging.Logger] = None) -> Iterator[Dict[str, Any]]:
    """
    Parse NDJSON event lines, skipping blank and malformed records.

    Reading stops after the first terminal (``complete`` or ``error``) record.
    """
    log = log or logger
    for number, line in enumerate(lines, start=1):
        text = line.strip()
        if not text:
            continue
        try:
            record = json.loads(text)
        except json.JSONDecodeError as e:
            log.warning("Skipping malformed event on line %d: %s", number, e)
            continue
        if not isinstance(record, dict) or "type" not in record:
            log.warning("Skipping event without a type on line %d", number)
            continue
        yield record
        if record["type"] in TERMINAL_TYPES:
            return
