"""
Commit message parsing module.

Extracts a release classifier and an issue-tracker ticket identifier from the
first line of a commit message.
"""

import re
from dataclasses import dataclass
from typing import Optional

from .models import ParsedCommit, RawCommit

CLASSIFIERS = (
    "major", "minor", "patch", "fix", "maint", "chore", "feat", "feature",
    "docs", "style", "refactor", "test", "build", "ci", "perf", "revert",
)


@dataclass(frozen=True)
class MessageInfo:
    classifier: Optional[str]
    ticket_id: Optional[str]
    clean_message: str


class CommitParser:
    """
    Parse commit messages of the form ``type(scope)!: [ABC-123] description``.

    The scope, breaking marker and ticket are optional; a bare space may stand
    in for the colon. Messages that do not start with a known classifier still
    yield a ticket if one appears anywhere in brackets.
    """

    # Only the classifier is case-insensitive; ticket keys are upper case
    CLASSIFIER_RE = re.compile(
        r"^(?i:(?P<type>" + "|".join(CLASSIFIERS) + r"))"
        r"(?:\((?P<scope>[^)]+)\))?!?"
        r"(?::\s*|\s+)"
        r"(?:\[(?P<ticket>[A-Z]+-\d+)\]\s*)?"
        r"(?P<desc>.*)$"
    )
    TICKET_RE = re.compile(r"\[([A-Z]+-\d+)\]")

    @staticmethod
    def parse(message: Optional[str]) -> MessageInfo:
        """
        Parse commit message. Never fails.

        Returns:
            MessageInfo(classifier, ticket_id, clean_message)
        """
        text = (message or "").strip()
        first = text.splitlines()[0] if text else ""
        m = CommitParser.CLASSIFIER_RE.match(first)
        if m:
            return MessageInfo(
                classifier=m.group("type").lower(),
                ticket_id=m.group("ticket"),
                clean_message=m.group("desc").strip(),
            )
        ticket = CommitParser.TICKET_RE.search(text)
        return MessageInfo(
            classifier=None,
            ticket_id=ticket.group(1) if ticket else None,
            clean_message=text,
        )

    @staticmethod
    def parse_commit(commit: RawCommit) -> ParsedCommit:
        message = commit.message or f"Commit {commit.short_sha}"
        info = CommitParser.parse(message)
        return ParsedCommit(
            sha=commit.sha,
            message=message,
            author_name=commit.author_name,
            author_date=commit.author_date,
            changed_files=list(commit.changed_files) if commit.changed_files is not None else None,
            classifier=info.classifier,
            ticket_id=info.ticket_id,
            clean_message=info.clean_message,
        )
