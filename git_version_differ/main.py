#!/usr/bin/env python3
"""
Command-line driver for the version differ.

Lists the commits between two tags, branches or commit SHAs of a GitHub
repository.

Usage (example):
    python -m git_version_differ.main https://github.com/octocat/Hello-World v1.0 v1.1 --token GITHUB_TOKEN
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .config import DEFAULT_MAX_COMMITS, DiffOptions, parse_strategy
from .events import stream_commits
from .models import RangeResult
from .pipeline import get_commits_between

logger = logging.getLogger("git-version-differ")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="git-version-differ",
        description="List commits between two Git tags, branches or commit SHAs of a GitHub repository.",
    )
    parser.add_argument("repo_url", help="GitHub repository URL")
    parser.add_argument("from_ref", nargs="?", help="Starting tag, branch or commit SHA")
    parser.add_argument("to_ref", nargs="?", help="Ending tag, branch or commit SHA")
    parser.add_argument("--token", "-t", help="GitHub token (or set GITHUB_TOKEN)")
    parser.add_argument("--target-dir", help="Only keep commits that changed files in this directory")
    parser.add_argument("--exclude-sub-paths", default="",
                        help="Comma-separated sub-paths of the target directory to exclude")
    parser.add_argument("--strategy", type=parse_strategy,
                        help="Force 'graph' (history query) or 'linear' (commit listing)")
    parser.add_argument("--max-commits", type=int, default=DEFAULT_MAX_COMMITS,
                        help="Maximum number of commits to walk")
    parser.add_argument("--format", "-f", choices=("human", "json", "ndjson"), default="human",
                        help="Output format")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser


def _print_human(result: RangeResult) -> None:
    s = result.summary
    print(f"Repository: {s.repository.full_name}")
    print(f"From: {s.from_ref} ({(s.from_sha or '')[:7]})")
    print(f"To: {s.to_ref} ({(s.to_sha or '')[:7]})")
    if s.api_strategy_used:
        print(f"Strategy: {s.api_strategy_used.value}")
    if s.warning:
        print(f"Warning: {s.warning}")
    print("-" * 80)
    if not result.commits:
        print("No commits found between the specified references.")
    for index, commit in enumerate(result.commits, start=1):
        line = f"{index}. {commit.short_sha} {commit.clean_message or commit.message.splitlines()[0]}"
        if commit.classifier:
            line += f" [{commit.classifier.upper()}]"
        if commit.ticket_id:
            line += f" [{commit.ticket_id}]"
        print(line)
        date = commit.author_date.strftime("%Y-%m-%d %H:%M") if commit.author_date else "unknown date"
        print(f"   By: {commit.author_name or 'Unknown'} on {date}")
    print(f"Total commits: {result.total_commits}")
    print(f"Total elapsed time: {s.elapsed_time}")


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Process exit status
    """
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        stream=sys.stderr,
    )

    try:
        options = DiffOptions(
            repository_url=args.repo_url,
            from_ref=args.from_ref,
            to_ref=args.to_ref,
            token=args.token,
            target_dir=args.target_dir,
            exclude_sub_paths=args.exclude_sub_paths,
            strategy=args.strategy,
            max_commits=args.max_commits,
        )
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    try:
        if args.format == "ndjson":
            summary = stream_commits(options, sys.stdout.write)
            return 0 if summary.success else 1

        logger.info("Resolving %s..%s in %s", options.from_ref, options.to_ref, options.repository_url)
        result = get_commits_between(options)
        if args.format == "json":
            out = sys.stdout if result.success else sys.stderr
            print(json.dumps(result.to_dict(), indent=2, default=str), file=out)
        elif result.success:
            _print_human(result)
        else:
            print(f"Error: {result.summary.error}", file=sys.stderr)
            if "rate limit" in (result.summary.error or "").lower():
                print("Tip: set GITHUB_TOKEN or pass --token to raise the rate limit", file=sys.stderr)
            print(f"Total elapsed time: {result.summary.elapsed_time}", file=sys.stderr)
        return 0 if result.success else 1

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        print("\nOperation cancelled by user", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
