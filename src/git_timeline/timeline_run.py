from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .collect import REPO_FILTER_LABELS, REPO_FILTERS, CommitCollector
from .config import load_config, load_token, merged_config
from .github_api import GitHubClient
from .models import Cache, Commit
from .repo_cache import (
    COMMIT_SNAPSHOT_FILENAME,
    REPO_CACHE_FILENAME,
    load_cache,
    load_commit_snapshot,
    save_cache,
    save_commit_snapshot,
)
from .timeline_aggregate import aggregate_commits
from .timeline_write import write_outputs


def format_startup_header(
    *,
    username: str,
    repo_filter: str,
    cache_dir: Path,
    output_dir: Path,
    use_cache: bool,
    force_refresh: bool,
    max_concurrency: int,
) -> str:
    if use_cache:
        source = f"cached snapshot only ({cache_dir / COMMIT_SNAPSHOT_FILENAME}); no API calls"
    elif force_refresh:
        source = "GitHub API, full refresh (incremental cache ignored)"
    else:
        source = f"GitHub API, incremental (unchanged repos reused from {cache_dir / REPO_CACHE_FILENAME})"
    phases: list[str] = []
    if repo_filter != "contributions":
        phases.append(f"every branch of accessible repos ({max_concurrency} at a time)")
    if repo_filter in ("all", "contributions"):
        phases.append("commit search for contributions elsewhere")
    lines = [
        "┌──────────────────────────────────────────────────────────────┐",
        "│                     git history timeline                     │",
        "└──────────────────────────────────────────────────────────────┘",
        "",
        "Run plan:",
        f"1) User: @{username}" if username else "1) User: token owner",
        f"2) Commits: {source}",
        f"   Filter: {REPO_FILTER_LABELS.get(repo_filter, repo_filter)}",
    ]
    if not use_cache:
        lines.append("   Phases: " + "; ".join(phases))
    lines.extend(
        [
            "3) Aggregate per day/year and lay out yearly calendars",
            f"4) Write: {output_dir}/ (timeline.json, widget-data.json, timeline.txt)",
            "",
        ]
    )
    return "\n".join(lines)


def _fetch_commits(
    *,
    token: str,
    api_base: str,
    username: str,
    repo_filter: str,
    force_refresh: bool,
    cache_dir: Path,
    max_concurrency: int,
) -> tuple[str, list[Commit]]:
    cache_path = cache_dir / REPO_CACHE_FILENAME
    cache = Cache() if force_refresh else load_cache(cache_path)
    client = GitHubClient(token, api_base=api_base)
    collector = CommitCollector(client, cache, force_refresh=force_refresh, max_concurrency=max_concurrency)
    result = collector.collect(username or None, repo_filter)

    save_cache(cache_path, cache)
    print(f"\nSaved cache ({len(cache.repos)} repos, {len(cache.commits)} commits)")
    save_commit_snapshot(cache_dir / COMMIT_SNAPSHOT_FILENAME, result.username, result.commits)
    return result.username, result.commits


def run_timeline(*, args: argparse.Namespace) -> int:
    config_path = Path(args.config)
    config = merged_config(load_config(config_path))

    username = str(args.user or config.get("github_username") or "").strip().lstrip("@")
    repo_filter = str(args.repos or config.get("repo_filter") or "all")
    if repo_filter not in REPO_FILTERS:
        raise SystemExit(f"Invalid repo filter: {repo_filter!r} (valid: {', '.join(REPO_FILTERS)})")
    cache_dir = Path(args.cache_dir or config["cache_dir"])
    output_dir = Path(args.output_dir or config["output_dir"])
    max_concurrency = int(config.get("max_concurrency") or 5)
    years = [str(y) for y in (args.years or config.get("years") or [])] or None

    print(
        format_startup_header(
            username=username,
            repo_filter=repo_filter,
            cache_dir=cache_dir,
            output_dir=output_dir,
            use_cache=bool(args.cached),
            force_refresh=bool(args.refresh),
            max_concurrency=max_concurrency,
        )
    )

    snapshot = load_commit_snapshot(cache_dir / COMMIT_SNAPSHOT_FILENAME) if args.cached else None
    if snapshot is not None:
        username, commits = snapshot
        print(f"Loaded {len(commits)} cached commits for @{username}")
    else:
        if args.cached:
            print("No cached commit snapshot found; fetching from GitHub.")
        token = load_token(config_path.resolve().parent / ".env")
        username, commits = _fetch_commits(
            token=token,
            api_base=str(config["api_base"]),
            username=username,
            repo_filter=repo_filter,
            force_refresh=bool(args.refresh),
            cache_dir=cache_dir,
            max_concurrency=max_concurrency,
        )

    if not commits:
        print("\nWarning: no commits found. This could mean:", file=sys.stderr)
        print("- the account has no commits", file=sys.stderr)
        print("- the token lacks the 'repo' or 'read:user' scope", file=sys.stderr)
        print("- rate limits were exceeded", file=sys.stderr)

    print("\nAggregating commits by date...")
    agg = aggregate_commits(commits)
    print(f"{agg.total_commits:,} commits across {len(agg.years)} years")

    written = write_outputs(output_dir, username=username, agg=agg, years=years, text=not args.no_text)
    for p in written:
        print(f"Wrote: {p}")
    print(f"Done. Output in: {output_dir}")
    return 0
