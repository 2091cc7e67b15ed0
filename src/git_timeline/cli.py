from __future__ import annotations

import argparse
import sys
from pathlib import Path

from . import __version__
from .collect import REPO_FILTERS
from .config import TOKEN_HELP
from .errors import AuthenticationError, TimelineError
from .timeline_run import run_timeline


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="git-timeline",
        description="Build a complete commit timeline for a GitHub user across all repos and branches.",
    )
    parser.add_argument("--user", type=str, default="", help="GitHub username (default: the token owner).")
    parser.add_argument(
        "--repos",
        choices=REPO_FILTERS,
        default=None,
        help="Repositories to include: all (default), owned (no forks), forks, contributions (search only).",
    )
    parser.add_argument("--cached", action="store_true", help="Use the last cached commit snapshot; skip all API calls.")
    parser.add_argument("--refresh", action="store_true", help="Ignore the incremental cache and refetch every repository.")
    parser.add_argument("--config", type=Path, default=Path("config.json"), help="Path to config.json.")
    parser.add_argument("--cache-dir", type=Path, default=None, help="Cache directory (default: .cache).")
    parser.add_argument("--output-dir", type=Path, default=None, help="Output directory (default: dist).")
    parser.add_argument("--years", type=int, nargs="+", default=None, help="Only lay out calendars for these years.")
    parser.add_argument("--no-text", action="store_true", help="Skip writing the plain-text heatmap.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    args = _build_parser().parse_args(argv)
    try:
        return run_timeline(args=args)
    except AuthenticationError as e:
        print(f"Error: {e}", file=sys.stderr)
        print(TOKEN_HELP, file=sys.stderr)
        return 1
    except TimelineError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
