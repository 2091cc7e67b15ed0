from __future__ import annotations

import json
import os
import sys
from pathlib import Path

from .errors import CommitParseError, TimelineError
from .models import Cache, Commit, RepoSnapshot

REPO_CACHE_FILENAME = "repos.json"
COMMIT_SNAPSHOT_FILENAME = "commits.json"


def _read_json(path: Path) -> object:
    return json.loads(path.read_text(encoding="utf-8"))


def _write_json_atomic(path: Path, data: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    os.replace(tmp, path)


def _commits_from_list(raw: object, *, source: Path) -> list[Commit]:
    out: list[Commit] = []
    skipped = 0
    for item in raw if isinstance(raw, list) else []:
        if not isinstance(item, dict):
            skipped += 1
            continue
        try:
            out.append(Commit.from_dict(item))
        except CommitParseError:
            skipped += 1
    if skipped:
        print(f"Warning: ignored {skipped} malformed commit record(s) in {source}", file=sys.stderr)
    return out


def load_cache(path: Path) -> Cache:
    if not path.exists():
        return Cache()
    try:
        data = _read_json(path)
    except (OSError, ValueError) as e:
        print(f"Warning: could not read cache {path} ({e}); starting with an empty cache.", file=sys.stderr)
        return Cache()
    if not isinstance(data, dict):
        print(f"Warning: cache {path} is not a JSON object; starting with an empty cache.", file=sys.stderr)
        return Cache()

    repos: dict[str, RepoSnapshot] = {}
    raw_repos = data.get("repos")
    if isinstance(raw_repos, dict):
        for name, snap in raw_repos.items():
            if not isinstance(snap, dict):
                continue
            pushed_at = snap.get("pushed_at")
            repos[str(name)] = RepoSnapshot(
                full_name=str(name),
                pushed_at=str(pushed_at) if pushed_at is not None else None,
                updated_at=str(snap.get("updated_at") or ""),
            )

    return Cache(
        repos=repos,
        commits=_commits_from_list(data.get("commits"), source=path),
        last_search_date=data.get("last_search_date") or data.get("lastSearchDate"),
        last_updated=data.get("last_updated") or data.get("lastUpdated"),
    )


def save_cache(path: Path, cache: Cache) -> None:
    _write_json_atomic(path, cache.to_dict())


def needs_refetch(repo: dict, cache: Cache, force_refresh: bool) -> bool:
    if force_refresh:
        return True
    snap = cache.repos.get(str(repo.get("full_name") or ""))
    if snap is None:
        return True
    return snap.pushed_at != repo.get("pushed_at")


def load_commit_snapshot(path: Path) -> tuple[str, list[Commit]] | None:
    if not path.exists():
        return None
    try:
        data = _read_json(path)
    except (OSError, ValueError) as e:
        raise TimelineError(f"could not read commit snapshot {path}: {e}") from e
    if not isinstance(data, dict):
        return None
    username = str(data.get("username") or "")
    return username, _commits_from_list(data.get("commits"), source=path)


def save_commit_snapshot(path: Path, username: str, commits: list[Commit]) -> None:
    _write_json_atomic(path, {"username": username, "commits": [c.to_dict() for c in commits]})
