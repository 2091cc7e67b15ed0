from __future__ import annotations

import datetime as dt
import json
from pathlib import Path

import pytest

from git_timeline.errors import TimelineError
from git_timeline.models import Cache, Commit, RepoSnapshot
from git_timeline.repo_cache import load_cache, load_commit_snapshot, needs_refetch, save_cache, save_commit_snapshot


def _commit(sha: str, *, branch: str | None = "main") -> Commit:
    return Commit(
        sha=sha,
        message="fix things",
        date=dt.datetime(2024, 3, 1, 12, 0, tzinfo=dt.timezone.utc),
        repo="me/app",
        branch=branch,
        url=f"https://github.com/me/app/commit/{sha}",
    )


def test_needs_refetch() -> None:
    cache = Cache(repos={"me/app": RepoSnapshot(full_name="me/app", pushed_at="2024-03-01T00:00:00Z", updated_at="x")})
    same = {"full_name": "me/app", "pushed_at": "2024-03-01T00:00:00Z"}
    moved = {"full_name": "me/app", "pushed_at": "2024-03-02T00:00:00Z"}
    unknown = {"full_name": "me/other", "pushed_at": "2024-03-01T00:00:00Z"}

    assert needs_refetch(same, cache, False) is False
    assert needs_refetch(same, cache, True) is True
    assert needs_refetch(moved, cache, False) is True
    assert needs_refetch(unknown, cache, False) is True


def test_save_then_load_cache(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "repos.json"
    cache = Cache(
        repos={"me/app": RepoSnapshot(full_name="me/app", pushed_at="2024-03-01T00:00:00Z", updated_at="2024-03-02T00:00:00Z")},
        commits=[_commit("a1"), _commit("b2", branch=None)],
        last_search_date="2024-03-02T00:00:00Z",
    )
    save_cache(path, cache)

    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw["repos"]["me/app"] == {"pushed_at": "2024-03-01T00:00:00Z", "updated_at": "2024-03-02T00:00:00Z"}
    assert raw["commits"][1]["branch"] is None

    loaded = load_cache(path)
    assert loaded.repos["me/app"].pushed_at == "2024-03-01T00:00:00Z"
    assert [c.sha for c in loaded.commits] == ["a1", "b2"]
    assert loaded.commits[0] == cache.commits[0]
    assert loaded.commits[1].branch is None
    assert loaded.last_search_date == "2024-03-02T00:00:00Z"
    assert not (tmp_path / "nested" / "repos.json.tmp").exists()


def test_load_cache_reads_legacy_layout(tmp_path: Path) -> None:
    path = tmp_path / "repos.json"
    path.write_text(
        json.dumps(
            {
                "repos": {"me/app": {"pushed_at": "2024-01-01T00:00:00Z", "updated_at": "2024-01-02T00:00:00.000Z"}},
                "commits": [
                    {
                        "sha": "abc",
                        "message": "x",
                        "date": "2024-01-13T10:00:00Z",
                        "repo": "other/lib",
                        "branch": "unknown",
                        "url": "u",
                    },
                    {"message": "no sha"},
                ],
                "lastSearchDate": None,
            }
        ),
        encoding="utf-8",
    )
    cache = load_cache(path)
    assert list(cache.repos) == ["me/app"]
    assert len(cache.commits) == 1
    assert cache.commits[0].branch is None


def test_missing_or_corrupt_cache_starts_empty(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert load_cache(tmp_path / "absent.json") == Cache()

    bad = tmp_path / "repos.json"
    bad.write_text("{not json", encoding="utf-8")
    assert load_cache(bad) == Cache()
    assert "Warning:" in capsys.readouterr().err


def test_commit_snapshot(tmp_path: Path) -> None:
    path = tmp_path / "commits.json"
    assert load_commit_snapshot(path) is None

    save_commit_snapshot(path, "octo", [_commit("a1")])
    username, commits = load_commit_snapshot(path) or ("", [])
    assert username == "octo"
    assert [c.sha for c in commits] == ["a1"]

    path.write_text("[", encoding="utf-8")
    with pytest.raises(TimelineError):
        load_commit_snapshot(path)


def test_cache_that_is_not_an_object_warns(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "repos.json"
    path.write_text("[1, 2, 3]\n", encoding="utf-8")
    assert load_cache(path) == Cache()
    assert "not a JSON object" in capsys.readouterr().err
