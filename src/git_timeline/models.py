from __future__ import annotations

import dataclasses
import datetime as dt

from .errors import CommitParseError

# Older caches tagged search results with this branch name.
LEGACY_UNKNOWN_BRANCH = "unknown"


def normalize_login(login: str) -> str:
    return (login or "").strip().lstrip("@").casefold()


def parse_timestamp(value: str) -> dt.datetime:
    s = (value or "").strip()
    if not s:
        raise ValueError("empty timestamp")
    if s.endswith("Z") or s.endswith("z"):
        s = s[:-1] + "+00:00"
    ts = dt.datetime.fromisoformat(s)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=dt.timezone.utc)
    return ts


def format_timestamp(ts: dt.datetime) -> str:
    return ts.astimezone(dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def utc_now_iso() -> str:
    return format_timestamp(dt.datetime.now(tz=dt.timezone.utc))


def _first_line(message: str) -> str:
    return (message or "").split("\n", 1)[0].rstrip("\r")


@dataclasses.dataclass(frozen=True)
class Commit:
    sha: str
    message: str
    date: dt.datetime
    repo: str
    branch: str | None
    url: str

    @property
    def utc_date(self) -> dt.date:
        return self.date.astimezone(dt.timezone.utc).date()

    @classmethod
    def from_api(cls, item: object, *, repo: str, branch: str | None) -> Commit:
        """
        Validate a commit record as returned by the commits or search API.

        Only the first line of the message is kept.
        """
        if not isinstance(item, dict):
            raise CommitParseError(f"commit record is not an object: {type(item).__name__}")
        sha = str(item.get("sha") or "").strip()
        if not sha:
            raise CommitParseError("commit record missing sha")
        inner = item.get("commit")
        if not isinstance(inner, dict):
            raise CommitParseError(f"commit {sha} missing commit details")
        message = inner.get("message")
        if not isinstance(message, str):
            raise CommitParseError(f"commit {sha} missing message")
        author = inner.get("author")
        raw_date = author.get("date") if isinstance(author, dict) else None
        if not isinstance(raw_date, str) or not raw_date.strip():
            raise CommitParseError(f"commit {sha} missing author date")
        try:
            date = parse_timestamp(raw_date)
        except ValueError as e:
            raise CommitParseError(f"commit {sha} has invalid author date {raw_date!r}") from e
        if not (repo or "").strip():
            raise CommitParseError(f"commit {sha} missing repository name")
        return cls(
            sha=sha,
            message=_first_line(message),
            date=date,
            repo=repo,
            branch=branch,
            url=str(item.get("html_url") or ""),
        )

    @classmethod
    def from_dict(cls, data: dict) -> Commit:
        sha = str(data.get("sha") or "").strip()
        if not sha:
            raise CommitParseError("cached commit missing sha")
        try:
            date = parse_timestamp(str(data.get("date") or ""))
        except ValueError as e:
            raise CommitParseError(f"cached commit {sha} has invalid date") from e
        branch = data.get("branch")
        if branch is None or branch == LEGACY_UNKNOWN_BRANCH:
            branch = None
        return cls(
            sha=sha,
            message=str(data.get("message") or ""),
            date=date,
            repo=str(data.get("repo") or ""),
            branch=str(branch) if branch is not None else None,
            url=str(data.get("url") or ""),
        )

    def to_dict(self) -> dict:
        return {
            "sha": self.sha,
            "message": self.message,
            "date": format_timestamp(self.date),
            "repo": self.repo,
            "branch": self.branch,
            "url": self.url,
        }


@dataclasses.dataclass
class RepoSnapshot:
    full_name: str
    pushed_at: str | None
    updated_at: str

    def to_dict(self) -> dict:
        return {"pushed_at": self.pushed_at, "updated_at": self.updated_at}


@dataclasses.dataclass
class Cache:
    repos: dict[str, RepoSnapshot] = dataclasses.field(default_factory=dict)
    commits: list[Commit] = dataclasses.field(default_factory=list)
    last_search_date: str | None = None
    last_updated: str | None = None

    def to_dict(self) -> dict:
        return {
            "repos": {name: snap.to_dict() for name, snap in sorted(self.repos.items())},
            "commits": [c.to_dict() for c in self.commits],
            "last_search_date": self.last_search_date,
            "last_updated": self.last_updated,
        }
