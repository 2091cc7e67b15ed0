from __future__ import annotations

import dataclasses
import sys
import threading
import time
from typing import Callable, Protocol
from urllib.parse import quote

from .concurrency import MAX_CONCURRENT, run_bounded
from .errors import ApiError, AuthenticationError, CommitParseError, TimelineError
from .models import Cache, Commit, RepoSnapshot, normalize_login, utc_now_iso
from .repo_cache import needs_refetch

REPO_FILTERS = ("all", "owned", "forks", "contributions")
REPO_FILTER_LABELS = {
    "all": "all repositories",
    "owned": "owned repositories (no forks)",
    "forks": "forked repositories only",
    "contributions": "external contributions only",
}

SEARCH_PAGE_SIZE = 100
SEARCH_MAX_PAGES = 10  # search API stops at 1000 results
SEARCH_DELAY_S = 2.5  # search API allows 30 requests/minute

SKIP_REPO_STATUSES = (403, 404)
SKIP_BRANCH_STATUSES = (404, 409)


class ApiClient(Protocol):
    def get_json(self, endpoint: str) -> object: ...

    def fetch_all_pages(self, endpoint: str) -> list: ...


@dataclasses.dataclass
class CollectStats:
    repos_seen: int = 0
    repos_cached: int = 0
    repos_updated: int = 0
    repos_skipped: int = 0
    repos_failed: int = 0
    branches_skipped: int = 0
    branches_failed: int = 0
    malformed_commits: int = 0
    new_commits_phase1: int = 0
    new_commits_phase2: int = 0
    search_total: int = 0
    search_pages: int = 0
    search_failed: bool = False


@dataclasses.dataclass
class CollectResult:
    username: str
    commits: list[Commit]
    stats: CollectStats


def repo_matches_filter(repo: dict, repo_filter: str, username: str) -> bool:
    if repo_filter == "owned":
        owner = repo.get("owner") if isinstance(repo.get("owner"), dict) else {}
        return not bool(repo.get("fork")) and normalize_login(str(owner.get("login") or "")) == normalize_login(username)
    if repo_filter == "forks":
        return bool(repo.get("fork"))
    return True


def _warn(msg: str) -> None:
    print(f"Warning: {msg}", file=sys.stderr)


class CommitCollector:
    """
    Two-phase commit acquisition.

    Phase 1 walks every branch of every repository the token can list;
    phase 2 runs an author search to pick up commits merged elsewhere. Both
    feed one SHA-keyed map, so a commit seen on several branches or in both
    phases is stored once (first sighting wins).
    """

    def __init__(
        self,
        client: ApiClient,
        cache: Cache,
        *,
        force_refresh: bool = False,
        max_concurrency: int = MAX_CONCURRENT,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.cache = cache
        self.force_refresh = force_refresh
        self.max_concurrency = max_concurrency
        self._sleep = sleep
        self._lock = threading.Lock()
        self._commits: dict[str, Commit] = {}
        self.stats = CollectStats()

    @property
    def commits(self) -> list[Commit]:
        with self._lock:
            return list(self._commits.values())

    def _add(self, commit: Commit) -> bool:
        with self._lock:
            if commit.sha in self._commits:
                return False
            self._commits[commit.sha] = commit
            return True

    def resolve_username(self, target_user: str | None) -> str:
        try:
            user = self.client.get_json("/user")
        except ApiError as e:
            if e.status == 401:
                raise AuthenticationError("GitHub rejected the token (Bad credentials)") from e
            raise
        login = str(user.get("login") or "") if isinstance(user, dict) else ""
        username = (target_user or "").strip().lstrip("@") or login
        if not username:
            raise AuthenticationError("could not determine the GitHub user for this token")
        return username

    def collect(self, target_user: str | None = None, repo_filter: str = "all") -> CollectResult:
        if repo_filter not in REPO_FILTERS:
            raise ValueError(f"invalid repo filter: {repo_filter!r} (expected one of {', '.join(REPO_FILTERS)})")

        username = self.resolve_username(target_user)
        print(f"Fetching commits for @{username}")
        print(f"Filter: {REPO_FILTER_LABELS[repo_filter]}")

        if not self.force_refresh and self.cache.commits:
            print(f"Loaded {len(self.cache.commits)} cached commits")
            for c in self.cache.commits:
                self._commits.setdefault(c.sha, c)

        if repo_filter != "contributions":
            self.collect_accessible_repos(username, repo_filter)
        if repo_filter in ("all", "contributions"):
            self.search_contributions(username)

        commits = self.commits
        self.cache.commits = commits
        self.cache.last_updated = utc_now_iso()
        repo_count = len({c.repo for c in commits})
        print(f"Total: {len(commits)} unique commits across {repo_count} repositories")
        return CollectResult(username=username, commits=commits, stats=self.stats)

    # Phase 1

    def collect_accessible_repos(self, username: str, repo_filter: str) -> None:
        print("\nPhase 1: loading your repositories...")
        all_repos = self.client.fetch_all_pages("/user/repos?type=all&sort=updated")
        repos = [r for r in all_repos if isinstance(r, dict) and repo_matches_filter(r, repo_filter, username)]
        stale = [r for r in repos if needs_refetch(r, self.cache, self.force_refresh)]
        self.stats.repos_seen = len(repos)
        self.stats.repos_cached = len(repos) - len(stale)
        print(f"Found {len(repos)} repositories ({self.stats.repos_cached} cached, {len(stale)} to update)")
        if not stale:
            return

        done = 0

        def process(repo: dict) -> None:
            nonlocal done
            self._process_repo(repo, username)
            with self._lock:
                done += 1
                n = done
            if n % 10 == 0 or n == len(stale):
                print(f"Processed {n}/{len(stale)} repositories...")

        run_bounded(stale, process, limit=self.max_concurrency)
        print(f"Found {self.stats.new_commits_phase1} new commits in {self.stats.repos_updated} updated repositories")
        if self.stats.repos_failed:
            _warn(f"{self.stats.repos_failed} repositories were incomplete and will be fetched again next run")

    def _process_repo(self, repo: dict, username: str) -> None:
        full_name = str(repo.get("full_name") or "")
        try:
            branches = self.client.fetch_all_pages(f"/repos/{full_name}/branches")
        except ApiError as e:
            if e.status not in SKIP_REPO_STATUSES:
                self._repo_failed(full_name, e)
                return
            _warn(f"skipping {full_name}: HTTP {e.status}")
            with self._lock:
                self.stats.repos_skipped += 1
            return
        except TimelineError as e:
            self._repo_failed(full_name, e)
            return

        complete = True
        for branch in branches:
            name = str(branch.get("name") or "") if isinstance(branch, dict) else ""
            if name and not self._process_branch(full_name, name, username):
                complete = False

        if not complete:
            # No snapshot, so the next run fetches this repo again.
            with self._lock:
                self.stats.repos_failed += 1
            return
        with self._lock:
            self.cache.repos[full_name] = RepoSnapshot(
                full_name=full_name,
                pushed_at=repo.get("pushed_at"),
                updated_at=utc_now_iso(),
            )
            self.stats.repos_updated += 1

    def _repo_failed(self, full_name: str, e: TimelineError) -> None:
        _warn(f"failed to fetch {full_name}: {e}")
        with self._lock:
            self.stats.repos_failed += 1

    def _process_branch(self, full_name: str, branch: str, username: str) -> bool:
        """Returns False when the branch could not be read and should be retried next run."""
        endpoint = f"/repos/{full_name}/commits?sha={quote(branch, safe='')}&author={quote(username, safe='')}"
        try:
            items = self.client.fetch_all_pages(endpoint)
        except ApiError as e:
            if e.status not in SKIP_BRANCH_STATUSES:
                return self._branch_failed(full_name, branch, e)
            _warn(f"skipping {full_name}@{branch}: HTTP {e.status}")
            with self._lock:
                self.stats.branches_skipped += 1
            return True
        except TimelineError as e:
            return self._branch_failed(full_name, branch, e)

        for item in items:
            try:
                commit = Commit.from_api(item, repo=full_name, branch=branch)
            except CommitParseError as e:
                _warn(f"{full_name}@{branch}: {e}")
                with self._lock:
                    self.stats.malformed_commits += 1
                continue
            if self._add(commit):
                with self._lock:
                    self.stats.new_commits_phase1 += 1
        return True

    def _branch_failed(self, full_name: str, branch: str, e: TimelineError) -> bool:
        _warn(f"failed to fetch {full_name}@{branch}: {e}")
        with self._lock:
            self.stats.branches_failed += 1
        return False

    # Phase 2

    def search_contributions(self, username: str) -> None:
        print("\nPhase 2: searching for contributions to other repositories...")
        q = quote(f"author:{username}", safe=":")
        for page in range(1, SEARCH_MAX_PAGES + 1):
            if page > 1:
                self._sleep(SEARCH_DELAY_S)
            try:
                data = self.client.get_json(
                    f"/search/commits?q={q}&sort=author-date&order=desc&per_page={SEARCH_PAGE_SIZE}&page={page}"
                )
            except TimelineError as e:
                # 422 means the query is past the result window; anything else
                # is best effort too: keep what we have.
                if not (isinstance(e, ApiError) and e.status == 422):
                    _warn(f"search stopped at page {page}: {e}")
                    self.stats.search_failed = True
                break

            data = data if isinstance(data, dict) else {}
            items = data.get("items") or []
            if not isinstance(items, list) or not items:
                break
            self.stats.search_pages = page
            self.stats.search_total = int(data.get("total_count") or 0)

            for item in items:
                repository = item.get("repository") if isinstance(item, dict) else None
                repo_name = str(repository.get("full_name") or "") if isinstance(repository, dict) else ""
                try:
                    commit = Commit.from_api(item, repo=repo_name, branch=None)
                except CommitParseError as e:
                    _warn(f"search result: {e}")
                    self.stats.malformed_commits += 1
                    continue
                if self._add(commit):
                    self.stats.new_commits_phase2 += 1

            print(f"Searched {min(page * SEARCH_PAGE_SIZE, self.stats.search_total)} of {min(self.stats.search_total, SEARCH_MAX_PAGES * SEARCH_PAGE_SIZE)} commits...")
            if len(items) < SEARCH_PAGE_SIZE or page * SEARCH_PAGE_SIZE >= self.stats.search_total:
                break

        self.cache.last_search_date = utc_now_iso()
        print(f"Found {self.stats.new_commits_phase2} additional commits from {self.stats.search_total} total public contributions")
