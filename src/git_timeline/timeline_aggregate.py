from __future__ import annotations

import dataclasses
from collections import defaultdict
from typing import Iterable

from .models import Commit

LOW_ACTIVITY_MAX_DAILY = 4


@dataclasses.dataclass
class TimelineAggregate:
    by_date: dict[str, int]  # "2025-01-13" -> commits
    by_year: dict[str, dict[str, int]]  # "2025" -> {"2025-01-13": commits}
    repos_by_date: dict[str, list[str]]  # "2025-01-13" -> sorted repo names
    year_totals: dict[str, int]
    year_max_daily: dict[str, int]  # color scale for that year only
    repo_count: int
    years: list[str]  # newest first

    @property
    def total_commits(self) -> int:
        return sum(self.year_totals.values())

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)


def aggregate_commits(commits: Iterable[Commit]) -> TimelineAggregate:
    seen: set[str] = set()
    by_date: dict[str, int] = defaultdict(int)
    by_year: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
    repos_by_date: dict[str, set[str]] = defaultdict(set)
    repos: set[str] = set()

    for c in commits:
        if c.sha in seen:
            continue
        seen.add(c.sha)
        day = c.utc_date.isoformat()
        year = day[:4]
        by_date[day] += 1
        by_year[year][day] += 1
        repos_by_date[day].add(c.repo)
        repos.add(c.repo)

    year_totals = {y: sum(days.values()) for y, days in by_year.items()}
    year_max_daily = {y: max(days.values(), default=0) for y, days in by_year.items()}

    return TimelineAggregate(
        by_date={d: by_date[d] for d in sorted(by_date)},
        by_year={y: {d: days[d] for d in sorted(days)} for y, days in sorted(by_year.items())},
        repos_by_date={d: sorted(repos_by_date[d]) for d in sorted(repos_by_date)},
        year_totals=dict(sorted(year_totals.items())),
        year_max_daily=dict(sorted(year_max_daily.items())),
        repo_count=len(repos),
        years=sorted(by_year, reverse=True),
    )


def contribution_level(count: int, max_daily: int) -> int:
    if count <= 0:
        return 0
    if max_daily <= LOW_ACTIVITY_MAX_DAILY:
        if count >= 4:
            return 4
        if count == 3:
            return 3
        if count == 2:
            return 2
        return 1

    ratio = count / max_daily
    if ratio >= 0.75:
        return 4
    if ratio >= 0.5:
        return 3
    if ratio >= 0.25:
        return 2
    return 1
