from __future__ import annotations

import dataclasses
import datetime as dt

from .timeline_aggregate import TimelineAggregate, contribution_level

MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
WEEKDAYS = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")
OUTSIDE_YEAR_LEVEL = -1


@dataclasses.dataclass(frozen=True)
class CalendarDay:
    date: dt.date
    count: int
    level: int  # 0..4, or OUTSIDE_YEAR_LEVEL
    in_year: bool
    repos: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "count": self.count,
            "level": self.level,
            "in_year": self.in_year,
            "repos": list(self.repos),
        }


def _sunday_index(d: dt.date) -> int:
    # date.weekday() is Monday=0; calendar rows are Sunday=0.
    return (d.weekday() + 1) % 7


def calendar_bounds(year: int) -> tuple[dt.date, dt.date]:
    jan1 = dt.date(year, 1, 1)
    dec31 = dt.date(year, 12, 31)
    start = jan1 - dt.timedelta(days=_sunday_index(jan1))
    end = dec31 + dt.timedelta(days=6 - _sunday_index(dec31))
    return start, end


def build_year_calendar(
    year: int | str,
    by_year: dict[str, dict[str, int]],
    year_max_daily: dict[str, int],
    repos_by_date: dict[str, list[str]] | None = None,
) -> list[list[CalendarDay]]:
    """
    Week-major grid for one year, Sunday..Saturday rows.

    Padding days before Jan 1 and after Dec 31 are kept so every week has
    seven cells; they carry no count and level -1. Levels scale against this
    year's busiest day only.
    """
    y = int(year)
    key = f"{y:04d}"
    days = by_year.get(key, {})
    max_daily = year_max_daily.get(key) or 1
    repos_by_date = repos_by_date or {}

    start, end = calendar_bounds(y)
    weeks: list[list[CalendarDay]] = []
    cur = start
    while cur <= end:
        week: list[CalendarDay] = []
        for _ in range(7):
            iso = cur.isoformat()
            if cur.year == y:
                count = int(days.get(iso, 0))
                week.append(
                    CalendarDay(
                        date=cur,
                        count=count,
                        level=contribution_level(count, max_daily),
                        in_year=True,
                        repos=tuple(repos_by_date.get(iso, ())),
                    )
                )
            else:
                week.append(CalendarDay(date=cur, count=0, level=OUTSIDE_YEAR_LEVEL, in_year=False))
            cur += dt.timedelta(days=1)
        weeks.append(week)
    return weeks


def month_labels(weeks: list[list[CalendarDay]]) -> list[tuple[int, str]]:
    out: list[tuple[int, str]] = []
    last_month = 0
    for i, week in enumerate(weeks):
        first = next((d for d in week if d.in_year), None)
        if first is None:
            continue
        if first.date.month != last_month:
            out.append((i, MONTHS[first.date.month - 1]))
            last_month = first.date.month
    return out


def format_day(d: dt.date) -> str:
    return f"{MONTHS[d.month - 1]} {d.day}, {d.year}"


def day_tooltip(day: CalendarDay) -> str:
    if day.count == 0:
        return f"No commits on {format_day(day.date)}"
    noun = "commit" if day.count == 1 else "commits"
    return f"{day.count} {noun} on {format_day(day.date)}"


def daily_timeline(agg: TimelineAggregate, *, username: str) -> dict:
    """Every day from the first to the last commit date, zero-filled."""
    out: dict = {
        "username": username,
        "total_commits": agg.total_commits,
        "repo_count": agg.repo_count,
        "days_with_commits": sum(1 for n in agg.by_date.values() if n > 0),
        "start_date": None,
        "end_date": None,
        "total_days": 0,
        "days": [],
    }
    if not agg.by_date:
        return out

    first = dt.date.fromisoformat(min(agg.by_date))
    last = dt.date.fromisoformat(max(agg.by_date))
    days: list[dict] = []
    cur = first
    while cur <= last:
        iso = cur.isoformat()
        count = agg.by_date.get(iso, 0)
        max_daily = agg.year_max_daily.get(iso[:4]) or 1
        days.append({"date": iso, "count": count, "level": contribution_level(count, max_daily)})
        cur += dt.timedelta(days=1)

    out["start_date"] = first.isoformat()
    out["end_date"] = last.isoformat()
    out["total_days"] = len(days)
    out["days"] = days
    return out
