from __future__ import annotations

from .timeline_aggregate import TimelineAggregate
from .timeline_calendar import WEEKDAYS, CalendarDay, month_labels

TIMELINE_BANNER = r"""
+------------------------------------------------------------------------+
|                          GIT HISTORY TIMELINE                          |
+------------------------------------------------------------------------+
""".strip("\n")

LEVEL_CHARS = {-1: " ", 0: ".", 1: "-", 2: "+", 3: "*", 4: "#"}
ROW_LABEL_WIDTH = 5


def fmt_int(n: int) -> str:
    return f"{int(n):,}"


def plural(n: int, word: str, many: str = "") -> str:
    if int(n) == 1:
        return f"{fmt_int(n)} {word}"
    return f"{fmt_int(n)} {many or word + 's'}"


def _month_row(weeks: list[list[CalendarDay]]) -> str:
    row = [" "] * len(weeks)
    for idx, label in month_labels(weeks):
        if idx + len(label) > len(row):
            continue
        if any(ch != " " for ch in row[max(0, idx - 1) : idx + len(label)]):
            continue
        row[idx : idx + len(label)] = list(label)
    return "".join(row).rstrip()


def render_year_text(year: str, weeks: list[list[CalendarDay]], *, total: int, max_daily: int) -> str:
    lines: list[str] = []
    lines.append(f"{year}  {plural(total, 'commit')}  (busiest day: {plural(max_daily, 'commit')})")
    lines.append(" " * ROW_LABEL_WIDTH + _month_row(weeks))
    for dow, name in enumerate(WEEKDAYS):
        cells = "".join(LEVEL_CHARS.get(week[dow].level, "?") for week in weeks)
        lines.append(f"{name:<{ROW_LABEL_WIDTH}}{cells}".rstrip())
    legend = " ".join(LEVEL_CHARS[level] for level in range(5))
    lines.append(" " * ROW_LABEL_WIDTH + f"Less {legend} More")
    return "\n".join(lines)


def render_timeline_text(
    *,
    username: str,
    agg: TimelineAggregate,
    calendars: dict[str, list[list[CalendarDay]]],
) -> str:
    lines: list[str] = []
    lines.append(TIMELINE_BANNER)
    lines.append("")
    lines.append(f"User: @{username}")
    lines.append(
        f"Totals: {plural(agg.total_commits, 'commit')} across {plural(agg.repo_count, 'repository', 'repositories')}"
        f" in {plural(len(agg.years), 'year')}"
    )
    lines.append("")
    for year in agg.years:
        weeks = calendars.get(year)
        if weeks is None:
            continue
        lines.append(
            render_year_text(
                year,
                weeks,
                total=int(agg.year_totals.get(year, 0)),
                max_daily=int(agg.year_max_daily.get(year, 0)),
            )
        )
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"
