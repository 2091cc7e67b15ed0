from __future__ import annotations

import datetime as dt
import json
from pathlib import Path

from . import __version__
from .timeline_aggregate import TimelineAggregate
from .timeline_calendar import CalendarDay, build_year_calendar, daily_timeline, day_tooltip, month_labels
from .timeline_render import render_timeline_text

TIMELINE_JSON = "timeline.json"
WIDGET_JSON = "widget-data.json"
TIMELINE_TXT = "timeline.txt"


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def write_json(path: Path, data: object) -> None:
    path.write_text(json.dumps(data, indent=2, sort_keys=False), encoding="utf-8")


def build_calendars(agg: TimelineAggregate, years: list[str] | None = None) -> dict[str, list[list[CalendarDay]]]:
    selected = [y for y in agg.years if years is None or y in years]
    return {y: build_year_calendar(y, agg.by_year, agg.year_max_daily, agg.repos_by_date) for y in selected}


def build_render_data(*, username: str, agg: TimelineAggregate, calendars: dict[str, list[list[CalendarDay]]]) -> dict:
    years_out: list[dict] = []
    for year in agg.years:
        weeks = calendars.get(year)
        if weeks is None:
            continue
        years_out.append(
            {
                "year": year,
                "total": int(agg.year_totals.get(year, 0)),
                "max_daily": int(agg.year_max_daily.get(year, 0)),
                "month_labels": [{"week": i, "label": label} for i, label in month_labels(weeks)],
                "weeks": [
                    [dict(d.to_dict(), tooltip=day_tooltip(d)) if d.in_year else d.to_dict() for d in week]
                    for week in weeks
                ],
            }
        )
    return {
        "generated_at": dt.datetime.now(tz=dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "toolkit_version": __version__,
        "username": username,
        "total_commits": agg.total_commits,
        "repo_count": agg.repo_count,
        "aggregate": agg.to_dict(),
        "calendars": years_out,
    }


def write_outputs(
    output_dir: Path,
    *,
    username: str,
    agg: TimelineAggregate,
    years: list[str] | None = None,
    text: bool = True,
) -> list[Path]:
    ensure_dir(output_dir)
    calendars = build_calendars(agg, years)
    written: list[Path] = []

    p = output_dir / TIMELINE_JSON
    write_json(p, build_render_data(username=username, agg=agg, calendars=calendars))
    written.append(p)

    p = output_dir / WIDGET_JSON
    write_json(p, daily_timeline(agg, username=username))
    written.append(p)

    if text:
        p = output_dir / TIMELINE_TXT
        p.write_text(render_timeline_text(username=username, agg=agg, calendars=calendars), encoding="utf-8")
        written.append(p)
    return written
