"""Dashboard aggregates derived from a ``Snapshot``.

Everything here is a pure function of its arguments. Functions that depend on
the current date take ``today`` explicitly and fall back to the UTC date.
"""

from __future__ import annotations

import calendar
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from operator import itemgetter
from typing import Dict, Iterable, List, Optional, Tuple, Type

from .config import MetricsConfig
from .models import (
    ActivityTotals,
    ContributionDay,
    Event,
    IssuesEvent,
    LanguageShare,
    MonthlyActivity,
    PullRequestEvent,
    Repository,
    Snapshot,
)

MONTH_NAMES = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

DEFAULT_LANGUAGE_COLOR = "#6e7781"

LANGUAGE_COLORS: Dict[str, str] = {
    "JavaScript": "#f1e05a",
    "TypeScript": "#3178c6",
    "Python": "#3572A5",
    "Java": "#b07219",
    "C#": "#178600",
    "Go": "#00ADD8",
    "Ruby": "#701516",
    "PHP": "#4F5D95",
    "HTML": "#e34c26",
    "CSS": "#563d7c",
    "SCSS": "#c6538c",
    "Dart": "#00B4AB",
    "Swift": "#F05138",
    "Kotlin": "#A97BFF",
    "Scala": "#c22d40",
    "Rust": "#dea584",
    "C": "#555555",
    "C++": "#f34b7d",
    "Shell": "#89e051",
    "Vue": "#41b883",
    "Svelte": "#ff3e00",
    "Dockerfile": "#384d54",
    "Makefile": "#427819",
    "R": "#198CE7",
    "Jupyter Notebook": "#DA5B0B",
    "Lua": "#000080",
    "Elixir": "#6e4a7e",
    "Haskell": "#5e5086",
}


def language_color(name: str) -> str:
    return LANGUAGE_COLORS.get(name, DEFAULT_LANGUAGE_COLOR)


def _today(today: Optional[date]) -> date:
    return today or datetime.now(timezone.utc).date()


def _day(moment: Optional[datetime]) -> Optional[date]:
    if moment is None:
        return None
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.date()


def _shift_month(year: int, month: int, delta: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def _percent(count: int, total: int) -> int:
    # half-up rounding, so 12.5 -> 13 rather than banker's 12
    return (200 * count + total) // (2 * total)


def _opened(events: Iterable[Event], kind: Type[Event]) -> List[Optional[datetime]]:
    return [event.created_at for event in events if isinstance(event, kind) and getattr(event, "action", "") == "opened"]


def pull_request_dates(snapshot: Snapshot) -> List[Optional[datetime]]:
    """Creation times of the user's PRs; opened-PR events stand in when search failed."""
    if snapshot.pull_requests is None:
        return _opened(snapshot.events, PullRequestEvent)
    return [pr.created_at for pr in snapshot.pull_requests]


def issue_dates(snapshot: Snapshot) -> List[Optional[datetime]]:
    if snapshot.issues is None:
        return _opened(snapshot.events, IssuesEvent)
    return [issue.created_at for issue in snapshot.issues]


def monthly_activity(
    snapshot: Snapshot,
    *,
    mode: str = "year_month",
    today: Optional[date] = None,
    lookback_days: int = 365,
) -> List[MonthlyActivity]:
    """Commit, PR and issue counts for everything inside the trailing window.

    The window runs from ``today - lookback_days`` to ``today``. ``year_month``
    emits one bucket per calendar month the window touches (13 for a 365 day
    window that starts mid-month). ``month_of_year`` always emits Jan..Dec, so
    the same month of two different years lands in one bucket. In both modes
    every dated item inside the window is counted exactly once.
    """
    today = _today(today)
    start = today - timedelta(days=max(0, lookback_days))
    if mode == "year_month":
        span = (today.year - start.year) * 12 + (today.month - start.month)
        keys = [_shift_month(start.year, start.month, offset) for offset in range(span + 1)]
        positions = {key: index for index, key in enumerate(keys)}

        def bucket_of(day: date) -> Optional[int]:
            return positions.get((day.year, day.month))

        labels = [(f"{year:04d}-{month:02d}", month, year) for year, month in keys]
    elif mode == "month_of_year":

        def bucket_of(day: date) -> Optional[int]:
            return day.month - 1

        labels = [(name, index + 1, None) for index, name in enumerate(MONTH_NAMES)]
    else:
        raise ValueError(f"Unknown monthly bucket mode: {mode!r}")

    counts = [[0, 0, 0] for _ in labels]
    series = (
        (0, [commit.authored_at for commit in snapshot.commits]),
        (1, pull_request_dates(snapshot)),
        (2, issue_dates(snapshot)),
    )
    for column, moments in series:
        for moment in moments:
            day = _day(moment)
            if day is None or not start <= day <= today:
                continue
            index = bucket_of(day)
            if index is not None:
                counts[index][column] += 1

    return [
        MonthlyActivity(label=label, month=month, year=year, commits=row[0], prs=row[1], issues=row[2])
        for (label, month, year), row in zip(labels, counts)
    ]


def contribution_calendar(snapshot: Snapshot, window_days: int = 90, *, today: Optional[date] = None) -> Dict[date, int]:
    """Commit counts for every day of the trailing window, oldest first, zeros included."""
    if window_days <= 0:
        return {}
    today = _today(today)
    start = today - timedelta(days=window_days - 1)
    days: Dict[date, int] = {start + timedelta(days=offset): 0 for offset in range(window_days)}
    for commit in snapshot.commits:
        day = _day(commit.authored_at)
        if day in days:
            days[day] += 1
    return days


def contribution_days(snapshot: Snapshot, window_days: int = 90, *, today: Optional[date] = None) -> List[ContributionDay]:
    return [
        ContributionDay(date=day, count=count)
        for day, count in contribution_calendar(snapshot, window_days, today=today).items()
    ]


def language_share(repositories: Iterable[Repository]) -> List[LanguageShare]:
    counts: Dict[str, int] = {}
    for repo in repositories:
        if repo.fork or not repo.language:
            continue
        counts[repo.language] = counts.get(repo.language, 0) + 1
    total = sum(counts.values())
    if not total:
        return []
    # sorted() is stable: equal counts keep first-occurrence order
    ordered = sorted(counts.items(), key=itemgetter(1), reverse=True)
    return [LanguageShare(name=name, percent=_percent(count, total), color=language_color(name)) for name, count in ordered]


def topic_frequency(repositories: Iterable[Repository], limit: int = 15) -> List[str]:
    if limit <= 0:
        return []
    counter: Counter[str] = Counter()
    for repo in repositories:
        counter.update(repo.topics)
    ranked = sorted(counter.items(), key=itemgetter(1), reverse=True)
    return [topic for topic, _ in ranked[:limit]]


def activity_totals(snapshot: Snapshot) -> ActivityTotals:
    return ActivityTotals(
        stars=sum(repo.stars for repo in snapshot.repositories),
        commits=len(snapshot.commits),
        pull_requests=len(pull_request_dates(snapshot)),
        issues=len(issue_dates(snapshot)),
        repositories=len(snapshot.repositories),
        organizations=len(snapshot.organizations),
        gists=len(snapshot.gists),
    )


def active_repositories(
    repositories: Iterable[Repository],
    *,
    months: int = 6,
    today: Optional[date] = None,
) -> List[Repository]:
    """Non-fork repositories updated within the trailing ``months``."""
    today = _today(today)
    year, month = _shift_month(today.year, today.month, -months)
    cutoff = date(year, month, min(today.day, calendar.monthrange(year, month)[1]))
    active = []
    for repo in repositories:
        updated = _day(repo.updated_at)
        if repo.fork or updated is None or updated < cutoff:
            continue
        active.append(repo)
    return active


def recent_events(snapshot: Snapshot, limit: int = 10) -> List[Event]:
    floor = datetime.min.replace(tzinfo=timezone.utc)
    ordered = sorted(snapshot.events, key=lambda event: event.created_at or floor, reverse=True)
    return ordered[: max(0, limit)]


@dataclass(frozen=True, slots=True)
class Dashboard:
    months: List[MonthlyActivity]
    calendar: List[ContributionDay]
    languages: List[LanguageShare]
    topics: List[str]
    totals: ActivityTotals
    active_repositories: List[Repository]
    recent_events: List[Event]


def build_dashboard(
    snapshot: Snapshot,
    config: Optional[MetricsConfig] = None,
    *,
    lookback_days: int = 365,
    recent_limit: int = 10,
    today: Optional[date] = None,
) -> Dashboard:
    config = config or MetricsConfig()
    today = _today(today)
    return Dashboard(
        months=monthly_activity(snapshot, mode=config.monthly_buckets, today=today, lookback_days=lookback_days),
        calendar=contribution_days(snapshot, config.calendar_days, today=today),
        languages=language_share(snapshot.repositories),
        topics=topic_frequency(snapshot.repositories, config.topic_limit),
        totals=activity_totals(snapshot),
        active_repositories=active_repositories(snapshot.repositories, months=config.active_repo_months, today=today),
        recent_events=recent_events(snapshot, recent_limit),
    )
