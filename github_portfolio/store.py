"""Snapshot persistence.

The dashboard backend is a key-value store as far as this package is
concerned. Every write is safe to repeat with the same snapshot.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, is_dataclass
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from .models import Event, MonthlyActivity, Profile, Repository, Snapshot

logger = logging.getLogger(__name__)


class SnapshotStore(Protocol):
    def upsert_profile(self, profile: Profile) -> None:
        ...

    def replace_repositories(self, repositories: Sequence[Repository]) -> None:
        ...

    def append_activity_logs(self, events: Sequence[Event]) -> int:
        ...

    def replace_monthly_stats(self, year: int, buckets: Sequence[MonthlyActivity]) -> None:
        ...

    def save_summary(self, text: str, source: str) -> None:
        ...

    def load_profile(self) -> Optional[Dict[str, Any]]:
        ...


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Cannot serialise {type(value).__name__}")


def _plain(value: Any) -> Any:
    """Round-trip through JSON so stored records only hold JSON types."""
    if is_dataclass(value):
        value = asdict(value)
    return json.loads(json.dumps(value, default=_json_default))


def profile_record(profile: Profile) -> Dict[str, Any]:
    return _plain(profile)


def repository_record(repository: Repository) -> Dict[str, Any]:
    return _plain(repository)


def activity_record(event: Event) -> Dict[str, Any]:
    return {
        "id": event.id,
        "activity_type": event.type,
        "repository": event.repo_name,
        "description": event.describe(),
        "occurred_at": event.created_at.isoformat() if event.created_at else None,
    }


def monthly_record(year: int, bucket: MonthlyActivity) -> Dict[str, Any]:
    return {
        "year": year,
        "month": bucket.month,
        "total_commits": bucket.commits,
        "total_prs": bucket.prs,
        "total_issues": bucket.issues,
    }


class InMemorySnapshotStore:
    def __init__(self) -> None:
        self.profile: Optional[Dict[str, Any]] = None
        self.repositories: List[Dict[str, Any]] = []
        self.activity_logs: Dict[str, Dict[str, Any]] = {}
        self.monthly_stats: Dict[int, Dict[int, Dict[str, Any]]] = {}
        self.summaries: List[Dict[str, Any]] = []

    def upsert_profile(self, profile: Profile) -> None:
        self.profile = profile_record(profile)

    def replace_repositories(self, repositories: Sequence[Repository]) -> None:
        self.repositories = [repository_record(repo) for repo in repositories]

    def append_activity_logs(self, events: Sequence[Event]) -> int:
        added = 0
        for event in events:
            if event.id in self.activity_logs:
                continue
            self.activity_logs[event.id] = activity_record(event)
            added += 1
        return added

    def replace_monthly_stats(self, year: int, buckets: Sequence[MonthlyActivity]) -> None:
        self.monthly_stats[year] = {bucket.month: monthly_record(year, bucket) for bucket in buckets}

    def save_summary(self, text: str, source: str) -> None:
        if self.summaries and self.summaries[-1]["content"] == text:
            return
        self.summaries.append(
            {"content": text, "source": source, "created_at": datetime.now(timezone.utc).isoformat()}
        )

    def load_profile(self) -> Optional[Dict[str, Any]]:
        return self.profile


class JsonSnapshotStore:
    """Stores each collection as one JSON document under ``directory``."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def _path(self, name: str) -> Path:
        return self.directory / f"{name}.json"

    def _read(self, name: str, default: Any) -> Any:
        path = self._path(name)
        if not path.exists():
            return default
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)

    def _write(self, name: str, data: Any) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(name)
        staging = path.with_suffix(".json.tmp")
        staging.write_text(json.dumps(data, indent=2, default=_json_default), encoding="utf-8")
        staging.replace(path)

    def upsert_profile(self, profile: Profile) -> None:
        self._write("profile", profile_record(profile))

    def replace_repositories(self, repositories: Sequence[Repository]) -> None:
        self._write("repositories", [repository_record(repo) for repo in repositories])

    def append_activity_logs(self, events: Sequence[Event]) -> int:
        logs: List[Dict[str, Any]] = self._read("activity_logs", [])
        known = {entry["id"] for entry in logs}
        added = 0
        for event in events:
            if event.id in known:
                continue
            logs.append(activity_record(event))
            known.add(event.id)
            added += 1
        if added:
            self._write("activity_logs", logs)
        return added

    def replace_monthly_stats(self, year: int, buckets: Sequence[MonthlyActivity]) -> None:
        stats: Dict[str, Dict[str, Any]] = self._read("monthly_stats", {})
        stats[str(year)] = {str(bucket.month): monthly_record(year, bucket) for bucket in buckets}
        self._write("monthly_stats", stats)

    def save_summary(self, text: str, source: str) -> None:
        summaries: List[Dict[str, Any]] = self._read("summaries", [])
        if summaries and summaries[-1]["content"] == text:
            return
        summaries.append({"content": text, "source": source, "created_at": datetime.now(timezone.utc).isoformat()})
        self._write("summaries", summaries)

    def load_profile(self) -> Optional[Dict[str, Any]]:
        return self._read("profile", None)


def group_by_year(buckets: Iterable[MonthlyActivity], default_year: int) -> Dict[int, List[MonthlyActivity]]:
    """Month-of-year buckets carry no year and are filed under ``default_year``."""
    grouped: Dict[int, List[MonthlyActivity]] = {}
    for bucket in buckets:
        grouped.setdefault(bucket.year or default_year, []).append(bucket)
    return grouped


def persist_snapshot(
    store: SnapshotStore,
    snapshot: Snapshot,
    months: Sequence[MonthlyActivity],
    *,
    today: Optional[date] = None,
) -> None:
    today = today or datetime.now(timezone.utc).date()
    store.upsert_profile(snapshot.profile)
    store.replace_repositories(snapshot.repositories)
    added = store.append_activity_logs(snapshot.events)
    for year, buckets in group_by_year(months, today.year).items():
        store.replace_monthly_stats(year, buckets)
    logger.info(
        "Stored snapshot for %s: %d repositories, %d new activity logs",
        snapshot.profile.login,
        len(snapshot.repositories),
        added,
    )
