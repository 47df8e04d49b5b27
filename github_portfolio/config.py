from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_CONFIG_PATH = Path("config/settings.yaml")

MONTHLY_BUCKET_MODES = ("year_month", "month_of_year")


@dataclass(slots=True)
class GitHubConfig:
    api_root: str = "https://api.github.com"
    token_env: str = "GITHUB_TOKEN"
    timeout: float = 30.0


@dataclass(slots=True)
class FetchConfig:
    max_pages: int = 10
    secondary_max_pages: int = 3
    commit_repo_limit: int = 20
    commit_max_pages: int = 2
    commit_lookback_days: int = 365
    search_detail_limit: int = 100
    max_concurrency: int = 6


@dataclass(slots=True)
class MetricsConfig:
    monthly_buckets: str = "year_month"
    calendar_days: int = 90
    topic_limit: int = 15
    active_repo_months: int = 6


@dataclass(slots=True)
class LLMConfig:
    provider: str = "openai"
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_output_tokens: int = 500
    api_key_env: str = "OPENAI_API_KEY"
    organization: Optional[str] = None
    max_attempts: int = 2


@dataclass(slots=True)
class OutputConfig:
    directory: Path = Path("reports")
    show_repo_tables: bool = True
    recent_events: int = 10


@dataclass(slots=True)
class StoreConfig:
    enabled: bool = True
    directory: Path = Path("data")


@dataclass(slots=True)
class AppConfig:
    github: GitHubConfig = field(default_factory=GitHubConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    store: StoreConfig = field(default_factory=StoreConfig)


def load_config(path: Optional[Path] = None) -> AppConfig:
    config_path = path or DEFAULT_CONFIG_PATH
    if not config_path.exists():
        return AppConfig()

    with config_path.open("r", encoding="utf-8") as handle:
        raw: Dict[str, Any] = yaml.safe_load(handle) or {}

    github_raw = raw.get("github", {})
    fetch_raw = raw.get("fetch", {})
    metrics_raw = raw.get("metrics", {})
    llm_raw = raw.get("llm", {})
    output_raw = raw.get("output", {})
    store_raw = raw.get("store", {})

    buckets = str(metrics_raw.get("monthly_buckets", "year_month"))
    if buckets not in MONTHLY_BUCKET_MODES:
        raise ValueError(f"metrics.monthly_buckets must be one of {', '.join(MONTHLY_BUCKET_MODES)}, got {buckets!r}")

    config = AppConfig(
        github=GitHubConfig(
            api_root=str(github_raw.get("api_root", "https://api.github.com")).rstrip("/"),
            token_env=str(github_raw.get("token_env", "GITHUB_TOKEN")),
            timeout=float(github_raw.get("timeout", 30.0)),
        ),
        fetch=FetchConfig(
            max_pages=int(fetch_raw.get("max_pages", 10)),
            secondary_max_pages=int(fetch_raw.get("secondary_max_pages", 3)),
            commit_repo_limit=int(fetch_raw.get("commit_repo_limit", 20)),
            commit_max_pages=int(fetch_raw.get("commit_max_pages", 2)),
            commit_lookback_days=int(fetch_raw.get("commit_lookback_days", 365)),
            search_detail_limit=int(fetch_raw.get("search_detail_limit", 100)),
            max_concurrency=max(1, int(fetch_raw.get("max_concurrency", 6))),
        ),
        metrics=MetricsConfig(
            monthly_buckets=buckets,
            calendar_days=int(metrics_raw.get("calendar_days", 90)),
            topic_limit=int(metrics_raw.get("topic_limit", 15)),
            active_repo_months=int(metrics_raw.get("active_repo_months", 6)),
        ),
        llm=LLMConfig(
            provider=str(llm_raw.get("provider", "openai")),
            model=str(llm_raw.get("model", "gpt-4o-mini")),
            temperature=float(llm_raw.get("temperature", 0.7)),
            max_output_tokens=int(llm_raw.get("max_output_tokens", 500)),
            api_key_env=str(llm_raw.get("api_key_env", "OPENAI_API_KEY")),
            organization=llm_raw.get("organization"),
            max_attempts=max(1, int(llm_raw.get("max_attempts", 2))),
        ),
        output=OutputConfig(
            directory=Path(output_raw.get("directory", "reports")),
            show_repo_tables=bool(output_raw.get("show_repo_tables", True)),
            recent_events=int(output_raw.get("recent_events", 10)),
        ),
        store=StoreConfig(
            enabled=bool(store_raw.get("enabled", True)),
            directory=Path(store_raw.get("directory", "data")),
        ),
    )

    return config
