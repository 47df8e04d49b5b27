from __future__ import annotations

from pathlib import Path
from typing import List

from .config import AppConfig
from .llm import SummaryResult
from .metrics import Dashboard
from .models import ContributionDay, Repository, Snapshot


def write_report(snapshot: Snapshot, dashboard: Dashboard, summary: SummaryResult, config: AppConfig) -> Path:
    output_dir = config.output.directory
    output_dir.mkdir(parents=True, exist_ok=True)
    filename = f"{snapshot.profile.login}-portfolio.md"
    report_path = output_dir / filename
    report_path.write_text(render_markdown(snapshot, dashboard, summary, config), encoding="utf-8")
    return report_path


def render_markdown(snapshot: Snapshot, dashboard: Dashboard, summary: SummaryResult, config: AppConfig) -> str:
    profile = snapshot.profile
    totals = dashboard.totals
    lines: List[str] = []
    lines.append(f"# {profile.name or profile.login}")
    lines.append("")
    if profile.bio:
        lines.append(profile.bio.strip())
        lines.append("")
    lines.append(f"GitHub: {profile.html_url or 'https://github.com/' + profile.login}")
    lines.append(f"Followers {profile.followers}, following {profile.following}")
    lines.append(f"Generated on: {snapshot.fetched_at.date().isoformat()}")
    lines.append("")

    lines.append("## Spotlight")
    lines.append(summary.text.strip())
    if summary.source == "local":
        lines.append("")
        lines.append("_Summary generated locally from GitHub statistics._")
    lines.append("")

    lines.append("## Stats")
    lines.append(f"- Repositories: {totals.repositories}")
    lines.append(f"- Stars earned: {totals.stars}")
    lines.append(f"- Commits (past year): {totals.commits}")
    lines.append(f"- Pull requests: {totals.pull_requests}")
    lines.append(f"- Issues: {totals.issues}")
    if totals.organizations:
        lines.append(f"- Organizations: {totals.organizations}")
    if totals.gists:
        lines.append(f"- Gists: {totals.gists}")
    lines.append("")

    if dashboard.languages:
        lines.append("## Languages")
        for share in dashboard.languages:
            lines.append(f"- {share.name}: {share.percent}% ({share.color})")
        lines.append("")

    lines.append("## Monthly Activity")
    lines.append("| Month | Commits | Pull requests | Issues |")
    lines.append("| --- | --- | --- | --- |")
    for bucket in dashboard.months:
        lines.append(f"| {bucket.label} | {bucket.commits} | {bucket.prs} | {bucket.issues} |")
    lines.append("")

    lines.extend(_render_calendar(dashboard.calendar))

    if dashboard.topics:
        lines.append("## Topics")
        lines.append(", ".join(dashboard.topics))
        lines.append("")

    if dashboard.recent_events:
        lines.append("## Recent Activity")
        for event in dashboard.recent_events:
            when = event.created_at.date().isoformat() if event.created_at else "unknown date"
            lines.append(f"- {when}: {event.describe()}")
        lines.append("")

    lines.append("## Active Projects")
    if not dashboard.active_repositories:
        lines.append("No repositories updated recently.")
        lines.append("")
    for repo in dashboard.active_repositories:
        lines.extend(_render_repo(repo, config))
        lines.append("")

    if snapshot.partial_failures:
        lines.append(
            f"_Some GitHub data could not be loaded ({len(snapshot.partial_failures)} requests failed); "
            "figures may be undercounted._"
        )
    return "\n".join(lines).rstrip() + "\n"


def _render_calendar(days: List[ContributionDay]) -> List[str]:
    if not days:
        return []
    active = [day for day in days if day.count]
    lines = [f"## Contributions (last {len(days)} days)"]
    lines.append(f"- Active days: {len(active)} of {len(days)}")
    lines.append(f"- Commits: {sum(day.count for day in days)}")
    if active:
        busiest = max(active, key=lambda day: day.count)
        lines.append(f"- Busiest day: {busiest.date.isoformat()} ({busiest.count} commits)")
    lines.append("")
    return lines


def _render_repo(repo: Repository, config: AppConfig) -> List[str]:
    summary_text = (repo.description or "No description provided.").strip()
    if not config.output.show_repo_tables and repo.html_url:
        if summary_text.endswith("."):
            summary_text = summary_text[:-1]
        summary_text = f"{summary_text}. Repository: {repo.html_url}"
    lines = [f"### {repo.name}"]
    lines.append(summary_text)
    if config.output.show_repo_tables:
        lines.append("")
        lines.extend(_render_repo_details(repo))
    return lines


def _render_repo_details(repo: Repository) -> List[str]:
    rows: List[tuple[str, str]] = []
    rows.append(("Repository", repo.full_name))
    rows.append(("Link", repo.html_url))
    rows.append(
        (
            "Stats",
            "stars {stars}, forks {forks}, issues {issues}, watchers {watchers}".format(
                stars=repo.stars,
                forks=repo.forks,
                issues=repo.open_issues,
                watchers=repo.watchers,
            ),
        )
    )
    if repo.language:
        rows.append(("Language", repo.language))
    if repo.topics:
        rows.append(("Topics", ", ".join(repo.topics[:6])))
    if repo.homepage:
        rows.append(("Homepage", repo.homepage))

    table_lines = ["| Field | Details |", "| --- | --- |"]
    for label, value in rows:
        table_lines.append(f"| {label} | {value} |")
    return table_lines
