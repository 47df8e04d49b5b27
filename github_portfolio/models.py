from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional, Tuple

from .exceptions import FailureKind


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a GitHub ISO-8601 timestamp into an aware UTC datetime."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _repo_from_url(url: str) -> str:
    # https://api.github.com/repos/{owner}/{repo}
    marker = "/repos/"
    if marker not in url:
        return ""
    return "/".join(url.split(marker, 1)[1].split("/")[:2])


@dataclass(frozen=True, slots=True)
class Profile:
    login: str
    id: int
    name: str
    avatar_url: str
    bio: Optional[str] = None
    html_url: str = ""
    location: Optional[str] = None
    company: Optional[str] = None
    blog: Optional[str] = None
    followers: int = 0
    following: int = 0
    public_repos: int = 0
    public_gists: int = 0
    created_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Profile":
        login = str(data.get("login", ""))
        return cls(
            login=login,
            id=int(data.get("id", 0)),
            name=data.get("name") or login,
            avatar_url=str(data.get("avatar_url", "")),
            bio=data.get("bio"),
            html_url=str(data.get("html_url", "")),
            location=data.get("location"),
            company=data.get("company"),
            blog=data.get("blog") or None,
            followers=int(data.get("followers", 0)),
            following=int(data.get("following", 0)),
            public_repos=int(data.get("public_repos", 0)),
            public_gists=int(data.get("public_gists", 0)),
            created_at=parse_timestamp(data.get("created_at")),
        )


@dataclass(frozen=True, slots=True)
class Repository:
    id: int
    name: str
    full_name: str
    owner: str
    description: Optional[str] = None
    language: Optional[str] = None
    stars: int = 0
    forks: int = 0
    watchers: int = 0
    open_issues: int = 0
    topics: Tuple[str, ...] = ()
    html_url: str = ""
    homepage: Optional[str] = None
    private: bool = False
    fork: bool = False
    archived: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    pushed_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Repository":
        name = str(data.get("name", ""))
        owner = str((data.get("owner") or {}).get("login", ""))
        full_name = str(data.get("full_name") or f"{owner}/{name}")
        if not owner and "/" in full_name:
            owner = full_name.split("/", 1)[0]
        return cls(
            id=int(data["id"]),
            name=name,
            full_name=full_name,
            owner=owner,
            description=data.get("description"),
            language=data.get("language"),
            stars=int(data.get("stargazers_count", 0)),
            forks=int(data.get("forks_count", 0)),
            watchers=int(data.get("watchers_count", 0)),
            open_issues=int(data.get("open_issues_count", 0)),
            topics=tuple(str(topic) for topic in data.get("topics") or ()),
            html_url=str(data.get("html_url", "")),
            homepage=data.get("homepage") or None,
            private=bool(data.get("private", False)),
            fork=bool(data.get("fork", False)),
            archived=bool(data.get("archived", False)),
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
            pushed_at=parse_timestamp(data.get("pushed_at")),
        )


@dataclass(frozen=True, slots=True)
class Commit:
    sha: str
    authored_at: Optional[datetime]
    message: str
    repository: str
    html_url: str = ""

    @property
    def headline(self) -> str:
        return self.message.splitlines()[0] if self.message else ""

    @classmethod
    def from_api(cls, data: Dict[str, Any], repository: str) -> "Commit":
        commit = data.get("commit") or {}
        author = commit.get("author") or {}
        return cls(
            sha=str(data["sha"]),
            authored_at=parse_timestamp(author.get("date")),
            message=str(commit.get("message", "")),
            repository=repository,
            html_url=str(data.get("html_url", "")),
        )


@dataclass(frozen=True, slots=True)
class PullRequest:
    id: int
    number: int
    title: str
    state: str
    repository: str
    created_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    merged_at: Optional[datetime] = None
    merged: bool = False
    draft: bool = False
    html_url: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "PullRequest":
        base_repo = ((data.get("base") or {}).get("repo") or {}).get("full_name")
        return cls(
            id=int(data["id"]),
            number=int(data.get("number", 0)),
            title=str(data.get("title", "")),
            state=str(data.get("state", "")),
            repository=str(base_repo or _repo_from_url(str(data.get("url", "")))),
            created_at=parse_timestamp(data.get("created_at")),
            closed_at=parse_timestamp(data.get("closed_at")),
            merged_at=parse_timestamp(data.get("merged_at")),
            merged=bool(data.get("merged") or data.get("merged_at")),
            draft=bool(data.get("draft", False)),
            html_url=str(data.get("html_url", "")),
        )


@dataclass(frozen=True, slots=True)
class Issue:
    id: int
    number: int
    title: str
    state: str
    repository: str
    created_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    comments: int = 0
    labels: Tuple[str, ...] = ()
    html_url: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Issue":
        return cls(
            id=int(data["id"]),
            number=int(data.get("number", 0)),
            title=str(data.get("title", "")),
            state=str(data.get("state", "")),
            repository=_repo_from_url(str(data.get("repository_url", ""))),
            created_at=parse_timestamp(data.get("created_at")),
            closed_at=parse_timestamp(data.get("closed_at")),
            comments=int(data.get("comments", 0)),
            labels=tuple(str(label.get("name", "")) for label in data.get("labels") or () if isinstance(label, dict)),
            html_url=str(data.get("html_url", "")),
        )


@dataclass(frozen=True, slots=True)
class Organization:
    login: str
    id: int
    description: Optional[str] = None
    avatar_url: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Organization":
        return cls(
            login=str(data.get("login", "")),
            id=int(data.get("id", 0)),
            description=data.get("description"),
            avatar_url=str(data.get("avatar_url", "")),
        )


@dataclass(frozen=True, slots=True)
class Gist:
    id: str
    description: Optional[str] = None
    public: bool = True
    files: Tuple[str, ...] = ()
    languages: Tuple[str, ...] = ()
    html_url: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Gist":
        files = data.get("files") or {}
        languages = []
        for entry in files.values():
            language = (entry or {}).get("language")
            if language and language not in languages:
                languages.append(language)
        return cls(
            id=str(data["id"]),
            description=data.get("description") or None,
            public=bool(data.get("public", True)),
            files=tuple(files.keys()),
            languages=tuple(languages),
            html_url=str(data.get("html_url", "")),
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
        )


# Events


@dataclass(frozen=True, slots=True)
class Event:
    id: str
    type: str
    repo_name: str
    actor: str
    created_at: Optional[datetime]

    @property
    def repo_short_name(self) -> str:
        return self.repo_name.split("/")[-1] if self.repo_name else ""

    def describe(self) -> str:
        return f"Activity in {self.repo_short_name}"


@dataclass(frozen=True, slots=True)
class PushEvent(Event):
    commit_count: int = 0
    ref: str = ""

    def describe(self) -> str:
        noun = "commit" if self.commit_count == 1 else "commits"
        return f"Pushed {self.commit_count} {noun} to {self.repo_short_name}"


@dataclass(frozen=True, slots=True)
class PullRequestEvent(Event):
    action: str = ""
    number: Optional[int] = None

    def describe(self) -> str:
        verb = {"opened": "Opened", "closed": "Closed", "reopened": "Reopened"}.get(self.action, "Updated")
        return f"{verb} pull request #{self.number} in {self.repo_short_name}"


@dataclass(frozen=True, slots=True)
class IssuesEvent(Event):
    action: str = ""
    number: Optional[int] = None

    def describe(self) -> str:
        verb = {"opened": "Opened", "closed": "Closed", "reopened": "Reopened"}.get(self.action, "Updated")
        return f"{verb} issue #{self.number} in {self.repo_short_name}"


@dataclass(frozen=True, slots=True)
class WatchEvent(Event):
    def describe(self) -> str:
        return f"Starred {self.repo_short_name}"


@dataclass(frozen=True, slots=True)
class ForkEvent(Event):
    forkee: str = ""

    def describe(self) -> str:
        return f"Forked {self.repo_short_name}"


@dataclass(frozen=True, slots=True)
class CreateEvent(Event):
    ref_type: str = ""
    ref: Optional[str] = None

    def describe(self) -> str:
        return f"Created {self.ref_type or 'ref'} in {self.repo_short_name}"


@dataclass(frozen=True, slots=True)
class UnknownEvent(Event):
    payload: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


def _payload_number(payload: Dict[str, Any], key: str) -> Optional[int]:
    number = (payload.get(key) or {}).get("number")
    return int(number) if number is not None else None


def parse_event(data: Dict[str, Any]) -> Event:
    """Map a raw ``/events`` entry onto its typed variant."""
    payload = data.get("payload") or {}
    common = dict(
        id=str(data["id"]),
        type=str(data.get("type", "")),
        repo_name=str((data.get("repo") or {}).get("name", "")),
        actor=str((data.get("actor") or {}).get("login", "")),
        created_at=parse_timestamp(data.get("created_at")),
    )
    event_type = common["type"]
    if event_type == "PushEvent":
        commits = payload.get("commits")
        count = len(commits) if isinstance(commits, list) else int(payload.get("size", 0) or 0)
        return PushEvent(**common, commit_count=count, ref=str(payload.get("ref", "")))
    if event_type == "PullRequestEvent":
        return PullRequestEvent(**common, action=str(payload.get("action", "")), number=_payload_number(payload, "pull_request"))
    if event_type == "IssuesEvent":
        return IssuesEvent(**common, action=str(payload.get("action", "")), number=_payload_number(payload, "issue"))
    if event_type == "WatchEvent":
        return WatchEvent(**common)
    if event_type == "ForkEvent":
        return ForkEvent(**common, forkee=str((payload.get("forkee") or {}).get("full_name", "")))
    if event_type == "CreateEvent":
        return CreateEvent(**common, ref_type=str(payload.get("ref_type", "")), ref=payload.get("ref"))
    return UnknownEvent(**common, payload=dict(payload))


# Snapshot


@dataclass(frozen=True, slots=True)
class PartialFailure:
    name: str
    url: str
    status: int
    kind: FailureKind
    message: str = ""


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Everything one aggregation cycle managed to fetch."""

    profile: Profile
    repositories: Tuple[Repository, ...] = ()
    commits: Tuple[Commit, ...] = ()
    # None means the search fetch was unavailable, not that there were none.
    pull_requests: Optional[Tuple[PullRequest, ...]] = None
    issues: Optional[Tuple[Issue, ...]] = None
    events: Tuple[Event, ...] = ()
    organizations: Tuple[Organization, ...] = ()
    gists: Tuple[Gist, ...] = ()
    partial_failures: Tuple[PartialFailure, ...] = ()
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc), compare=False)


# Derived records


@dataclass(frozen=True, slots=True)
class MonthlyActivity:
    label: str
    month: int
    year: Optional[int] = None
    commits: int = 0
    prs: int = 0
    issues: int = 0


@dataclass(frozen=True, slots=True)
class ContributionDay:
    date: date
    count: int


@dataclass(frozen=True, slots=True)
class LanguageShare:
    name: str
    percent: int
    color: str


@dataclass(frozen=True, slots=True)
class ActivityTotals:
    stars: int = 0
    commits: int = 0
    pull_requests: int = 0
    issues: int = 0
    repositories: int = 0
    organizations: int = 0
    gists: int = 0
