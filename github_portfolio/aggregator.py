"""Builds one consistent ``Snapshot`` out of many independent GitHub calls.

Only the profile call is mandatory. Every other request is a sub-fetch: when
it fails it is recorded on the snapshot as a ``PartialFailure`` and its data
is left out, the rest of the batch carries on.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Tuple, TypeVar

from .config import AppConfig, FetchConfig
from .exceptions import AuthFailure, FailureKind, RateLimited, UpstreamUnavailable
from .github_api import ApiResponse, AuthContext, GitHubClient, Outcome
from .models import (
    Commit,
    Event,
    Gist,
    Issue,
    Organization,
    PartialFailure,
    Profile,
    PullRequest,
    Repository,
    Snapshot,
    parse_event,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_FAILURE_KINDS = {
    Outcome.NOT_FOUND: FailureKind.NOT_FOUND,
    Outcome.RATE_LIMITED: FailureKind.RATE_LIMITED,
    Outcome.UNAUTHORIZED: FailureKind.UNAUTHORIZED,
    Outcome.NETWORK: FailureKind.NETWORK,
}


async def fetch_snapshot(
    auth: AuthContext,
    config: Optional[AppConfig] = None,
    *,
    client: Optional[GitHubClient] = None,
    now: Optional[datetime] = None,
) -> Snapshot:
    """Fetch everything the dashboard needs for the token's owner.

    Raises ``AuthFailure``, ``RateLimited`` or ``UpstreamUnavailable`` when the
    profile cannot be loaded. Any other failure only shrinks the snapshot.
    """
    config = config or AppConfig()
    if not auth.is_present:
        raise AuthFailure("No GitHub token available")

    if client is not None:
        return await _Aggregation(client, config.fetch, now).run()

    async with GitHubClient(auth, api_root=config.github.api_root, timeout=config.github.timeout) as owned:
        return await _Aggregation(owned, config.fetch, now).run()


def _unique(items: Iterable[T], key: Callable[[T], Hashable]) -> Tuple[T, ...]:
    seen = set()
    kept: List[T] = []
    for item in items:
        marker = key(item)
        if marker in seen:
            continue
        seen.add(marker)
        kept.append(item)
    return tuple(kept)


def _failure_order(failure: PartialFailure) -> Tuple[str, str, int]:
    # completion order depends on latency
    return failure.name, failure.url, failure.status


def select_commit_repositories(repositories: Iterable[Repository], limit: int) -> List[Repository]:
    """Most recently updated repositories first, capped at ``limit``."""
    ordered = sorted(repositories, key=lambda repo: repo.updated_at or _EPOCH, reverse=True)
    return ordered[: max(0, limit)]


class _Aggregation:
    def __init__(self, client: GitHubClient, fetch: FetchConfig, now: Optional[datetime]) -> None:
        self.client = client
        self.fetch = fetch
        self.now = now or datetime.now(timezone.utc)
        self.failures: List[PartialFailure] = []
        self._gate = asyncio.Semaphore(fetch.max_concurrency)

    async def run(self) -> Snapshot:
        profile = await self._profile()
        login = profile.login
        logger.info("Aggregating GitHub data for %s", login)

        (repositories, commits), organizations, gists, events, pull_requests, issues = await asyncio.gather(
            self._repositories_and_commits(login),
            self._organizations(),
            self._gists(),
            self._events(login),
            self._pull_requests(),
            self._issues(),
        )

        if self.failures:
            logger.warning("%d GitHub sub-fetches failed for %s; snapshot is partial", len(self.failures), login)
        logger.info(
            "Fetched %d repositories, %d commits, %d events for %s",
            len(repositories),
            len(commits),
            len(events),
            login,
        )
        return Snapshot(
            profile=profile,
            repositories=repositories,
            commits=commits,
            pull_requests=pull_requests,
            issues=issues,
            events=events,
            organizations=organizations,
            gists=gists,
            partial_failures=tuple(sorted(self.failures, key=_failure_order)),
            fetched_at=self.now,
        )

    # failure bookkeeping

    def _record(
        self,
        name: str,
        response: ApiResponse,
        kind: Optional[FailureKind] = None,
        message: Optional[str] = None,
    ) -> None:
        failure = PartialFailure(
            name=name,
            url=response.url,
            status=response.status,
            kind=kind or _FAILURE_KINDS.get(response.outcome, FailureKind.UPSTREAM_ERROR),
            message=message or response.message,
        )
        logger.debug("Dropping %s: %s %s", name, failure.kind.value, failure.message)
        self.failures.append(failure)

    def _record_exception(self, name: str, error: Exception) -> None:
        logger.debug("Dropping %s: %r", name, error)
        self.failures.append(
            PartialFailure(name=name, url="", status=0, kind=FailureKind.UPSTREAM_ERROR, message=repr(error))
        )

    def _parse_all(self, name: str, items: Iterable[Any], parser: Callable[[Dict[str, Any]], T]) -> List[T]:
        parsed: List[T] = []
        skipped = 0
        for item in items:
            try:
                parsed.append(parser(item))
            except (KeyError, TypeError, ValueError, AttributeError):
                skipped += 1
        if skipped:
            logger.debug("Skipped %d malformed items from %s", skipped, name)
        return parsed

    async def _pages(self, name: str, url: str, max_pages: int, params: Optional[Dict[str, Any]] = None) -> List[Any]:
        async with self._gate:
            return await self.client.get_all_pages(
                url,
                max_pages=max_pages,
                params=params,
                on_failure=lambda response: self._record(name, response),
            )

    # mandatory

    async def _profile(self) -> Profile:
        response = await self.client.get("/user")
        if response.ok and isinstance(response.body, dict):
            try:
                profile = Profile.from_api(response.body)
            except (TypeError, ValueError) as error:
                raise UpstreamUnavailable(f"Malformed GitHub profile: {error}", response.status) from error
            if profile.login:
                return profile
            raise UpstreamUnavailable("GitHub profile has no login", response.status)

        outcome = response.outcome
        if outcome is Outcome.UNAUTHORIZED:
            raise AuthFailure("GitHub token was rejected", response.status)
        if outcome is Outcome.RATE_LIMITED:
            raise RateLimited(
                f"GitHub rate limit hit while loading the profile: {response.message}",
                response.status,
                reset_at=response.rate_limit.reset_at,
            )
        raise UpstreamUnavailable(f"GitHub profile request failed: {response.message}", response.status or None)

    # listings

    async def _repositories_and_commits(self, login: str) -> Tuple[Tuple[Repository, ...], Tuple[Commit, ...]]:
        items = await self._pages(
            "repositories",
            "/user/repos",
            self.fetch.max_pages,
            params={"per_page": 100, "sort": "updated"},
        )
        repositories = _unique(self._parse_all("repositories", items, Repository.from_api), key=lambda repo: repo.id)
        commits = await self._commits(repositories, login)
        return repositories, commits

    async def _organizations(self) -> Tuple[Organization, ...]:
        items = await self._pages("organizations", "/user/orgs", self.fetch.secondary_max_pages, params={"per_page": 100})
        return _unique(self._parse_all("organizations", items, Organization.from_api), key=lambda org: org.id)

    async def _gists(self) -> Tuple[Gist, ...]:
        items = await self._pages("gists", "/gists", self.fetch.secondary_max_pages, params={"per_page": 100})
        return _unique(self._parse_all("gists", items, Gist.from_api), key=lambda gist: gist.id)

    async def _events(self, login: str) -> Tuple[Event, ...]:
        items = await self._pages(
            "events",
            f"/users/{login}/events",
            self.fetch.secondary_max_pages,
            params={"per_page": 100},
        )
        return _unique(self._parse_all("events", items, parse_event), key=lambda event: event.id)

    # per-repository fan-out

    async def _commits(self, repositories: Iterable[Repository], login: str) -> Tuple[Commit, ...]:
        selected = select_commit_repositories(repositories, self.fetch.commit_repo_limit)
        since = (self.now - timedelta(days=self.fetch.commit_lookback_days)).strftime("%Y-%m-%dT%H:%M:%SZ")
        results = await asyncio.gather(
            *(self._repository_commits(repo, login, since) for repo in selected),
            return_exceptions=True,
        )
        merged: List[Commit] = []
        for repo, result in zip(selected, results):
            if isinstance(result, Exception):
                self._record_exception(f"commits:{repo.full_name}", result)
                continue
            if isinstance(result, BaseException):
                raise result
            merged.extend(result)
        return _unique(merged, key=lambda commit: commit.sha)

    async def _repository_commits(self, repo: Repository, login: str, since: str) -> List[Commit]:
        name = f"commits:{repo.full_name}"
        items = await self._pages(
            name,
            f"/repos/{repo.owner}/{repo.name}/commits",
            self.fetch.commit_max_pages,
            params={"author": login, "since": since, "per_page": 100},
        )
        return self._parse_all(name, items, lambda item: Commit.from_api(item, repo.full_name))

    # search-based

    async def _search(self, name: str, query: str) -> Optional[List[Dict[str, Any]]]:
        async with self._gate:
            response = await self.client.get("/search/issues", params={"q": query, "per_page": 100, "sort": "created"})
        if not response.ok:
            self._record(name, response)
            return None
        body = response.body
        if not isinstance(body, dict) or not isinstance(body.get("items"), list):
            self._record(name, response, kind=FailureKind.UPSTREAM_ERROR)
            return None
        if body.get("incomplete_results"):
            # counted from the event feed instead
            self._record(name, response, kind=FailureKind.UPSTREAM_ERROR, message="incomplete search results")
            return None
        return [item for item in body["items"] if isinstance(item, dict)]

    async def _pull_requests(self) -> Optional[Tuple[PullRequest, ...]]:
        hits = await self._search("search:pull_requests", "is:pr author:@me")
        if hits is None:
            return None
        urls = [
            (hit.get("pull_request") or {}).get("url")
            for hit in hits[: self.fetch.search_detail_limit]
        ]
        urls = [url for url in urls if url]
        results = await asyncio.gather(*(self._pull_request(url) for url in urls), return_exceptions=True)
        details: List[PullRequest] = []
        for url, result in zip(urls, results):
            if isinstance(result, Exception):
                self._record_exception(f"pull_request:{url}", result)
                continue
            if isinstance(result, BaseException):
                raise result
            if result is not None:
                details.append(result)
        return _unique(details, key=lambda pr: pr.id)

    async def _pull_request(self, url: str) -> Optional[PullRequest]:
        name = f"pull_request:{url}"
        async with self._gate:
            response = await self.client.get(url)
        if not response.ok or not isinstance(response.body, dict):
            self._record(name, response, kind=None if not response.ok else FailureKind.UPSTREAM_ERROR)
            return None
        parsed = self._parse_all(name, [response.body], PullRequest.from_api)
        return parsed[0] if parsed else None

    async def _issues(self) -> Optional[Tuple[Issue, ...]]:
        hits = await self._search("search:issues", "is:issue author:@me")
        if hits is None:
            return None
        issues = [hit for hit in hits if "pull_request" not in hit]
        return _unique(self._parse_all("search:issues", issues, Issue.from_api), key=lambda issue: issue.id)
