from __future__ import annotations

import asyncio
import unittest

import httpx

from github_fakes import NOW, FakeGitHub, commit_payload, issue_payload, profile_payload, repo_payload, standard_fake

from github_portfolio.aggregator import fetch_snapshot, select_commit_repositories
from github_portfolio.config import AppConfig
from github_portfolio.exceptions import AuthFailure, FailureKind, RateLimited, UpstreamUnavailable
from github_portfolio.github_api import AuthContext
from github_portfolio.metrics import activity_totals, monthly_activity
from github_portfolio.models import IssuesEvent, PullRequestEvent, PushEvent, Repository, WatchEvent


async def _run(fake: FakeGitHub, config: AppConfig | None = None):
    async with fake.client() as client:
        return await fetch_snapshot(client.auth, config, client=client, now=NOW)


class SnapshotTests(unittest.IsolatedAsyncioTestCase):
    async def test_merges_every_endpoint_into_one_snapshot(self) -> None:
        snapshot = await _run(standard_fake())

        self.assertEqual(snapshot.profile.login, "octocat")
        self.assertEqual([repo.name for repo in snapshot.repositories], ["hello", "tools", "server", "forked"])
        self.assertEqual({commit.sha for commit in snapshot.commits}, {"a1", "a2", "b1"})
        self.assertEqual([pr.number for pr in snapshot.pull_requests], [1, 2])
        self.assertEqual([issue.number for issue in snapshot.issues], [3])
        self.assertEqual([org.login for org in snapshot.organizations], ["octo-org"])
        self.assertEqual(snapshot.gists[0].languages, ("Python",))
        self.assertEqual(snapshot.partial_failures, ())
        self.assertEqual(snapshot.fetched_at, NOW)

    async def test_events_become_typed_variants(self) -> None:
        snapshot = await _run(standard_fake())

        push, pull, watch = snapshot.events
        self.assertIsInstance(push, PushEvent)
        self.assertEqual(push.commit_count, 2)
        self.assertIsInstance(pull, PullRequestEvent)
        self.assertEqual(pull.action, "opened")
        self.assertIsInstance(watch, WatchEvent)

    async def test_commit_requests_are_scoped_to_author_and_lookback(self) -> None:
        fake = standard_fake()
        await _run(fake)

        commit_requests = [request for request in fake.requests if request.url.path.endswith("/commits")]
        self.assertEqual(len(commit_requests), 4)
        for request in commit_requests:
            self.assertEqual(request.url.params["author"], "octocat")
            self.assertEqual(request.url.params["since"], "2023-03-11T12:00:00Z")

    async def test_every_fetched_commit_lands_in_a_monthly_bucket(self) -> None:
        fake = standard_fake()
        # just after the lookback start, before the first full calendar month
        fake.add("/repos/octocat/server/commits", [commit_payload("s1", "2023-03-20T08:00:00Z")])
        snapshot = await _run(fake)
        totals = activity_totals(snapshot)

        for mode in ("year_month", "month_of_year"):
            with self.subTest(mode=mode):
                months = monthly_activity(snapshot, mode=mode, today=NOW.date(), lookback_days=365)
                self.assertEqual(sum(bucket.commits for bucket in months), totals.commits)
        self.assertEqual(totals.commits, 4)

    async def test_repository_listing_requested_by_update_order(self) -> None:
        fake = standard_fake()
        await _run(fake)

        listing = next(request for request in fake.requests if request.url.path == "/user/repos")
        self.assertEqual(listing.url.params["sort"], "updated")
        self.assertEqual(listing.url.params["per_page"], "100")

    async def test_unchanged_upstream_gives_equal_snapshots(self) -> None:
        first = await _run(standard_fake())
        second = await _run(standard_fake())

        self.assertEqual(first, second)

    async def test_duplicate_ids_across_pages_are_dropped(self) -> None:
        fake = standard_fake()

        def paged(request: httpx.Request) -> httpx.Response:
            if request.url.params.get("page") == "2":
                return httpx.Response(200, json=[repo_payload(1, "hello"), repo_payload(5, "extra")])
            link = '<https://api.github.com/user/repos?page=2>; rel="next"'
            return httpx.Response(200, json=[repo_payload(1, "hello")], headers={"Link": link})

        fake.add_handler("/user/repos", paged)
        snapshot = await _run(fake)

        self.assertEqual([repo.id for repo in snapshot.repositories], [1, 5])


class MandatoryProfileTests(unittest.IsolatedAsyncioTestCase):
    async def test_missing_token_fails_before_any_request(self) -> None:
        fake = standard_fake()
        async with fake.client(token="") as client:
            with self.assertRaises(AuthFailure):
                await fetch_snapshot(AuthContext(""), client=client, now=NOW)
        self.assertEqual(fake.requests, [])

    async def test_rejected_token_is_auth_failure(self) -> None:
        fake = standard_fake()
        fake.add("/user", {"message": "Bad credentials"}, status=401)
        with self.assertRaises(AuthFailure) as ctx:
            await _run(fake)
        self.assertEqual(ctx.exception.status_code, 401)
        self.assertFalse(ctx.exception.retryable)
        self.assertEqual(fake.paths(), ["/user"])

    async def test_rate_limited_profile_is_retryable(self) -> None:
        fake = standard_fake()
        fake.add(
            "/user",
            {"message": "API rate limit exceeded"},
            status=403,
            headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1710000000"},
        )
        with self.assertRaises(RateLimited) as ctx:
            await _run(fake)
        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(ctx.exception.reset_at, 1710000000)
        self.assertEqual(ctx.exception.user_message, "failed to load GitHub data, try refreshing")

    async def test_server_error_on_profile_is_upstream_unavailable(self) -> None:
        fake = standard_fake()
        fake.add("/user", {"message": "Server Error"}, status=502)
        with self.assertRaises(UpstreamUnavailable):
            await _run(fake)

    async def test_profile_without_login_is_upstream_unavailable(self) -> None:
        fake = standard_fake()
        fake.add("/user", profile_payload(login=""))
        with self.assertRaises(UpstreamUnavailable):
            await _run(fake)


class PartialFailureTests(unittest.IsolatedAsyncioTestCase):
    async def test_missing_repository_commits_do_not_abort(self) -> None:
        fake = standard_fake()
        fake.add("/repos/octocat/tools/commits", {"message": "Not Found"}, status=404)
        snapshot = await _run(fake)

        self.assertEqual({commit.sha for commit in snapshot.commits}, {"a1", "a2"})
        self.assertEqual(len(snapshot.partial_failures), 1)
        failure = snapshot.partial_failures[0]
        self.assertEqual(failure.name, "commits:octocat/tools")
        self.assertEqual(failure.kind, FailureKind.NOT_FOUND)
        self.assertEqual(failure.status, 404)

    async def test_rate_limited_search_falls_back_to_none(self) -> None:
        fake = standard_fake()
        fake.add("/search/issues", {"message": "secondary rate limit"}, status=403)
        snapshot = await _run(fake)

        self.assertIsNone(snapshot.pull_requests)
        self.assertIsNone(snapshot.issues)
        kinds = {failure.name: failure.kind for failure in snapshot.partial_failures}
        self.assertEqual(kinds["search:pull_requests"], FailureKind.RATE_LIMITED)
        self.assertEqual(kinds["search:issues"], FailureKind.RATE_LIMITED)

    async def test_failed_pull_request_detail_is_dropped(self) -> None:
        fake = standard_fake()
        fake.add("/repos/octocat/hello/pulls/2", {"message": "Server Error"}, status=500)
        snapshot = await _run(fake)

        self.assertEqual([pr.number for pr in snapshot.pull_requests], [1])
        self.assertEqual(snapshot.partial_failures[0].kind, FailureKind.UPSTREAM_ERROR)

    async def test_secondary_listings_fail_independently(self) -> None:
        fake = standard_fake()
        fake.add("/user/orgs", {"message": "Forbidden"}, status=403)
        fake.add("/gists", {"message": "Server Error"}, status=500)
        snapshot = await _run(fake)

        self.assertEqual(snapshot.organizations, ())
        self.assertEqual(snapshot.gists, ())
        self.assertEqual(len(snapshot.repositories), 4)
        self.assertEqual(len(snapshot.partial_failures), 2)

    async def test_incomplete_search_falls_back_to_none(self) -> None:
        fake = standard_fake()

        def incomplete(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"total_count": 400, "incomplete_results": True, "items": [issue_payload(3)]})

        fake.add_handler("/search/issues", incomplete)
        snapshot = await _run(fake)

        self.assertIsNone(snapshot.pull_requests)
        self.assertIsNone(snapshot.issues)
        self.assertEqual(
            [(failure.name, failure.message) for failure in snapshot.partial_failures],
            [("search:issues", "incomplete search results"), ("search:pull_requests", "incomplete search results")],
        )
        self.assertFalse(any(path.startswith("/repos/octocat/hello/pulls") for path in fake.paths()))

    async def test_failure_order_does_not_depend_on_latency(self) -> None:
        def failing_after(delay: float):
            async def respond(request: httpx.Request) -> httpx.Response:
                await asyncio.sleep(delay)
                return httpx.Response(500, json={"message": "Server Error"})

            return respond

        snapshots = []
        for orgs_delay, gists_delay in ((0.0, 0.02), (0.02, 0.0)):
            fake = standard_fake()
            fake.add_handler("/user/orgs", failing_after(orgs_delay))
            fake.add_handler("/gists", failing_after(gists_delay))
            snapshots.append(await _run(fake))

        first, second = snapshots
        self.assertEqual([failure.name for failure in first.partial_failures], ["gists", "organizations"])
        self.assertEqual(first, second)

    async def test_malformed_items_are_skipped(self) -> None:
        fake = standard_fake()
        fake.add("/repos/octocat/hello/commits", [{"no_sha": True}, commit_payload("a1", "2024-03-01T09:00:00Z")])
        snapshot = await _run(fake)

        self.assertIn("a1", {commit.sha for commit in snapshot.commits})
        self.assertEqual(snapshot.partial_failures, ())


class FanOutTests(unittest.IsolatedAsyncioTestCase):
    async def test_commit_fetches_are_capped_and_bounded(self) -> None:
        fake = standard_fake()
        repos = [repo_payload(index, f"repo{index}", updated_at=f"2024-02-{index:02d}T00:00:00Z") for index in range(1, 26)]
        fake.add("/user/repos", repos)
        for index in range(1, 26):
            fake.add(f"/repos/octocat/repo{index}/commits", [commit_payload(f"c{index}", "2024-02-01T00:00:00Z")])

        config = AppConfig()
        config.fetch.commit_repo_limit = 5
        config.fetch.max_concurrency = 2
        snapshot = await _run(fake, config)

        commit_paths = [path for path in fake.paths() if path.endswith("/commits")]
        self.assertEqual(len(commit_paths), 5)
        # most recently updated first
        self.assertEqual(sorted(commit.sha for commit in snapshot.commits), sorted(f"c{index}" for index in range(21, 26)))
        self.assertLessEqual(fake.max_in_flight, 2)

    def test_select_commit_repositories_orders_by_update_time(self) -> None:
        old = Repository.from_api(repo_payload(1, "old", updated_at="2023-01-01T00:00:00Z"))
        new = Repository.from_api(repo_payload(2, "new", updated_at="2024-01-01T00:00:00Z"))
        self.assertEqual([repo.name for repo in select_commit_repositories([old, new], 1)], ["new"])
        self.assertEqual(select_commit_repositories([old, new], 0), [])


class EventFallbackTests(unittest.IsolatedAsyncioTestCase):
    async def test_issue_events_are_parsed_for_later_fallback(self) -> None:
        fake = standard_fake()
        fake.add(
            "/users/octocat/events",
            [
                {
                    "id": "e9",
                    "type": "IssuesEvent",
                    "repo": {"name": "octocat/hello"},
                    "payload": {"action": "opened", "issue": {"number": 4}},
                    "created_at": "2024-03-01T00:00:00Z",
                }
            ],
        )
        snapshot = await _run(fake)

        self.assertIsInstance(snapshot.events[0], IssuesEvent)
        self.assertEqual(snapshot.events[0].number, 4)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
