from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

import httpx

from . import __version__

API_ROOT = "https://api.github.com"
API_VERSION = "2022-11-28"
_USER_AGENT = f"github-portfolio/{__version__}"

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    ERROR = "error"
    NETWORK = "network"


@dataclass(frozen=True, slots=True)
class AuthContext:
    """Credentials for one aggregation run, passed in explicitly."""

    token: str
    user_id: Optional[str] = None

    @classmethod
    def from_env(cls, variable: str = "GITHUB_TOKEN", user_id: Optional[str] = None) -> "AuthContext":
        return cls(token=os.getenv(variable, "").strip(), user_id=user_id)

    @property
    def is_present(self) -> bool:
        return bool(self.token)


@dataclass(frozen=True, slots=True)
class RateLimitInfo:
    remaining: Optional[int] = None
    reset_at: Optional[int] = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "RateLimitInfo":
        lowered = {key.lower(): value for key, value in headers.items()}
        remaining = lowered.get("x-ratelimit-remaining")
        reset = lowered.get("x-ratelimit-reset")
        return cls(
            remaining=int(remaining) if remaining and remaining.isdigit() else None,
            reset_at=int(reset) if reset and reset.isdigit() else None,
        )

    @property
    def is_exhausted(self) -> bool:
        return self.remaining == 0


@dataclass(frozen=True, slots=True)
class ApiResponse:
    """Result of one GET. Status 0 means the request never got an answer."""

    url: str
    status: int
    body: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    next_url: Optional[str] = None
    error: Optional[str] = None

    @property
    def outcome(self) -> Outcome:
        if self.status == 0:
            return Outcome.NETWORK
        if 200 <= self.status < 300:
            return Outcome.OK
        if self.status == 401:
            return Outcome.UNAUTHORIZED
        if self.status == 404:
            return Outcome.NOT_FOUND
        if self.status in (403, 429):
            return Outcome.RATE_LIMITED
        return Outcome.ERROR

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK

    @property
    def rate_limit(self) -> RateLimitInfo:
        return RateLimitInfo.from_headers(self.headers)

    @property
    def message(self) -> str:
        if self.error:
            return self.error
        if isinstance(self.body, dict) and self.body.get("message"):
            return str(self.body["message"])
        return f"HTTP {self.status}"


class GitHubClient:
    """Authenticated GET access to the GitHub REST API.

    Use as an async context manager; one ``httpx.AsyncClient`` is shared by
    every request issued during the block. HTTP errors are never raised, they
    come back as ``ApiResponse`` objects with a non-OK ``outcome``.
    """

    def __init__(
        self,
        auth: AuthContext,
        *,
        api_root: str = API_ROOT,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.auth = auth
        self.api_root = api_root.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "GitHubClient":
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
            "User-Agent": _USER_AGENT,
        }
        if self.auth.token:
            headers["Authorization"] = f"Bearer {self.auth.token}"
        self._http = httpx.AsyncClient(
            headers=headers,
            timeout=httpx.Timeout(self._timeout, connect=5.0),
            transport=self._transport,
            follow_redirects=True,
        )
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    def _absolute(self, url: str) -> str:
        if url.startswith(("http://", "https://")):
            return url
        return f"{self.api_root}/{url.lstrip('/')}"

    async def get(self, url: str, params: Optional[Dict[str, Any]] = None) -> ApiResponse:
        if self._http is None:
            raise RuntimeError("GitHubClient must be used inside 'async with'")
        target = self._absolute(url)
        try:
            response = await self._http.get(target, params=params)
        except httpx.HTTPError as error:
            logger.debug("GET %s failed: %s", target, error)
            return ApiResponse(url=target, status=0, error=f"{type(error).__name__}: {error}")

        try:
            body = response.json()
        except ValueError:
            body = response.text or None
        next_link = response.links.get("next") or {}
        result = ApiResponse(
            url=str(response.url),
            status=response.status_code,
            body=body,
            headers=dict(response.headers),
            next_url=next_link.get("url"),
        )
        if not result.ok:
            logger.debug("GET %s -> %s (%s)", target, result.status, result.message)
            if result.rate_limit.is_exhausted:
                logger.warning("GitHub rate limit exhausted, resets at %s", result.rate_limit.reset_at)
        return result

    async def get_all_pages(
        self,
        url: str,
        max_pages: int = 10,
        params: Optional[Dict[str, Any]] = None,
        on_failure: Optional[Callable[[ApiResponse], None]] = None,
    ) -> List[Any]:
        """Collect items across ``rel="next"`` links.

        A failing page ends pagination without raising; whatever was collected
        so far is returned and the failed response goes to ``on_failure``.
        """
        items: List[Any] = []
        next_url: Optional[str] = url
        next_params = params
        pages = 0
        while next_url and pages < max_pages:
            response = await self.get(next_url, params=next_params)
            if not response.ok:
                if on_failure is not None:
                    on_failure(response)
                break
            if isinstance(response.body, list):
                items.extend(response.body)
            elif response.body is not None:
                items.append(response.body)
            pages += 1
            next_url = response.next_url
            # the next link already carries the query string
            next_params = None
        return items
