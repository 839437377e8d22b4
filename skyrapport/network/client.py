"""Sync HTTP client for the Bluesky XRPC API, gated by a shared RateLimiter.

Every call acquires a limiter slot first, then classifies the outcome:
401 -> AuthenticationError, other non-2xx -> APIError, network failure ->
TransportError. There is no retry here beyond the limiter's own waiting.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, TypeVar

import requests

from skyrapport.auth import Session
from skyrapport.exceptions import APIError, AuthenticationError, TransportError
from skyrapport.network.deadline import Deadline
from skyrapport.network.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

# Bluesky public AppView
BLUESKY_PUBLIC_API = "https://public.api.bsky.app"

DEFAULT_TIMEOUT = 30
DEFAULT_PAGE_SIZE = 100

AUTHOR_FEED_FILTERS = (
    "posts_with_replies",
    "posts_no_replies",
    "posts_and_author_threads",
)

Page = Dict[str, Any]
T = TypeVar("T")


class BlueskyClient:
    """Paginated XRPC client.

    Public reads go to the AppView without a token. Authenticated reads carry
    the session's bearer token and go to the session's PDS, which proxies
    ``app.bsky.*`` methods to the AppView.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        *,
        session: Optional[Session] = None,
        public_base: str = BLUESKY_PUBLIC_API,
        timeout: float = DEFAULT_TIMEOUT,
        page_size: int = DEFAULT_PAGE_SIZE,
        http: Optional[requests.Session] = None,
    ) -> None:
        self._rate_limiter = rate_limiter
        self._session = session
        self._public_base = public_base.rstrip("/")
        self._timeout = timeout
        self.page_size = page_size
        self._http = http or requests.Session()
        self._http.headers.update(
            {
                "User-Agent": "Skyrapport/1.0",
                "Accept": "application/json",
            }
        )

    @property
    def session(self) -> Optional[Session]:
        return self._session

    def set_session(self, session: Optional[Session]) -> None:
        self._session = session

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    def close(self) -> None:
        """Close the HTTP session."""
        self._http.close()

    # -----------------------------------------------------------------------
    # Core request
    # -----------------------------------------------------------------------

    def request(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        authenticated: bool = False,
        method: str = "GET",
        body: Optional[Dict[str, Any]] = None,
        deadline: Optional[Deadline] = None,
    ) -> Dict[str, Any]:
        """Issue one XRPC call and return the decoded JSON body."""
        headers: Dict[str, str] = {}
        if authenticated:
            if self._session is None or not self._session.access_jwt:
                raise AuthenticationError("Not logged in to Bluesky")
            base = self._session.pds_url.rstrip("/")
            headers["Authorization"] = f"Bearer {self._session.access_jwt}"
        else:
            base = self._public_base

        self._rate_limiter.acquire(deadline)

        timeout = deadline.clamp(self._timeout) if deadline is not None else self._timeout
        url = f"{base}/xrpc/{endpoint}"
        logger.debug("API request: %s %s %s", method, url, params or "")

        try:
            response = self._http.request(
                method,
                url,
                params=params,
                json=body,
                headers=headers,
                timeout=timeout,
            )
        except requests.Timeout as exc:
            raise TransportError(
                f"Request to {endpoint} timed out", original_error=exc
            ) from exc
        except requests.RequestException as exc:
            raise TransportError(
                f"Network error calling {endpoint}: {exc}", original_error=exc
            ) from exc

        if not 200 <= response.status_code < 300:
            raise self._classify_failure(endpoint, response)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(
                f"Invalid JSON from {endpoint}", original_error=exc
            ) from exc

    @staticmethod
    def _classify_failure(endpoint: str, response: requests.Response) -> APIError:
        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        message = data.get("message") or f"API error: {response.status_code}"
        logger.error(
            "API error on %s: %d %s", endpoint, response.status_code, data or ""
        )
        if response.status_code == 401:
            return AuthenticationError(data.get("message") or "Authentication failed")
        return APIError(message, response.status_code, data.get("error"))

    # -----------------------------------------------------------------------
    # Pagination
    # -----------------------------------------------------------------------

    def fetch_all_pages(
        self,
        fetch_one: Callable[[Optional[str]], Page],
        extract_items: Callable[[Page], List[T]],
        extract_cursor: Callable[[Page], Optional[str]] = lambda page: page.get("cursor"),
        *,
        on_progress: Optional[Callable[[int], None]] = None,
        stop_when: Optional[Callable[[Page], bool]] = None,
        deadline: Optional[Deadline] = None,
    ) -> List[T]:
        """Follow server cursors until none is returned.

        Pages are applied strictly in cursor order. ``stop_when`` lets callers
        end early (e.g. once a page reaches past a time cut-off); the page that
        triggered it is still included.
        """
        items: List[T] = []
        cursor: Optional[str] = None
        seen_cursors = set()

        while True:
            if deadline is not None:
                deadline.check()
            page = fetch_one(cursor)
            items.extend(extract_items(page))
            if on_progress:
                on_progress(len(items))

            if stop_when is not None and stop_when(page):
                break
            cursor = extract_cursor(page)
            if not cursor:
                break
            if cursor in seen_cursors:
                logger.warning("Server repeated cursor %r; stopping pagination", cursor)
                break
            seen_cursors.add(cursor)

        return items

    def _page_params(self, key: str, value: str, limit: Optional[int], cursor: Optional[str]) -> Dict[str, Any]:
        params: Dict[str, Any] = {key: value, "limit": limit or self.page_size}
        if cursor:
            params["cursor"] = cursor
        return params

    # -----------------------------------------------------------------------
    # Profile & graph endpoints
    # -----------------------------------------------------------------------

    def get_profile(self, actor: str, *, deadline: Optional[Deadline] = None) -> Dict[str, Any]:
        return self.request(
            "app.bsky.actor.getProfile", {"actor": actor}, deadline=deadline
        )

    def get_follows(
        self,
        actor: str,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        *,
        deadline: Optional[Deadline] = None,
    ) -> Page:
        return self.request(
            "app.bsky.graph.getFollows",
            self._page_params("actor", actor, limit, cursor),
            deadline=deadline,
        )

    def get_followers(
        self,
        actor: str,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        *,
        deadline: Optional[Deadline] = None,
    ) -> Page:
        return self.request(
            "app.bsky.graph.getFollowers",
            self._page_params("actor", actor, limit, cursor),
            deadline=deadline,
        )

    def get_all_follows(
        self,
        actor: str,
        on_progress: Optional[Callable[[int], None]] = None,
        *,
        deadline: Optional[Deadline] = None,
    ) -> List[Dict[str, Any]]:
        return self.fetch_all_pages(
            lambda cursor: self.get_follows(actor, cursor=cursor, deadline=deadline),
            lambda page: page.get("follows", []),
            on_progress=on_progress,
            deadline=deadline,
        )

    def get_all_followers(
        self,
        actor: str,
        on_progress: Optional[Callable[[int], None]] = None,
        *,
        deadline: Optional[Deadline] = None,
    ) -> List[Dict[str, Any]]:
        return self.fetch_all_pages(
            lambda cursor: self.get_followers(actor, cursor=cursor, deadline=deadline),
            lambda page: page.get("followers", []),
            on_progress=on_progress,
            deadline=deadline,
        )

    # -----------------------------------------------------------------------
    # Feed endpoints
    # -----------------------------------------------------------------------

    def get_author_feed(
        self,
        actor: str,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        filter: str = "posts_with_replies",
        *,
        deadline: Optional[Deadline] = None,
    ) -> Page:
        if filter not in AUTHOR_FEED_FILTERS:
            raise ValueError(f"Unknown author feed filter '{filter}'")
        params = self._page_params("actor", actor, limit, cursor)
        params["filter"] = filter
        return self.request("app.bsky.feed.getAuthorFeed", params, deadline=deadline)

    def get_timeline(
        self,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        *,
        deadline: Optional[Deadline] = None,
    ) -> Page:
        params: Dict[str, Any] = {"limit": limit or self.page_size}
        if cursor:
            params["cursor"] = cursor
        return self.request(
            "app.bsky.feed.getTimeline", params, authenticated=True, deadline=deadline
        )

    def get_actor_likes(
        self,
        actor: str,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        *,
        deadline: Optional[Deadline] = None,
    ) -> Page:
        """Posts liked by ``actor``. Only the actor themself may call this."""
        return self.request(
            "app.bsky.feed.getActorLikes",
            self._page_params("actor", actor, limit, cursor),
            authenticated=True,
            deadline=deadline,
        )

    # -----------------------------------------------------------------------
    # Engagement endpoints
    # -----------------------------------------------------------------------

    def get_likes(
        self,
        uri: str,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        *,
        deadline: Optional[Deadline] = None,
    ) -> Page:
        return self.request(
            "app.bsky.feed.getLikes",
            self._page_params("uri", uri, limit, cursor),
            deadline=deadline,
        )

    def get_reposted_by(
        self,
        uri: str,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        *,
        deadline: Optional[Deadline] = None,
    ) -> Page:
        return self.request(
            "app.bsky.feed.getRepostedBy",
            self._page_params("uri", uri, limit, cursor),
            deadline=deadline,
        )

    def get_quotes(
        self,
        uri: str,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        *,
        deadline: Optional[Deadline] = None,
    ) -> Page:
        return self.request(
            "app.bsky.feed.getQuotes",
            self._page_params("uri", uri, limit, cursor),
            deadline=deadline,
        )

    def get_post_thread(
        self,
        uri: str,
        depth: int = 6,
        parent_height: int = 0,
        *,
        deadline: Optional[Deadline] = None,
    ) -> Dict[str, Any]:
        return self.request(
            "app.bsky.feed.getPostThread",
            {"uri": uri, "depth": depth, "parentHeight": parent_height},
            deadline=deadline,
        )

    def get_all_likes(
        self, uri: str, *, deadline: Optional[Deadline] = None
    ) -> List[Dict[str, Any]]:
        return self.fetch_all_pages(
            lambda cursor: self.get_likes(uri, cursor=cursor, deadline=deadline),
            lambda page: page.get("likes", []),
            deadline=deadline,
        )

    def get_all_reposted_by(
        self, uri: str, *, deadline: Optional[Deadline] = None
    ) -> List[Dict[str, Any]]:
        return self.fetch_all_pages(
            lambda cursor: self.get_reposted_by(uri, cursor=cursor, deadline=deadline),
            lambda page: page.get("repostedBy", []),
            deadline=deadline,
        )

    def get_all_quotes(
        self, uri: str, *, deadline: Optional[Deadline] = None
    ) -> List[Dict[str, Any]]:
        return self.fetch_all_pages(
            lambda cursor: self.get_quotes(uri, cursor=cursor, deadline=deadline),
            lambda page: page.get("posts", []),
            deadline=deadline,
        )
