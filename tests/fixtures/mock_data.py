"""
Mock data and fixtures for Skyrapport tests.

Provides payloads shaped like real Bluesky XRPC responses, a scripted stand-in
for ``requests.Session`` and a controllable clock.
"""
import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from skyrapport.auth import Session
from skyrapport.models import Post, PostType

ME_DID = "did:plc:me"
ME_HANDLE = "me.bsky.social"

DAY_MS = 24 * 60 * 60 * 1000
NOW_MS = 1_700_000_000_000


def iso(ms: int) -> str:
    """Epoch milliseconds -> ``2023-11-14T22:13:20.000Z``."""
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def create_mock_session(did: str = ME_DID, handle: str = ME_HANDLE) -> Session:
    return Session(
        access_jwt="access-jwt",
        did=did,
        handle=handle,
        pds_url="https://pds.example.com",
        refresh_jwt="refresh-jwt",
    )


def create_profile_view(did: str, handle: Optional[str] = None, **kwargs) -> Dict[str, Any]:
    view = {
        "did": did,
        "handle": handle or f"{did.split(':')[-1]}.bsky.social",
        "displayName": kwargs.pop("display_name", None),
        "avatar": kwargs.pop("avatar", None),
    }
    view.update(kwargs)
    return view


def post_uri(did: str, rkey: str) -> str:
    return f"at://{did}/app.bsky.feed.post/{rkey}"


def create_post_view(
    uri: str,
    author_did: str,
    created_ms: int,
    text: str = "hello",
    reply_parent: Optional[str] = None,
    quote: Optional[str] = None,
    author_handle: Optional[str] = None,
    like_count: int = 0,
) -> Dict[str, Any]:
    record: Dict[str, Any] = {
        "$type": "app.bsky.feed.post",
        "text": text,
        "createdAt": iso(created_ms),
    }
    if reply_parent:
        record["reply"] = {"parent": {"uri": reply_parent, "cid": "bafyparent"},
                           "root": {"uri": reply_parent, "cid": "bafyparent"}}
    if quote:
        record["embed"] = {"$type": "app.bsky.embed.record", "record": {"uri": quote, "cid": "bafyq"}}
    return {
        "uri": uri,
        "cid": f"bafy{abs(hash(uri)) % 10**8}",
        "author": create_profile_view(author_did, author_handle),
        "record": record,
        "indexedAt": iso(created_ms),
        "likeCount": like_count,
        "repostCount": 0,
        "replyCount": 0,
        "quoteCount": 0,
    }


def create_feed_item(
    uri: str,
    author_did: str,
    created_ms: int,
    reposted_by: Optional[str] = None,
    reposted_ms: Optional[int] = None,
    pinned: bool = False,
    **post_kwargs,
) -> Dict[str, Any]:
    """A FeedViewPost, optionally carrying a repost or pin reason."""
    item: Dict[str, Any] = {"post": create_post_view(uri, author_did, created_ms, **post_kwargs)}
    if reposted_by:
        item["reason"] = {
            "$type": "app.bsky.feed.defs#reasonRepost",
            "by": create_profile_view(reposted_by),
            "indexedAt": iso(reposted_ms if reposted_ms is not None else created_ms),
        }
    elif pinned:
        item["reason"] = {"$type": "app.bsky.feed.defs#reasonPin"}
    return item


def create_like(actor_did: str, created_ms: int) -> Dict[str, Any]:
    return {
        "actor": create_profile_view(actor_did),
        "createdAt": iso(created_ms),
        "indexedAt": iso(created_ms),
    }


def create_thread(root: Dict[str, Any], replies: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "thread": {
            "$type": "app.bsky.feed.defs#threadViewPost",
            "post": root,
            "replies": [
                {"$type": "app.bsky.feed.defs#threadViewPost", "post": reply, "replies": []}
                for reply in replies
            ],
        }
    }


def create_post(
    author_did: str,
    rkey: str,
    post_type: PostType = PostType.POST,
    created_at: int = NOW_MS,
    reposted_by_did: Optional[str] = None,
) -> Post:
    """A stored Post entity (not an API payload)."""
    return Post(
        uri=post_uri(author_did, rkey),
        cid=f"bafy{rkey}",
        author_did=author_did,
        author_handle=f"{author_did.split(':')[-1]}.bsky.social",
        created_at=created_at,
        post_type=post_type,
        reposted_by_did=reposted_by_did,
        reposted_by_handle=(
            f"{reposted_by_did.split(':')[-1]}.bsky.social" if reposted_by_did else None
        ),
    )


class FakeResponse:
    """Just enough of ``requests.Response`` for the client."""

    def __init__(self, status_code: int = 200, payload: Any = None, raw: Optional[bytes] = None):
        self.status_code = status_code
        self._payload = payload
        if raw is not None:
            self.content = raw
        else:
            self.content = b"" if payload is None else json.dumps(payload).encode()

    def json(self):
        return json.loads(self.content)


def paged(key: str, items: List[Any], page_size: int = 2) -> Callable[[Dict[str, Any]], Dict[str, Any]]:
    """Handler serving ``items`` under ``key`` in pages with numeric cursors."""

    def handler(params: Dict[str, Any]) -> Dict[str, Any]:
        start = int(params.get("cursor") or 0)
        end = start + page_size
        page: Dict[str, Any] = {key: items[start:end]}
        if end < len(items):
            page["cursor"] = str(end)
        return page

    return handler


class FakeXrpc:
    """Stand-in for ``requests.Session`` that routes XRPC methods to handlers.

    A handler receives the query params and returns a JSON-able dict, a
    FakeResponse, or raises.
    """

    def __init__(self):
        self.headers: Dict[str, str] = {}
        self.handlers: Dict[str, Callable[[Dict[str, Any]], Any]] = {}
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def route(self, endpoint: str, handler) -> "FakeXrpc":
        if not callable(handler):
            payload = handler
            handler = lambda params: payload  # noqa: E731
        self.handlers[endpoint] = handler
        return self

    def request(self, method, url, params=None, json=None, headers=None, timeout=None):
        endpoint = url.rsplit("/xrpc/", 1)[1]
        self.calls.append(
            {
                "method": method,
                "url": url,
                "endpoint": endpoint,
                "params": dict(params or {}),
                "headers": dict(headers or {}),
                "timeout": timeout,
            }
        )
        handler = self.handlers.get(endpoint)
        if handler is None:
            return FakeResponse(
                400, {"error": "MethodNotImplemented", "message": f"No handler for {endpoint}"}
            )
        result = handler(dict(params or {}))
        if isinstance(result, FakeResponse):
            return result
        return FakeResponse(200, result)

    def calls_to(self, endpoint: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["endpoint"] == endpoint]

    def close(self):
        self.closed = True


class FakeClock:
    """Monotonic clock that only moves when told to (or when slept on)."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
