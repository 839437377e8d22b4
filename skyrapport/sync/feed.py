"""Translation of XRPC feed payloads into stored entities."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from skyrapport.models import Post, PostType, to_millis

REASON_REPOST = "app.bsky.feed.defs#reasonRepost"
REASON_PIN = "app.bsky.feed.defs#reasonPin"
THREAD_VIEW_POST = "app.bsky.feed.defs#threadViewPost"
EMBED_RECORD = "app.bsky.embed.record"
EMBED_RECORD_WITH_MEDIA = "app.bsky.embed.recordWithMedia"

DAY_MS = 24 * 60 * 60 * 1000


def did_from_uri(uri: Optional[str]) -> Optional[str]:
    """``at://did:plc:abc/app.bsky.feed.post/123`` -> ``did:plc:abc``."""
    if not uri or not uri.startswith("at://"):
        return None
    authority = uri[len("at://"):].split("/", 1)[0]
    return authority or None


def cutoff_ms(now: int, days_back: float) -> int:
    return int(now - days_back * DAY_MS)


def _reason_type(item: Dict[str, Any]) -> Optional[str]:
    reason = item.get("reason") or {}
    return reason.get("$type")


def is_repost(item: Dict[str, Any]) -> bool:
    return _reason_type(item) == REASON_REPOST


def is_pinned(item: Dict[str, Any]) -> bool:
    return _reason_type(item) == REASON_PIN


def quoted_uri(record: Dict[str, Any]) -> Optional[str]:
    """URI of the record a post embeds, if it quotes one."""
    embed = record.get("embed") or {}
    kind = embed.get("$type")
    if kind == EMBED_RECORD:
        return (embed.get("record") or {}).get("uri")
    if kind == EMBED_RECORD_WITH_MEDIA:
        inner = (embed.get("record") or {}).get("record") or {}
        return inner.get("uri")
    return None


def activity_time(item: Dict[str, Any]) -> int:
    """When the item entered the feed: repost time for reposts, else creation time."""
    post = item.get("post") or {}
    if is_repost(item):
        stamp = to_millis((item.get("reason") or {}).get("indexedAt"))
        if stamp:
            return stamp
    record = post.get("record") or {}
    return to_millis(record.get("createdAt")) or to_millis(post.get("indexedAt"))


def page_reaches_before(items: Iterable[Dict[str, Any]], cutoff: int) -> bool:
    """True once the oldest non-pinned item on a page precedes ``cutoff``."""
    times = [activity_time(i) for i in items if not is_pinned(i)]
    return bool(times) and min(times) < cutoff


def feed_item_to_post(
    item: Dict[str, Any],
    feed_owner_did: str,
    feed_owner_handle: str = "",
) -> Optional[Post]:
    """Build a :class:`Post` from a FeedViewPost; None if the payload is unusable."""
    post = item.get("post") or {}
    author = post.get("author") or {}
    record = post.get("record") or {}
    if not post.get("uri") or not author.get("did"):
        return None

    reply = record.get("reply") or {}
    quoted = quoted_uri(record)
    reposted_by_did = reposted_by_handle = None

    if is_repost(item):
        post_type = PostType.REPOST
        by = (item.get("reason") or {}).get("by") or {}
        reposted_by_did = by.get("did") or feed_owner_did
        reposted_by_handle = by.get("handle") or feed_owner_handle
    elif reply:
        post_type = PostType.REPLY
    elif quoted:
        post_type = PostType.QUOTE
    else:
        post_type = PostType.POST

    created_at = to_millis(record.get("createdAt")) or to_millis(post.get("indexedAt"))
    return Post(
        uri=post["uri"],
        cid=post.get("cid", ""),
        author_did=author["did"],
        author_handle=author.get("handle", ""),
        author_display_name=author.get("displayName"),
        author_avatar=author.get("avatar"),
        created_at=created_at,
        indexed_at=to_millis(post.get("indexedAt"), created_at),
        post_type=post_type,
        reposted_by_did=reposted_by_did,
        reposted_by_handle=reposted_by_handle,
        reply_parent_uri=(reply.get("parent") or {}).get("uri"),
        reply_root_uri=(reply.get("root") or {}).get("uri"),
        quoted_uri=quoted,
        text_preview=record.get("text"),
        like_count=post.get("likeCount") or 0,
        repost_count=post.get("repostCount") or 0,
        reply_count=post.get("replyCount") or 0,
        quote_count=post.get("quoteCount") or 0,
    )


def posts_since(
    items: Iterable[Dict[str, Any]], cutoff: int, feed_owner_did: str, feed_owner_handle: str = ""
) -> List[Post]:
    """Posts from a feed page whose activity time is at or after ``cutoff``."""
    posts = []
    for item in items:
        if activity_time(item) < cutoff:
            continue
        post = feed_item_to_post(item, feed_owner_did, feed_owner_handle)
        if post is not None:
            posts.append(post)
    return posts


def direct_replies(thread_response: Dict[str, Any]) -> List[Dict[str, Any]]:
    """PostViews of the visible first-level replies in a getPostThread response."""
    thread = thread_response.get("thread") or {}
    replies = thread.get("replies") or []
    return [
        r["post"]
        for r in replies
        if r.get("$type") == THREAD_VIEW_POST and r.get("post")
    ]
