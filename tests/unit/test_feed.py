"""
Tests for feed payload translation.
"""
from skyrapport.models import PostType
from skyrapport.sync.feed import (
    activity_time,
    cutoff_ms,
    did_from_uri,
    direct_replies,
    feed_item_to_post,
    page_reaches_before,
    posts_since,
    quoted_uri,
)
from tests.fixtures.mock_data import (
    DAY_MS,
    NOW_MS,
    create_feed_item,
    create_post_view,
    create_thread,
    post_uri,
)

ALICE = "did:plc:alice"
BOB = "did:plc:bob"


def test_did_from_uri():
    assert did_from_uri("at://did:plc:abc/app.bsky.feed.post/123") == "did:plc:abc"
    assert did_from_uri("https://example.com") is None
    assert did_from_uri(None) is None


def test_cutoff_ms():
    assert cutoff_ms(NOW_MS, 7) == NOW_MS - 7 * DAY_MS
    assert cutoff_ms(NOW_MS, 0.5) == NOW_MS - DAY_MS // 2


class TestVariantTagging:

    def test_plain_post(self):
        item = create_feed_item(post_uri(ALICE, "1"), ALICE, NOW_MS, text="hi")
        post = feed_item_to_post(item, ALICE)
        assert post.post_type is PostType.POST
        assert post.key == post.uri
        assert post.contributor_did == ALICE
        assert post.created_at == NOW_MS
        assert post.text_preview == "hi"

    def test_reply(self):
        parent = post_uri(BOB, "p")
        item = create_feed_item(post_uri(ALICE, "2"), ALICE, NOW_MS, reply_parent=parent)
        post = feed_item_to_post(item, ALICE)
        assert post.post_type is PostType.REPLY
        assert post.reply_parent_uri == parent
        assert post.reply_root_uri == parent

    def test_quote(self):
        quoted = post_uri(BOB, "q")
        item = create_feed_item(post_uri(ALICE, "3"), ALICE, NOW_MS, quote=quoted)
        post = feed_item_to_post(item, ALICE)
        assert post.post_type is PostType.QUOTE
        assert post.quoted_uri == quoted

    def test_quote_with_media(self):
        record = {
            "embed": {
                "$type": "app.bsky.embed.recordWithMedia",
                "record": {"record": {"uri": "at://x/app.bsky.feed.post/9"}},
                "media": {},
            }
        }
        assert quoted_uri(record) == "at://x/app.bsky.feed.post/9"
        assert quoted_uri({"embed": {"$type": "app.bsky.embed.images"}}) is None

    def test_repost_attributed_to_reposter(self):
        item = create_feed_item(
            post_uri(BOB, "4"), BOB, NOW_MS - 10 * DAY_MS, reposted_by=ALICE, reposted_ms=NOW_MS
        )
        post = feed_item_to_post(item, ALICE, "alice.bsky.social")
        assert post.post_type is PostType.REPOST
        assert post.author_did == BOB
        assert post.reposted_by_did == ALICE
        assert post.contributor_did == ALICE
        assert post.key == f"repost:{ALICE}:{post.uri}"

    def test_repost_of_reply_is_repost(self):
        item = create_feed_item(
            post_uri(BOB, "5"), BOB, NOW_MS, reply_parent=post_uri(ALICE, "x"), reposted_by=ALICE
        )
        assert feed_item_to_post(item, ALICE).post_type is PostType.REPOST

    def test_unusable_payload(self):
        assert feed_item_to_post({"post": {}}, ALICE) is None


class TestTimeCutoff:

    def test_repost_time_is_reason_time(self):
        item = create_feed_item(
            post_uri(BOB, "1"), BOB, NOW_MS - 30 * DAY_MS, reposted_by=ALICE, reposted_ms=NOW_MS
        )
        assert activity_time(item) == NOW_MS

    def test_posts_since_filters_old_items(self):
        cutoff = NOW_MS - 7 * DAY_MS
        items = [
            create_feed_item(post_uri(ALICE, "new"), ALICE, NOW_MS),
            create_feed_item(post_uri(ALICE, "old"), ALICE, NOW_MS - 8 * DAY_MS),
            create_feed_item(
                post_uri(BOB, "rp"), BOB, NOW_MS - 30 * DAY_MS, reposted_by=ALICE, reposted_ms=NOW_MS
            ),
        ]
        posts = posts_since(items, cutoff, ALICE)
        assert [p.uri for p in posts] == [post_uri(ALICE, "new"), post_uri(BOB, "rp")]

    def test_page_reaches_before_ignores_pinned(self):
        cutoff = NOW_MS - 7 * DAY_MS
        pinned_old = create_feed_item(post_uri(ALICE, "pin"), ALICE, NOW_MS - 100 * DAY_MS, pinned=True)
        recent = create_feed_item(post_uri(ALICE, "r"), ALICE, NOW_MS)
        old = create_feed_item(post_uri(ALICE, "o"), ALICE, NOW_MS - 8 * DAY_MS)

        assert not page_reaches_before([pinned_old, recent], cutoff)
        assert page_reaches_before([recent, old], cutoff)
        assert not page_reaches_before([], cutoff)


def test_direct_replies_skips_blocked_and_missing():
    root = create_post_view(post_uri(ALICE, "root"), ALICE, NOW_MS)
    reply = create_post_view(post_uri(BOB, "r1"), BOB, NOW_MS, reply_parent=root["uri"])
    thread = create_thread(root, [reply])
    thread["thread"]["replies"].append({"$type": "app.bsky.feed.defs#blockedPost", "uri": "x"})

    assert [r["uri"] for r in direct_replies(thread)] == [reply["uri"]]
    assert direct_replies({}) == []
