"""Sync orchestrator: runs the ordered, resumable collection stages.

Full sync order:
1. follows / followers: the social graph; later stages need to know who you follow
2. timeline: recent posts of followed accounts, fanned out in account batches
3. my-likes: your own likes, replies, quotes and reposts (Interactions)
4. my-posts: likes, reposts, quotes and replies received on your posts (Engagements);
   independent of the graph but the heaviest in request volume, so it runs last

Each stage records ``syncing`` before its first network call. A failure is
recorded once at the stage boundary and re-raised; the remaining stages of
that run are skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from skyrapport.exceptions import AuthenticationError
from skyrapport.models import InteractionType, merge_profile, now_ms, to_millis
from skyrapport.network.client import BlueskyClient
from skyrapport.network.deadline import Deadline
from skyrapport.network.rate_limiter import RateLimitStats
from skyrapport.settings import EngineSettings
from skyrapport.storage.repository import Repository
from skyrapport.sync.fanout import attempt, run_batched, summarize
from skyrapport.sync.feed import (
    activity_time,
    cutoff_ms,
    did_from_uri,
    direct_replies,
    is_pinned,
    is_repost,
    page_reaches_before,
    posts_since,
    quoted_uri,
)
from skyrapport.sync.state import (
    FOLLOWERS,
    FOLLOWS,
    MY_LIKES,
    MY_POSTS,
    TIMELINE,
    SyncStateTracker,
    SyncSummary,
)

if TYPE_CHECKING:
    from skyrapport.analytics.cache import AnalyticsCache

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, int], None]


@dataclass
class SyncOptions:
    include_follows: bool = True
    include_followers: bool = True
    include_posts: bool = True
    include_my_likes: bool = True
    include_engagements: bool = True
    posts_window: Optional[float] = None
    engagements_window: Optional[float] = None


@dataclass
class SyncReport:
    """Items processed per stage plus limiter usage around the run."""

    start_stats: RateLimitStats
    end_stats: Optional[RateLimitStats] = None
    counts: Dict[str, int] = field(default_factory=dict)


class SyncOrchestrator:
    """Drive the sync stages against one client, one store and one limiter."""

    def __init__(
        self,
        client: BlueskyClient,
        repository: Repository,
        *,
        settings: Optional[EngineSettings] = None,
        cache: Optional["AnalyticsCache"] = None,
        progress_callback: Optional[ProgressCallback] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._client = client
        self._repo = repository
        self._settings = settings or EngineSettings()
        self._cache = cache
        self._progress = progress_callback
        self._clock = clock
        self.tracker = SyncStateTracker(repository)

    def _report(self, operation: str, current: int, total: int) -> None:
        if self._progress:
            self._progress(operation, current, total)

    def _actor_did(self) -> str:
        session = self._client.session
        if session is None or not session.did:
            raise AuthenticationError("Not authenticated")
        return session.did

    def status(self) -> SyncSummary:
        return self.tracker.summary()

    # -----------------------------------------------------------------------
    # Graph stages
    # -----------------------------------------------------------------------

    def sync_follows(self, deadline: Optional[Deadline] = None) -> int:
        """Store every account you follow, clearing the flag for unfollowed ones."""
        with self.tracker.track(FOLLOWS) as run:
            actor = self._actor_did()
            follows = self._client.get_all_follows(
                actor,
                on_progress=lambda n: self._report("Fetching follows", n, 0),
                deadline=deadline,
            )
            run.items = self._apply_relation(follows, "you_follow")
        logger.info("Synced %d follows", run.items)
        return run.items

    def sync_followers(self, deadline: Optional[Deadline] = None) -> int:
        """Merge ``follows_you`` into stored profiles."""
        with self.tracker.track(FOLLOWERS) as run:
            actor = self._actor_did()
            followers = self._client.get_all_followers(
                actor,
                on_progress=lambda n: self._report("Fetching followers", n, 0),
                deadline=deadline,
            )
            run.items = self._apply_relation(followers, "follows_you")
        logger.info("Synced %d followers", run.items)
        return run.items

    def _apply_relation(self, entries: List[Dict[str, Any]], flag: str) -> int:
        updates: Dict[str, Dict[str, Any]] = {}
        for entry in entries:
            did = entry.get("did")
            if not did:
                continue
            updates[did] = {
                "did": did,
                "handle": entry.get("handle"),
                "display_name": entry.get("displayName"),
                "avatar": entry.get("avatar"),
                flag: True,
            }

        existing = {p.did: p for p in self._repo.all_profiles()}
        profiles = [merge_profile(existing.get(did), update) for did, update in updates.items()]
        for did, profile in existing.items():
            if getattr(profile, flag) and did not in updates:
                profiles.append(merge_profile(profile, {flag: False}))
        self._repo.save_profiles(profiles)
        return len(updates)

    # -----------------------------------------------------------------------
    # Timeline stage
    # -----------------------------------------------------------------------

    def sync_posts(
        self, days_back: Optional[float] = None, deadline: Optional[Deadline] = None
    ) -> int:
        """Fetch recent posts from every followed account in bounded batches."""
        days = self._settings.posts_days_back if days_back is None else days_back
        with self.tracker.track(TIMELINE) as run:
            following = self._repo.following()
            cutoff = cutoff_ms(self._clock(), days)
            results = run_batched(
                following,
                lambda profile: self._sync_author_feed(profile.did, profile.handle, cutoff, deadline),
                batch_size=self._settings.batch_size,
                deadline=deadline,
                on_batch=lambda done, total: self._report("Syncing posts", done, total),
            )
            outcome = summarize(results)
            if outcome.failed:
                logger.warning(
                    "Post sync failed for %d of %d accounts", outcome.failed, len(results)
                )
            run.items = outcome.total
        logger.info("Synced %d posts", run.items)
        return run.items

    def _sync_author_feed(
        self, did: str, handle: str, cutoff: int, deadline: Optional[Deadline]
    ) -> int:
        posts = self._client.fetch_all_pages(
            lambda cursor: self._client.get_author_feed(did, cursor=cursor, deadline=deadline),
            lambda page: posts_since(page.get("feed", []), cutoff, did, handle),
            stop_when=lambda page: page_reaches_before(page.get("feed", []), cutoff),
            deadline=deadline,
        )
        self._repo.save_posts(posts)
        return len(posts)

    def _own_feed(self, actor: str, cutoff: int, deadline: Optional[Deadline]) -> List[Dict[str, Any]]:
        """Your own feed items (posts, replies, reposts) at or after ``cutoff``."""
        items = self._client.fetch_all_pages(
            lambda cursor: self._client.get_author_feed(actor, cursor=cursor, deadline=deadline),
            lambda page: [i for i in page.get("feed", []) if activity_time(i) >= cutoff],
            stop_when=lambda page: page_reaches_before(page.get("feed", []), cutoff),
            deadline=deadline,
        )
        seen = set()
        unique = []
        for item in items:
            post = item.get("post") or {}
            marker: Tuple[Optional[str], bool] = (post.get("uri"), is_repost(item))
            if not post.get("uri") or marker in seen:
                continue
            seen.add(marker)
            unique.append(item)
        return unique

    # -----------------------------------------------------------------------
    # Your activity (Interactions)
    # -----------------------------------------------------------------------

    def sync_my_activity(
        self, days_back: Optional[float] = None, deadline: Optional[Deadline] = None
    ) -> int:
        """Record your likes, replies, quotes and reposts of other accounts' posts.

        Likes are paged newest-first and paging stops at the first page that
        contains a like already on record.
        """
        days = self._settings.engagements_days_back if days_back is None else days_back
        with self.tracker.track(MY_LIKES) as run:
            actor = self._actor_did()
            liked = self._client.fetch_all_pages(
                lambda cursor: self._client.get_actor_likes(actor, cursor=cursor, deadline=deadline),
                lambda page: page.get("feed", []),
                stop_when=self._page_has_known_like,
                deadline=deadline,
            )
            recorded = 0
            for item in liked:
                post = item.get("post") or {}
                author_did = (post.get("author") or {}).get("did")
                if post.get("uri") and author_did and author_did != actor:
                    self._repo.record_like(post["uri"], author_did)
                    recorded += 1

            cutoff = cutoff_ms(self._clock(), days)
            for item in self._own_feed(actor, cutoff, deadline):
                recorded += self._record_own_activity(actor, item)
            run.items = recorded
        logger.info("Recorded %d of your interactions", run.items)
        return run.items

    def _page_has_known_like(self, page: Dict[str, Any]) -> bool:
        for item in page.get("feed", []):
            uri = (item.get("post") or {}).get("uri")
            if uri and self._repo.has_interaction(InteractionType.LIKE, uri):
                return True
        return False

    def _record_own_activity(self, actor: str, item: Dict[str, Any]) -> int:
        post = item.get("post") or {}
        record = post.get("record") or {}
        author_did = (post.get("author") or {}).get("did")
        when = activity_time(item) or None

        if is_repost(item):
            if author_did and author_did != actor:
                self._repo.record_repost(post["uri"], author_did, created_at=when)
                return 1
            return 0
        if author_did != actor or is_pinned(item):
            return 0

        recorded = 0
        parent_uri = ((record.get("reply") or {}).get("parent") or {}).get("uri")
        if parent_uri:
            parent_author = (
                ((item.get("reply") or {}).get("parent") or {}).get("author") or {}
            ).get("did") or did_from_uri(parent_uri)
            if parent_author and parent_author != actor:
                self._repo.record_reply(parent_uri, parent_author, post["uri"], created_at=when)
                recorded += 1

        target = quoted_uri(record)
        target_author = did_from_uri(target)
        if target and target_author and target_author != actor:
            self._repo.record_quote(target, target_author, post["uri"], created_at=when)
            recorded += 1
        return recorded

    # -----------------------------------------------------------------------
    # Engagement on your posts
    # -----------------------------------------------------------------------

    def sync_engagements(
        self, days_back: Optional[float] = None, deadline: Optional[Deadline] = None
    ) -> int:
        """Record likes, reposts, quotes and replies received on your recent posts."""
        days = self._settings.engagements_days_back if days_back is None else days_back
        with self.tracker.track(MY_POSTS) as run:
            actor = self._actor_did()
            cutoff = cutoff_ms(self._clock(), days)
            own_posts = [
                item["post"]
                for item in self._own_feed(actor, cutoff, deadline)
                if not is_repost(item)
                and ((item["post"].get("author") or {}).get("did")) == actor
            ]
            results = run_batched(
                own_posts,
                lambda post: self._collect_engagement(actor, post["uri"], deadline),
                batch_size=self._settings.batch_size,
                deadline=deadline,
                on_batch=lambda done, total: self._report("Syncing engagements", done, total),
            )
            run.items = summarize(results).total
        logger.info("Synced %d engagements", run.items)
        return run.items

    def _collect_engagement(self, actor: str, uri: str, deadline: Optional[Deadline]) -> int:
        """All engagement on one post; each sub-resource fails independently."""
        fetchers = (
            self._record_likes_received,
            self._record_reposts_received,
            self._record_quotes_received,
            self._record_replies_received,
        )
        results = [
            attempt(uri, partial(fetch, actor=actor, deadline=deadline)) for fetch in fetchers
        ]
        return summarize(results).total

    def _record_likes_received(self, uri: str, *, actor: str, deadline: Optional[Deadline]) -> int:
        count = 0
        for like in self._client.get_all_likes(uri, deadline=deadline):
            who = like.get("actor") or {}
            if not who.get("did") or who["did"] == actor:
                continue
            self._repo.record_like_received(
                uri, who["did"], who.get("handle", ""), created_at=to_millis(like.get("createdAt")) or None
            )
            count += 1
        return count

    def _record_reposts_received(self, uri: str, *, actor: str, deadline: Optional[Deadline]) -> int:
        count = 0
        for who in self._client.get_all_reposted_by(uri, deadline=deadline):
            if not who.get("did") or who["did"] == actor:
                continue
            self._repo.record_repost_received(uri, who["did"], who.get("handle", ""))
            count += 1
        return count

    def _record_quotes_received(self, uri: str, *, actor: str, deadline: Optional[Deadline]) -> int:
        count = 0
        for quote in self._client.get_all_quotes(uri, deadline=deadline):
            author = quote.get("author") or {}
            if not author.get("did") or author["did"] == actor:
                continue
            created = to_millis((quote.get("record") or {}).get("createdAt")) or None
            self._repo.record_quote_received(
                uri, author["did"], author.get("handle", ""), quote["uri"], created_at=created
            )
            count += 1
        return count

    def _record_replies_received(self, uri: str, *, actor: str, deadline: Optional[Deadline]) -> int:
        thread = self._client.get_post_thread(
            uri, depth=self._settings.thread_depth, parent_height=0, deadline=deadline
        )
        count = 0
        for reply in direct_replies(thread):
            author = reply.get("author") or {}
            if not author.get("did") or author["did"] == actor:
                continue
            created = to_millis((reply.get("record") or {}).get("createdAt")) or None
            self._repo.record_reply_received(
                uri, author["did"], author.get("handle", ""), reply["uri"], created_at=created
            )
            count += 1
        return count

    # -----------------------------------------------------------------------
    # Runs
    # -----------------------------------------------------------------------

    def run_full_sync(
        self, options: Optional[SyncOptions] = None, deadline: Optional[Deadline] = None
    ) -> SyncReport:
        """Run every enabled stage in order; the first failing stage aborts the run."""
        opts = options or SyncOptions()
        limiter = self._client.rate_limiter
        report = SyncReport(start_stats=limiter.stats())
        logger.info("Starting full sync (rate limit: %s)", report.start_stats)

        plan = [
            (FOLLOWS, opts.include_follows, lambda: self.sync_follows(deadline)),
            (FOLLOWERS, opts.include_followers, lambda: self.sync_followers(deadline)),
            (TIMELINE, opts.include_posts, lambda: self.sync_posts(opts.posts_window, deadline)),
            (MY_LIKES, opts.include_my_likes, lambda: self.sync_my_activity(opts.engagements_window, deadline)),
            (MY_POSTS, opts.include_engagements, lambda: self.sync_engagements(opts.engagements_window, deadline)),
        ]
        self._run_plan(plan, report, "Full sync")
        return report

    def run_incremental_sync(self, deadline: Optional[Deadline] = None) -> SyncReport:
        """Posts and engagement only, over the short incremental window."""
        days = self._settings.incremental_days_back
        report = SyncReport(start_stats=self._client.rate_limiter.stats())
        logger.info("Starting incremental sync (%s day window)", days)
        plan = [
            (TIMELINE, True, lambda: self.sync_posts(days, deadline)),
            (MY_LIKES, True, lambda: self.sync_my_activity(days, deadline)),
            (MY_POSTS, True, lambda: self.sync_engagements(days, deadline)),
        ]
        self._run_plan(plan, report, "Incremental sync")
        return report

    def _run_plan(
        self,
        plan: List[Tuple[str, bool, Callable[[], int]]],
        report: SyncReport,
        label: str,
    ) -> None:
        for key, enabled, stage in plan:
            if not enabled:
                continue
            logger.info("-> Syncing %s...", key)
            try:
                report.counts[key] = stage()
            except Exception:
                logger.error("%s aborted at stage '%s'", label, key)
                raise
        report.end_stats = self._client.rate_limiter.stats()
        if self._cache is not None:
            self._cache.invalidate()
        logger.info("%s complete: %s (rate limit: %s)", label, report.counts, report.end_stats)

    def cleanup_old_data(self, retention_days: Optional[int] = None) -> int:
        """Evict posts created before the retention horizon."""
        days = self._settings.retention_days if retention_days is None else retention_days
        removed = self._repo.delete_posts_older_than(cutoff_ms(self._clock(), days))
        logger.info("Cleaned up %d posts older than %d days", removed, days)
        return removed
