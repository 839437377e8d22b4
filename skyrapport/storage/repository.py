"""Typed access to the local store for every entity the engine touches."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from skyrapport.models import (
    AnalyticsSnapshot,
    Engagement,
    Interaction,
    InteractionType,
    Post,
    Profile,
    SyncState,
    make_engagement_id,
    make_interaction_id,
    merge_profile,
)
from skyrapport.storage.base import (
    CACHED_ANALYTICS,
    ENGAGEMENTS,
    INTERACTIONS,
    POSTS,
    PROFILES,
    SYNC_STATE,
    TABLE_INDEXES,
    LocalStore,
)

logger = logging.getLogger(__name__)

ANALYTICS_KEY = "current"


class Repository:
    """Entity-level facade over any :class:`LocalStore`."""

    def __init__(self, store: LocalStore) -> None:
        self.store = store

    # -----------------------------------------------------------------------
    # Profiles
    # -----------------------------------------------------------------------

    def get_profile(self, did: str) -> Optional[Profile]:
        data = self.store.get(PROFILES, did)
        return Profile.from_dict(data) if data else None

    def save_profile(self, profile: Profile) -> None:
        self.store.upsert(PROFILES, profile.did, profile.to_dict())

    def save_profiles(self, profiles: Iterable[Profile]) -> None:
        self.store.upsert_many(PROFILES, ((p.did, p.to_dict()) for p in profiles))

    def merge_profile(self, update: Dict[str, Any]) -> Profile:
        """Merge ``update`` into the stored profile (or create it) and save."""
        merged = merge_profile(self.get_profile(update["did"]), update)
        self.save_profile(merged)
        return merged

    def all_profiles(self) -> List[Profile]:
        return [Profile.from_dict(d) for d in self.store.get_all(PROFILES)]

    def following(self) -> List[Profile]:
        return [p for p in self.all_profiles() if p.you_follow]

    def followers(self) -> List[Profile]:
        return [p for p in self.all_profiles() if p.follows_you]

    def mutuals(self) -> List[Profile]:
        return [p for p in self.all_profiles() if p.is_mutual]

    def count_profiles(self) -> int:
        return self.store.count(PROFILES)

    # -----------------------------------------------------------------------
    # Posts
    # -----------------------------------------------------------------------

    def save_post(self, post: Post) -> None:
        self.store.upsert(POSTS, post.key, post.to_dict())

    def save_posts(self, posts: Iterable[Post]) -> None:
        self.store.upsert_many(POSTS, ((p.key, p.to_dict()) for p in posts))

    def get_post(self, key: str) -> Optional[Post]:
        data = self.store.get(POSTS, key)
        return Post.from_dict(data) if data else None

    def all_posts(self) -> List[Post]:
        return [Post.from_dict(d) for d in self.store.get_all(POSTS)]

    def posts_by_contributor(self, did: str) -> List[Post]:
        return [Post.from_dict(d) for d in self.store.get_by_index(POSTS, "contributor_did", did)]

    def posts_in_range(self, start_ms: int, end_ms: int) -> List[Post]:
        return [
            Post.from_dict(d)
            for d in self.store.get_by_index_range(POSTS, "created_at", start_ms, end_ms)
        ]

    def delete_posts_older_than(self, timestamp_ms: int) -> int:
        return self.store.delete_older_than(POSTS, "created_at", timestamp_ms)

    def count_posts(self) -> int:
        return self.store.count(POSTS)

    # -----------------------------------------------------------------------
    # Interactions (you -> their posts)
    # -----------------------------------------------------------------------

    def save_interaction(self, interaction: Interaction) -> None:
        self.store.upsert(INTERACTIONS, interaction.id, interaction.to_dict())

    def get_interaction(
        self, interaction_type: InteractionType, target_uri: str
    ) -> Optional[Interaction]:
        data = self.store.get(INTERACTIONS, make_interaction_id(interaction_type, target_uri))
        return Interaction.from_dict(data) if data else None

    def has_interaction(self, interaction_type: InteractionType, target_uri: str) -> bool:
        return self.get_interaction(interaction_type, target_uri) is not None

    def delete_interaction(self, interaction_type: InteractionType, target_uri: str) -> bool:
        return self.store.delete(INTERACTIONS, make_interaction_id(interaction_type, target_uri))

    def record_interaction(
        self,
        interaction_type: InteractionType,
        target_uri: str,
        target_author_did: str,
        own_post_uri: Optional[str] = None,
        created_at: Optional[int] = None,
    ) -> Interaction:
        """Upsert by ``type:targetUri``. Re-recording overwrites, keeping the
        original timestamp when no new one is supplied."""
        if created_at is None:
            existing = self.get_interaction(interaction_type, target_uri)
            if existing is not None:
                created_at = existing.created_at
        kwargs = {"created_at": created_at} if created_at is not None else {}
        interaction = Interaction(
            type=interaction_type,
            target_uri=target_uri,
            target_author_did=target_author_did,
            own_post_uri=own_post_uri,
            **kwargs,
        )
        self.save_interaction(interaction)
        return interaction

    def record_like(self, target_uri: str, target_author_did: str, created_at: Optional[int] = None) -> Interaction:
        return self.record_interaction(InteractionType.LIKE, target_uri, target_author_did, created_at=created_at)

    def record_reply(
        self, target_uri: str, target_author_did: str, own_reply_uri: str, created_at: Optional[int] = None
    ) -> Interaction:
        return self.record_interaction(
            InteractionType.REPLY, target_uri, target_author_did, own_reply_uri, created_at
        )

    def record_quote(
        self, target_uri: str, target_author_did: str, own_quote_uri: str, created_at: Optional[int] = None
    ) -> Interaction:
        return self.record_interaction(
            InteractionType.QUOTE, target_uri, target_author_did, own_quote_uri, created_at
        )

    def record_repost(self, target_uri: str, target_author_did: str, created_at: Optional[int] = None) -> Interaction:
        return self.record_interaction(InteractionType.REPOST, target_uri, target_author_did, created_at=created_at)

    def all_interactions(self) -> List[Interaction]:
        return [Interaction.from_dict(d) for d in self.store.get_all(INTERACTIONS)]

    def interactions_with_author(self, did: str) -> List[Interaction]:
        return [
            Interaction.from_dict(d)
            for d in self.store.get_by_index(INTERACTIONS, "target_author_did", did)
        ]

    def count_interactions(self) -> int:
        return self.store.count(INTERACTIONS)

    # -----------------------------------------------------------------------
    # Engagements (others -> your posts)
    # -----------------------------------------------------------------------

    def save_engagement(self, engagement: Engagement) -> None:
        self.store.upsert(ENGAGEMENTS, engagement.id, engagement.to_dict())

    def get_engagement(
        self, engagement_type: InteractionType, from_did: str, target_uri: str
    ) -> Optional[Engagement]:
        data = self.store.get(ENGAGEMENTS, make_engagement_id(engagement_type, from_did, target_uri))
        return Engagement.from_dict(data) if data else None

    def record_engagement(
        self,
        engagement_type: InteractionType,
        target_uri: str,
        from_did: str,
        from_handle: str,
        their_post_uri: Optional[str] = None,
        created_at: Optional[int] = None,
    ) -> Engagement:
        """Upsert by ``type:fromDid:targetUri``; recording twice is a no-op update."""
        if created_at is None:
            existing = self.get_engagement(engagement_type, from_did, target_uri)
            if existing is not None:
                created_at = existing.created_at
        kwargs = {"created_at": created_at} if created_at is not None else {}
        engagement = Engagement(
            type=engagement_type,
            target_uri=target_uri,
            from_did=from_did,
            from_handle=from_handle,
            their_post_uri=their_post_uri,
            **kwargs,
        )
        self.save_engagement(engagement)
        return engagement

    def record_like_received(
        self, target_uri: str, from_did: str, from_handle: str, created_at: Optional[int] = None
    ) -> Engagement:
        return self.record_engagement(
            InteractionType.LIKE, target_uri, from_did, from_handle, created_at=created_at
        )

    def record_reply_received(
        self,
        target_uri: str,
        from_did: str,
        from_handle: str,
        their_reply_uri: str,
        created_at: Optional[int] = None,
    ) -> Engagement:
        return self.record_engagement(
            InteractionType.REPLY, target_uri, from_did, from_handle, their_reply_uri, created_at
        )

    def record_quote_received(
        self,
        target_uri: str,
        from_did: str,
        from_handle: str,
        their_quote_uri: str,
        created_at: Optional[int] = None,
    ) -> Engagement:
        return self.record_engagement(
            InteractionType.QUOTE, target_uri, from_did, from_handle, their_quote_uri, created_at
        )

    def record_repost_received(
        self, target_uri: str, from_did: str, from_handle: str, created_at: Optional[int] = None
    ) -> Engagement:
        return self.record_engagement(
            InteractionType.REPOST, target_uri, from_did, from_handle, created_at=created_at
        )

    def all_engagements(self) -> List[Engagement]:
        return [Engagement.from_dict(d) for d in self.store.get_all(ENGAGEMENTS)]

    def engagements_from(self, did: str) -> List[Engagement]:
        return [Engagement.from_dict(d) for d in self.store.get_by_index(ENGAGEMENTS, "from_did", did)]

    def count_engagements(self) -> int:
        return self.store.count(ENGAGEMENTS)

    # -----------------------------------------------------------------------
    # Engine-owned rows
    # -----------------------------------------------------------------------

    def get_sync_state(self, key: str) -> Optional[SyncState]:
        data = self.store.get(SYNC_STATE, key)
        return SyncState.from_dict(data) if data else None

    def save_sync_state(self, state: SyncState) -> None:
        self.store.upsert(SYNC_STATE, state.key, state.to_dict())

    def all_sync_states(self) -> List[SyncState]:
        return [SyncState.from_dict(d) for d in self.store.get_all(SYNC_STATE)]

    def clear_sync_states(self) -> None:
        self.store.clear(SYNC_STATE)

    def get_snapshot(self) -> Optional[AnalyticsSnapshot]:
        data = self.store.get(CACHED_ANALYTICS, ANALYTICS_KEY)
        return AnalyticsSnapshot.from_dict(data) if data else None

    def save_snapshot(self, snapshot: AnalyticsSnapshot) -> None:
        self.store.upsert(CACHED_ANALYTICS, ANALYTICS_KEY, snapshot.to_dict())

    def clear_snapshot(self) -> None:
        self.store.clear(CACHED_ANALYTICS)

    def reset_all(self) -> None:
        """Full reset: drop every stored entity and engine row."""
        for table in TABLE_INDEXES:
            self.store.clear(table)
        logger.info("Local store reset")
