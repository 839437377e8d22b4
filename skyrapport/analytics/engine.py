"""
Skyrapport Analytics Engine

File Purpose: Per-contributor aggregation plus Noise and Reciprocity scoring
Primary Functions/Classes: AnalyticsEngine, UserContribution, UserEngagement
Inputs and Outputs (I/O): Reads Posts, Interactions, Engagements and Profiles
    from the Repository; returns score dataclasses, writes nothing

Noise: how much an account fills your feed relative to how much you engage
with it, ``volume_percentile * (1 - engagement_rate)``, boosted by 1.2 (capped
at 1.0) for one-way follows.

Reciprocity: their share of the engagement between you and them,
``their_total / (your_total + their_total)``; balanced when the smaller side
is at least 80% of the larger.
"""

import logging
from bisect import bisect_right
from dataclasses import dataclass
from typing import Dict, List, Optional

from skyrapport.models import (
    InteractionType,
    NoiseScore,
    PostType,
    Profile,
    ReciprocityScore,
)
from skyrapport.storage.repository import Repository

logger = logging.getLogger(__name__)

ONE_WAY_FOLLOW_BOOST = 1.2
BALANCE_RATIO = 0.8


@dataclass
class UserContribution:
    """Feed activity attributed to one account, counted per variant."""

    did: str
    handle: str
    posts: int = 0
    reposts: int = 0
    replies: int = 0
    quotes: int = 0

    @property
    def total(self) -> int:
        return self.posts + self.reposts + self.replies + self.quotes

    def add(self, post_type: PostType) -> None:
        if post_type is PostType.REPOST:
            self.reposts += 1
        elif post_type is PostType.REPLY:
            self.replies += 1
        elif post_type is PostType.QUOTE:
            self.quotes += 1
        else:
            self.posts += 1


@dataclass
class UserEngagement:
    """Both directions of engagement between you and one account."""

    did: str
    handle: str
    your_likes: int = 0
    your_replies: int = 0
    your_quotes: int = 0
    your_reposts: int = 0
    their_likes: int = 0
    their_replies: int = 0
    their_quotes: int = 0
    their_reposts: int = 0

    @property
    def your_total(self) -> int:
        return self.your_likes + self.your_replies + self.your_quotes + self.your_reposts

    @property
    def their_total(self) -> int:
        return self.their_likes + self.their_replies + self.their_quotes + self.their_reposts


_FIELD_BY_TYPE = {
    InteractionType.LIKE: "likes",
    InteractionType.REPLY: "replies",
    InteractionType.QUOTE: "quotes",
    InteractionType.REPOST: "reposts",
}


class _ScoringContext:
    """Everything one scoring pass reads, loaded from the store once."""

    def __init__(self, repository: Repository) -> None:
        self.contributions = AnalyticsEngine.fold_contributions(repository.all_posts())
        self.sorted_totals = sorted(c.total for c in self.contributions.values())
        self.profiles: Dict[str, Profile] = {p.did: p for p in repository.all_profiles()}
        self.engagement: Dict[str, UserEngagement] = {}

        for interaction in repository.all_interactions():
            entry = self._entry(interaction.target_author_did)
            name = "your_" + _FIELD_BY_TYPE[interaction.type]
            setattr(entry, name, getattr(entry, name) + 1)
        for engagement in repository.all_engagements():
            entry = self._entry(engagement.from_did, engagement.from_handle)
            name = "their_" + _FIELD_BY_TYPE[engagement.type]
            setattr(entry, name, getattr(entry, name) + 1)

    def _entry(self, did: str, handle: str = "") -> UserEngagement:
        entry = self.engagement.get(did)
        if entry is None:
            entry = UserEngagement(did=did, handle=self.handle_for(did) or handle)
            self.engagement[did] = entry
        elif not entry.handle and handle:
            entry.handle = handle
        return entry

    def handle_for(self, did: str) -> str:
        contribution = self.contributions.get(did)
        if contribution and contribution.handle:
            return contribution.handle
        profile = self.profiles.get(did)
        return profile.handle if profile else ""

    def engagement_for(self, did: str) -> UserEngagement:
        return self.engagement.get(did) or UserEngagement(did=did, handle=self.handle_for(did))


class AnalyticsEngine:
    """Scores contributors from whatever is currently in the local store.

    Unknown accounts score as zero rather than failing.
    """

    def __init__(self, repository: Repository) -> None:
        self._repo = repository

    @staticmethod
    def fold_contributions(posts) -> Dict[str, UserContribution]:
        """Group posts by contributor (the reposter for reposts), in first-seen order."""
        contributions: Dict[str, UserContribution] = {}
        for post in posts:
            did = post.contributor_did
            entry = contributions.get(did)
            if entry is None:
                entry = UserContribution(did=did, handle=post.contributor_handle)
                contributions[did] = entry
            entry.add(post.post_type)
        return contributions

    def aggregate_contributions(self) -> Dict[str, UserContribution]:
        return self.fold_contributions(self._repo.all_posts())

    def user_engagement(self, did: str) -> UserEngagement:
        """Per-type counts of your interactions with ``did`` and theirs with you."""
        return _ScoringContext(self._repo).engagement_for(did)

    def noise_score(self, did: str) -> NoiseScore:
        return self._noise(did, _ScoringContext(self._repo))

    def reciprocity_score(self, did: str) -> ReciprocityScore:
        return self._reciprocity(did, _ScoringContext(self._repo))

    def compute_all_noise_scores(self) -> List[NoiseScore]:
        context = _ScoringContext(self._repo)
        scores = [self._noise(did, context) for did in context.contributions]
        return sorted(scores, key=lambda s: s.score, reverse=True)

    def compute_all_reciprocity_scores(self) -> List[ReciprocityScore]:
        context = _ScoringContext(self._repo)
        scores = [self._reciprocity(did, context) for did in context.contributions]
        return sorted(scores, key=lambda s: s.score, reverse=True)

    def compute_all(self):
        """Noise scores, reciprocity scores and contributor/post totals from one read."""
        context = _ScoringContext(self._repo)
        noise = sorted(
            (self._noise(did, context) for did in context.contributions),
            key=lambda s: s.score,
            reverse=True,
        )
        reciprocity = sorted(
            (self._reciprocity(did, context) for did in context.contributions),
            key=lambda s: s.score,
            reverse=True,
        )
        total_posts = sum(c.total for c in context.contributions.values())
        logger.info(
            "Scored %d contributors over %d posts", len(context.contributions), total_posts
        )
        return noise, reciprocity, len(context.contributions), total_posts

    @staticmethod
    def _noise(did: str, context: _ScoringContext) -> NoiseScore:
        profile: Optional[Profile] = context.profiles.get(did)
        contribution = context.contributions.get(did)
        handle = context.handle_for(did)

        if contribution is None or contribution.total == 0:
            return NoiseScore(
                did=did,
                handle=handle,
                is_mutual=profile.is_mutual if profile else False,
            )

        # Fraction of contributors whose total is at or below this one
        volume_percentile = bisect_right(context.sorted_totals, contribution.total) / len(
            context.sorted_totals
        )
        your_total = context.engagement_for(did).your_total
        engagement_rate = min(1.0, your_total / contribution.total)

        score = volume_percentile * (1 - engagement_rate)
        if profile is not None and profile.you_follow and not profile.is_mutual:
            score = min(1.0, score * ONE_WAY_FOLLOW_BOOST)

        return NoiseScore(
            did=did,
            handle=handle,
            score=score,
            volume_percentile=volume_percentile,
            engagement_rate=engagement_rate,
            is_mutual=profile.is_mutual if profile else False,
            post_count=contribution.total,
        )

    @staticmethod
    def _reciprocity(did: str, context: _ScoringContext) -> ReciprocityScore:
        engagement = context.engagement_for(did)
        yours, theirs = engagement.your_total, engagement.their_total
        combined = yours + theirs
        low, high = min(yours, theirs), max(yours, theirs)
        return ReciprocityScore(
            did=did,
            handle=engagement.handle,
            score=theirs / combined if combined else 0.0,
            your_engagement=yours,
            their_engagement=theirs,
            balanced=high == 0 or low / high >= BALANCE_RATIO,
        )
