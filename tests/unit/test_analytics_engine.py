"""
Tests for AnalyticsEngine

Noise and reciprocity scoring over a hand-built local store.
"""
import pytest

from skyrapport.analytics import AnalyticsEngine
from skyrapport.models import PostType, Profile
from tests.fixtures.mock_data import ME_DID, create_post, post_uri

ALICE = "did:plc:alice"
BOB = "did:plc:bob"
CAROL = "did:plc:carol"


def add_posts(repository, did, count, post_type=PostType.POST, prefix="p"):
    repository.save_posts(create_post(did, f"{prefix}{i}", post_type) for i in range(count))


def like_posts(repository, did, count, prefix="p"):
    for i in range(count):
        repository.record_like(post_uri(did, f"{prefix}{i}"), did)


def receive(repository, from_did, count, kind="like"):
    for i in range(count):
        mine = post_uri(ME_DID, f"mine{i}")
        if kind == "like":
            repository.record_like_received(mine, from_did, "")
        else:
            repository.record_reply_received(mine, from_did, "", post_uri(from_did, f"r{i}"))


@pytest.fixture
def engine(repository):
    return AnalyticsEngine(repository)


class TestContributions:

    def test_counts_per_variant(self, engine, repository):
        add_posts(repository, ALICE, 3)
        add_posts(repository, ALICE, 2, PostType.REPLY, prefix="r")
        add_posts(repository, ALICE, 1, PostType.QUOTE, prefix="q")

        contribution = engine.aggregate_contributions()[ALICE]
        assert (contribution.posts, contribution.replies, contribution.quotes) == (3, 2, 1)
        assert contribution.total == 6

    def test_reposts_counted_for_reposter(self, engine, repository):
        repository.save_post(create_post(BOB, "x", PostType.REPOST, reposted_by_did=ALICE))
        contributions = engine.aggregate_contributions()
        assert contributions[ALICE].reposts == 1
        assert BOB not in contributions

    def test_order_independent(self, repository):
        posts = [create_post(ALICE, "1"), create_post(BOB, "1"), create_post(ALICE, "2")]
        forward = AnalyticsEngine.fold_contributions(posts)
        backward = AnalyticsEngine.fold_contributions(reversed(posts))
        assert {d: c.total for d, c in forward.items()} == {d: c.total for d, c in backward.items()}


class TestNoiseScore:

    def test_half_engaged_mid_volume(self, engine, repository):
        """10 posts, 5 liked, 50th volume percentile -> 0.25."""
        repository.save_profile(Profile(did=BOB, handle="bob.bsky.social", you_follow=True, follows_you=True))
        add_posts(repository, BOB, 10)
        add_posts(repository, ALICE, 20)
        like_posts(repository, BOB, 5)

        score = engine.noise_score(BOB)
        assert score.post_count == 10
        assert score.volume_percentile == pytest.approx(0.5)
        assert score.engagement_rate == pytest.approx(0.5)
        assert score.score == pytest.approx(0.25)
        assert score.is_mutual

    def test_unengaged_scores_above_engaged(self, engine, repository):
        add_posts(repository, ALICE, 5)
        add_posts(repository, BOB, 5)
        like_posts(repository, BOB, 5)

        alice = engine.noise_score(ALICE)
        bob = engine.noise_score(BOB)
        assert alice.score > bob.score
        assert bob.score == 0.0
        # Ties share the top percentile band
        assert alice.volume_percentile == bob.volume_percentile == 1.0

    def test_one_way_follow_boost(self, engine, repository):
        repository.save_profile(Profile(did=ALICE, handle="alice", you_follow=True))
        add_posts(repository, ALICE, 10)
        add_posts(repository, BOB, 20)

        assert engine.noise_score(ALICE).score == pytest.approx(0.5 * 1.2)

    def test_boost_capped_at_one(self, engine, repository):
        repository.save_profile(Profile(did=ALICE, handle="alice", you_follow=True))
        add_posts(repository, ALICE, 10)
        assert engine.noise_score(ALICE).score == 1.0

    def test_no_boost_for_mutuals_or_followers(self, engine, repository):
        repository.save_profile(Profile(did=ALICE, handle="alice", you_follow=True, follows_you=True))
        repository.save_profile(Profile(did=BOB, handle="bob", follows_you=True))
        add_posts(repository, ALICE, 5)
        add_posts(repository, BOB, 5)
        add_posts(repository, CAROL, 10)
        add_posts(repository, "did:plc:dan", 10)
        assert engine.noise_score(ALICE).score == pytest.approx(0.5)
        assert engine.noise_score(BOB).score == pytest.approx(0.5)

    def test_unknown_contributor_defaults(self, engine, repository):
        repository.save_profile(Profile(did=CAROL, handle="carol", you_follow=True, follows_you=True))
        score = engine.noise_score(CAROL)
        assert score.score == 0
        assert score.post_count == 0
        assert score.volume_percentile == 0
        assert score.is_mutual

        nobody = engine.noise_score("did:plc:nobody")
        assert nobody.score == 0 and not nobody.is_mutual

    def test_engagement_rate_capped(self, engine, repository):
        add_posts(repository, ALICE, 1)
        for i in range(3):
            repository.record_like(post_uri(ALICE, f"older{i}"), ALICE)
        score = engine.noise_score(ALICE)
        assert score.engagement_rate == 1.0
        assert score.score == 0.0

    def test_scores_bounded(self, engine, repository):
        for n, did in enumerate([ALICE, BOB, CAROL, "did:plc:d", "did:plc:e"], start=1):
            add_posts(repository, did, n * 3)
            like_posts(repository, did, n)
            repository.save_profile(Profile(did=did, handle=did, you_follow=n % 2 == 0))
        for score in engine.compute_all_noise_scores():
            assert 0.0 <= score.score <= 1.0
            assert 0.0 <= score.volume_percentile <= 1.0

    def test_all_scores_sorted_descending_stable(self, engine, repository):
        add_posts(repository, ALICE, 5)
        add_posts(repository, BOB, 5)
        add_posts(repository, CAROL, 5)
        like_posts(repository, CAROL, 5)

        scores = engine.compute_all_noise_scores()
        assert [s.did for s in scores] == [ALICE, BOB, CAROL]


class TestReciprocityScore:

    def test_balanced_exchange(self, engine, repository):
        like_posts(repository, ALICE, 2)
        receive(repository, ALICE, 2)
        score = engine.reciprocity_score(ALICE)
        assert score.your_engagement == 2
        assert score.their_engagement == 2
        assert score.score == pytest.approx(0.5)
        assert score.balanced

    def test_one_sided_exchange(self, engine, repository):
        like_posts(repository, ALICE, 5)
        receive(repository, ALICE, 1)
        score = engine.reciprocity_score(ALICE)
        assert score.score == pytest.approx(1 / 6)
        assert not score.balanced

    def test_no_engagement(self, engine):
        score = engine.reciprocity_score(ALICE)
        assert score.score == 0.0
        assert score.balanced

    def test_balance_threshold(self, engine, repository):
        like_posts(repository, ALICE, 5)
        receive(repository, ALICE, 4)
        assert engine.reciprocity_score(ALICE).balanced

    def test_all_sorted_descending(self, engine, repository):
        for did in (ALICE, BOB):
            add_posts(repository, did, 1)
        like_posts(repository, ALICE, 1)
        receive(repository, BOB, 1)

        scores = engine.compute_all_reciprocity_scores()
        assert [s.did for s in scores] == [BOB, ALICE]
        assert all(0.0 <= s.score <= 1.0 for s in scores)


def test_user_engagement_breakdown(engine, repository):
    like_posts(repository, ALICE, 2)
    repository.record_reply(post_uri(ALICE, "x"), ALICE, post_uri(ME_DID, "my-reply"))
    repository.record_repost(post_uri(ALICE, "y"), ALICE)
    receive(repository, ALICE, 3)
    receive(repository, ALICE, 1, kind="reply")

    engagement = engine.user_engagement(ALICE)
    assert (engagement.your_likes, engagement.your_replies, engagement.your_reposts) == (2, 1, 1)
    assert engagement.your_total == 4
    assert (engagement.their_likes, engagement.their_replies) == (3, 1)
    assert engagement.their_total == 4


def test_compute_all_totals(engine, repository):
    add_posts(repository, ALICE, 2)
    add_posts(repository, BOB, 3)
    noise, reciprocity, contributors, posts = engine.compute_all()
    assert contributors == 2
    assert posts == 5
    assert len(noise) == len(reciprocity) == 2
