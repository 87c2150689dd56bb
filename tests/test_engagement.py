"""Tests for likes, comments, metrics and engagement caching."""

import asyncio

import pytest
from conftest import ALICE, BASE_TIME, BOB, CAROL, DAVE, make_tx, txid, verum_payload

from verumindex.engagement.service import EngagementService, calculate_engagement_metrics, deduplicate_likes
from verumindex.models import IndexedComment, IndexedLike

NOW = BASE_TIME + 100_000
POST_ID = txid(1)


def _like(n: int, liker: str, timestamp: int) -> IndexedLike:
    return IndexedLike(
        transaction_id=txid(n),
        liker_address=liker,
        target_transaction_id=POST_ID,
        target_type="post",
        timestamp=timestamp,
    )


def _comment(n: int, author: str, timestamp: int) -> IndexedComment:
    return IndexedComment(
        transaction_id=txid(n),
        author_address=author,
        parent_transaction_id=POST_ID,
        parent_type="post",
        content="nice",
        timestamp=timestamp,
    )


@pytest.fixture
def engaged_post(fetcher):
    """Alice's post with two likes and three comments, old and recent."""
    fetcher.add(
        make_tx(1, ALICE, verum_payload("post", content="hello"), block_time=BASE_TIME),
        make_tx(2, BOB, verum_payload("like", parent_id=POST_ID), block_time=BASE_TIME + 10, recipient=ALICE),
        make_tx(3, CAROL, verum_payload("like", parent_id=POST_ID), block_time=NOW - 60, recipient=ALICE),
        make_tx(4, BOB, verum_payload("comment", content="first", parent_id=POST_ID), block_time=BASE_TIME + 20),
        make_tx(5, CAROL, verum_payload("comment", content="second", parent_id=POST_ID), block_time=NOW - 30),
        make_tx(6, DAVE, verum_payload("comment", content="third", parent_id=POST_ID), block_time=NOW - 10),
        # Engagement on some other post.
        make_tx(7, DAVE, verum_payload("like", parent_id=txid(99)), block_time=NOW - 5),
    )
    return fetcher


def _service(fetcher, config, clock=None) -> EngagementService:
    if clock is None:
        return EngagementService(fetcher, config=config, now_fn=lambda: NOW)
    return EngagementService(fetcher, config=config, now_fn=lambda: NOW, cache_now_fn=clock)


class TestDeduplicateLikes:
    """Tests for deduplicate_likes()."""

    def test_keeps_latest_per_actor(self):
        """Should keep the most recent like per actor."""
        likes = [_like(1, BOB, BASE_TIME + 50), _like(2, BOB, BASE_TIME + 10)]
        assert deduplicate_likes(likes) == [_like(1, BOB, BASE_TIME + 50)]

    def test_actor_case_insensitive(self):
        """Should treat differently-cased addresses as one actor."""
        likes = [_like(1, BOB, BASE_TIME), _like(2, BOB.upper(), BASE_TIME + 5)]
        result = deduplicate_likes(likes)
        assert [like.transaction_id for like in result] == [txid(2)]

    def test_unknown_authors_kept(self):
        """Likes with an unresolved author are kept individually."""
        likes = [_like(1, "", BASE_TIME), _like(2, "", BASE_TIME + 1)]
        assert len(deduplicate_likes(likes)) == 2

    def test_sorted_oldest_first(self):
        """Should return likes in ascending time order."""
        likes = [_like(1, CAROL, BASE_TIME + 9), _like(2, BOB, BASE_TIME + 1)]
        assert [like.transaction_id for like in deduplicate_likes(likes)] == [txid(2), txid(1)]


class TestEngagementMetrics:
    """Tests for calculate_engagement_metrics()."""

    def test_totals_and_recent_window(self):
        """Total is likes plus comments; recent counts only the last 24 hours."""
        likes = [_like(1, BOB, NOW - 90_000), _like(2, CAROL, NOW - 100)]
        comments = [_comment(3, BOB, NOW - 86_401), _comment(4, DAVE, NOW - 1)]

        metrics = calculate_engagement_metrics(likes, comments, now=NOW)

        assert metrics.like_count == 2
        assert metrics.comment_count == 2
        assert metrics.total_engagement == 4
        assert metrics.recent_activity == 2


class TestEngagementService:
    """Tests for EngagementService."""

    def test_likes_for_content(self, engaged_post, config):
        """Should find likes targeting the content."""
        result = asyncio.run(_service(engaged_post, config).get_likes_for_content(POST_ID))
        assert result.success
        assert [like.liker_address for like in result.data] == [BOB, CAROL]
        assert all(like.target_type == "post" for like in result.data)

    def test_duplicate_like_keeps_later(self, engaged_post, config):
        """A second like by the same actor replaces the first."""
        engaged_post.add(
            make_tx(8, BOB.upper(), verum_payload("like", parent_id=POST_ID), block_time=NOW - 1, recipient=ALICE)
        )
        result = asyncio.run(_service(engaged_post, config).get_likes_for_content(POST_ID))
        bob_likes = [like for like in result.data if like.liker_address.lower() == BOB]
        assert [like.transaction_id for like in bob_likes] == [txid(8)]

    def test_comments_oldest_first(self, engaged_post, config):
        """Comments come back in ascending time order."""
        result = asyncio.run(_service(engaged_post, config).get_comments_for_content(POST_ID))
        assert [comment.content for comment in result.data] == ["first", "second", "third"]
        assert all(comment.parent_type == "post" for comment in result.data)

    def test_content_engagement(self, engaged_post, config):
        """Should combine likes, comments, metrics and actor status."""
        result = asyncio.run(_service(engaged_post, config).get_content_engagement(POST_ID, actor=BOB.upper()))

        assert result.success
        engagement = result.data
        assert engagement.content_type == "post"
        assert engagement.metrics.like_count == 2
        assert engagement.metrics.comment_count == 3
        assert engagement.metrics.total_engagement == 5
        assert engagement.metrics.recent_activity == 3
        assert engagement.actor_like_status.has_liked is True
        assert engagement.actor_like_status.like_transaction_id == txid(2)

    def test_anonymous_engagement_has_no_status(self, engaged_post, config):
        """Without an actor there is no like status."""
        result = asyncio.run(_service(engaged_post, config).get_content_engagement(POST_ID))
        assert result.data.actor_like_status is None

    def test_has_user_liked(self, engaged_post, config):
        """Should report whether an actor liked the content."""
        service = _service(engaged_post, config)
        assert asyncio.run(service.has_user_liked_content(POST_ID, CAROL)).data.has_liked is True
        assert asyncio.run(service.has_user_liked_content(POST_ID, DAVE)).data.has_liked is False

    def test_calculate_engagement_for_content(self, engaged_post, config):
        """Should return metrics only."""
        result = asyncio.run(_service(engaged_post, config).calculate_engagement_for_content(POST_ID))
        assert result.data.total_engagement == 5

    def test_scan_window_capped(self, engaged_post, config):
        """The scanned window never exceeds the hard cap."""
        config = config.model_copy(update={"engagement_max_search_depth": 5000})
        asyncio.run(_service(engaged_post, config).get_likes_for_content(POST_ID))
        assert engaged_post.limits["get_recent_transactions"] == [1000]

    def test_scan_window_configured(self, engaged_post, config):
        """A smaller configured depth is used as is."""
        config = config.model_copy(update={"engagement_max_search_depth": 200})
        asyncio.run(_service(engaged_post, config).get_likes_for_content(POST_ID))
        assert engaged_post.limits["get_recent_transactions"] == [200]

    def test_fetch_failure(self, engaged_post, config):
        """A failed window fetch fails the engagement query."""
        engaged_post.fail_methods.add("get_recent_transactions")
        result = asyncio.run(_service(engaged_post, config).get_content_engagement(POST_ID))
        assert result.success is False
        assert result.error == "Failed to fetch engagement data"


class TestContentClassification:
    """Tests for determine_content_type() and determine_parent_type()."""

    def test_story_and_comment(self, engaged_post, config):
        """Should classify stories and comments."""
        engaged_post.add(
            make_tx(20, ALICE, verum_payload("story", content="x", params={"segment": 1, "total": 1, "is_final": True}))
        )
        service = _service(engaged_post, config)
        assert asyncio.run(service.determine_content_type(txid(20))) == "story"
        assert asyncio.run(service.determine_content_type(txid(4))) == "comment"

    def test_comment_parent_collapses_to_post(self, engaged_post, config):
        """Comments cannot be parents, so they are reported as posts."""
        assert asyncio.run(_service(engaged_post, config).determine_parent_type(txid(4))) == "post"

    def test_unknown_defaults_to_post(self, fetcher, config):
        """Unfetchable targets default to post."""
        assert asyncio.run(_service(fetcher, config).determine_content_type(txid(404))) == "post"


class TestEngagementCache:
    """Tests for engagement caching."""

    def test_no_refetch_within_ttl(self, engaged_post, config, clock):
        """Repeat queries within the TTL are served from cache, then refetched after it."""
        service = _service(engaged_post, config, clock)

        asyncio.run(service.get_likes_for_content(POST_ID))
        clock.advance(10)
        asyncio.run(service.get_likes_for_content(POST_ID))
        assert engaged_post.calls["get_recent_transactions"] == 1

        clock.advance(config.engagement_cache_ttl_seconds)
        asyncio.run(service.get_likes_for_content(POST_ID))
        assert engaged_post.calls["get_recent_transactions"] == 2

    def test_failures_not_cached(self, engaged_post, config, clock):
        """A failed query is retried on the next call."""
        service = _service(engaged_post, config, clock)
        engaged_post.fail_methods.add("get_recent_transactions")
        assert asyncio.run(service.get_likes_for_content(POST_ID)).success is False

        engaged_post.fail_methods.clear()
        assert asyncio.run(service.get_likes_for_content(POST_ID)).success is True
        assert engaged_post.calls["get_recent_transactions"] == 2

    def test_disable_clears_and_bypasses(self, engaged_post, config, clock):
        """Disabling clears the cache and every query refetches."""
        service = _service(engaged_post, config, clock)
        asyncio.run(service.get_likes_for_content(POST_ID))

        service.disable_caching()
        asyncio.run(service.get_likes_for_content(POST_ID))
        asyncio.run(service.get_likes_for_content(POST_ID))
        assert engaged_post.calls["get_recent_transactions"] == 3

        service.enable_caching()
        asyncio.run(service.get_likes_for_content(POST_ID))
        asyncio.run(service.get_likes_for_content(POST_ID))
        assert engaged_post.calls["get_recent_transactions"] == 4

    def test_clean_expired(self, engaged_post, config, clock):
        """The sweep reclaims expired entries."""
        service = _service(engaged_post, config, clock)
        asyncio.run(service.get_likes_for_content(POST_ID))
        clock.advance(config.engagement_cache_ttl_seconds + 1)
        assert service.clean_expired_cache() == 1
