"""Single entry point composing every indexer component over one fetcher."""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from verumindex.chain.traversal import ChainTraversal
from verumindex.config import Settings, settings as default_settings
from verumindex.engagement.service import EngagementService
from verumindex.feed.aggregator import FeedAggregator, item_engagement
from verumindex.fetchers.base import BlockchainFetcher
from verumindex.models import (
    ChainTraversalResult,
    ContentEngagement,
    ContentType,
    EngagementMetrics,
    FeedOptions,
    FeedResult,
    IndexedComment,
    IndexedLike,
    IndexedStory,
    IndexedSubscription,
    ParentType,
    ParsedTransaction,
    RawTransaction,
    SearchOptions,
    SearchResult,
    StorySegment,
    UserLikeStatus,
    UserProfile,
    UserStats,
)
from verumindex.protocol.constants import TransactionType
from verumindex.protocol.schemas import ProtocolPayload
from verumindex.protocol.validator import ValidationResult, validate_payload
from verumindex.result import Result
from verumindex.story.reconstructor import StoryReconstructor
from verumindex.users.fetcher import UserFetcher

logger = structlog.get_logger()


class VerumIndexer:
    """
    Read-side API for the Verum protocol.

    Usage:
        indexer = VerumIndexer(fetcher)
        story = await indexer.get_story(first_tx_id)
    """

    def __init__(self, fetcher: BlockchainFetcher, *, config: Settings | None = None):
        self.fetcher = fetcher
        self.settings = config or default_settings

        self.chain = ChainTraversal(fetcher, config=self.settings)
        self.stories = StoryReconstructor(fetcher, config=self.settings)
        self.engagement = EngagementService(fetcher, config=self.settings)
        self.users = UserFetcher(fetcher, config=self.settings)
        self.feeds = FeedAggregator(fetcher, self.users, self.stories, self.engagement, config=self.settings)

    # Chain

    async def traverse_user_chain(
        self, address: str, max_transactions: int | None = None, time_limit: int | None = None
    ) -> Result[ChainTraversalResult]:
        return await self.chain.traverse_user_chain(address, max_transactions, time_limit)

    async def traverse_from_transaction(
        self, transaction_id: str, max_transactions: int | None = None, time_limit: int | None = None
    ) -> Result[ChainTraversalResult]:
        return await self.chain.traverse_from_transaction(transaction_id, max_transactions, time_limit)

    async def get_latest_transaction_info(self, address: str) -> Result[dict[str, str | None]]:
        return await self.chain.get_latest_transaction_info(address)

    # Users

    async def get_user_profile(self, address: str) -> Result[UserProfile]:
        return await self.users.get_user_profile(address)

    async def get_user_stats(self, address: str) -> Result[UserStats]:
        return await self.users.get_user_stats(address)

    async def get_following(self, address: str, limit: int = 50, offset: int = 0) -> Result[list[IndexedSubscription]]:
        return await self.users.get_following(address, limit, offset)

    async def get_followers(self, address: str, limit: int = 50, offset: int = 0) -> Result[list[IndexedSubscription]]:
        return await self.users.get_followers(address, limit, offset)

    async def is_following(self, follower: str, target: str) -> Result[bool]:
        return await self.users.is_following(follower, target)

    async def get_subscription_status(self, follower: str, target: str) -> Result[IndexedSubscription | None]:
        return await self.users.get_subscription_status(follower, target)

    async def get_user_profiles(self, addresses: list[str]) -> Result[list[UserProfile]]:
        return await self.users.get_user_profiles(addresses)

    # Stories

    async def get_story(self, first_tx_id: str) -> Result[IndexedStory]:
        return await self.stories.reconstruct_story(first_tx_id)

    async def get_story_segments(self, first_tx_id: str) -> Result[list[StorySegment]]:
        return await self.stories.get_story_segments(first_tx_id)

    def is_story_complete(self, segments: Sequence[StorySegment]) -> bool:
        return self.stories.is_story_complete(segments)

    def validate_segment_chain(self, segments: Sequence[StorySegment]) -> bool:
        return self.stories.validate_segment_chain(segments)

    # Feeds

    async def get_global_feed(self, options: FeedOptions | None = None) -> Result[FeedResult]:
        return await self.feeds.get_global_feed(options)

    async def get_user_feed(self, address: str, options: FeedOptions | None = None) -> Result[FeedResult]:
        return await self.feeds.get_user_feed(address, options)

    async def get_personalized_feed(self, address: str, options: FeedOptions | None = None) -> Result[FeedResult]:
        return await self.feeds.get_personalized_feed(address, options)

    async def get_trending_feed(self, options: FeedOptions | None = None) -> Result[FeedResult]:
        return await self.feeds.get_trending_feed(options)

    async def get_feed_by_type(
        self, types: list[TransactionType], options: FeedOptions | None = None
    ) -> Result[FeedResult]:
        return await self.feeds.get_feed_by_type(types, options)

    async def search_content(self, options: SearchOptions) -> Result[SearchResult]:
        """Filter feed items by text, author and type.

        There is no search index: results come from the feed that matches the
        criteria, so only content visible to that feed can be found.
        """
        feed_options = FeedOptions(
            limit=options.limit,
            offset=options.offset,
            authors=(options.author,) if options.author else (),
        )

        if options.types:
            feed = await self.get_feed_by_type(list(options.types), feed_options)
        elif options.author:
            feed = await self.get_user_feed(options.author, feed_options)
        else:
            feed = await self.get_global_feed(feed_options)

        if not feed.success or feed.data is None:
            return Result.fail(feed.error or "Search failed")

        items = list(feed.data.items)
        if options.query:
            query = options.query.lower()
            items = [item for item in items if query in item.content.lower()]

        descending = options.sort_order != "asc"
        if options.sort_by == "engagement":
            items.sort(key=item_engagement, reverse=descending)
        else:
            items.sort(key=lambda item: item.timestamp, reverse=descending)

        logger.debug("Search complete", query=options.query, author=options.author, matched=len(items))
        return Result.ok(
            SearchResult(
                items=items,
                has_more=feed.data.has_more,
                next_offset=feed.data.next_offset,
                total_count=len(items),
            )
        )

    # Engagement

    async def get_content_engagement(self, target_id: str, actor: str | None = None) -> Result[ContentEngagement]:
        return await self.engagement.get_content_engagement(target_id, actor)

    async def get_likes_for_content(self, target_id: str) -> Result[list[IndexedLike]]:
        return await self.engagement.get_likes_for_content(target_id)

    async def get_comments_for_content(self, target_id: str) -> Result[list[IndexedComment]]:
        return await self.engagement.get_comments_for_content(target_id)

    async def has_user_liked_content(self, target_id: str, actor: str) -> Result[UserLikeStatus]:
        return await self.engagement.has_user_liked_content(target_id, actor)

    async def calculate_engagement_for_content(self, target_id: str) -> Result[EngagementMetrics]:
        return await self.engagement.calculate_engagement_for_content(target_id)

    async def determine_content_type(self, target_id: str) -> ContentType:
        return await self.engagement.determine_content_type(target_id)

    async def determine_parent_type(self, target_id: str) -> ParentType:
        return await self.engagement.determine_parent_type(target_id)

    def clear_engagement_cache(self) -> int:
        return self.engagement.clear_cache()

    def disable_engagement_caching(self) -> None:
        self.engagement.disable_caching()

    def enable_engagement_caching(self) -> None:
        self.engagement.enable_caching()

    def clean_expired_cache(self) -> int:
        return self.engagement.clean_expired_cache()

    def clear_caches(self) -> int:
        """Empty every component cache; returns the number of entries dropped."""
        cleared = (
            self.engagement.clear_cache()
            + self.stories.clear_cache()
            + self.users.clear_cache()
            + self.feeds.clear_cache()
        )
        logger.info("Indexer caches cleared", entries=cleared)
        return cleared

    # Ledger access

    async def get_transaction(self, transaction_id: str) -> Result[RawTransaction]:
        return await self.fetcher.get_transaction_by_id(transaction_id)

    async def get_transactions_by_address(
        self, address: str, limit: int = 50, offset: int = 0
    ) -> Result[list[RawTransaction]]:
        return await self.fetcher.get_transactions_by_address(address, limit, offset)

    async def get_recent_transactions(self, limit: int = 50) -> Result[list[RawTransaction]]:
        return await self.fetcher.get_recent_transactions(limit)

    async def get_transaction_count(self, address: str) -> Result[int]:
        return await self.fetcher.get_transaction_count(address)

    async def transaction_exists(self, transaction_id: str) -> Result[bool]:
        return await self.fetcher.transaction_exists(transaction_id)

    def parse_verum_transaction(self, raw: RawTransaction) -> ParsedTransaction | None:
        return self.fetcher.parse_verum_transaction(raw)

    def validate_payload(self, payload: ProtocolPayload) -> ValidationResult:
        return validate_payload(payload)

    def with_settings(self, **overrides) -> VerumIndexer:
        """A new indexer over the same fetcher with some settings replaced."""
        return VerumIndexer(self.fetcher, config=self.settings.model_copy(update=overrides))
