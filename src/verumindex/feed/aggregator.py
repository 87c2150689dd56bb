"""Feed aggregation over posts, stories and comments."""

from __future__ import annotations

from dataclasses import replace

import structlog

from verumindex.cache import TTLCache
from verumindex.config import Settings, settings as default_settings
from verumindex.engagement.service import EngagementService
from verumindex.fetchers.base import BlockchainFetcher
from verumindex.models import (
    FeedItem,
    FeedOptions,
    FeedResult,
    IndexedComment,
    IndexedPost,
    IndexedStory,
    ParsedTransaction,
    RawTransaction,
)
from verumindex.protocol.constants import TransactionType
from verumindex.result import Result
from verumindex.story.reconstructor import StoryReconstructor
from verumindex.users.fetcher import UserFetcher

logger = structlog.get_logger()

AUTHOR_HISTORY_LIMIT = 100

_ITEM_TYPES: dict[type, TransactionType] = {
    IndexedPost: TransactionType.POST,
    IndexedStory: TransactionType.STORY,
    IndexedComment: TransactionType.COMMENT,
}


def item_engagement(item: FeedItem) -> int:
    if isinstance(item, IndexedComment):
        return item.like_count
    return item.like_count + item.comment_count


def filter_and_paginate(items: list[FeedItem], options: FeedOptions) -> list[FeedItem]:
    filtered = items
    if options.min_timestamp is not None:
        filtered = [item for item in filtered if item.timestamp >= options.min_timestamp]
    if options.max_timestamp is not None:
        filtered = [item for item in filtered if item.timestamp <= options.max_timestamp]
    if options.authors:
        filtered = [item for item in filtered if item.author_address in options.authors]
    return filtered[options.offset : options.offset + options.limit]


def _options_key(options: FeedOptions) -> str:
    return repr(options)


class FeedAggregator:
    def __init__(
        self,
        fetcher: BlockchainFetcher,
        users: UserFetcher,
        stories: StoryReconstructor,
        engagement: EngagementService,
        *,
        config: Settings | None = None,
    ):
        self._fetcher = fetcher
        self._users = users
        self._stories = stories
        self._engagement = engagement
        self._settings = config or default_settings
        self._cache = TTLCache(self._settings.feed_cache_ttl_seconds)

    def clear_cache(self) -> int:
        return self._cache.clear()

    def _cached(self, key: str) -> FeedResult | None:
        if not self._settings.cache_enabled:
            return None
        return self._cache.get(key)

    def _store(self, key: str, feed: FeedResult) -> None:
        if self._settings.cache_enabled:
            self._cache.set(key, feed)

    async def get_global_feed(self, options: FeedOptions | None = None) -> Result[FeedResult]:
        options = options or FeedOptions()
        key = f"feed:global:{_options_key(options)}"
        cached = self._cached(key)
        if cached is not None:
            return Result.ok(cached)

        # The window must cover every page up to the requested one.
        recent = await self._fetcher.get_recent_transactions((options.offset + options.limit) * 3)
        if not recent.success or recent.data is None:
            return Result.fail("Failed to fetch recent transactions")

        items = await self._to_feed_items(recent.data, options)
        items.sort(key=lambda item: item.timestamp, reverse=True)
        page = filter_and_paginate(items, options)
        feed = FeedResult(items=page, has_more=len(page) == options.limit, next_offset=options.offset + len(page))

        self._store(key, feed)
        return Result.ok(feed)

    async def get_user_feed(self, address: str, options: FeedOptions | None = None) -> Result[FeedResult]:
        options = options or FeedOptions()
        key = f"feed:user:{address}:{_options_key(options)}"
        cached = self._cached(key)
        if cached is not None:
            return Result.ok(cached)

        result = await self._feed_from_authors([address], options)
        if result.success and result.data is not None:
            self._store(key, result.data)
        return result

    async def get_personalized_feed(self, address: str, options: FeedOptions | None = None) -> Result[FeedResult]:
        options = options or FeedOptions()
        key = f"feed:personalized:{address}:{_options_key(options)}"
        cached = self._cached(key)
        if cached is not None:
            return Result.ok(cached)

        following = await self._users.get_following(address, limit=1000)
        if not following.success:
            return Result.fail("Failed to fetch following list")

        authors = [subscription.target for subscription in following.data or []]
        authors.append(address)
        result = await self._feed_from_authors(authors, replace(options, user_address=address))
        if result.success and result.data is not None:
            self._store(key, result.data)
        return result

    async def get_trending_feed(self, options: FeedOptions | None = None) -> Result[FeedResult]:
        result = await self.get_global_feed(options)
        if not result.success or result.data is None:
            return result
        items = sorted(result.data.items, key=item_engagement, reverse=True)
        return Result.ok(replace(result.data, items=items))

    async def get_feed_by_type(
        self, types: list[TransactionType], options: FeedOptions | None = None
    ) -> Result[FeedResult]:
        options = options or FeedOptions()
        # Page after filtering by type, so fetch from the start.
        result = await self.get_global_feed(replace(options, offset=0, limit=(options.offset + options.limit) * 2))
        if not result.success or result.data is None:
            return result

        matching = [item for item in result.data.items if _ITEM_TYPES.get(type(item)) in types]
        limited = matching[options.offset : options.offset + options.limit]
        return Result.ok(
            FeedResult(
                items=limited,
                has_more=len(matching) > options.offset + len(limited),
                next_offset=options.offset + len(limited),
            )
        )

    async def _feed_from_authors(self, authors: list[str], options: FeedOptions) -> Result[FeedResult]:
        items: list[FeedItem] = []
        for address in authors:
            history = await self._fetcher.get_transactions_by_address(address, AUTHOR_HISTORY_LIMIT, 0)
            if not history.success or history.data is None:
                logger.warning("Skipping author with failed history fetch", address=address, error=history.error)
                continue
            items.extend(await self._to_feed_items(history.data, options, author=address))

        items.sort(key=lambda item: item.timestamp, reverse=True)
        page = filter_and_paginate(items, options)
        return Result.ok(
            FeedResult(items=page, has_more=len(page) == options.limit, next_offset=options.offset + len(page))
        )

    async def _to_feed_items(
        self, transactions: list[RawTransaction], options: FeedOptions, author: str | None = None
    ) -> list[FeedItem]:
        items: list[FeedItem] = []
        seen_stories: set[str] = set()

        for raw in transactions:
            tx = self._fetcher.parse_verum_transaction(raw)
            if tx is None or tx.payload is None:
                continue
            # Address history also holds replies and likes paid to the address.
            if author is not None and tx.author_address != author:
                continue

            item: FeedItem | None = None
            if tx.payload.type == TransactionType.POST:
                item = await self._post_item(tx, options)
            elif tx.payload.type == TransactionType.STORY:
                if (tx.payload.params or {}).get("segment") == 1 and tx.transaction_id not in seen_stories:
                    seen_stories.add(tx.transaction_id)
                    item = await self._story_item(tx, options)
            elif tx.payload.type == TransactionType.COMMENT and options.include_replies:
                item = await self._comment_item(tx, options)

            if item is not None:
                items.append(item)

        return items

    async def _post_item(self, tx: ParsedTransaction, options: FeedOptions) -> IndexedPost | None:
        if not tx.payload.content:
            return None
        post = IndexedPost(
            transaction_id=tx.transaction_id,
            author_address=tx.author_address,
            content=tx.payload.content,
            timestamp=tx.block_time,
            parent_id=tx.payload.parent_id,
        )
        engagement = await self._engagement.get_content_engagement(tx.transaction_id, options.user_address)
        if engagement.success and engagement.data is not None:
            status = engagement.data.actor_like_status
            post = replace(
                post,
                like_count=engagement.data.metrics.like_count,
                comment_count=engagement.data.metrics.comment_count,
                is_liked_by_user=bool(status and status.has_liked),
            )
        return post

    async def _story_item(self, tx: ParsedTransaction, options: FeedOptions) -> IndexedStory | None:
        story_result = await self._stories.reconstruct_story(tx.transaction_id)
        if not story_result.success or story_result.data is None:
            logger.debug("Skipping unreadable story", transaction_id=tx.transaction_id, error=story_result.error)
            return None
        story = story_result.data
        engagement = await self._engagement.get_content_engagement(tx.transaction_id, options.user_address)
        if engagement.success and engagement.data is not None:
            status = engagement.data.actor_like_status
            story = replace(
                story,
                like_count=engagement.data.metrics.like_count,
                comment_count=engagement.data.metrics.comment_count,
                is_liked_by_user=bool(status and status.has_liked),
            )
        return story

    async def _comment_item(self, tx: ParsedTransaction, options: FeedOptions) -> IndexedComment | None:
        if not tx.payload.content or not tx.payload.parent_id:
            return None
        comment = IndexedComment(
            transaction_id=tx.transaction_id,
            author_address=tx.author_address,
            parent_transaction_id=tx.payload.parent_id,
            parent_type=await self._engagement.determine_parent_type(tx.payload.parent_id),
            content=tx.payload.content,
            timestamp=tx.block_time,
        )
        engagement = await self._engagement.get_content_engagement(tx.transaction_id, options.user_address)
        if engagement.success and engagement.data is not None:
            status = engagement.data.actor_like_status
            comment = replace(
                comment,
                like_count=engagement.data.metrics.like_count,
                is_liked_by_user=bool(status and status.has_liked),
            )
        return comment
