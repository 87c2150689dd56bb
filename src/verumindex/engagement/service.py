"""Likes, comments and engagement metrics from a window of recent transactions.

Engagement is found by scanning a bounded window of recent ledger
transactions, not by a reverse index: engagement older than the window is
invisible.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

import structlog

from verumindex.cache import TTLCache, cache_key
from verumindex.config import Settings, settings as default_settings
from verumindex.fetchers.base import BlockchainFetcher
from verumindex.models import (
    ContentEngagement,
    ContentType,
    EngagementMetrics,
    IndexedComment,
    IndexedLike,
    ParentType,
    ParsedTransaction,
    UserLikeStatus,
)
from verumindex.protocol.constants import ENGAGEMENT_SCAN_HARD_CAP, TransactionType
from verumindex.result import Result

logger = structlog.get_logger()

DEFAULT_CONTENT_TYPE: ContentType = "post"


def deduplicate_likes(likes: list[IndexedLike]) -> list[IndexedLike]:
    """Keep each actor's most recent like.

    Actors are compared case-insensitively. Likes whose author could not be
    resolved cannot be attributed and are each kept.
    """
    latest: dict[str, IndexedLike] = {}
    for like in likes:
        actor_key = like.liker_address.lower() or f"unknown:{like.transaction_id}"
        existing = latest.get(actor_key)
        if existing is None or like.timestamp > existing.timestamp:
            latest[actor_key] = like
    return sorted(latest.values(), key=lambda like: like.timestamp)


def calculate_engagement_metrics(
    likes: list[IndexedLike],
    comments: list[IndexedComment],
    *,
    now: float,
    window_seconds: int = 24 * 60 * 60,
) -> EngagementMetrics:
    cutoff = now - window_seconds
    recent = sum(1 for like in likes if like.timestamp > cutoff)
    recent += sum(1 for comment in comments if comment.timestamp > cutoff)
    return EngagementMetrics(
        like_count=len(likes),
        comment_count=len(comments),
        total_engagement=len(likes) + len(comments),
        recent_activity=recent,
    )


def like_status_for(likes: list[IndexedLike], actor: str) -> UserLikeStatus:
    actor_lower = actor.lower()
    for like in likes:
        if like.liker_address.lower() == actor_lower:
            return UserLikeStatus(has_liked=True, like_transaction_id=like.transaction_id, liked_at=like.timestamp)
    return UserLikeStatus(has_liked=False)


class EngagementService:
    def __init__(
        self,
        fetcher: BlockchainFetcher,
        *,
        config: Settings | None = None,
        now_fn: Callable[[], float] = time.time,
        cache_now_fn: Callable[[], float] = time.monotonic,
    ):
        self._fetcher = fetcher
        self._settings = config or default_settings
        self._now_fn = now_fn
        self.cache_enabled = self._settings.cache_enabled
        self._cache = TTLCache(self._settings.engagement_cache_ttl_seconds, now_fn=cache_now_fn)

    @property
    def scan_window(self) -> int:
        return min(self._settings.engagement_max_search_depth, ENGAGEMENT_SCAN_HARD_CAP)

    def _cached(self, key: str):
        if not self.cache_enabled:
            return None
        return self._cache.get(key)

    def _store(self, key: str, value) -> None:
        if self.cache_enabled:
            self._cache.set(key, value)

    async def _scan_window(self, tx_type: TransactionType, target_id: str) -> Result[list[ParsedTransaction]]:
        result = await self._fetcher.get_recent_transactions(self.scan_window)
        if not result.success or result.data is None:
            logger.warning("Engagement window fetch failed", type=tx_type.value, error=result.error)
            return Result.fail("Failed to fetch transactions")

        matches: list[ParsedTransaction] = []
        typed = 0
        for raw in result.data:
            parsed = self._fetcher.parse_verum_transaction(raw)
            if parsed is None or parsed.payload is None or parsed.payload.type != tx_type:
                continue
            typed += 1
            if parsed.payload.parent_id == target_id:
                matches.append(parsed)

        logger.debug(
            "Engagement window scanned",
            type=tx_type.value,
            target=target_id[:12],
            scanned=len(result.data),
            typed=typed,
            matched=len(matches),
        )
        return Result.ok(matches)

    async def get_likes_for_content(self, target_id: str) -> Result[list[IndexedLike]]:
        key = cache_key("likes", target_id)
        cached = self._cached(key)
        if cached is not None:
            return Result.ok(cached)

        scan = await self._scan_window(TransactionType.LIKE, target_id)
        if not scan.success or scan.data is None:
            return Result.fail(scan.error or "Failed to get likes")

        likes: list[IndexedLike] = []
        if scan.data:
            target_type = await self.determine_content_type(target_id)
            likes = [
                IndexedLike(
                    transaction_id=tx.transaction_id,
                    liker_address=tx.author_address,
                    target_transaction_id=target_id,
                    target_type=target_type,
                    timestamp=tx.block_time,
                )
                for tx in scan.data
            ]

        unique = deduplicate_likes(likes)
        if len(unique) != len(likes):
            logger.info("Removed duplicate likes", target=target_id[:12], removed=len(likes) - len(unique))

        self._store(key, unique)
        return Result.ok(unique)

    async def get_comments_for_content(self, target_id: str) -> Result[list[IndexedComment]]:
        key = cache_key("comments", target_id)
        cached = self._cached(key)
        if cached is not None:
            return Result.ok(cached)

        scan = await self._scan_window(TransactionType.COMMENT, target_id)
        if not scan.success or scan.data is None:
            return Result.fail(scan.error or "Failed to get comments")

        comments: list[IndexedComment] = []
        if scan.data:
            parent_type = await self.determine_parent_type(target_id)
            comments = [
                IndexedComment(
                    transaction_id=tx.transaction_id,
                    author_address=tx.author_address,
                    parent_transaction_id=target_id,
                    parent_type=parent_type,
                    content=tx.payload.content or "",
                    timestamp=tx.block_time,
                )
                for tx in scan.data
            ]
        comments.sort(key=lambda comment: comment.timestamp)

        self._store(key, comments)
        return Result.ok(comments)

    async def get_content_engagement(self, target_id: str, actor: str | None = None) -> Result[ContentEngagement]:
        key = cache_key("engagement", target_id, actor)
        cached = self._cached(key)
        if cached is not None:
            return Result.ok(cached)

        content_type = await self.determine_content_type(target_id)
        likes_result, comments_result = await asyncio.gather(
            self.get_likes_for_content(target_id),
            self.get_comments_for_content(target_id),
        )
        if not likes_result.success or not comments_result.success:
            logger.warning(
                "Engagement fetch failed",
                target=target_id[:12],
                likes_ok=likes_result.success,
                comments_ok=comments_result.success,
            )
            return Result.fail("Failed to fetch engagement data")

        likes = likes_result.data or []
        comments = comments_result.data or []
        engagement = ContentEngagement(
            transaction_id=target_id,
            content_type=content_type,
            metrics=self.calculate_metrics(likes, comments),
            likes=likes,
            comments=comments,
            actor_like_status=like_status_for(likes, actor) if actor else None,
        )
        logger.info(
            "Engagement computed",
            target=target_id[:12],
            content_type=content_type,
            likes=len(likes),
            comments=len(comments),
        )

        self._store(key, engagement)
        return Result.ok(engagement)

    async def has_user_liked_content(self, target_id: str, actor: str) -> Result[UserLikeStatus]:
        likes_result = await self.get_likes_for_content(target_id)
        if not likes_result.success or likes_result.data is None:
            return Result.fail("Failed to get likes data")
        return Result.ok(like_status_for(likes_result.data, actor))

    async def calculate_engagement_for_content(self, target_id: str) -> Result[EngagementMetrics]:
        likes_result, comments_result = await asyncio.gather(
            self.get_likes_for_content(target_id),
            self.get_comments_for_content(target_id),
        )
        if not likes_result.success or not comments_result.success:
            return Result.fail("Failed to fetch engagement data")
        return Result.ok(self.calculate_metrics(likes_result.data or [], comments_result.data or []))

    def calculate_metrics(self, likes: list[IndexedLike], comments: list[IndexedComment]) -> EngagementMetrics:
        return calculate_engagement_metrics(
            likes,
            comments,
            now=self._now_fn(),
            window_seconds=self._settings.recent_activity_window_seconds,
        )

    async def _classify(self, target_id: str) -> TransactionType | None:
        result = await self._fetcher.get_transaction_by_id(target_id)
        if not result.success or result.data is None:
            return None
        parsed = self._fetcher.parse_verum_transaction(result.data)
        if parsed is None or parsed.payload is None:
            return None
        return parsed.payload.type

    async def determine_content_type(self, target_id: str) -> ContentType:
        """Classify a like target as post, story or comment.

        Advisory labelling only: an unknown, unfetchable or non-content target
        is reported as ``"post"``.
        """
        tx_type = await self._classify(target_id)
        if tx_type == TransactionType.STORY:
            return "story"
        if tx_type == TransactionType.COMMENT:
            return "comment"
        return DEFAULT_CONTENT_TYPE

    async def determine_parent_type(self, target_id: str) -> ParentType:
        """Classify a comment parent as post or story.

        Comments cannot be parents, so a comment-typed parent is reported as
        ``"post"``, as is anything that cannot be fetched or decoded.
        """
        tx_type = await self._classify(target_id)
        if tx_type == TransactionType.STORY:
            return "story"
        return "post"

    def clear_cache(self) -> int:
        cleared = self._cache.clear()
        logger.info("Engagement cache cleared", entries=cleared)
        return cleared

    def disable_caching(self) -> None:
        self.cache_enabled = False
        self.clear_cache()

    def enable_caching(self) -> None:
        self.cache_enabled = True

    def clean_expired_cache(self) -> int:
        return self._cache.sweep()
