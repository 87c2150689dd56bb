"""User profiles, statistics and subscriptions derived from an address's history."""

from __future__ import annotations

import asyncio
import json

import structlog
from pydantic import ValidationError

from verumindex.cache import TTLCache
from verumindex.config import Settings, settings as default_settings
from verumindex.fetchers.base import BlockchainFetcher
from verumindex.models import IndexedSubscription, ParsedTransaction, UserProfile, UserStats
from verumindex.protocol.constants import TransactionType
from verumindex.protocol.schemas import ProfileContent
from verumindex.result import Pagination, Result

logger = structlog.get_logger()

PROFILE_BATCH_SIZE = 10


def _parse_profile_content(content: str | None) -> ProfileContent:
    if not content:
        return ProfileContent()
    try:
        return ProfileContent.model_validate(json.loads(content))
    except (json.JSONDecodeError, ValidationError):
        return ProfileContent()


def extract_subscriptions(transactions: list[ParsedTransaction], subscriber: str) -> list[IndexedSubscription]:
    """Newest SUBSCRIBE/UNSUBSCRIBE per target address."""
    latest: dict[str, IndexedSubscription] = {}
    for tx in transactions:
        payload = tx.payload
        if payload is None or payload.type not in (TransactionType.SUBSCRIBE, TransactionType.UNSUBSCRIBE):
            continue
        target = payload.content
        if not target:
            continue
        existing = latest.get(target)
        if existing is None or tx.block_time > existing.timestamp:
            latest[target] = IndexedSubscription(
                transaction_id=tx.transaction_id,
                subscriber=subscriber,
                target=target,
                timestamp=tx.block_time,
                is_active=payload.type == TransactionType.SUBSCRIBE,
            )
    return list(latest.values())


class UserFetcher:
    def __init__(self, fetcher: BlockchainFetcher, *, config: Settings | None = None):
        self._fetcher = fetcher
        self._settings = config or default_settings
        self._cache = TTLCache(self._settings.user_cache_ttl_seconds)

    def clear_cache(self) -> int:
        return self._cache.clear()

    def _cached(self, key: str):
        if not self._settings.cache_enabled:
            return None
        return self._cache.get(key)

    def _store(self, key: str, value) -> None:
        if self._settings.cache_enabled:
            self._cache.set(key, value)

    async def _load_history(self, address: str) -> Result[list[ParsedTransaction]]:
        result = await self._fetcher.get_transactions_by_address(
            address, self._settings.discovery_batch_size * 2, 0
        )
        if not result.success or result.data is None:
            return Result.fail("Failed to fetch user transactions")

        transactions = []
        for raw in result.data:
            parsed = self._fetcher.parse_verum_transaction(raw)
            if parsed is not None and parsed.author_address == address:
                transactions.append(parsed)
        return Result.ok(transactions)

    async def get_user_profile(self, address: str) -> Result[UserProfile]:
        key = f"profile:{address}"
        cached = self._cached(key)
        if cached is not None:
            return Result.ok(cached)

        history = await self._load_history(address)
        if not history.success or history.data is None:
            return Result.fail(history.error or "Failed to fetch user profile")

        starts = [tx for tx in history.data if tx.payload and tx.payload.type == TransactionType.START]
        if not starts:
            return Result.fail("User not found - no START transaction")
        start = min(starts, key=lambda tx: tx.block_time)

        profile = self._build_profile(address, start, history.data)
        self._store(key, profile)
        return Result.ok(profile)

    def _build_profile(
        self, address: str, start: ParsedTransaction, transactions: list[ParsedTransaction]
    ) -> UserProfile:
        content = _parse_profile_content(start.payload.content if start.payload else None)
        last = max(transactions, key=lambda tx: tx.block_time)

        post_count = 0
        last_subscribe: ParsedTransaction | None = None
        for tx in transactions:
            tx_type = tx.payload.type if tx.payload else None
            if tx_type in (TransactionType.POST, TransactionType.STORY):
                post_count += 1
            elif tx_type in (TransactionType.SUBSCRIBE, TransactionType.UNSUBSCRIBE):
                if last_subscribe is None or tx.block_time > last_subscribe.block_time:
                    last_subscribe = tx

        following = [sub for sub in extract_subscriptions(transactions, address) if sub.is_active]
        return UserProfile(
            address=address,
            nickname=content.nickname or "Unknown",
            avatar=content.avatar,
            start_transaction_id=start.transaction_id,
            last_transaction_id=last.transaction_id,
            last_subscribe_id=last_subscribe.transaction_id if last_subscribe else None,
            post_count=post_count,
            following_count=len(following),
            created_at=start.block_time,
            updated_at=last.block_time,
        )

    async def get_user_stats(self, address: str) -> Result[UserStats]:
        key = f"stats:{address}"
        cached = self._cached(key)
        if cached is not None:
            return Result.ok(cached)

        profile_result = await self.get_user_profile(address)
        if not profile_result.success or profile_result.data is None:
            return Result.fail("Failed to fetch user profile")
        history = await self._load_history(address)
        if not history.success or history.data is None:
            return Result.fail(history.error or "Failed to calculate user stats")

        counts = {tx_type: 0 for tx_type in TransactionType}
        story_count = 0
        for tx in history.data:
            if tx.payload is None:
                continue
            counts[tx.payload.type] += 1
            if tx.payload.type == TransactionType.STORY and (tx.payload.params or {}).get("segment") == 1:
                story_count += 1

        profile = profile_result.data
        stats = UserStats(
            address=address,
            post_count=counts[TransactionType.POST],
            story_count=story_count,
            comment_count=counts[TransactionType.COMMENT],
            like_count=counts[TransactionType.LIKE],
            follower_count=profile.follower_count,
            following_count=profile.following_count,
            total_engagement=counts[TransactionType.LIKE] + counts[TransactionType.COMMENT],
            joined_at=profile.created_at,
        )
        self._store(key, stats)
        return Result.ok(stats)

    async def get_following(self, address: str, limit: int = 50, offset: int = 0) -> Result[list[IndexedSubscription]]:
        key = f"following:{address}"
        active = self._cached(key)
        if active is None:
            history = await self._load_history(address)
            if not history.success or history.data is None:
                return Result.fail(history.error or "Failed to fetch following list")
            active = sorted(
                (sub for sub in extract_subscriptions(history.data, address) if sub.is_active),
                key=lambda sub: sub.timestamp,
                reverse=True,
            )
            self._store(key, active)

        page = active[offset : offset + limit]
        return Result.ok(
            page,
            pagination=Pagination(offset=offset, limit=limit, has_more=offset + limit < len(active), total=len(active)),
        )

    async def get_followers(self, address: str, limit: int = 50, offset: int = 0) -> Result[list[IndexedSubscription]]:
        # Followers live in other users' histories; there is no reverse index to query.
        return Result.ok([], error="Follower lookup requires a global index")

    async def get_subscription_status(self, follower: str, target: str) -> Result[IndexedSubscription | None]:
        """Latest SUBSCRIBE/UNSUBSCRIBE from follower to target; None if there never was one."""
        history = await self._load_history(follower)
        if not history.success or history.data is None:
            return Result.fail(history.error or "Failed to fetch subscription status")
        for subscription in extract_subscriptions(history.data, follower):
            if subscription.target == target:
                return Result.ok(subscription)
        return Result.ok(None)

    async def is_following(self, follower: str, target: str) -> Result[bool]:
        status = await self.get_subscription_status(follower, target)
        if not status.success:
            return Result.fail(status.error or "Failed to check subscription")
        return Result.ok(status.data is not None and status.data.is_active)

    async def get_user_profiles(self, addresses: list[str]) -> Result[list[UserProfile]]:
        profiles: list[UserProfile] = []
        errors: list[str] = []

        for start in range(0, len(addresses), PROFILE_BATCH_SIZE):
            batch = addresses[start : start + PROFILE_BATCH_SIZE]
            results = await asyncio.gather(*(self.get_user_profile(address) for address in batch))
            for address, result in zip(batch, results):
                if result.success and result.data is not None:
                    profiles.append(result.data)
                else:
                    errors.append(f"{address}: {result.error}")

        if errors:
            logger.info("Some profiles failed", failed=len(errors), loaded=len(profiles))
        return Result.ok(profiles, error=f"Some profiles failed: {', '.join(errors)}" if errors else None)
