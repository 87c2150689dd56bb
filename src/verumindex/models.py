"""Read-only projections of ledger data."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from verumindex.protocol.constants import TransactionType
from verumindex.protocol.schemas import ProtocolPayload

ContentType = Literal["post", "story", "comment"]
ParentType = Literal["post", "story"]


@dataclass(frozen=True)
class TransactionOutput:
    amount: int
    script_public_key: str = ""
    address: str | None = None
    script_type: str | None = None


@dataclass(frozen=True)
class RawTransaction:
    """Ledger-native transaction as returned by a fetcher."""

    transaction_id: str
    block_time: int
    outputs: tuple[TransactionOutput, ...] = ()
    payload: str | None = None
    is_accepted: bool = True


@dataclass(frozen=True)
class ParsedTransaction:
    transaction_id: str
    author_address: str
    block_time: int
    accepted: bool
    payload: ProtocolPayload | None = None


@dataclass(frozen=True)
class StorySegment:
    transaction_id: str
    segment_number: int
    total_segments: int
    content: str
    timestamp: int
    is_final: bool


@dataclass(frozen=True)
class IndexedLike:
    transaction_id: str
    liker_address: str
    target_transaction_id: str
    target_type: ContentType
    timestamp: int


@dataclass(frozen=True)
class IndexedComment:
    transaction_id: str
    author_address: str
    parent_transaction_id: str
    parent_type: ParentType
    content: str
    timestamp: int
    like_count: int = 0
    is_liked_by_user: bool = False


@dataclass(frozen=True)
class IndexedPost:
    transaction_id: str
    author_address: str
    content: str
    timestamp: int
    like_count: int = 0
    comment_count: int = 0
    is_liked_by_user: bool = False
    parent_id: str | None = None


@dataclass(frozen=True)
class IndexedStory:
    first_transaction_id: str
    author_address: str
    content: str
    segments: tuple[StorySegment, ...]
    timestamp: int
    is_complete: bool
    title: str | None = None
    like_count: int = 0
    comment_count: int = 0
    is_liked_by_user: bool = False


FeedItem = IndexedPost | IndexedStory | IndexedComment


@dataclass(frozen=True)
class IndexedSubscription:
    transaction_id: str
    subscriber: str
    target: str
    timestamp: int
    is_active: bool


@dataclass(frozen=True)
class UserProfile:
    address: str
    nickname: str
    start_transaction_id: str
    created_at: int
    updated_at: int
    avatar: str | None = None
    last_transaction_id: str | None = None
    last_subscribe_id: str | None = None
    post_count: int = 0
    follower_count: int = 0
    following_count: int = 0


@dataclass(frozen=True)
class UserStats:
    address: str
    post_count: int
    story_count: int
    comment_count: int
    like_count: int
    follower_count: int
    following_count: int
    total_engagement: int
    joined_at: int


@dataclass(frozen=True)
class EngagementMetrics:
    like_count: int
    comment_count: int
    total_engagement: int
    recent_activity: int


@dataclass(frozen=True)
class UserLikeStatus:
    has_liked: bool
    like_transaction_id: str | None = None
    liked_at: int | None = None


@dataclass(frozen=True)
class ContentEngagement:
    transaction_id: str
    content_type: ContentType
    metrics: EngagementMetrics
    likes: list[IndexedLike] = field(default_factory=list)
    comments: list[IndexedComment] = field(default_factory=list)
    actor_like_status: UserLikeStatus | None = None


@dataclass(frozen=True)
class ChainTraversalResult:
    transactions: list[ParsedTransaction] = field(default_factory=list)
    subscriptions: list[ParsedTransaction] = field(default_factory=list)
    last_transaction_id: str | None = None
    last_subscribe_id: str | None = None


@dataclass(frozen=True)
class FeedOptions:
    user_address: str | None = None
    limit: int = 50
    offset: int = 0
    include_replies: bool = True
    min_timestamp: int | None = None
    max_timestamp: int | None = None
    authors: tuple[str, ...] = ()


@dataclass(frozen=True)
class FeedResult:
    items: list[FeedItem]
    has_more: bool
    next_offset: int


@dataclass(frozen=True)
class SearchOptions:
    query: str | None = None
    author: str | None = None
    types: tuple[TransactionType, ...] = ()
    limit: int = 50
    offset: int = 0
    sort_by: Literal["timestamp", "engagement"] = "timestamp"
    sort_order: Literal["asc", "desc"] = "desc"


@dataclass(frozen=True)
class SearchResult:
    items: list[FeedItem]
    has_more: bool
    next_offset: int
    total_count: int
