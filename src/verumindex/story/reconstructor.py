"""Reassemble multi-segment stories from scattered transactions.

Stories are split across transactions because of payload size limits and may
be fetched in any order, so ordering and completeness are always re-derived
from segment numbers rather than trusted from input order.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence

import structlog

from verumindex.cache import TTLCache
from verumindex.config import Settings, settings as default_settings
from verumindex.fetchers.base import BlockchainFetcher
from verumindex.models import IndexedStory, ParsedTransaction, StorySegment
from verumindex.protocol.codec import parse_verum_transaction
from verumindex.protocol.constants import TransactionType
from verumindex.result import Result

logger = structlog.get_logger()

MAX_TITLE_LENGTH = 100


def segment_from_transaction(tx: ParsedTransaction) -> StorySegment | None:
    """Build a StorySegment from a STORY transaction's params, if well-formed."""
    if tx.payload is None or tx.payload.type != TransactionType.STORY:
        return None
    params = tx.payload.params or {}
    segment = params.get("segment")
    total = params.get("total")
    if not isinstance(segment, int) or isinstance(segment, bool):
        return None
    if not isinstance(total, int) or isinstance(total, bool):
        return None
    return StorySegment(
        transaction_id=tx.transaction_id,
        segment_number=segment,
        total_segments=total,
        content=tx.payload.content or "",
        timestamp=tx.block_time,
        is_final=params.get("is_final") is True,
    )


def is_story_complete(segments: Sequence[StorySegment]) -> bool:
    """True when segments are exactly 1..n of an n-segment story, only n final."""
    if not segments:
        return False

    count = len(segments)
    if any(segment.total_segments != count for segment in segments):
        return False
    if sorted(segment.segment_number for segment in segments) != list(range(1, count + 1)):
        return False

    for segment in segments:
        if segment.is_final != (segment.segment_number == count):
            return False
    return True


def validate_segment_chain(segments: Sequence[StorySegment], tolerance_seconds: int | None = None) -> bool:
    """Structural and temporal check of a segment set.

    Segments must share one total, be numbered consecutively from 1, have
    only the last one marked final, and not step back in time by more than
    the tolerance. Forward gaps of any size are fine.
    """
    if not segments:
        return False
    if len(segments) == 1:
        return True
    if tolerance_seconds is None:
        tolerance_seconds = default_settings.story_timestamp_tolerance_seconds

    ordered = sorted(segments, key=lambda segment: segment.segment_number)
    total = ordered[0].total_segments
    last_index = len(ordered) - 1

    for index, segment in enumerate(ordered):
        if segment.total_segments != total:
            return False
        if segment.segment_number != index + 1:
            return False
        if segment.is_final != (index == last_index):
            return False
        if index > 0 and segment.timestamp < ordered[index - 1].timestamp - tolerance_seconds:
            return False

    return True


def assemble_story_text(segments: Sequence[StorySegment]) -> str:
    ordered = sorted(segments, key=lambda segment: segment.segment_number)
    return "".join(segment.content for segment in ordered).strip()


def extract_title(segments: Sequence[StorySegment]) -> str | None:
    if not segments:
        return None
    first = min(segments, key=lambda segment: segment.segment_number)
    first_line = first.content.split("\n", 1)[0]
    if len(first_line) < MAX_TITLE_LENGTH and first_line.endswith(":"):
        return first_line[:-1].strip() or None
    return None


class StoryReconstructor:
    def __init__(self, fetcher: BlockchainFetcher, *, config: Settings | None = None):
        self._fetcher = fetcher
        self._settings = config or default_settings
        self._cache = TTLCache(self._settings.story_cache_ttl_seconds)

    def is_story_complete(self, segments: Sequence[StorySegment]) -> bool:
        return is_story_complete(segments)

    def validate_segment_chain(self, segments: Sequence[StorySegment]) -> bool:
        return validate_segment_chain(segments, self._settings.story_timestamp_tolerance_seconds)

    def clear_cache(self) -> int:
        return self._cache.clear()

    async def _load_first_segment(self, first_tx_id: str) -> Result[ParsedTransaction]:
        result = await self._fetcher.get_transaction_by_id(first_tx_id)
        if not result.success or result.data is None:
            return Result.fail("First segment transaction not found")

        parsed = parse_verum_transaction(result.data)
        if parsed is None or parsed.payload is None or parsed.payload.type != TransactionType.STORY:
            return Result.fail("Invalid story transaction")
        return Result.ok(parsed)

    async def get_story_segments(self, first_tx_id: str) -> Result[list[StorySegment]]:
        key = f"segments:{first_tx_id}"
        if self._settings.cache_enabled:
            cached = self._cache.get(key)
            if cached is not None:
                return Result.ok(cached)

        first = await self._load_first_segment(first_tx_id)
        if not first.success or first.data is None:
            return Result.fail(first.error or "Failed to fetch story segments")

        first_segment = segment_from_transaction(first.data)
        if first_segment is None:
            return Result.fail("Story segment parameters missing")
        if first_segment.segment_number != 1:
            logger.info("Story requested from a later segment", transaction_id=first_tx_id)
            return Result.fail("Invalid story transaction")

        segments = [first_segment]
        if first_segment.total_segments > 1:
            segments = await self._find_subsequent_segments(first.data, first_segment)

        if self._settings.cache_enabled:
            self._cache.set(key, segments)
        return Result.ok(segments)

    async def _find_subsequent_segments(
        self, first_tx: ParsedTransaction, first_segment: StorySegment
    ) -> list[StorySegment]:
        """Link segment k to k-1 via parent_id among the author's STORY transactions."""
        segments = [first_segment]
        author = first_tx.author_address
        if not author:
            logger.info("Story author unresolved", first_tx_id=first_tx.transaction_id)
            return segments

        result = await self._fetcher.get_transactions_by_address(author, self._settings.story_search_limit, 0)
        if not result.success:
            logger.warning("Story segment search failed", author=author, error=result.error)
            return segments

        candidates: dict[int, list[tuple[str | None, StorySegment]]] = defaultdict(list)
        for raw in result.data or []:
            parsed = parse_verum_transaction(raw)
            if parsed is None or parsed.transaction_id == first_tx.transaction_id:
                continue
            segment = segment_from_transaction(parsed)
            if segment is None or segment.total_segments != first_segment.total_segments:
                continue
            if segment.segment_number < 2:
                continue
            candidates[segment.segment_number].append((parsed.payload.parent_id, segment))

        previous = first_segment
        for number in range(2, first_segment.total_segments + 1):
            linked = [
                segment for parent_id, segment in candidates.get(number, []) if parent_id == previous.transaction_id
            ]
            if not linked:
                logger.info(
                    "Story segment missing",
                    first_tx_id=first_tx.transaction_id,
                    segment=number,
                    total=first_segment.total_segments,
                )
                break
            previous = min(linked, key=lambda segment: segment.timestamp)
            segments.append(previous)

        return segments

    async def reconstruct_story(self, first_tx_id: str) -> Result[IndexedStory]:
        key = f"story:{first_tx_id}"
        if self._settings.cache_enabled:
            cached = self._cache.get(key)
            if cached is not None:
                return Result.ok(cached)

        first = await self._load_first_segment(first_tx_id)
        if not first.success or first.data is None:
            return Result.fail(first.error or "Failed to reconstruct story")

        segments_result = await self.get_story_segments(first_tx_id)
        if not segments_result.success or not segments_result.data:
            return Result.fail(segments_result.error or "Failed to fetch story segments")

        segments = segments_result.data
        if not self.validate_segment_chain(segments):
            return Result.fail("Invalid segment chain")

        ordered = tuple(sorted(segments, key=lambda segment: segment.segment_number))
        story = IndexedStory(
            first_transaction_id=first.data.transaction_id,
            author_address=first.data.author_address,
            title=extract_title(ordered),
            content=assemble_story_text(ordered),
            segments=ordered,
            timestamp=first.data.block_time,
            is_complete=is_story_complete(ordered),
        )

        if self._settings.cache_enabled:
            self._cache.set(key, story)
        return Result.ok(story)
