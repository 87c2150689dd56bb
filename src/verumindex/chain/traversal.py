"""Discover a user's Verum transactions and walk their previous-transaction chain."""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from verumindex.config import Settings, settings as default_settings
from verumindex.fetchers.base import BlockchainFetcher
from verumindex.models import ChainTraversalResult, ParsedTransaction
from verumindex.protocol.codec import parse_transaction
from verumindex.protocol.constants import PROTOCOL_CREATION_DATE, SUBSCRIPTION_TYPES
from verumindex.result import Result

logger = structlog.get_logger()


@dataclass(frozen=True)
class EntryPointResult:
    entry_point: ParsedTransaction | None
    transactions: list[ParsedTransaction] = field(default_factory=list)
    batches_scanned: int = 0
    # Set when the first batch could not be fetched.
    error: str | None = None


def _by_block_time_desc(transactions: list[ParsedTransaction]) -> list[ParsedTransaction]:
    return sorted(transactions, key=lambda tx: tx.block_time, reverse=True)


def _split_subscriptions(transactions: list[ParsedTransaction]) -> ChainTraversalResult:
    subscriptions = [
        tx for tx in transactions if tx.payload is not None and tx.payload.type in SUBSCRIPTION_TYPES
    ]
    return ChainTraversalResult(
        transactions=transactions,
        subscriptions=subscriptions,
        last_transaction_id=transactions[-1].transaction_id if transactions else None,
        last_subscribe_id=subscriptions[-1].transaction_id if subscriptions else None,
    )


class ChainTraversal:
    def __init__(self, fetcher: BlockchainFetcher, *, config: Settings | None = None):
        self._fetcher = fetcher
        self._settings = config or default_settings

    async def find_entry_point(self, address: str) -> EntryPointResult:
        """Scan the address history newest-first for protocol transactions it authored.

        Scanning stops at the protocol epoch, on an empty or short batch, on a
        fetch failure, or after the configured number of batches. Only a
        failure on the first batch is reported; later failures keep what was
        already found.
        """
        batch_size = self._settings.discovery_batch_size
        found: list[ParsedTransaction] = []
        offset = 0
        batches = 0

        for batch in range(self._settings.discovery_max_batches):
            result = await self._fetcher.get_transactions_by_address(address, batch_size, offset)
            batches = batch + 1
            if not result.success:
                logger.warning("Entry point scan aborted", address=address, batch=batch, error=result.error)
                if batch == 0:
                    return EntryPointResult(
                        entry_point=None,
                        batches_scanned=batches,
                        error=result.error or "Failed to fetch address history",
                    )
                break

            transactions = result.data or []
            if not transactions:
                break

            reached_epoch = False
            for raw in transactions:
                if raw.block_time and raw.block_time < PROTOCOL_CREATION_DATE:
                    reached_epoch = True
                    break
                parsed = parse_transaction(raw)
                if parsed and parsed.payload is not None and parsed.author_address == address:
                    found.append(parsed)

            if reached_epoch or len(transactions) < batch_size:
                break
            offset += batch_size

        if not found:
            return EntryPointResult(entry_point=None, batches_scanned=batches)

        found = _by_block_time_desc(found)
        logger.debug("Entry point found", address=address, entry=found[0].transaction_id, preloaded=len(found))
        return EntryPointResult(entry_point=found[0], transactions=found, batches_scanned=batches)

    async def traverse_user_chain(
        self,
        address: str,
        max_transactions: int | None = None,
        time_limit: int | None = None,
    ) -> Result[ChainTraversalResult]:
        if max_transactions is None:
            max_transactions = self._settings.chain_default_max_transactions

        discovery = await self.find_entry_point(address)
        if discovery.error is not None:
            return Result.fail(discovery.error)
        if discovery.entry_point is None:
            return Result.ok(ChainTraversalResult())

        if self._settings.chain_use_preloaded and discovery.transactions:
            # Preloaded history may include transactions not linked by prev_tx_id.
            transactions = discovery.transactions
            if time_limit is not None:
                transactions = [tx for tx in transactions if tx.block_time >= time_limit]
            transactions = transactions[:max_transactions]
        else:
            transactions = await self.walk_chain(discovery.entry_point, max_transactions, time_limit)

        logger.info("Chain traversal complete", address=address, transactions=len(transactions))
        return Result.ok(_split_subscriptions(transactions))

    async def traverse_from_transaction(
        self,
        transaction_id: str,
        max_transactions: int | None = None,
        time_limit: int | None = None,
    ) -> Result[ChainTraversalResult]:
        if max_transactions is None:
            max_transactions = self._settings.chain_default_max_transactions

        result = await self._fetcher.get_transaction_by_id(transaction_id)
        if not result.success or result.data is None:
            logger.warning("Start transaction fetch failed", transaction_id=transaction_id, error=result.error)
            return Result.fail(result.error or "Failed to fetch start transaction")

        start = parse_transaction(result.data)
        if start is None or start.payload is None:
            return Result.ok(ChainTraversalResult())
        transactions = await self.walk_chain(start, max_transactions, time_limit)
        return Result.ok(_split_subscriptions(transactions))

    async def walk_chain(
        self,
        start: ParsedTransaction,
        max_transactions: int,
        time_limit: int | None = None,
    ) -> list[ParsedTransaction]:
        """Follow prev_tx_id links backwards from start, one fetch per hop."""
        if max_transactions <= 0 or start.block_time < PROTOCOL_CREATION_DATE:
            return []
        if time_limit is not None and start.block_time < time_limit:
            return []

        transactions = [start]
        seen = {start.transaction_id}
        current = start

        while len(transactions) < max_transactions:
            prev_id = current.payload.prev_tx_id if current.payload else None
            if not prev_id or prev_id in seen:
                break

            previous = await self._fetch_parsed(prev_id)
            if previous is None:
                logger.info("Chain broken at missing ancestor", transaction_id=prev_id)
                break
            if previous.block_time < PROTOCOL_CREATION_DATE:
                break
            if time_limit is not None and previous.block_time < time_limit:
                break

            transactions.append(previous)
            seen.add(prev_id)
            current = previous

        return _by_block_time_desc(transactions)

    async def get_latest_transaction_info(self, address: str) -> Result[dict[str, str | None]]:
        """Ids a client needs to link its next transaction to the chain."""
        discovery = await self.find_entry_point(address)
        if discovery.error is not None:
            return Result.fail(discovery.error)
        if discovery.entry_point is None:
            return Result.ok({"last_tx_id": None, "last_subscribe_id": None})

        subscriptions = [
            tx for tx in discovery.transactions if tx.payload is not None and tx.payload.type in SUBSCRIPTION_TYPES
        ]
        return Result.ok(
            {
                "last_tx_id": discovery.entry_point.transaction_id,
                "last_subscribe_id": subscriptions[0].transaction_id if subscriptions else None,
            }
        )

    async def _fetch_parsed(self, transaction_id: str) -> ParsedTransaction | None:
        result = await self._fetcher.get_transaction_by_id(transaction_id)
        if not result.success or result.data is None:
            logger.warning("Transaction fetch failed", transaction_id=transaction_id, error=result.error)
            return None
        return parse_transaction(result.data)
