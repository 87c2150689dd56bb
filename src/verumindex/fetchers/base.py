"""Blockchain fetcher capability consumed by the indexer."""

from __future__ import annotations

from typing import Protocol

from verumindex.models import ParsedTransaction, RawTransaction
from verumindex.result import Result


class FetcherError(RuntimeError):
    """Raised inside a fetcher when the ledger API cannot be reached."""


class BlockchainFetcher(Protocol):
    async def get_transaction_by_id(self, transaction_id: str) -> Result[RawTransaction]: ...

    async def get_transactions_by_address(
        self, address: str, limit: int = 50, offset: int = 0
    ) -> Result[list[RawTransaction]]: ...

    async def get_recent_transactions(self, limit: int = 50) -> Result[list[RawTransaction]]: ...

    async def get_transaction_count(self, address: str) -> Result[int]: ...

    async def transaction_exists(self, transaction_id: str) -> Result[bool]: ...

    def parse_verum_transaction(self, raw: RawTransaction) -> ParsedTransaction | None: ...
