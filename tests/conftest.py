"""Pytest fixtures for Verum Index tests."""

import json
from collections import Counter, defaultdict
from typing import Any

import pytest

from verumindex.config import Settings
from verumindex.models import ParsedTransaction, RawTransaction, TransactionOutput
from verumindex.protocol.codec import parse_verum_transaction
from verumindex.result import Result

# Comfortably after the protocol epoch.
BASE_TIME = 1_750_000_000


def make_address(seed: str) -> str:
    """Build a well-formed mainnet address from a short lowercase seed."""
    return "kaspa:q" + (seed * 61)[:60]


ALICE = make_address("alice")
BOB = make_address("bob")
CAROL = make_address("carol")
DAVE = make_address("dave")
SINK = make_address("sink")


def txid(n: int) -> str:
    return f"{n:064x}"


def encode_payload(data: dict[str, Any]) -> str:
    """Hex-encode a payload the way it sits in a null-data output."""
    return "6a" + json.dumps(data).encode("utf-8").hex()


def verum_payload(tx_type: str, **fields: Any) -> dict[str, Any]:
    payload = {"verum": "0.2", "type": tx_type, "timestamp": BASE_TIME}
    payload.update(fields)
    return payload


def make_tx(
    n: int,
    author: str,
    payload: dict[str, Any] | None = None,
    *,
    block_time: int = BASE_TIME,
    recipient: str | None = None,
) -> RawTransaction:
    """A raw transaction whose outputs resolve to the given author.

    START transactions pay the author back; everything else pays the
    recipient first and returns change to the author.
    """
    if payload is not None and payload.get("type") == "start":
        outputs = (TransactionOutput(amount=1, address=author),)
    else:
        outputs = (
            TransactionOutput(amount=1, address=recipient or SINK),
            TransactionOutput(amount=99, address=author),
        )
    return RawTransaction(
        transaction_id=txid(n),
        block_time=block_time,
        outputs=outputs,
        payload=encode_payload(payload) if payload is not None else None,
    )


class FakeFetcher:
    """In-memory ledger implementing the blockchain fetcher protocol."""

    def __init__(self):
        self.transactions: dict[str, RawTransaction] = {}
        self.by_address: dict[str, list[str]] = defaultdict(list)
        self.calls: Counter[str] = Counter()
        self.limits: dict[str, list[int]] = defaultdict(list)
        self.fail_methods: set[str] = set()

    async def __aenter__(self) -> "FakeFetcher":
        return self

    async def __aexit__(self, *args) -> None:
        return None

    def add(self, *transactions: RawTransaction) -> None:
        for tx in transactions:
            self.transactions[tx.transaction_id] = tx
            for output in tx.outputs:
                if output.address and tx.transaction_id not in self.by_address[output.address]:
                    self.by_address[output.address].append(tx.transaction_id)

    def remove(self, transaction_id: str) -> None:
        self.transactions.pop(transaction_id, None)
        for ids in self.by_address.values():
            if transaction_id in ids:
                ids.remove(transaction_id)

    def _newest_first(self, ids: list[str]) -> list[RawTransaction]:
        return sorted((self.transactions[i] for i in ids), key=lambda tx: tx.block_time, reverse=True)

    def _record(self, method: str) -> Result | None:
        self.calls[method] += 1
        if method in self.fail_methods:
            return Result.fail("connection refused")
        return None

    async def get_transaction_by_id(self, transaction_id: str) -> Result[RawTransaction]:
        failure = self._record("get_transaction_by_id")
        if failure:
            return failure
        tx = self.transactions.get(transaction_id)
        if tx is None:
            return Result.fail("Transaction not found")
        return Result.ok(tx)

    async def get_transactions_by_address(
        self, address: str, limit: int = 50, offset: int = 0
    ) -> Result[list[RawTransaction]]:
        failure = self._record("get_transactions_by_address")
        self.limits["get_transactions_by_address"].append(limit)
        if failure:
            return failure
        history = self._newest_first(self.by_address.get(address, []))
        return Result.ok(history[offset : offset + limit])

    async def get_recent_transactions(self, limit: int = 50) -> Result[list[RawTransaction]]:
        failure = self._record("get_recent_transactions")
        self.limits["get_recent_transactions"].append(limit)
        if failure:
            return failure
        return Result.ok(self._newest_first(list(self.transactions))[:limit])

    async def get_transaction_count(self, address: str) -> Result[int]:
        failure = self._record("get_transaction_count")
        if failure:
            return failure
        return Result.ok(len(self.by_address.get(address, [])))

    async def transaction_exists(self, transaction_id: str) -> Result[bool]:
        failure = self._record("transaction_exists")
        if failure:
            return failure
        return Result.ok(transaction_id in self.transactions)

    def parse_verum_transaction(self, raw: RawTransaction) -> ParsedTransaction | None:
        return parse_verum_transaction(raw)


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fetcher() -> FakeFetcher:
    """Empty in-memory ledger."""
    return FakeFetcher()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(_env_file=None, fetch_max_attempts=1)
