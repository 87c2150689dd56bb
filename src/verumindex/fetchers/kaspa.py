"""Kaspa REST API fetcher with retries and short-lived response caching."""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from verumindex.cache import TTLCache
from verumindex.config import Settings, settings as default_settings
from verumindex.fetchers.base import FetcherError
from verumindex.models import ParsedTransaction, RawTransaction, TransactionOutput
from verumindex.protocol.codec import parse_verum_transaction
from verumindex.result import Pagination, Result

logger = structlog.get_logger()

USER_AGENT = "Verum-Index/0.1.0"

# Block times above this are milliseconds.
_MILLISECOND_THRESHOLD = 10**11

NETWORK_API_URLS = {
    "mainnet": "https://api.kaspa.org",
    "testnet-10": "https://api-tn10.kaspa.org",
    "testnet-11": "https://api-tn11.kaspa.org",
}


def resolve_api_url(config: Settings) -> str:
    """Configured API URL, else the public API of the configured network."""
    if config.kaspa_api_url:
        return config.kaspa_api_url
    try:
        return NETWORK_API_URLS[config.network]
    except KeyError:
        raise FetcherError(f"Unknown Kaspa network: {config.network}") from None


def _is_retryable_http_status(status_code: int) -> bool:
    return status_code in {408, 425, 429, 500, 502, 503, 504}


def _should_retry(exc: BaseException) -> bool:
    if isinstance(exc, httpx.RequestError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return _is_retryable_http_status(exc.response.status_code)
    return False


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def normalize_block_time(value: Any) -> int:
    block_time = _to_int(value)
    if block_time > _MILLISECOND_THRESHOLD:
        return block_time // 1000
    return block_time


def map_output(data: dict[str, Any]) -> TransactionOutput:
    script = data.get("script_public_key")
    if isinstance(script, dict):
        script = script.get("script") or script.get("scriptPublicKey") or ""
    return TransactionOutput(
        amount=_to_int(data.get("amount", data.get("value"))),
        script_public_key=script or "",
        address=data.get("script_public_key_address") or data.get("address"),
        script_type=data.get("script_public_key_type"),
    )


def map_transaction(data: dict[str, Any]) -> RawTransaction:
    """Map a Kaspa API transaction document into a RawTransaction."""
    return RawTransaction(
        transaction_id=data.get("transaction_id") or data.get("txid") or "",
        block_time=normalize_block_time(data.get("block_time", data.get("timestamp"))),
        outputs=tuple(map_output(output) for output in data.get("outputs") or []),
        payload=data.get("payload"),
        is_accepted=data.get("is_accepted") is not False,
    )


class KaspaBlockchainFetcher:
    """
    Async fetcher backed by the Kaspa REST API.

    Usage:
        async with KaspaBlockchainFetcher() as fetcher:
            result = await fetcher.get_transaction_by_id(tx_id)
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        config: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._settings = config or default_settings
        self.base_url = (base_url or resolve_api_url(self._settings)).rstrip("/")
        self._client = client or httpx.AsyncClient(
            timeout=self._settings.request_timeout_seconds,
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
        )
        self._cache = TTLCache(self._settings.fetcher_cache_ttl_seconds)

    async def __aenter__(self) -> KaspaBlockchainFetcher:
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _cached(self, key: str, ttl_seconds: float | None = None) -> Any | None:
        if not self._settings.cache_enabled:
            return None
        return self._cache.get(key, ttl_seconds=ttl_seconds)

    def _store(self, key: str, value: Any) -> None:
        if self._settings.cache_enabled:
            self._cache.set(key, value)

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{path}"
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._settings.fetch_max_attempts),
            wait=wait_exponential(min=1, max=10),
            retry=retry_if_exception(_should_retry),
            reraise=True,
        ):
            with attempt:
                response = await self._client.get(url, params=params)
                response.raise_for_status()
                return response.json()
        raise FetcherError(f"No response from {url}")

    async def _request(self, path: str, params: dict[str, Any] | None = None) -> Any:
        try:
            return await self._get_json(path, params)
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.warning("Kaspa API HTTP error", path=path, status=status_code)
            raise FetcherError(f"HTTP {status_code}") from e
        except httpx.RequestError as e:
            logger.error("Kaspa API request error", path=path, error=str(e))
            raise FetcherError(str(e) or type(e).__name__) from e
        except ValueError as e:
            logger.warning("Kaspa API returned invalid JSON", path=path)
            raise FetcherError(f"Invalid JSON: {e}") from e

    async def get_transaction_by_id(self, transaction_id: str) -> Result[RawTransaction]:
        key = f"tx:{transaction_id}"
        cached = self._cached(key)
        if cached is not None:
            return Result.ok(cached)

        try:
            data = await self._request(f"/transactions/{transaction_id}")
        except FetcherError as e:
            if str(e) == "HTTP 404":
                return Result.fail("Transaction not found")
            return Result.fail(str(e))

        if isinstance(data, dict) and isinstance(data.get("transaction"), dict):
            data = data["transaction"]
        if not isinstance(data, dict):
            return Result.fail("Unexpected transaction response")

        transaction = map_transaction(data)
        self._store(key, transaction)
        return Result.ok(transaction)

    async def get_transactions_by_address(
        self, address: str, limit: int = 50, offset: int = 0
    ) -> Result[list[RawTransaction]]:
        key = f"txs:{address}:{limit}:{offset}"
        cached = self._cached(key)
        if cached is not None:
            return Result.ok(cached)

        try:
            data = await self._request(
                f"/addresses/{address}/full-transactions",
                params={"limit": limit, "offset": offset, "resolve_previous_outpoints": "no"},
            )
        except FetcherError as e:
            return Result.fail(str(e))

        documents = data.get("transactions", []) if isinstance(data, dict) else data
        transactions = [map_transaction(doc) for doc in documents or [] if isinstance(doc, dict)]
        self._store(key, transactions)
        return Result.ok(
            transactions,
            pagination=Pagination(offset=offset, limit=limit, has_more=len(transactions) == limit),
        )

    async def get_recent_transactions(self, limit: int = 50) -> Result[list[RawTransaction]]:
        key = f"recent:{limit}"
        cached = self._cached(key, ttl_seconds=self._settings.fetcher_recent_cache_ttl_seconds)
        if cached is not None:
            return Result.ok(cached)

        try:
            data = await self._request("/transactions/recent", params={"limit": limit})
        except FetcherError as e:
            return Result.fail(str(e))

        documents = data.get("transactions", []) if isinstance(data, dict) else data
        transactions = [map_transaction(doc) for doc in documents or [] if isinstance(doc, dict)]
        self._store(key, transactions)
        return Result.ok(transactions)

    async def get_transaction_count(self, address: str) -> Result[int]:
        key = f"count:{address}"
        cached = self._cached(key)
        if cached is not None:
            return Result.ok(cached)

        try:
            data = await self._request(f"/addresses/{address}/transactions-count")
        except FetcherError as e:
            return Result.fail(str(e))

        count = 0
        if isinstance(data, dict):
            count = _to_int(data.get("total", data.get("transaction_count")))
        self._store(key, count)
        return Result.ok(count)

    async def transaction_exists(self, transaction_id: str) -> Result[bool]:
        result = await self.get_transaction_by_id(transaction_id)
        if result.success:
            return Result.ok(True)
        if result.error == "Transaction not found":
            return Result.ok(False)
        return Result.fail(result.error or "Failed to look up transaction")

    def parse_verum_transaction(self, raw: RawTransaction) -> ParsedTransaction | None:
        return parse_verum_transaction(raw)
